"""Builder SDK — the declarative vocabulary a local project tree is written in.

A project tree declares its components by calling these builders at module
level::

    weatherForecast = mcp_tool(id='weather-forecast', name='Weather', server_url='...')

``Project.get_full_definition`` walks the resulting object graph and emits
the definition in *SDK form* (see ``agentsync.definition.normalize``).
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Any, Callable, Sequence, Union

from agentsync.definition.models import ComponentKind
from agentsync.errors import CredentialNotFoundError

# Builder function name -> component kind it declares.
BUILDER_KINDS: dict[str, ComponentKind] = {
    "project": ComponentKind.PROJECT,
    "agent": ComponentKind.AGENT,
    "sub_agent": ComponentKind.SUB_AGENT,
    "mcp_tool": ComponentKind.TOOL,
    "function_tool": ComponentKind.FUNCTION_TOOL,
    "function": ComponentKind.FUNCTION,
    "data_component": ComponentKind.DATA_COMPONENT,
    "artifact_component": ComponentKind.ARTIFACT_COMPONENT,
    "status_component": ComponentKind.STATUS_COMPONENT,
    "credential": ComponentKind.CREDENTIAL,
}

KIND_BUILDERS: dict[ComponentKind, str] = {v: k for k, v in BUILDER_KINDS.items()}

HELPER_BUILDERS = ("use", "status_updates")

BUILDER_NAMES: tuple[str, ...] = tuple(BUILDER_KINDS) + HELPER_BUILDERS


def _prune(data: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in data.items() if v is not None}


def _resolve(refs: Sequence | Callable[[], Sequence]) -> list:
    """Cross references may be given lazily as a zero-argument callable."""
    if callable(refs):
        refs = refs()
    return list(refs or ())


# --- Leaf components ---


@dataclass
class Credential:
    id: str
    name: str
    type: str
    credential_store_id: str
    retrieval_params: dict[str, Any] | None = None

    @property
    def env_key(self) -> str | None:
        """Environment variable holding the value of a ``memory`` credential."""
        if self.type != "memory":
            return None
        return (self.retrieval_params or {}).get("key")

    def is_configured(self) -> bool:
        key = self.env_key
        return key is None or bool(os.environ.get(key))

    def secret(self) -> str:
        key = self.env_key
        value = os.environ.get(key) if key else None
        if not value:
            raise CredentialNotFoundError(
                f"Credential '{self.id}' not found: set {key or 'its value'} in the environment"
            )
        return value

    def to_dict(self) -> dict[str, Any]:
        return _prune(
            {
                "id": self.id,
                "name": self.name,
                "type": self.type,
                "credentialStoreId": self.credential_store_id,
                "retrievalParams": self.retrieval_params,
            }
        )


@dataclass
class McpTool:
    id: str
    name: str
    server_url: str
    description: str | None = None
    transport: dict[str, Any] | None = None
    active_tools: list[str] | None = None
    credential: Credential | None = None
    headers: dict[str, str] | None = None
    image_url: str | None = None

    def to_dict(self) -> dict[str, Any]:
        mcp = _prune(
            {
                "server": {"url": self.server_url},
                "transport": self.transport,
                "activeTools": self.active_tools,
            }
        )
        return _prune(
            {
                "id": self.id,
                "name": self.name,
                "description": self.description,
                "config": {"type": "mcp", "mcp": mcp},
                # SDK shorthand; the API form is credentialReferenceId.
                "credential": self.credential.to_dict() if self.credential else None,
                "headers": self.headers,
                "imageUrl": self.image_url,
            }
        )


@dataclass
class Function:
    id: str
    execute_code: str
    input_schema: dict[str, Any] | None = None
    dependencies: dict[str, str] | None = None

    def to_dict(self) -> dict[str, Any]:
        return _prune(
            {
                "id": self.id,
                "executeCode": self.execute_code,
                "inputSchema": self.input_schema,
                "dependencies": self.dependencies,
            }
        )


@dataclass
class FunctionTool:
    id: str
    name: str
    function: Function
    description: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return _prune(
            {
                "id": self.id,
                "name": self.name,
                "description": self.description,
                "functionId": self.function.id,
            }
        )


@dataclass
class DataComponent:
    id: str
    name: str
    description: str | None = None
    props: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        return _prune(
            {"id": self.id, "name": self.name, "description": self.description, "props": self.props}
        )


@dataclass
class ArtifactComponent(DataComponent):
    pass


@dataclass
class StatusComponent:
    id: str
    name: str
    description: str | None = None
    details_schema: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        return _prune(
            {
                "id": self.id,
                "name": self.name,
                "description": self.description,
                "detailsSchema": self.details_schema,
            }
        )


AnyTool = Union[McpTool, FunctionTool]


@dataclass
class ToolUse:
    """A tool attached to a sub-agent with per-use options."""

    tool: AnyTool
    selected_tools: list[str] | None = None
    headers: dict[str, str] | None = None

    def to_dict(self) -> dict[str, Any]:
        return _prune(
            {"toolId": self.tool.id, "toolSelection": self.selected_tools, "headers": self.headers}
        )


# --- Agents ---


@dataclass
class SubAgent:
    id: str
    name: str
    description: str | None = None
    prompt: str | None = None
    models: dict[str, Any] | None = None
    stop_when: dict[str, Any] | None = None
    can_use: Sequence[AnyTool | ToolUse] = ()
    can_transfer_to: Sequence[SubAgent] | Callable[[], Sequence[SubAgent]] = ()
    can_delegate_to: Sequence[SubAgent] | Callable[[], Sequence[SubAgent]] = ()
    data_components: Sequence[DataComponent] = ()
    artifact_components: Sequence[ArtifactComponent] = ()

    def tools(self) -> list[AnyTool]:
        return [entry.tool if isinstance(entry, ToolUse) else entry for entry in self.can_use]

    def to_dict(self) -> dict[str, Any]:
        return _prune(
            {
                "id": self.id,
                "name": self.name,
                "description": self.description,
                "prompt": self.prompt,
                "models": self.models,
                "stopWhen": self.stop_when,
                # Bare ids are SDK shorthand for {toolId} / {subAgentId}.
                "canUse": [
                    entry.to_dict() if isinstance(entry, ToolUse) else entry.id
                    for entry in self.can_use
                ],
                "canTransferTo": [s.id for s in _resolve(self.can_transfer_to)],
                "canDelegateTo": [s.id for s in _resolve(self.can_delegate_to)],
                "dataComponents": [c.id for c in self.data_components],
                "artifactComponents": [c.id for c in self.artifact_components],
            }
        )


@dataclass
class StatusUpdates:
    num_events: int | None = None
    time_in_seconds: int | None = None
    prompt: str | None = None
    status_components: Sequence[StatusComponent] = ()

    def to_dict(self) -> dict[str, Any]:
        return _prune(
            {
                "numEvents": self.num_events,
                "timeInSeconds": self.time_in_seconds,
                "prompt": self.prompt,
                "statusComponents": [c.id for c in self.status_components],
            }
        )


@dataclass
class Agent:
    id: str
    name: str
    description: str | None = None
    prompt: str | None = None
    default_sub_agent: SubAgent | None = None
    sub_agents: Sequence[SubAgent] = ()
    models: dict[str, Any] | None = None
    stop_when: dict[str, Any] | None = None
    status_updates: StatusUpdates | None = None

    def to_dict(self) -> dict[str, Any]:
        return _prune(
            {
                "id": self.id,
                "name": self.name,
                "description": self.description,
                "prompt": self.prompt,
                "defaultSubAgentId": self.default_sub_agent.id if self.default_sub_agent else None,
                "subAgents": {s.id: s.to_dict() for s in self.sub_agents},
                "models": self.models,
                "stopWhen": self.stop_when,
                "statusUpdates": self.status_updates.to_dict() if self.status_updates else None,
            }
        )


# --- Project ---


@dataclass
class Project:
    id: str
    name: str
    description: str | None = None
    models: dict[str, Any] | None = None
    stop_when: dict[str, Any] | None = None
    agents: Sequence[Agent] = ()
    tools: Sequence[McpTool] = ()
    function_tools: Sequence[FunctionTool] = ()
    functions: Sequence[Function] = ()
    data_components: Sequence[DataComponent] = ()
    artifact_components: Sequence[ArtifactComponent] = ()
    status_components: Sequence[StatusComponent] = ()
    credentials: Sequence[Credential] = ()

    def _collect(self) -> dict[str, dict[str, Any]]:
        """Gather every component reachable from the agents plus the explicit lists."""
        buckets: dict[str, dict[str, Any]] = {
            "agents": {},
            "tools": {},
            "functionTools": {},
            "functions": {},
            "dataComponents": {},
            "artifactComponents": {},
            "statusComponents": {},
            "credentialReferences": {},
        }

        def add(bucket: str, component: Any) -> None:
            existing = buckets[bucket].get(component.id)
            if existing is not None and existing is not component:
                if existing.to_dict() != component.to_dict():
                    raise ValueError(f"Conflicting declarations for {bucket} id '{component.id}'")
                return
            buckets[bucket][component.id] = component

        def add_tool(tool: AnyTool) -> None:
            if isinstance(tool, FunctionTool):
                add("functionTools", tool)
                add("functions", tool.function)
            else:
                add("tools", tool)
                if tool.credential is not None:
                    add("credentialReferences", tool.credential)

        for agent in self.agents:
            add("agents", agent)
            for sub in agent.sub_agents:
                for tool in sub.tools():
                    add_tool(tool)
                for component in sub.data_components:
                    add("dataComponents", component)
                for component in sub.artifact_components:
                    add("artifactComponents", component)
            if agent.status_updates is not None:
                for component in agent.status_updates.status_components:
                    add("statusComponents", component)

        for tool in self.tools:
            add_tool(tool)
        for tool in self.function_tools:
            add_tool(tool)
        for fn in self.functions:
            add("functions", fn)
        for component in self.data_components:
            add("dataComponents", component)
        for component in self.artifact_components:
            add("artifactComponents", component)
        for component in self.status_components:
            add("statusComponents", component)
        for cred in self.credentials:
            add("credentialReferences", cred)

        return buckets

    def get_full_definition(self) -> dict[str, Any]:
        """Emit the SDK-form definition of the whole project."""
        buckets = self._collect()
        data = _prune(
            {
                "id": self.id,
                "name": self.name,
                "description": self.description,
                "models": self.models,
                "stopWhen": self.stop_when,
            }
        )
        for bucket, components in buckets.items():
            data[bucket] = {cid: c.to_dict() for cid, c in components.items()}
        return data

    def missing_credentials(self) -> list[str]:
        """Ids of credentials whose value is not configured in this environment."""
        creds = self._collect()["credentialReferences"].values()
        return [c.id for c in creds if not c.is_configured()]


# ---------------------------------------------------------------------------
# Builder functions
# ---------------------------------------------------------------------------


def project(
    *,
    id: str,
    name: str,
    description: str | None = None,
    models: dict[str, Any] | None = None,
    stop_when: dict[str, Any] | None = None,
    agents: Sequence[Agent] = (),
    tools: Sequence[McpTool] = (),
    function_tools: Sequence[FunctionTool] = (),
    functions: Sequence[Function] = (),
    data_components: Sequence[DataComponent] = (),
    artifact_components: Sequence[ArtifactComponent] = (),
    status_components: Sequence[StatusComponent] = (),
    credentials: Sequence[Credential] = (),
) -> Project:
    return Project(
        id=id,
        name=name,
        description=description,
        models=models,
        stop_when=stop_when,
        agents=list(agents),
        tools=list(tools),
        function_tools=list(function_tools),
        functions=list(functions),
        data_components=list(data_components),
        artifact_components=list(artifact_components),
        status_components=list(status_components),
        credentials=list(credentials),
    )


def agent(
    *,
    id: str,
    name: str,
    description: str | None = None,
    prompt: str | None = None,
    default_sub_agent: SubAgent | None = None,
    sub_agents: Sequence[SubAgent] = (),
    models: dict[str, Any] | None = None,
    stop_when: dict[str, Any] | None = None,
    status_updates: StatusUpdates | None = None,
) -> Agent:
    return Agent(
        id=id,
        name=name,
        description=description,
        prompt=prompt,
        default_sub_agent=default_sub_agent,
        sub_agents=list(sub_agents),
        models=models,
        stop_when=stop_when,
        status_updates=status_updates,
    )


def sub_agent(
    *,
    id: str,
    name: str,
    description: str | None = None,
    prompt: str | None = None,
    models: dict[str, Any] | None = None,
    stop_when: dict[str, Any] | None = None,
    can_use: Sequence[AnyTool | ToolUse] = (),
    can_transfer_to: Sequence[SubAgent] | Callable[[], Sequence[SubAgent]] = (),
    can_delegate_to: Sequence[SubAgent] | Callable[[], Sequence[SubAgent]] = (),
    data_components: Sequence[DataComponent] = (),
    artifact_components: Sequence[ArtifactComponent] = (),
) -> SubAgent:
    return SubAgent(
        id=id,
        name=name,
        description=description,
        prompt=prompt,
        models=models,
        stop_when=stop_when,
        can_use=list(can_use),
        can_transfer_to=can_transfer_to,
        can_delegate_to=can_delegate_to,
        data_components=list(data_components),
        artifact_components=list(artifact_components),
    )


def status_updates(
    *,
    num_events: int | None = None,
    time_in_seconds: int | None = None,
    prompt: str | None = None,
    status_components: Sequence[StatusComponent] = (),
) -> StatusUpdates:
    return StatusUpdates(
        num_events=num_events,
        time_in_seconds=time_in_seconds,
        prompt=prompt,
        status_components=list(status_components),
    )


def use(
    tool: AnyTool,
    *,
    selected_tools: list[str] | None = None,
    headers: dict[str, str] | None = None,
) -> ToolUse:
    return ToolUse(tool=tool, selected_tools=selected_tools, headers=headers)


def mcp_tool(
    *,
    id: str,
    name: str,
    server_url: str,
    description: str | None = None,
    transport: dict[str, Any] | None = None,
    active_tools: list[str] | None = None,
    credential: Credential | None = None,
    headers: dict[str, str] | None = None,
    image_url: str | None = None,
) -> McpTool:
    return McpTool(
        id=id,
        name=name,
        server_url=server_url,
        description=description,
        transport=transport,
        active_tools=active_tools,
        credential=credential,
        headers=headers,
        image_url=image_url,
    )


def function(
    *,
    id: str,
    execute_code: str,
    input_schema: dict[str, Any] | None = None,
    dependencies: dict[str, str] | None = None,
) -> Function:
    return Function(
        id=id, execute_code=execute_code, input_schema=input_schema, dependencies=dependencies
    )


def function_tool(
    *, id: str, name: str, function: Function, description: str | None = None
) -> FunctionTool:
    return FunctionTool(id=id, name=name, function=function, description=description)


def data_component(
    *, id: str, name: str, description: str | None = None, props: dict[str, Any] | None = None
) -> DataComponent:
    return DataComponent(id=id, name=name, description=description, props=props)


def artifact_component(
    *, id: str, name: str, description: str | None = None, props: dict[str, Any] | None = None
) -> ArtifactComponent:
    return ArtifactComponent(id=id, name=name, description=description, props=props)


def status_component(
    *,
    id: str,
    name: str,
    description: str | None = None,
    details_schema: dict[str, Any] | None = None,
) -> StatusComponent:
    return StatusComponent(id=id, name=name, description=description, details_schema=details_schema)


def credential(
    *,
    id: str,
    name: str,
    type: str,
    credential_store_id: str,
    retrieval_params: dict[str, Any] | None = None,
) -> Credential:
    return Credential(
        id=id,
        name=name,
        type=type,
        credential_store_id=credential_store_id,
        retrieval_params=retrieval_params,
    )
