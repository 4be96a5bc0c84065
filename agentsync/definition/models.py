"""Definition models — the typed form of a remote project definition.

A definition arrives as a JSON-like mapping with camelCase keys. It is
decoded once, at ingestion, into the closed set of record types below so
that the renderer and the dependency resolver never dig through loose dicts.
Comparison happens on the dumped form (``to_dict``), which projects both
sides of a comparison onto exactly these fields.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Iterator

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


class ComponentKind(Enum):
    PROJECT = "project"
    AGENT = "agent"
    SUB_AGENT = "subAgent"
    TOOL = "tool"
    FUNCTION_TOOL = "functionTool"
    FUNCTION = "function"
    DATA_COMPONENT = "dataComponent"
    ARTIFACT_COMPONENT = "artifactComponent"
    STATUS_COMPONENT = "statusComponent"
    CREDENTIAL = "credential"

    @property
    def suffix(self) -> str:
        """Capitalized kind name, used to break declared-name collisions."""
        return self.value[0].upper() + self.value[1:]


# Top-level map key (API form) for every kind stored in a per-type map.
MAP_KEYS: dict[ComponentKind, str] = {
    ComponentKind.AGENT: "agents",
    ComponentKind.TOOL: "tools",
    ComponentKind.FUNCTION_TOOL: "functionTools",
    ComponentKind.FUNCTION: "functions",
    ComponentKind.DATA_COMPONENT: "dataComponents",
    ComponentKind.ARTIFACT_COMPONENT: "artifactComponents",
    ComponentKind.STATUS_COMPONENT: "statusComponents",
    ComponentKind.CREDENTIAL: "credentialReferences",
}

KINDS_BY_MAP_KEY: dict[str, ComponentKind] = {v: k for k, v in MAP_KEYS.items()}


def component_key(kind: ComponentKind, identifier: str) -> str:
    """The ``type:identifier`` key used by locations and the naming map."""
    return f"{kind.value}:{identifier}"


class Record(BaseModel):
    """Base for every definition record: camelCase on the wire, unknown keys dropped."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


# --- Shared settings ---


class ModelConfig(Record):
    model: str | None = None
    provider_options: dict[str, Any] | None = None


class ModelSettings(Record):
    base: ModelConfig | None = None
    structured_output: ModelConfig | None = None
    summarizer: ModelConfig | None = None


class StopWhen(Record):
    transfer_count_is: int | None = None
    step_count_is: int | None = None


# --- Components ---


class ToolUse(Record):
    """One entry of a sub-agent's ``canUse`` list."""

    tool_id: str
    tool_selection: list[str] | None = None
    headers: dict[str, str] | None = None


class DelegateTarget(Record):
    sub_agent_id: str


class SubAgentRecord(Record):
    id: str
    name: str
    description: str | None = None
    prompt: str | None = None
    models: ModelSettings | None = None
    stop_when: StopWhen | None = None
    can_use: list[ToolUse] = Field(default_factory=list)
    can_transfer_to: list[str] = Field(default_factory=list)
    can_delegate_to: list[DelegateTarget] = Field(default_factory=list)
    data_components: list[str] = Field(default_factory=list)
    artifact_components: list[str] = Field(default_factory=list)


class StatusUpdates(Record):
    num_events: int | None = None
    time_in_seconds: int | None = None
    prompt: str | None = None
    status_components: list[str] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _component_ids(cls, data: Any) -> Any:
        # The API sometimes embeds whole status component records here.
        if isinstance(data, dict) and isinstance(data.get("statusComponents"), list):
            data = dict(data)
            data["statusComponents"] = [
                item.get("id") if isinstance(item, dict) else item
                for item in data["statusComponents"]
            ]
        return data


class AgentRecord(Record):
    id: str
    name: str
    description: str | None = None
    prompt: str | None = None
    default_sub_agent_id: str | None = None
    sub_agents: dict[str, SubAgentRecord] = Field(default_factory=dict)
    models: ModelSettings | None = None
    stop_when: StopWhen | None = None
    status_updates: StatusUpdates | None = None
    created_at: str | None = None
    updated_at: str | None = None

    @model_validator(mode="before")
    @classmethod
    def _sub_agent_ids(cls, data: Any) -> Any:
        if isinstance(data, dict) and isinstance(data.get("subAgents"), dict):
            data = dict(data)
            data["subAgents"] = _fill_ids(data["subAgents"])
        return data


class McpServer(Record):
    url: str


class McpTransport(Record):
    type: str


class McpSettings(Record):
    server: McpServer
    transport: McpTransport | None = None
    active_tools: list[str] | None = None


class ToolConfig(Record):
    type: str = "mcp"
    mcp: McpSettings


class ToolRecord(Record):
    id: str
    name: str
    description: str | None = None
    config: ToolConfig
    credential_reference_id: str | None = None
    headers: dict[str, str] | None = None
    image_url: str | None = None


class FunctionToolRecord(Record):
    id: str
    name: str
    description: str | None = None
    function_id: str


class FunctionRecord(Record):
    id: str
    execute_code: str
    input_schema: dict[str, Any] | None = None
    dependencies: dict[str, str] | None = None


class DataComponentRecord(Record):
    id: str
    name: str
    description: str | None = None
    props: dict[str, Any] | None = None


class ArtifactComponentRecord(Record):
    id: str
    name: str
    description: str | None = None
    props: dict[str, Any] | None = None


class StatusComponentRecord(Record):
    id: str
    name: str
    description: str | None = None
    details_schema: dict[str, Any] | None = None


class CredentialReferenceRecord(Record):
    id: str
    name: str
    type: str
    credential_store_id: str
    retrieval_params: dict[str, Any] | None = None


# --- Project ---


class ProjectDefinition(Record):
    """The full definition of one project."""

    id: str
    name: str
    description: str | None = None
    models: ModelSettings | None = None
    stop_when: StopWhen | None = None
    agents: dict[str, AgentRecord] = Field(default_factory=dict)
    tools: dict[str, ToolRecord] = Field(default_factory=dict)
    function_tools: dict[str, FunctionToolRecord] = Field(default_factory=dict)
    functions: dict[str, FunctionRecord] = Field(default_factory=dict)
    data_components: dict[str, DataComponentRecord] = Field(default_factory=dict)
    artifact_components: dict[str, ArtifactComponentRecord] = Field(default_factory=dict)
    status_components: dict[str, StatusComponentRecord] = Field(default_factory=dict)
    credential_references: dict[str, CredentialReferenceRecord] = Field(default_factory=dict)
    created_at: str | None = None
    updated_at: str | None = None

    @model_validator(mode="before")
    @classmethod
    def _map_ids(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        for map_key in MAP_KEYS.values():
            if isinstance(data.get(map_key), dict):
                data[map_key] = _fill_ids(data[map_key])
        return data

    @model_validator(mode="after")
    def _keys_match_ids(self) -> ProjectDefinition:
        for name in _MAP_ATTRS.values():
            for key, record in getattr(self, name).items():
                if record.id != key:
                    raise ValueError(f"{name}: record stored under '{key}' has id '{record.id}'")
        for agent in self.agents.values():
            for key, sub in agent.sub_agents.items():
                if sub.id != key:
                    raise ValueError(
                        f"agents.{agent.id}.subAgents: record stored under '{key}' has id '{sub.id}'"
                    )
        return self

    def get_component(self, kind: ComponentKind, identifier: str) -> Any | None:
        """Look up a component record by kind and identifier."""
        if kind is ComponentKind.PROJECT:
            return self if identifier == self.id else None
        if kind is ComponentKind.SUB_AGENT:
            for agent in self.agents.values():
                if identifier in agent.sub_agents:
                    return agent.sub_agents[identifier]
            return None
        return getattr(self, _MAP_ATTRS[kind]).get(identifier)

    def parent_agent_of(self, sub_agent_id: str) -> str | None:
        for agent in self.agents.values():
            if sub_agent_id in agent.sub_agents:
                return agent.id
        return None

    def find_tool_kind(self, tool_id: str) -> ComponentKind | None:
        """``canUse`` entries may point at an MCP tool or a function tool."""
        if tool_id in self.tools:
            return ComponentKind.TOOL
        if tool_id in self.function_tools:
            return ComponentKind.FUNCTION_TOOL
        return None


# Attribute name on ProjectDefinition for each map-stored kind.
_MAP_ATTRS: dict[ComponentKind, str] = {
    ComponentKind.AGENT: "agents",
    ComponentKind.TOOL: "tools",
    ComponentKind.FUNCTION_TOOL: "function_tools",
    ComponentKind.FUNCTION: "functions",
    ComponentKind.DATA_COMPONENT: "data_components",
    ComponentKind.ARTIFACT_COMPONENT: "artifact_components",
    ComponentKind.STATUS_COMPONENT: "status_components",
    ComponentKind.CREDENTIAL: "credential_references",
}


def _fill_ids(records: dict) -> dict:
    """Records may omit ``id``; it defaults to the key they are stored under."""
    filled = {}
    for key, value in records.items():
        if isinstance(value, dict) and "id" not in value:
            value = {**value, "id": key}
        filled[key] = value
    return filled


def decode_definition(data: dict[str, Any]) -> ProjectDefinition:
    """Decode an API-form mapping. Raises ``pydantic.ValidationError``."""
    return ProjectDefinition.model_validate(data)


def iter_components(
    definition: ProjectDefinition,
) -> Iterator[tuple[ComponentKind, str, Any, str | None]]:
    """Yield ``(kind, identifier, record, parent_agent_id)`` for every component.

    Order is stable: project first, then agents with their sub-agents, then
    each per-type map in definition order.
    """
    yield ComponentKind.PROJECT, definition.id, definition, None
    for agent_id, agent in definition.agents.items():
        yield ComponentKind.AGENT, agent_id, agent, None
        for sub_id, sub in agent.sub_agents.items():
            yield ComponentKind.SUB_AGENT, sub_id, sub, agent_id
    for kind, attr in _MAP_ATTRS.items():
        if kind is ComponentKind.AGENT:
            continue
        for identifier, record in getattr(definition, attr).items():
            yield kind, identifier, record, None
