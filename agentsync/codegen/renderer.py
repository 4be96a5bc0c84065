"""Deterministic renderer — component records to builder-SDK source text.

``render_declaration`` is a pure function of (kind, identifier, record,
naming context): the same inputs always produce byte-identical text. Every
reference to another component goes through the naming context, and the
rendered result lists the builders and components it mentions so callers
can compute the imports a file needs.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable

from agentsync.codegen.naming import NamingContext, path_to_module
from agentsync.codegen.pyformat import Call, Lambda, Ref, format_value
from agentsync.definition.models import (
    AgentRecord,
    ArtifactComponentRecord,
    ComponentKind,
    CredentialReferenceRecord,
    DataComponentRecord,
    FunctionRecord,
    FunctionToolRecord,
    ProjectDefinition,
    StatusComponentRecord,
    SubAgentRecord,
    ToolRecord,
)
from agentsync.errors import StructuralDefectError
from agentsync.sdk.builders import KIND_BUILDERS

SDK_MODULE = "agentsync.sdk"


@dataclass(frozen=True)
class ImportSpec:
    """``from <module> import <name>``"""

    module: str
    name: str

    def render(self) -> str:
        return f"from {self.module} import {self.name}"


@dataclass
class RenderedComponent:
    kind: ComponentKind
    identifier: str
    declared_name: str
    expression: str
    builders: set[str] = field(default_factory=set)
    references: set[tuple[ComponentKind, str]] = field(default_factory=set)

    @property
    def declaration(self) -> str:
        return f"{self.declared_name} = {self.expression}"


class _Refs:
    """Collects builders used and components referenced while building one call."""

    def __init__(self, naming: NamingContext) -> None:
        self.naming = naming
        self.builders: set[str] = set()
        self.references: set[tuple[ComponentKind, str]] = set()

    def call(
        self,
        builder: str,
        kwargs: list[tuple[str, Any]],
        args: tuple = (),
        multiline: bool = False,
    ) -> Call:
        self.builders.add(builder)
        pruned = tuple((k, v) for k, v in kwargs if not _is_empty(v))
        return Call(builder, args=args, kwargs=pruned, multiline=multiline)

    def ref(self, kind: ComponentKind, identifier: str) -> Ref:
        name = self.naming.name_for(kind, identifier)
        self.references.add((kind, identifier))
        return Ref(name)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def render_declaration(
    kind: ComponentKind, identifier: str, record: Any, naming: NamingContext
) -> RenderedComponent:
    """Render ``<declared name> = <builder call>`` for one component."""
    refs = _Refs(naming)
    call = _build(kind, record, refs, multiline=True)
    return RenderedComponent(
        kind=kind,
        identifier=identifier,
        declared_name=naming.name_for(kind, identifier),
        expression=format_value(call),
        builders=refs.builders,
        references=refs.references,
    )


def render_expression(
    kind: ComponentKind, identifier: str, record: Any, naming: NamingContext, indent: int = 0
) -> RenderedComponent:
    """Render the bare builder call, for replacing an inline declaration in place."""
    refs = _Refs(naming)
    call = _build(kind, record, refs, multiline=True)
    return RenderedComponent(
        kind=kind,
        identifier=identifier,
        declared_name=naming.name_for(kind, identifier),
        expression=format_value(call, indent),
        builders=refs.builders,
        references=refs.references,
    )


def imports_for(
    rendered: Iterable[RenderedComponent], naming: NamingContext, path: str
) -> list[ImportSpec]:
    """Imports a module at *path* needs for the given rendered components.

    Components declared in the same module are not imported.
    """
    module = path_to_module(path)
    local = {r.declared_name for r in rendered}
    specs: set[ImportSpec] = set()
    for r in rendered:
        for builder in r.builders:
            specs.add(ImportSpec(SDK_MODULE, builder))
        for kind, identifier in r.references:
            name = naming.name_for(kind, identifier)
            target = naming.module_for(kind, identifier)
            if target == module or name in local:
                continue
            specs.add(ImportSpec(target, name))
    return sorted(specs, key=lambda s: (s.module != SDK_MODULE, s.module, s.name))


def render_imports(specs: Iterable[ImportSpec]) -> str:
    """Group import specs into one ``from m import a, b`` line per module."""
    grouped: dict[str, list[str]] = {}
    for spec in specs:
        grouped.setdefault(spec.module, []).append(spec.name)
    sdk = [f"from {m} import {', '.join(sorted(n))}" for m, n in grouped.items() if m == SDK_MODULE]
    local = [
        f"from {m} import {', '.join(sorted(n))}"
        for m, n in sorted(grouped.items())
        if m != SDK_MODULE
    ]
    blocks = ["\n".join(sdk), "\n".join(local)]
    return "\n\n".join(b for b in blocks if b)


def render_module(
    rendered: list[RenderedComponent],
    naming: NamingContext,
    path: str,
    imports: list[ImportSpec] | None = None,
) -> str:
    """Full source of a new module holding *rendered* in the given order.

    Imports default to those implied by the rendered references.
    """
    if imports is None:
        imports = imports_for(rendered, naming, path)
    header = render_imports(imports)
    body = "\n\n".join(r.declaration for r in rendered)
    return f"{header}\n\n\n{body}\n" if header else f"{body}\n"


def order_for_module(
    definition: ProjectDefinition, components: list[tuple[ComponentKind, str]]
) -> list[tuple[ComponentKind, str]]:
    """Order declarations for one module: sub-agents precede their agent."""

    def rank(item: tuple[ComponentKind, str]) -> tuple:
        kind, identifier = item
        if kind is ComponentKind.SUB_AGENT:
            parent = definition.parent_agent_of(identifier) or ""
            subs = list(definition.agents[parent].sub_agents) if parent else []
            return (parent, 0, subs.index(identifier) if identifier in subs else 0)
        if kind is ComponentKind.AGENT:
            return (identifier, 1, 0)
        return ("", -1, 0)

    return sorted(components, key=rank)


def project_members(definition: ProjectDefinition) -> dict[str, list[tuple[ComponentKind, str]]]:
    """Components named by each list argument of the project declaration.

    The project lists every agent and, explicitly, only those components no
    agent reaches; the rest are collected through the agents.
    """
    unreachable = unreachable_components(definition)
    members = {"agents": [(ComponentKind.AGENT, a) for a in definition.agents]}
    for kwarg, kind in _PROJECT_LISTS:
        members[kwarg] = [(k, i) for k, i in unreachable if k is kind]
    return members


def render_project(definition: ProjectDefinition, naming: NamingContext) -> RenderedComponent:
    """Render ``<declared name> = project(...)`` for the whole definition."""
    refs = _Refs(naming)
    kwargs: list[tuple[str, Any]] = [
        ("id", definition.id),
        ("name", definition.name),
        ("description", definition.description),
        ("models", _dump(definition.models)),
        ("stop_when", _dump(definition.stop_when)),
    ]
    for kwarg, members in project_members(definition).items():
        kwargs.append((kwarg, [refs.ref(kind, i) for kind, i in members]))
    call = refs.call("project", kwargs, multiline=True)
    return RenderedComponent(
        kind=ComponentKind.PROJECT,
        identifier=definition.id,
        declared_name=naming.name_for(ComponentKind.PROJECT, definition.id),
        expression=format_value(call),
        builders=refs.builders,
        references=refs.references,
    )


def render_entry_point(
    definition: ProjectDefinition,
    naming: NamingContext,
    declarations: list[RenderedComponent] | None = None,
) -> str:
    """Source of a new entry point: imports, local declarations, then the project.

    *declarations* are components whose home is the entry point itself.
    """
    rendered = list(declarations or []) + [render_project(definition, naming)]
    return render_module(rendered, naming, naming.entry_point)


_PROJECT_LISTS: tuple[tuple[str, ComponentKind], ...] = (
    ("tools", ComponentKind.TOOL),
    ("function_tools", ComponentKind.FUNCTION_TOOL),
    ("functions", ComponentKind.FUNCTION),
    ("data_components", ComponentKind.DATA_COMPONENT),
    ("artifact_components", ComponentKind.ARTIFACT_COMPONENT),
    ("status_components", ComponentKind.STATUS_COMPONENT),
    ("credentials", ComponentKind.CREDENTIAL),
)


def unreachable_components(definition: ProjectDefinition) -> list[tuple[ComponentKind, str]]:
    """Components the project builder would not collect through its agents."""
    reached: set[tuple[ComponentKind, str]] = set()
    for agent in definition.agents.values():
        for sub in agent.sub_agents.values():
            for use in sub.can_use:
                kind = definition.find_tool_kind(use.tool_id)
                if kind is not None:
                    reached.add((kind, use.tool_id))
            reached.update((ComponentKind.DATA_COMPONENT, i) for i in sub.data_components)
            reached.update((ComponentKind.ARTIFACT_COMPONENT, i) for i in sub.artifact_components)
        if agent.status_updates is not None:
            reached.update(
                (ComponentKind.STATUS_COMPONENT, i) for i in agent.status_updates.status_components
            )

    # Listing a tool explicitly still brings in its function and credential.
    for tool in definition.tools.values():
        if tool.credential_reference_id:
            reached.add((ComponentKind.CREDENTIAL, tool.credential_reference_id))
    for ft in definition.function_tools.values():
        reached.add((ComponentKind.FUNCTION, ft.function_id))

    missing = []
    for kwarg, kind in _PROJECT_LISTS:
        records = getattr(definition, _DEF_ATTRS[kwarg])
        missing.extend((kind, i) for i in records if (kind, i) not in reached)
    return missing


_DEF_ATTRS = {
    "tools": "tools",
    "function_tools": "function_tools",
    "functions": "functions",
    "data_components": "data_components",
    "artifact_components": "artifact_components",
    "status_components": "status_components",
    "credentials": "credential_references",
}


# ---------------------------------------------------------------------------
# Per-kind call builders
# ---------------------------------------------------------------------------


def _build(kind: ComponentKind, record: Any, refs: _Refs, multiline: bool) -> Call:
    builder = KIND_BUILDERS[kind]
    if kind is ComponentKind.AGENT:
        kwargs = _agent_kwargs(record, refs)
    elif kind is ComponentKind.SUB_AGENT:
        kwargs = _sub_agent_kwargs(record, refs)
    elif kind is ComponentKind.TOOL:
        kwargs = _tool_kwargs(record, refs)
    elif kind is ComponentKind.FUNCTION_TOOL:
        kwargs = _function_tool_kwargs(record, refs)
    elif kind is ComponentKind.FUNCTION:
        kwargs = _function_kwargs(record)
    elif kind in (ComponentKind.DATA_COMPONENT, ComponentKind.ARTIFACT_COMPONENT):
        kwargs = _schema_component_kwargs(record)
    elif kind is ComponentKind.STATUS_COMPONENT:
        kwargs = _status_component_kwargs(record)
    elif kind is ComponentKind.CREDENTIAL:
        kwargs = _credential_kwargs(record)
    else:
        raise StructuralDefectError(f"No renderer for {kind.value} components")
    return refs.call(builder, kwargs, multiline=multiline)


def _agent_kwargs(record: AgentRecord, refs: _Refs) -> list[tuple[str, Any]]:
    for sub_id in ([record.default_sub_agent_id] if record.default_sub_agent_id else []):
        if sub_id not in record.sub_agents:
            raise StructuralDefectError(
                f"Agent '{record.id}' default sub-agent '{sub_id}' is not one of its sub-agents"
            )
    status = None
    if record.status_updates is not None:
        su = record.status_updates
        status = refs.call(
            "status_updates",
            [
                ("num_events", su.num_events),
                ("time_in_seconds", su.time_in_seconds),
                ("prompt", su.prompt),
                (
                    "status_components",
                    [refs.ref(ComponentKind.STATUS_COMPONENT, i) for i in su.status_components],
                ),
            ],
        )
    return [
        ("id", record.id),
        ("name", record.name),
        ("description", record.description),
        ("prompt", record.prompt),
        (
            "default_sub_agent",
            refs.ref(ComponentKind.SUB_AGENT, record.default_sub_agent_id)
            if record.default_sub_agent_id
            else None,
        ),
        ("sub_agents", [refs.ref(ComponentKind.SUB_AGENT, i) for i in record.sub_agents]),
        ("models", _dump(record.models)),
        ("stop_when", _dump(record.stop_when)),
        ("status_updates", status),
    ]


def _sub_agent_kwargs(record: SubAgentRecord, refs: _Refs) -> list[tuple[str, Any]]:
    can_use = []
    for entry in record.can_use:
        tool = refs.ref(refs.naming.tool_kind(entry.tool_id), entry.tool_id)
        if not entry.tool_selection and not entry.headers:
            can_use.append(tool)
            continue
        can_use.append(
            refs.call(
                "use",
                [("selected_tools", entry.tool_selection), ("headers", entry.headers)],
                args=(tool,),
            )
        )
    transfer = [refs.ref(ComponentKind.SUB_AGENT, i) for i in record.can_transfer_to]
    delegate = [refs.ref(ComponentKind.SUB_AGENT, d.sub_agent_id) for d in record.can_delegate_to]
    return [
        ("id", record.id),
        ("name", record.name),
        ("description", record.description),
        ("prompt", record.prompt),
        ("models", _dump(record.models)),
        ("stop_when", _dump(record.stop_when)),
        ("can_use", can_use),
        ("can_transfer_to", Lambda(transfer) if transfer else None),
        ("can_delegate_to", Lambda(delegate) if delegate else None),
        (
            "data_components",
            [refs.ref(ComponentKind.DATA_COMPONENT, i) for i in record.data_components],
        ),
        (
            "artifact_components",
            [refs.ref(ComponentKind.ARTIFACT_COMPONENT, i) for i in record.artifact_components],
        ),
    ]


def _tool_kwargs(record: ToolRecord, refs: _Refs) -> list[tuple[str, Any]]:
    mcp = record.config.mcp
    return [
        ("id", record.id),
        ("name", record.name),
        ("description", record.description),
        ("server_url", mcp.server.url),
        ("transport", _dump(mcp.transport)),
        ("active_tools", mcp.active_tools),
        (
            "credential",
            refs.ref(ComponentKind.CREDENTIAL, record.credential_reference_id)
            if record.credential_reference_id
            else None,
        ),
        ("headers", record.headers),
        ("image_url", record.image_url),
    ]


def _function_tool_kwargs(record: FunctionToolRecord, refs: _Refs) -> list[tuple[str, Any]]:
    return [
        ("id", record.id),
        ("name", record.name),
        ("description", record.description),
        ("function", refs.ref(ComponentKind.FUNCTION, record.function_id)),
    ]


def _function_kwargs(record: FunctionRecord) -> list[tuple[str, Any]]:
    return [
        ("id", record.id),
        ("input_schema", record.input_schema),
        ("dependencies", record.dependencies),
        ("execute_code", record.execute_code),
    ]


def _schema_component_kwargs(
    record: DataComponentRecord | ArtifactComponentRecord,
) -> list[tuple[str, Any]]:
    return [
        ("id", record.id),
        ("name", record.name),
        ("description", record.description),
        ("props", record.props),
    ]


def _status_component_kwargs(record: StatusComponentRecord) -> list[tuple[str, Any]]:
    return [
        ("id", record.id),
        ("name", record.name),
        ("description", record.description),
        ("details_schema", record.details_schema),
    ]


def _credential_kwargs(record: CredentialReferenceRecord) -> list[tuple[str, Any]]:
    return [
        ("id", record.id),
        ("name", record.name),
        ("type", record.type),
        ("credential_store_id", record.credential_store_id),
        ("retrieval_params", record.retrieval_params),
    ]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _dump(model: Any) -> dict[str, Any] | None:
    return model.to_dict() if model is not None else None


def _is_empty(value: Any) -> bool:
    return value is None or value == "" or value == [] or value == {}
