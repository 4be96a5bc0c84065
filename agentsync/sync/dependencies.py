"""Dependency resolver — which remote components a component references.

Only identifiers present in the remote definition are ever returned; a
dangling reference is dropped and logged, never surfaced, because only
remote-known components are guaranteed to be importable.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterable

from agentsync.codegen.naming import NamingContext, path_to_module
from agentsync.codegen.renderer import ImportSpec, project_members
from agentsync.definition.models import ComponentKind, ProjectDefinition

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ComponentDependency:
    kind: ComponentKind
    identifier: str
    via: str  # field the reference comes from, e.g. "canUse"


def component_references(
    kind: ComponentKind, record: Any, definition: ProjectDefinition
) -> list[ComponentDependency]:
    """Every reference *record* makes, before filtering against the definition."""
    refs: list[ComponentDependency] = []
    if kind is ComponentKind.PROJECT:
        for via, members in project_members(record).items():
            refs.extend(ComponentDependency(k, i, via) for k, i in members)
    elif kind is ComponentKind.AGENT:
        for sub_id in record.sub_agents:
            refs.append(ComponentDependency(ComponentKind.SUB_AGENT, sub_id, "subAgents"))
        if record.status_updates is not None:
            for status_id in record.status_updates.status_components:
                refs.append(
                    ComponentDependency(ComponentKind.STATUS_COMPONENT, status_id, "statusUpdates")
                )
    elif kind is ComponentKind.SUB_AGENT:
        for use in record.can_use:
            tool_kind = definition.find_tool_kind(use.tool_id) or ComponentKind.TOOL
            refs.append(ComponentDependency(tool_kind, use.tool_id, "canUse"))
        for sub_id in record.can_transfer_to:
            refs.append(ComponentDependency(ComponentKind.SUB_AGENT, sub_id, "canTransferTo"))
        for target in record.can_delegate_to:
            refs.append(
                ComponentDependency(ComponentKind.SUB_AGENT, target.sub_agent_id, "canDelegateTo")
            )
        for data_id in record.data_components:
            refs.append(ComponentDependency(ComponentKind.DATA_COMPONENT, data_id, "dataComponents"))
        for artifact_id in record.artifact_components:
            refs.append(
                ComponentDependency(
                    ComponentKind.ARTIFACT_COMPONENT, artifact_id, "artifactComponents"
                )
            )
    elif kind is ComponentKind.TOOL:
        if record.credential_reference_id:
            refs.append(
                ComponentDependency(
                    ComponentKind.CREDENTIAL, record.credential_reference_id, "credentialReferenceId"
                )
            )
    elif kind is ComponentKind.FUNCTION_TOOL:
        refs.append(ComponentDependency(ComponentKind.FUNCTION, record.function_id, "functionId"))
    return refs


def resolve_dependencies(
    definition: ProjectDefinition,
    components: Iterable[tuple[ComponentKind, str]],
) -> dict[tuple[ComponentKind, str], list[ComponentDependency]]:
    """Map each ``(kind, identifier)`` to the remote components it references."""
    resolved: dict[tuple[ComponentKind, str], list[ComponentDependency]] = {}
    for kind, identifier in components:
        record = definition.get_component(kind, identifier)
        if record is None:
            resolved[(kind, identifier)] = []
            continue
        deps: list[ComponentDependency] = []
        seen: set[tuple[ComponentKind, str]] = set()
        for dep in component_references(kind, record, definition):
            if definition.get_component(dep.kind, dep.identifier) is None:
                logger.debug(
                    "%s '%s' references unknown %s '%s' via %s; dropped",
                    kind.value, identifier, dep.kind.value, dep.identifier, dep.via,
                )
                continue
            if (dep.kind, dep.identifier) not in seen:
                seen.add((dep.kind, dep.identifier))
                deps.append(dep)
        resolved[(kind, identifier)] = deps
    return resolved


def dependency_imports(
    dependencies: Iterable[ComponentDependency],
    naming: NamingContext,
    path: str,
    local_names: set[str] = frozenset(),
) -> list[ImportSpec]:
    """Import statements a module at *path* needs for *dependencies*."""
    module = path_to_module(path)
    specs: dict[ImportSpec, None] = {}
    for dep in dependencies:
        name = naming.name_for(dep.kind, dep.identifier)
        target = naming.module_for(dep.kind, dep.identifier)
        if target == module or name in local_names:
            continue
        specs.setdefault(ImportSpec(target, name), None)
    return list(specs)
