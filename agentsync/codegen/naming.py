"""Naming context — one stable declared name and file path per component.

Built once at the start of a sync and passed explicitly to every renderer
call, so all files that mention a component agree on its name. Components
that already have an exported declaration keep the name they are declared
under. Everything else gets a fresh name derived from its identifier, with
collisions broken by a kind suffix and then a counter.
"""

from __future__ import annotations

import keyword
import re
from typing import Iterable

from agentsync.definition.models import ComponentKind, ProjectDefinition, component_key, iter_components
from agentsync.errors import StructuralDefectError
from agentsync.sdk.builders import BUILDER_NAMES
from agentsync.sync.locator import LocationIndex

# Directory that newly generated components of each kind are written to.
AREAS: dict[ComponentKind, str] = {
    ComponentKind.AGENT: "agents",
    ComponentKind.TOOL: "tools",
    ComponentKind.FUNCTION_TOOL: "tools",
    ComponentKind.FUNCTION: "functions",
    ComponentKind.DATA_COMPONENT: "data_components",
    ComponentKind.ARTIFACT_COMPONENT: "artifact_components",
    ComponentKind.STATUS_COMPONENT: "status_components",
    ComponentKind.CREDENTIAL: "credentials",
}

# Fresh names are handed out in this order.
KIND_PRIORITY: tuple[ComponentKind, ...] = (
    ComponentKind.PROJECT,
    ComponentKind.AGENT,
    ComponentKind.SUB_AGENT,
    ComponentKind.TOOL,
    ComponentKind.FUNCTION_TOOL,
    ComponentKind.FUNCTION,
    ComponentKind.DATA_COMPONENT,
    ComponentKind.ARTIFACT_COMPONENT,
    ComponentKind.STATUS_COMPONENT,
    ComponentKind.CREDENTIAL,
)

RESERVED_NAMES: frozenset[str] = frozenset(keyword.kwlist) | frozenset(BUILDER_NAMES)

_DELIMITED = re.compile(r"[-_\s.]+(.)")
_NON_ALNUM = re.compile(r"[^A-Za-z0-9]")


def to_declared_name(identifier: str) -> str:
    """Derive a camelCase declared name from a component identifier.

    >>> to_declared_name("weather-forecast")
    'weatherForecast'
    >>> to_declared_name("3d-model")
    '_3dModel'
    """
    text = identifier.lower()
    text = _DELIMITED.sub(lambda m: m.group(1).upper(), text)
    text = _NON_ALNUM.sub("", text)
    if not text:
        text = "component"
    if text[0].isdigit():
        text = "_" + text
    return text


def to_module_stem(identifier: str) -> str:
    """Derive a snake_case module stem from a component identifier."""
    text = re.sub(r"([a-z0-9])([A-Z])", r"\1_\2", identifier).lower()
    text = re.sub(r"[^a-z0-9]+", "_", text).strip("_")
    if not text:
        text = "component"
    if text[0].isdigit():
        text = "_" + text
    if keyword.iskeyword(text):
        text += "_"
    return text


def ensure_unique(base: str, kind: ComponentKind, used: set[str]) -> str:
    """Return *base*, or the first free ``base<Kind>``, ``base<Kind>2``, ... variant."""
    if base not in used and base not in RESERVED_NAMES:
        return base
    candidate = base + kind.suffix
    if candidate not in used:
        return candidate
    counter = 2
    while f"{candidate}{counter}" in used:
        counter += 1
    return f"{candidate}{counter}"


def path_to_module(path: str) -> str:
    """``tools/weather_forecast.py`` -> ``tools.weather_forecast``."""
    stem = path[:-3] if path.endswith(".py") else path
    parts = stem.split("/")
    if parts[-1] == "__init__":
        parts = parts[:-1]
    return ".".join(parts)


class NamingContext:
    """Declared names and file paths for every component of one sync."""

    def __init__(self, entry_point: str = "index.py") -> None:
        self.entry_point = entry_point
        self._names: dict[str, str] = {}
        self._paths: dict[str, str] = {}
        self._owners: dict[str, str] = {}  # declared name -> component key
        self._parents: dict[str, str] = {}  # sub-agent id -> agent id

    @classmethod
    def build(
        cls,
        definition: ProjectDefinition,
        locations: LocationIndex,
        existing_files: Iterable[str] = (),
        entry_point: str = "index.py",
    ) -> NamingContext:
        ctx = cls(entry_point)
        components = list(iter_components(definition))
        components.sort(key=lambda c: KIND_PRIORITY.index(c[0]))

        # Names already exported in the tree are taken, remote or not.
        for loc in locations:
            if loc.declared_name:
                ctx._owners.setdefault(loc.declared_name, loc.key)

        claimed: dict[str, str] = {}
        for kind, identifier, _record, parent in components:
            key = component_key(kind, identifier)
            if parent is not None:
                ctx._parents[identifier] = parent
            loc = locations.get(kind, identifier)
            if loc is None or not loc.declared_name:
                continue
            other = claimed.get(loc.declared_name)
            if other is not None:
                raise StructuralDefectError(
                    f"Declared name '{loc.declared_name}' is used by both {other} and {key}"
                )
            claimed[loc.declared_name] = key
            ctx._names[key] = loc.declared_name
            ctx._owners[loc.declared_name] = key

        used = set(ctx._owners)
        for kind, identifier, _record, _parent in components:
            key = component_key(kind, identifier)
            if key in ctx._names:
                continue
            name = ensure_unique(to_declared_name(identifier), kind, used)
            used.add(name)
            ctx._names[key] = name
            ctx._owners[name] = key

        taken_paths = set(existing_files)
        taken_paths.update(loc.file_path for loc in locations)
        for kind, identifier, _record, parent in components:
            key = component_key(kind, identifier)
            loc = locations.get(kind, identifier)
            if kind is ComponentKind.PROJECT:
                path = entry_point
            elif loc is not None:
                path = loc.file_path
            elif kind is ComponentKind.SUB_AGENT:
                path = ctx._paths[component_key(ComponentKind.AGENT, parent)]
            else:
                path = _allocate_path(AREAS[kind], to_module_stem(identifier), taken_paths)
            taken_paths.add(path)
            ctx._paths[key] = path

        return ctx

    # -- lookups -------------------------------------------------------------

    def has(self, kind: ComponentKind, identifier: str) -> bool:
        return component_key(kind, identifier) in self._names

    def name_for(self, kind: ComponentKind, identifier: str) -> str:
        try:
            return self._names[component_key(kind, identifier)]
        except KeyError:
            raise StructuralDefectError(
                f"No declared name for {kind.value} '{identifier}'"
            ) from None

    def path_for(self, kind: ComponentKind, identifier: str) -> str:
        try:
            return self._paths[component_key(kind, identifier)]
        except KeyError:
            raise StructuralDefectError(
                f"No file path for {kind.value} '{identifier}'"
            ) from None

    def module_for(self, kind: ComponentKind, identifier: str) -> str:
        return path_to_module(self.path_for(kind, identifier))

    def parent_of(self, sub_agent_id: str) -> str | None:
        return self._parents.get(sub_agent_id)

    def owner_of(self, declared_name: str) -> str | None:
        """``type:identifier`` key of the component declared under *declared_name*."""
        return self._owners.get(declared_name)

    def tool_kind(self, tool_id: str) -> ComponentKind:
        """Resolve a ``canUse`` tool id to the kind it is declared as."""
        for kind in (ComponentKind.TOOL, ComponentKind.FUNCTION_TOOL):
            if self.has(kind, tool_id):
                return kind
        raise StructuralDefectError(f"Sub-agent uses unknown tool '{tool_id}'")


def _allocate_path(area: str, stem: str, taken: set[str]) -> str:
    path = f"{area}/{stem}.py"
    counter = 2
    while path in taken:
        path = f"{area}/{stem}_{counter}.py"
        counter += 1
    return path
