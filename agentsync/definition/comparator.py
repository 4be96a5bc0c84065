"""Definition comparator — structural diff between two definition trees.

The comparator separates real differences from noise. Absent fields,
``None`` and empty strings/collections are one value; volatile audit
fields and reordered identifier lists are reported as warnings only.
Every difference carries its path so a caller can attribute it to a
single component and field.
"""

from __future__ import annotations

import fnmatch
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable

from agentsync.definition.models import KINDS_BY_MAP_KEY, ComponentKind

# Patterns over record field paths with component ids left out, so a tool
# field is ``tools.createdAt`` and a sub-agent field is
# ``agents.subAgents.createdAt``. Only a record's own fields match;
# nothing nested inside a field value or a component id ever does.
DEFAULT_VOLATILE_PATHS: tuple[str, ...] = (
    "createdAt",
    "updatedAt",
    "*.createdAt",
    "*.updatedAt",
)


class DifferenceKind(Enum):
    ADDED = "added"  # Only in the remote definition
    REMOVED = "removed"  # Only in the local definition
    CHANGED = "changed"  # Present on both sides with different values


class WarningKind(Enum):
    VOLATILE = "volatile"  # Audit/timestamp field differs
    REORDERED = "reordered"  # Same identifiers, different order


@dataclass
class Difference:
    """A real, semantic difference at one path."""

    parts: tuple[str, ...]
    kind: DifferenceKind
    remote: Any = None
    local: Any = None

    @property
    def path(self) -> str:
        return ".".join(self.parts)

    def describe(self) -> str:
        if self.kind is DifferenceKind.ADDED:
            return f"+ {self.path}"
        if self.kind is DifferenceKind.REMOVED:
            return f"- {self.path}"
        return f"~ {self.path}: {_short(self.local)} -> {_short(self.remote)}"


@dataclass
class ComparisonWarning:
    """A non-semantic difference. Never fails a sync."""

    parts: tuple[str, ...]
    kind: WarningKind
    message: str

    @property
    def path(self) -> str:
        return ".".join(self.parts)


@dataclass
class ComparisonResult:
    project_id: str
    differences: list[Difference] = field(default_factory=list)
    warnings: list[ComparisonWarning] = field(default_factory=list)

    @property
    def matches(self) -> bool:
        return not self.differences

    def changed_components(self) -> list[tuple[ComponentKind, str]]:
        """Components touched by at least one difference, in first-seen order."""
        seen: dict[tuple[ComponentKind, str], None] = {}
        for diff in self.differences:
            owner = attribute_path(diff.parts, self.project_id)
            if owner is not None:
                seen.setdefault(owner, None)
        return list(seen)

    def summary(self) -> str:
        if self.matches:
            return f"{self.project_id}: definitions match ({len(self.warnings)} warning(s))"
        return (
            f"{self.project_id}: {len(self.differences)} difference(s) across "
            f"{len(self.changed_components())} component(s), {len(self.warnings)} warning(s)"
        )


def compare_definitions(
    remote: Any,
    local: Any | None,
    volatile_paths: Iterable[str] = DEFAULT_VOLATILE_PATHS,
) -> ComparisonResult:
    """Compare a remote definition against a local one.

    Both sides may be ``ProjectDefinition`` models or API-form dicts. A
    missing local definition compares as empty, so every remote component
    shows up as added.
    """
    remote_data = _as_dict(remote)
    local_data = _as_dict(local) if local is not None else {}
    result = ComparisonResult(project_id=str(remote_data.get("id", "")))
    _compare(remote_data, local_data, (), tuple(volatile_paths), result)
    return result


def attribute_path(
    parts: tuple[str, ...], project_id: str
) -> tuple[ComponentKind, str] | None:
    """Map a difference path to the component that owns it."""
    if not parts:
        return None
    head = parts[0]
    if head == "agents":
        if len(parts) < 2:
            return None
        if len(parts) >= 4 and parts[2] == "subAgents":
            return ComponentKind.SUB_AGENT, parts[3]
        return ComponentKind.AGENT, parts[1]
    if head in KINDS_BY_MAP_KEY:
        if len(parts) < 2:
            return None
        return KINDS_BY_MAP_KEY[head], parts[1]
    return ComponentKind.PROJECT, project_id


# ---------------------------------------------------------------------------
# Recursive comparison
# ---------------------------------------------------------------------------


def _compare(
    remote: Any,
    local: Any,
    parts: tuple[str, ...],
    volatile: tuple[str, ...],
    result: ComparisonResult,
) -> None:
    remote = None if _is_empty(remote) else remote
    local = None if _is_empty(local) else local

    if _is_volatile(parts, volatile):
        if remote != local:
            result.warnings.append(
                ComparisonWarning(parts, WarningKind.VOLATILE, f"volatile field differs: {'.'.join(parts)}")
            )
        return

    if remote is None and local is None:
        return

    if _is_mapping_or_none(remote) and _is_mapping_or_none(local):
        remote_map = remote or {}
        local_map = local or {}
        keys = list(remote_map)
        keys.extend(k for k in local_map if k not in remote_map)
        for key in keys:
            _compare(remote_map.get(key), local_map.get(key), parts + (str(key),), volatile, result)
        return

    if isinstance(remote, list) and isinstance(local, list):
        _compare_lists(remote, local, parts, volatile, result)
        return

    if isinstance(remote, list) and local is None and any(isinstance(i, dict) for i in remote):
        _compare_lists(remote, [], parts, volatile, result)
        return
    if isinstance(local, list) and remote is None and any(isinstance(i, dict) for i in local):
        _compare_lists([], local, parts, volatile, result)
        return

    if remote is None:
        result.differences.append(Difference(parts, DifferenceKind.REMOVED, local=local))
    elif local is None:
        result.differences.append(Difference(parts, DifferenceKind.ADDED, remote=remote))
    elif remote != local:
        result.differences.append(Difference(parts, DifferenceKind.CHANGED, remote=remote, local=local))


def _compare_lists(
    remote: list,
    local: list,
    parts: tuple[str, ...],
    volatile: tuple[str, ...],
    result: ComparisonResult,
) -> None:
    if remote == local:
        return

    if _all_scalars(remote) and _all_scalars(local):
        if sorted(map(repr, remote)) == sorted(map(repr, local)):
            result.warnings.append(
                ComparisonWarning(parts, WarningKind.REORDERED, f"list order differs: {'.'.join(parts)}")
            )
        else:
            result.differences.append(
                Difference(parts, DifferenceKind.CHANGED, remote=remote, local=local)
            )
        return

    for index in range(max(len(remote), len(local))):
        remote_item = remote[index] if index < len(remote) else None
        local_item = local[index] if index < len(local) else None
        _compare(remote_item, local_item, parts + (str(index),), volatile, result)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _as_dict(value: Any) -> dict:
    if hasattr(value, "to_dict"):
        return value.to_dict()
    return dict(value)


def _is_empty(value: Any) -> bool:
    return value is None or value == "" or value == [] or value == {}


def _is_mapping_or_none(value: Any) -> bool:
    return value is None or isinstance(value, dict)


def _all_scalars(items: list) -> bool:
    return all(not isinstance(i, (dict, list)) for i in items)


def record_field_path(parts: tuple[str, ...]) -> str | None:
    """Id-free path of a record's own field, or None when *parts* is not one."""
    head = parts[0] if parts else None
    if len(parts) == 1:
        return None if head in KINDS_BY_MAP_KEY else head
    if head == "agents" and len(parts) == 5 and parts[2] == "subAgents":
        return f"agents.subAgents.{parts[4]}"
    if head in KINDS_BY_MAP_KEY and len(parts) == 3:
        return f"{head}.{parts[2]}"
    return None


def _is_volatile(parts: tuple[str, ...], patterns: tuple[str, ...]) -> bool:
    path = record_field_path(parts)
    if path is None:
        return False
    return any(fnmatch.fnmatchcase(path, pattern) for pattern in patterns)


def _short(value: Any, limit: int = 48) -> str:
    text = repr(value)
    return text if len(text) <= limit else text[: limit - 3] + "..."
