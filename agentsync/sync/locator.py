"""Component locator — where each component is declared in the local tree.

Declarations are found by parsing every Python file with :mod:`ast` and
recognizing calls to the SDK builders; nothing is executed. A builder call
bound to a top-level name is an *exported* declaration. Any other builder
call (nested inside a list, another call, or a lambda) is *inline*.
"""

from __future__ import annotations

import ast
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator

from agentsync.definition.models import ComponentKind, component_key
from agentsync.sdk.builders import BUILDER_KINDS
from agentsync.utils.file_scanner import relative_posix, scan_python_files

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ComponentLocation:
    identifier: str
    kind: ComponentKind
    file_path: str  # POSIX path relative to the project root
    declared_name: str | None
    is_inline: bool
    lineno: int = 0
    # Declared name of the exported declaration an inline one is nested in.
    container: str | None = None

    @property
    def key(self) -> str:
        return component_key(self.kind, self.identifier)


class LocationIndex:
    """``type:identifier`` -> :class:`ComponentLocation` for one scan.

    An exported declaration takes precedence over an inline one of the same
    component.
    """

    def __init__(self) -> None:
        self._by_key: dict[str, ComponentLocation] = {}

    def add(self, location: ComponentLocation) -> None:
        current = self._by_key.get(location.key)
        if current is None or (current.is_inline and not location.is_inline):
            self._by_key[location.key] = location
        elif current != location:
            logger.debug(
                "Ignoring duplicate declaration of %s in %s (kept %s)",
                location.key, location.file_path, current.file_path,
            )

    def get(self, kind: ComponentKind, identifier: str) -> ComponentLocation | None:
        return self._by_key.get(component_key(kind, identifier))

    def files(self) -> set[str]:
        return {loc.file_path for loc in self._by_key.values()}

    def exported(self) -> LocationIndex:
        """A copy holding only the exported declarations."""
        index = LocationIndex()
        for location in self:
            if not location.is_inline:
                index.add(location)
        return index

    def __iter__(self) -> Iterator[ComponentLocation]:
        return iter(self._by_key.values())

    def __len__(self) -> int:
        return len(self._by_key)

    def __contains__(self, key: object) -> bool:
        return key in self._by_key


def locate_components(root: Path) -> LocationIndex:
    """Scan every Python file under *root* and index the declarations found.

    Files are visited in sorted path order; among equal declarations the first
    one wins, and an exported declaration always wins over an inline one.
    """
    index = LocationIndex()
    for path in scan_python_files(root):
        rel = relative_posix(path, root)
        try:
            tree = ast.parse(path.read_text(encoding="utf-8"), filename=rel)
        except (SyntaxError, UnicodeDecodeError, ValueError) as exc:
            logger.warning("Skipping %s: cannot parse (%s)", rel, exc)
            continue
        for location in scan_module(tree, rel):
            index.add(location)
    logger.debug("Located %d component(s) under %s", len(index), root)
    return index


def scan_module(tree: ast.Module, file_path: str) -> list[ComponentLocation]:
    """Detect builder declarations in one parsed module."""
    found: list[ComponentLocation] = []

    for stmt in tree.body:
        container = None
        exported_call = None
        target, value = top_level_binding(stmt)
        if target is not None and isinstance(value, ast.Call):
            kind = builder_kind(value)
            identifier = declared_identifier(value)
            if kind is not None and identifier is not None:
                container = target
                exported_call = value
                found.append(
                    ComponentLocation(identifier, kind, file_path, target, False, stmt.lineno)
                )

        for node in ast.walk(stmt):
            if not isinstance(node, ast.Call) or node is exported_call:
                continue
            kind = builder_kind(node)
            identifier = declared_identifier(node)
            if kind is None or identifier is None:
                continue
            found.append(
                ComponentLocation(
                    identifier, kind, file_path, None, True, node.lineno, container=container
                )
            )

    return found


def builder_kind(call: ast.Call) -> ComponentKind | None:
    """Component kind declared by *call*, from the builder it invokes."""
    func = call.func
    if isinstance(func, ast.Name):
        name = func.id
    elif isinstance(func, ast.Attribute):
        name = func.attr
    else:
        return None
    return BUILDER_KINDS.get(name)


def declared_identifier(call: ast.Call) -> str | None:
    """The constant ``id=`` keyword of a builder call, if present."""
    for kw in call.keywords:
        if kw.arg == "id" and isinstance(kw.value, ast.Constant) and isinstance(kw.value.value, str):
            return kw.value.value
    return None


def top_level_binding(stmt: ast.stmt) -> tuple[str | None, ast.expr | None]:
    if isinstance(stmt, ast.Assign) and len(stmt.targets) == 1:
        target = stmt.targets[0]
        if isinstance(target, ast.Name):
            return target.id, stmt.value
    elif isinstance(stmt, ast.AnnAssign) and isinstance(stmt.target, ast.Name) and stmt.value:
        return stmt.target.id, stmt.value
    return None, None
