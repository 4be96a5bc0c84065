"""Merge oracles — integrate canonical component text into existing files.

An oracle receives the current text of one file and the exact text of the
components to change in it, and returns the full merged file. The
oracle is not trusted: the sandbox validator checks every result.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol

from agentsync.codegen.renderer import ImportSpec
from agentsync.definition.models import ComponentKind


class MergeMode(Enum):
    ADD = "add"
    REPLACE = "replace"
    REMOVE = "remove"


@dataclass
class CanonicalComponent:
    """Exact text for one component, to be inserted or swapped in verbatim.

    A component to remove carries no text.
    """

    kind: ComponentKind
    identifier: str
    declared_name: str
    text: str
    mode: MergeMode
    is_inline: bool = False


@dataclass
class MergeRequest:
    path: str
    existing_text: str
    components: list[CanonicalComponent] = field(default_factory=list)
    imports: list[ImportSpec] = field(default_factory=list)
    # Imports of declarations that are being removed elsewhere.
    drop_imports: list[ImportSpec] = field(default_factory=list)

    @property
    def mode(self) -> MergeMode:
        modes = {c.mode for c in self.components}
        if MergeMode.REPLACE in modes:
            return MergeMode.REPLACE
        if modes == {MergeMode.REMOVE}:
            return MergeMode.REMOVE
        return MergeMode.ADD


@dataclass
class MergeResponse:
    merged_text: str
    warnings: list[str] = field(default_factory=list)


class MergeOracle(Protocol):
    name: str

    def merge(self, request: MergeRequest) -> MergeResponse:
        """Return the merged file text. Raises ``MergeError`` on any failure."""
        ...


__all__ = [
    "CanonicalComponent",
    "MergeMode",
    "MergeOracle",
    "MergeRequest",
    "MergeResponse",
]
