"""Sandbox validator — round-trip check of a candidate tree.

1. Static pre-check: the entry point parses and declares the expected
   project at the top level.
2. Evaluate the tree through the definition loader, in a subprocess.
3. Normalize SDK shorthands to the API form and decode.
4. Compare against the remote definition; any real difference fails.

A credential that has no value configured is tolerated: the attempt
passes with a warning, since fresh trees have no secrets filled in yet.
"""

from __future__ import annotations

import ast
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable

from pydantic import ValidationError

from agentsync.definition.comparator import (
    DEFAULT_VOLATILE_PATHS,
    ComparisonResult,
    compare_definitions,
)
from agentsync.definition.models import ComponentKind, ProjectDefinition
from agentsync.definition.normalize import derive_definition
from agentsync.errors import CredentialNotFoundError, LoaderError, ValidationMismatchError
from agentsync.sdk.loader import DefinitionLoader
from agentsync.sync.locator import scan_module

logger = logging.getLogger(__name__)

# Conditions that pass validation with a warning instead of failing it.
TOLERATED_CONDITIONS = frozenset({"credential"})


@dataclass
class ValidationWarning:
    kind: str
    message: str


@dataclass
class ValidationResult:
    comparison: ComparisonResult | None = None
    warnings: list[ValidationWarning] = field(default_factory=list)

    @property
    def fully_verified(self) -> bool:
        """False when a tolerated condition cut the round trip short."""
        return self.comparison is not None


def check_entry_point(root: Path, entry_point: str, project_id: str) -> None:
    """Cheap static check that the entry point declares the right project."""
    path = Path(root) / entry_point
    if not path.is_file():
        raise ValidationMismatchError(f"Entry point {entry_point} is missing")
    try:
        tree = ast.parse(path.read_text(encoding="utf-8"), filename=entry_point)
    except SyntaxError as exc:
        raise ValidationMismatchError(f"Entry point {entry_point} does not parse: {exc}") from exc

    declared = [
        loc.identifier
        for loc in scan_module(tree, entry_point)
        if loc.kind is ComponentKind.PROJECT and not loc.is_inline
    ]
    if not declared:
        raise ValidationMismatchError(f"Entry point {entry_point} declares no top-level project")
    if project_id not in declared:
        raise ValidationMismatchError(
            f"Entry point {entry_point} declares project {', '.join(map(repr, declared))}, "
            f"expected '{project_id}'"
        )


class SandboxValidator:
    def __init__(
        self,
        loader: DefinitionLoader,
        entry_point: str = "index.py",
        volatile_paths: Iterable[str] = DEFAULT_VOLATILE_PATHS,
    ):
        self.loader = loader
        self.entry_point = entry_point
        self.volatile_paths = tuple(volatile_paths)

    def validate(self, tree_root: Path, remote: ProjectDefinition) -> ValidationResult:
        """Validate the candidate tree at *tree_root* against *remote*.

        Raises ``ValidationMismatchError`` on any failure.
        """
        check_entry_point(tree_root, self.entry_point, remote.id)

        try:
            loaded = self.loader.load(tree_root, self.entry_point)
        except CredentialNotFoundError as exc:
            return self._tolerate("credential", str(exc))
        except LoaderError as exc:
            if exc.details:
                logger.debug("Loader output:\n%s", exc.details)
            raise ValidationMismatchError(f"Candidate tree failed to load: {exc}") from exc

        try:
            derived = derive_definition(loaded.definition)
        except ValidationError as exc:
            raise ValidationMismatchError(
                f"Candidate tree produced an invalid definition: {exc}"
            ) from exc

        result = ValidationResult()
        for cred_id in loaded.missing_credentials:
            message = f"Credential '{cred_id}' has no value configured"
            logger.warning(message)
            result.warnings.append(ValidationWarning("credential", message))

        comparison = compare_definitions(remote, derived, self.volatile_paths)
        for warning in comparison.warnings:
            logger.warning("Round trip: %s", warning.message)
        if not comparison.matches:
            for diff in comparison.differences:
                logger.info("Round-trip difference %s", diff.describe())
            raise ValidationMismatchError(
                f"Round trip differs from the remote definition in "
                f"{len(comparison.differences)} place(s)",
                comparison.differences,
            )

        result.comparison = comparison
        return result

    def _tolerate(self, kind: str, message: str) -> ValidationResult:
        if kind not in TOLERATED_CONDITIONS:
            raise ValidationMismatchError(message)
        logger.warning("Validation passed with a tolerated condition: %s", message)
        return ValidationResult(warnings=[ValidationWarning(kind, message)])
