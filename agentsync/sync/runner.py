"""Sync runner — the full sync of one project tree.

fetch remote -> load local -> compare -> locate -> name -> classify ->
Pass 1 once -> { Pass 2 -> sandbox -> validate } up to N attempts ->
confirm -> promote -> record history.

With ``regenerate`` the merge passes are skipped: every component module
and the entry point are rendered from scratch, then validated the same way.

The real project directory is written only by :meth:`SyncRunner.promote`,
and only after an attempt validated.
"""

from __future__ import annotations

import logging
import os
import tempfile
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Iterable

from pydantic import ValidationError

from agentsync.codegen.naming import NamingContext
from agentsync.config import MergeStrategy, SyncConfig
from agentsync.definition.comparator import ComparisonResult, compare_definitions
from agentsync.definition.models import ProjectDefinition, decode_definition
from agentsync.definition.normalize import derive_definition
from agentsync.errors import (
    ConfigError,
    LoaderError,
    MergeError,
    RemoteError,
    RetriesExhaustedError,
    SyncCancelledError,
    ValidationMismatchError,
)
from agentsync.llm.client import DEFAULT_MODEL, LLMClient
from agentsync.merge import MergeOracle
from agentsync.merge.llm_oracle import LLMMergeOracle
from agentsync.merge.splice import SpliceMergeOracle
from agentsync.remote import RemoteDefinitionSource
from agentsync.remote.api import ManageApiClient
from agentsync.remote.file_source import FileDefinitionSource
from agentsync.sdk.loader import DefinitionLoader, SubprocessDefinitionLoader
from agentsync.sync.history import SyncHistory, SyncRecord
from agentsync.sync.locator import LocationIndex, locate_components
from agentsync.sync.orchestrator import (
    ChangeClassification,
    ChangeRecord,
    TwoPassOrchestrator,
    classify_changes,
)
from agentsync.sync.sandbox import Sandbox
from agentsync.sync.validator import SandboxValidator
from agentsync.utils.file_scanner import relative_posix, scan_project_files
from agentsync.utils.vcs import warn_dirty

logger = logging.getLogger(__name__)

ConfirmCallback = Callable[[list[ChangeRecord], list[str], list[str]], bool]


class SyncStatus(Enum):
    UP_TO_DATE = "up_to_date"
    PROMOTED = "promoted"
    DRY_RUN = "dry_run"


@dataclass
class SyncResult:
    status: SyncStatus
    project_id: str
    comparison: ComparisonResult
    changes: list[ChangeRecord] = field(default_factory=list)
    files: list[str] = field(default_factory=list)
    attempts: int = 0
    warnings: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)


@dataclass
class DiffReport:
    comparison: ComparisonResult
    changes: list[ChangeRecord] = field(default_factory=list)
    local_loaded: bool = True


# ---------------------------------------------------------------------------
# Collaborator factories
# ---------------------------------------------------------------------------


def build_oracle(config: SyncConfig) -> MergeOracle:
    """Pick the merge oracle for ``config.merge_strategy``."""
    if config.merge_strategy is MergeStrategy.SPLICE:
        return SpliceMergeOracle()

    client = LLMClient(
        model=config.merge_model or DEFAULT_MODEL,
        timeout=config.merge_timeout,
    )
    if client.configured:
        return LLMMergeOracle(client)
    if config.merge_strategy is MergeStrategy.LLM:
        raise ConfigError("merge_strategy is 'llm' but ANTHROPIC_API_KEY is not set")
    logger.warning("ANTHROPIC_API_KEY is not set; falling back to the splice merge oracle")
    return SpliceMergeOracle()


def build_source(config: SyncConfig, definition_file: str | Path | None = None) -> RemoteDefinitionSource:
    """A file source when *definition_file* is given, else the manage API."""
    if definition_file:
        return FileDefinitionSource(definition_file)
    if not config.api_url:
        raise ConfigError("api_url is not configured (or pass a definition file)")
    return ManageApiClient(config.api_url, tenant_id=config.tenant_id, api_key=config.api_key)


# ---------------------------------------------------------------------------
# Runner
# ---------------------------------------------------------------------------


class SyncRunner:
    """Runs one sync of the tree at *root* against a remote definition source.

    Args:
        root: Project root of the local tree.
        config: Loaded configuration; ``project_id`` must be set.
        source: Where the remote definition comes from.
        oracle: Merge oracle for Pass 2 (default: per ``merge_strategy``).
        loader: Definition loader (default: a subprocess loader).
        confirm: Called with the changes, the files to write and the files
            to remove before promotion; a false return cancels the sync. ``None`` promotes unasked.
    """

    def __init__(
        self,
        root: str | Path,
        config: SyncConfig,
        source: RemoteDefinitionSource,
        oracle: MergeOracle | None = None,
        loader: DefinitionLoader | None = None,
        confirm: ConfirmCallback | None = None,
    ):
        if not config.project_id:
            raise ConfigError("project_id is not configured")
        self.root = Path(root).resolve()
        self.config = config
        self.source = source
        self.oracle = oracle
        self.loader = loader or SubprocessDefinitionLoader(timeout=config.load_timeout)
        self.confirm = confirm

    # -- inputs ----------------------------------------------------------------

    def fetch_remote(self) -> ProjectDefinition:
        project_id = self.config.project_id
        data = self.source.get_full_definition(project_id)
        try:
            remote = decode_definition(data)
        except ValidationError as exc:
            raise RemoteError(f"Remote definition of '{project_id}' is malformed: {exc}") from exc
        if remote.id != project_id:
            raise RemoteError(f"Remote returned project '{remote.id}', expected '{project_id}'")
        return remote

    def load_local(self) -> ProjectDefinition | None:
        """Derive the definition the local tree encodes; None if it cannot."""
        entry = self.root / self.config.entry_point
        if not entry.is_file():
            logger.info("No entry point at %s; treating the tree as empty", entry)
            return None
        try:
            loaded = self.loader.load(self.root, self.config.entry_point)
            return derive_definition(loaded.definition)
        except LoaderError as exc:
            logger.warning("Local tree could not be loaded: %s", exc)
            if exc.details:
                logger.debug("Loader output:\n%s", exc.details)
        except ValidationError as exc:
            logger.warning("Local tree encodes an invalid definition: %s", exc)
        return None

    def compare(self, remote: ProjectDefinition, local: ProjectDefinition | None) -> ComparisonResult:
        comparison = compare_definitions(remote, local, self.config.volatile_paths)
        for warning in comparison.warnings:
            logger.warning("Ignored difference: %s", warning.message)
        logger.info(comparison.summary())
        return comparison

    def _naming(self, remote: ProjectDefinition, locations: LocationIndex) -> NamingContext:
        existing = [relative_posix(p, self.root) for p in scan_project_files(self.root)]
        return NamingContext.build(remote, locations, existing, self.config.entry_point)

    # -- commands --------------------------------------------------------------

    def diff(self) -> DiffReport:
        """Compare without generating anything."""
        remote = self.fetch_remote()
        local = self.load_local()
        comparison = self.compare(remote, local)
        if comparison.matches:
            return DiffReport(comparison, local_loaded=local is not None)

        locations = locate_components(self.root)
        naming = self._naming(remote, locations)
        changes = classify_changes(comparison, remote, locations, local)
        for change in changes:
            if change.classification is ChangeClassification.DELETED:
                loc = locations.get(change.kind, change.identifier)
                change.path = loc.file_path if loc else None
            else:
                change.path = naming.path_for(change.kind, change.identifier)
        return DiffReport(comparison, changes, local_loaded=local is not None)

    def run(
        self,
        dry_run: bool = False,
        clean_stale: bool = False,
        regenerate: bool = False,
    ) -> SyncResult:
        """Sync the tree. Raises ``SyncError`` subclasses on failure.

        Args:
            dry_run: Validate, then stop before writing.
            clean_stale: Remove declarations of components the remote
                definition no longer has.
            regenerate: Render every component file from scratch instead of
                merging, even when the tree is up to date.
        """
        remote = self.fetch_remote()
        local = self.load_local()
        comparison = self.compare(remote, local)
        if comparison.matches and not regenerate:
            logger.info("Project '%s' is already up to date", remote.id)
            return SyncResult(SyncStatus.UP_TO_DATE, remote.id, comparison)

        locations = locate_components(self.root)
        changes = classify_changes(comparison, remote, locations, local)
        for change in changes:
            logger.info("Change: %s", change.describe())

        if regenerate:
            # Inline components get modules of their own.
            locations = locations.exported()
        naming = self._naming(remote, locations)
        orchestrator = TwoPassOrchestrator(
            self.root, remote, naming, locations, clean_stale=clean_stale
        )
        plan = orchestrator.regenerate(changes) if regenerate else orchestrator.plan(changes)

        oracle = self.oracle or build_oracle(self.config)
        validator = SandboxValidator(
            self.loader, self.config.entry_point, self.config.volatile_paths
        )

        max_attempts = self.config.max_attempts
        last_error: Exception | None = None
        for attempt in range(1, max_attempts + 1):
            logger.info("Attempt %d/%d", attempt, max_attempts)
            try:
                outcome = orchestrator.merge(plan, oracle)
                candidate = {**plan.generated, **outcome.files}
                with Sandbox.create(
                    self.root, candidate, self.config.scratch_dir, removed=plan.removed
                ) as sandbox:
                    validation = validator.validate(sandbox.path, remote)
            except (MergeError, ValidationMismatchError) as exc:
                last_error = exc
                logger.warning("Attempt %d/%d failed: %s", attempt, max_attempts, exc)
                continue
            break
        else:
            raise RetriesExhaustedError(max_attempts, last_error)

        warnings = [w.message for w in comparison.warnings]
        warnings += outcome.warnings
        warnings += [w.message for w in validation.warnings]

        files = sorted(candidate)
        removed = list(plan.removed)
        if dry_run:
            logger.info("Dry run: %d file(s) validated, nothing written", len(files))
            return SyncResult(
                SyncStatus.DRY_RUN, remote.id, comparison, changes, files, attempt, warnings, removed
            )

        if self.confirm is not None and not self.confirm(changes, files, removed):
            raise SyncCancelledError("Promotion declined; the project tree was not modified")

        warn_dirty(self.root, files + removed)
        written = self.promote(candidate, removed)

        SyncHistory(self.root).record(
            SyncRecord(
                project_id=remote.id,
                files=written,
                removed=removed,
                attempts=attempt,
                warnings=warnings,
                merge_strategy="regenerate" if regenerate else oracle.name,
            )
        )
        return SyncResult(
            SyncStatus.PROMOTED, remote.id, comparison, changes, written, attempt, warnings, removed
        )

    # -- promotion -------------------------------------------------------------

    def promote(self, files: dict[str, str], removed: Iterable[str] = ()) -> list[str]:
        """Write *files* into the real tree, all or nothing, then delete *removed*.

        Every file is first staged next to its target, then moved into place
        with ``os.replace``. Files whose content is unchanged are skipped.
        Returns the paths written.
        """
        staged: list[tuple[Path, Path]] = []
        created_dirs: list[Path] = []
        try:
            for rel in sorted(files):
                target = self.root / rel
                text = files[rel]
                if target.is_file() and target.read_text(encoding="utf-8") == text:
                    continue
                created_dirs.extend(_make_parents(target.parent))
                fd, tmp = tempfile.mkstemp(prefix=f".{target.name}.", suffix=".tmp", dir=target.parent)
                with os.fdopen(fd, "w", encoding="utf-8", newline="") as f:
                    f.write(text)
                staged.append((Path(tmp), target))
        except OSError:
            for tmp, _target in staged:
                tmp.unlink(missing_ok=True)
            for directory in reversed(created_dirs):
                if directory.exists() and not any(directory.iterdir()):
                    directory.rmdir()
            raise

        written = []
        for tmp, target in staged:
            os.replace(tmp, target)
            written.append(relative_posix(target, self.root))
        removed = sorted(removed)
        for rel in removed:
            (self.root / rel).unlink(missing_ok=True)
        logger.info("Promoted %d file(s), removed %d", len(written), len(removed))
        return written


def _make_parents(directory: Path) -> list[Path]:
    """Create *directory* and missing parents; return those created, outermost first."""
    missing = []
    while not directory.exists():
        missing.append(directory)
        directory = directory.parent
    missing.reverse()
    for d in missing:
        d.mkdir()
    return missing
