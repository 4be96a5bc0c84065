"""Sandbox — a disposable candidate tree for one validation attempt.

Every unmodified project file is copied byte for byte so imports resolve
exactly as they will in the real tree, then the generated and merged files
are written over the copy. Files the sync removes are left out. Use as a
context manager so the scratch directory is removed however the attempt
ends::

    with Sandbox.create(root, candidate_files) as sandbox:
        validate(sandbox.path)
    # scratch directory is deleted here
"""

from __future__ import annotations

import logging
import shutil
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable

from agentsync.utils.file_scanner import relative_posix, scan_project_files

logger = logging.getLogger(__name__)


@dataclass
class Sandbox:
    """Tracks a scratch copy of the project plus the candidate files in it."""

    path: Path
    """Root of the scratch tree."""

    candidate_files: dict[str, str] = field(default_factory=dict)
    """Relative path -> text of every generated or merged file."""

    def __enter__(self) -> "Sandbox":
        return self

    def __exit__(self, *exc) -> None:
        self.cleanup()

    @classmethod
    def create(
        cls,
        root: Path,
        candidate_files: dict[str, str],
        scratch_dir: Path | None = None,
        removed: Iterable[str] = (),
    ) -> "Sandbox":
        """Materialize *candidate_files* over a copy of *root* without *removed*.

        The directory name carries a random suffix, so concurrent syncs never
        share a scratch tree.
        """
        if scratch_dir is not None:
            scratch_dir.mkdir(parents=True, exist_ok=True)
        path = Path(tempfile.mkdtemp(prefix="agentsync-", dir=scratch_dir))
        sandbox = cls(path=path, candidate_files=dict(candidate_files))
        skipped = set(removed)
        try:
            copied = 0
            for source in scan_project_files(root):
                rel = relative_posix(source, root)
                if rel in candidate_files or rel in skipped:
                    continue
                target = path / rel
                target.parent.mkdir(parents=True, exist_ok=True)
                shutil.copy2(source, target)
                copied += 1
            for rel, text in candidate_files.items():
                target = path / rel
                target.parent.mkdir(parents=True, exist_ok=True)
                target.write_text(text, encoding="utf-8")
        except BaseException:
            sandbox.cleanup()
            raise
        logger.debug(
            "Sandbox %s: %d copied file(s), %d candidate file(s)",
            path, copied, len(candidate_files),
        )
        return sandbox

    def cleanup(self) -> None:
        """Remove the scratch directory, if it still exists."""
        if self.path.exists():
            shutil.rmtree(self.path, ignore_errors=True)
