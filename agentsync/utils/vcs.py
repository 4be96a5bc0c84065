"""Git inspection — which files about to be overwritten carry local edits."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable

from git import InvalidGitRepositoryError, NoSuchPathError, Repo

logger = logging.getLogger(__name__)


def dirty_files(root: Path, paths: Iterable[str]) -> list[str]:
    """Return those of *paths* (relative to *root*) with uncommitted changes.

    Outside a git work tree this returns an empty list.
    """
    try:
        repo = Repo(root, search_parent_directories=True)
    except (InvalidGitRepositoryError, NoSuchPathError):
        return []
    if repo.bare or repo.working_tree_dir is None:
        return []

    work_tree = Path(repo.working_tree_dir).resolve()
    changed = {item.a_path for item in repo.index.diff(None)}
    if repo.head.is_valid():
        changed |= {item.a_path for item in repo.index.diff("HEAD")}

    dirty = []
    for rel in paths:
        target = (Path(root) / rel).resolve()
        try:
            repo_rel = target.relative_to(work_tree).as_posix()
        except ValueError:
            continue
        if repo_rel in changed:
            dirty.append(rel)
    return dirty


def warn_dirty(root: Path, paths: Iterable[str]) -> list[str]:
    """Log a warning for every file in *paths* with uncommitted changes."""
    dirty = dirty_files(root, paths)
    for rel in dirty:
        logger.warning("%s has uncommitted changes and will be overwritten", rel)
    return dirty
