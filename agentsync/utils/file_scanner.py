"""File scanner — enumerate the files of a local project tree."""

from pathlib import Path

# Directories to always skip
SKIP_DIRS = {
    ".git", "__pycache__", "node_modules", ".venv", "venv", ".env",
    "dist", "build", ".tox", ".mypy_cache", ".pytest_cache", ".ruff_cache",
    ".agentsync", "coverage",
}


def scan_project_files(root: Path) -> list[Path]:
    """Recursively list every file under *root*, sorted by relative path.

    Skips common non-source directories and hidden paths.
    """
    files = []
    for item in root.rglob("*"):
        if item.is_file() and _should_include(item.relative_to(root)):
            files.append(item)
    return sorted(files, key=lambda p: p.relative_to(root).as_posix())


def scan_python_files(root: Path) -> list[Path]:
    """Like :func:`scan_project_files`, restricted to ``.py`` sources."""
    return [p for p in scan_project_files(root) if p.suffix == ".py"]


def relative_posix(path: Path, root: Path) -> str:
    return path.relative_to(root).as_posix()


def _should_include(relative: Path) -> bool:
    """Check if a file (given relative to the root) belongs to the project."""
    for part in relative.parts:
        if part in SKIP_DIRS or part.startswith("."):
            return False
    return True
