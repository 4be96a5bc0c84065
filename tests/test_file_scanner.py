"""Tests for the file scanner utility."""

import tempfile
from pathlib import Path

from agentsync.utils.file_scanner import (
    SKIP_DIRS,
    relative_posix,
    scan_project_files,
    scan_python_files,
)


def test_scan_finds_project_files_in_order():
    with tempfile.TemporaryDirectory() as tmpdir:
        root = Path(tmpdir)
        (root / "index.py").write_text("pass")
        (root / "tools").mkdir()
        (root / "tools" / "weather.py").write_text("pass")
        (root / "tools" / "README.md").write_text("# tools")

        files = scan_project_files(root)
        assert [relative_posix(f, root) for f in files] == [
            "index.py",
            "tools/README.md",
            "tools/weather.py",
        ]
        assert [f.name for f in scan_python_files(root)] == ["index.py", "weather.py"]


def test_scan_skips_excluded_and_hidden_dirs():
    with tempfile.TemporaryDirectory() as tmpdir:
        root = Path(tmpdir)
        (root / "agents").mkdir()
        (root / "agents" / "support.py").write_text("pass")
        (root / "__pycache__").mkdir()
        (root / "__pycache__" / "index.cpython-311.pyc").write_text("pass")
        (root / ".agentsync").mkdir()
        (root / ".agentsync" / "history.jsonl").write_text("{}")
        (root / ".idea").mkdir()
        (root / ".idea" / "workspace.xml").write_text("<x/>")

        files = scan_project_files(root)
        assert [relative_posix(f, root) for f in files] == ["agents/support.py"]


def test_skip_dirs_contains_expected():
    assert ".git" in SKIP_DIRS
    assert "__pycache__" in SKIP_DIRS
    assert ".agentsync" in SKIP_DIRS
