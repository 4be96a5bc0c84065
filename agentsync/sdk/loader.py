"""Definition loader — evaluate a project tree and derive its definition.

The sync engine never imports a project tree into its own process. It runs
this module in a fresh interpreter (``python -m agentsync.sdk.loader ROOT``)
and reads one JSON document from its stdout:

    {"status": "ok", "definition": {...}, "missingCredentials": [...]}
    {"status": "credential_not_found", "message": "..."}          exit 3
    {"status": "error", "message": "...", "traceback": "..."}    exit 1
"""

from __future__ import annotations

import contextlib
import json
import os
import runpy
import subprocess
import sys
import traceback
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol

import click

from agentsync.errors import CredentialNotFoundError, LoaderError
from agentsync.sdk.builders import Project

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_CREDENTIAL = 3


@dataclass
class LoadResult:
    """SDK-form definition derived from a tree, plus unset credentials."""

    definition: dict[str, Any]
    missing_credentials: list[str] = field(default_factory=list)


class DefinitionLoader(Protocol):
    def load(self, root: Path, entry_point: str) -> LoadResult: ...


def find_project(namespace: dict[str, Any]) -> Project:
    """The single ``Project`` bound at the top level of an entry point."""
    projects: list[Project] = []
    for value in namespace.values():
        if isinstance(value, Project) and not any(value is p for p in projects):
            projects.append(value)
    if not projects:
        raise LoaderError("Entry point does not declare a project")
    if len(projects) > 1:
        ids = ", ".join(p.id for p in projects)
        raise LoaderError(f"Entry point declares more than one project: {ids}")
    return projects[0]


def load_definition(root: str | Path, entry_point: str = "index.py") -> LoadResult:
    """Evaluate *entry_point* under *root* in this process.

    Meant for the loader subprocess; the tree's modules stay cached in
    ``sys.modules`` afterwards.
    """
    root = Path(root).resolve()
    entry = root / entry_point
    if not entry.is_file():
        raise LoaderError(f"Entry point not found: {entry}")

    sys.path.insert(0, str(root))
    try:
        namespace = runpy.run_path(str(entry), run_name="__agentsync_entry__")
    finally:
        sys.path.remove(str(root))

    found = find_project(namespace)
    return LoadResult(
        definition=found.get_full_definition(),
        missing_credentials=found.missing_credentials(),
    )


class SubprocessDefinitionLoader:
    """Runs :mod:`agentsync.sdk.loader` against a tree in a child interpreter."""

    def __init__(self, timeout: float = 60, python: str | None = None):
        self.timeout = timeout
        self.python = python or sys.executable

    def load(self, root: Path, entry_point: str = "index.py") -> LoadResult:
        root = Path(root).resolve()
        env = dict(os.environ)
        env["PYTHONPATH"] = os.pathsep.join(
            p for p in (str(root), env.get("PYTHONPATH", "")) if p
        )
        # Loading the real tree must not leave __pycache__ behind.
        env["PYTHONDONTWRITEBYTECODE"] = "1"
        cmd = [self.python, "-m", "agentsync.sdk.loader", str(root), "--entry", entry_point]

        try:
            proc = subprocess.run(
                cmd,
                cwd=root,
                capture_output=True,
                text=True,
                timeout=self.timeout,
                env=env,
            )
        except subprocess.TimeoutExpired:
            raise LoaderError(f"Loading {root} timed out after {self.timeout}s") from None

        payload = _last_json_line(proc.stdout)
        if payload is None:
            raise LoaderError(
                f"Loader exited with code {proc.returncode} without a result",
                details=proc.stderr[-5000:],
            )

        status = payload.get("status")
        if status == "ok":
            return LoadResult(
                definition=payload.get("definition") or {},
                missing_credentials=list(payload.get("missingCredentials") or []),
            )
        if status == "credential_not_found":
            raise CredentialNotFoundError(payload.get("message", "credential not found"))
        raise LoaderError(
            payload.get("message", "loader failed"),
            details=payload.get("traceback", "") or proc.stderr[-5000:],
        )


def _last_json_line(stdout: str) -> dict[str, Any] | None:
    for line in reversed(stdout.strip().splitlines()):
        try:
            payload = json.loads(line)
        except ValueError:
            continue
        if isinstance(payload, dict) and "status" in payload:
            return payload
    return None


def _emit(payload: dict[str, Any], stream) -> None:
    stream.write(json.dumps(payload, default=str) + "\n")
    stream.flush()


@click.command()
@click.argument("root", type=click.Path(exists=True, file_okay=False))
@click.option("--entry", "entry_point", default="index.py", help="Entry point relative to ROOT.")
def main(root: str, entry_point: str) -> None:
    """Print the definition encoded by the project tree at ROOT as JSON."""
    out = sys.stdout
    try:
        # Anything the tree prints goes to stderr; stdout carries the result.
        with contextlib.redirect_stdout(sys.stderr):
            result = load_definition(root, entry_point)
    except CredentialNotFoundError as exc:
        _emit({"status": "credential_not_found", "message": str(exc)}, out)
        sys.exit(EXIT_CREDENTIAL)
    except Exception as exc:
        _emit(
            {"status": "error", "message": f"{type(exc).__name__}: {exc}", "traceback": traceback.format_exc()},
            out,
        )
        sys.exit(EXIT_ERROR)
    _emit(
        {
            "status": "ok",
            "definition": result.definition,
            "missingCredentials": result.missing_credentials,
        },
        out,
    )
    sys.exit(EXIT_OK)


if __name__ == "__main__":
    main()
