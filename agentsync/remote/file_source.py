"""Definition source backed by a local JSON or YAML file."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import yaml

from agentsync.errors import RemoteError


class FileDefinitionSource:
    """Serves one definition from disk, for offline pulls and tests.

    The file may hold the definition itself or an API envelope
    (``{"data": {...}}``).
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)

    def get_full_definition(self, project_id: str) -> dict[str, Any]:
        if not self.path.is_file():
            raise RemoteError(f"Definition file not found: {self.path}")
        text = self.path.read_text(encoding="utf-8")
        try:
            if self.path.suffix in (".yaml", ".yml"):
                data = yaml.safe_load(text)
            else:
                data = json.loads(text)
        except (ValueError, yaml.YAMLError) as exc:
            raise RemoteError(f"Cannot parse {self.path}: {exc}") from exc

        if isinstance(data, dict) and isinstance(data.get("data"), dict):
            data = data["data"]
        if not isinstance(data, dict):
            raise RemoteError(f"{self.path} does not contain a definition object")
        if data.get("id") not in (None, project_id):
            raise RemoteError(
                f"{self.path} holds project '{data.get('id')}', not '{project_id}'"
            )
        return data
