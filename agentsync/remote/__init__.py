"""Remote definition sources — where the canonical definition comes from."""

from __future__ import annotations

from typing import Any, Protocol

from agentsync.remote.api import ManageApiClient
from agentsync.remote.file_source import FileDefinitionSource


class RemoteDefinitionSource(Protocol):
    def get_full_definition(self, project_id: str) -> dict[str, Any]:
        """Return the API-form definition of *project_id*. Raises ``RemoteError``."""
        ...


__all__ = [
    "FileDefinitionSource",
    "ManageApiClient",
    "RemoteDefinitionSource",
]
