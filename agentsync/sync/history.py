"""Sync history — an append-only record of every promoted sync.

Each successful promotion appends one JSON line under the project root.
Runs that find the tree up to date, and runs that fail, leave no record.
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path


@dataclass
class SyncRecord:
    project_id: str
    files: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
    attempts: int = 1
    warnings: list[str] = field(default_factory=list)
    merge_strategy: str = ""
    synced_at: str = ""


class SyncHistory:
    """Stores and retrieves sync records for a project tree."""

    HISTORY_DIR = ".agentsync"
    HISTORY_FILE = "history.jsonl"

    def __init__(self, root: str | Path):
        self.root = Path(root)
        self.store_dir = self.root / self.HISTORY_DIR
        self.store_file = self.store_dir / self.HISTORY_FILE

    def record(self, record: SyncRecord) -> None:
        """Append a sync record."""
        self.store_dir.mkdir(parents=True, exist_ok=True)

        if not record.synced_at:
            record.synced_at = datetime.now(timezone.utc).isoformat()

        with open(self.store_file, "a", encoding="utf-8") as f:
            f.write(json.dumps(asdict(record)) + "\n")

    def get_history(self, project_id: str | None = None) -> list[SyncRecord]:
        """Retrieve sync records, optionally filtered by project id."""
        if not self.store_file.exists():
            return []

        records = []
        with open(self.store_file, encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                data = json.loads(line)
                if project_id and data.get("project_id") != project_id:
                    continue
                records.append(
                    SyncRecord(
                        project_id=data["project_id"],
                        files=data.get("files", []),
                        removed=data.get("removed", []),
                        attempts=data.get("attempts", 1),
                        warnings=data.get("warnings", []),
                        merge_strategy=data.get("merge_strategy", ""),
                        synced_at=data.get("synced_at", ""),
                    )
                )
        return records

    def get_latest(self, project_id: str) -> SyncRecord | None:
        """Get the most recent sync record for a project."""
        history = self.get_history(project_id)
        return history[-1] if history else None
