"""Configuration — ``agentsync.yaml`` at the project root.

Example::

    project_id: support-desk
    tenant_id: acme
    api_url: https://manage.example.com
    max_attempts: 3
    merge_strategy: auto
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, fields, replace
from enum import Enum
from pathlib import Path
from typing import Any

import yaml

from agentsync.definition.comparator import DEFAULT_VOLATILE_PATHS
from agentsync.errors import ConfigError

CONFIG_FILE = "agentsync.yaml"


class MergeStrategy(Enum):
    AUTO = "auto"  # LLM when a key is configured, splice otherwise
    LLM = "llm"
    SPLICE = "splice"


@dataclass
class SyncConfig:
    project_id: str = ""
    tenant_id: str = "default"
    api_url: str = ""
    api_key_env: str = "AGENTSYNC_API_KEY"
    entry_point: str = "index.py"
    max_attempts: int = 3
    merge_strategy: MergeStrategy = MergeStrategy.AUTO
    merge_model: str = ""
    merge_timeout: float = 120.0
    load_timeout: float = 60.0
    volatile_paths: list[str] = field(default_factory=lambda: list(DEFAULT_VOLATILE_PATHS))
    scratch_dir: Path | None = None

    @property
    def api_key(self) -> str | None:
        return os.environ.get(self.api_key_env) or None

    def with_overrides(self, **overrides: Any) -> SyncConfig:
        """Copy with every non-None override applied and re-validated."""
        values = {k: v for k, v in overrides.items() if v is not None}
        if "merge_strategy" in values:
            values["merge_strategy"] = _strategy(values["merge_strategy"])
        updated = replace(self, **values)
        updated.validate()
        return updated

    def validate(self) -> None:
        if self.max_attempts < 1:
            raise ConfigError(f"max_attempts must be at least 1, got {self.max_attempts}")
        if self.merge_timeout <= 0 or self.load_timeout <= 0:
            raise ConfigError("merge_timeout and load_timeout must be positive")
        if not self.entry_point.endswith(".py") or Path(self.entry_point).is_absolute():
            raise ConfigError(f"entry_point must be a relative .py path, got '{self.entry_point}'")


def load_config(root: str | Path, path: str | Path | None = None) -> SyncConfig:
    """Load the configuration for the project at *root*.

    A missing default file yields the defaults; an explicit *path* must exist.
    """
    root = Path(root)
    config_path = Path(path) if path else root / CONFIG_FILE
    if not config_path.is_file():
        if path:
            raise ConfigError(f"Config file not found: {config_path}")
        return SyncConfig()

    try:
        with open(config_path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as exc:
        raise ConfigError(f"Invalid YAML in {config_path}: {exc}") from exc

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigError(f"{config_path} must contain a mapping")

    known = {f.name for f in fields(SyncConfig)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ConfigError(f"Unknown key(s) in {config_path}: {', '.join(unknown)}")

    try:
        config = SyncConfig(
            project_id=str(data.get("project_id", "")),
            tenant_id=str(data.get("tenant_id", "default")),
            api_url=str(data.get("api_url", "")),
            api_key_env=str(data.get("api_key_env", "AGENTSYNC_API_KEY")),
            entry_point=str(data.get("entry_point", "index.py")),
            max_attempts=int(data.get("max_attempts", 3)),
            merge_strategy=_strategy(data.get("merge_strategy", "auto")),
            merge_model=str(data.get("merge_model") or ""),
            merge_timeout=float(data.get("merge_timeout", 120)),
            load_timeout=float(data.get("load_timeout", 60)),
            volatile_paths=[str(p) for p in data.get("volatile_paths", DEFAULT_VOLATILE_PATHS)],
            scratch_dir=_scratch_dir(root, data.get("scratch_dir")),
        )
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid value in {config_path}: {exc}") from exc

    config.validate()
    return config


def _strategy(value: Any) -> MergeStrategy:
    if isinstance(value, MergeStrategy):
        return value
    try:
        return MergeStrategy(str(value).lower())
    except ValueError:
        choices = ", ".join(s.value for s in MergeStrategy)
        raise ConfigError(f"merge_strategy must be one of {choices}, got '{value}'") from None


def _scratch_dir(root: Path, value: Any) -> Path | None:
    if not value:
        return None
    path = Path(str(value)).expanduser()
    return path if path.is_absolute() else root / path
