"""Configuration management for Waypoint.

Storage Structure
-----------------
All state lives under one storage root:

<storage>/                                   # $WAYPOINT_STORAGE_DIR or ./storage
├── waypoint.yaml                            # Tuning (recognized models, formatting)
├── workspaces/
│   └── <workspace_id>/agents/<agent_id>/
│       └── checkpoints/                     # One scoped store per (workspace, agent)
│           ├── index.json
│           └── <checkpoint_id>.json
└── checkpoints/                             # Global registry (migrated + global saves)
    ├── index.json
    └── <checkpoint_id>.json

Configuration
-------------
**WaypointConfig** (<storage>/waypoint.yaml)
    - recognized_models: selectedModel values accepted on save
    - json_indent: indentation of written documents (None for compact)
    - file_mode: permissions of written documents
    - list_limit: default cap on listings (0 = unlimited)
"""

import logging
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml

from waypoint.errors import Result, StorageError

logger = logging.getLogger(__name__)

STORAGE_DIR_ENV = "WAYPOINT_STORAGE_DIR"
CONFIG_FILENAME = "waypoint.yaml"
INDEX_FILENAME = "index.json"
LOCK_FILENAME = ".index.lock"
RECORD_SUFFIX = ".json"

DEFAULT_MODELS = ("claude", "gemini")


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


# Field name -> (check, expected shape for the warning)
_FIELD_CHECKS = {
    "recognized_models": (
        lambda v: isinstance(v, list) and bool(v) and all(isinstance(m, str) and m for m in v),
        "a non-empty list of model names",
    ),
    "json_indent": (lambda v: v is None or (_is_int(v) and v >= 0), "a non-negative integer or null"),
    "file_mode": (lambda v: _is_int(v) and 0 <= v <= 0o777, "a permission mode such as 0o600"),
    "list_limit": (lambda v: _is_int(v) and v >= 0, "a non-negative integer"),
}


def get_storage_dir() -> Path:
    """Get the storage root: $WAYPOINT_STORAGE_DIR, else ./storage."""
    if env_dir := os.environ.get(STORAGE_DIR_ENV):
        return Path(env_dir).expanduser()
    return Path.cwd() / "storage"


def get_workspaces_dir(storage_dir: Path | None = None) -> Path:
    """Directory holding one subtree per workspace."""
    return (storage_dir or get_storage_dir()) / "workspaces"


def get_global_checkpoints_dir(storage_dir: Path | None = None) -> Path:
    """Directory of the global checkpoint registry."""
    return (storage_dir or get_storage_dir()) / "checkpoints"


@dataclass
class WaypointConfig:
    """User-tunable storage parameters."""

    recognized_models: list[str] = field(default_factory=lambda: list(DEFAULT_MODELS))
    json_indent: int | None = 2
    file_mode: int = 0o600
    list_limit: int = 0

    @classmethod
    def load(cls, storage_dir: Path) -> "WaypointConfig":
        """Load config from a storage root.

        Args:
            storage_dir: Storage root containing waypoint.yaml

        Returns:
            WaypointConfig with values from file, or defaults if not found
        """
        config_path = storage_dir / CONFIG_FILENAME
        if not config_path.exists():
            return cls()

        try:
            with open(config_path, encoding="utf-8") as f:
                overrides = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            logger.warning(f"Ignoring unreadable config {config_path}: {e}")
            return cls()

        if not isinstance(overrides, dict):
            logger.warning(f"Ignoring config {config_path}: expected a mapping")
            return cls()

        # Only apply known fields holding values of the right shape
        valid_fields = {f.name for f in fields(cls)}
        valid_overrides = {}
        for key, value in overrides.items():
            if key not in valid_fields:
                continue
            check, expected = _FIELD_CHECKS[key]
            if not check(value):
                logger.warning(f"Ignoring {key} in {config_path}: expected {expected}, got {value!r}")
                continue
            valid_overrides[key] = value
        return cls(**valid_overrides)

    def save(self, storage_dir: Path) -> Result[Path, StorageError]:
        """Save config to a storage root, keeping only non-default values."""
        from waypoint.atomic import write_yaml_document

        defaults = WaypointConfig()
        data = {k: v for k, v in self.to_dict().items() if getattr(defaults, k) != v}
        if not data:
            data = {"_version": 1}  # Marker that config was explicitly saved

        return write_yaml_document(storage_dir / CONFIG_FILENAME, data, mode=0o600)

    def invalid_fields(self) -> list[str]:
        """Names of fields whose current value load() would reject."""
        return [name for name, (check, _) in _FIELD_CHECKS.items() if not check(getattr(self, name))]

    def to_dict(self) -> dict[str, Any]:
        """Convert config to dictionary."""
        return {
            "recognized_models": list(self.recognized_models),
            "json_indent": self.json_indent,
            "file_mode": self.file_mode,
            "list_limit": self.list_limit,
        }


def get_config(storage_dir: Path | None = None) -> WaypointConfig:
    """Load WaypointConfig for a storage root (default: get_storage_dir())."""
    return WaypointConfig.load(storage_dir or get_storage_dir())
