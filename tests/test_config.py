"""Tests for waypoint.config module."""

from pathlib import Path

import yaml

from waypoint.config import (
    CONFIG_FILENAME,
    DEFAULT_MODELS,
    WaypointConfig,
    get_config,
    get_global_checkpoints_dir,
    get_storage_dir,
    get_workspaces_dir,
)
from waypoint.models import Scope
from waypoint.service import CheckpointService


class TestStorageLayout:
    """Tests for storage path resolution."""

    def test_storage_dir_from_env(self, tmp_path: Path, monkeypatch):
        """WAYPOINT_STORAGE_DIR selects the storage root."""
        monkeypatch.setenv("WAYPOINT_STORAGE_DIR", str(tmp_path / "data"))

        assert get_storage_dir() == tmp_path / "data"

    def test_storage_dir_defaults_to_cwd(self, tmp_path: Path, monkeypatch):
        """Without the env var the root is ./storage."""
        monkeypatch.delenv("WAYPOINT_STORAGE_DIR", raising=False)
        monkeypatch.chdir(tmp_path)

        assert get_storage_dir() == tmp_path / "storage"

    def test_subdirectories(self, tmp_path: Path):
        """Scoped stores and the registry live side by side under the root."""
        assert get_workspaces_dir(tmp_path) == tmp_path / "workspaces"
        assert get_global_checkpoints_dir(tmp_path) == tmp_path / "checkpoints"


class TestWaypointConfig:
    """Tests for WaypointConfig."""

    def test_defaults(self):
        """Defaults accept claude and gemini, pretty-print and list everything."""
        cfg = WaypointConfig()

        assert cfg.recognized_models == list(DEFAULT_MODELS)
        assert cfg.json_indent == 2
        assert cfg.file_mode == 0o600
        assert cfg.list_limit == 0

    def test_load_missing_file_returns_defaults(self, tmp_path: Path):
        """No waypoint.yaml means defaults."""
        assert WaypointConfig.load(tmp_path) == WaypointConfig()

    def test_load_applies_known_fields_only(self, tmp_path: Path):
        """Unknown keys in the file are ignored."""
        (tmp_path / CONFIG_FILENAME).write_text(
            yaml.safe_dump({"recognized_models": ["claude", "gpt"], "list_limit": 5, "colour": "blue"})
        )

        cfg = WaypointConfig.load(tmp_path)

        assert cfg.recognized_models == ["claude", "gpt"]
        assert cfg.list_limit == 5
        assert not hasattr(cfg, "colour")

    def test_load_unparsable_file_returns_defaults(self, tmp_path: Path):
        """A broken config file does not stop the store from working."""
        (tmp_path / CONFIG_FILENAME).write_text("recognized_models: [claude\n")

        assert WaypointConfig.load(tmp_path) == WaypointConfig()

    def test_load_non_mapping_returns_defaults(self, tmp_path: Path):
        """A YAML list instead of a mapping is ignored."""
        (tmp_path / CONFIG_FILENAME).write_text("- claude\n- gemini\n")

        assert WaypointConfig.load(tmp_path) == WaypointConfig()

    def test_save_writes_only_overrides(self, tmp_path: Path):
        """save() persists values that differ from the defaults."""
        cfg = WaypointConfig(list_limit=20)

        result = cfg.save(tmp_path)

        assert result.is_ok()
        assert yaml.safe_load((tmp_path / CONFIG_FILENAME).read_text()) == {"list_limit": 20}

    def test_save_defaults_writes_marker(self, tmp_path: Path):
        """Saving defaults still records that the config was saved."""
        WaypointConfig().save(tmp_path)

        assert yaml.safe_load((tmp_path / CONFIG_FILENAME).read_text()) == {"_version": 1}

    def test_save_then_load(self, tmp_path: Path):
        """Saved overrides come back on load."""
        WaypointConfig(recognized_models=["claude"], json_indent=None).save(tmp_path)

        cfg = get_config(tmp_path)

        assert cfg.recognized_models == ["claude"]
        assert cfg.json_indent is None


class TestConfigValueChecks:
    """Values of the wrong shape fall back to their defaults."""

    def write_config(self, tmp_path: Path, text: str) -> None:
        (tmp_path / CONFIG_FILENAME).write_text(text)

    def test_empty_recognized_models(self, tmp_path: Path, caplog):
        """A bare `recognized_models:` key keeps the default models."""
        self.write_config(tmp_path, "recognized_models:\n")

        with caplog.at_level("WARNING", logger="waypoint.config"):
            cfg = WaypointConfig.load(tmp_path)

        assert cfg.recognized_models == list(DEFAULT_MODELS)
        assert "recognized_models" in caplog.text

    def test_scalar_recognized_models(self, tmp_path: Path):
        """A single string is not split into characters."""
        self.write_config(tmp_path, "recognized_models: claude\n")

        assert WaypointConfig.load(tmp_path).recognized_models == list(DEFAULT_MODELS)

    def test_non_string_models(self, tmp_path: Path):
        self.write_config(tmp_path, "recognized_models: [claude, 4]\n")

        assert WaypointConfig.load(tmp_path).recognized_models == list(DEFAULT_MODELS)

    def test_string_list_limit(self, tmp_path: Path):
        """A quoted number is not an integer."""
        self.write_config(tmp_path, "list_limit: '5'\n")

        assert WaypointConfig.load(tmp_path).list_limit == 0

    def test_negative_list_limit(self, tmp_path: Path):
        self.write_config(tmp_path, "list_limit: -2\n")

        assert WaypointConfig.load(tmp_path).list_limit == 0

    def test_boolean_is_not_an_integer(self, tmp_path: Path):
        self.write_config(tmp_path, "json_indent: true\nlist_limit: false\n")

        cfg = WaypointConfig.load(tmp_path)

        assert cfg.json_indent == 2
        assert cfg.list_limit == 0

    def test_out_of_range_file_mode(self, tmp_path: Path):
        self.write_config(tmp_path, "file_mode: 4096\n")

        assert WaypointConfig.load(tmp_path).file_mode == 0o600

    def test_good_values_survive_bad_neighbours(self, tmp_path: Path):
        """Only the offending key falls back."""
        self.write_config(tmp_path, "recognized_models: claude\nlist_limit: 7\njson_indent: null\n")

        cfg = WaypointConfig.load(tmp_path)

        assert cfg.recognized_models == list(DEFAULT_MODELS)
        assert cfg.list_limit == 7
        assert cfg.json_indent is None

    def test_invalid_fields(self):
        """invalid_fields names the values load() would reject."""
        assert WaypointConfig().invalid_fields() == []
        assert WaypointConfig(list_limit=-1, recognized_models=[]).invalid_fields() == [
            "recognized_models",
            "list_limit",
        ]

    def test_service_works_with_bad_config(self, storage_dir: Path, payload):
        """A store opened over a malformed config still saves and lists."""
        self.write_config(storage_dir, "recognized_models:\nlist_limit: '5'\n")
        service = CheckpointService(storage_dir)
        scope = Scope("ws-1", "react-expert")

        assert service.save_checkpoint(scope, payload).is_ok()
        assert len(service.list_checkpoints(scope).unwrap()) == 1
