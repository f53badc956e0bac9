"""Tests for TrackerSettings — proves config loading fails loud."""

import json
from pathlib import Path

import pytest

from hashwatch.policy.settings import TrackerSettings


CONFIG_DIR = Path(__file__).resolve().parents[1] / "config"


def _shipped() -> dict:
    with (CONFIG_DIR / "tracker_settings.json").open("r", encoding="utf-8") as f:
        return json.load(f)


class TestShippedConfig:
    def test_loads(self) -> None:
        settings = TrackerSettings.from_config_dir(CONFIG_DIR)
        assert settings.version == "1.0"
        assert settings.stage_interval_seconds() == 2.0
        assert settings.bootstrap_service_id() == "00000000"
        assert settings.history_max_items() == 10
        assert settings.recent_slot_count() == 10
        assert settings.history_refresh_seconds() == 5.0

    def test_storage_keys_are_distinct(self) -> None:
        keys = TrackerSettings.from_config_dir(CONFIG_DIR).storage_keys()
        assert len({keys.history, keys.selected_service, keys.custom_services}) == 3


class TestValidation:
    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            TrackerSettings.from_config_dir(tmp_path)

    def test_missing_version(self) -> None:
        data = _shipped()
        del data["version"]
        with pytest.raises(ValueError, match="version"):
            TrackerSettings(data)

    def test_missing_section_fails_loud(self) -> None:
        data = _shipped()
        del data["pipeline"]
        with pytest.raises(KeyError):
            TrackerSettings(data)

    def test_non_positive_interval(self) -> None:
        data = _shipped()
        data["pipeline"]["stage_interval_seconds"] = 0
        with pytest.raises(ValueError, match="stage_interval_seconds"):
            TrackerSettings(data)

    def test_from_custom_dir(self, tmp_path: Path) -> None:
        data = _shipped()
        data["pipeline"]["stage_interval_seconds"] = 0.5
        (tmp_path / "tracker_settings.json").write_text(json.dumps(data), encoding="utf-8")
        assert TrackerSettings.from_config_dir(tmp_path).stage_interval_seconds() == 0.5
