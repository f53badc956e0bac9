"""Tracker settings — loads tracker_settings.json and exposes typed values.

No magic. No defaults. If a value is missing from the config, it fails loud.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any

SETTINGS_FILENAME = "tracker_settings.json"


@dataclass(frozen=True)
class StorageKeys:
    """Namespaced persisted-storage keys."""
    history: str
    selected_service: str
    custom_services: str


class TrackerSettings:
    """Typed access to tracker configuration.

    Usage:
        settings = TrackerSettings.from_config_dir(Path("config"))
        interval = settings.stage_interval_seconds()
        keys = settings.storage_keys()
    """

    def __init__(self, data: dict[str, Any]) -> None:
        self._data = data
        self._validate()

    @classmethod
    def from_config_dir(cls, config_dir: Path) -> TrackerSettings:
        """Load from the canonical config directory."""
        return cls(_load_json(config_dir / SETTINGS_FILENAME))

    def _validate(self) -> None:
        if "version" not in self._data:
            raise ValueError(f"{SETTINGS_FILENAME} missing version")
        if self.stage_interval_seconds() <= 0:
            raise ValueError("stage_interval_seconds must be positive")
        if self.history_refresh_seconds() <= 0:
            raise ValueError("history_refresh_seconds must be positive")

    @property
    def version(self) -> str:
        return str(self._data["version"])

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    def stage_interval_seconds(self) -> float:
        """Delay between simulated pipeline transitions."""
        return float(self._data["pipeline"]["stage_interval_seconds"])

    # ------------------------------------------------------------------
    # Service registry
    # ------------------------------------------------------------------

    def bootstrap_service_id(self) -> str:
        """Reserved service id skipped when picking a default selection."""
        return self._data["registry"]["bootstrap_service_id"]

    # ------------------------------------------------------------------
    # History display
    # ------------------------------------------------------------------

    def history_max_items(self) -> int:
        return int(self._data["history"]["max_items"])

    def recent_slot_count(self) -> int:
        return int(self._data["history"]["recent_slot_count"])

    def history_refresh_seconds(self) -> float:
        return float(self._data["history"]["refresh_seconds"])

    # ------------------------------------------------------------------
    # Storage
    # ------------------------------------------------------------------

    def storage_keys(self) -> StorageKeys:
        keys = self._data["storage_keys"]
        return StorageKeys(
            history=keys["history"],
            selected_service=keys["selected_service"],
            custom_services=keys["custom_services"],
        )


def _load_json(path: Path) -> dict[str, Any]:
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")
    with path.open("r", encoding="utf-8") as f:
        return json.load(f)
