"""Key-value store — the single persisted-state resource.

All persisted tracker state (verification history, selected service,
custom service ids) lives under distinct keys of one store. Every write
replaces the whole value for its key; every read parses it fresh, so
callers never share mutable state through the store.

Two backends share the interface:
- JsonFileStore: one JSON document on disk, suitable for a single process.
- MemoryStore: in-process dict, for tests and ephemeral sessions.
"""

from __future__ import annotations

import copy
import json
from pathlib import Path
from typing import Any, Optional, Protocol


class KeyValueStore(Protocol):
    """Interface for persisted state. Values must be JSON-serializable."""

    def get(self, key: str, default: Any = None) -> Any: ...

    def set(self, key: str, value: Any) -> None: ...

    def delete(self, key: str) -> None: ...


class MemoryStore:
    """In-memory store. Values are deep-copied in and out."""

    def __init__(self, initial: Optional[dict[str, Any]] = None) -> None:
        self._state: dict[str, Any] = copy.deepcopy(initial or {})

    def get(self, key: str, default: Any = None) -> Any:
        if key not in self._state:
            return default
        return copy.deepcopy(self._state[key])

    def set(self, key: str, value: Any) -> None:
        # JSON round-trip: same serializability rules as the file store.
        self._state[key] = json.loads(json.dumps(value))

    def delete(self, key: str) -> None:
        self._state.pop(key, None)

    def keys(self) -> list[str]:
        return sorted(self._state)


class JsonFileStore:
    """JSON file-based state persistence.

    Usage:
        store = JsonFileStore(Path("data/tracker_state.json"))
        store.set("jam-selected-service", "0000abcd")

        # Another process, or after restart:
        store = JsonFileStore(Path("data/tracker_state.json"))
        store.get("jam-selected-service")  # "0000abcd"

    The file is re-read on every access. Write errors (OSError) propagate
    to the caller; nothing is cached that could mask a failed write.
    """

    def __init__(self, storage_path: Path) -> None:
        self._path = storage_path

    @property
    def path(self) -> Path:
        return self._path

    def _load(self) -> dict[str, Any]:
        if not self._path.exists():
            return {}
        with self._path.open("r", encoding="utf-8") as f:
            return json.load(f)

    def _save(self, state: dict[str, Any]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(self._path.suffix + ".tmp")
        try:
            with tmp_path.open("w", encoding="utf-8") as f:
                json.dump(state, f, indent=2, sort_keys=True, ensure_ascii=False)
            tmp_path.replace(self._path)
        except BaseException:
            tmp_path.unlink(missing_ok=True)
            raise

    def get(self, key: str, default: Any = None) -> Any:
        return self._load().get(key, default)

    def set(self, key: str, value: Any) -> None:
        state = self._load()
        state[key] = value
        self._save(state)

    def delete(self, key: str) -> None:
        state = self._load()
        if key in state:
            del state[key]
            self._save(state)

    def keys(self) -> list[str]:
        return sorted(self._load())
