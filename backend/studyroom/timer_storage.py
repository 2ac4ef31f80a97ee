"""Local persistence port for focus timer state."""

from __future__ import annotations

import copy
import json
import logging
import threading
from pathlib import Path
from typing import Any, Dict, Optional, Protocol

from .config import Settings, get_settings

logger = logging.getLogger(__name__)

DATA_DIR = Path(__file__).resolve().parent / "data"
STORAGE_KEY_PREFIX = "focusTimer_"


def storage_key(room_id: str) -> str:
    normalized = room_id.strip()
    if not normalized:
        raise ValueError("Room id cannot be empty when addressing timer storage.")
    return f"{STORAGE_KEY_PREFIX}{normalized}"


class TimerStorage(Protocol):
    """Key-value store the timer mirrors its state into."""

    def save(self, key: str, value: Dict[str, Any]) -> None:  # pragma: no cover - protocol definition
        ...

    def load(self, key: str) -> Optional[Dict[str, Any]]:  # pragma: no cover - protocol definition
        ...

    def clear(self, key: str) -> None:  # pragma: no cover - protocol definition
        ...


class MemoryTimerStorage:
    """Process-local storage; values are deep-copied in and out."""

    def __init__(self) -> None:
        self._entries: Dict[str, Dict[str, Any]] = {}

    def save(self, key: str, value: Dict[str, Any]) -> None:
        self._entries[key] = copy.deepcopy(value)

    def load(self, key: str) -> Optional[Dict[str, Any]]:
        entry = self._entries.get(key)
        return copy.deepcopy(entry) if entry is not None else None

    def clear(self, key: str) -> None:
        self._entries.pop(key, None)

    def keys(self) -> list[str]:
        return list(self._entries)


class JsonFileTimerStorage:
    """Single JSON document holding every room's entry, guarded by a re-entrant lock."""

    def __init__(self, path: Optional[Path] = None) -> None:
        self._path = path or DATA_DIR / "focus_timers.json"
        self._lock = threading.RLock()

    @property
    def path(self) -> Path:
        return self._path

    def _load_unlocked(self) -> Dict[str, Any]:
        if not self._path.exists():
            return {}
        try:
            with self._path.open("r", encoding="utf-8") as handle:
                raw = json.load(handle)
        except (OSError, ValueError):
            logger.exception("Failed to read timer storage at %s; starting empty", self._path)
            return {}
        if not isinstance(raw, dict):
            logger.warning("Ignoring malformed timer storage document at %s", self._path)
            return {}
        return raw

    def _write_unlocked(self, entries: Dict[str, Any]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        scratch = self._path.with_suffix(self._path.suffix + ".tmp")
        with scratch.open("w", encoding="utf-8") as handle:
            json.dump(entries, handle, indent=2)
        scratch.replace(self._path)

    def save(self, key: str, value: Dict[str, Any]) -> None:
        with self._lock:
            entries = self._load_unlocked()
            entries[key] = value
            self._write_unlocked(entries)

    def load(self, key: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            entry = self._load_unlocked().get(key)
        return entry if isinstance(entry, dict) else None

    def clear(self, key: str) -> None:
        with self._lock:
            entries = self._load_unlocked()
            if key not in entries:
                return
            entries.pop(key)
            self._write_unlocked(entries)


def create_timer_storage(settings: Optional[Settings] = None) -> TimerStorage:
    settings = settings or get_settings()
    if settings.timer_storage_mode == "memory":
        return MemoryTimerStorage()
    path = Path(settings.timer_storage_path) if settings.timer_storage_path else None
    return JsonFileTimerStorage(path=path)


__all__ = [
    "JsonFileTimerStorage",
    "MemoryTimerStorage",
    "STORAGE_KEY_PREFIX",
    "TimerStorage",
    "create_timer_storage",
    "storage_key",
]
