"""Key/value storage backing drafts and cached client state."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Protocol

logger = logging.getLogger(__name__)


class KeyValueStorage(Protocol):
    def get(self, key: str) -> str | None:
        ...

    def set(self, key: str, value: str) -> None:
        ...

    def remove(self, key: str) -> None:
        ...

    def keys(self) -> list[str]:
        ...


class MemoryStorage:
    """In-process storage; used by tests and short-lived clients."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._items: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> str | None:
        return self._items.get(key)

    def set(self, key: str, value: str) -> None:
        self._items[key] = value

    def remove(self, key: str) -> None:
        self._items.pop(key, None)

    def keys(self) -> list[str]:
        return list(self._items)


class JsonFileStorage:
    """Storage persisted to a single JSON object on disk, surviving restarts."""

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._items = self._load()

    def _load(self) -> dict[str, str]:
        if not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            logger.warning("Ignoring unreadable storage file %s", self._path, exc_info=True)
            return {}
        if not isinstance(data, dict):
            return {}
        return {str(key): str(value) for key, value in data.items()}

    def _flush(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(self._path.suffix + ".tmp")
        tmp_path.write_text(json.dumps(self._items, sort_keys=True), encoding="utf-8")
        tmp_path.replace(self._path)

    def get(self, key: str) -> str | None:
        return self._items.get(key)

    def set(self, key: str, value: str) -> None:
        self._items[key] = value
        self._flush()

    def remove(self, key: str) -> None:
        if self._items.pop(key, None) is not None:
            self._flush()

    def keys(self) -> list[str]:
        return list(self._items)
