"""TTL-bound drafts that survive interruptions such as a sign-in redirect."""

from __future__ import annotations

import json
import logging
import time
from datetime import date, datetime
from typing import Any, Callable

from .storage import KeyValueStorage

logger = logging.getLogger(__name__)

DRAFT_NAMESPACE = "draft:"
COMMENT_DRAFT_TTL_SECONDS = 24 * 60 * 60


def _json_default(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def comment_draft_key(ticket_id: str) -> str:
    return f"comment:{ticket_id}"


class DraftStore:
    """Drafts stored as ``{"payload": ..., "expiresAt": <epoch seconds>}``.

    One draft per key; storing again overwrites. A draft is readable only
    while ``now < expiresAt``; expired or malformed entries are deleted when
    they are encountered.
    """

    def __init__(
        self,
        storage: KeyValueStorage,
        *,
        namespace: str = DRAFT_NAMESPACE,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._storage = storage
        self._namespace = namespace
        self._clock = clock

    @property
    def storage(self) -> KeyValueStorage:
        return self._storage

    def _full_key(self, key: str) -> str:
        return f"{self._namespace}{key}"

    def store(self, key: str, payload: Any, ttl_seconds: float) -> float:
        """Persist ``payload`` and return its absolute expiry timestamp."""

        expires_at = self._clock() + ttl_seconds
        entry = json.dumps({"payload": payload, "expiresAt": expires_at}, default=_json_default)
        self._storage.set(self._full_key(key), entry)
        return expires_at

    def get(self, key: str) -> Any | None:
        full_key = self._full_key(key)
        raw = self._storage.get(full_key)
        if raw is None:
            return None
        entry = self._decode(raw)
        if entry is None or self._clock() >= entry["expiresAt"]:
            self._storage.remove(full_key)
            return None
        return entry["payload"]

    def clear(self, key: str) -> None:
        self._storage.remove(self._full_key(key))

    def keys(self) -> list[str]:
        prefix = self._namespace
        return [key[len(prefix):] for key in self._storage.keys() if key.startswith(prefix)]

    def sweep_expired(self) -> list[str]:
        """Delete every expired or unreadable draft; return the removed keys."""

        now = self._clock()
        removed: list[str] = []
        for key in self.keys():
            full_key = self._full_key(key)
            raw = self._storage.get(full_key)
            entry = self._decode(raw) if raw is not None else None
            if entry is None or now >= entry["expiresAt"]:
                self._storage.remove(full_key)
                removed.append(key)
        if removed:
            logger.debug("Removed %d expired draft(s)", len(removed))
        return removed

    # Comment drafts, one per ticket
    def store_comment(self, ticket_id: str, content: str, ttl_seconds: float = COMMENT_DRAFT_TTL_SECONDS) -> float:
        return self.store(comment_draft_key(ticket_id), {"ticketId": ticket_id, "content": content}, ttl_seconds)

    def get_comment(self, ticket_id: str) -> str | None:
        payload = self.get(comment_draft_key(ticket_id))
        if not isinstance(payload, dict):
            return None
        content = payload.get("content")
        return content if isinstance(content, str) else None

    def clear_comment(self, ticket_id: str) -> None:
        self.clear(comment_draft_key(ticket_id))

    @staticmethod
    def _decode(raw: str) -> dict[str, Any] | None:
        try:
            entry = json.loads(raw)
        except ValueError:
            return None
        if not isinstance(entry, dict) or "payload" not in entry:
            return None
        expires_at = entry.get("expiresAt")
        if isinstance(expires_at, bool) or not isinstance(expires_at, (int, float)):
            return None
        return entry
