from __future__ import annotations

import copy
import json
import logging
from dataclasses import replace
from enum import Enum
from typing import Any, Callable, Iterable

from featureboard.tickets.models import Comment, Ticket, TicketPage, TicketQuery
from featureboard.tickets.state import TicketStatus

from .api import ApiResult, FeatureBoardClient
from .storage import KeyValueStorage, MemoryStorage

logger = logging.getLogger(__name__)

UPVOTED_STORAGE_KEY = "upvotedPosts"

Listener = Callable[[list[Ticket]], None]


class SortKey(str, Enum):
    TRENDING = "trending"
    NEWEST = "newest"
    OLDEST = "oldest"
    ALPHABETICAL = "alphabetical"
    REVERSE_ALPHABETICAL = "reverse-alphabetical"


def _matches(ticket: Ticket, needle: str) -> bool:
    return needle in ticket.title.casefold() or needle in ticket.description.casefold()


def sort_tickets(tickets: Iterable[Ticket], sort: SortKey) -> list[Ticket]:
    """Return a new list ordered by ``sort``; ties keep their input order."""

    items = list(tickets)
    if sort is SortKey.TRENDING:
        return sorted(items, key=lambda ticket: ticket.upvotes, reverse=True)
    if sort is SortKey.NEWEST:
        return sorted(items, key=lambda ticket: ticket.created_at, reverse=True)
    if sort is SortKey.OLDEST:
        return sorted(items, key=lambda ticket: ticket.created_at)
    if sort is SortKey.ALPHABETICAL:
        return sorted(items, key=lambda ticket: ticket.title.casefold())
    if sort is SortKey.REVERSE_ALPHABETICAL:
        return sorted(items, key=lambda ticket: ticket.title.casefold(), reverse=True)
    return items


class SuggestionStore:
    """Canonical client-side collection of suggestions.

    Entities are replaced, never mutated in place, and every read hands out
    copies, so listeners and views cannot alter stored state. The
    "upvoted by me" set is cached in ``storage`` so it survives reloads.
    """

    def __init__(
        self,
        client: FeatureBoardClient | None = None,
        storage: KeyValueStorage | None = None,
        *,
        query: TicketQuery | None = None,
    ) -> None:
        self._client = client
        self._storage = storage if storage is not None else MemoryStorage()
        self._query = query or TicketQuery()
        self._tickets: dict[str, Ticket] = {}
        self._listeners: list[Listener] = []
        self._upvoted: set[str] = self._load_upvoted()

    # Subscriptions
    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _publish(self) -> None:
        current = self.tickets
        for listener in list(self._listeners):
            listener(current)

    # Reads
    @property
    def tickets(self) -> list[Ticket]:
        return [copy.deepcopy(ticket) for ticket in self._tickets.values()]

    def get(self, ticket_id: str) -> Ticket | None:
        ticket = self._tickets.get(ticket_id)
        return copy.deepcopy(ticket) if ticket is not None else None

    def __contains__(self, ticket_id: object) -> bool:
        return ticket_id in self._tickets

    def __len__(self) -> int:
        return len(self._tickets)

    def view(
        self,
        *,
        search: str | None = None,
        status: TicketStatus | None = None,
        sort: SortKey = SortKey.TRENDING,
    ) -> list[Ticket]:
        items = self.tickets
        if search and search.strip():
            needle = search.strip().casefold()
            items = [ticket for ticket in items if _matches(ticket, needle)]
        if status is not None:
            items = [ticket for ticket in items if ticket.status is status]
        return sort_tickets(items, sort)

    # Writes
    def replace_all(self, tickets: Iterable[Ticket]) -> None:
        self._tickets = {ticket.id: copy.deepcopy(ticket) for ticket in tickets}
        self._publish()

    def put(self, ticket: Ticket) -> None:
        """Replace ``ticket`` in place, or append it when unknown."""

        self._tickets[ticket.id] = copy.deepcopy(ticket)
        self._publish()

    def insert(self, ticket: Ticket) -> None:
        """Add a freshly created ticket at the front of the collection."""

        remaining = {key: value for key, value in self._tickets.items() if key != ticket.id}
        self._tickets = {ticket.id: copy.deepcopy(ticket), **remaining}
        self._publish()

    def patch(self, ticket_id: str, **changes: Any) -> Ticket | None:
        current = self._tickets.get(ticket_id)
        if current is None:
            return None
        updated = replace(current, **changes)
        self._tickets[ticket_id] = updated
        self._publish()
        return copy.deepcopy(updated)

    def remove(self, ticket_id: str) -> Ticket | None:
        removed = self._tickets.pop(ticket_id, None)
        if removed is not None:
            self._publish()
        return removed

    def append_comment(self, ticket_id: str, comment: Comment) -> Ticket | None:
        current = self._tickets.get(ticket_id)
        if current is None:
            return None
        return self.patch(ticket_id, comments=[*current.comments, comment])

    # Upvoted-by-me cache
    @property
    def upvoted(self) -> frozenset[str]:
        return frozenset(self._upvoted)

    def has_upvoted(self, ticket_id: str) -> bool:
        return ticket_id in self._upvoted

    def set_upvoted(self, ticket_id: str, upvoted: bool) -> None:
        if upvoted:
            self._upvoted.add(ticket_id)
        else:
            self._upvoted.discard(ticket_id)
        self._save_upvoted()

    def replace_upvoted(self, ticket_ids: Iterable[str]) -> None:
        self._upvoted = set(ticket_ids)
        self._save_upvoted()

    def _load_upvoted(self) -> set[str]:
        raw = self._storage.get(UPVOTED_STORAGE_KEY)
        if raw is None:
            return set()
        try:
            data = json.loads(raw)
        except ValueError:
            logger.warning("Discarding unreadable %s cache", UPVOTED_STORAGE_KEY)
            self._storage.remove(UPVOTED_STORAGE_KEY)
            return set()
        if not isinstance(data, list):
            return set()
        return {str(item) for item in data}

    def _save_upvoted(self) -> None:
        self._storage.set(UPVOTED_STORAGE_KEY, json.dumps(sorted(self._upvoted)))

    # Server synchronisation
    async def refresh(self) -> ApiResult[TicketPage]:
        """Reload the collection (and, when signed in, the upvoted set)."""

        if self._client is None:
            raise RuntimeError("SuggestionStore has no client to refresh from")
        result = await self._client.list_tickets(self._query)
        if not result.ok:
            logger.warning("Failed to refresh suggestions: %s", result.error)
            return result
        self.replace_all(result.data.tickets)

        upvoted = await self._client.upvoted_posts()
        if upvoted.ok:
            self.replace_upvoted(upvoted.data or [])
        return result
