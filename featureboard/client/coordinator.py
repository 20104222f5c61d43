"""Optimistic mutations with server reconciliation and exact rollback.

Every mutation follows the same protocol: snapshot the affected fields,
publish the optimistic change, call the server, then either reconcile with
the server's answer or restore the snapshot and raise
:class:`~featureboard.errors.MutationFailed`.

Requests are ordered per ``(ticket id, mutation kind)`` lane:

* a response is applied only if no newer request in the lane has already
  been reconciled, so the newest confirmed request wins regardless of the
  order responses arrive in;
* while newer requests are still in flight a success is not published
  (their optimistic state stays visible); it becomes the state those
  requests roll back to;
* a failure restores its snapshot only when nothing newer is pending,
  otherwise the snapshot is handed to the next newer request.

Delete is the exception: a failed delete reloads the whole collection.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable

from featureboard.errors import ErrorKind, MutationFailed, NotFoundError
from featureboard.tickets.models import Ticket, VoteAction, VoteResult
from featureboard.tickets.state import TicketStatus

from .api import ApiResult, FeatureBoardClient
from .store import SuggestionStore

logger = logging.getLogger(__name__)


class MutationKind(str, Enum):
    VOTE = "vote"
    STATUS = "status"
    VISIBILITY = "visibility"
    DELETE = "delete"


# Ticket fields owned by each mutation kind.
_FIELDS: dict[MutationKind, tuple[str, ...]] = {
    MutationKind.VOTE: ("upvotes",),
    MutationKind.STATUS: ("status", "updated_at"),
    MutationKind.VISIBILITY: ("hidden", "updated_at"),
}


@dataclass(slots=True)
class Snapshot:
    """The fields of one ticket a mutation kind may change."""

    values: dict[str, Any]
    upvoted: bool | None = None


@dataclass(slots=True)
class _Lane:
    next_seq: int = 0
    applied_seq: int = 0
    pending: dict[int, Snapshot] = field(default_factory=dict)

    def issue(self, base: Snapshot) -> int:
        self.next_seq += 1
        self.pending[self.next_seq] = base
        return self.next_seq

    def newer_pending(self, seq: int) -> list[int]:
        return sorted(other for other in self.pending if other > seq)


class OptimisticMutationCoordinator:
    def __init__(self, store: SuggestionStore, client: FeatureBoardClient) -> None:
        self._store = store
        self._client = client
        self._lanes: dict[tuple[str, MutationKind], _Lane] = {}

    def in_flight(self, ticket_id: str, kind: MutationKind) -> int:
        lane = self._lanes.get((ticket_id, kind))
        return len(lane.pending) if lane else 0

    async def toggle_vote(self, ticket_id: str) -> VoteResult:
        def apply(ticket: Ticket) -> None:
            upvoted = self._store.has_upvoted(ticket_id)
            delta = -1 if upvoted else 1
            self._store.patch(ticket_id, upvotes=max(0, ticket.upvotes + delta))
            self._store.set_upvoted(ticket_id, not upvoted)

        def confirmed(result: VoteResult) -> tuple[Snapshot, Ticket | None]:
            return Snapshot({"upvotes": result.upvotes}, upvoted=result.action is VoteAction.ADDED), None

        return await self._run(
            ticket_id,
            MutationKind.VOTE,
            apply,
            lambda: self._client.toggle_vote(ticket_id),
            confirmed,
        )

    async def change_status(self, ticket_id: str, status: object) -> Ticket:
        # Rejected here, before anything is published.
        target = TicketStatus.parse(status)

        return await self._run(
            ticket_id,
            MutationKind.STATUS,
            lambda ticket: self._store.patch(ticket_id, status=target),
            lambda: self._client.change_status(ticket_id, target.value),
            lambda ticket: (self._capture(MutationKind.STATUS, ticket), ticket),
        )

    async def set_visibility(self, ticket_id: str, hidden: bool | None = None) -> Ticket:
        """Set ``hidden``; with ``hidden=None`` the current value is flipped."""

        current = self._require(ticket_id)
        target = (not current.hidden) if hidden is None else hidden

        return await self._run(
            ticket_id,
            MutationKind.VISIBILITY,
            lambda ticket: self._store.patch(ticket_id, hidden=target),
            lambda: self._client.set_visibility(ticket_id, target),
            lambda ticket: (self._capture(MutationKind.VISIBILITY, ticket), ticket),
        )

    async def delete(self, ticket_id: str) -> None:
        self._require(ticket_id)
        self._store.remove(ticket_id)
        result = await self._client.delete_ticket(ticket_id)
        if result.ok:
            if self._store.has_upvoted(ticket_id):
                self._store.set_upvoted(ticket_id, False)
            return

        logger.warning("Delete of %s failed (%s); reloading suggestions", ticket_id, result.error)
        await self._store.refresh()
        raise MutationFailed(
            result.error or "Failed to delete ticket",
            kind=result.kind or ErrorKind.TRANSPORT,
            status_code=result.status_code,
        )

    def _require(self, ticket_id: str) -> Ticket:
        ticket = self._store.get(ticket_id)
        if ticket is None:
            raise NotFoundError("Ticket not found")
        return ticket

    def _capture(self, kind: MutationKind, ticket: Ticket) -> Snapshot:
        values = {name: getattr(ticket, name) for name in _FIELDS[kind]}
        upvoted = self._store.has_upvoted(ticket.id) if kind is MutationKind.VOTE else None
        return Snapshot(values, upvoted=upvoted)

    def _restore(self, ticket_id: str, snapshot: Snapshot) -> None:
        # Deleted meanwhile; a late response must not bring back its vote membership.
        if ticket_id not in self._store:
            return
        self._store.patch(ticket_id, **snapshot.values)
        if snapshot.upvoted is not None:
            self._store.set_upvoted(ticket_id, snapshot.upvoted)

    def _has_other_pending(self, ticket_id: str, kind: MutationKind) -> bool:
        return any(
            lane.pending
            for (other_id, other_kind), lane in self._lanes.items()
            if other_id == ticket_id and other_kind is not kind
        )

    def _reconcile(self, ticket_id: str, kind: MutationKind, snapshot: Snapshot, entity: Ticket | None) -> None:
        if entity is not None and ticket_id in self._store and not self._has_other_pending(ticket_id, kind):
            self._store.put(entity)
            return
        self._restore(ticket_id, snapshot)

    async def _run(
        self,
        ticket_id: str,
        kind: MutationKind,
        apply: Callable[[Ticket], Any],
        call: Callable[[], Awaitable[ApiResult[Any]]],
        confirmed: Callable[[Any], tuple[Snapshot, Ticket | None]],
    ) -> Any:
        current = self._require(ticket_id)
        lane = self._lanes.setdefault((ticket_id, kind), _Lane())
        seq = lane.issue(self._capture(kind, current))
        apply(current)

        try:
            result = await call()
            base = lane.pending.pop(seq)
            newer = lane.newer_pending(seq)

            if result.ok:
                if lane.applied_seq < seq:
                    lane.applied_seq = seq
                    snapshot, entity = confirmed(result.data)
                    if newer:
                        lane.pending[newer[0]] = snapshot
                    else:
                        self._reconcile(ticket_id, kind, snapshot, entity)
                return result.data

            if lane.applied_seq > seq:
                logger.debug("Stale %s failure for %s ignored", kind.value, ticket_id)
            elif newer:
                lane.pending[newer[0]] = base
            else:
                self._restore(ticket_id, base)
            logger.warning("%s mutation on %s rolled back: %s", kind.value, ticket_id, result.error)
            raise MutationFailed(
                result.error or f"Failed to apply {kind.value} change",
                kind=result.kind or ErrorKind.TRANSPORT,
                status_code=result.status_code,
            )
        finally:
            lane.pending.pop(seq, None)
            if not lane.pending:
                self._lanes.pop((ticket_id, kind), None)
