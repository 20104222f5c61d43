from __future__ import annotations

import asyncio
from collections import defaultdict
from dataclasses import replace
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from featureboard.client.api import ApiResult
from featureboard.client.coordinator import MutationKind, OptimisticMutationCoordinator
from featureboard.client.storage import MemoryStorage
from featureboard.client.store import UPVOTED_STORAGE_KEY, SuggestionStore
from featureboard.errors import ErrorKind, MutationFailed, NotFoundError, ValidationError
from featureboard.tickets.models import TicketPage, VoteAction, VoteResult
from featureboard.tickets.state import TicketStatus


class ScriptedClient:
    """Client whose responses are released explicitly by the test."""

    def __init__(self) -> None:
        self.pending: dict[str, list[asyncio.Future]] = defaultdict(list)

    async def _defer(self, name: str):
        future = asyncio.get_running_loop().create_future()
        self.pending[name].append(future)
        return await future

    async def toggle_vote(self, ticket_id):
        return await self._defer("toggle_vote")

    async def change_status(self, ticket_id, status):
        return await self._defer("change_status")

    async def set_visibility(self, ticket_id, hidden):
        return await self._defer("set_visibility")

    async def delete_ticket(self, ticket_id):
        return ApiResult.success(None)


async def _settle() -> None:
    for _ in range(3):
        await asyncio.sleep(0)


def _failure(message: str = "Server unavailable") -> ApiResult:
    return ApiResult.failure(message, ErrorKind.TRANSPORT, 502)


@pytest.fixture
def store(make_ticket) -> SuggestionStore:
    store = SuggestionStore()
    store.put(make_ticket("t1", upvotes=4))
    return store


@pytest.mark.asyncio
async def test_vote_twice_returns_to_original_state(store):
    client = AsyncMock()
    client.toggle_vote = AsyncMock(
        side_effect=[
            ApiResult.success(VoteResult(VoteAction.ADDED, 5)),
            ApiResult.success(VoteResult(VoteAction.REMOVED, 4)),
        ]
    )
    coordinator = OptimisticMutationCoordinator(store, client)

    await coordinator.toggle_vote("t1")
    assert store.get("t1").upvotes == 5
    assert store.has_upvoted("t1")

    await coordinator.toggle_vote("t1")
    assert store.get("t1").upvotes == 4
    assert not store.has_upvoted("t1")
    assert coordinator.in_flight("t1", MutationKind.VOTE) == 0


@pytest.mark.asyncio
async def test_vote_publishes_optimistically_then_reconciles_with_server_count(store):
    client = ScriptedClient()
    coordinator = OptimisticMutationCoordinator(store, client)

    task = asyncio.create_task(coordinator.toggle_vote("t1"))
    await _settle()
    assert store.get("t1").upvotes == 5
    assert store.has_upvoted("t1")
    assert coordinator.in_flight("t1", MutationKind.VOTE) == 1

    # Someone else voted meanwhile: the server count wins over the local guess.
    client.pending["toggle_vote"][0].set_result(ApiResult.success(VoteResult(VoteAction.ADDED, 7)))
    result = await task

    assert result.upvotes == 7
    assert store.get("t1").upvotes == 7
    assert store.has_upvoted("t1")


@pytest.mark.asyncio
async def test_vote_membership_follows_server_action(store):
    client = AsyncMock()
    client.toggle_vote = AsyncMock(return_value=ApiResult.success(VoteResult(VoteAction.REMOVED, 3)))
    coordinator = OptimisticMutationCoordinator(store, client)

    await coordinator.toggle_vote("t1")

    assert not store.has_upvoted("t1")
    assert store.get("t1").upvotes == 3


@pytest.mark.asyncio
async def test_failed_vote_rolls_back_count_and_membership(store):
    client = AsyncMock()
    client.toggle_vote = AsyncMock(return_value=_failure())
    coordinator = OptimisticMutationCoordinator(store, client)

    with pytest.raises(MutationFailed) as exc_info:
        await coordinator.toggle_vote("t1")

    assert exc_info.value.kind is ErrorKind.TRANSPORT
    assert store.get("t1").upvotes == 4
    assert not store.has_upvoted("t1")


@pytest.mark.asyncio
async def test_failed_status_change_restores_exact_snapshot(store):
    before = store.get("t1")
    client = ScriptedClient()
    coordinator = OptimisticMutationCoordinator(store, client)

    task = asyncio.create_task(coordinator.change_status("t1", "In Progress"))
    await _settle()
    assert store.get("t1").status is TicketStatus.IN_PROGRESS

    client.pending["change_status"][0].set_result(_failure())
    with pytest.raises(MutationFailed):
        await task

    assert store.get("t1") == before


@pytest.mark.asyncio
async def test_invalid_status_is_rejected_before_publishing(store):
    client = AsyncMock()
    coordinator = OptimisticMutationCoordinator(store, client)
    published: list[object] = []
    store.subscribe(published.append)

    with pytest.raises(ValidationError):
        await coordinator.change_status("t1", "Done")

    assert published == []
    assert store.get("t1").status is TicketStatus.QUEUED
    client.change_status.assert_not_awaited()


@pytest.mark.asyncio
async def test_status_reconciles_with_server_entity(store):
    server_ticket = replace(store.get("t1"), status=TicketStatus.COMPLETED, upvotes=9)
    server_ticket.updated_at = server_ticket.updated_at + timedelta(minutes=5)
    client = AsyncMock()
    client.change_status = AsyncMock(return_value=ApiResult.success(server_ticket))
    coordinator = OptimisticMutationCoordinator(store, client)

    await coordinator.change_status("t1", TicketStatus.COMPLETED)

    assert store.get("t1") == server_ticket


@pytest.mark.asyncio
async def test_newer_response_wins_when_it_arrives_first(store):
    client = ScriptedClient()
    coordinator = OptimisticMutationCoordinator(store, client)
    original = store.get("t1")

    task_a = asyncio.create_task(coordinator.change_status("t1", "In Progress"))
    await _settle()
    task_b = asyncio.create_task(coordinator.change_status("t1", "Completed"))
    await _settle()
    assert coordinator.in_flight("t1", MutationKind.STATUS) == 2

    response_a = replace(original, status=TicketStatus.IN_PROGRESS)
    response_b = replace(original, status=TicketStatus.COMPLETED)
    client.pending["change_status"][1].set_result(ApiResult.success(response_b))
    await task_b
    client.pending["change_status"][0].set_result(ApiResult.success(response_a))
    await task_a

    assert store.get("t1").status is TicketStatus.COMPLETED
    assert coordinator.in_flight("t1", MutationKind.STATUS) == 0


@pytest.mark.asyncio
async def test_older_failure_does_not_clobber_newer_optimistic_state(store):
    client = ScriptedClient()
    coordinator = OptimisticMutationCoordinator(store, client)

    task_a = asyncio.create_task(coordinator.change_status("t1", "In Progress"))
    await _settle()
    task_b = asyncio.create_task(coordinator.change_status("t1", "Completed"))
    await _settle()

    client.pending["change_status"][0].set_result(_failure())
    with pytest.raises(MutationFailed):
        await task_a
    assert store.get("t1").status is TicketStatus.COMPLETED

    # B fails too: rollback goes all the way to the state before A.
    client.pending["change_status"][1].set_result(_failure())
    with pytest.raises(MutationFailed):
        await task_b
    assert store.get("t1").status is TicketStatus.QUEUED


@pytest.mark.asyncio
async def test_newer_failure_rolls_back_to_older_confirmed_state(store):
    client = ScriptedClient()
    coordinator = OptimisticMutationCoordinator(store, client)
    original = store.get("t1")

    task_a = asyncio.create_task(coordinator.change_status("t1", "In Progress"))
    await _settle()
    task_b = asyncio.create_task(coordinator.change_status("t1", "Completed"))
    await _settle()

    client.pending["change_status"][0].set_result(
        ApiResult.success(replace(original, status=TicketStatus.IN_PROGRESS))
    )
    await task_a
    # B is still in flight, so its optimistic value stays visible.
    assert store.get("t1").status is TicketStatus.COMPLETED

    client.pending["change_status"][1].set_result(_failure())
    with pytest.raises(MutationFailed):
        await task_b
    assert store.get("t1").status is TicketStatus.IN_PROGRESS


@pytest.mark.asyncio
async def test_stale_failure_after_newer_success_is_ignored(store):
    client = ScriptedClient()
    coordinator = OptimisticMutationCoordinator(store, client)
    original = store.get("t1")

    task_a = asyncio.create_task(coordinator.set_visibility("t1", True))
    await _settle()
    task_b = asyncio.create_task(coordinator.set_visibility("t1", False))
    await _settle()

    client.pending["set_visibility"][1].set_result(ApiResult.success(replace(original, hidden=False)))
    await task_b
    client.pending["set_visibility"][0].set_result(_failure())
    with pytest.raises(MutationFailed):
        await task_a

    assert store.get("t1").hidden is False


@pytest.mark.asyncio
async def test_visibility_toggle_flips_and_rolls_back(store):
    client = AsyncMock()
    client.set_visibility = AsyncMock(return_value=_failure())
    coordinator = OptimisticMutationCoordinator(store, client)

    with pytest.raises(MutationFailed):
        await coordinator.set_visibility("t1")

    client.set_visibility.assert_awaited_once_with("t1", True)
    assert store.get("t1").hidden is False


@pytest.mark.asyncio
async def test_kinds_on_same_ticket_do_not_interfere(store):
    client = ScriptedClient()
    coordinator = OptimisticMutationCoordinator(store, client)
    original = store.get("t1")

    vote = asyncio.create_task(coordinator.toggle_vote("t1"))
    status = asyncio.create_task(coordinator.change_status("t1", "Completed"))
    await _settle()

    # Server entity still shows the old vote count; the pending vote must survive.
    client.pending["change_status"][0].set_result(
        ApiResult.success(replace(original, status=TicketStatus.COMPLETED))
    )
    await status
    assert store.get("t1").upvotes == 5

    client.pending["toggle_vote"][0].set_result(_failure())
    with pytest.raises(MutationFailed):
        await vote
    ticket = store.get("t1")
    assert ticket.upvotes == 4
    assert ticket.status is TicketStatus.COMPLETED


@pytest.mark.asyncio
async def test_successful_delete_removes_ticket(store):
    client = AsyncMock()
    client.delete_ticket = AsyncMock(return_value=ApiResult.success(None))
    coordinator = OptimisticMutationCoordinator(store, client)
    store.set_upvoted("t1", True)

    await coordinator.delete("t1")

    assert "t1" not in store
    assert not store.has_upvoted("t1")


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "outcome",
    [ApiResult.success(VoteResult(VoteAction.ADDED, 5)), _failure()],
    ids=["confirmed", "failed"],
)
async def test_vote_settling_after_delete_leaves_no_membership(make_ticket, outcome):
    storage = MemoryStorage()
    store = SuggestionStore(storage=storage)
    store.put(make_ticket("t1", upvotes=4))
    client = ScriptedClient()
    coordinator = OptimisticMutationCoordinator(store, client)

    vote = asyncio.create_task(coordinator.toggle_vote("t1"))
    await _settle()
    assert store.has_upvoted("t1")

    await coordinator.delete("t1")
    client.pending["toggle_vote"][0].set_result(outcome)
    await asyncio.gather(vote, return_exceptions=True)

    assert "t1" not in store
    assert not store.has_upvoted("t1")
    assert storage.get(UPVOTED_STORAGE_KEY) == "[]"


@pytest.mark.asyncio
async def test_failed_delete_reloads_collection(make_ticket):
    client = AsyncMock()
    client.delete_ticket = AsyncMock(return_value=ApiResult.failure("Forbidden", ErrorKind.FORBIDDEN, 403))
    client.list_tickets = AsyncMock(
        return_value=ApiResult.success(
            TicketPage(tickets=[make_ticket("t1", upvotes=6)], page=1, limit=1000, total=1)
        )
    )
    client.upvoted_posts = AsyncMock(return_value=ApiResult.success([]))
    store = SuggestionStore(client)
    store.put(make_ticket("t1", upvotes=4))
    coordinator = OptimisticMutationCoordinator(store, client)

    with pytest.raises(MutationFailed) as exc_info:
        await coordinator.delete("t1")

    assert exc_info.value.kind is ErrorKind.FORBIDDEN
    client.list_tickets.assert_awaited_once()
    assert store.get("t1").upvotes == 6


@pytest.mark.asyncio
async def test_unknown_ticket_is_rejected_without_server_call(store):
    client = AsyncMock()
    coordinator = OptimisticMutationCoordinator(store, client)

    with pytest.raises(NotFoundError):
        await coordinator.toggle_vote("missing")

    client.toggle_vote.assert_not_awaited()
