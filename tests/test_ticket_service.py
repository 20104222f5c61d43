from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from featureboard.errors import AuthError, NotFoundError, UploadError, ValidationError
from featureboard.identity import Principal
from featureboard.storage.uploads import EphemeralUploadManager, PromotedImage
from featureboard.tickets.models import Author, TicketQuery, UserAccount, VoteAction, VoteResult
from featureboard.tickets.service import TempImageRef, TicketService
from featureboard.tickets.state import TicketStatus

ADA = Principal(id="idp-1", email="ada@example.com", full_name="Ada Lovelace")


class DummyRepository:
    def __init__(self, user: UserAccount):
        self.get_or_create_user = AsyncMock(return_value=user)
        self.get_user_by_email = AsyncMock(return_value=user)
        self.update_display_name = AsyncMock(return_value=user)
        self.create_ticket = AsyncMock()
        self.get_ticket = AsyncMock()
        self.list_tickets = AsyncMock()
        self.update_status = AsyncMock()
        self.set_hidden = AsyncMock()
        self.delete_ticket = AsyncMock(return_value=True)
        self.add_comment = AsyncMock()
        self.list_comments = AsyncMock(return_value=[])
        self.toggle_vote = AsyncMock()
        self.list_voted_ticket_ids = AsyncMock(return_value=["t1"])


@pytest.fixture
def user(clock) -> UserAccount:
    return UserAccount(id="user-1", email=ADA.email, name="Ada Lovelace", display_name=None, created_at=clock())


@pytest.fixture
def repository(user) -> DummyRepository:
    return DummyRepository(user)


@pytest.mark.asyncio
async def test_create_ticket_starts_queued_and_trims_input(repository, clock, make_ticket):
    repository.create_ticket.return_value = make_ticket("t1", title="Dark mode")
    service = TicketService(repository, clock=clock)

    ticket = await service.create_ticket(ADA, title="  Dark mode ", description="  ")

    kwargs = repository.create_ticket.await_args.kwargs
    assert kwargs["title"] == "Dark mode"
    assert kwargs["description"] == ""
    assert kwargs["status"] is TicketStatus.QUEUED
    assert kwargs["author_id"] == "user-1"
    assert kwargs["now"] == clock()
    assert ticket.title == "Dark mode"
    repository.get_or_create_user.assert_awaited_once()
    assert repository.get_or_create_user.await_args.kwargs["name"] == "Ada Lovelace"


@pytest.mark.asyncio
async def test_create_ticket_requires_title(repository):
    service = TicketService(repository)

    with pytest.raises(ValidationError):
        await service.create_ticket(ADA, title="   ")

    repository.get_or_create_user.assert_not_awaited()
    repository.create_ticket.assert_not_awaited()


@pytest.mark.asyncio
async def test_create_ticket_promotes_temp_image_first(repository, make_ticket):
    uploads = AsyncMock()
    uploads.promote = AsyncMock(return_value=PromotedImage(key="user-1/1-a.png", url="https://cdn/a.png"))
    repository.create_ticket.return_value = make_ticket("t1")
    service = TicketService(repository, uploads=uploads)

    await service.create_ticket(
        ADA,
        title="With image",
        temp_image=TempImageRef(temp_key="temp/1-a.png", original_name="a.png", content_type="image/png"),
    )

    uploads.promote.assert_awaited_once_with(
        "temp/1-a.png", target_name="a.png", content_type="image/png", owner_id="user-1"
    )
    assert repository.create_ticket.await_args.kwargs["image_url"] == "https://cdn/a.png"


@pytest.mark.asyncio
async def test_failed_promotion_creates_no_ticket(repository):
    uploads = AsyncMock()
    uploads.promote = AsyncMock(side_effect=UploadError("Failed to move file to permanent storage"))
    service = TicketService(repository, uploads=uploads)

    with pytest.raises(UploadError):
        await service.create_ticket(ADA, title="With image", temp_image=TempImageRef(temp_key="temp/1-a.png"))

    repository.create_ticket.assert_not_awaited()


@pytest.mark.asyncio
async def test_create_ticket_rejects_temp_image_url(repository, temp_store, permanent_store, clock):
    uploads = EphemeralUploadManager(temp_store, permanent_store, clock=clock)
    service = TicketService(repository, uploads=uploads, clock=clock)

    with pytest.raises(ValidationError):
        await service.create_ticket(
            ADA,
            title="With image",
            image_url="https://storage.test/temp-images/temp/1-abc-shot.png?token=signed",
        )

    repository.get_or_create_user.assert_not_awaited()
    repository.create_ticket.assert_not_awaited()


@pytest.mark.asyncio
async def test_create_ticket_keeps_permanent_image_url(repository, temp_store, permanent_store, clock, make_ticket):
    repository.create_ticket.return_value = make_ticket("t1")
    uploads = EphemeralUploadManager(temp_store, permanent_store, clock=clock)
    service = TicketService(repository, uploads=uploads, clock=clock)
    url = permanent_store.public_url("user-1/1-shot.png")

    await service.create_ticket(ADA, title="With image", image_url=url)

    assert repository.create_ticket.await_args.kwargs["image_url"] == url


@pytest.mark.asyncio
async def test_public_listing_always_excludes_hidden(repository):
    service = TicketService(repository)

    await service.list_tickets(TicketQuery(hidden=True, search="dark"))

    query = repository.list_tickets.await_args.args[0]
    assert query.hidden is False
    assert query.search == "dark"


@pytest.mark.asyncio
async def test_admin_listing_keeps_hidden_filter(repository):
    service = TicketService(repository)

    await service.list_tickets(TicketQuery(hidden=None), include_hidden=True)

    assert repository.list_tickets.await_args.args[0].hidden is None


@pytest.mark.asyncio
async def test_change_status_rejects_unknown_status_without_touching_storage(repository):
    service = TicketService(repository)

    with pytest.raises(ValidationError):
        await service.change_status("t1", "Done")

    repository.update_status.assert_not_awaited()


@pytest.mark.asyncio
async def test_change_status_missing_ticket(repository):
    repository.update_status.return_value = None
    service = TicketService(repository)

    with pytest.raises(NotFoundError):
        await service.change_status("t1", "Completed")


@pytest.mark.asyncio
async def test_author_can_delete_own_ticket(repository, make_ticket):
    repository.get_ticket.return_value = make_ticket("t1", author=Author(id="user-1", email=ADA.email))
    service = TicketService(repository)

    await service.delete_ticket("t1", ADA, is_admin=False)

    repository.delete_ticket.assert_awaited_once_with("t1")


@pytest.mark.asyncio
async def test_non_author_cannot_delete(repository, make_ticket):
    repository.get_ticket.return_value = make_ticket("t1", author=Author(id="user-2", email="bob@example.com"))
    service = TicketService(repository)

    with pytest.raises(AuthError) as exc_info:
        await service.delete_ticket("t1", ADA, is_admin=False)

    assert exc_info.value.forbidden
    repository.delete_ticket.assert_not_awaited()


@pytest.mark.asyncio
async def test_admin_delete_of_missing_ticket_is_not_found(repository):
    repository.delete_ticket.return_value = False
    service = TicketService(repository)

    with pytest.raises(NotFoundError):
        await service.delete_ticket("t1", ADA, is_admin=True)


@pytest.mark.asyncio
async def test_add_comment_validates_and_checks_ticket(repository, make_ticket):
    service = TicketService(repository)

    with pytest.raises(ValidationError):
        await service.add_comment(ADA, ticket_id="t1", content="   ")

    repository.get_ticket.return_value = None
    with pytest.raises(NotFoundError):
        await service.add_comment(ADA, ticket_id="t1", content="Nice")

    repository.get_ticket.return_value = make_ticket("t1")
    await service.add_comment(ADA, ticket_id="t1", content="  Nice  ")
    assert repository.add_comment.await_args.kwargs["content"] == "Nice"


@pytest.mark.asyncio
async def test_toggle_vote_for_missing_ticket(repository):
    repository.toggle_vote.return_value = None
    service = TicketService(repository)

    with pytest.raises(NotFoundError):
        await service.toggle_vote(ADA, "t1")


@pytest.mark.asyncio
async def test_toggle_vote_returns_repository_result(repository):
    repository.toggle_vote.return_value = VoteResult(VoteAction.ADDED, 1)
    service = TicketService(repository)

    result = await service.toggle_vote(ADA, "t1")

    assert result.action is VoteAction.ADDED
    repository.toggle_vote.assert_awaited_once_with(user_id="user-1", ticket_id="t1")


@pytest.mark.asyncio
async def test_upvoted_ids_for_anonymous_caller_are_empty(repository):
    service = TicketService(repository)

    assert await service.upvoted_ticket_ids(None) == []
    assert await service.upvoted_ticket_ids(ADA) == ["t1"]


@pytest.mark.asyncio
async def test_display_name_validation(repository):
    service = TicketService(repository)

    with pytest.raises(ValidationError):
        await service.update_display_name(ADA, " ")
    with pytest.raises(ValidationError):
        await service.update_display_name(ADA, "x" * 51)

    assert await service.update_display_name(ADA, "  Countess  ") == "Countess"
    repository.update_display_name.assert_awaited_once_with(ADA.email, "Countess")
