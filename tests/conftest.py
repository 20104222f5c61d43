from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Iterable

import pytest

from featureboard.admins.models import RemovalOutcome, SystemAdmin
from featureboard.errors import TransportError
from featureboard.identity import Principal
from featureboard.storage.blob import SignedUrl, StoredObject
from featureboard.tickets.models import (
    Author,
    Comment,
    SortField,
    SortOrder,
    Ticket,
    TicketPage,
    TicketQuery,
    UserAccount,
    VoteAction,
    VoteResult,
    image_from_url,
)
from featureboard.tickets.state import TicketStatus

BASE_TIME = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Settable clock usable both as a ``datetime`` and an epoch-seconds source."""

    def __init__(self, start: datetime = BASE_TIME) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def epoch(self) -> float:
        return self.now.timestamp()

    def advance(self, **delta: float) -> datetime:
        self.now = self.now + timedelta(**delta)
        return self.now


class FakeBlobStore:
    """In-memory bucket recording every call."""

    def __init__(self, clock: FakeClock, *, name: str = "bucket") -> None:
        self._clock = clock
        self.name = name
        self.objects: dict[str, tuple[bytes, str, datetime]] = {}
        self.calls: list[tuple[str, object]] = []
        self.fail_on: set[str] = set()

    @property
    def bucket(self) -> str:
        return self.name

    def _check(self, operation: str, argument: object) -> None:
        self.calls.append((operation, argument))
        if operation in self.fail_on:
            raise TransportError(f"{operation} failed", status_code=500)

    def calls_to(self, operation: str) -> list[object]:
        return [argument for name, argument in self.calls if name == operation]

    def put(self, key: str, *, created_at: datetime, data: bytes = b"img", content_type: str = "image/png") -> None:
        self.objects[key] = (data, content_type, created_at)

    async def upload(self, key: str, data: bytes, content_type: str) -> str:
        self._check("upload", key)
        self.objects[key] = (data, content_type, self._clock())
        return key

    async def download(self, key: str) -> bytes:
        self._check("download", key)
        if key not in self.objects:
            raise TransportError("Object not found", status_code=404)
        return self.objects[key][0]

    async def signed_url(self, key: str, ttl_seconds: int) -> SignedUrl:
        self._check("signed_url", key)
        return SignedUrl(
            url=f"https://storage.test/{self.name}/{key}?token=signed",
            expires_at=self._clock() + timedelta(seconds=ttl_seconds),
        )

    def public_url(self, key: str) -> str:
        return f"https://storage.test/public/{self.name}/{key}"

    async def remove(self, keys: Iterable[str]) -> list[str]:
        keys = list(keys)
        self._check("remove", keys)
        removed = [key for key in keys if self.objects.pop(key, None) is not None]
        return removed

    async def list(self, prefix: str) -> list[StoredObject]:
        self._check("list", prefix)
        folder = prefix.strip("/") + "/"
        return [
            StoredObject(key=key, created_at=created_at)
            for key, (_, _, created_at) in self.objects.items()
            if key.startswith(folder)
        ]


class InMemoryTicketRepository:
    """Dictionary-backed stand-in for ``TicketRepository``."""

    def __init__(self) -> None:
        self.users: dict[str, UserAccount] = {}
        self.tickets: dict[str, dict] = {}
        self.comments: list[Comment] = []
        self.votes: set[tuple[str, str]] = set()

    async def ensure_schema(self) -> None:
        return None

    async def get_or_create_user(self, *, user_id: str, email: str, name: str | None, now: datetime) -> UserAccount:
        if email not in self.users:
            self.users[email] = UserAccount(id=user_id, email=email, name=name, display_name=name, created_at=now)
        return self.users[email]

    async def get_user_by_email(self, email: str) -> UserAccount | None:
        return self.users.get(email)

    async def update_display_name(self, email: str, display_name: str) -> UserAccount | None:
        user = self.users.get(email)
        if user is not None:
            user.display_name = display_name
        return user

    def _author(self, author_id: str | None) -> Author | None:
        for user in self.users.values():
            if user.id == author_id:
                return Author(id=user.id, email=user.email, name=user.name, display_name=user.display_name)
        return None

    def _build(self, record: dict) -> Ticket:
        return Ticket(
            id=record["id"],
            title=record["title"],
            description=record["description"],
            status=record["status"],
            hidden=record["hidden"],
            upvotes=record["upvotes"],
            created_at=record["created_at"],
            updated_at=record["updated_at"],
            author=self._author(record["author_id"]),
            images=image_from_url(record["id"], record["image_url"], record["created_at"]),
            comments=[comment for comment in self.comments if comment.ticket_id == record["id"]],
        )

    async def create_ticket(self, *, ticket_id, title, description, status, image_url, author_id, now) -> Ticket:
        self.tickets[ticket_id] = {
            "id": ticket_id,
            "title": title,
            "description": description,
            "status": status,
            "hidden": False,
            "upvotes": 0,
            "image_url": image_url,
            "author_id": author_id,
            "created_at": now,
            "updated_at": now,
        }
        return self._build(self.tickets[ticket_id])

    async def get_ticket(self, ticket_id: str) -> Ticket | None:
        record = self.tickets.get(ticket_id)
        return None if record is None else self._build(record)

    async def list_tickets(self, query: TicketQuery, *, now: datetime | None = None) -> TicketPage:
        records = list(self.tickets.values())
        if query.hidden is not None:
            records = [record for record in records if record["hidden"] == query.hidden]
        if query.status is not None:
            records = [record for record in records if record["status"] is query.status]
        if query.search:
            needle = query.search.casefold()
            records = [
                record
                for record in records
                if needle in record["title"].casefold() or needle in record["description"].casefold()
            ]
        if query.sort_by is SortField.UPVOTES:
            records.sort(key=lambda record: record["upvotes"], reverse=query.sort_order is SortOrder.DESC)
        else:
            records.sort(key=lambda record: record["created_at"], reverse=query.sort_order is SortOrder.DESC)
        window = records[query.offset : query.offset + query.limit]
        return TicketPage(
            tickets=[self._build(record) for record in window],
            page=query.page,
            limit=query.limit,
            total=len(records),
        )

    async def update_status(self, ticket_id: str, status: TicketStatus, now: datetime) -> Ticket | None:
        record = self.tickets.get(ticket_id)
        if record is None:
            return None
        record.update(status=status, updated_at=now)
        return self._build(record)

    async def set_hidden(self, ticket_id: str, hidden: bool, now: datetime) -> Ticket | None:
        record = self.tickets.get(ticket_id)
        if record is None:
            return None
        record.update(hidden=hidden, updated_at=now)
        return self._build(record)

    async def delete_ticket(self, ticket_id: str) -> bool:
        return self.tickets.pop(ticket_id, None) is not None

    async def add_comment(self, *, comment_id, ticket_id, author: UserAccount, content, now) -> Comment:
        label = Author(id=author.id, email=author.email, name=author.name, display_name=author.display_name).label
        comment = Comment(id=comment_id, ticket_id=ticket_id, content=content, author=label, created_at=now)
        self.comments.append(comment)
        return comment

    async def list_comments(self, ticket_id: str) -> list[Comment]:
        return [comment for comment in self.comments if comment.ticket_id == ticket_id]

    async def toggle_vote(self, *, user_id: str, ticket_id: str) -> VoteResult | None:
        record = self.tickets.get(ticket_id)
        if record is None:
            return None
        if (user_id, ticket_id) in self.votes:
            self.votes.discard((user_id, ticket_id))
            record["upvotes"] = max(0, record["upvotes"] - 1)
            return VoteResult(action=VoteAction.REMOVED, upvotes=record["upvotes"])
        self.votes.add((user_id, ticket_id))
        record["upvotes"] += 1
        return VoteResult(action=VoteAction.ADDED, upvotes=record["upvotes"])

    async def list_voted_ticket_ids(self, user_id: str) -> list[str]:
        return [ticket_id for voter, ticket_id in self.votes if voter == user_id]


class StaticIdentityProvider:
    """Maps bearer tokens to principals; unknown tokens are anonymous."""

    def __init__(self, principals: dict[str, Principal]) -> None:
        self._principals = principals
        self.calls = 0

    async def get_principal(self, token: str) -> Principal | None:
        self.calls += 1
        return self._principals.get(token)


class InMemoryAdminRepository:
    def __init__(self, admins: Iterable[SystemAdmin] = ()) -> None:
        self.admins: dict[str, SystemAdmin] = {admin.id: admin for admin in admins}

    async def ensure_schema(self) -> None:
        return None

    async def list_admins(self) -> list[SystemAdmin]:
        return list(self.admins.values())

    async def get_by_email(self, email: str) -> SystemAdmin | None:
        for admin in self.admins.values():
            if admin.email.lower() == email.lower():
                return admin
        return None

    async def add_admin(self, *, admin_id: str, email: str, name: str, now: datetime) -> SystemAdmin | None:
        if await self.get_by_email(email) is not None:
            return None
        admin = SystemAdmin(id=admin_id, email=email.strip().lower(), name=name, created_at=now)
        self.admins[admin_id] = admin
        return admin

    async def remove_unless_last(self, admin_id: str) -> RemovalOutcome:
        if admin_id not in self.admins:
            return RemovalOutcome.NOT_FOUND
        if len(self.admins) <= 1:
            return RemovalOutcome.LAST_ADMIN
        del self.admins[admin_id]
        return RemovalOutcome.REMOVED


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def temp_store(clock: FakeClock) -> FakeBlobStore:
    return FakeBlobStore(clock, name="temp-images")


@pytest.fixture
def permanent_store(clock: FakeClock) -> FakeBlobStore:
    return FakeBlobStore(clock, name="images")


def build_ticket(ticket_id: str = "t1", **overrides) -> Ticket:
    values = {
        "id": ticket_id,
        "title": f"Ticket {ticket_id}",
        "description": "",
        "status": TicketStatus.QUEUED,
        "hidden": False,
        "upvotes": 0,
        "created_at": BASE_TIME,
        "updated_at": BASE_TIME,
    }
    values.update(overrides)
    return Ticket(**values)


@pytest.fixture
def make_ticket():
    return build_ticket
