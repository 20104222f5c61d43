from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from .state import TicketStatus


@dataclass(slots=True)
class Author:
    """Public projection of a user attached to tickets and comments."""

    id: str
    email: str | None = None
    name: str | None = None
    display_name: str | None = None

    @property
    def label(self) -> str:
        return self.display_name or self.name or self.email or "Anonymous"


@dataclass(slots=True)
class UserAccount:
    id: str
    email: str
    name: str | None
    display_name: str | None
    created_at: datetime


@dataclass(slots=True)
class Comment:
    """Comment on a ticket; immutable once created."""

    id: str
    ticket_id: str
    content: str
    author: str
    created_at: datetime


@dataclass(slots=True)
class ImageAttachment:
    """User-uploaded image, either still ephemeral or promoted.

    While ``temp_filename`` is set the image lives in temporary storage and
    ``url`` is a signed link that stops working at ``expires_at``.
    """

    id: str
    url: str
    name: str = "uploaded-image"
    size: int = 0
    content_type: str = "image/*"
    uploaded_at: datetime | None = None
    temp_filename: str | None = None
    expires_at: datetime | None = None

    @property
    def is_ephemeral(self) -> bool:
        return self.temp_filename is not None

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and now >= self.expires_at


@dataclass(slots=True)
class Ticket:
    """Aggregate representing a feature suggestion."""

    id: str
    title: str
    description: str
    status: TicketStatus
    hidden: bool
    upvotes: int
    created_at: datetime
    updated_at: datetime
    author: Author | None = None
    images: list[ImageAttachment] = field(default_factory=list)
    comments: list[Comment] = field(default_factory=list)

    @property
    def image_url(self) -> str | None:
        return self.images[0].url if self.images else None


class VoteAction(str, Enum):
    ADDED = "added"
    REMOVED = "removed"


@dataclass(slots=True)
class VoteResult:
    """Outcome of a vote toggle; ``upvotes`` is the ticket's new total."""

    action: VoteAction
    upvotes: int


class SortField(str, Enum):
    CREATED_AT = "createdAt"
    UPVOTES = "upvotes"
    TRENDING = "trending"


class SortOrder(str, Enum):
    ASC = "asc"
    DESC = "desc"


@dataclass(slots=True)
class TicketQuery:
    """Filters accepted by ticket listings."""

    status: TicketStatus | None = None
    search: str | None = None
    author_id: str | None = None
    hidden: bool | None = None
    sort_by: SortField = SortField.CREATED_AT
    sort_order: SortOrder = SortOrder.DESC
    page: int = 1
    limit: int = 1000

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


@dataclass(slots=True)
class TicketPage:
    tickets: list[Ticket]
    page: int
    limit: int
    total: int

    @property
    def total_pages(self) -> int:
        if self.limit <= 0:
            return 0
        return math.ceil(self.total / self.limit)


def image_from_url(ticket_id: str, url: str | None, uploaded_at: datetime) -> list[ImageAttachment]:
    """Expand a stored image URL into the attachment list clients render."""

    if not url:
        return []
    return [ImageAttachment(id=f"img-{ticket_id}", url=url, uploaded_at=uploaded_at)]
