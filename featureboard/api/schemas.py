"""Wire representations shared by several routers."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from featureboard.tickets.models import Comment, Ticket, TicketPage
from featureboard.tickets.state import TicketStatus


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class AuthorResponse(CamelModel):
    id: str
    name: str | None = None
    email: str | None = None
    display_name: str | None = None


class CommentResponse(CamelModel):
    id: str
    content: str
    author: str
    created_at: datetime


class ImageResponse(CamelModel):
    id: str
    name: str
    url: str
    size: int
    content_type: str = Field(alias="type")
    uploaded_at: datetime | None = None


class TicketResponse(CamelModel):
    id: str
    title: str
    description: str
    status: TicketStatus
    hidden: bool
    upvotes: int
    created_at: datetime
    updated_at: datetime
    author: AuthorResponse | None = None
    comments: list[CommentResponse]
    images: list[ImageResponse]


class PaginationResponse(CamelModel):
    page: int
    limit: int
    total: int
    total_pages: int


class TicketPageResponse(CamelModel):
    tickets: list[TicketResponse]
    pagination: PaginationResponse


def ticket_response(ticket: Ticket) -> TicketResponse:
    return TicketResponse.model_validate(ticket)


def comment_response(comment: Comment) -> CommentResponse:
    return CommentResponse.model_validate(comment)


def page_response(page: TicketPage) -> TicketPageResponse:
    return TicketPageResponse(
        tickets=[ticket_response(ticket) for ticket in page.tickets],
        pagination=PaginationResponse(
            page=page.page,
            limit=page.limit,
            total=page.total,
            total_pages=page.total_pages,
        ),
    )
