"""Ticket domain models, persistence and services."""

from .models import Author, Comment, ImageAttachment, Ticket, TicketPage, TicketQuery, VoteAction, VoteResult
from .service import TicketService
from .state import TicketStatus

__all__ = [
    "Author",
    "Comment",
    "ImageAttachment",
    "Ticket",
    "TicketPage",
    "TicketQuery",
    "TicketService",
    "TicketStatus",
    "VoteAction",
    "VoteResult",
]
