from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Callable

from featureboard.errors import AuthError, NotFoundError, ValidationError
from featureboard.identity import Principal
from featureboard.storage.uploads import EphemeralUploadManager

from .models import Comment, Ticket, TicketPage, TicketQuery, UserAccount, VoteResult
from .repository import TicketRepository
from .state import TicketStatus

logger = logging.getLogger(__name__)

DISPLAY_NAME_MAX_LENGTH = 50


@dataclass(slots=True)
class TempImageRef:
    """An image still in temporary storage, to be promoted on submit."""

    temp_key: str
    original_name: str | None = None
    content_type: str | None = None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TicketService:
    """High level orchestration for tickets, comments, votes and profiles."""

    def __init__(
        self,
        repository: TicketRepository,
        *,
        uploads: EphemeralUploadManager | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._repository = repository
        self._uploads = uploads
        self._clock = clock

    async def ensure_schema(self) -> None:
        await self._repository.ensure_schema()

    async def resolve_user(self, principal: Principal) -> UserAccount:
        return await self._repository.get_or_create_user(
            user_id=str(uuid.uuid4()),
            email=principal.email,
            name=principal.default_name,
            now=self._clock(),
        )

    async def create_ticket(
        self,
        principal: Principal,
        *,
        title: str,
        description: str = "",
        image_url: str | None = None,
        temp_image: TempImageRef | None = None,
    ) -> Ticket:
        """Create a suggestion; a temp image is promoted before anything is stored."""

        clean_title = (title or "").strip()
        if not clean_title:
            raise ValidationError("Title is required")
        if image_url and temp_image is None and self._uploads is not None and self._uploads.is_temp_url(image_url):
            raise ValidationError("Temporary images must be submitted by tempFilename")

        user = await self.resolve_user(principal)

        if temp_image is not None:
            if self._uploads is None:
                raise ValidationError("Image uploads are not configured")
            promoted = await self._uploads.promote(
                temp_image.temp_key,
                target_name=temp_image.original_name,
                content_type=temp_image.content_type,
                owner_id=user.id,
            )
            image_url = promoted.url

        ticket = await self._repository.create_ticket(
            ticket_id=str(uuid.uuid4()),
            title=clean_title,
            description=(description or "").strip(),
            status=TicketStatus.initial_state(),
            image_url=image_url,
            author_id=user.id,
            now=self._clock(),
        )
        logger.info("Ticket %s created by %s", ticket.id, user.id)
        return ticket

    async def list_tickets(self, query: TicketQuery, *, include_hidden: bool = False) -> TicketPage:
        if not include_hidden:
            query = replace(query, hidden=False)
        if query.page < 1 or query.limit < 1:
            raise ValidationError("page and limit must be positive")
        return await self._repository.list_tickets(query, now=self._clock())

    async def get_ticket(self, ticket_id: str) -> Ticket:
        ticket = await self._repository.get_ticket(ticket_id)
        if ticket is None:
            raise NotFoundError("Ticket not found")
        return ticket

    async def change_status(self, ticket_id: str, status: object) -> Ticket:
        new_status = TicketStatus.parse(status)
        updated = await self._repository.update_status(ticket_id, new_status, self._clock())
        if updated is None:
            raise NotFoundError("Ticket not found")
        return updated

    async def set_visibility(self, ticket_id: str, hidden: bool) -> Ticket:
        updated = await self._repository.set_hidden(ticket_id, hidden, self._clock())
        if updated is None:
            raise NotFoundError("Ticket not found")
        return updated

    async def delete_ticket(self, ticket_id: str, principal: Principal, *, is_admin: bool) -> None:
        if not is_admin:
            ticket = await self.get_ticket(ticket_id)
            if ticket.author is None or ticket.author.email != principal.email:
                raise AuthError("Only the author or an administrator can delete this ticket", forbidden=True)
        deleted = await self._repository.delete_ticket(ticket_id)
        if not deleted:
            raise NotFoundError("Ticket not found")

    async def list_comments(self, ticket_id: str) -> list[Comment]:
        return await self._repository.list_comments(ticket_id)

    async def add_comment(self, principal: Principal, *, ticket_id: str, content: str) -> Comment:
        text = (content or "").strip()
        if not ticket_id:
            raise ValidationError("Ticket ID is required")
        if not text:
            raise ValidationError("Comment content is required")

        if await self._repository.get_ticket(ticket_id) is None:
            raise NotFoundError("Ticket not found")

        user = await self.resolve_user(principal)
        return await self._repository.add_comment(
            comment_id=str(uuid.uuid4()),
            ticket_id=ticket_id,
            author=user,
            content=text,
            now=self._clock(),
        )

    async def toggle_vote(self, principal: Principal, ticket_id: str) -> VoteResult:
        if not ticket_id:
            raise ValidationError("Ticket ID is required")
        user = await self.resolve_user(principal)
        result = await self._repository.toggle_vote(user_id=user.id, ticket_id=ticket_id)
        if result is None:
            raise NotFoundError("Ticket not found")
        return result

    async def upvoted_ticket_ids(self, principal: Principal | None) -> list[str]:
        if principal is None:
            return []
        user = await self._repository.get_user_by_email(principal.email)
        if user is None:
            return []
        return await self._repository.list_voted_ticket_ids(user.id)

    async def get_display_name(self, principal: Principal) -> str | None:
        user = await self._repository.get_user_by_email(principal.email)
        if user is None:
            raise NotFoundError("User not found in database")
        return user.display_name

    async def update_display_name(self, principal: Principal, display_name: str) -> str:
        name = (display_name or "").strip()
        if not name:
            raise ValidationError("Display name cannot be empty")
        if len(name) > DISPLAY_NAME_MAX_LENGTH:
            raise ValidationError(f"Display name must be {DISPLAY_NAME_MAX_LENGTH} characters or less")
        await self.resolve_user(principal)
        updated = await self._repository.update_display_name(principal.email, name)
        if updated is None:
            raise NotFoundError("User not found in database")
        return name
