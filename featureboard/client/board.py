from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Sequence

from featureboard.errors import UploadError, ValidationError
from featureboard.storage.uploads import MAX_UPLOAD_BYTES, validate_image
from featureboard.tickets.models import Comment, ImageAttachment, Ticket

from .api import FeatureBoardClient
from .auth_gate import AuthGate, GateResult
from .coordinator import OptimisticMutationCoordinator
from .drafts import DraftStore
from .store import SuggestionStore

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _image_snapshot(image: ImageAttachment) -> dict[str, Any]:
    return {
        "id": image.id,
        "name": image.name,
        "url": image.url,
        "size": image.size,
        "type": image.content_type,
        "uploadedAt": image.uploaded_at,
        "tempFilename": image.temp_filename,
        "expiresAt": image.expires_at,
    }


class FeatureBoard:
    """Entry point used by UI code: every mutation passes through the gate."""

    def __init__(
        self,
        client: FeatureBoardClient,
        store: SuggestionStore,
        gate: AuthGate,
        drafts: DraftStore,
        *,
        coordinator: OptimisticMutationCoordinator | None = None,
        max_upload_bytes: int = MAX_UPLOAD_BYTES,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._client = client
        self._store = store
        self._gate = gate
        self._drafts = drafts
        self._coordinator = coordinator or OptimisticMutationCoordinator(store, client)
        self._max_upload_bytes = max_upload_bytes
        self._clock = clock

    @property
    def store(self) -> SuggestionStore:
        return self._store

    async def load(self) -> None:
        self._drafts.sweep_expired()
        await self._store.refresh()

    # Optimistic mutations
    async def vote(self, ticket_id: str) -> GateResult:
        return await self._gate.guard(lambda: self._coordinator.toggle_vote(ticket_id), "vote")

    async def change_status(self, ticket_id: str, status: object) -> GateResult:
        return await self._gate.guard(
            lambda: self._coordinator.change_status(ticket_id, status),
            "change the status",
        )

    async def toggle_visibility(self, ticket_id: str, hidden: bool | None = None) -> GateResult:
        return await self._gate.guard(
            lambda: self._coordinator.set_visibility(ticket_id, hidden),
            "change visibility",
        )

    async def delete(self, ticket_id: str) -> GateResult:
        return await self._gate.guard(lambda: self._coordinator.delete(ticket_id), "delete this suggestion")

    # Images
    async def stage_image(self, filename: str, data: bytes, content_type: str | None) -> ImageAttachment:
        """Validate locally, then upload to temporary storage."""

        validate_image(len(data), content_type, max_bytes=self._max_upload_bytes)
        staged = (await self._client.stage_upload(filename, data, str(content_type))).unwrap()
        return ImageAttachment(
            id=staged.temp_key,
            url=staged.signed_url,
            name=filename,
            size=staged.size,
            content_type=staged.content_type,
            uploaded_at=self._clock(),
            temp_filename=staged.temp_key,
            expires_at=staged.expires_at,
        )

    async def discard_images(self, images: Sequence[ImageAttachment]) -> list[str]:
        keys = [image.temp_filename for image in images if image.temp_filename]
        if not keys:
            return []
        return (await self._client.cleanup_uploads(keys)).unwrap()

    # Submissions
    async def submit_suggestion(
        self,
        title: str,
        description: str = "",
        images: Sequence[ImageAttachment] = (),
    ) -> GateResult:
        clean_title = (title or "").strip()
        if not clean_title:
            raise ValidationError("Title is required")

        snapshot = {
            "title": title,
            "description": description,
            "attachedImages": [_image_snapshot(image) for image in images],
        }
        return await self._gate.guard(
            lambda: self._create(clean_title, description, images),
            "create a suggestion",
            snapshot,
        )

    async def _create(self, title: str, description: str, images: Sequence[ImageAttachment]) -> Ticket:
        image_url = None
        if images:
            image = images[0]
            if image.is_ephemeral:
                if image.is_expired(self._clock()):
                    raise UploadError("Temporary image has expired; please upload it again")
                promoted = await self._client.promote_upload(
                    image.temp_filename,  # type: ignore[arg-type]
                    original_name=image.name,
                    original_type=image.content_type,
                )
                if not promoted.ok:
                    raise UploadError(promoted.error or "Failed to move image", status_code=promoted.status_code)
                image_url = promoted.data.url
            else:
                image_url = image.url

        ticket = (
            await self._client.create_ticket(title=title, description=description.strip(), image_url=image_url)
        ).unwrap()
        self._store.insert(ticket)
        logger.info("Suggestion %s submitted", ticket.id)
        return ticket

    async def post_comment(self, ticket_id: str, content: str) -> GateResult:
        text = (content or "").strip()
        if not text:
            raise ValidationError("Comment content is required")

        async def submit() -> Comment:
            comment = (await self._client.add_comment(ticket_id, text)).unwrap()
            self._drafts.clear_comment(ticket_id)
            self._store.append_comment(ticket_id, comment)
            return comment

        return await self._gate.guard(
            submit,
            "post a comment",
            {"ticketId": ticket_id, "commentContent": content},
        )

    # Resumption after sign-in
    def resume_pending_form(self) -> Any | None:
        return self._gate.take_pending_form()

    def resume_comment_draft(self, ticket_id: str) -> str | None:
        return self._gate.take_comment_draft(ticket_id)
