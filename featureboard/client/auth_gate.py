"""Wrap mutations so unauthenticated callers are sent to sign in first."""

from __future__ import annotations

import inspect
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Mapping, Protocol
from urllib.parse import quote

from featureboard.identity import Principal

from .drafts import COMMENT_DRAFT_TTL_SECONDS, DraftStore

logger = logging.getLogger(__name__)

PENDING_FORM_SLOT = "auth_form_data_key"
SIGN_IN_PATH = "/auth/signin"
PENDING_FORM_TTL_SECONDS = 24 * 60 * 60

# File handles cannot be serialized; only these image fields survive a redirect.
_IMAGE_FIELDS = ("id", "name", "url", "size", "type", "uploadedAt", "tempFilename", "expiresAt")


class SessionState(Protocol):
    @property
    def is_loading(self) -> bool:
        ...

    @property
    def principal(self) -> Principal | None:
        ...


@dataclass(slots=True)
class ClientSession:
    """Mutable session state updated by whatever tracks the identity provider."""

    principal: Principal | None = None
    is_loading: bool = False


class GateOutcome(str, Enum):
    SKIPPED = "skipped"
    REDIRECTED = "redirected"
    EXECUTED = "executed"


@dataclass(slots=True)
class GateResult:
    outcome: GateOutcome
    value: Any = None
    redirect_url: str | None = None

    @property
    def executed(self) -> bool:
        return self.outcome is GateOutcome.EXECUTED


def _default_form_key() -> str:
    return f"auth_form_data_{int(time.time() * 1000)}"


def _serializable_snapshot(snapshot: Mapping[str, Any]) -> dict[str, Any]:
    data = dict(snapshot)
    images = data.get("attachedImages")
    if isinstance(images, list):
        data["attachedImages"] = [
            {name: image.get(name) for name in _IMAGE_FIELDS} for image in images if isinstance(image, Mapping)
        ]
    return data


class AuthGate:
    """Run an action when signed in; otherwise stage the form and redirect."""

    def __init__(
        self,
        session: SessionState,
        drafts: DraftStore,
        navigate: Callable[[str], None],
        *,
        return_path: Callable[[], str] = lambda: "/",
        sign_in_path: str = SIGN_IN_PATH,
        form_key_factory: Callable[[], str] = _default_form_key,
        form_ttl_seconds: float = PENDING_FORM_TTL_SECONDS,
    ) -> None:
        self._session = session
        self._drafts = drafts
        self._navigate = navigate
        self._return_path = return_path
        self._sign_in_path = sign_in_path
        self._form_key_factory = form_key_factory
        self._form_ttl = form_ttl_seconds

    def sign_in_url(self, action_label: str) -> str:
        redirect = quote(self._return_path(), safe="")
        action = quote(action_label, safe="")
        return f"{self._sign_in_path}?redirect={redirect}&action={action}"

    async def guard(
        self,
        action: Callable[[], Awaitable[Any] | Any],
        action_label: str = "perform this action",
        form_snapshot: Mapping[str, Any] | None = None,
    ) -> GateResult:
        """Invoke ``action`` for a signed-in principal.

        While the session is still resolving nothing happens. Anonymous
        callers get their ``form_snapshot`` staged and are navigated to the
        sign-in page; the action is not invoked. Errors raised by the action
        propagate unchanged.
        """

        if self._session.is_loading:
            return GateResult(GateOutcome.SKIPPED)

        if self._session.principal is None:
            if form_snapshot is not None:
                self._stage(form_snapshot)
            url = self.sign_in_url(action_label)
            self._navigate(url)
            return GateResult(GateOutcome.REDIRECTED, redirect_url=url)

        value = action()
        if inspect.isawaitable(value):
            value = await value
        return GateResult(GateOutcome.EXECUTED, value=value)

    def _stage(self, snapshot: Mapping[str, Any]) -> None:
        try:
            ticket_id = snapshot.get("ticketId")
            comment = snapshot.get("commentContent")
            if ticket_id and comment:
                self._drafts.store_comment(str(ticket_id), str(comment), COMMENT_DRAFT_TTL_SECONDS)
                return
            key = self._form_key_factory()
            self._drafts.store(key, _serializable_snapshot(snapshot), self._form_ttl)
            self._drafts.storage.set(PENDING_FORM_SLOT, key)
        except (TypeError, ValueError, OSError):
            # Redirect regardless; the input just cannot be restored.
            logger.warning("Failed to stage form data before sign-in", exc_info=True)

    def take_pending_form(self) -> Any | None:
        """Return the staged form exactly once, clearing it from storage."""

        storage = self._drafts.storage
        key = storage.get(PENDING_FORM_SLOT)
        if key is None:
            return None
        storage.remove(PENDING_FORM_SLOT)
        payload = self._drafts.get(key)
        self._drafts.clear(key)
        return payload

    def take_comment_draft(self, ticket_id: str) -> str | None:
        content = self._drafts.get_comment(ticket_id)
        self._drafts.clear_comment(ticket_id)
        return content
