"""Async HTTP client for the feature board API.

Every call returns an :class:`ApiResult` instead of raising, so callers such
as the mutation coordinator decide whether to roll back, retry or surface
the failure.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Generic, Mapping, TypeVar

import httpx

from featureboard.errors import (
    AuthError,
    ConflictError,
    ErrorKind,
    FeatureBoardError,
    NotFoundError,
    TransportError,
    ValidationError,
)
from featureboard.storage.uploads import PromotedImage, StagedUpload
from featureboard.tickets.models import (
    Author,
    Comment,
    ImageAttachment,
    Ticket,
    TicketPage,
    TicketQuery,
    VoteAction,
    VoteResult,
)
from featureboard.tickets.state import TicketStatus

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(slots=True)
class ApiResult(Generic[T]):
    """Either ``data`` or an ``error`` message with its :class:`ErrorKind`."""

    data: T | None = None
    error: str | None = None
    kind: ErrorKind | None = None
    status_code: int | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, data: T, status_code: int | None = None) -> "ApiResult[T]":
        return cls(data=data, status_code=status_code)

    @classmethod
    def failure(cls, message: str, kind: ErrorKind, status_code: int | None = None) -> "ApiResult[T]":
        return cls(error=message, kind=kind, status_code=status_code)

    def map(self, parse: Callable[[Any], Any]) -> "ApiResult[Any]":
        if not self.ok:
            return ApiResult(error=self.error, kind=self.kind, status_code=self.status_code)
        try:
            parsed = parse(self.data)
        except (KeyError, TypeError, ValueError, ValidationError) as exc:
            logger.warning("Unexpected response payload: %s", exc)
            return ApiResult.failure("Malformed response body", ErrorKind.TRANSPORT, self.status_code)
        return ApiResult(data=parsed, status_code=self.status_code)

    def unwrap(self) -> T:
        if self.ok:
            return self.data  # type: ignore[return-value]
        raise error_for(self.kind or ErrorKind.TRANSPORT, self.error or "Request failed", self.status_code)


def error_for(kind: ErrorKind, message: str, status_code: int | None = None) -> FeatureBoardError:
    if kind is ErrorKind.VALIDATION:
        return ValidationError(message)
    if kind is ErrorKind.AUTH:
        return AuthError(message)
    if kind is ErrorKind.FORBIDDEN:
        return AuthError(message, forbidden=True)
    if kind is ErrorKind.NOT_FOUND:
        return NotFoundError(message)
    if kind is ErrorKind.CONFLICT:
        return ConflictError(message)
    return TransportError(message, status_code=status_code)


def _extract_error_message(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text or f"Request failed with status {response.status_code}"

    if isinstance(data, Mapping):
        for field_name in ("error", "detail", "message"):
            value = data.get(field_name)
            if isinstance(value, str):
                return value
    return f"Request failed with status {response.status_code}"


def parse_datetime(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value)
        if text.endswith("Z"):
            text = f"{text[:-1]}+00:00"
        parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def comment_from_payload(data: Mapping[str, Any], ticket_id: str | None = None) -> Comment:
    return Comment(
        id=str(data["id"]),
        ticket_id=str(data.get("ticketId") or ticket_id or ""),
        content=str(data.get("content") or ""),
        author=str(data.get("author") or "Anonymous"),
        created_at=parse_datetime(data.get("createdAt")) or datetime.now(timezone.utc),
    )


def image_from_payload(data: Mapping[str, Any]) -> ImageAttachment:
    return ImageAttachment(
        id=str(data.get("id") or data.get("url")),
        url=str(data.get("url") or ""),
        name=str(data.get("name") or "uploaded-image"),
        size=int(data.get("size") or 0),
        content_type=str(data.get("type") or "image/*"),
        uploaded_at=parse_datetime(data.get("uploadedAt")),
        temp_filename=data.get("tempFilename"),
        expires_at=parse_datetime(data.get("expiresAt")),
    )


def ticket_from_payload(data: Mapping[str, Any]) -> Ticket:
    ticket_id = str(data["id"])
    author_data = data.get("author")
    author = None
    if isinstance(author_data, Mapping):
        author = Author(
            id=str(author_data.get("id") or ""),
            email=author_data.get("email"),
            name=author_data.get("name"),
            display_name=author_data.get("displayName"),
        )
    return Ticket(
        id=ticket_id,
        title=str(data.get("title") or ""),
        description=str(data.get("description") or ""),
        status=TicketStatus.parse(data.get("status")),
        hidden=bool(data.get("hidden", False)),
        upvotes=int(data.get("upvotes") or 0),
        created_at=parse_datetime(data.get("createdAt")) or datetime.now(timezone.utc),
        updated_at=parse_datetime(data.get("updatedAt")) or datetime.now(timezone.utc),
        author=author,
        images=[image_from_payload(item) for item in data.get("images") or []],
        comments=[comment_from_payload(item, ticket_id) for item in data.get("comments") or []],
    )


def page_from_payload(data: Mapping[str, Any]) -> TicketPage:
    pagination = data.get("pagination") or {}
    tickets = [ticket_from_payload(item) for item in data.get("tickets") or []]
    return TicketPage(
        tickets=tickets,
        page=int(pagination.get("page", 1)),
        limit=int(pagination.get("limit", len(tickets))),
        total=int(pagination.get("total", len(tickets))),
    )


def _vote_from_payload(data: Mapping[str, Any]) -> VoteResult:
    return VoteResult(action=VoteAction(str(data["action"])), upvotes=int(data["upvotes"]))


def _staged_from_payload(data: Mapping[str, Any]) -> StagedUpload:
    return StagedUpload(
        temp_key=str(data["tempFilename"]),
        signed_url=str(data["signedUrl"]),
        expires_at=parse_datetime(data["expiresAt"]),  # type: ignore[arg-type]
        size=int(data.get("size") or 0),
        content_type=str(data.get("type") or ""),
    )


class FeatureBoardClient:
    """Small async client over ``httpx.AsyncClient`` (``base_url`` set on the client)."""

    def __init__(self, http: httpx.AsyncClient, *, token_provider: Callable[[], str | None] | None = None) -> None:
        self._http = http
        self._token_provider = token_provider

    async def _request(self, method: str, path: str, **kwargs: Any) -> ApiResult[Any]:
        headers: dict[str, str] = {"Accept": "application/json"}
        token = self._token_provider() if self._token_provider else None
        if token:
            headers["Authorization"] = f"Bearer {token}"
        headers.update(kwargs.pop("headers", {}))

        try:
            response = await self._http.request(method, path, headers=headers, **kwargs)
        except httpx.HTTPError as exc:
            logger.warning("%s %s failed: %s", method, path, exc)
            return ApiResult.failure(f"Network error: {exc}", ErrorKind.TRANSPORT)

        if response.status_code >= 400:
            message = _extract_error_message(response)
            return ApiResult.failure(message, ErrorKind.from_status(response.status_code), response.status_code)

        if response.status_code == 204 or not response.content:
            return ApiResult.success(None, response.status_code)
        try:
            return ApiResult.success(response.json(), response.status_code)
        except ValueError:
            return ApiResult.failure("Malformed response body", ErrorKind.TRANSPORT, response.status_code)

    # Tickets
    async def list_tickets(self, query: TicketQuery | None = None) -> ApiResult[TicketPage]:
        query = query or TicketQuery()
        params: dict[str, Any] = {
            "sortBy": query.sort_by.value,
            "sortOrder": query.sort_order.value,
            "page": query.page,
            "limit": query.limit,
        }
        if query.status is not None:
            params["status"] = query.status.value
        if query.search:
            params["search"] = query.search
        if query.author_id:
            params["authorId"] = query.author_id
        result = await self._request("GET", "/tickets", params=params)
        return result.map(page_from_payload)

    async def get_ticket(self, ticket_id: str) -> ApiResult[Ticket]:
        result = await self._request("GET", f"/tickets/{ticket_id}")
        return result.map(ticket_from_payload)

    async def create_ticket(
        self,
        *,
        title: str,
        description: str = "",
        image_url: str | None = None,
    ) -> ApiResult[Ticket]:
        payload = {"title": title, "description": description, "imageUrl": image_url}
        result = await self._request("POST", "/tickets", json=payload)
        return result.map(ticket_from_payload)

    async def change_status(self, ticket_id: str, status: str) -> ApiResult[Ticket]:
        result = await self._request("PATCH", f"/tickets/{ticket_id}", json={"status": status})
        return result.map(ticket_from_payload)

    async def set_visibility(self, ticket_id: str, hidden: bool) -> ApiResult[Ticket]:
        result = await self._request("PATCH", f"/tickets/{ticket_id}/visibility", json={"hidden": hidden})
        return result.map(ticket_from_payload)

    async def delete_ticket(self, ticket_id: str) -> ApiResult[None]:
        return await self._request("DELETE", f"/tickets/{ticket_id}")

    # Comments and votes
    async def list_comments(self, ticket_id: str) -> ApiResult[list[Comment]]:
        result = await self._request("GET", "/comments", params={"ticketId": ticket_id})
        return result.map(lambda items: [comment_from_payload(item, ticket_id) for item in items or []])

    async def add_comment(self, ticket_id: str, content: str) -> ApiResult[Comment]:
        result = await self._request("POST", "/comments", json={"ticketId": ticket_id, "content": content})
        return result.map(lambda data: comment_from_payload(data, ticket_id))

    async def toggle_vote(self, ticket_id: str) -> ApiResult[VoteResult]:
        result = await self._request("POST", "/votes", json={"ticketId": ticket_id})
        return result.map(_vote_from_payload)

    async def upvoted_posts(self) -> ApiResult[list[str]]:
        result = await self._request("GET", "/votes")
        return result.map(lambda data: [str(item) for item in (data or {}).get("upvotedPosts", [])])

    # Uploads
    async def stage_upload(self, filename: str, data: bytes, content_type: str) -> ApiResult[StagedUpload]:
        files = {"file": (filename, data, content_type)}
        result = await self._request("POST", "/uploads/temp", files=files)
        return result.map(_staged_from_payload)

    async def promote_upload(
        self,
        temp_filename: str,
        *,
        original_name: str | None = None,
        original_type: str | None = None,
    ) -> ApiResult[PromotedImage]:
        payload = {"tempFilename": temp_filename, "originalName": original_name, "originalType": original_type}
        result = await self._request("POST", "/uploads/move", json=payload)
        return result.map(lambda data: PromotedImage(key=str(data.get("filename") or ""), url=str(data["imageUrl"])))

    async def cleanup_uploads(
        self,
        temp_filenames: list[str] | None = None,
        *,
        run_full_cleanup: bool = False,
    ) -> ApiResult[list[str]]:
        payload = {"tempFilenames": temp_filenames, "runFullCleanup": run_full_cleanup}
        result = await self._request("POST", "/uploads/cleanup", json=payload)
        return result.map(lambda data: [str(item) for item in (data or {}).get("removedFiles", [])])

    # Profile and administration
    async def get_display_name(self) -> ApiResult[str | None]:
        result = await self._request("GET", "/user/display-name")
        return result.map(lambda data: (data or {}).get("displayName"))

    async def update_display_name(self, display_name: str) -> ApiResult[str | None]:
        result = await self._request("PATCH", "/user/display-name", json={"displayName": display_name})
        return result.map(lambda data: (data or {}).get("displayName"))

    async def is_admin(self) -> ApiResult[bool]:
        result = await self._request("GET", "/admin/me")
        return result.map(lambda data: bool((data or {}).get("isAdmin")))

    async def list_system_admins(self) -> ApiResult[list[Mapping[str, Any]]]:
        result = await self._request("GET", "/admin/system-admins")
        return result.map(lambda data: list(data or []))

    async def add_system_admin(self, email: str, name: str | None = None) -> ApiResult[Mapping[str, Any]]:
        return await self._request("POST", "/admin/system-admins", json={"email": email, "name": name})

    async def remove_system_admin(self, admin_id: str) -> ApiResult[None]:
        return await self._request("DELETE", f"/admin/system-admins/{admin_id}")
