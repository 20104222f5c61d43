"""Resolution of the authenticated principal behind a bearer token."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Protocol

import httpx

from featureboard.errors import TransportError

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Principal:
    """The authenticated caller as reported by the identity provider."""

    id: str
    email: str
    full_name: str | None = None

    @property
    def default_name(self) -> str:
        return self.full_name or self.email.split("@", 1)[0] or "User"


class IdentityProvider(Protocol):
    async def get_principal(self, token: str) -> Principal | None:
        ...


class HTTPIdentityProvider:
    """Look up the user owning an access token (GoTrue ``/auth/v1/user``)."""

    def __init__(self, client: httpx.AsyncClient, *, base_url: str, api_key: str | None = None) -> None:
        self._client = client
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key

    async def get_principal(self, token: str) -> Principal | None:
        headers = {"Authorization": f"Bearer {token}", "Accept": "application/json"}
        if self._api_key:
            headers["apikey"] = self._api_key
        try:
            response = await self._client.get(f"{self._base_url}/auth/v1/user", headers=headers)
        except httpx.HTTPError as exc:
            raise TransportError(f"Identity provider unreachable: {exc}") from exc

        if response.status_code in (401, 403):
            return None
        if response.status_code >= 400:
            raise TransportError("Identity provider error", status_code=response.status_code)

        return _principal_from_payload(response.json())


def _principal_from_payload(payload: Any) -> Principal | None:
    if not isinstance(payload, dict):
        return None
    user_id = payload.get("id")
    email = payload.get("email")
    if not user_id or not email:
        logger.warning("Identity payload without id or email; treating caller as anonymous")
        return None
    metadata = payload.get("user_metadata") or {}
    full_name = metadata.get("full_name") if isinstance(metadata, dict) else None
    return Principal(id=str(user_id), email=str(email), full_name=full_name)
