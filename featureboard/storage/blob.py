from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Iterable, Mapping, Protocol
from urllib.parse import quote

import httpx

from featureboard.errors import TransportError


@dataclass(frozen=True, slots=True)
class StoredObject:
    key: str
    created_at: datetime


@dataclass(frozen=True, slots=True)
class SignedUrl:
    url: str
    expires_at: datetime


class BlobStore(Protocol):
    """A single storage bucket. Implementations never retry."""

    @property
    def bucket(self) -> str:
        ...

    async def upload(self, key: str, data: bytes, content_type: str) -> str:
        ...

    async def download(self, key: str) -> bytes:
        ...

    async def signed_url(self, key: str, ttl_seconds: int) -> SignedUrl:
        ...

    def public_url(self, key: str) -> str:
        ...

    async def remove(self, keys: Iterable[str]) -> list[str]:
        ...

    async def list(self, prefix: str) -> list[StoredObject]:
        ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class StorageBucket:
    """Bucket on a Supabase-style storage REST API."""

    LIST_PAGE_SIZE = 1000

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        base_url: str,
        bucket: str,
        service_key: str | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._client = client
        self._base_url = base_url.rstrip("/")
        self._bucket = bucket
        self._service_key = service_key
        self._clock = clock

    @property
    def bucket(self) -> str:
        return self._bucket

    async def upload(self, key: str, data: bytes, content_type: str) -> str:
        await self._request(
            "POST",
            f"/object/{self._bucket}/{_quote_key(key)}",
            content=data,
            headers={"Content-Type": content_type, "x-upsert": "false"},
        )
        return key

    async def download(self, key: str) -> bytes:
        response = await self._request("GET", f"/object/{self._bucket}/{_quote_key(key)}")
        return response.content

    async def signed_url(self, key: str, ttl_seconds: int) -> SignedUrl:
        issued_at = self._clock()
        response = await self._request(
            "POST",
            f"/object/sign/{self._bucket}/{_quote_key(key)}",
            json={"expiresIn": ttl_seconds},
        )
        payload = _json(response)
        signed_path = payload.get("signedURL") or payload.get("signedUrl")
        if not signed_path:
            raise TransportError("Storage did not return a signed URL", status_code=response.status_code)
        return SignedUrl(
            url=f"{self._base_url}/storage/v1{signed_path}",
            expires_at=issued_at + timedelta(seconds=ttl_seconds),
        )

    def public_url(self, key: str) -> str:
        return f"{self._base_url}/storage/v1/object/public/{self._bucket}/{_quote_key(key)}"

    async def remove(self, keys: Iterable[str]) -> list[str]:
        prefixes = list(keys)
        if not prefixes:
            return []
        response = await self._request("DELETE", f"/object/{self._bucket}", json={"prefixes": prefixes})
        payload = response.json() if response.content else []
        removed = [str(item.get("name")) for item in payload if isinstance(item, Mapping) and item.get("name")]
        return removed

    async def list(self, prefix: str) -> list[StoredObject]:
        """Every object directly under ``prefix``, fetched page by page."""

        folder = prefix.strip("/")
        objects: list[StoredObject] = []
        offset = 0
        while True:
            response = await self._request(
                "POST",
                f"/object/list/{self._bucket}",
                json={"prefix": folder, "limit": self.LIST_PAGE_SIZE, "offset": offset},
            )
            try:
                page = response.json() or []
            except ValueError as exc:
                raise TransportError("Storage returned malformed JSON", status_code=response.status_code) from exc
            if not isinstance(page, list):
                raise TransportError("Storage returned an unexpected listing", status_code=response.status_code)
            for item in page:
                if not isinstance(item, Mapping) or not item.get("name"):
                    continue
                # Folder placeholders carry no id.
                if item.get("id") is None:
                    continue
                created = item.get("created_at") or item.get("updated_at")
                objects.append(
                    StoredObject(
                        key=f"{folder}/{item['name']}" if folder else str(item["name"]),
                        created_at=_parse_timestamp(created),
                    )
                )
            if len(page) < self.LIST_PAGE_SIZE:
                return objects
            offset += len(page)

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        headers: dict[str, str] = {}
        if self._service_key:
            headers["Authorization"] = f"Bearer {self._service_key}"
            headers["apikey"] = self._service_key
        headers.update(kwargs.pop("headers", {}))
        url = f"{self._base_url}/storage/v1{path}"
        try:
            response = await self._client.request(method, url, headers=headers, **kwargs)
        except httpx.HTTPError as exc:
            raise TransportError(f"Storage request failed: {exc}") from exc

        if response.status_code >= 400:
            raise TransportError(_error_message(response), status_code=response.status_code)
        return response


def _quote_key(key: str) -> str:
    return quote(key.lstrip("/"), safe="/")


def _json(response: httpx.Response) -> Mapping[str, Any]:
    try:
        data = response.json()
    except ValueError as exc:
        raise TransportError("Storage returned malformed JSON", status_code=response.status_code) from exc
    if not isinstance(data, Mapping):
        raise TransportError("Storage returned an unexpected payload", status_code=response.status_code)
    return data


def _error_message(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text or f"Storage error {response.status_code}"
    if isinstance(data, Mapping):
        for field in ("message", "error"):
            if isinstance(data.get(field), str):
                return data[field]
    return f"Storage error {response.status_code}"


def _parse_timestamp(value: Any) -> datetime:
    # Objects without a timestamp sort as infinitely old so a sweep removes them.
    if not value:
        return datetime.fromtimestamp(0, tz=timezone.utc)
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError as exc:
        raise TransportError(f"Storage returned an unreadable timestamp: {value!r}") from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
