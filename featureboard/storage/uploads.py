from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import PurePosixPath
from typing import Callable, Iterable
from urllib.parse import unquote, urlsplit

from opentelemetry import trace

from featureboard.errors import TransportError, UploadError, ValidationError

from .blob import BlobStore

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

MAX_UPLOAD_BYTES = 5 * 1024 * 1024
TEMP_URL_TTL_SECONDS = 3600
SWEEP_THRESHOLD_SECONDS = 3600


def validate_image(size: int, content_type: str | None, *, max_bytes: int = MAX_UPLOAD_BYTES) -> None:
    """Reject files that are too large or not images."""

    if size > max_bytes:
        raise ValidationError(f"File size must be less than {max_bytes // (1024 * 1024)}MB")
    if not content_type or not content_type.startswith("image/"):
        raise ValidationError("File must be an image")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _random_token() -> str:
    return secrets.token_hex(8)


def _safe_name(name: str | None, default: str = "image") -> str:
    base = PurePosixPath((name or "").replace("\\", "/")).name.strip()
    return "-".join(base.split()) or default


@dataclass(slots=True)
class IncomingImage:
    filename: str
    content_type: str | None
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass(slots=True)
class StagedUpload:
    temp_key: str
    signed_url: str
    expires_at: datetime
    size: int
    content_type: str


@dataclass(slots=True)
class PromotedImage:
    key: str
    url: str


@dataclass(slots=True)
class SweepReport:
    removed: list[str] = field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.removed)


class EphemeralUploadManager:
    """Owns the temp namespace: stage, promote, discard and sweep uploads."""

    def __init__(
        self,
        temp_store: BlobStore,
        permanent_store: BlobStore,
        *,
        temp_prefix: str = "temp",
        url_ttl_seconds: int = TEMP_URL_TTL_SECONDS,
        max_bytes: int = MAX_UPLOAD_BYTES,
        sweep_threshold_seconds: int = SWEEP_THRESHOLD_SECONDS,
        clock: Callable[[], datetime] = _utcnow,
        token_factory: Callable[[], str] = _random_token,
    ) -> None:
        self._temp = temp_store
        self._permanent = permanent_store
        self._prefix = temp_prefix.strip("/")
        self._url_ttl = url_ttl_seconds
        self._max_bytes = max_bytes
        self._sweep_threshold = sweep_threshold_seconds
        self._clock = clock
        self._token_factory = token_factory

    @property
    def temp_prefix(self) -> str:
        return self._prefix

    @property
    def max_bytes(self) -> int:
        return self._max_bytes

    def is_temp_key(self, key: str) -> bool:
        return key.startswith(f"{self._prefix}/") and ".." not in key

    def is_temp_url(self, url: str) -> bool:
        """True when ``url`` points into the temp namespace of the temp bucket."""

        path = unquote(urlsplit(url).path)
        return f"/{self._temp.bucket}/{self._prefix}/" in path

    async def stage_upload(self, image: IncomingImage) -> StagedUpload:
        validate_image(image.size, image.content_type, max_bytes=self._max_bytes)
        content_type = str(image.content_type)

        timestamp = int(self._clock().timestamp() * 1000)
        key = f"{self._prefix}/{timestamp}-{self._token_factory()}-{_safe_name(image.filename)}"

        with tracer.start_as_current_span("uploads.stage") as span:
            span.set_attribute("upload.size", image.size)
            await self._temp.upload(key, image.data, content_type)
            signed = await self._temp.signed_url(key, self._url_ttl)

        logger.debug("Staged temporary upload %s (%d bytes)", key, image.size)
        return StagedUpload(
            temp_key=key,
            signed_url=signed.url,
            expires_at=signed.expires_at,
            size=image.size,
            content_type=content_type,
        )

    async def promote(
        self,
        temp_key: str,
        *,
        target_name: str | None,
        content_type: str | None,
        owner_id: str,
    ) -> PromotedImage:
        """Copy a temp object into permanent storage and return its public URL.

        The temp object is only removed after the permanent copy exists; if
        that removal fails it is left for the sweep.
        """

        if not self.is_temp_key(temp_key):
            raise ValidationError("Temporary filename is required")

        timestamp = int(self._clock().timestamp() * 1000)
        permanent_key = f"{owner_id}/{timestamp}-{_safe_name(target_name)}"

        with tracer.start_as_current_span("uploads.promote") as span:
            span.set_attribute("upload.temp_key", temp_key)
            try:
                data = await self._temp.download(temp_key)
            except TransportError as exc:
                raise UploadError("Failed to access temporary file", status_code=exc.status_code) from exc
            try:
                await self._permanent.upload(permanent_key, data, content_type or "image/jpeg")
            except TransportError as exc:
                raise UploadError("Failed to move file to permanent storage", status_code=exc.status_code) from exc

            try:
                await self._temp.remove([temp_key])
            except TransportError:
                logger.warning("Failed to delete temp file %s after promotion", temp_key, exc_info=True)

        return PromotedImage(key=permanent_key, url=self._permanent.public_url(permanent_key))

    async def discard(self, temp_keys: Iterable[str]) -> list[str]:
        """Delete specific temp objects, e.g. images removed from a draft."""

        keys = list(temp_keys)
        if not keys:
            raise ValidationError("No filenames provided for cleanup")
        invalid = [key for key in keys if not self.is_temp_key(key)]
        if invalid:
            raise ValidationError(f"Not a temporary file: {invalid[0]}")
        return await self._temp.remove(keys)

    async def sweep_expired(self, threshold_seconds: int | None = None) -> SweepReport:
        """Remove every temp object at least ``threshold_seconds`` old.

        The listing is taken once and filtered locally, so objects uploaded
        while the sweep runs are never considered.
        """

        with tracer.start_as_current_span("uploads.sweep_expired") as span:
            listing = list(await self._temp.list(self._prefix))
            if threshold_seconds is None:
                threshold_seconds = self._sweep_threshold
            cutoff = self._clock() - timedelta(seconds=threshold_seconds)
            expired = [item.key for item in listing if item.created_at <= cutoff]
            span.set_attribute("sweep.listed", len(listing))
            span.set_attribute("sweep.expired", len(expired))
            if not expired:
                return SweepReport()

            removed = await self._temp.remove(expired)

        logger.info("Swept %d expired temp file(s)", len(removed))
        return SweepReport(removed=removed)
