from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Callable

from featureboard.errors import ConflictError, NotFoundError, ValidationError

from .models import RemovalOutcome, SystemAdmin
from .repository import AdminRepository

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AdminService:
    """Manage the set of system administrators; the set never becomes empty."""

    def __init__(self, repository: AdminRepository, *, clock: Callable[[], datetime] = _utcnow) -> None:
        self._repository = repository
        self._clock = clock

    async def ensure_schema(self) -> None:
        await self._repository.ensure_schema()

    async def is_admin(self, email: str | None) -> bool:
        if not email:
            return False
        return await self._repository.get_by_email(email) is not None

    async def list_admins(self) -> list[SystemAdmin]:
        return await self._repository.list_admins()

    async def add_admin(self, email: str, name: str | None = None) -> SystemAdmin:
        address = (email or "").strip().lower()
        if not address:
            raise ValidationError("Email is required")
        if "@" not in address:
            raise ValidationError("A valid email address is required")

        admin = await self._repository.add_admin(
            admin_id=str(uuid.uuid4()),
            email=address,
            name=(name or "").strip() or address.split("@", 1)[0],
            now=self._clock(),
        )
        if admin is None:
            raise ConflictError("User is already a system administrator")
        logger.info("System administrator %s added", admin.email)
        return admin

    async def remove_admin(self, admin_id: str) -> None:
        if not admin_id:
            raise ValidationError("Admin ID is required")
        outcome = await self._repository.remove_unless_last(admin_id)
        if outcome is RemovalOutcome.NOT_FOUND:
            raise NotFoundError("System administrator not found")
        if outcome is RemovalOutcome.LAST_ADMIN:
            raise ConflictError("Cannot remove the last system administrator")
        logger.info("System administrator %s removed", admin_id)

    async def bootstrap(self, email: str | None, name: str | None = None) -> SystemAdmin | None:
        """Seed the first administrator when none exist yet."""

        if not email or await self._repository.list_admins():
            return None
        return await self.add_admin(email, name)
