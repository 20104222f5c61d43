from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Mapping

import asyncpg

from .models import RemovalOutcome, SystemAdmin


class AdminRepository:
    """Data access for the ``system_admins`` table."""

    _CREATE_ADMINS_SQL = """
    CREATE TABLE IF NOT EXISTS system_admins (
        id TEXT PRIMARY KEY,
        email TEXT NOT NULL,
        name TEXT NOT NULL,
        created_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP
    )
    """

    _CREATE_ADMINS_EMAIL_INDEX_SQL = """
    CREATE UNIQUE INDEX IF NOT EXISTS system_admins_email_lower_idx ON system_admins (lower(email))
    """

    _SELECT_ADMINS_SQL = """
    SELECT id, email, name, created_at FROM system_admins ORDER BY created_at DESC
    """

    _SELECT_ADMIN_BY_EMAIL_SQL = """
    SELECT id, email, name, created_at FROM system_admins WHERE lower(email) = lower($1)
    """

    _INSERT_ADMIN_SQL = """
    INSERT INTO system_admins (id, email, name, created_at)
    VALUES ($1, $2, $3, $4)
    ON CONFLICT DO NOTHING
    RETURNING id, email, name, created_at
    """

    _LOCK_ADMINS_SQL = """
    SELECT id FROM system_admins FOR UPDATE
    """

    _DELETE_ADMIN_SQL = """
    DELETE FROM system_admins WHERE id = $1
    """

    def __init__(self, pool: asyncpg.Pool) -> None:
        self._pool = pool

    async def ensure_schema(self) -> None:
        async with self._pool.acquire() as connection:
            await connection.execute(self._CREATE_ADMINS_SQL)
            await connection.execute(self._CREATE_ADMINS_EMAIL_INDEX_SQL)

    async def list_admins(self) -> list[SystemAdmin]:
        async with self._pool.acquire() as connection:
            rows = await connection.fetch(self._SELECT_ADMINS_SQL)
        return [self._row_to_admin(row) for row in rows]

    async def get_by_email(self, email: str) -> SystemAdmin | None:
        async with self._pool.acquire() as connection:
            row = await connection.fetchrow(self._SELECT_ADMIN_BY_EMAIL_SQL, email)
        return None if row is None else self._row_to_admin(row)

    async def add_admin(self, *, admin_id: str, email: str, name: str, now: datetime) -> SystemAdmin | None:
        """Insert an admin; ``None`` means the email is already present."""

        # Stored lowercased; uniqueness is enforced on lower(email).
        async with self._pool.acquire() as connection:
            row = await connection.fetchrow(self._INSERT_ADMIN_SQL, admin_id, email.strip().lower(), name, now)
        return None if row is None else self._row_to_admin(row)

    async def remove_unless_last(self, admin_id: str) -> RemovalOutcome:
        """Delete an admin while holding row locks on the whole set."""

        async with self._pool.acquire() as connection:
            async with connection.transaction():
                rows = await connection.fetch(self._LOCK_ADMINS_SQL)
                ids = {str(row["id"]) for row in rows}
                if admin_id not in ids:
                    return RemovalOutcome.NOT_FOUND
                if len(ids) <= 1:
                    return RemovalOutcome.LAST_ADMIN
                await connection.execute(self._DELETE_ADMIN_SQL, admin_id)
        return RemovalOutcome.REMOVED

    @staticmethod
    def _row_to_admin(row: Mapping[str, Any]) -> SystemAdmin:
        created_at = row["created_at"]
        if isinstance(created_at, datetime) and created_at.tzinfo is None:
            created_at = created_at.replace(tzinfo=timezone.utc)
        return SystemAdmin(
            id=str(row["id"]),
            email=str(row["email"]),
            name=str(row["name"]),
            created_at=created_at,
        )
