from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Mapping, Sequence

import asyncpg

from .models import (
    Author,
    Comment,
    SortField,
    SortOrder,
    Ticket,
    TicketPage,
    TicketQuery,
    UserAccount,
    VoteAction,
    VoteResult,
    image_from_url,
)
from .state import TicketStatus

TRENDING_WINDOW = timedelta(days=7)


class TicketRepository:
    """Persistence for users, tickets, comments and votes."""

    _CREATE_USERS_SQL = """
    CREATE TABLE IF NOT EXISTS users (
        id TEXT PRIMARY KEY,
        email TEXT NOT NULL UNIQUE,
        name TEXT,
        display_name TEXT,
        created_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP
    )
    """

    _CREATE_TICKETS_SQL = """
    CREATE TABLE IF NOT EXISTS tickets (
        id TEXT PRIMARY KEY,
        title TEXT NOT NULL,
        description TEXT NOT NULL DEFAULT '',
        status TEXT NOT NULL,
        hidden BOOLEAN NOT NULL DEFAULT FALSE,
        upvotes_count INTEGER NOT NULL DEFAULT 0 CHECK (upvotes_count >= 0),
        image_url TEXT,
        author_id TEXT REFERENCES users(id) ON DELETE SET NULL,
        created_at TIMESTAMPTZ NOT NULL,
        updated_at TIMESTAMPTZ NOT NULL
    )
    """

    _CREATE_COMMENTS_SQL = """
    CREATE TABLE IF NOT EXISTS comments (
        id TEXT PRIMARY KEY,
        ticket_id TEXT NOT NULL REFERENCES tickets(id) ON DELETE CASCADE,
        author_id TEXT REFERENCES users(id) ON DELETE SET NULL,
        content TEXT NOT NULL,
        created_at TIMESTAMPTZ NOT NULL
    )
    """

    _CREATE_VOTES_SQL = """
    CREATE TABLE IF NOT EXISTS votes (
        user_id TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
        ticket_id TEXT NOT NULL REFERENCES tickets(id) ON DELETE CASCADE,
        created_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
        PRIMARY KEY (user_id, ticket_id)
    )
    """

    _UPSERT_USER_SQL = """
    INSERT INTO users (id, email, name, display_name, created_at)
    VALUES ($1, $2, $3, $3, $4)
    ON CONFLICT (email) DO UPDATE SET email = EXCLUDED.email
    RETURNING id, email, name, display_name, created_at
    """

    _SELECT_USER_BY_EMAIL_SQL = """
    SELECT id, email, name, display_name, created_at
    FROM users
    WHERE email = $1
    """

    _UPDATE_DISPLAY_NAME_SQL = """
    UPDATE users SET display_name = $2
    WHERE email = $1
    RETURNING id, email, name, display_name, created_at
    """

    _TICKET_COLUMNS = """
    t.id, t.title, t.description, t.status, t.hidden, t.upvotes_count, t.image_url,
    t.created_at, t.updated_at,
    u.id AS author_id, u.email AS author_email, u.name AS author_name,
    u.display_name AS author_display_name
    """

    _INSERT_TICKET_SQL = """
    INSERT INTO tickets (id, title, description, status, hidden, upvotes_count, image_url, author_id, created_at, updated_at)
    VALUES ($1, $2, $3, $4, FALSE, 0, $5, $6, $7, $7)
    """

    _UPDATE_STATUS_SQL = """
    UPDATE tickets SET status = $2, updated_at = $3
    WHERE id = $1
    RETURNING id
    """

    _UPDATE_HIDDEN_SQL = """
    UPDATE tickets SET hidden = $2, updated_at = $3
    WHERE id = $1
    RETURNING id
    """

    _DELETE_TICKET_SQL = """
    DELETE FROM tickets WHERE id = $1 RETURNING id
    """

    _INSERT_COMMENT_SQL = """
    INSERT INTO comments (id, ticket_id, author_id, content, created_at)
    VALUES ($1, $2, $3, $4, $5)
    """

    _SELECT_COMMENTS_SQL = """
    SELECT c.id, c.ticket_id, c.content, c.created_at,
           u.email AS author_email, u.name AS author_name, u.display_name AS author_display_name
    FROM comments c
    LEFT JOIN users u ON u.id = c.author_id
    WHERE c.ticket_id = ANY($1::text[])
    ORDER BY c.created_at ASC
    """

    _LOCK_TICKET_SQL = """
    SELECT id FROM tickets WHERE id = $1 FOR UPDATE
    """

    _DELETE_VOTE_SQL = """
    DELETE FROM votes WHERE user_id = $1 AND ticket_id = $2 RETURNING ticket_id
    """

    _INSERT_VOTE_SQL = """
    INSERT INTO votes (user_id, ticket_id) VALUES ($1, $2)
    """

    _INCREMENT_UPVOTES_SQL = """
    UPDATE tickets SET upvotes_count = upvotes_count + 1 WHERE id = $1 RETURNING upvotes_count
    """

    _DECREMENT_UPVOTES_SQL = """
    UPDATE tickets SET upvotes_count = GREATEST(upvotes_count - 1, 0) WHERE id = $1 RETURNING upvotes_count
    """

    _SELECT_VOTED_SQL = """
    SELECT ticket_id FROM votes WHERE user_id = $1 ORDER BY created_at ASC
    """

    def __init__(self, pool: asyncpg.Pool) -> None:
        self._pool = pool

    async def ensure_schema(self) -> None:
        async with self._pool.acquire() as connection:
            await connection.execute(self._CREATE_USERS_SQL)
            await connection.execute(self._CREATE_TICKETS_SQL)
            await connection.execute(self._CREATE_COMMENTS_SQL)
            await connection.execute(self._CREATE_VOTES_SQL)

    # Users

    async def get_or_create_user(self, *, user_id: str, email: str, name: str | None, now: datetime) -> UserAccount:
        async with self._pool.acquire() as connection:
            row = await connection.fetchrow(self._UPSERT_USER_SQL, user_id, email, name, now)
        if row is None:
            raise RuntimeError("Failed to upsert user")
        return self._row_to_user(row)

    async def get_user_by_email(self, email: str) -> UserAccount | None:
        async with self._pool.acquire() as connection:
            row = await connection.fetchrow(self._SELECT_USER_BY_EMAIL_SQL, email)
        return None if row is None else self._row_to_user(row)

    async def update_display_name(self, email: str, display_name: str) -> UserAccount | None:
        async with self._pool.acquire() as connection:
            row = await connection.fetchrow(self._UPDATE_DISPLAY_NAME_SQL, email, display_name)
        return None if row is None else self._row_to_user(row)

    # Tickets

    async def create_ticket(
        self,
        *,
        ticket_id: str,
        title: str,
        description: str,
        status: TicketStatus,
        image_url: str | None,
        author_id: str,
        now: datetime,
    ) -> Ticket:
        async with self._pool.acquire() as connection:
            await connection.execute(
                self._INSERT_TICKET_SQL,
                ticket_id,
                title,
                description,
                status.value,
                image_url,
                author_id,
                now,
            )
            ticket = await self._fetch_ticket(connection, ticket_id)
        if ticket is None:
            raise RuntimeError("Failed to insert ticket")
        return ticket

    async def get_ticket(self, ticket_id: str) -> Ticket | None:
        async with self._pool.acquire() as connection:
            return await self._fetch_ticket(connection, ticket_id)

    async def list_tickets(self, query: TicketQuery, *, now: datetime | None = None) -> TicketPage:
        conditions, params = self._build_filters(query, now or datetime.now(timezone.utc))
        where = f"WHERE {' AND '.join(conditions)}" if conditions else ""
        order = self._build_order(query)
        limit_index = len(params) + 1
        select_sql = (
            f"SELECT {self._TICKET_COLUMNS} FROM tickets t LEFT JOIN users u ON u.id = t.author_id "
            f"{where} ORDER BY {order} LIMIT ${limit_index} OFFSET ${limit_index + 1}"
        )
        count_sql = f"SELECT count(*) FROM tickets t {where}"

        async with self._pool.acquire() as connection:
            rows = await connection.fetch(select_sql, *params, query.limit, query.offset)
            total = await connection.fetchval(count_sql, *params)
            comments = await self._fetch_comments(connection, [str(row["id"]) for row in rows])

        tickets = [self._row_to_ticket(row, comments.get(str(row["id"]), [])) for row in rows]
        return TicketPage(tickets=tickets, page=query.page, limit=query.limit, total=int(total or 0))

    async def update_status(self, ticket_id: str, status: TicketStatus, now: datetime) -> Ticket | None:
        async with self._pool.acquire() as connection:
            updated = await connection.fetchval(self._UPDATE_STATUS_SQL, ticket_id, status.value, now)
            if updated is None:
                return None
            return await self._fetch_ticket(connection, ticket_id)

    async def set_hidden(self, ticket_id: str, hidden: bool, now: datetime) -> Ticket | None:
        async with self._pool.acquire() as connection:
            updated = await connection.fetchval(self._UPDATE_HIDDEN_SQL, ticket_id, hidden, now)
            if updated is None:
                return None
            return await self._fetch_ticket(connection, ticket_id)

    async def delete_ticket(self, ticket_id: str) -> bool:
        async with self._pool.acquire() as connection:
            row = await connection.fetchrow(self._DELETE_TICKET_SQL, ticket_id)
        return row is not None

    # Comments

    async def add_comment(
        self,
        *,
        comment_id: str,
        ticket_id: str,
        author: UserAccount,
        content: str,
        now: datetime,
    ) -> Comment:
        async with self._pool.acquire() as connection:
            await connection.execute(self._INSERT_COMMENT_SQL, comment_id, ticket_id, author.id, content, now)
        label = Author(id=author.id, email=author.email, name=author.name, display_name=author.display_name).label
        return Comment(id=comment_id, ticket_id=ticket_id, content=content, author=label, created_at=now)

    async def list_comments(self, ticket_id: str) -> list[Comment]:
        async with self._pool.acquire() as connection:
            comments = await self._fetch_comments(connection, [ticket_id])
        return comments.get(ticket_id, [])

    # Votes

    async def toggle_vote(self, *, user_id: str, ticket_id: str) -> VoteResult | None:
        """Flip the (user, ticket) vote and adjust the cached count in one transaction."""

        async with self._pool.acquire() as connection:
            async with connection.transaction():
                locked = await connection.fetchval(self._LOCK_TICKET_SQL, ticket_id)
                if locked is None:
                    return None
                removed = await connection.fetchval(self._DELETE_VOTE_SQL, user_id, ticket_id)
                if removed is not None:
                    upvotes = await connection.fetchval(self._DECREMENT_UPVOTES_SQL, ticket_id)
                    return VoteResult(action=VoteAction.REMOVED, upvotes=int(upvotes or 0))
                await connection.execute(self._INSERT_VOTE_SQL, user_id, ticket_id)
                upvotes = await connection.fetchval(self._INCREMENT_UPVOTES_SQL, ticket_id)
                return VoteResult(action=VoteAction.ADDED, upvotes=int(upvotes or 0))

    async def list_voted_ticket_ids(self, user_id: str) -> list[str]:
        async with self._pool.acquire() as connection:
            rows = await connection.fetch(self._SELECT_VOTED_SQL, user_id)
        return [str(row["ticket_id"]) for row in rows]

    # Helpers

    async def _fetch_ticket(self, connection: Any, ticket_id: str) -> Ticket | None:
        row = await connection.fetchrow(
            f"SELECT {self._TICKET_COLUMNS} FROM tickets t LEFT JOIN users u ON u.id = t.author_id WHERE t.id = $1",
            ticket_id,
        )
        if row is None:
            return None
        comments = await self._fetch_comments(connection, [ticket_id])
        return self._row_to_ticket(row, comments.get(ticket_id, []))

    async def _fetch_comments(self, connection: Any, ticket_ids: Sequence[str]) -> dict[str, list[Comment]]:
        if not ticket_ids:
            return {}
        rows = await connection.fetch(self._SELECT_COMMENTS_SQL, list(ticket_ids))
        grouped: dict[str, list[Comment]] = {}
        for row in rows:
            comment = self._row_to_comment(row)
            grouped.setdefault(comment.ticket_id, []).append(comment)
        return grouped

    @staticmethod
    def _build_filters(query: TicketQuery, now: datetime) -> tuple[list[str], list[Any]]:
        conditions: list[str] = []
        params: list[Any] = []

        def bind(value: Any) -> str:
            params.append(value)
            return f"${len(params)}"

        if query.hidden is not None:
            conditions.append(f"t.hidden = {bind(query.hidden)}")
        if query.status is not None:
            conditions.append(f"t.status = {bind(query.status.value)}")
        if query.search:
            placeholder = bind(f"%{_escape_like(query.search)}%")
            conditions.append(f"(t.title ILIKE {placeholder} OR t.description ILIKE {placeholder})")
        if query.author_id:
            conditions.append(f"t.author_id = {bind(query.author_id)}")
        if query.sort_by is SortField.TRENDING:
            conditions.append(f"t.created_at >= {bind(now - TRENDING_WINDOW)}")
        return conditions, params

    @staticmethod
    def _build_order(query: TicketQuery) -> str:
        direction = "ASC" if query.sort_order is SortOrder.ASC else "DESC"
        if query.sort_by is SortField.TRENDING:
            return "t.upvotes_count DESC, t.created_at DESC"
        if query.sort_by is SortField.UPVOTES:
            return f"t.upvotes_count {direction}, t.created_at DESC"
        return f"t.created_at {direction}"

    @staticmethod
    def _row_to_user(row: Mapping[str, Any]) -> UserAccount:
        return UserAccount(
            id=str(row["id"]),
            email=str(row["email"]),
            name=row["name"],
            display_name=row["display_name"],
            created_at=_ensure_datetime(row["created_at"]),
        )

    @staticmethod
    def _row_to_ticket(row: Mapping[str, Any], comments: list[Comment]) -> Ticket:
        ticket_id = str(row["id"])
        created_at = _ensure_datetime(row["created_at"])
        author_id = row.get("author_id")
        author = None
        if author_id is not None:
            author = Author(
                id=str(author_id),
                email=row.get("author_email"),
                name=row.get("author_name"),
                display_name=row.get("author_display_name"),
            )
        return Ticket(
            id=ticket_id,
            title=str(row["title"]),
            description=str(row["description"] or ""),
            status=TicketStatus(str(row["status"])),
            hidden=bool(row["hidden"]),
            upvotes=int(row["upvotes_count"]),
            created_at=created_at,
            updated_at=_ensure_datetime(row["updated_at"]),
            author=author,
            images=image_from_url(ticket_id, row.get("image_url"), created_at),
            comments=list(comments),
        )

    @staticmethod
    def _row_to_comment(row: Mapping[str, Any]) -> Comment:
        author = Author(
            id="",
            email=row.get("author_email"),
            name=row.get("author_name"),
            display_name=row.get("author_display_name"),
        )
        return Comment(
            id=str(row["id"]),
            ticket_id=str(row["ticket_id"]),
            content=str(row["content"]),
            author=author.label,
            created_at=_ensure_datetime(row["created_at"]),
        )


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _ensure_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value
    return datetime.fromisoformat(str(value))
