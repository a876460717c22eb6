from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Sequence
from uuid import UUID

import asyncpg

from .errors import DeliveryFailedError
from .models import (
    Category,
    NotificationEvent,
    NotificationKind,
    Role,
    Ticket,
    TicketPriority,
    TicketStatus,
    TransitionKind,
    TransitionRecord,
    User,
)

logger = logging.getLogger(__name__)


class TicketRepository:
    """Ticket snapshots with optimistic versioning and an append-only history table."""

    _CREATE_TICKETS_SQL = """
    CREATE TABLE IF NOT EXISTS tickets (
        id UUID PRIMARY KEY,
        title TEXT NOT NULL,
        description TEXT NOT NULL,
        status TEXT NOT NULL,
        priority TEXT NOT NULL,
        category_id TEXT NOT NULL REFERENCES categories(id),
        created_by TEXT NOT NULL REFERENCES users(id),
        assignee_id TEXT NULL REFERENCES users(id),
        version INTEGER NOT NULL,
        created_at TIMESTAMPTZ NOT NULL,
        updated_at TIMESTAMPTZ NOT NULL
    )
    """

    _CREATE_TRANSITIONS_SQL = """
    CREATE TABLE IF NOT EXISTS ticket_transitions (
        id UUID PRIMARY KEY,
        ticket_id UUID NOT NULL REFERENCES tickets(id),
        sequence INTEGER NOT NULL,
        kind TEXT NOT NULL,
        from_value TEXT NULL,
        to_value TEXT NULL,
        actor_id TEXT NOT NULL,
        comment TEXT NULL,
        created_at TIMESTAMPTZ NOT NULL,
        UNIQUE (ticket_id, sequence)
    )
    """

    _INSERT_TICKET_SQL = """
    INSERT INTO tickets (id, title, description, status, priority, category_id, created_by, assignee_id, version, created_at, updated_at)
    VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11)
    """

    _UPDATE_TICKET_SQL = """
    UPDATE tickets
    SET title = $2,
        description = $3,
        status = $4,
        priority = $5,
        category_id = $6,
        assignee_id = $7,
        version = $8,
        updated_at = $9
    WHERE id = $1 AND version = $10
    RETURNING id
    """

    _SELECT_TICKET_SQL = """
    SELECT id, title, description, status, priority, category_id, created_by, assignee_id, version, created_at, updated_at
    FROM tickets
    WHERE id = $1
    """

    _LIST_TICKETS_SQL = """
    SELECT id, title, description, status, priority, category_id, created_by, assignee_id, version, created_at, updated_at
    FROM tickets
    WHERE $1::TEXT IS NULL OR status = $1
    ORDER BY created_at DESC
    """

    _INSERT_TRANSITION_SQL = """
    INSERT INTO ticket_transitions (id, ticket_id, sequence, kind, from_value, to_value, actor_id, comment, created_at)
    VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9)
    """

    _SELECT_TRANSITIONS_SQL = """
    SELECT id, ticket_id, sequence, kind, from_value, to_value, actor_id, comment, created_at
    FROM ticket_transitions
    WHERE ticket_id = $1
    ORDER BY sequence ASC
    """

    def __init__(self, pool: asyncpg.Pool) -> None:
        self._pool = pool

    async def ensure_schema(self) -> None:
        async with self._pool.acquire() as connection:
            await connection.execute(self._CREATE_TICKETS_SQL)
            await connection.execute(self._CREATE_TRANSITIONS_SQL)

    async def load_ticket(self, ticket_id: UUID) -> Ticket | None:
        async with self._pool.acquire() as connection:
            row = await connection.fetchrow(self._SELECT_TICKET_SQL, ticket_id)
            if row is None:
                return None
            history_rows = await connection.fetch(self._SELECT_TRANSITIONS_SQL, ticket_id)
        history = tuple(self._row_to_record(history_row) for history_row in history_rows)
        return self._row_to_ticket(row, history)

    async def list_tickets(self, *, status: TicketStatus | None = None) -> Sequence[Ticket]:
        async with self._pool.acquire() as connection:
            rows = await connection.fetch(self._LIST_TICKETS_SQL, None if status is None else status.value)
        # Listings carry no history; load_ticket returns the full snapshot.
        return [self._row_to_ticket(row, ()) for row in rows]

    async def create_ticket(self, ticket: Ticket) -> None:
        async with self._pool.acquire() as connection:
            async with connection.transaction():
                await connection.execute(
                    self._INSERT_TICKET_SQL,
                    ticket.id,
                    ticket.title,
                    ticket.description,
                    ticket.status.value,
                    ticket.priority.value,
                    ticket.category_id,
                    ticket.created_by,
                    ticket.assignee_id,
                    ticket.version,
                    ticket.created_at,
                    ticket.updated_at,
                )
                for record in ticket.history:
                    await self._insert_record(connection, record)

    async def save_ticket(self, ticket: Ticket, *, expected_version: int, record: TransitionRecord) -> bool:
        async with self._pool.acquire() as connection:
            async with connection.transaction():
                row = await connection.fetchrow(
                    self._UPDATE_TICKET_SQL,
                    ticket.id,
                    ticket.title,
                    ticket.description,
                    ticket.status.value,
                    ticket.priority.value,
                    ticket.category_id,
                    ticket.assignee_id,
                    ticket.version,
                    ticket.updated_at,
                    expected_version,
                )
                if row is None:
                    logger.debug("Version conflict saving ticket %s at version %d", ticket.id, expected_version)
                    return False
                await self.save_transition_record(record, connection=connection)
        return True

    async def save_transition_record(self, record: TransitionRecord, *, connection: Any = None) -> None:
        """Append ``record`` to the history, on ``connection`` when inside a transaction."""

        if connection is None:
            async with self._pool.acquire() as acquired:
                await self._insert_record(acquired, record)
            return
        await self._insert_record(connection, record)

    async def _insert_record(self, connection: Any, record: TransitionRecord) -> None:
        await connection.execute(
            self._INSERT_TRANSITION_SQL,
            record.id,
            record.ticket_id,
            record.sequence,
            record.kind.value,
            record.from_value,
            record.to_value,
            record.actor_id,
            record.comment,
            record.created_at,
        )

    @staticmethod
    def _row_to_ticket(row: Any, history: tuple[TransitionRecord, ...]) -> Ticket:
        assignee = row["assignee_id"]
        return Ticket(
            id=_to_uuid(row["id"]),
            title=str(row["title"]),
            description=str(row["description"]),
            status=TicketStatus(str(row["status"])),
            priority=TicketPriority(str(row["priority"])),
            category_id=str(row["category_id"]),
            created_by=str(row["created_by"]),
            assignee_id=str(assignee) if assignee is not None else None,
            created_at=_ensure_datetime(row["created_at"]),
            updated_at=_ensure_datetime(row["updated_at"]),
            version=int(row["version"]),
            history=history,
        )

    @staticmethod
    def _row_to_record(row: Any) -> TransitionRecord:
        return TransitionRecord(
            id=_to_uuid(row["id"]),
            ticket_id=_to_uuid(row["ticket_id"]),
            sequence=int(row["sequence"]),
            kind=TransitionKind(str(row["kind"])),
            from_value=row["from_value"],
            to_value=row["to_value"],
            actor_id=str(row["actor_id"]),
            comment=row["comment"],
            created_at=_ensure_datetime(row["created_at"]),
        )


class UserRepository:
    """Identity provider backed by the ``users`` table."""

    _CREATE_USERS_SQL = """
    CREATE TABLE IF NOT EXISTS users (
        id TEXT PRIMARY KEY,
        display_name TEXT NOT NULL,
        role TEXT NOT NULL,
        email TEXT NULL
    )
    """

    _SELECT_USER_SQL = """
    SELECT id, display_name, role, email FROM users WHERE id = $1
    """

    _SELECT_USERS_BY_ROLE_SQL = """
    SELECT id, display_name, role, email FROM users WHERE role = $1 ORDER BY id ASC
    """

    def __init__(self, pool: asyncpg.Pool) -> None:
        self._pool = pool

    async def ensure_schema(self) -> None:
        async with self._pool.acquire() as connection:
            await connection.execute(self._CREATE_USERS_SQL)

    async def resolve_user(self, user_id: str) -> User | None:
        async with self._pool.acquire() as connection:
            row = await connection.fetchrow(self._SELECT_USER_SQL, user_id)
        return None if row is None else self._row_to_user(row)

    async def list_users_by_role(self, role: Role) -> Sequence[User]:
        async with self._pool.acquire() as connection:
            rows = await connection.fetch(self._SELECT_USERS_BY_ROLE_SQL, role.value)
        return [self._row_to_user(row) for row in rows]

    @staticmethod
    def _row_to_user(row: Any) -> User:
        return User(
            id=str(row["id"]),
            display_name=str(row["display_name"]),
            role=Role(str(row["role"])),
            email=row["email"],
        )


class CategoryRepository:
    """Read-only category registry backed by the ``categories`` table."""

    _CREATE_CATEGORIES_SQL = """
    CREATE TABLE IF NOT EXISTS categories (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        parent_id TEXT NULL REFERENCES categories(id),
        watcher_ids TEXT[] NOT NULL DEFAULT '{}'
    )
    """

    _SELECT_CATEGORY_SQL = """
    SELECT id, name, parent_id, watcher_ids FROM categories WHERE id = $1
    """

    _LIST_CATEGORIES_SQL = """
    SELECT id, name, parent_id, watcher_ids FROM categories ORDER BY name ASC
    """

    def __init__(self, pool: asyncpg.Pool) -> None:
        self._pool = pool

    async def ensure_schema(self) -> None:
        async with self._pool.acquire() as connection:
            await connection.execute(self._CREATE_CATEGORIES_SQL)

    async def resolve_category(self, category_id: str) -> Category | None:
        async with self._pool.acquire() as connection:
            row = await connection.fetchrow(self._SELECT_CATEGORY_SQL, category_id)
        return None if row is None else self._row_to_category(row)

    async def list_categories(self) -> Sequence[Category]:
        async with self._pool.acquire() as connection:
            rows = await connection.fetch(self._LIST_CATEGORIES_SQL)
        return [self._row_to_category(row) for row in rows]

    @staticmethod
    def _row_to_category(row: Any) -> Category:
        parent = row["parent_id"]
        return Category(
            id=str(row["id"]),
            name=str(row["name"]),
            parent_id=str(parent) if parent is not None else None,
            watcher_ids=tuple(str(watcher) for watcher in row["watcher_ids"] or ()),
        )


class NotificationRepository:
    """Notification sink that stores events in the ``notifications`` table."""

    _CREATE_NOTIFICATIONS_SQL = """
    CREATE TABLE IF NOT EXISTS notifications (
        id UUID PRIMARY KEY,
        recipient_id TEXT NOT NULL REFERENCES users(id),
        ticket_id UUID NOT NULL REFERENCES tickets(id),
        transition_id UUID NOT NULL REFERENCES ticket_transitions(id),
        kind TEXT NOT NULL,
        summary TEXT NOT NULL,
        created_at TIMESTAMPTZ NOT NULL
    )
    """

    _INSERT_NOTIFICATION_SQL = """
    INSERT INTO notifications (id, recipient_id, ticket_id, transition_id, kind, summary, created_at)
    VALUES ($1, $2, $3, $4, $5, $6, $7)
    """

    _SELECT_NOTIFICATIONS_SQL = """
    SELECT id, recipient_id, ticket_id, transition_id, kind, summary, created_at
    FROM notifications
    WHERE recipient_id = $1
    ORDER BY created_at DESC
    """

    def __init__(self, pool: asyncpg.Pool) -> None:
        self._pool = pool

    async def ensure_schema(self) -> None:
        async with self._pool.acquire() as connection:
            await connection.execute(self._CREATE_NOTIFICATIONS_SQL)

    async def send(self, event: NotificationEvent) -> None:
        try:
            async with self._pool.acquire() as connection:
                await connection.execute(
                    self._INSERT_NOTIFICATION_SQL,
                    event.id,
                    event.recipient_id,
                    event.ticket_id,
                    event.transition_id,
                    event.kind.value,
                    event.summary,
                    event.created_at,
                )
        except (asyncpg.PostgresError, OSError) as exc:
            raise DeliveryFailedError(f"Could not store notification {event.id}: {exc}") from exc

    async def list_notifications(self, recipient_id: str) -> Sequence[NotificationEvent]:
        async with self._pool.acquire() as connection:
            rows = await connection.fetch(self._SELECT_NOTIFICATIONS_SQL, recipient_id)
        return [
            NotificationEvent(
                id=_to_uuid(row["id"]),
                recipient_id=str(row["recipient_id"]),
                ticket_id=_to_uuid(row["ticket_id"]),
                transition_id=_to_uuid(row["transition_id"]),
                kind=NotificationKind(str(row["kind"])),
                summary=str(row["summary"]),
                created_at=_ensure_datetime(row["created_at"]),
            )
            for row in rows
        ]


async def ensure_schema(
    users: UserRepository,
    categories: CategoryRepository,
    tickets: TicketRepository,
    notifications: NotificationRepository,
) -> None:
    """Create all tables in foreign key order."""

    await users.ensure_schema()
    await categories.ensure_schema()
    await tickets.ensure_schema()
    await notifications.ensure_schema()


def _to_uuid(value: Any) -> UUID:
    if isinstance(value, UUID):
        return value
    return UUID(str(value))


def _ensure_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value
    return datetime.fromisoformat(str(value))
