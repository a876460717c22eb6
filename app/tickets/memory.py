"""In-process implementations of the engine collaborators.

Used by the ``memory`` storage backend and as test doubles. All state lives in
dictionaries guarded by an ``asyncio.Lock`` where writes must be atomic.
"""

from __future__ import annotations

import asyncio
from collections import defaultdict
from typing import Iterable, Sequence
from uuid import UUID

from .errors import DeliveryFailedError
from .models import Category, NotificationEvent, Role, Ticket, TicketStatus, TransitionRecord, User


class InMemoryTicketStore:
    def __init__(self) -> None:
        self._tickets: dict[UUID, Ticket] = {}
        self._records: dict[UUID, list[TransitionRecord]] = defaultdict(list)
        self._lock = asyncio.Lock()

    async def load_ticket(self, ticket_id: UUID) -> Ticket | None:
        return self._tickets.get(ticket_id)

    async def list_tickets(self, *, status: TicketStatus | None = None) -> Sequence[Ticket]:
        tickets = sorted(self._tickets.values(), key=lambda ticket: ticket.created_at, reverse=True)
        if status is None:
            return tickets
        return [ticket for ticket in tickets if ticket.status == status]

    async def create_ticket(self, ticket: Ticket) -> None:
        async with self._lock:
            if ticket.id in self._tickets:
                raise ValueError(f"Ticket {ticket.id} already exists")
            self._tickets[ticket.id] = ticket
            self._records[ticket.id].extend(ticket.history)

    async def save_ticket(self, ticket: Ticket, *, expected_version: int, record: TransitionRecord) -> bool:
        async with self._lock:
            current = self._tickets.get(ticket.id)
            if current is None or current.version != expected_version:
                return False
            self._append_record(record)
            self._tickets[ticket.id] = ticket
            return True

    async def save_transition_record(self, record: TransitionRecord) -> None:
        async with self._lock:
            self._append_record(record)

    def _append_record(self, record: TransitionRecord) -> None:
        if record.ticket_id not in self._tickets:
            raise ValueError(f"Ticket {record.ticket_id} does not exist")
        records = self._records[record.ticket_id]
        if record.sequence != len(records) + 1:
            raise ValueError(
                f"Record {record.sequence} for ticket {record.ticket_id} is out of order; expected {len(records) + 1}"
            )
        records.append(record)

    def transition_records(self, ticket_id: UUID) -> tuple[TransitionRecord, ...]:
        return tuple(self._records.get(ticket_id, ()))


class InMemoryIdentityProvider:
    def __init__(self, users: Iterable[User] = ()) -> None:
        self._users: dict[str, User] = {user.id: user for user in users}

    def add_user(self, user: User) -> User:
        self._users[user.id] = user
        return user

    async def resolve_user(self, user_id: str) -> User | None:
        return self._users.get(user_id)

    async def list_users_by_role(self, role: Role) -> Sequence[User]:
        return [user for user in self._users.values() if user.role == role]


class InMemoryCategoryRegistry:
    def __init__(self, categories: Iterable[Category] = ()) -> None:
        self._categories: dict[str, Category] = {category.id: category for category in categories}

    def add_category(self, category: Category) -> Category:
        if category.parent_id is not None and category.parent_id not in self._categories:
            raise ValueError(f"Parent category {category.parent_id} is not registered")
        self._categories[category.id] = category
        return category

    async def resolve_category(self, category_id: str) -> Category | None:
        return self._categories.get(category_id)

    async def list_categories(self) -> Sequence[Category]:
        return sorted(self._categories.values(), key=lambda category: category.name)


class InMemoryNotificationSink:
    """Keeps delivered events per recipient; doubles as the notification feed."""

    def __init__(self, *, unreachable: Iterable[str] = ()) -> None:
        self._events: list[NotificationEvent] = []
        self._unreachable = set(unreachable)

    @property
    def events(self) -> tuple[NotificationEvent, ...]:
        return tuple(self._events)

    async def send(self, event: NotificationEvent) -> None:
        if event.recipient_id in self._unreachable:
            raise DeliveryFailedError(f"Recipient {event.recipient_id} is unreachable")
        self._events.append(event)

    async def list_notifications(self, recipient_id: str) -> Sequence[NotificationEvent]:
        return [event for event in reversed(self._events) if event.recipient_id == recipient_id]
