"""Collaborator interfaces consumed by the lifecycle engine."""

from __future__ import annotations

from typing import Protocol, Sequence
from uuid import UUID

from .models import Category, NotificationEvent, Role, Ticket, TicketStatus, TransitionRecord, User


class TicketStore(Protocol):
    async def load_ticket(self, ticket_id: UUID) -> Ticket | None:
        ...

    async def list_tickets(self, *, status: TicketStatus | None = None) -> Sequence[Ticket]:
        ...

    async def create_ticket(self, ticket: Ticket) -> None:
        ...

    async def save_ticket(self, ticket: Ticket, *, expected_version: int, record: TransitionRecord) -> bool:
        """Persist ``ticket`` and append ``record`` if the stored version still matches.

        Returns ``False`` without writing anything on a version conflict.
        """
        ...

    async def save_transition_record(self, record: TransitionRecord) -> None:
        ...


class IdentityProvider(Protocol):
    async def resolve_user(self, user_id: str) -> User | None:
        ...

    async def list_users_by_role(self, role: Role) -> Sequence[User]:
        ...


class CategoryRegistry(Protocol):
    async def resolve_category(self, category_id: str) -> Category | None:
        ...

    async def list_categories(self) -> Sequence[Category]:
        ...


class NotificationSink(Protocol):
    async def send(self, event: NotificationEvent) -> None:
        """Deliver ``event``; raise ``DeliveryFailedError`` when it cannot be delivered."""
        ...


class NotificationFeed(Protocol):
    async def list_notifications(self, recipient_id: str) -> Sequence[NotificationEvent]:
        ...
