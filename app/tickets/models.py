from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Union
from uuid import UUID


class Role(str, Enum):
    """Roles a user may hold; each user holds exactly one."""

    REQUESTER = "requester"
    AGENT = "agent"
    ADMIN = "admin"


class TicketStatus(str, Enum):
    """Supported states for a ticket's lifecycle."""

    OPEN = "open"
    IN_PROGRESS = "in_progress"
    RESOLVED = "resolved"
    CLOSED = "closed"
    REOPENED = "reopened"

    @property
    def label(self) -> str:
        return self.value.replace("_", " ").capitalize()


class TicketPriority(str, Enum):
    """Ticket priorities, lowest first."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"

    @property
    def label(self) -> str:
        return self.value.capitalize()


class TransitionKind(str, Enum):
    """What a history entry changed."""

    CREATED = "created"
    STATUS = "status"
    PRIORITY = "priority"
    ASSIGNMENT = "assignment"


class NotificationKind(str, Enum):
    TICKET_CREATED = "ticket_created"
    STATUS_CHANGED = "status_changed"
    ASSIGNED = "assigned"
    ESCALATED = "escalated"


@dataclass(slots=True, frozen=True)
class User:
    """An authenticated user of the ticketing service."""

    id: str
    display_name: str
    role: Role
    email: str | None = None

    def has_role(self, *roles: Role) -> bool:
        return self.role in roles


@dataclass(slots=True, frozen=True)
class Category:
    """Node in the category taxonomy tickets are filed under."""

    id: str
    name: str
    parent_id: str | None = None
    watcher_ids: tuple[str, ...] = ()


@dataclass(slots=True, frozen=True)
class TransitionRecord:
    """Append-only history entry for a single ticket change.

    ``from_value`` and ``to_value`` hold the enum value (status, priority) or
    the user id (assignment) before and after the change. ``sequence`` is
    1-based and dense per ticket, which gives the history its total order.
    """

    id: UUID
    ticket_id: UUID
    sequence: int
    kind: TransitionKind
    from_value: str | None
    to_value: str | None
    actor_id: str
    created_at: datetime
    comment: str | None = None

    @property
    def changes_status(self) -> bool:
        return self.kind in (TransitionKind.CREATED, TransitionKind.STATUS)


@dataclass(slots=True, frozen=True)
class Ticket:
    """Immutable snapshot of a support ticket and its history."""

    id: UUID
    title: str
    description: str
    status: TicketStatus
    priority: TicketPriority
    category_id: str
    created_by: str
    assignee_id: str | None
    created_at: datetime
    updated_at: datetime
    version: int = 1
    history: tuple[TransitionRecord, ...] = field(default_factory=tuple)

    def is_owned_by(self, user_id: str) -> bool:
        return self.created_by == user_id

    @property
    def next_sequence(self) -> int:
        return self.history[-1].sequence + 1 if self.history else 1


@dataclass(slots=True, frozen=True)
class NotificationEvent:
    """Message addressed to one user about one committed transition."""

    id: UUID
    recipient_id: str
    ticket_id: UUID
    transition_id: UUID
    kind: NotificationKind
    summary: str
    created_at: datetime


@dataclass(slots=True, frozen=True)
class StatusChange:
    target: TicketStatus
    comment: str | None = None


@dataclass(slots=True, frozen=True)
class PriorityChange:
    target: TicketPriority
    comment: str | None = None


@dataclass(slots=True, frozen=True)
class AssignmentChange:
    """Assign the ticket to ``assignee_id``; ``None`` unassigns it."""

    assignee_id: str | None
    comment: str | None = None


TicketChange = Union[StatusChange, PriorityChange, AssignmentChange]
