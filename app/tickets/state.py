from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from typing import Mapping, Sequence
from uuid import UUID, uuid4

from .errors import InvalidTransitionError
from .models import (
    AssignmentChange,
    PriorityChange,
    StatusChange,
    Ticket,
    TicketChange,
    TicketPriority,
    TicketStatus,
    TransitionKind,
    TransitionRecord,
)


class TicketStateMachine:
    """Validate ticket lifecycle transitions and compute the resulting snapshot.

    ``REOPENED`` is persisted as its own status so the history shows the
    re-entry, but it has the same outgoing edges as ``OPEN``.
    """

    _DEFAULT_TRANSITIONS: Mapping[TicketStatus, Sequence[TicketStatus]] = {
        TicketStatus.OPEN: (TicketStatus.IN_PROGRESS,),
        TicketStatus.IN_PROGRESS: (TicketStatus.RESOLVED,),
        TicketStatus.RESOLVED: (TicketStatus.CLOSED, TicketStatus.REOPENED),
        TicketStatus.CLOSED: (TicketStatus.REOPENED,),
        TicketStatus.REOPENED: (TicketStatus.IN_PROGRESS,),
    }

    def __init__(
        self,
        transitions: Mapping[TicketStatus, Sequence[TicketStatus]] | None = None,
        *,
        terminal: Sequence[TicketStatus] = (TicketStatus.CLOSED,),
    ) -> None:
        self._transitions = transitions or self._DEFAULT_TRANSITIONS
        self._terminal = frozenset(terminal)

    @staticmethod
    def initial_state() -> TicketStatus:
        return TicketStatus.OPEN

    def allowed_targets(self, current: TicketStatus) -> tuple[TicketStatus, ...]:
        return tuple(self._transitions.get(current, ()))

    def can_transition(self, current: TicketStatus, target: TicketStatus) -> bool:
        return target in self._transitions.get(current, ())

    def assert_transition(self, current: TicketStatus, target: TicketStatus) -> None:
        if not self.can_transition(current, target):
            raise InvalidTransitionError(f"Invalid ticket status transition: {current.value} -> {target.value}")

    def is_terminal(self, status: TicketStatus) -> bool:
        return status in self._terminal

    def new_ticket(
        self,
        *,
        title: str,
        description: str,
        priority: TicketPriority,
        category_id: str,
        created_by: str,
        now: datetime,
        ticket_id: UUID | None = None,
    ) -> Ticket:
        """Build a fresh ticket in the initial state with its creation record."""

        ticket_id = ticket_id or uuid4()
        status = self.initial_state()
        record = TransitionRecord(
            id=uuid4(),
            ticket_id=ticket_id,
            sequence=1,
            kind=TransitionKind.CREATED,
            from_value=None,
            to_value=status.value,
            actor_id=created_by,
            created_at=now,
        )
        return Ticket(
            id=ticket_id,
            title=title,
            description=description,
            status=status,
            priority=priority,
            category_id=category_id,
            created_by=created_by,
            assignee_id=None,
            created_at=now,
            updated_at=now,
            version=1,
            history=(record,),
        )

    def apply(
        self, ticket: Ticket, change: TicketChange, actor_id: str, *, now: datetime
    ) -> tuple[Ticket, TransitionRecord]:
        """Validate ``change`` against ``ticket`` and return the next snapshot and its record.

        The input snapshot is never modified. Raises ``InvalidTransitionError``
        when the change is not permitted from the current state.
        """

        if isinstance(change, StatusChange):
            self.assert_transition(ticket.status, change.target)
            kind = TransitionKind.STATUS
            before, after = ticket.status.value, change.target.value
            updates: dict[str, object] = {"status": change.target}
        elif isinstance(change, PriorityChange):
            self._assert_mutable(ticket, "priority")
            if change.target == ticket.priority:
                raise InvalidTransitionError(f"Ticket priority is already {ticket.priority.value}")
            kind = TransitionKind.PRIORITY
            before, after = ticket.priority.value, change.target.value
            updates = {"priority": change.target}
        elif isinstance(change, AssignmentChange):
            self._assert_mutable(ticket, "assignee")
            if change.assignee_id == ticket.assignee_id:
                raise InvalidTransitionError("Ticket assignee is unchanged")
            kind = TransitionKind.ASSIGNMENT
            before, after = ticket.assignee_id, change.assignee_id
            updates = {"assignee_id": change.assignee_id}
        else:
            raise InvalidTransitionError(f"Unsupported ticket change: {type(change).__name__}")

        # History must stay ordered even if the clock steps backwards.
        if ticket.history and now < ticket.history[-1].created_at:
            now = ticket.history[-1].created_at

        record = TransitionRecord(
            id=uuid4(),
            ticket_id=ticket.id,
            sequence=ticket.next_sequence,
            kind=kind,
            from_value=before,
            to_value=after,
            actor_id=actor_id,
            created_at=now,
            comment=change.comment,
        )
        updated = replace(
            ticket,
            **updates,
            updated_at=now,
            version=ticket.version + 1,
            history=(*ticket.history, record),
        )
        return updated, record

    def _assert_mutable(self, ticket: Ticket, field_name: str) -> None:
        if self.is_terminal(ticket.status):
            raise InvalidTransitionError(
                f"Cannot change {field_name} of a {ticket.status.value} ticket; reopen it first"
            )
