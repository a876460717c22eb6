from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest

from app.tickets.errors import InvalidTransitionError
from app.tickets.models import (
    AssignmentChange,
    PriorityChange,
    StatusChange,
    TicketPriority,
    TicketStatus,
    TransitionKind,
)
from app.tickets.state import TicketStateMachine

NOW = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)

ALLOWED_EDGES = {
    (TicketStatus.OPEN, TicketStatus.IN_PROGRESS),
    (TicketStatus.IN_PROGRESS, TicketStatus.RESOLVED),
    (TicketStatus.RESOLVED, TicketStatus.CLOSED),
    (TicketStatus.RESOLVED, TicketStatus.REOPENED),
    (TicketStatus.CLOSED, TicketStatus.REOPENED),
    (TicketStatus.REOPENED, TicketStatus.IN_PROGRESS),
}


def _ticket(machine: TicketStateMachine, **overrides):
    ticket = machine.new_ticket(
        title="Laptop will not boot",
        description="Black screen after the update",
        priority=TicketPriority.MEDIUM,
        category_id="laptops",
        created_by="rita",
        now=NOW,
    )
    return replace(ticket, **overrides) if overrides else ticket


def test_ticket_state_machine_allows_only_listed_edges():
    machine = TicketStateMachine()
    for current in TicketStatus:
        for target in TicketStatus:
            assert machine.can_transition(current, target) == ((current, target) in ALLOWED_EDGES)


def test_ticket_state_machine_blocks_invalid_transitions():
    machine = TicketStateMachine()
    assert not machine.can_transition(TicketStatus.IN_PROGRESS, TicketStatus.CLOSED)
    assert not machine.can_transition(TicketStatus.OPEN, TicketStatus.OPEN)
    with pytest.raises(InvalidTransitionError):
        machine.assert_transition(TicketStatus.CLOSED, TicketStatus.IN_PROGRESS)


def test_reopened_behaves_like_open_for_outgoing_edges():
    machine = TicketStateMachine()
    assert machine.allowed_targets(TicketStatus.REOPENED) == machine.allowed_targets(TicketStatus.OPEN)


def test_new_ticket_starts_open_with_creation_record():
    machine = TicketStateMachine()
    ticket = _ticket(machine)

    assert ticket.status == TicketStatus.OPEN
    assert ticket.version == 1
    assert len(ticket.history) == 1
    record = ticket.history[0]
    assert record.kind == TransitionKind.CREATED
    assert record.from_value is None
    assert record.to_value == "open"
    assert record.sequence == 1


def test_apply_status_change_returns_new_snapshot_and_record():
    machine = TicketStateMachine()
    ticket = _ticket(machine)

    later = NOW + timedelta(minutes=5)
    updated, record = machine.apply(ticket, StatusChange(TicketStatus.IN_PROGRESS, comment="on it"), "alex", now=later)

    assert ticket.status == TicketStatus.OPEN
    assert updated.status == TicketStatus.IN_PROGRESS
    assert updated.version == 2
    assert updated.updated_at == later
    assert updated.history == (*ticket.history, record)
    assert record.sequence == 2
    assert record.comment == "on it"
    assert (record.from_value, record.to_value) == ("open", "in_progress")


def test_apply_keeps_history_ordered_when_clock_goes_backwards():
    machine = TicketStateMachine()
    ticket = _ticket(machine)

    _, record = machine.apply(ticket, StatusChange(TicketStatus.IN_PROGRESS), "alex", now=NOW - timedelta(hours=1))

    assert record.created_at == NOW


def test_priority_change_is_rejected_on_closed_ticket():
    machine = TicketStateMachine()
    ticket = _ticket(machine, status=TicketStatus.CLOSED)

    with pytest.raises(InvalidTransitionError):
        machine.apply(ticket, PriorityChange(TicketPriority.HIGH), "ada", now=NOW)


def test_priority_change_to_same_value_is_rejected():
    machine = TicketStateMachine()
    ticket = _ticket(machine)

    with pytest.raises(InvalidTransitionError):
        machine.apply(ticket, PriorityChange(TicketPriority.MEDIUM), "alex", now=NOW)


def test_priority_change_produces_priority_record():
    machine = TicketStateMachine()
    ticket = _ticket(machine, status=TicketStatus.IN_PROGRESS)

    updated, record = machine.apply(ticket, PriorityChange(TicketPriority.URGENT), "alex", now=NOW)

    assert updated.priority == TicketPriority.URGENT
    assert updated.status == TicketStatus.IN_PROGRESS
    assert record.kind == TransitionKind.PRIORITY
    assert (record.from_value, record.to_value) == ("medium", "urgent")


def test_assignment_change_records_previous_assignee():
    machine = TicketStateMachine()
    ticket = _ticket(machine, assignee_id="alex")

    updated, record = machine.apply(ticket, AssignmentChange("bea"), "ada", now=NOW)

    assert updated.assignee_id == "bea"
    assert record.kind == TransitionKind.ASSIGNMENT
    assert (record.from_value, record.to_value) == ("alex", "bea")

    with pytest.raises(InvalidTransitionError):
        machine.apply(updated, AssignmentChange("bea"), "ada", now=NOW)


def test_custom_transition_table_is_honoured():
    machine = TicketStateMachine({TicketStatus.OPEN: (TicketStatus.CLOSED,)})

    assert machine.can_transition(TicketStatus.OPEN, TicketStatus.CLOSED)
    assert not machine.can_transition(TicketStatus.OPEN, TicketStatus.IN_PROGRESS)
