from dataclasses import replace
from datetime import datetime, timezone

import pytest

from app.metrics.definitions import NOTIFICATION_FAILURES_TOTAL
from app.tickets.memory import InMemoryCategoryRegistry, InMemoryIdentityProvider, InMemoryNotificationSink
from app.tickets.models import (
    AssignmentChange,
    NotificationKind,
    PriorityChange,
    StatusChange,
    TicketPriority,
    TicketStatus,
)
from app.tickets.notifications import NotificationDispatcher
from app.tickets.state import TicketStateMachine

NOW = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


class FlakyIdentityProvider(InMemoryIdentityProvider):
    """Raises for selected users, the way a dropped database connection would."""

    def __init__(self, users, *, broken=(), role_lookup_fails=False):
        super().__init__(users)
        self._broken = set(broken)
        self._role_lookup_fails = role_lookup_fails

    async def resolve_user(self, user_id):
        if user_id in self._broken:
            raise ConnectionError("identity backend down")
        return await super().resolve_user(user_id)

    async def list_users_by_role(self, role):
        if self._role_lookup_fails:
            raise ConnectionError("identity backend down")
        return await super().list_users_by_role(role)


class FlakyCategoryRegistry(InMemoryCategoryRegistry):
    async def resolve_category(self, category_id):
        raise TimeoutError("category service timed out")


class ExplodingSink(InMemoryNotificationSink):
    async def send(self, event):
        if event.recipient_id == "rita":
            raise OSError("pool acquire timed out")
        await super().send(event)


def _ticket(category_id: str = "hardware", **overrides):
    ticket = TicketStateMachine().new_ticket(
        title="Printer jam",
        description="Tray 2 jams on every job",
        priority=TicketPriority.MEDIUM,
        category_id=category_id,
        created_by="rita",
        now=NOW,
    )
    return replace(ticket, **overrides) if overrides else ticket


def _apply(ticket, change, actor="alex"):
    return TicketStateMachine().apply(ticket, change, actor, now=NOW)


@pytest.mark.asyncio
async def test_status_change_notifies_creator_only_when_unassigned(dispatcher, sink):
    updated, record = _apply(_ticket(), StatusChange(TicketStatus.IN_PROGRESS))

    report = await dispatcher.dispatch(record, updated)

    assert [event.recipient_id for event in report.events] == ["rita"]
    assert report.events[0].kind == NotificationKind.STATUS_CHANGED
    assert report.events[0].summary == "Ticket 'Printer jam' moved from Open to In progress"
    assert report.failures == []
    assert sink.events == tuple(report.events)


@pytest.mark.asyncio
async def test_status_change_notifies_assignee_and_watchers_once(dispatcher):
    ticket = _ticket(category_id="laptops", assignee_id="bea")
    updated, record = _apply(ticket, StatusChange(TicketStatus.IN_PROGRESS))

    report = await dispatcher.dispatch(record, updated)

    # bea is both assignee and category watcher
    assert [event.recipient_id for event in report.events] == ["rita", "bea"]
    assert {event.transition_id for event in report.events} == {record.id}


@pytest.mark.asyncio
async def test_watchers_can_be_disabled(identity, categories, sink):
    dispatcher = NotificationDispatcher(identity, categories, sink, notify_category_watchers=False)
    updated, record = _apply(_ticket(category_id="laptops"), StatusChange(TicketStatus.IN_PROGRESS))

    report = await dispatcher.dispatch(record, updated)

    assert [event.recipient_id for event in report.events] == ["rita"]


@pytest.mark.asyncio
async def test_assignment_notifies_creator_and_new_assignee(dispatcher):
    updated, record = _apply(_ticket(), AssignmentChange("alex"), actor="ada")

    report = await dispatcher.dispatch(record, updated)

    assert [event.recipient_id for event in report.events] == ["rita", "alex"]
    assert all(event.kind == NotificationKind.ASSIGNED for event in report.events)


@pytest.mark.asyncio
async def test_priority_change_below_urgent_is_silent(dispatcher, sink):
    updated, record = _apply(_ticket(assignee_id="alex"), PriorityChange(TicketPriority.HIGH))

    report = await dispatcher.dispatch(record, updated)

    assert report.events == []
    assert sink.events == ()


@pytest.mark.asyncio
async def test_urgent_priority_escalates_to_assignee_and_admins(dispatcher):
    updated, record = _apply(_ticket(assignee_id="alex"), PriorityChange(TicketPriority.URGENT))

    report = await dispatcher.dispatch(record, updated)

    assert [event.recipient_id for event in report.events] == ["alex", "ada"]
    assert all(event.kind == NotificationKind.ESCALATED for event in report.events)


@pytest.mark.asyncio
async def test_missing_recipient_is_reported_not_raised(dispatcher):
    updated, record = _apply(_ticket(assignee_id="ghost"), StatusChange(TicketStatus.IN_PROGRESS))

    report = await dispatcher.dispatch(record, updated)

    assert [event.recipient_id for event in report.events] == ["rita"]
    assert len(report.failures) == 1
    assert report.failures[0].recipient_id == "ghost"
    assert report.failures[0].reason == "recipient not found"


@pytest.mark.asyncio
async def test_missing_category_is_reported_not_raised(dispatcher):
    updated, record = _apply(_ticket(category_id="retired"), StatusChange(TicketStatus.IN_PROGRESS))

    report = await dispatcher.dispatch(record, updated)

    assert [event.recipient_id for event in report.events] == ["rita"]
    assert report.failures[0].reason == "category retired not found"


@pytest.mark.asyncio
async def test_sink_failures_are_collected_per_event(identity, categories, clock, metrics):
    sink = InMemoryNotificationSink(unreachable={"rita"})
    dispatcher = NotificationDispatcher(identity, categories, sink, clock=clock, metrics=metrics)
    updated, record = _apply(_ticket(assignee_id="alex"), StatusChange(TicketStatus.IN_PROGRESS))

    report = await dispatcher.dispatch(record, updated)

    assert [event.recipient_id for event in report.events] == ["rita", "alex"]
    assert [event.recipient_id for event in sink.events] == ["alex"]
    assert len(report.failures) == 1
    assert report.failures[0].event is report.events[0]
    assert metrics.counter(NOTIFICATION_FAILURES_TOTAL).value() == 1.0


@pytest.mark.asyncio
async def test_reassignment_notifies_previous_assignee(dispatcher):
    updated, record = _apply(_ticket(assignee_id="alex"), AssignmentChange("bea"), actor="ada")

    report = await dispatcher.dispatch(record, updated)

    assert [event.recipient_id for event in report.events] == ["rita", "bea", "alex"]


@pytest.mark.asyncio
async def test_unassignment_notifies_previous_assignee(dispatcher):
    updated, record = _apply(_ticket(assignee_id="alex"), AssignmentChange(None), actor="ada")

    report = await dispatcher.dispatch(record, updated)

    assert [event.recipient_id for event in report.events] == ["rita", "alex"]
    assert report.events[0].summary == "Ticket 'Printer jam' was unassigned"


@pytest.mark.asyncio
async def test_recipient_lookup_errors_become_failures(identity, categories, sink):
    users = [await identity.resolve_user(user_id) for user_id in ("rita", "alex", "bea", "ada")]
    flaky = FlakyIdentityProvider(users, broken={"alex"})
    dispatcher = NotificationDispatcher(flaky, categories, sink)
    updated, record = _apply(_ticket(assignee_id="alex"), StatusChange(TicketStatus.IN_PROGRESS))

    report = await dispatcher.dispatch(record, updated)

    assert [event.recipient_id for event in report.events] == ["rita"]
    assert report.failures[0].recipient_id == "alex"
    assert report.failures[0].reason == "recipient lookup failed: identity backend down"


@pytest.mark.asyncio
async def test_escalation_pool_lookup_error_still_notifies_assignee(identity, categories, sink):
    users = [await identity.resolve_user(user_id) for user_id in ("rita", "alex", "ada")]
    flaky = FlakyIdentityProvider(users, role_lookup_fails=True)
    dispatcher = NotificationDispatcher(flaky, categories, sink)
    updated, record = _apply(_ticket(assignee_id="alex"), PriorityChange(TicketPriority.URGENT))

    report = await dispatcher.dispatch(record, updated)

    assert [event.recipient_id for event in report.events] == ["alex"]
    assert report.failures[0].reason == "escalation lookup failed: identity backend down"


@pytest.mark.asyncio
async def test_category_lookup_error_skips_watchers(identity, sink):
    dispatcher = NotificationDispatcher(identity, FlakyCategoryRegistry(), sink)
    updated, record = _apply(_ticket(category_id="laptops"), StatusChange(TicketStatus.IN_PROGRESS))

    report = await dispatcher.dispatch(record, updated)

    assert [event.recipient_id for event in report.events] == ["rita"]
    assert report.failures[0].reason == "category lookup failed: category service timed out"


@pytest.mark.asyncio
async def test_unexpected_sink_errors_are_collected(identity, categories, metrics):
    sink = ExplodingSink()
    dispatcher = NotificationDispatcher(identity, categories, sink, metrics=metrics)
    updated, record = _apply(_ticket(assignee_id="alex"), StatusChange(TicketStatus.IN_PROGRESS))

    report = await dispatcher.dispatch(record, updated)

    assert [event.recipient_id for event in sink.events] == ["alex"]
    assert report.failures[0].recipient_id == "rita"
    assert report.failures[0].reason == "sink error: pool acquire timed out"
    assert metrics.counter(NOTIFICATION_FAILURES_TOTAL).value() == 1.0
