from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Sequence
from uuid import uuid4

from app.metrics import MetricsRegistry, metrics_registry
from app.metrics.definitions import NOTIFICATION_FAILURES_TOTAL, NOTIFICATIONS_SENT_TOTAL

from .errors import DeliveryFailedError
from .models import (
    NotificationEvent,
    NotificationKind,
    Role,
    Ticket,
    TicketPriority,
    TicketStatus,
    TransitionKind,
    TransitionRecord,
)
from .protocols import CategoryRegistry, IdentityProvider, NotificationSink

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class DeliveryFailure:
    """A notification that could not be planned or delivered.

    ``event`` is ``None`` when the failure happened before an event existed,
    for example when the recipient could not be resolved.
    """

    reason: str
    recipient_id: str | None = None
    event: NotificationEvent | None = None


@dataclass(slots=True)
class DispatchReport:
    events: list[NotificationEvent] = field(default_factory=list)
    failures: list[DeliveryFailure] = field(default_factory=list)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class NotificationDispatcher:
    """Decide who hears about a committed transition and deliver the events.

    Failures never raise: they are logged and returned in the report so the
    caller can surface them next to a successful transition.
    """

    def __init__(
        self,
        identity: IdentityProvider,
        categories: CategoryRegistry,
        sink: NotificationSink,
        *,
        escalation_role: Role = Role.ADMIN,
        notify_category_watchers: bool = True,
        clock: Callable[[], datetime] = _utcnow,
        metrics: MetricsRegistry | None = None,
    ) -> None:
        self._identity = identity
        self._categories = categories
        self._sink = sink
        self._escalation_role = escalation_role
        self._notify_watchers = notify_category_watchers
        self._clock = clock
        self._metrics = metrics or metrics_registry

    async def dispatch(self, record: TransitionRecord, ticket: Ticket) -> DispatchReport:
        report = await self.plan(record, ticket)
        report.failures.extend(await self.deliver(report.events))
        return report

    async def plan(self, record: TransitionRecord, ticket: Ticket) -> DispatchReport:
        """Build one event per interested, resolvable recipient."""

        report = DispatchReport()
        kind = self._kind_for(record)
        if kind is None:
            return report

        candidates = await self._recipients_for(record, ticket, kind, report)
        seen: set[str] = set()
        now = self._clock()
        summary = self._summarise(record, ticket, kind)
        for recipient_id in candidates:
            if recipient_id in seen:
                continue
            seen.add(recipient_id)
            try:
                user = await self._identity.resolve_user(recipient_id)
            except Exception as exc:
                logger.exception("Recipient lookup for %s on ticket %s failed", recipient_id, ticket.id)
                report.failures.append(
                    DeliveryFailure(reason=f"recipient lookup failed: {exc}", recipient_id=recipient_id)
                )
                continue
            if user is None:
                logger.warning(
                    "Skipping notification for ticket %s: recipient %s not found", ticket.id, recipient_id
                )
                report.failures.append(DeliveryFailure(reason="recipient not found", recipient_id=recipient_id))
                continue
            report.events.append(
                NotificationEvent(
                    id=uuid4(),
                    recipient_id=user.id,
                    ticket_id=ticket.id,
                    transition_id=record.id,
                    kind=kind,
                    summary=summary,
                    created_at=now,
                )
            )
        return report

    async def deliver(self, events: Sequence[NotificationEvent]) -> list[DeliveryFailure]:
        if not events:
            return []
        outcomes = await asyncio.gather(*(self._send(event) for event in events))
        return [failure for failure in outcomes if failure is not None]

    async def _send(self, event: NotificationEvent) -> DeliveryFailure | None:
        try:
            await self._sink.send(event)
        except DeliveryFailedError as exc:
            logger.warning(
                "Notification %s to %s for ticket %s failed: %s",
                event.kind.value,
                event.recipient_id,
                event.ticket_id,
                exc.detail,
            )
            self._metrics.counter(NOTIFICATION_FAILURES_TOTAL).inc()
            return DeliveryFailure(reason=exc.detail, recipient_id=event.recipient_id, event=event)
        except Exception as exc:
            logger.exception("Notification sink raised for %s on ticket %s", event.recipient_id, event.ticket_id)
            self._metrics.counter(NOTIFICATION_FAILURES_TOTAL).inc()
            return DeliveryFailure(reason=f"sink error: {exc}", recipient_id=event.recipient_id, event=event)
        self._metrics.counter(NOTIFICATIONS_SENT_TOTAL, label_names=("kind",)).inc(
            labels={"kind": event.kind.value}
        )
        return None

    def _kind_for(self, record: TransitionRecord) -> NotificationKind | None:
        if record.kind is TransitionKind.CREATED:
            return NotificationKind.TICKET_CREATED
        if record.kind is TransitionKind.STATUS:
            return NotificationKind.STATUS_CHANGED
        if record.kind is TransitionKind.ASSIGNMENT:
            return NotificationKind.ASSIGNED
        if (
            record.kind is TransitionKind.PRIORITY
            and record.to_value == TicketPriority.URGENT.value
            and record.from_value != TicketPriority.URGENT.value
        ):
            return NotificationKind.ESCALATED
        return None

    async def _recipients_for(
        self,
        record: TransitionRecord,
        ticket: Ticket,
        kind: NotificationKind,
        report: DispatchReport,
    ) -> list[str]:
        if kind is NotificationKind.ESCALATED:
            recipients = [ticket.assignee_id] if ticket.assignee_id else []
            try:
                pool = await self._identity.list_users_by_role(self._escalation_role)
            except Exception as exc:
                logger.exception("Escalation pool lookup for ticket %s failed", ticket.id)
                report.failures.append(DeliveryFailure(reason=f"escalation lookup failed: {exc}"))
                return recipients
            if not pool:
                logger.warning("No %s users available to escalate ticket %s", self._escalation_role.value, ticket.id)
                report.failures.append(DeliveryFailure(reason=f"no {self._escalation_role.value} users to escalate to"))
            recipients.extend(user.id for user in pool)
            return recipients

        if kind is NotificationKind.ASSIGNED:
            recipients = [ticket.created_by]
            # previous assignee hears about the hand-off too
            recipients.extend(value for value in (record.to_value, record.from_value) if value)
            return recipients

        recipients = [ticket.created_by]
        if ticket.assignee_id:
            recipients.append(ticket.assignee_id)
        if self._notify_watchers:
            try:
                category = await self._categories.resolve_category(ticket.category_id)
            except Exception as exc:
                logger.exception("Category lookup for ticket %s failed; watchers skipped", ticket.id)
                report.failures.append(DeliveryFailure(reason=f"category lookup failed: {exc}"))
                return recipients
            if category is None:
                logger.warning("Category %s of ticket %s not found; watchers skipped", ticket.category_id, ticket.id)
                report.failures.append(DeliveryFailure(reason=f"category {ticket.category_id} not found"))
            else:
                recipients.extend(category.watcher_ids)
        return recipients

    @staticmethod
    def _summarise(record: TransitionRecord, ticket: Ticket, kind: NotificationKind) -> str:
        if kind is NotificationKind.TICKET_CREATED:
            return f"Ticket '{ticket.title}' was opened"
        if kind is NotificationKind.STATUS_CHANGED:
            before = TicketStatus(record.from_value).label if record.from_value else "new"
            after = TicketStatus(record.to_value).label if record.to_value else "unknown"
            return f"Ticket '{ticket.title}' moved from {before} to {after}"
        if kind is NotificationKind.ASSIGNED:
            if record.to_value is None:
                return f"Ticket '{ticket.title}' was unassigned"
            return f"Ticket '{ticket.title}' was assigned to {record.to_value}"
        return f"Ticket '{ticket.title}' was escalated to {TicketPriority.URGENT.label} priority"
