from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Iterator, Sequence
from uuid import UUID

from opentelemetry import trace

from app.metrics import MetricsRegistry, metrics_registry
from app.metrics.base import track_duration
from app.metrics.definitions import (
    TRANSITION_DURATION_SECONDS,
    TRANSITION_REJECTIONS_TOTAL,
    TRANSITIONS_TOTAL,
)

from .authorization import TicketAction, action_for_status, authorize
from .errors import (
    CategoryNotFoundError,
    InvalidTransitionError,
    StaleVersionError,
    TicketEngineError,
    TicketNotFoundError,
    UnauthorizedTransitionError,
    UserNotFoundError,
)
from .models import (
    AssignmentChange,
    NotificationEvent,
    PriorityChange,
    Role,
    StatusChange,
    Ticket,
    TicketChange,
    TicketPriority,
    TicketStatus,
    TransitionRecord,
    User,
)
from .notifications import DeliveryFailure, NotificationDispatcher
from .protocols import CategoryRegistry, IdentityProvider, TicketStore
from .state import TicketStateMachine

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

_ASSIGNABLE_ROLES = (Role.AGENT, Role.ADMIN)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class TransitionResult:
    """Outcome of a committed ticket change.

    ``events`` lists every notification produced for the change, delivered or
    not; undeliverable ones are repeated in ``delivery_failures``.
    """

    ticket: Ticket
    record: TransitionRecord
    events: list[NotificationEvent] = field(default_factory=list)
    delivery_failures: list[DeliveryFailure] = field(default_factory=list)

    @property
    def partially_failed(self) -> bool:
        return bool(self.delivery_failures)


class TicketLifecycleEngine:
    """Authorize, validate, commit and announce ticket changes.

    Nothing is written and nobody is notified unless every check passes; the
    commit is a compare-and-set on the ticket version so concurrent writers
    cannot both win.
    """

    def __init__(
        self,
        store: TicketStore,
        identity: IdentityProvider,
        categories: CategoryRegistry,
        dispatcher: NotificationDispatcher,
        *,
        state_machine: TicketStateMachine | None = None,
        clock: Callable[[], datetime] = _utcnow,
        metrics: MetricsRegistry | None = None,
    ) -> None:
        self._store = store
        self._identity = identity
        self._categories = categories
        self._dispatcher = dispatcher
        self._state_machine = state_machine or TicketStateMachine()
        self._clock = clock
        self._metrics = metrics or metrics_registry

    async def create_ticket(
        self,
        actor_id: str,
        *,
        title: str,
        description: str,
        category_id: str,
        priority: TicketPriority = TicketPriority.MEDIUM,
    ) -> TransitionResult:
        with tracer.start_as_current_span("ticket.create") as span, self._observe():
            actor = await self._resolve_actor(actor_id)
            self._authorize(actor, TicketAction.CREATE, None, owns_ticket=True)
            category = await self._categories.resolve_category(category_id)
            if category is None:
                raise CategoryNotFoundError(f"Category {category_id} not found")

            ticket = self._state_machine.new_ticket(
                title=title,
                description=description,
                priority=priority,
                category_id=category.id,
                created_by=actor.id,
                now=self._clock(),
            )
            await self._store.create_ticket(ticket)
            span.set_attribute("ticket.id", str(ticket.id))
            record = ticket.history[0]
            logger.info("Ticket %s created by %s in category %s", ticket.id, actor.id, category.id)
            return await self._committed(ticket, record)

    async def request_transition(
        self,
        ticket_id: UUID,
        actor_id: str,
        change: TicketChange,
        *,
        expected_version: int | None = None,
    ) -> TransitionResult:
        """Apply ``change`` to the ticket on behalf of ``actor_id``.

        ``expected_version`` is the version the caller last saw; when given,
        the request fails with ``StaleVersionError`` if the ticket has moved on.
        Raises a ``TicketEngineError`` subclass on any rejection, in which case
        the stored ticket is untouched.
        """

        with tracer.start_as_current_span("ticket.request_transition") as span, self._observe():
            span.set_attribute("ticket.id", str(ticket_id))
            span.set_attribute("ticket.change", type(change).__name__)

            actor = await self._resolve_actor(actor_id)
            ticket = await self._load(ticket_id)
            if expected_version is not None and ticket.version != expected_version:
                raise StaleVersionError(
                    f"Ticket {ticket_id} is at version {ticket.version}, not {expected_version}",
                    expected_version=expected_version,
                    actual_version=ticket.version,
                )

            owns_ticket = ticket.is_owned_by(actor.id)
            self._authorize(actor, self._action_for(change), ticket.status, owns_ticket=owns_ticket)
            updated, record = self._state_machine.apply(ticket, change, actor.id, now=self._clock())
            if isinstance(change, StatusChange):
                self._authorize(actor, self._target_action(change), ticket.status, owns_ticket=owns_ticket)
            if isinstance(change, AssignmentChange) and change.assignee_id is not None:
                await self._check_assignee(change.assignee_id)

            if not await self._store.save_ticket(updated, expected_version=ticket.version, record=record):
                raise StaleVersionError(
                    f"Ticket {ticket_id} was modified concurrently; reload and retry",
                    expected_version=ticket.version,
                )
            logger.info(
                "Ticket %s %s change by %s: %s -> %s (version %d)",
                ticket_id,
                record.kind.value,
                actor.id,
                record.from_value,
                record.to_value,
                updated.version,
            )
            return await self._committed(updated, record)

    async def get_ticket(self, ticket_id: UUID, *, viewer: User | None = None) -> Ticket:
        ticket = await self._load(ticket_id)
        if viewer is not None and not self._can_view(viewer, ticket):
            raise TicketNotFoundError(f"Ticket {ticket_id} not found")
        return ticket

    async def list_tickets(
        self, *, status: TicketStatus | None = None, viewer: User | None = None
    ) -> Sequence[Ticket]:
        tickets = await self._store.list_tickets(status=status)
        if viewer is None:
            return list(tickets)
        return [ticket for ticket in tickets if self._can_view(viewer, ticket)]

    async def get_history(self, ticket_id: UUID, *, viewer: User | None = None) -> tuple[TransitionRecord, ...]:
        ticket = await self.get_ticket(ticket_id, viewer=viewer)
        return ticket.history

    async def _committed(self, ticket: Ticket, record: TransitionRecord) -> TransitionResult:
        self._metrics.counter(TRANSITIONS_TOTAL, label_names=("kind",)).inc(labels={"kind": record.kind.value})
        report = await self._dispatcher.dispatch(record, ticket)
        return TransitionResult(
            ticket=ticket,
            record=record,
            events=report.events,
            delivery_failures=report.failures,
        )

    async def _resolve_actor(self, actor_id: str) -> User:
        actor = await self._identity.resolve_user(actor_id)
        if actor is None:
            raise UserNotFoundError(f"User {actor_id} not found")
        return actor

    async def _load(self, ticket_id: UUID) -> Ticket:
        ticket = await self._store.load_ticket(ticket_id)
        if ticket is None:
            raise TicketNotFoundError(f"Ticket {ticket_id} not found")
        return ticket

    async def _check_assignee(self, assignee_id: str) -> None:
        assignee = await self._identity.resolve_user(assignee_id)
        if assignee is None:
            raise UserNotFoundError(f"User {assignee_id} not found")
        if not assignee.has_role(*_ASSIGNABLE_ROLES):
            raise InvalidTransitionError(f"User {assignee_id} cannot be assigned tickets")

    @staticmethod
    def _action_for(change: TicketChange) -> TicketAction:
        if isinstance(change, StatusChange):
            return TicketAction.CHANGE_STATUS
        if isinstance(change, PriorityChange):
            return TicketAction.CHANGE_PRIORITY
        if isinstance(change, AssignmentChange):
            return TicketAction.ASSIGN
        raise InvalidTransitionError(f"Unsupported ticket change: {type(change).__name__}")

    @staticmethod
    def _target_action(change: StatusChange) -> TicketAction:
        action = action_for_status(change.target)
        if action is None:
            raise InvalidTransitionError(f"Tickets cannot be moved to {change.target.value}")
        return action

    @staticmethod
    def _authorize(
        actor: User, action: TicketAction, status: TicketStatus | None, *, owns_ticket: bool
    ) -> None:
        decision = authorize(actor.role, action, status, owns_ticket=owns_ticket)
        if not decision.allowed:
            raise UnauthorizedTransitionError(
                decision.detail,
                reason=decision.reason.value if decision.reason else "denied",
            )

    @staticmethod
    def _can_view(viewer: User, ticket: Ticket) -> bool:
        return viewer.role is not Role.REQUESTER or ticket.is_owned_by(viewer.id)

    @contextmanager
    def _observe(self) -> Iterator[None]:
        """Time the request and count rejections by failure kind."""

        with track_duration(self._metrics.distribution(TRANSITION_DURATION_SECONDS)):
            try:
                yield
            except TicketEngineError as exc:
                logger.info("Ticket change rejected (%s): %s", exc.kind.value, exc.detail)
                self._metrics.counter(TRANSITION_REJECTIONS_TOTAL, label_names=("reason",)).inc(
                    labels={"reason": exc.kind.value}
                )
                raise
