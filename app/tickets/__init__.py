"""Ticket lifecycle engine: state machine, authorization and notifications."""

from .authorization import AuthorizationDecision, DenialReason, TicketAction, authorize
from .engine import TicketLifecycleEngine, TransitionResult
from .errors import (
    CategoryNotFoundError,
    DeliveryFailedError,
    FailureKind,
    InvalidTransitionError,
    NotFoundError,
    StaleVersionError,
    TicketEngineError,
    TicketNotFoundError,
    UnauthorizedTransitionError,
    UserNotFoundError,
)
from .models import (
    AssignmentChange,
    Category,
    NotificationEvent,
    NotificationKind,
    PriorityChange,
    Role,
    StatusChange,
    Ticket,
    TicketPriority,
    TicketStatus,
    TransitionKind,
    TransitionRecord,
    User,
)
from .notifications import DeliveryFailure, NotificationDispatcher
from .state import TicketStateMachine

__all__ = [
    "AssignmentChange",
    "AuthorizationDecision",
    "Category",
    "CategoryNotFoundError",
    "DeliveryFailedError",
    "DeliveryFailure",
    "DenialReason",
    "FailureKind",
    "InvalidTransitionError",
    "NotFoundError",
    "NotificationDispatcher",
    "NotificationEvent",
    "NotificationKind",
    "PriorityChange",
    "Role",
    "StaleVersionError",
    "StatusChange",
    "Ticket",
    "TicketAction",
    "TicketEngineError",
    "TicketLifecycleEngine",
    "TicketNotFoundError",
    "TicketPriority",
    "TicketStateMachine",
    "TicketStatus",
    "TransitionKind",
    "TransitionRecord",
    "TransitionResult",
    "UnauthorizedTransitionError",
    "User",
    "UserNotFoundError",
    "authorize",
]
