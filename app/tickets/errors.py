from __future__ import annotations

from enum import Enum
from typing import ClassVar


class FailureKind(str, Enum):
    """Categories of ticket engine failures."""

    UNAUTHORIZED = "unauthorized"
    INVALID_EDGE = "invalid_edge"
    STALE_VERSION = "stale_version"
    NOT_FOUND = "not_found"
    DELIVERY_FAILED = "delivery_failed"


class TicketEngineError(RuntimeError):
    """Base error for ticket lifecycle failures."""

    kind: ClassVar[FailureKind]
    retryable: ClassVar[bool] = False

    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail


class UnauthorizedTransitionError(TicketEngineError):
    """Raised when the actor's role does not permit the requested action."""

    kind = FailureKind.UNAUTHORIZED

    def __init__(self, detail: str, *, reason: str) -> None:
        super().__init__(detail)
        self.reason = reason


class InvalidTransitionError(TicketEngineError):
    """Raised when the change is not permitted from the ticket's current state."""

    kind = FailureKind.INVALID_EDGE


class StaleVersionError(TicketEngineError):
    """Raised when the ticket was modified concurrently; reload and retry."""

    kind = FailureKind.STALE_VERSION
    retryable = True

    def __init__(self, detail: str, *, expected_version: int, actual_version: int | None = None) -> None:
        super().__init__(detail)
        self.expected_version = expected_version
        self.actual_version = actual_version


class NotFoundError(TicketEngineError):
    kind = FailureKind.NOT_FOUND


class TicketNotFoundError(NotFoundError):
    """Raised when a ticket could not be located."""


class UserNotFoundError(NotFoundError):
    """Raised when an actor or assignee could not be resolved."""


class CategoryNotFoundError(NotFoundError):
    """Raised when a category could not be resolved."""


class DeliveryFailedError(TicketEngineError):
    """Raised by notification sinks; never propagated past the dispatcher."""

    kind = FailureKind.DELIVERY_FAILED
