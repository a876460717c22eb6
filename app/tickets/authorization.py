"""Role based permission checks for ticket actions."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Mapping

from .models import Role, TicketStatus


class TicketAction(str, Enum):
    CREATE = "create"
    CHANGE_STATUS = "change_status"
    CHANGE_PRIORITY = "change_priority"
    ASSIGN = "assign"
    START_PROGRESS = "start_progress"
    RESOLVE = "resolve"
    CLOSE = "close"
    REOPEN = "reopen"


class DenialReason(str, Enum):
    ROLE_NOT_PERMITTED = "role_not_permitted"
    NOT_TICKET_OWNER = "not_ticket_owner"
    STATUS_NOT_ELIGIBLE = "status_not_eligible"


class Grant(str, Enum):
    ALWAYS = "always"
    OWN_TICKET = "own_ticket"


@dataclass(slots=True, frozen=True)
class AuthorizationDecision:
    allowed: bool
    reason: DenialReason | None = None
    detail: str = ""

    @classmethod
    def allow(cls) -> AuthorizationDecision:
        return cls(allowed=True)

    @classmethod
    def deny(cls, reason: DenialReason, detail: str) -> AuthorizationDecision:
        return cls(allowed=False, reason=reason, detail=detail)

    def __bool__(self) -> bool:
        return self.allowed


# Roles missing from an action's mapping are denied. CHANGE_STATUS gates any
# status request; the target's own action is checked once the edge is known.
_POLICY: Mapping[TicketAction, Mapping[Role, Grant]] = {
    TicketAction.CREATE: {Role.REQUESTER: Grant.ALWAYS, Role.AGENT: Grant.ALWAYS, Role.ADMIN: Grant.ALWAYS},
    TicketAction.CHANGE_STATUS: {Role.REQUESTER: Grant.OWN_TICKET, Role.AGENT: Grant.ALWAYS, Role.ADMIN: Grant.ALWAYS},
    TicketAction.CHANGE_PRIORITY: {Role.AGENT: Grant.ALWAYS, Role.ADMIN: Grant.ALWAYS},
    TicketAction.ASSIGN: {Role.AGENT: Grant.ALWAYS, Role.ADMIN: Grant.ALWAYS},
    TicketAction.START_PROGRESS: {Role.AGENT: Grant.ALWAYS, Role.ADMIN: Grant.ALWAYS},
    TicketAction.RESOLVE: {Role.AGENT: Grant.ALWAYS, Role.ADMIN: Grant.ALWAYS},
    TicketAction.CLOSE: {Role.ADMIN: Grant.ALWAYS},
    TicketAction.REOPEN: {Role.REQUESTER: Grant.OWN_TICKET, Role.AGENT: Grant.ALWAYS, Role.ADMIN: Grant.ALWAYS},
}

# Statuses from which an own-ticket grant applies.
_OWN_TICKET_STATUSES: Mapping[TicketAction, frozenset[TicketStatus]] = {
    TicketAction.CHANGE_STATUS: frozenset({TicketStatus.CLOSED, TicketStatus.RESOLVED}),
    TicketAction.REOPEN: frozenset({TicketStatus.CLOSED, TicketStatus.RESOLVED}),
}

_STATUS_ACTIONS: Mapping[TicketStatus, TicketAction] = {
    TicketStatus.IN_PROGRESS: TicketAction.START_PROGRESS,
    TicketStatus.RESOLVED: TicketAction.RESOLVE,
    TicketStatus.CLOSED: TicketAction.CLOSE,
    TicketStatus.REOPENED: TicketAction.REOPEN,
}


def action_for_status(target: TicketStatus) -> TicketAction | None:
    """Return the action needed to move a ticket into ``target``.

    ``OPEN`` is only ever set at creation, so it maps to no action.
    """

    return _STATUS_ACTIONS.get(target)


def authorize(
    role: Role,
    action: TicketAction,
    current_status: TicketStatus | None,
    *,
    owns_ticket: bool = False,
) -> AuthorizationDecision:
    """Decide whether ``role`` may perform ``action`` on a ticket in ``current_status``.

    ``current_status`` is ``None`` for actions on a ticket that does not exist
    yet (creation). This function has no side effects.
    """

    grant = _POLICY.get(action, {}).get(role)
    if grant is None:
        return AuthorizationDecision.deny(
            DenialReason.ROLE_NOT_PERMITTED,
            f"Role '{role.value}' may not {action.value.replace('_', ' ')} tickets",
        )
    if grant is Grant.ALWAYS:
        return AuthorizationDecision.allow()

    if not owns_ticket:
        return AuthorizationDecision.deny(
            DenialReason.NOT_TICKET_OWNER,
            f"Role '{role.value}' may only {action.value.replace('_', ' ')} its own tickets",
        )
    eligible = _OWN_TICKET_STATUSES.get(action)
    if eligible is not None and current_status not in eligible:
        status_text = current_status.value if current_status is not None else "new"
        return AuthorizationDecision.deny(
            DenialReason.STATUS_NOT_ELIGIBLE,
            f"Role '{role.value}' may not {action.value.replace('_', ' ')} while the ticket is {status_text}",
        )
    return AuthorizationDecision.allow()
