import pytest

from app.tickets.authorization import DenialReason, TicketAction, action_for_status, authorize
from app.tickets.models import Role, TicketStatus

# (action, role) -> allowed, with ownership not required
POLICY = {
    TicketAction.CREATE: {Role.REQUESTER: True, Role.AGENT: True, Role.ADMIN: True},
    TicketAction.CHANGE_STATUS: {Role.REQUESTER: False, Role.AGENT: True, Role.ADMIN: True},
    TicketAction.CHANGE_PRIORITY: {Role.REQUESTER: False, Role.AGENT: True, Role.ADMIN: True},
    TicketAction.ASSIGN: {Role.REQUESTER: False, Role.AGENT: True, Role.ADMIN: True},
    TicketAction.START_PROGRESS: {Role.REQUESTER: False, Role.AGENT: True, Role.ADMIN: True},
    TicketAction.RESOLVE: {Role.REQUESTER: False, Role.AGENT: True, Role.ADMIN: True},
    TicketAction.CLOSE: {Role.REQUESTER: False, Role.AGENT: False, Role.ADMIN: True},
    TicketAction.REOPEN: {Role.REQUESTER: False, Role.AGENT: True, Role.ADMIN: True},
}


@pytest.mark.parametrize("action", list(TicketAction))
@pytest.mark.parametrize("role", list(Role))
def test_policy_table_for_non_owners(action, role):
    decision = authorize(role, action, TicketStatus.CLOSED)
    assert decision.allowed is POLICY[action][role]


def test_requester_may_reopen_own_closed_ticket():
    decision = authorize(Role.REQUESTER, TicketAction.REOPEN, TicketStatus.CLOSED, owns_ticket=True)
    assert decision.allowed
    assert decision.reason is None


def test_requester_may_not_reopen_someone_elses_ticket():
    decision = authorize(Role.REQUESTER, TicketAction.REOPEN, TicketStatus.CLOSED, owns_ticket=False)
    assert not decision
    assert decision.reason == DenialReason.NOT_TICKET_OWNER
    assert "own tickets" in decision.detail


def test_requester_reopen_requires_eligible_status():
    decision = authorize(Role.REQUESTER, TicketAction.REOPEN, TicketStatus.IN_PROGRESS, owns_ticket=True)
    assert not decision
    assert decision.reason == DenialReason.STATUS_NOT_ELIGIBLE


def test_ownership_does_not_widen_other_actions():
    decision = authorize(Role.REQUESTER, TicketAction.START_PROGRESS, TicketStatus.OPEN, owns_ticket=True)
    assert not decision
    assert decision.reason == DenialReason.ROLE_NOT_PERMITTED


def test_agent_cannot_close():
    decision = authorize(Role.AGENT, TicketAction.CLOSE, TicketStatus.RESOLVED)
    assert not decision
    assert decision.reason == DenialReason.ROLE_NOT_PERMITTED


def test_action_for_status_maps_targets():
    assert action_for_status(TicketStatus.IN_PROGRESS) == TicketAction.START_PROGRESS
    assert action_for_status(TicketStatus.RESOLVED) == TicketAction.RESOLVE
    assert action_for_status(TicketStatus.CLOSED) == TicketAction.CLOSE
    assert action_for_status(TicketStatus.REOPENED) == TicketAction.REOPEN
    assert action_for_status(TicketStatus.OPEN) is None


def test_requester_status_requests_are_limited_to_own_finished_tickets():
    assert authorize(Role.REQUESTER, TicketAction.CHANGE_STATUS, TicketStatus.RESOLVED, owns_ticket=True)
    decision = authorize(Role.REQUESTER, TicketAction.CHANGE_STATUS, TicketStatus.OPEN, owns_ticket=True)
    assert decision.reason == DenialReason.STATUS_NOT_ELIGIBLE
    assert decision.detail == "Role 'requester' may not change status while the ticket is open"
