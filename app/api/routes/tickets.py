from __future__ import annotations

from datetime import datetime
from typing import Annotated, NoReturn
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, ConfigDict, Field

from app.dependencies.auth import CurrentUser
from app.dependencies.tickets import get_ticket_engine
from app.tickets.engine import TicketLifecycleEngine, TransitionResult
from app.tickets.errors import FailureKind, TicketEngineError
from app.tickets.models import (
    AssignmentChange,
    NotificationKind,
    PriorityChange,
    StatusChange,
    Ticket,
    TicketChange,
    TicketPriority,
    TicketStatus,
    TransitionKind,
)

router = APIRouter(prefix="/tickets", tags=["tickets"])

_STATUS_CODES: dict[FailureKind, int] = {
    FailureKind.UNAUTHORIZED: status.HTTP_403_FORBIDDEN,
    FailureKind.INVALID_EDGE: status.HTTP_409_CONFLICT,
    FailureKind.STALE_VERSION: status.HTTP_412_PRECONDITION_FAILED,
    FailureKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
}


class TicketCreateRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    description: str = Field(..., min_length=1)
    category_id: str = Field(..., min_length=1)
    priority: TicketPriority = TicketPriority.MEDIUM


class TicketChangeRequest(BaseModel):
    status: TicketStatus | None = None
    priority: TicketPriority | None = None
    assignee_id: str | None = Field(default=None, min_length=1)
    unassign: bool = False
    comment: str | None = Field(default=None, max_length=500)
    expected_version: int | None = Field(default=None, ge=1)

    def to_change(self) -> TicketChange:
        requested = [
            self.status is not None,
            self.priority is not None,
            self.assignee_id is not None or self.unassign,
        ]
        if sum(requested) != 1:
            raise HTTPException(
                status_code=400,
                detail="Provide exactly one of status, priority, assignee_id or unassign",
            )
        if self.status is not None:
            return StatusChange(target=self.status, comment=self.comment)
        if self.priority is not None:
            return PriorityChange(target=self.priority, comment=self.comment)
        return AssignmentChange(assignee_id=None if self.unassign else self.assignee_id, comment=self.comment)


class TransitionRecordResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    sequence: int
    kind: TransitionKind
    from_value: str | None
    to_value: str | None
    actor_id: str
    comment: str | None
    created_at: datetime


class TicketResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    title: str
    description: str
    status: TicketStatus
    priority: TicketPriority
    category_id: str
    created_by: str
    assignee_id: str | None
    version: int
    created_at: datetime
    updated_at: datetime
    history: list[TransitionRecordResponse]


class NotificationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    recipient_id: str
    ticket_id: UUID
    kind: NotificationKind
    summary: str
    created_at: datetime


class DeliveryFailureResponse(BaseModel):
    recipient_id: str | None
    reason: str


class TransitionResponse(BaseModel):
    ticket: TicketResponse
    notifications: list[NotificationResponse]
    delivery_failures: list[DeliveryFailureResponse]


EngineDep = Annotated[TicketLifecycleEngine, Depends(get_ticket_engine)]


def _to_response(ticket: Ticket) -> TicketResponse:
    return TicketResponse.model_validate(ticket)


def _to_transition_response(result: TransitionResult) -> TransitionResponse:
    return TransitionResponse(
        ticket=_to_response(result.ticket),
        notifications=[NotificationResponse.model_validate(event) for event in result.events],
        delivery_failures=[
            DeliveryFailureResponse(recipient_id=failure.recipient_id, reason=failure.reason)
            for failure in result.delivery_failures
        ],
    )


def _raise_http(exc: TicketEngineError) -> NoReturn:
    status_code = _STATUS_CODES.get(exc.kind, status.HTTP_500_INTERNAL_SERVER_ERROR)
    raise HTTPException(status_code=status_code, detail=exc.detail) from exc


@router.post("", response_model=TransitionResponse, status_code=status.HTTP_201_CREATED)
async def create_ticket(payload: TicketCreateRequest, engine: EngineDep, user: CurrentUser) -> TransitionResponse:
    try:
        result = await engine.create_ticket(
            user.id,
            title=payload.title,
            description=payload.description,
            category_id=payload.category_id,
            priority=payload.priority,
        )
    except TicketEngineError as exc:
        _raise_http(exc)
    return _to_transition_response(result)


@router.get("", response_model=list[TicketResponse])
async def list_tickets(
    engine: EngineDep,
    user: CurrentUser,
    status_filter: TicketStatus | None = Query(default=None, alias="status"),
) -> list[TicketResponse]:
    tickets = await engine.list_tickets(status=status_filter, viewer=user)
    return [_to_response(ticket) for ticket in tickets]


@router.get("/{ticket_id}", response_model=TicketResponse)
async def get_ticket(ticket_id: UUID, engine: EngineDep, user: CurrentUser) -> TicketResponse:
    try:
        ticket = await engine.get_ticket(ticket_id, viewer=user)
    except TicketEngineError as exc:
        _raise_http(exc)
    return _to_response(ticket)


@router.post("/{ticket_id}/transitions", response_model=TransitionResponse)
async def request_transition(
    ticket_id: UUID,
    payload: TicketChangeRequest,
    engine: EngineDep,
    user: CurrentUser,
) -> TransitionResponse:
    change = payload.to_change()
    try:
        result = await engine.request_transition(
            ticket_id,
            user.id,
            change,
            expected_version=payload.expected_version,
        )
    except TicketEngineError as exc:
        _raise_http(exc)
    return _to_transition_response(result)


@router.get("/{ticket_id}/history", response_model=list[TransitionRecordResponse])
async def get_ticket_history(
    ticket_id: UUID, engine: EngineDep, user: CurrentUser
) -> list[TransitionRecordResponse]:
    try:
        history = await engine.get_history(ticket_id, viewer=user)
    except TicketEngineError as exc:
        _raise_http(exc)
    return [TransitionRecordResponse.model_validate(record) for record in history]
