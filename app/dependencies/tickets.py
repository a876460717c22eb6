from __future__ import annotations

from typing import Annotated

from fastapi import Depends, HTTPException, Request

from app.dependencies.auth import role_required
from app.tickets.engine import TicketLifecycleEngine
from app.tickets.models import Role, User
from app.tickets.protocols import CategoryRegistry, NotificationFeed

require_staff = role_required(Role.AGENT, Role.ADMIN)

StaffUser = Annotated[User, Depends(require_staff)]


async def get_ticket_engine(request: Request) -> TicketLifecycleEngine:
    engine = getattr(request.app.state, "ticket_engine", None)
    if engine is None:
        raise HTTPException(status_code=503, detail="Ticket engine is not configured")
    return engine


async def get_category_registry(request: Request) -> CategoryRegistry:
    registry = getattr(request.app.state, "category_registry", None)
    if registry is None:
        raise HTTPException(status_code=503, detail="Category registry is not configured")
    return registry


async def get_notification_feed(request: Request) -> NotificationFeed:
    feed = getattr(request.app.state, "notification_feed", None)
    if feed is None:
        raise HTTPException(status_code=503, detail="Notifications are not configured")
    return feed
