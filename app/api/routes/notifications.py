from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends

from app.api.routes.tickets import NotificationResponse
from app.dependencies.auth import CurrentUser
from app.dependencies.tickets import get_notification_feed
from app.tickets.protocols import NotificationFeed

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("", response_model=list[NotificationResponse])
async def list_my_notifications(
    feed: Annotated[NotificationFeed, Depends(get_notification_feed)],
    user: CurrentUser,
) -> list[NotificationResponse]:
    events = await feed.list_notifications(user.id)
    return [NotificationResponse.model_validate(event) for event in events]
