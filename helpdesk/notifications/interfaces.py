"""
Notification Controllers (API Routes)
=====================================

Read side of persisted notifications: list, unread, since a date and
mark as read. Recipients are identified by e-mail address.
"""

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from helpdesk.infrastructure.database import get_session
from helpdesk.notifications.repositories import SQLAlchemyNotificationRepository
from helpdesk.notifications.services import INotificationRepository, Notification
from helpdesk.shared.clock import as_utc, utcnow

router = APIRouter(prefix="/notifications", tags=["Notifications"])


class NotificationResponse(BaseModel):
    """Response model for a notification."""
    id: int
    recipient: str
    type: str
    title: str
    message: str
    ticket_id: Optional[int] = None
    is_read: bool
    created_at: datetime
    read_at: Optional[datetime] = None

    @classmethod
    def from_entity(cls, notification: Notification) -> "NotificationResponse":
        return cls(**notification.to_dict())


class MarkAllReadResponse(BaseModel):
    updated: int = Field(..., description="Number of notifications marked as read")


async def get_notification_repository(
    session: AsyncSession = Depends(get_session)
) -> INotificationRepository:
    return SQLAlchemyNotificationRepository(session)


@router.get("", response_model=List[NotificationResponse], summary="All notifications of a recipient")
async def list_notifications(
    recipient: str = Query(..., min_length=3),
    repository: INotificationRepository = Depends(get_notification_repository)
):
    notifications = await repository.list_for_recipient(recipient)
    return [NotificationResponse.from_entity(n) for n in notifications]


@router.get("/new", response_model=List[NotificationResponse], summary="Unread notifications")
async def list_unread_notifications(
    recipient: str = Query(..., min_length=3),
    repository: INotificationRepository = Depends(get_notification_repository)
):
    notifications = await repository.list_for_recipient(recipient, unread_only=True)
    return [NotificationResponse.from_entity(n) for n in notifications]


@router.get(
    "/since/{since}",
    response_model=List[NotificationResponse],
    summary="Notifications created after a date",
    description="Usage: `/notifications/since/2024-01-05T10:00:00Z?recipient=agent@example.com`"
)
async def list_notifications_since(
    since: datetime,
    recipient: str = Query(..., min_length=3),
    repository: INotificationRepository = Depends(get_notification_repository)
):
    notifications = await repository.list_for_recipient(recipient, since=as_utc(since))
    return [NotificationResponse.from_entity(n) for n in notifications]


@router.post("/mark-all-read", response_model=MarkAllReadResponse, summary="Mark all as read")
async def mark_all_notifications_read(
    recipient: str = Query(..., min_length=3),
    repository: INotificationRepository = Depends(get_notification_repository)
):
    updated = await repository.mark_all_read(recipient, utcnow())
    return MarkAllReadResponse(updated=updated)


@router.post("/{notification_id}/read", response_model=NotificationResponse, summary="Mark as read")
async def mark_notification_read(
    notification_id: int,
    repository: INotificationRepository = Depends(get_notification_repository)
):
    notification = await repository.mark_read(notification_id, utcnow())
    return NotificationResponse.from_entity(notification)
