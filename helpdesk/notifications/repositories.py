"""
Notification Repositories
=========================

SQLAlchemy implementation of the notification repository.
"""

from datetime import datetime
from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from helpdesk.core import ResourceNotFoundException
from helpdesk.notifications.models import NotificationModel
from helpdesk.notifications.services import INotificationRepository, Notification
from helpdesk.shared.clock import as_utc


def _to_entity(model: NotificationModel) -> Notification:
    return Notification(
        id=model.id,
        recipient=model.recipient,
        type=model.type,
        title=model.title,
        message=model.message,
        ticket_id=model.ticket_id,
        is_read=model.is_read,
        created_at=as_utc(model.created_at),
        read_at=as_utc(model.read_at) if model.read_at else None,
    )


class SQLAlchemyNotificationRepository(INotificationRepository):
    """Persists notifications through the given session."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def create(self, notification: Notification) -> Notification:
        model = NotificationModel(
            recipient=notification.recipient,
            ticket_id=notification.ticket_id,
            type=notification.type,
            title=notification.title,
            message=notification.message,
            is_read=notification.is_read,
            created_at=notification.created_at,
            read_at=notification.read_at,
        )
        self._session.add(model)
        await self._session.flush()

        notification.id = model.id
        return notification

    async def list_for_recipient(
        self,
        recipient: str,
        unread_only: bool = False,
        since: Optional[datetime] = None
    ) -> List[Notification]:
        stmt = select(NotificationModel).where(NotificationModel.recipient == recipient)
        if unread_only:
            stmt = stmt.where(NotificationModel.is_read.is_(False))
        if since is not None:
            stmt = stmt.where(NotificationModel.created_at > since)
        stmt = stmt.order_by(NotificationModel.created_at.desc(), NotificationModel.id.desc())

        result = await self._session.execute(stmt)
        return [_to_entity(model) for model in result.scalars().all()]

    async def mark_read(self, notification_id: int, read_at: datetime) -> Notification:
        model = await self._session.get(NotificationModel, notification_id)
        if model is None:
            raise ResourceNotFoundException("Notification", notification_id)

        if not model.is_read:
            model.is_read = True
            model.read_at = read_at
            await self._session.flush()
        return _to_entity(model)

    async def mark_all_read(self, recipient: str, read_at: datetime) -> int:
        stmt = (
            update(NotificationModel)
            .where(
                NotificationModel.recipient == recipient,
                NotificationModel.is_read.is_(False),
            )
            .values(is_read=True, read_at=read_at)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount or 0
