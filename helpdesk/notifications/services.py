"""
Notification Services
=====================

Notification creation is a persisted side effect; delivery is a
secondary, best-effort action.

- NotificationService builds and persists notification records inside
  the caller's unit of work.
- NotificationDispatcher delivers them afterwards through the configured
  channels, fire-and-forget, bounded by a timeout.
"""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional, Sequence, Set

from helpdesk.config import NotificationType
from helpdesk.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


@dataclass
class Notification:
    """A notification addressed to one recipient."""

    id: Optional[int]
    recipient: str
    type: str
    title: str
    message: str
    created_at: datetime
    ticket_id: Optional[int] = None
    is_read: bool = False
    read_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "recipient": self.recipient,
            "type": self.type,
            "title": self.title,
            "message": self.message,
            "ticket_id": self.ticket_id,
            "is_read": self.is_read,
            "created_at": self.created_at.isoformat(),
            "read_at": self.read_at.isoformat() if self.read_at else None,
        }


@dataclass(frozen=True)
class SLABreachEvent:
    """Everything the assignee needs to know about a breach."""
    ticket_id: int
    title: str
    assignee_contact: str
    priority: str
    created_at: datetime
    deadline: Optional[datetime]
    occurred_at: datetime


# ========== Interfaces ==========

class INotificationRepository(ABC):
    """Interface for notification persistence."""

    @abstractmethod
    async def create(self, notification: Notification) -> Notification:
        """Persist a notification and return it with its id."""

    @abstractmethod
    async def list_for_recipient(
        self,
        recipient: str,
        unread_only: bool = False,
        since: Optional[datetime] = None
    ) -> List[Notification]:
        """Notifications for a recipient, newest first."""

    @abstractmethod
    async def mark_read(self, notification_id: int, read_at: datetime) -> Notification:
        """Mark one notification as read."""

    @abstractmethod
    async def mark_all_read(self, recipient: str, read_at: datetime) -> int:
        """Mark every unread notification of a recipient as read."""


class INotificationChannel(ABC):
    """A delivery mechanism (e-mail, webhook, ...)."""

    name: str = "channel"

    @abstractmethod
    async def deliver(self, notification: Notification) -> None:
        """
        Deliver a notification.

        Raises:
            NotificationDeliveryException: if delivery failed
        """

    async def close(self) -> None:
        """Release channel resources."""


# ========== Dispatcher ==========

class NotificationDispatcher:
    """
    Fire-and-forget delivery of persisted notifications.

    Each dispatch runs in its own task; a failed or slow channel is
    logged and never propagates to the caller.
    """

    def __init__(self, channels: Sequence[INotificationChannel], timeout_seconds: float = 10.0):
        self._channels = list(channels)
        self._timeout = timeout_seconds
        self._tasks: Set[asyncio.Task] = set()

    @property
    def channels(self) -> List[INotificationChannel]:
        return list(self._channels)

    @property
    def pending(self) -> int:
        """Number of deliveries still in flight."""
        return len(self._tasks)

    def dispatch(self, notification: Notification) -> Optional[asyncio.Task]:
        """Schedule delivery and return immediately."""
        if not self._channels:
            logger.debug("No notification channels configured", extra={"notification_id": notification.id})
            return None

        task = asyncio.get_running_loop().create_task(self._deliver(notification))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _deliver(self, notification: Notification) -> bool:
        delivered = True
        for channel in self._channels:
            try:
                await asyncio.wait_for(channel.deliver(notification), timeout=self._timeout)
            except asyncio.TimeoutError:
                delivered = False
                logger.error(
                    "Notification delivery timed out",
                    extra={
                        "channel": channel.name,
                        "notification_id": notification.id,
                        "timeout_seconds": self._timeout
                    }
                )
            except Exception as e:
                delivered = False
                logger.error(
                    "Notification delivery failed",
                    extra={
                        "channel": channel.name,
                        "notification_id": notification.id,
                        "error": str(e)
                    }
                )
        return delivered

    async def drain(self) -> None:
        """Wait for every in-flight delivery to finish."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self) -> None:
        """Drain outstanding deliveries and close channels."""
        await self.drain()
        for channel in self._channels:
            await channel.close()


# ========== Service ==========

def _format_duration(delta: timedelta) -> str:
    minutes = int(abs(delta.total_seconds()) // 60)
    if minutes >= 60:
        return f"{minutes // 60}h {minutes % 60}m"
    return f"{minutes}m"


class NotificationService:
    """
    Creates SLA notifications and hands them to the dispatcher.

    record_* persist through the repository of the current unit of work;
    dispatch is called by the owner of that unit of work after commit.
    """

    def __init__(self, dispatcher: NotificationDispatcher):
        self._dispatcher = dispatcher

    @property
    def dispatcher(self) -> NotificationDispatcher:
        return self._dispatcher

    async def record_breach(
        self,
        repository: INotificationRepository,
        event: SLABreachEvent
    ) -> Notification:
        """Persist the breach notification for the assignee."""
        lines = [
            f"Ticket #{event.ticket_id}: {event.title}",
            f"Priority: {event.priority.upper()}",
            f"Created: {event.created_at.isoformat()}",
        ]
        if event.deadline is not None:
            lines.append(f"Deadline: {event.deadline.isoformat()}")
            lines.append(f"Overdue: {_format_duration(event.occurred_at - event.deadline)}")
        lines.append("Please review and update the ticket immediately.")

        notification = Notification(
            id=None,
            recipient=event.assignee_contact,
            type=NotificationType.SLA_BREACH,
            title=f"SLA breach: ticket #{event.ticket_id}",
            message="\n".join(lines),
            ticket_id=event.ticket_id,
            created_at=event.occurred_at,
        )
        return await repository.create(notification)

    async def record_warning(
        self,
        repository: INotificationRepository,
        ticket_id: int,
        recipient: str,
        time_until_breach: timedelta,
        occurred_at: datetime
    ) -> Notification:
        """Persist a warning that a ticket is about to breach."""
        notification = Notification(
            id=None,
            recipient=recipient,
            type=NotificationType.SLA_WARNING,
            title=f"SLA warning: ticket #{ticket_id}",
            message=(
                f"Ticket #{ticket_id} will breach its SLA in "
                f"{_format_duration(time_until_breach)}. Please prioritize it."
            ),
            ticket_id=ticket_id,
            created_at=occurred_at,
        )
        return await repository.create(notification)

    def dispatch(self, notification: Notification) -> None:
        self._dispatcher.dispatch(notification)
