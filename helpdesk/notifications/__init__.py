"""
Notifications Module
====================

Persisted notifications with best-effort delivery.

Creating a notification is a persisted side effect performed in the
caller's transaction; delivery (simulated e-mail, webhook) happens
afterwards and never blocks or rolls back the caller.
"""

from helpdesk.notifications.services import (
    Notification,
    SLABreachEvent,
    INotificationRepository,
    INotificationChannel,
    NotificationDispatcher,
    NotificationService,
)

__all__ = [
    "Notification",
    "SLABreachEvent",
    "INotificationRepository",
    "INotificationChannel",
    "NotificationDispatcher",
    "NotificationService",
]
