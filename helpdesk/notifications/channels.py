"""
Notification Channels
=====================

Delivery mechanisms for notifications:
- LoggingEmailChannel: simulated e-mail, written to the log
- WebhookChannel: JSON webhook (Slack compatible) with retry and a
  circuit breaker
"""

import asyncio
import time
from typing import Any, Dict, Optional

import httpx

from helpdesk.config import NotificationType
from helpdesk.core import NotificationDeliveryException
from helpdesk.notifications.services import INotificationChannel, Notification
from helpdesk.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


class LoggingEmailChannel(INotificationChannel):
    """Simulated e-mail delivery."""

    name = "email"

    async def deliver(self, notification: Notification) -> None:
        logger.info(
            "[EMAIL SENT]",
            extra={
                "to": notification.recipient,
                "subject": notification.title,
                "notification_id": notification.id,
                "ticket_id": notification.ticket_id
            }
        )


class CircuitState:
    """Circuit breaker states."""
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """
    Circuit breaker for preventing cascade failures.

    States:
    - CLOSED: Normal operation, requests pass through
    - OPEN: After N failures, reject all requests for M seconds
    - HALF_OPEN: After timeout, allow one test request
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        recovery_timeout: float = 60.0
    ):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_time: Optional[float] = None

    @property
    def state(self) -> str:
        """Get current circuit state."""
        if self._state == CircuitState.OPEN and self._last_failure_time is not None:
            if time.monotonic() - self._last_failure_time >= self.recovery_timeout:
                self._state = CircuitState.HALF_OPEN
        return self._state

    def allow_request(self) -> bool:
        return self.state in (CircuitState.CLOSED, CircuitState.HALF_OPEN)

    def record_success(self) -> None:
        self._failure_count = 0
        self._state = CircuitState.CLOSED

    def record_failure(self) -> None:
        self._failure_count += 1
        self._last_failure_time = time.monotonic()

        if self._failure_count >= self.failure_threshold:
            self._state = CircuitState.OPEN
            logger.warning(
                "Circuit breaker opened",
                extra={
                    "failure_count": self._failure_count,
                    "recovery_timeout": self.recovery_timeout
                }
            )


class WebhookChannel(INotificationChannel):
    """
    Webhook client with circuit breaker and retry logic.

    Handles sending structured notifications with:
    - Circuit breaker to prevent cascade failures
    - Exponential backoff retry
    - Timeout handling
    """

    name = "webhook"

    def __init__(
        self,
        url: str,
        channel: str = "#helpdesk-sla",
        timeout_seconds: float = 5.0,
        max_retries: int = 3,
        backoff_seconds: float = 1.0,
        client: Optional[httpx.AsyncClient] = None,
        circuit_breaker: Optional[CircuitBreaker] = None
    ):
        self._url = url
        self._channel = channel
        self._timeout = timeout_seconds
        self._max_retries = max_retries
        self._backoff = backoff_seconds
        self._http_client = client
        self._circuit_breaker = circuit_breaker or CircuitBreaker(
            failure_threshold=5,
            recovery_timeout=60
        )

    @property
    def circuit_breaker(self) -> CircuitBreaker:
        return self._circuit_breaker

    def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self._timeout)
        return self._http_client

    def _build_message(self, notification: Notification) -> Dict[str, Any]:
        """Build a Slack Block Kit style message."""
        is_breach = notification.type == NotificationType.SLA_BREACH
        header_text = "SLA Breach Alert" if is_breach else "SLA Warning"

        blocks = [
            {
                "type": "header",
                "text": {"type": "plain_text", "text": header_text}
            },
            {
                "type": "section",
                "fields": [
                    {"type": "mrkdwn", "text": f"*Ticket:*\n#{notification.ticket_id}"},
                    {"type": "mrkdwn", "text": f"*Assignee:*\n{notification.recipient}"},
                ]
            },
            {
                "type": "section",
                "text": {"type": "mrkdwn", "text": notification.message}
            }
        ]

        return {
            "channel": self._channel,
            "text": notification.title,
            "blocks": blocks
        }

    async def deliver(self, notification: Notification) -> None:
        if not self._circuit_breaker.allow_request():
            raise NotificationDeliveryException(
                self.name, "circuit breaker open",
                {"notification_id": notification.id}
            )

        message = self._build_message(notification)
        last_error = "no attempt made"

        for attempt in range(self._max_retries):
            try:
                response = await self._get_client().post(self._url, json=message)
                if response.status_code < 300:
                    self._circuit_breaker.record_success()
                    logger.info(
                        "Webhook notification sent",
                        extra={"notification_id": notification.id, "ticket_id": notification.ticket_id}
                    )
                    return
                last_error = f"HTTP {response.status_code}"
                logger.warning(
                    "Webhook returned non-success status",
                    extra={"status_code": response.status_code, "attempt": attempt + 1}
                )
            except httpx.HTTPError as e:
                last_error = str(e)
                logger.warning(
                    "Webhook request failed",
                    extra={"error": str(e), "attempt": attempt + 1}
                )

            if attempt < self._max_retries - 1:
                await asyncio.sleep(self._backoff * (2 ** attempt))

        self._circuit_breaker.record_failure()
        raise NotificationDeliveryException(
            self.name, last_error,
            {"notification_id": notification.id, "attempts": self._max_retries}
        )

    async def close(self) -> None:
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None
