"""
SLA Application Services
=========================

Application services orchestrate business logic and coordinate between
domain entities and repositories.

Following SOLID principles:
- Single Responsibility: the monitor applies state machine decisions,
  persistence and delivery live behind interfaces
- Dependency Inversion: depend on abstractions (repositories, unit of
  work, notifier), not concrete implementations
"""

import asyncio
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from helpdesk.core import (
    ConcurrentUpdateException,
    ResourceNotFoundException,
    ValidationException,
)
from helpdesk.notifications.services import (
    INotificationRepository,
    Notification,
    SLABreachEvent,
)
from helpdesk.shared.infrastructure.logging import get_logger
from helpdesk.sla.domain import (
    SLAFlags,
    SLAHistoryEntry,
    SLAStateMachine,
    SLAStatus,
    Ticket,
    Transition,
    utcnow,
)

logger = get_logger(__name__)


# ========== Repository Interfaces (Dependency Inversion) ==========

class ITicketRepository(ABC):
    """Query and conditional-update capability of the ticket store."""

    @abstractmethod
    async def get_by_id(self, ticket_id: int) -> Optional[Ticket]:
        """Get ticket by ID."""

    @abstractmethod
    async def list_breach_candidates(self) -> List[Ticket]:
        """High priority, not closed, not yet breached."""

    @abstractmethod
    async def list_pending_notifications(self) -> List[Ticket]:
        """Breached but not yet notified."""

    @abstractmethod
    async def list_breached_open(self) -> List[Ticket]:
        """Breached tickets that are not closed, oldest first."""

    @abstractmethod
    async def update_sla_flags(
        self,
        ticket_id: int,
        new: SLAFlags,
        expected: Optional[SLAFlags] = None,
        require_open: bool = False
    ) -> None:
        """
        Write the SLA flags in a single conditional statement.

        Args:
            ticket_id: Ticket to update
            new: Flags to write
            expected: Only write if the stored flags still equal these
            require_open: Only write if the ticket is not closed

        Raises:
            ResourceNotFoundException: the ticket no longer exists
            ConcurrentUpdateException: the conditions no longer hold
        """


class ISLAHistoryRepository(ABC):
    """Audit trail of breach cycles."""

    @abstractmethod
    async def record_breach(self, ticket_id: int, breached_at: datetime) -> SLAHistoryEntry:
        """Append a new breach row."""

    @abstractmethod
    async def record_notification(self, ticket_id: int, notified_at: datetime) -> Optional[SLAHistoryEntry]:
        """Set notified_at on the latest unresolved row, if there is one."""

    @abstractmethod
    async def record_resolution(self, ticket_id: int, resolved_at: datetime) -> Optional[SLAHistoryEntry]:
        """Set resolved_at on the latest row unless it is already resolved."""

    @abstractmethod
    async def latest_for_ticket(self, ticket_id: int) -> Optional[SLAHistoryEntry]:
        """Most recent row for a ticket."""

    @abstractmethod
    async def list_for_ticket(self, ticket_id: int) -> List[SLAHistoryEntry]:
        """All rows for a ticket, newest first."""


class ISLAUnitOfWork(ABC):
    """
    One transaction over tickets, history and notifications.

    Commits when the block exits normally, rolls back otherwise.
    """

    tickets: ITicketRepository
    history: ISLAHistoryRepository
    notifications: INotificationRepository

    @abstractmethod
    async def __aenter__(self) -> "ISLAUnitOfWork":
        """Open the transaction."""

    @abstractmethod
    async def __aexit__(self, exc_type, exc, tb) -> None:
        """Commit or roll back."""


class INotifier(ABC):
    """Persisted notification step followed by best-effort delivery."""

    @abstractmethod
    async def record_breach(
        self,
        repository: INotificationRepository,
        event: SLABreachEvent
    ) -> Notification:
        """Persist the breach notification."""

    @abstractmethod
    async def record_warning(
        self,
        repository: INotificationRepository,
        ticket_id: int,
        recipient: str,
        time_until_breach: timedelta,
        occurred_at: datetime
    ) -> Notification:
        """Persist a pre-breach warning."""

    @abstractmethod
    def dispatch(self, notification: Notification) -> None:
        """Fire-and-forget delivery; must not block or raise."""


# ========== Results ==========

@dataclass
class ScanReport:
    """Outcome of one scan tick."""

    started_at: datetime
    breach_candidates: int = 0
    notify_candidates: int = 0
    breached: List[int] = field(default_factory=list)
    notified: List[int] = field(default_factory=list)
    skipped: int = 0
    errors: int = 0
    duration_ms: float = 0.0
    skipped_overlap: bool = False

    def to_dict(self) -> dict:
        return {
            "started_at": self.started_at.isoformat(),
            "breach_candidates": self.breach_candidates,
            "notify_candidates": self.notify_candidates,
            "breached": list(self.breached),
            "notified": list(self.notified),
            "skipped": self.skipped,
            "errors": self.errors,
            "duration_ms": self.duration_ms,
            "skipped_overlap": self.skipped_overlap,
        }


# ========== Application Services ==========

class SLAMonitorService:
    """
    SLA breach monitor.

    run_scan_once() is the scan tick: query both candidate sets, then
    apply Active->Breached and Breached->Notified per ticket, each in its
    own unit of work. Because both sets are read before any transition,
    a breach detected in one tick is notified on the next.
    """

    def __init__(
        self,
        uow_factory: Callable[[], ISLAUnitOfWork],
        state_machine: SLAStateMachine,
        notifier: INotifier,
        clock: Callable[[], datetime] = utcnow
    ):
        self._uow_factory = uow_factory
        self._state_machine = state_machine
        self._notifier = notifier
        self._clock = clock
        self._scan_lock = asyncio.Lock()

    @property
    def state_machine(self) -> SLAStateMachine:
        return self._state_machine

    @property
    def is_scanning(self) -> bool:
        return self._scan_lock.locked()

    # ---------- scan ----------

    async def run_scan_once(self) -> ScanReport:
        """
        Run one scan tick.

        Returns immediately with skipped_overlap=True if another scan is
        in progress. Store failures while querying candidates propagate.
        """
        if self._scan_lock.locked():
            logger.warning("SLA scan already in progress, skipping this tick")
            return ScanReport(started_at=self._clock(), skipped_overlap=True)

        async with self._scan_lock:
            return await self._scan()

    async def wait_idle(self) -> None:
        """Wait until a scan in progress, if any, has finished."""
        async with self._scan_lock:
            pass

    async def _scan(self) -> ScanReport:
        now = self._clock()
        start = time.perf_counter()

        async with self._uow_factory() as uow:
            breach_candidates = await uow.tickets.list_breach_candidates()
            pending_notifications = await uow.tickets.list_pending_notifications()

        report = ScanReport(
            started_at=now,
            breach_candidates=len(breach_candidates),
            notify_candidates=len(pending_notifications),
        )

        for ticket in breach_candidates:
            await self._process_ticket(ticket, now, report)
        for ticket in pending_notifications:
            await self._process_ticket(ticket, now, report)

        report.duration_ms = round((time.perf_counter() - start) * 1000, 2)
        logger.info("SLA scan completed", extra=report.to_dict())
        return report

    async def _process_ticket(self, ticket: Ticket, now: datetime, report: ScanReport) -> None:
        transition = self._state_machine.next_transition(ticket, now)
        if transition is None:
            return

        try:
            if transition == Transition.BREACH:
                await self._apply_breach(ticket, now)
                report.breached.append(ticket.id)
            elif transition == Transition.NOTIFY:
                await self._apply_notify(ticket, now)
                report.notified.append(ticket.id)
        except ResourceNotFoundException:
            report.skipped += 1
            logger.info(
                "Ticket disappeared before SLA update, skipping",
                extra={"ticket_id": ticket.id, "transition": transition}
            )
        except ConcurrentUpdateException:
            report.skipped += 1
            logger.info(
                "Ticket changed concurrently, re-evaluating next tick",
                extra={"ticket_id": ticket.id, "transition": transition}
            )
        except Exception:
            report.errors += 1
            logger.exception(
                "SLA transition failed",
                extra={"ticket_id": ticket.id, "transition": transition}
            )

    async def _apply_breach(self, ticket: Ticket, now: datetime) -> None:
        new_flags = SLAStateMachine.target_flags(Transition.BREACH, ticket.flags)

        async with self._uow_factory() as uow:
            await uow.tickets.update_sla_flags(
                ticket.id, new_flags, expected=ticket.flags, require_open=True
            )
            entry = await uow.history.record_breach(ticket.id, now)

        deadline = self._state_machine.deadline_for(ticket)
        logger.warning(
            "SLA breached",
            extra={
                "ticket_id": ticket.id,
                "history_id": entry.id,
                "deadline": deadline.isoformat() if deadline else None
            }
        )

    async def _apply_notify(self, ticket: Ticket, now: datetime) -> None:
        new_flags = SLAStateMachine.target_flags(Transition.NOTIFY, ticket.flags)
        notification = None

        async with self._uow_factory() as uow:
            await uow.tickets.update_sla_flags(
                ticket.id, new_flags, expected=ticket.flags, require_open=True
            )
            entry = await uow.history.record_notification(ticket.id, now)
            if entry is None:
                logger.warning("No open SLA history row to mark as notified", extra={"ticket_id": ticket.id})

            if ticket.assignee_email:
                notification = await self._notifier.record_breach(
                    uow.notifications,
                    SLABreachEvent(
                        ticket_id=ticket.id,
                        title=ticket.title,
                        assignee_contact=ticket.assignee_email,
                        priority=ticket.priority,
                        created_at=ticket.created_at,
                        deadline=self._state_machine.deadline_for(ticket),
                        occurred_at=now,
                    )
                )
            else:
                logger.warning("Breached ticket has no assignee, nobody to notify", extra={"ticket_id": ticket.id})

        # Delivery only after commit: at most once, never rolled back
        if notification is not None:
            self._notifier.dispatch(notification)

        logger.info("SLA breach notified", extra={"ticket_id": ticket.id})

    # ---------- exposed to the ticket subsystem ----------

    async def resolve_sla(self, ticket_id: int) -> Optional[SLAHistoryEntry]:
        """
        Clear breach state when a ticket is closed.

        Returns:
            The history row marked resolved, or None if there was none

        Raises:
            ResourceNotFoundException: unknown ticket
        """
        now = self._clock()

        async with self._uow_factory() as uow:
            ticket = await uow.tickets.get_by_id(ticket_id)
            if ticket is None:
                raise ResourceNotFoundException("Ticket", ticket_id)

            new_flags = SLAStateMachine.target_flags(Transition.RESOLVE, ticket.flags)
            await uow.tickets.update_sla_flags(ticket_id, new_flags)
            entry = await uow.history.record_resolution(ticket_id, now)

        logger.info(
            "SLA resolved",
            extra={"ticket_id": ticket_id, "history_id": entry.id if entry else None}
        )
        return entry

    async def get_sla_status(self, ticket_id: int) -> SLAStatus:
        """Current SLA standing; read-only."""
        async with self._uow_factory() as uow:
            ticket = await uow.tickets.get_by_id(ticket_id)

        if ticket is None:
            raise ResourceNotFoundException("Ticket", ticket_id)
        return self._state_machine.status(ticket, self._clock())

    async def get_breached_tickets(self) -> List[Ticket]:
        async with self._uow_factory() as uow:
            return await uow.tickets.list_breached_open()

    async def get_history(self, ticket_id: int) -> List[SLAHistoryEntry]:
        async with self._uow_factory() as uow:
            if await uow.tickets.get_by_id(ticket_id) is None:
                raise ResourceNotFoundException("Ticket", ticket_id)
            return await uow.history.list_for_ticket(ticket_id)

    async def send_warning(self, ticket_id: int) -> Notification:
        """
        Warn the assignee that a ticket is approaching its deadline.

        Raises:
            ResourceNotFoundException: unknown ticket
            ValidationException: closed, already breached, no deadline
                or no assignee
        """
        now = self._clock()

        async with self._uow_factory() as uow:
            ticket = await uow.tickets.get_by_id(ticket_id)
            if ticket is None:
                raise ResourceNotFoundException("Ticket", ticket_id)

            status = self._state_machine.status(ticket, now)
            if status.deadline is None or status.remaining is None:
                raise ValidationException(f"Ticket {ticket_id} has no SLA deadline")
            if status.breached:
                raise ValidationException(f"Ticket {ticket_id} has already breached its SLA")
            if not ticket.assignee_email:
                raise ValidationException(f"Ticket {ticket_id} has no assignee")

            notification = await self._notifier.record_warning(
                uow.notifications,
                ticket_id=ticket.id,
                recipient=ticket.assignee_email,
                time_until_breach=status.remaining,
                occurred_at=now,
            )

        self._notifier.dispatch(notification)
        return notification
