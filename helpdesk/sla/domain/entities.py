"""
SLA Domain Entities
====================

Pure Python domain entities for SLA monitoring.

Following Domain-Driven Design principles, these entities contain
business logic and are free of infrastructure concerns. The ticket
itself is owned by the ticket subsystem; the monitor only sees the
slice of it described here.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from helpdesk.config import Priority, TicketStatus
from helpdesk.sla.domain.value_objects import SLAFlags, as_utc


@dataclass
class Ticket:
    """
    Snapshot of a ticket as observed by the SLA monitor.

    The flags are the values read at query time; writes go through a
    conditional update that compares against them.
    """

    id: int
    title: str
    priority: str
    status: str
    created_at: datetime
    assignee_email: Optional[str] = None
    sla_breached: bool = False
    sla_notified: bool = False

    def __post_init__(self):
        """Validate ticket on initialization."""
        self.created_at = as_utc(self.created_at)
        if self.sla_notified and not self.sla_breached:
            raise ValueError("sla_notified requires sla_breached")

    @property
    def is_closed(self) -> bool:
        return self.status == TicketStatus.CLOSED

    @property
    def is_high_priority(self) -> bool:
        return self.priority == Priority.HIGH

    @property
    def flags(self) -> SLAFlags:
        """Flags as observed when the snapshot was taken."""
        return SLAFlags(breached=self.sla_breached, notified=self.sla_notified)


@dataclass
class SLAHistoryEntry:
    """
    One breach cycle of a ticket.

    Created on breach; notified_at and resolved_at are filled in as the
    cycle progresses.
    """

    id: Optional[int]
    ticket_id: int
    breached_at: datetime
    notified_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None

    def __post_init__(self):
        self.breached_at = as_utc(self.breached_at)
        if self.notified_at is not None:
            self.notified_at = as_utc(self.notified_at)
        if self.resolved_at is not None:
            self.resolved_at = as_utc(self.resolved_at)

    @property
    def is_resolved(self) -> bool:
        return self.resolved_at is not None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "ticket_id": self.ticket_id,
            "breached_at": self.breached_at.isoformat(),
            "notified_at": self.notified_at.isoformat() if self.notified_at else None,
            "resolved_at": self.resolved_at.isoformat() if self.resolved_at else None,
        }
