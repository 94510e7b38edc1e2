"""
SLA Application DTOs
=====================

Data Transfer Objects for SLA API layer.

These Pydantic models handle serialization for API responses.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from helpdesk.sla.domain import SLAHistoryEntry, SLAStatus, Ticket


class SLAStatusResponse(BaseModel):
    """SLA standing of a single ticket."""
    ticket_id: int
    breached: bool = Field(..., description="Deadline reached while the ticket is open")
    remaining_seconds: Optional[float] = Field(
        None, description="Seconds until the deadline; null when the priority has no deadline"
    )
    deadline: Optional[datetime] = None
    state: str = Field(..., description="active, breached, notified or resolved")

    @classmethod
    def from_status(cls, ticket_id: int, status: SLAStatus) -> "SLAStatusResponse":
        return cls(
            ticket_id=ticket_id,
            breached=status.breached,
            remaining_seconds=status.remaining_seconds,
            deadline=status.deadline,
            state=status.state,
        )


class SLAHistoryResponse(BaseModel):
    """One breach cycle."""
    id: int
    ticket_id: int
    breached_at: datetime
    notified_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None

    @classmethod
    def from_entity(cls, entry: SLAHistoryEntry) -> "SLAHistoryResponse":
        return cls(
            id=entry.id,
            ticket_id=entry.ticket_id,
            breached_at=entry.breached_at,
            notified_at=entry.notified_at,
            resolved_at=entry.resolved_at,
        )


class ResolveResponse(BaseModel):
    ticket_id: int
    history: Optional[SLAHistoryResponse] = None


class BreachedTicketResponse(BaseModel):
    """A ticket currently in breach."""
    id: int
    title: str
    priority: str
    status: str
    assignee_email: Optional[str] = None
    created_at: datetime
    deadline: Optional[datetime] = None
    sla_notified: bool
    state: str = Field(..., description="breached, or notified once the assignee was told")

    @classmethod
    def from_entity(cls, ticket: Ticket, deadline: Optional[datetime], state: str) -> "BreachedTicketResponse":
        return cls(
            id=ticket.id,
            title=ticket.title,
            priority=ticket.priority,
            status=ticket.status,
            assignee_email=ticket.assignee_email,
            created_at=ticket.created_at,
            deadline=deadline,
            sla_notified=ticket.sla_notified,
            state=state,
        )


class ScanResponse(BaseModel):
    """Outcome of a scan tick."""
    started_at: datetime
    breach_candidates: int
    notify_candidates: int
    breached: List[int]
    notified: List[int]
    skipped: int
    errors: int
    duration_ms: float
    skipped_overlap: bool
