"""
SLA Value Objects
==================

Immutable value objects for SLA domain.

Value objects are defined by their attributes rather than an identity.
They are immutable and can be freely shared.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from helpdesk.config import Priority, Settings
from helpdesk.shared.clock import as_utc, utcnow  # noqa: F401


# Priorities that carry an enforced deadline
DEADLINE_PRIORITIES = (Priority.HIGH,)


class SLAPolicy(BaseModel):
    """
    Deadline policy: SLA duration keyed by priority.

    Only high priority tickets carry a deadline. Every other priority
    maps to "no deadline" and can never breach.
    """
    model_config = ConfigDict(frozen=True)

    deadlines_minutes: Dict[str, float] = Field(
        default_factory=lambda: {Priority.HIGH: 1},
        description="SLA duration in minutes by priority"
    )

    @field_validator("deadlines_minutes")
    @classmethod
    def validate_deadlines(cls, v: Dict[str, float]) -> Dict[str, float]:
        """Only deadline-carrying priorities with positive durations."""
        for priority, minutes in v.items():
            if priority not in DEADLINE_PRIORITIES:
                raise ValueError(f"priority '{priority}' does not carry an SLA deadline")
            if minutes <= 0:
                raise ValueError(f"SLA duration for '{priority}' must be positive")
        return v

    @classmethod
    def from_settings(cls, settings: Settings) -> "SLAPolicy":
        """Build the policy from application settings."""
        return cls(deadlines_minutes={Priority.HIGH: settings.sla_high_priority_minutes})

    def duration_for(self, priority: str) -> Optional[timedelta]:
        """SLA duration for a priority, or None when it has no deadline."""
        minutes = self.deadlines_minutes.get(priority)
        if minutes is None:
            return None
        return timedelta(minutes=minutes)

    def deadline_for(self, created_at: datetime, priority: str) -> Optional[datetime]:
        """
        Calculate the SLA deadline for a ticket.

        Args:
            created_at: When the ticket was created
            priority: Ticket priority

        Returns:
            created_at + duration, or None if the priority has no deadline
        """
        duration = self.duration_for(priority)
        if duration is None:
            return None
        return as_utc(created_at) + duration


@dataclass(frozen=True)
class SLAFlags:
    """The pair of SLA flags stored on a ticket, compared as a unit."""
    breached: bool
    notified: bool

    def __post_init__(self):
        if self.notified and not self.breached:
            raise ValueError("a ticket cannot be notified without being breached")


CLEAR = SLAFlags(breached=False, notified=False)
BREACHED = SLAFlags(breached=True, notified=False)
NOTIFIED = SLAFlags(breached=True, notified=True)


@dataclass(frozen=True)
class SLAStatus:
    """Read-only SLA standing of a ticket at a point in time."""
    breached: bool
    remaining: Optional[timedelta]
    deadline: Optional[datetime]
    state: str

    @property
    def remaining_seconds(self) -> Optional[float]:
        if self.remaining is None:
            return None
        return self.remaining.total_seconds()
