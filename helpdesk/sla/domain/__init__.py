"""
SLA Domain Layer
================

Domain layer for SLA monitoring module.

Contains:
- Entities: Ticket snapshot, SLAHistoryEntry
- Value Objects: SLAPolicy, SLAFlags, SLAStatus
- State machine: SLAStateMachine, Transition

This layer has no dependencies on infrastructure - pure Python business logic.
"""

from helpdesk.sla.domain.entities import Ticket, SLAHistoryEntry
from helpdesk.sla.domain.value_objects import (
    SLAPolicy,
    SLAFlags,
    SLAStatus,
    as_utc,
    utcnow,
)
from helpdesk.sla.domain.state_machine import (
    SLAStateMachine,
    Transition,
    InvalidTransitionException,
)

__all__ = [
    # Entities
    "Ticket",
    "SLAHistoryEntry",
    # Value Objects
    "SLAPolicy",
    "SLAFlags",
    "SLAStatus",
    "as_utc",
    "utcnow",
    # State machine
    "SLAStateMachine",
    "Transition",
    "InvalidTransitionException",
]
