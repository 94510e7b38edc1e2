"""
SLA Infrastructure Layer
========================

Persistence, policy loading and scheduling for the SLA monitor.
"""

from helpdesk.sla.infrastructure.models import TicketModel, SLAHistoryModel
from helpdesk.sla.infrastructure.repositories import (
    SQLAlchemyTicketRepository,
    SQLAlchemySLAHistoryRepository,
)
from helpdesk.sla.infrastructure.unit_of_work import SQLAlchemyUnitOfWork
from helpdesk.sla.infrastructure.config import load_policy
from helpdesk.sla.infrastructure.scheduler import SLAScheduler

__all__ = [
    "TicketModel",
    "SLAHistoryModel",
    "SQLAlchemyTicketRepository",
    "SQLAlchemySLAHistoryRepository",
    "SQLAlchemyUnitOfWork",
    "load_policy",
    "SLAScheduler",
]
