"""
SLA Application Layer
======================

Application layer for SLA monitoring module.

Contains:
- Services: the SLA monitor and the repository interfaces it depends on
- DTOs: Data transfer objects for API serialization

This layer depends on the domain layer and repository interfaces,
but not on concrete infrastructure implementations.
"""

from helpdesk.sla.application.dto import (
    SLAStatusResponse,
    SLAHistoryResponse,
    ResolveResponse,
    BreachedTicketResponse,
    ScanResponse,
)
from helpdesk.sla.application.services import (
    SLAMonitorService,
    ScanReport,
    ITicketRepository,
    ISLAHistoryRepository,
    ISLAUnitOfWork,
    INotifier,
)

__all__ = [
    # DTOs
    "SLAStatusResponse",
    "SLAHistoryResponse",
    "ResolveResponse",
    "BreachedTicketResponse",
    "ScanResponse",
    # Services
    "SLAMonitorService",
    "ScanReport",
    # Interfaces
    "ITicketRepository",
    "ISLAHistoryRepository",
    "ISLAUnitOfWork",
    "INotifier",
]
