"""
SLA Controllers (API Routes)
=============================

FastAPI routes for SLA monitoring endpoints.

Controllers are thin - they delegate to the SLA monitor held on the
application state. Domain exceptions are mapped to HTTP responses by the
application exception handler.
"""

from typing import List

from fastapi import APIRouter, Depends, Request, status

from helpdesk.notifications.interfaces import NotificationResponse
from helpdesk.sla.application import (
    BreachedTicketResponse,
    ResolveResponse,
    ScanResponse,
    SLAHistoryResponse,
    SLAMonitorService,
    SLAStatusResponse,
)
from helpdesk.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)
router = APIRouter(prefix="/sla", tags=["SLA Monitoring"])


# ========== Example payloads for Swagger ==========

SLA_STATUS_EXAMPLE = {
    "ticket_id": 42,
    "breached": False,
    "remaining_seconds": 29.5,
    "deadline": "2024-01-15T10:01:00Z",
    "state": "active"
}

SCAN_RESPONSE_EXAMPLE = {
    "started_at": "2024-01-15T10:01:01Z",
    "breach_candidates": 3,
    "notify_candidates": 1,
    "breached": [42],
    "notified": [17],
    "skipped": 0,
    "errors": 0,
    "duration_ms": 12.4,
    "skipped_overlap": False
}


# ========== Dependencies ==========

def get_sla_monitor(request: Request) -> SLAMonitorService:
    """SLA monitor built during application startup."""
    return request.app.state.sla_monitor


# ========== Route Handlers ==========

@router.get(
    "/tickets/breached",
    response_model=List[BreachedTicketResponse],
    summary="Open tickets in breach",
    description="Open tickets whose SLA has been breached, oldest first."
)
async def list_breached_tickets(
    monitor: SLAMonitorService = Depends(get_sla_monitor)
):
    tickets = await monitor.get_breached_tickets()
    state_machine = monitor.state_machine
    return [
        BreachedTicketResponse.from_entity(
            ticket, state_machine.deadline_for(ticket), state_machine.state_of(ticket)
        )
        for ticket in tickets
    ]


@router.get(
    "/tickets/{ticket_id}/status",
    response_model=SLAStatusResponse,
    summary="Get ticket SLA status",
    description="""
    Read-only SLA standing of a ticket. Never changes the stored flags.

    **States**:
    - `active`: deadline not reached, or the priority carries no deadline
    - `breached`: deadline reached while the ticket is open
    - `resolved`: the ticket is closed
    """,
    responses={
        200: {
            "description": "Ticket SLA status",
            "content": {"application/json": {"example": SLA_STATUS_EXAMPLE}}
        },
        404: {"description": "Ticket not found"}
    }
)
async def get_ticket_sla_status(
    ticket_id: int,
    monitor: SLAMonitorService = Depends(get_sla_monitor)
):
    sla_status = await monitor.get_sla_status(ticket_id)
    return SLAStatusResponse.from_status(ticket_id, sla_status)


@router.post(
    "/tickets/{ticket_id}/resolve",
    response_model=ResolveResponse,
    summary="Resolve ticket SLA",
    description="Clear breach state of a closed ticket and complete its latest history row.",
    responses={404: {"description": "Ticket not found"}}
)
async def resolve_ticket_sla(
    ticket_id: int,
    monitor: SLAMonitorService = Depends(get_sla_monitor)
):
    entry = await monitor.resolve_sla(ticket_id)
    return ResolveResponse(
        ticket_id=ticket_id,
        history=SLAHistoryResponse.from_entity(entry) if entry else None
    )


@router.get(
    "/tickets/{ticket_id}/history",
    response_model=List[SLAHistoryResponse],
    summary="SLA breach history",
    description="Breach cycles of a ticket, newest first.",
    responses={404: {"description": "Ticket not found"}}
)
async def get_ticket_sla_history(
    ticket_id: int,
    monitor: SLAMonitorService = Depends(get_sla_monitor)
):
    entries = await monitor.get_history(ticket_id)
    return [SLAHistoryResponse.from_entity(entry) for entry in entries]


@router.post(
    "/tickets/{ticket_id}/warn",
    response_model=NotificationResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Warn assignee before breach",
    responses={
        404: {"description": "Ticket not found"},
        422: {"description": "Ticket has no deadline, is already breached or has no assignee"}
    }
)
async def warn_ticket_assignee(
    ticket_id: int,
    monitor: SLAMonitorService = Depends(get_sla_monitor)
):
    notification = await monitor.send_warning(ticket_id)
    return NotificationResponse.from_entity(notification)


@router.post(
    "/scan",
    response_model=ScanResponse,
    summary="Run an SLA scan now",
    description="""
    Run one scan tick outside the fixed schedule.

    Returns `skipped_overlap: true` without scanning if a scan is already
    running. Responds 503 if the ticket store cannot be queried.
    """,
    responses={
        200: {
            "description": "Scan report",
            "content": {"application/json": {"example": SCAN_RESPONSE_EXAMPLE}}
        },
        503: {"description": "Ticket store unavailable"}
    }
)
async def trigger_scan(
    monitor: SLAMonitorService = Depends(get_sla_monitor)
):
    report = await monitor.run_scan_once()
    logger.info("Manual SLA scan triggered", extra={"skipped_overlap": report.skipped_overlap})
    return ScanResponse(**report.to_dict())
