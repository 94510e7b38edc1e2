"""
Helpdesk SLA Monitor - Main Application
=======================================

SLA breach monitoring for the helpdesk ticket tracker.

Modules:
- SLA Monitoring: deadline policy, breach/notify state machine, scheduled scan
- Notifications: persisted notifications with best-effort delivery

Clean Architecture Layers:
- Interfaces: FastAPI controllers
- Application: Services and DTOs
- Domain: Entities, value objects and the state machine
- Infrastructure: Database, scheduler, notification channels
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Callable, Optional
from datetime import datetime

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

# Configuration and Core
from helpdesk.config import Settings, settings
from helpdesk.core import ApplicationException

# Infrastructure
from helpdesk.infrastructure.database import (
    init_database, close_database, create_tables, get_session_context, get_session_maker
)

# Notifications
from helpdesk.notifications import NotificationDispatcher, NotificationService
from helpdesk.notifications.channels import LoggingEmailChannel, WebhookChannel
from helpdesk.notifications.interfaces import router as notifications_router

# SLA Module
from helpdesk.sla.application import SLAMonitorService
from helpdesk.sla.domain import SLAPolicy, SLAStateMachine, utcnow
from helpdesk.sla.infrastructure import SLAScheduler, SQLAlchemyUnitOfWork, load_policy
from helpdesk.sla.interfaces import router as sla_router

# Logging
from helpdesk.shared.infrastructure.logging import setup_logging, get_logger
from helpdesk.shared.api.middleware import (
    CorrelationIDMiddleware,
    LoggingMiddleware,
    application_exception_handler,
    global_exception_handler
)

logger = get_logger(__name__)


def build_dispatcher(config: Settings) -> NotificationDispatcher:
    """E-mail channel always; webhook only when a URL is configured."""
    channels = [LoggingEmailChannel()]
    if config.notification_webhook_url:
        channels.append(
            WebhookChannel(
                url=config.notification_webhook_url,
                channel=config.notification_webhook_channel,
                timeout_seconds=config.notification_timeout_seconds
            )
        )
    return NotificationDispatcher(channels, timeout_seconds=config.notification_timeout_seconds)


def build_sla_monitor(
    session_maker: async_sessionmaker[AsyncSession],
    policy: SLAPolicy,
    notification_service: NotificationService,
    clock: Callable[[], datetime] = utcnow
) -> SLAMonitorService:
    """Wire the SLA monitor to SQLAlchemy units of work."""
    return SLAMonitorService(
        uow_factory=lambda: SQLAlchemyUnitOfWork(session_maker),
        state_machine=SLAStateMachine(policy),
        notifier=notification_service,
        clock=clock
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """
    Application lifespan manager.

    STARTUP:
    1. Setup structured logging
    2. Initialize database
    3. Create database tables
    4. Load SLA policy
    5. Build notification dispatcher and SLA monitor
    6. Start SLA scheduler

    SHUTDOWN:
    1. Stop SLA scheduler and wait for an in-flight scan
    2. Drain and close notification channels
    3. Close database connections
    """
    # === STARTUP ===
    setup_logging(settings.log_level, settings.environment)
    logger.info("Starting Helpdesk SLA Monitor", extra={
        "version": settings.app_version,
        "environment": settings.environment
    })

    logger.info("Initializing database")
    init_database()

    # Tables are created for development; production should use migrations
    logger.info("Creating database tables")
    try:
        await create_tables()
    except Exception as e:
        logger.warning(f"Database not available - running in degraded mode: {e}")

    logger.info("Loading SLA policy")
    policy = load_policy(settings.sla_policy_path, settings)

    dispatcher = build_dispatcher(settings)
    notification_service = NotificationService(dispatcher)
    sla_monitor = build_sla_monitor(get_session_maker(), policy, notification_service)

    sla_scheduler: Optional[SLAScheduler] = None
    if settings.sla_scan_interval_seconds > 0:
        sla_scheduler = SLAScheduler(sla_monitor, interval_seconds=settings.sla_scan_interval_seconds)
        await sla_scheduler.start()
    else:
        logger.info("SLA scheduler disabled, scans run only on demand")

    # Store services in app state for dependency injection
    app.state.settings = settings
    app.state.sla_monitor = sla_monitor
    app.state.sla_scheduler = sla_scheduler
    app.state.notification_dispatcher = dispatcher

    logger.info("Helpdesk SLA Monitor started successfully")

    yield  # Application runs here

    # === SHUTDOWN ===
    logger.info("Shutting down Helpdesk SLA Monitor")

    if sla_scheduler:
        await sla_scheduler.stop()

    await dispatcher.close()
    await close_database()

    logger.info("Helpdesk SLA Monitor shutdown complete")


# Create FastAPI application
app = FastAPI(
    title="Helpdesk SLA Monitor API",
    description="""
    ## SLA breach monitoring for high priority tickets

    ### SLA Monitoring

    **Endpoints:**
    - `GET /sla/tickets/{id}/status` - Current SLA standing of a ticket
    - `POST /sla/tickets/{id}/resolve` - Clear breach state when a ticket is closed
    - `GET /sla/tickets/{id}/history` - Breach cycles of a ticket
    - `GET /sla/tickets/breached` - Open tickets in breach
    - `POST /sla/tickets/{id}/warn` - Warn the assignee before the deadline
    - `POST /sla/scan` - Run a scan now

    **Behaviour:**
    - Only `high` priority tickets carry a deadline (`created_at` + SLA duration)
    - A scan marks overdue tickets as breached; the next scan notifies the assignee once
    - Closing a ticket resolves its SLA

    ### Notifications

    - `GET /notifications?recipient=` - All notifications
    - `GET /notifications/new?recipient=` - Unread notifications
    - `GET /notifications/since/{date}?recipient=` - Created after a date
    - `POST /notifications/{id}/read` - Mark as read
    - `POST /notifications/mark-all-read?recipient=` - Mark all as read
    """,
    version=settings.app_version,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)

# === CORS Middleware ===
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# === Custom Middleware (from shared) ===
app.add_middleware(CorrelationIDMiddleware)
app.add_middleware(LoggingMiddleware)
app.add_exception_handler(ApplicationException, application_exception_handler)
app.add_exception_handler(Exception, global_exception_handler)

# === Include Module Routers ===
app.include_router(sla_router)
app.include_router(notifications_router)


# === Health Check Endpoint ===

@app.get("/health", tags=["Health"], responses={
    200: {
        "description": "Service is healthy",
        "content": {
            "application/json": {
                "example": {
                    "status": "healthy",
                    "version": "1.0.0",
                    "environment": "development",
                    "checks": {
                        "database": "connected",
                        "sla_scheduler": "running",
                        "notifications_pending": 0
                    }
                }
            }
        }
    }
})
async def health_check(request: Request):
    """
    Health check endpoint for load balancers and orchestrators.

    Returns service health status including:
    - Database connectivity
    - Scheduler state
    - In-flight notification deliveries
    """
    checks = {}

    try:
        async with get_session_context() as session:
            await session.execute(text("SELECT 1"))
        checks["database"] = "connected"
    except Exception as e:
        checks["database"] = f"error: {e}"

    scheduler = getattr(request.app.state, "sla_scheduler", None)
    checks["sla_scheduler"] = "running" if scheduler and scheduler.is_running else "stopped"

    dispatcher = getattr(request.app.state, "notification_dispatcher", None)
    checks["notifications_pending"] = dispatcher.pending if dispatcher else 0

    return {
        "status": "healthy" if checks["database"] == "connected" else "degraded",
        "version": settings.app_version,
        "environment": settings.environment,
        "checks": checks
    }


@app.get("/", tags=["Root"], responses={
    200: {
        "description": "API information",
        "content": {
            "application/json": {
                "example": {
                    "service": "Helpdesk SLA Monitor",
                    "version": "1.0.0",
                    "docs": "/docs",
                    "health": "/health"
                }
            }
        }
    }
})
async def root():
    """Root endpoint with API information."""
    return {
        "service": "Helpdesk SLA Monitor",
        "version": settings.app_version,
        "docs": "/docs",
        "health": "/health",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "helpdesk.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )
