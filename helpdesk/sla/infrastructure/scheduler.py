"""
SLA Scheduler
=============

Runs the SLA scan on a fixed interval using APScheduler.
"""

from typing import Optional

from apscheduler.executors.asyncio import AsyncIOExecutor
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from helpdesk.shared.infrastructure.logging import get_logger, log_latency
from helpdesk.sla.application.services import ScanReport, SLAMonitorService

logger = get_logger(__name__)

JOB_ID = "sla_scan"


class SLAScheduler:
    """
    Wrapper for APScheduler for the background SLA scan.

    Manages the lifecycle of the scheduler and its single job. A failing
    scan is logged and the next tick runs as usual.
    """

    def __init__(self, monitor: SLAMonitorService, interval_seconds: int = 30):
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self.interval_seconds = interval_seconds
        self._monitor = monitor
        self._scheduler: Optional[AsyncIOScheduler] = None
        self._running = False

    async def run_job(self) -> Optional[ScanReport]:
        """Scheduled entry point; never raises."""
        try:
            with log_latency(logger, "sla_scan", trigger="scheduler"):
                return await self._monitor.run_scan_once()
        except Exception:
            logger.exception("SLA scan failed, will retry on next tick")
            return None

    async def start(self) -> None:
        """Start the scheduler."""
        if self._running:
            logger.warning("SLA scheduler already running")
            return

        self._scheduler = AsyncIOScheduler(
            jobstores={"default": MemoryJobStore()},
            executors={"default": AsyncIOExecutor()},
            job_defaults={
                "coalesce": True,
                "max_instances": 1,
                "misfire_grace_time": self.interval_seconds,
            },
            timezone="UTC",
        )

        self._scheduler.add_job(
            self.run_job,
            trigger=IntervalTrigger(seconds=self.interval_seconds),
            id=JOB_ID,
            name="SLA Scan",
            replace_existing=True
        )

        self._scheduler.start()
        self._running = True

        logger.info(
            "SLA scheduler started",
            extra={"interval_seconds": self.interval_seconds}
        )

    async def stop(self) -> None:
        """
        Stop the scheduler gracefully.

        No new scans start once this returns, and a scan already running
        has completed.
        """
        if not self._running:
            return

        if self._scheduler:
            # AsyncIOScheduler cannot wait for coroutine jobs itself
            self._scheduler.shutdown(wait=False)
            self._scheduler = None

        self._running = False
        await self._monitor.wait_idle()
        logger.info("SLA scheduler stopped")

    @property
    def is_running(self) -> bool:
        """Check if scheduler is running."""
        return self._running
