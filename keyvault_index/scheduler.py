"""
Index Scheduler — Recurring indexing passes.

Runs ``IndexingCoordinator.trigger`` on an interval (hourly by default).
A tick that finds a pass already running does nothing.
"""
import logging
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from .indexer import IndexingCoordinator

logger = logging.getLogger("keyvault_index.scheduler")

JOB_ID = "vault-indexing"


class IndexScheduler:
    """Manages the recurring indexing job."""

    def __init__(
        self,
        coordinator: IndexingCoordinator,
        minutes: Optional[int] = None,
    ):
        self.coordinator = coordinator
        self.minutes = minutes or coordinator.config.schedule_minutes
        self.scheduler = AsyncIOScheduler()
        self.running = False

    async def tick(self) -> None:
        """One scheduled attempt."""
        logger.info("Running scheduled indexing")
        report = await self.coordinator.trigger()
        if report is not None and report.error:
            logger.error("Scheduled indexing failed: %s", report.error)

    def start(self) -> None:
        """Register the job and start the clock; needs a running event loop."""
        if self.running:
            return
        self.scheduler.add_job(
            self.tick,
            "interval",
            minutes=self.minutes,
            id=JOB_ID,
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        self.scheduler.start()
        self.running = True
        logger.info("Scheduler started: indexing every %d minute(s)", self.minutes)

    def stop(self) -> None:
        if self.running:
            self.scheduler.shutdown(wait=False)
            self.running = False
            logger.info("Scheduler stopped")

    def next_run(self):
        """Next scheduled run time, or None when not scheduled."""
        job = self.scheduler.get_job(JOB_ID)
        return job.next_run_time if job else None
