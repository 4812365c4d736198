"""Scheduler manager for background jobs."""

import logging
from typing import Any, Callable, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from stablemate.config import IST_TZ, settings
from stablemate.rate_limit import SWEEP_INTERVAL

logger = logging.getLogger(__name__)

JOB_RATE_LIMIT_SWEEP = "rate_limit_sweep"
JOB_NIGHTLY_REFRESH = "nightly_refresh"


class SchedulerManager:
    """Manages background job scheduling."""

    def __init__(self):
        self.scheduler = AsyncIOScheduler(timezone=IST_TZ)
        self._started = False

    async def start(self) -> None:
        """Start the scheduler."""
        if not self._started:
            self.scheduler.start()
            self._started = True
            logger.info("Scheduler started")

    async def stop(self) -> None:
        """Stop the scheduler."""
        if self._started:
            self.scheduler.shutdown(wait=False)
            self._started = False
            logger.info("Scheduler stopped")

    @property
    def running(self) -> bool:
        return self._started

    def add_job(
        self,
        job_id: str,
        func: Callable,
        trigger_type: str = "interval",
        **trigger_kwargs
    ) -> None:
        """Add a job to the scheduler.

        Args:
            job_id: Unique identifier for the job
            func: The async function to run
            trigger_type: One of 'interval', 'cron'
            **trigger_kwargs: Arguments for the trigger
        """
        if trigger_type == "interval":
            trigger = IntervalTrigger(**trigger_kwargs)
        elif trigger_type == "cron":
            if "timezone" not in trigger_kwargs:
                trigger_kwargs["timezone"] = IST_TZ
            trigger = CronTrigger(**trigger_kwargs)
        else:
            raise ValueError(f"Unknown trigger type: {trigger_type}")

        self.scheduler.add_job(
            func,
            trigger,
            id=job_id,
            replace_existing=True,
            misfire_grace_time=60,
            coalesce=True,
        )
        logger.info(f"Added job: {job_id} with {trigger_type} trigger")

    def get_job(self, job_id: str) -> Optional[Any]:
        """Get a job by ID."""
        return self.scheduler.get_job(job_id)

    def get_jobs(self) -> list:
        """Get all scheduled jobs."""
        return self.scheduler.get_jobs()

    def setup_sync_jobs(self, limiters, db_router, sync_service) -> None:
        """Register the limiter sweep and the nightly owner refresh."""
        from stablemate.scheduler.jobs import nightly_refresh, sweep_rate_limiters

        async def sweep():
            sweep_rate_limiters(limiters)

        async def refresh():
            await nightly_refresh(db_router, sync_service)

        self.add_job(JOB_RATE_LIMIT_SWEEP, sweep, "interval", seconds=SWEEP_INTERVAL)
        self.add_job(JOB_NIGHTLY_REFRESH, refresh, "cron", hour=settings.nightly_refresh_hour, minute=0)
