"""APScheduler-based job scheduler for periodic tasks.

Provides scheduling infrastructure for:
- Periodic chat store flush for every live session

Design principles:
- Use AsyncIOScheduler for async compatibility
- Graceful shutdown with job cleanup
- Job failures are logged by an event listener, never propagated
"""

import logging
from collections.abc import Callable

from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_EXECUTED
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from session_gateway.config import Settings

logger = logging.getLogger(__name__)

STORE_FLUSH_JOB_ID = "store_flush"


class JobScheduler:
    """APScheduler-based job scheduler for periodic tasks.

    Example:
        scheduler = JobScheduler(settings)
        scheduler.add_store_flush_job(service.flush_all)
        await scheduler.start()

        # Shutdown
        await scheduler.shutdown()
    """

    def __init__(self, settings: Settings) -> None:
        """Initialize job scheduler.

        Args:
            settings: Application settings
        """
        self.settings = settings
        self.scheduler = AsyncIOScheduler(
            timezone="UTC",
            job_defaults={
                "coalesce": True,  # Combine missed runs
                "max_instances": 1,  # One instance at a time
                "misfire_grace_time": 300,
            },
        )

        self.scheduler.add_listener(
            self._on_job_executed,
            EVENT_JOB_EXECUTED | EVENT_JOB_ERROR,
        )

        self._started = False

    @property
    def started(self) -> bool:
        return self._started

    async def start(self) -> None:
        """Start the scheduler.

        Raises:
            RuntimeError: If scheduler already started
        """
        if self._started:
            raise RuntimeError("Scheduler already started")

        self.scheduler.start()
        self._started = True

        logger.info(
            "Job scheduler started",
            extra={
                "job_count": len(self.scheduler.get_jobs()),
            },
        )

    async def shutdown(self, wait: bool = True) -> None:
        """Shutdown the scheduler gracefully.

        Args:
            wait: Whether to wait for running jobs to complete
        """
        if not self._started:
            return

        logger.info("Shutting down job scheduler...")

        self.scheduler.shutdown(wait=wait)
        self._started = False

        logger.info("Job scheduler stopped")

    def add_store_flush_job(
        self,
        job_func: Callable,
        interval_seconds: int | None = None,
    ) -> str:
        """Add periodic chat store flush job.

        Args:
            job_func: Async function flushing every live store
            interval_seconds: Flush interval (default: from settings)

        Returns:
            Job ID
        """
        interval = interval_seconds or self.settings.store_flush_interval_seconds

        job = self.scheduler.add_job(
            job_func,
            trigger=IntervalTrigger(seconds=interval),
            id=STORE_FLUSH_JOB_ID,
            name="Periodic Chat Store Flush",
            replace_existing=True,
        )

        logger.info(
            f"Added store flush job (interval: {interval}s)",
            extra={
                "job_id": job.id,
                "interval_seconds": interval,
            },
        )

        return job.id

    def get_job_status(self, job_id: str) -> dict | None:
        """Get job status.

        Args:
            job_id: Job identifier

        Returns:
            Job status dict or None if job not found
        """
        job = self.scheduler.get_job(job_id)
        if not job:
            return None

        next_run_time = getattr(job, "next_run_time", None)
        return {
            "id": job.id,
            "name": job.name,
            "next_run_time": next_run_time.isoformat() if next_run_time else None,
        }

    def _on_job_executed(self, event) -> None:
        """Handle job execution events.

        Args:
            event: APScheduler event
        """
        if event.exception:
            logger.error(
                f"Job {event.job_id} failed",
                extra={
                    "job_id": event.job_id,
                    "exception": str(event.exception),
                },
                exc_info=event.exception,
            )
        else:
            logger.debug(
                f"Job {event.job_id} executed successfully",
                extra={"job_id": event.job_id},
            )


__all__ = ["JobScheduler", "STORE_FLUSH_JOB_ID"]
