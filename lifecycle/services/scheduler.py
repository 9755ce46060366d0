"""Internal task scheduler using APScheduler.

Runs the deletion sweep and the daily cleanup within the FastAPI process.
Uses PostgreSQL advisory locks to prevent duplicate execution when
multiple instances are running.
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from sqlalchemy import text

from lifecycle.config import settings
from lifecycle.core.database import direct_session_maker

logger = logging.getLogger(__name__)

# Advisory lock IDs (arbitrary unique integers, one per job)
DELETION_SWEEP_LOCK_ID = 724101
CLEANUP_LOCK_ID = 724102


@asynccontextmanager
async def advisory_lock(lock_id: int) -> AsyncIterator[bool]:
    """
    Acquire a PostgreSQL advisory lock for the duration of the context.

    Advisory locks are session-level and automatically released when the
    session ends. We use pg_try_advisory_lock() which returns immediately
    (non-blocking): if the lock is held by another process, we skip.
    """
    async with direct_session_maker() as session:
        result = await session.execute(
            text("SELECT pg_try_advisory_lock(:lock_id)"),
            {"lock_id": lock_id},
        )
        acquired = result.scalar()

        if not acquired:
            yield False
            return

        try:
            yield True
        finally:
            await session.execute(
                text("SELECT pg_advisory_unlock(:lock_id)"),
                {"lock_id": lock_id},
            )
            await session.commit()


async def run_deletion_sweep() -> dict[str, Any] | None:
    """
    Execute due deletions with advisory lock protection.

    Returns the report dict if executed, None if skipped (lock held by another instance).
    """
    async with advisory_lock(DELETION_SWEEP_LOCK_ID) as acquired:
        if not acquired:
            logger.info("[scheduler] Deletion-sweep: skipped (another instance is running)")
            return None

        logger.info("[scheduler] Deletion-sweep: starting")

        try:
            from lifecycle.services.deletion.maintenance import deletion_maintenance

            report = await deletion_maintenance.execute_pending_deletions()

            logger.info(
                f"[scheduler] Deletion-sweep: completed "
                f"({report['executed']} executed, {report['failed']} failed, "
                f"{report['total']} due)"
            )
            return report

        except Exception as e:
            logger.exception(f"[scheduler] Deletion-sweep: failed with error: {e}")
            return None


async def run_cleanup() -> dict[str, Any] | None:
    """Expire unconfirmed deletion requests and purge stale rate-limit counters."""
    async with advisory_lock(CLEANUP_LOCK_ID) as acquired:
        if not acquired:
            logger.info("[scheduler] Cleanup: skipped (another instance is running)")
            return None

        logger.info("[scheduler] Cleanup: starting")

        try:
            from lifecycle.services.deletion.maintenance import deletion_maintenance

            report = await deletion_maintenance.cleanup_expired_requests()

            logger.info(
                f"[scheduler] Cleanup: completed "
                f"({report['expired_requests_removed']} expired requests removed)"
            )
            return report

        except Exception as e:
            logger.exception(f"[scheduler] Cleanup: failed with error: {e}")
            return None


class Scheduler:
    """Manages the APScheduler instance and job registration."""

    def __init__(self) -> None:
        self._scheduler: AsyncIOScheduler | None = None

    def start(self) -> None:
        """Start the scheduler and register jobs."""
        if not settings.scheduler_enabled:
            logger.info("[scheduler] Disabled via SCHEDULER_ENABLED=false")
            return

        self._scheduler = AsyncIOScheduler()

        # Deletion sweep: hourly at the configured minute
        self._scheduler.add_job(
            run_deletion_sweep,
            trigger=CronTrigger(minute=settings.deletion_sweep_minute),
            id="deletion_sweep",
            name="Execute Due Account Deletions",
            replace_existing=True,
        )

        # Cleanup: daily at configured hour (UTC)
        self._scheduler.add_job(
            run_cleanup,
            trigger=CronTrigger(hour=settings.cleanup_hour, minute=0),
            id="cleanup",
            name="Expire Unconfirmed Deletion Requests",
            replace_existing=True,
        )

        self._scheduler.start()
        logger.info(
            f"[scheduler] Started with deletion-sweep hourly at :{settings.deletion_sweep_minute:02d}, "
            f"cleanup at {settings.cleanup_hour:02d}:00 UTC"
        )

    @property
    def running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    def stop(self) -> None:
        """Gracefully shut down the scheduler."""
        if self._scheduler:
            self._scheduler.shutdown(wait=False)
            logger.info("[scheduler] Stopped")

    async def trigger_now(self, job_id: str) -> dict[str, Any] | None:
        """
        Manually trigger a job immediately (for testing/debugging).

        Returns the job result or None if job not found.
        """
        if job_id == "deletion_sweep":
            return await run_deletion_sweep()
        if job_id == "cleanup":
            return await run_cleanup()
        return None


scheduler = Scheduler()
