"""Maintenance jobs shared by the scheduler and the operator endpoints."""

import logging
from dataclasses import asdict
from datetime import UTC, datetime, timedelta
from typing import Any

from lifecycle.config import settings
from lifecycle.core.database import async_session_maker
from lifecycle.core.rate_limit import RateLimiter, rate_limiter
from lifecycle.domain.audit_operations import AuditOperations, audit_ops
from lifecycle.domain.deletion_operations import DeletionOperations, deletion_ops
from lifecycle.models.audit import AuditAction
from lifecycle.services.deletion.executor import BatchExecutor, batch_executor
from lifecycle.services.deletion.service import DeletionService, deletion_service

logger = logging.getLogger(__name__)

# Counters older than this can no longer affect any configured window
RATE_LIMIT_RETENTION = timedelta(days=1)


class DeletionMaintenance:
    def __init__(
        self,
        service: DeletionService = deletion_service,
        executor: BatchExecutor = batch_executor,
        store: DeletionOperations = deletion_ops,
        limiter: RateLimiter = rate_limiter,
        audit: AuditOperations = audit_ops,
        session_factory: Any = async_session_maker,
    ) -> None:
        self.service = service
        self.executor = executor
        self.store = store
        self.limiter = limiter
        self.audit = audit
        self.session_factory = session_factory

    async def cleanup_expired_requests(self, now: datetime | None = None) -> dict[str, int]:
        """Drop unconfirmed requests past expiry and stale rate-limit counters."""
        now = now or datetime.now(UTC)
        async with self.session_factory() as db:
            expired = await self.service.expire(db, now)
            counters = await self.limiter.purge_expired(db, now - RATE_LIMIT_RETENTION)
            await self.audit.log(
                db,
                AuditAction.MAINTENANCE_RUN,
                details={"action": "cleanup_expired_requests", "expired": expired},
            )
            await db.commit()

        logger.info(f"[maintenance] Cleanup removed {expired} request(s), {counters} counter(s)")
        return {"expired_requests_removed": expired, "rate_limit_counters_removed": counters}

    async def execute_pending_deletions(self, now: datetime | None = None) -> dict[str, Any]:
        report = await self.executor.execute_pending(now)
        return report.to_dict()

    async def full_maintenance(self, now: datetime | None = None) -> dict[str, Any]:
        """Cleanup first so expired requests never reach the executor scan."""
        cleanup = await self.cleanup_expired_requests(now)
        deletions = await self.execute_pending_deletions(now)
        return {"cleanup": cleanup, "deletions": deletions}

    async def status(self, now: datetime | None = None) -> dict[str, int]:
        now = now or datetime.now(UTC)
        expiry_cutoff = now - timedelta(days=settings.deletion_request_expiry_days)
        async with self.session_factory() as db:
            stats = await self.store.queue_stats(db, now, expiry_cutoff)
        return asdict(stats)


deletion_maintenance = DeletionMaintenance()
