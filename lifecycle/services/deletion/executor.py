"""Batch execution of confirmed, due deletion requests.

Each request runs in its own session and transaction, so a gateway timeout
or a failed RPC for one account rolls back only that account. Completed
requests drop out of the next scan through the status predicate, which is
what makes repeated sweeps safe.
"""

import logging
import uuid as uuid_pkg
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from typing import Any

from lifecycle.core.database import async_session_maker
from lifecycle.domain.audit_operations import AuditOperations, audit_ops
from lifecycle.domain.deletion_operations import DeletionOperations, deletion_ops
from lifecycle.models.audit import AuditAction
from lifecycle.models.deletion_request import DeletionRequest
from lifecycle.services.deletion.service import DeletionService, deletion_service
from lifecycle.services.notifications import NotificationDispatcher, notification_dispatcher

logger = logging.getLogger(__name__)

BATCH_SIZE = 100


@dataclass
class BatchReport:
    """Aggregated result of one sweep."""

    executed: int = 0
    failed: int = 0
    skipped: int = 0
    total: int = 0
    errors: list[dict[str, str]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class BatchExecutor:
    def __init__(
        self,
        service: DeletionService = deletion_service,
        store: DeletionOperations = deletion_ops,
        audit: AuditOperations = audit_ops,
        session_factory: Any = async_session_maker,
        dispatcher: NotificationDispatcher = notification_dispatcher,
        batch_size: int = BATCH_SIZE,
    ) -> None:
        self.service = service
        self.store = store
        self.audit = audit
        self.session_factory = session_factory
        self.dispatcher = dispatcher
        self.batch_size = batch_size

    async def execute_pending(self, now: datetime | None = None) -> BatchReport:
        """
        Execute every confirmed request whose scheduled time has passed.

        Due requests are fetched a page at a time until none are left.
        Requests already attempted in this sweep are excluded from later
        pages, so failures and rows locked elsewhere are not retried until
        the next sweep.
        """
        now = now or datetime.now(UTC)
        report = BatchReport()
        attempted: set[uuid_pkg.UUID] = set()

        while True:
            async with self.session_factory() as db:
                due_ids = await self.store.list_due_ids(
                    db, now, limit=self.batch_size, exclude=attempted
                )
            if not due_ids:
                break

            logger.info(f"[deletion] {len(due_ids)} deletion(s) due in this page")
            report.total += len(due_ids)

            for request_id in due_ids:
                attempted.add(request_id)
                outcome = await self._execute_one(request_id, now)
                if outcome is None:
                    report.skipped += 1
                elif outcome:
                    report.failed += 1
                    report.errors.append({"request_id": str(request_id), "error": outcome})
                else:
                    report.executed += 1

        if not report.total:
            logger.info("[deletion] No deletions due")
            return report

        logger.info(
            f"[deletion] Sweep finished: {report.executed} executed, "
            f"{report.failed} failed, {report.skipped} skipped of {report.total}"
        )
        return report

    async def execute_for_user(
        self,
        user_id: uuid_pkg.UUID,
        now: datetime | None = None,
    ) -> bool:
        """
        Admin override: execute the user's confirmed request now, ignoring
        the cooldown. Returns False when there is nothing to execute.
        """
        now = now or datetime.now(UTC)

        async with self.session_factory() as db:
            request = await self.store.get_confirmed_for_user(db, user_id)
            if request is None:
                logger.info(f"[deletion] No confirmed request to execute for {user_id}")
                return False
            request_id = request.id
            try:
                notifications = await self.service.execute(db, request, now)
                await db.commit()
            except Exception as e:
                await db.rollback()
                logger.exception(f"[deletion] Forced execution failed for {user_id}")
                await self._record_failure(request_id, user_id, str(e))
                raise

        self.dispatcher.dispatch_all(notifications)
        return True

    async def _execute_one(self, request_id: uuid_pkg.UUID, now: datetime) -> str | None:
        """
        Run one request in its own transaction.

        Returns "" on success, the error text on failure and None when the
        request was taken by another worker or is no longer due.
        """
        user_id: uuid_pkg.UUID | None = None
        async with self.session_factory() as db:
            try:
                request: DeletionRequest | None = await self.store.lock_due(db, request_id, now)
                if request is None:
                    return None
                user_id = request.user_id
                notifications = await self.service.execute(db, request, now)
                await db.commit()
            except Exception as e:
                await db.rollback()
                logger.exception(f"[deletion] Failed to execute request {request_id}")
                error = str(e) or e.__class__.__name__
            else:
                self.dispatcher.dispatch_all(notifications)
                return ""

        await self._record_failure(request_id, user_id, error)
        return error

    async def _record_failure(
        self,
        request_id: uuid_pkg.UUID,
        user_id: uuid_pkg.UUID | None,
        error: str,
    ) -> None:
        try:
            async with self.session_factory() as db:
                await self.audit.log(
                    db,
                    AuditAction.DELETION_FAILED,
                    user_id=user_id,
                    details={"request_id": str(request_id), "error": error[:500]},
                )
                await db.commit()
        except Exception:
            logger.exception(f"[deletion] Could not audit failure of {request_id}")


batch_executor = BatchExecutor()
