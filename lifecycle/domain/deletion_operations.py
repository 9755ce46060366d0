"""Domain operations for DeletionRequest model."""

import uuid as uuid_pkg
from collections.abc import Collection
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from lifecycle.models.deletion_request import LIVE_STATUSES, DeletionRequest, DeletionStatus


@dataclass
class DeletionQueueStats:
    """Counts reported by the maintenance status endpoint."""

    active_requests: int
    ready_for_deletion: int
    expired_requests: int


class DeletionOperations:
    """Queries and writes for account deletion requests."""

    async def get(self, db: AsyncSession, id: uuid_pkg.UUID) -> DeletionRequest | None:
        statement = select(DeletionRequest).where(DeletionRequest.id == id)
        result = await db.execute(statement)
        return result.scalar_one_or_none()

    async def get_live_for_user(
        self,
        db: AsyncSession,
        user_id: uuid_pkg.UUID,
        for_update: bool = False,
    ) -> DeletionRequest | None:
        """The user's pending or confirmed request, if any."""
        statement = select(DeletionRequest).where(
            DeletionRequest.user_id == user_id,
            DeletionRequest.status.in_(LIVE_STATUSES),  # type: ignore[attr-defined]
        )
        if for_update:
            statement = statement.with_for_update()
        result = await db.execute(statement)
        return result.scalars().first()

    async def get_by_token(
        self,
        db: AsyncSession,
        token: str,
        for_update: bool = False,
    ) -> DeletionRequest | None:
        statement = select(DeletionRequest).where(DeletionRequest.confirmation_token == token)
        if for_update:
            statement = statement.with_for_update()
        result = await db.execute(statement)
        return result.scalar_one_or_none()

    async def create(self, db: AsyncSession, values: dict[str, Any]) -> DeletionRequest:
        request = DeletionRequest(**values)
        db.add(request)
        await db.flush()
        await db.refresh(request)
        return request

    async def update(
        self,
        db: AsyncSession,
        request: DeletionRequest,
        updates: dict[str, Any],
    ) -> DeletionRequest:
        for field, value in updates.items():
            setattr(request, field, value)
        db.add(request)
        await db.flush()
        await db.refresh(request)
        return request

    async def list_due_ids(
        self,
        db: AsyncSession,
        now: datetime,
        limit: int = 100,
        exclude: Collection[uuid_pkg.UUID] = (),
    ) -> list[uuid_pkg.UUID]:
        """IDs of confirmed requests whose scheduled time has passed, oldest first."""
        statement = select(DeletionRequest.id).where(
            DeletionRequest.status == DeletionStatus.CONFIRMED.value,
            DeletionRequest.scheduled_deletion_at <= now,  # type: ignore[operator]
        )
        if exclude:
            statement = statement.where(DeletionRequest.id.not_in(list(exclude)))  # type: ignore[union-attr]
        statement = statement.order_by(DeletionRequest.scheduled_deletion_at).limit(limit)
        result = await db.execute(statement)
        return list(result.scalars().all())

    async def lock_due(
        self,
        db: AsyncSession,
        id: uuid_pkg.UUID,
        now: datetime,
    ) -> DeletionRequest | None:
        """
        Re-select a due request under a row lock.

        Returns None if another worker holds it or it is no longer
        confirmed, so a concurrent sweep never executes it twice.
        """
        statement = (
            select(DeletionRequest)
            .where(
                DeletionRequest.id == id,
                DeletionRequest.status == DeletionStatus.CONFIRMED.value,
                DeletionRequest.scheduled_deletion_at <= now,  # type: ignore[operator]
            )
            .with_for_update(skip_locked=True)
        )
        result = await db.execute(statement)
        return result.scalar_one_or_none()

    async def get_confirmed_for_user(
        self,
        db: AsyncSession,
        user_id: uuid_pkg.UUID,
    ) -> DeletionRequest | None:
        statement = (
            select(DeletionRequest)
            .where(
                DeletionRequest.user_id == user_id,
                DeletionRequest.status == DeletionStatus.CONFIRMED.value,
            )
            .with_for_update(skip_locked=True)
        )
        result = await db.execute(statement)
        return result.scalar_one_or_none()

    async def delete_expired_pending(self, db: AsyncSession, cutoff: datetime) -> int:
        """Remove pending requests created before the cutoff that were never confirmed."""
        statement = delete(DeletionRequest).where(
            DeletionRequest.status == DeletionStatus.PENDING.value,
            DeletionRequest.created_at < cutoff,  # type: ignore[operator]
            DeletionRequest.confirmed_at.is_(None),  # type: ignore[union-attr]
        )
        result = await db.execute(statement)
        return result.rowcount or 0

    async def queue_stats(
        self,
        db: AsyncSession,
        now: datetime,
        expiry_cutoff: datetime,
    ) -> DeletionQueueStats:
        active = await db.execute(
            select(func.count())
            .select_from(DeletionRequest)
            .where(DeletionRequest.status.in_(LIVE_STATUSES))  # type: ignore[attr-defined]
        )
        ready = await db.execute(
            select(func.count())
            .select_from(DeletionRequest)
            .where(
                DeletionRequest.status == DeletionStatus.CONFIRMED.value,
                DeletionRequest.scheduled_deletion_at <= now,  # type: ignore[operator]
            )
        )
        expired = await db.execute(
            select(func.count())
            .select_from(DeletionRequest)
            .where(
                DeletionRequest.status == DeletionStatus.PENDING.value,
                DeletionRequest.created_at < expiry_cutoff,  # type: ignore[operator]
            )
        )
        return DeletionQueueStats(
            active_requests=active.scalar_one(),
            ready_for_deletion=ready.scalar_one(),
            expired_requests=expired.scalar_one(),
        )


deletion_ops = DeletionOperations()
