"""Domain operations for SubscriptionRecord model."""

import uuid as uuid_pkg
from datetime import datetime
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from lifecycle.models.subscription import SubscriptionRecord, SubscriptionStatus

# Columns the reconciler owns; everything else (id, created_at,
# confirmation_sent_at) survives an upsert untouched.
_UPSERT_COLUMNS = (
    "user_id",
    "stripe_customer_id",
    "stripe_price_id",
    "status",
    "current_period_start",
    "current_period_end",
    "cancel_at_period_end",
    "canceled_at",
    "trial_start",
    "trial_end",
    "metadata",
)


class SubscriptionOperations:
    """
    Operations for Stripe subscription mirrors.

    Note: This doesn't extend BaseOperations because records are keyed
    by the gateway's subscription id and written through upserts.
    """

    def __init__(self) -> None:
        self.model = SubscriptionRecord

    async def get_by_stripe_id(
        self,
        db: AsyncSession,
        stripe_subscription_id: str,
    ) -> SubscriptionRecord | None:
        statement = select(SubscriptionRecord).where(
            SubscriptionRecord.stripe_subscription_id == stripe_subscription_id
        )
        result = await db.execute(statement)
        return result.scalar_one_or_none()

    async def exists_for_user(self, db: AsyncSession, user_id: uuid_pkg.UUID) -> bool:
        """Whether the account has ever had a subscription record."""
        statement = select(SubscriptionRecord.id).where(SubscriptionRecord.user_id == user_id).limit(1)
        result = await db.execute(statement)
        return result.scalar_one_or_none() is not None

    async def get_active_for_user(
        self,
        db: AsyncSession,
        user_id: uuid_pkg.UUID,
    ) -> SubscriptionRecord | None:
        """Most recent active or trialing subscription for the account."""
        statement = (
            select(SubscriptionRecord)
            .where(
                SubscriptionRecord.user_id == user_id,
                SubscriptionRecord.status.in_(  # type: ignore[attr-defined]
                    [SubscriptionStatus.ACTIVE.value, SubscriptionStatus.TRIALING.value]
                ),
            )
            .order_by(SubscriptionRecord.created_at.desc())  # type: ignore[attr-defined]
            .limit(1)
        )
        result = await db.execute(statement)
        return result.scalar_one_or_none()

    async def get_latest_for_user(
        self,
        db: AsyncSession,
        user_id: uuid_pkg.UUID,
    ) -> SubscriptionRecord | None:
        """Most recently created subscription for the account, in any status."""
        statement = (
            select(SubscriptionRecord)
            .where(SubscriptionRecord.user_id == user_id)
            .order_by(SubscriptionRecord.created_at.desc())  # type: ignore[attr-defined]
            .limit(1)
        )
        result = await db.execute(statement)
        return result.scalar_one_or_none()

    async def upsert(
        self,
        db: AsyncSession,
        values: dict[str, Any],
    ) -> SubscriptionRecord:
        """
        Create or update a subscription keyed by stripe_subscription_id.

        Uses PostgreSQL's INSERT ... ON CONFLICT DO UPDATE, so applying the
        same event twice yields the same stored row.

        Args:
            db: Database session
            values: Column values; must include stripe_subscription_id.
                The JSON metadata column is passed as "metadata".

        Returns:
            The created or updated SubscriptionRecord
        """
        stmt = insert(SubscriptionRecord).values(**values)
        set_: dict[str, Any] = {
            column: stmt.excluded[column] for column in _UPSERT_COLUMNS if column in values
        }
        # onupdate does not fire on the ON CONFLICT path
        set_["updated_at"] = func.now()
        stmt = (
            stmt.on_conflict_do_update(index_elements=["stripe_subscription_id"], set_=set_)
            .returning(SubscriptionRecord)
            # A row already loaded in this session must take the RETURNING values
            .execution_options(populate_existing=True)
        )

        result = await db.execute(stmt)
        await db.flush()

        return result.scalar_one()

    async def mark_confirmation_sent(
        self,
        db: AsyncSession,
        stripe_subscription_id: str,
        sent_at: datetime,
    ) -> None:
        stmt = (
            update(SubscriptionRecord)
            .where(SubscriptionRecord.stripe_subscription_id == stripe_subscription_id)
            .values(confirmation_sent_at=sent_at)
        )
        await db.execute(stmt)

    async def mark_canceled(
        self,
        db: AsyncSession,
        stripe_subscription_id: str,
        canceled_at: datetime,
    ) -> None:
        """Reflect a cancellation we issued ourselves, ahead of the webhook."""
        stmt = (
            update(SubscriptionRecord)
            .where(SubscriptionRecord.stripe_subscription_id == stripe_subscription_id)
            .values(
                status=SubscriptionStatus.CANCELED.value,
                canceled_at=canceled_at,
                cancel_at_period_end=False,
            )
        )
        await db.execute(stmt)

    async def mark_cancel_at_period_end(
        self,
        db: AsyncSession,
        stripe_subscription_id: str,
    ) -> None:
        """Reflect a period-end cancellation we scheduled ourselves, ahead of the webhook."""
        stmt = (
            update(SubscriptionRecord)
            .where(SubscriptionRecord.stripe_subscription_id == stripe_subscription_id)
            .values(cancel_at_period_end=True)
        )
        await db.execute(stmt)


subscription_ops = SubscriptionOperations()
