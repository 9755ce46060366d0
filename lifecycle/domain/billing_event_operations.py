"""Domain operations for the billing event log."""

import uuid as uuid_pkg
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from lifecycle.models.billing import BillingEvent


class BillingEventOperations:
    async def is_processed(self, db: AsyncSession, stripe_event_id: str) -> bool:
        """Check whether this gateway event id was already handled."""
        statement = select(BillingEvent.id).where(BillingEvent.stripe_event_id == stripe_event_id)
        result = await db.execute(statement)
        return result.scalar_one_or_none() is not None

    async def record(
        self,
        db: AsyncSession,
        stripe_event_id: str,
        event_type: str,
        user_id: uuid_pkg.UUID | None = None,
        outcome: str = "processed",
        payload: dict[str, Any] | None = None,
    ) -> BillingEvent:
        """Log a processed billing event for dedupe and audit trail."""
        event = BillingEvent(
            stripe_event_id=stripe_event_id,
            event_type=event_type,
            user_id=user_id,
            outcome=outcome,
            payload=payload,
        )
        db.add(event)
        await db.flush()
        return event


billing_event_ops = BillingEventOperations()
