"""Domain operations for Account (user_profiles) model."""

import logging
import uuid as uuid_pkg
from datetime import datetime
from typing import Any

from sqlalchemy import func, select, text
from sqlalchemy.ext.asyncio import AsyncSession

from lifecycle.models.account import Account, SubscriptionTier
from lifecycle.models.deletion_request import DeletionType

logger = logging.getLogger(__name__)

# Stored procedures owned by the database; invoked as opaque RPCs.
_DELETION_RPC = {
    DeletionType.SOFT.value: "execute_soft_delete_user",
    DeletionType.HARD.value: "execute_hard_delete_user",
}


class AccountOperations:
    """Operations for the account profile rows."""

    async def get(self, db: AsyncSession, user_id: uuid_pkg.UUID) -> Account | None:
        """Get an account by its auth user id."""
        statement = select(Account).where(Account.user_id == user_id)
        result = await db.execute(statement)
        return result.scalar_one_or_none()

    async def get_by_stripe_customer(
        self,
        db: AsyncSession,
        stripe_customer_id: str,
    ) -> Account | None:
        """Get the account linked to a Stripe customer ID."""
        statement = select(Account).where(Account.stripe_customer_id == stripe_customer_id)
        result = await db.execute(statement)
        return result.scalar_one_or_none()

    async def get_by_email(self, db: AsyncSession, email: str) -> Account | None:
        """Case-insensitive lookup by email."""
        statement = select(Account).where(func.lower(Account.email) == email.strip().lower())
        result = await db.execute(statement)
        return result.scalars().first()

    async def get_unlinked(self, db: AsyncSession, limit: int = 500) -> list[Account]:
        """Accounts with an email but no Stripe customer link."""
        statement = (
            select(Account)
            .where(
                Account.stripe_customer_id.is_(None),  # type: ignore[union-attr]
                Account.email.is_not(None),  # type: ignore[union-attr]
            )
            .limit(limit)
        )
        result = await db.execute(statement)
        return list(result.scalars().all())

    async def link_customer(
        self,
        db: AsyncSession,
        account: Account,
        stripe_customer_id: str,
    ) -> Account:
        """Persist the Stripe customer ID onto the account."""
        account.stripe_customer_id = stripe_customer_id
        db.add(account)
        await db.flush()
        await db.refresh(account)
        return account

    async def update(
        self,
        db: AsyncSession,
        account: Account,
        updates: dict[str, Any],
    ) -> Account:
        """Apply updates. None values are written (used to clear links)."""
        for field, value in updates.items():
            setattr(account, field, value)
        db.add(account)
        await db.flush()
        await db.refresh(account)
        return account

    async def set_subscription_state(
        self,
        db: AsyncSession,
        account: Account,
        tier: str,
        stripe_subscription_id: str | None,
        end_date: datetime | None,
    ) -> Account:
        """Mirror gateway subscription state onto the account tier."""
        if tier == SubscriptionTier.PREMIUM.value:
            updates = {
                "subscription_tier": tier,
                "stripe_subscription_id": stripe_subscription_id,
                "subscription_end_date": end_date,
            }
        else:
            updates = {
                "subscription_tier": SubscriptionTier.FREE.value,
                "stripe_subscription_id": None,
                "subscription_end_date": end_date,
            }
        return await self.update(db, account, updates)

    async def execute_deletion_rpc(
        self,
        db: AsyncSession,
        user_id: uuid_pkg.UUID,
        deletion_type: str,
    ) -> bool:
        """
        Invoke the soft (anonymize) or hard (purge) deletion procedure.

        Returns the boolean the procedure reports. Unknown deletion types
        are rejected before touching the database.
        """
        function_name = _DELETION_RPC.get(deletion_type)
        if function_name is None:
            raise ValueError(f"Unknown deletion type: {deletion_type}")

        result = await db.execute(
            text(f"SELECT {function_name}(:p_user_id)"),
            {"p_user_id": user_id},
        )
        return bool(result.scalar())


account_ops = AccountOperations()
