"""Resolve a Stripe customer ID to an internal account."""

import asyncio
import logging

from sqlalchemy.ext.asyncio import AsyncSession
from stripe import StripeError

from lifecycle.core.exceptions import ExternalServiceError
from lifecycle.domain.account_operations import AccountOperations, account_ops
from lifecycle.models.account import Account
from lifecycle.services.stripe_service import StripeService, stripe_service

logger = logging.getLogger(__name__)


class CustomerResolver:
    """
    Two-tier lookup: stored customer ID first, then the customer's email.

    The first billing event for a new subscriber can arrive before checkout
    stored the customer ID, so the email path backfills the link.
    """

    def __init__(
        self,
        accounts: AccountOperations = account_ops,
        stripe: StripeService = stripe_service,
    ) -> None:
        self.accounts = accounts
        self.stripe = stripe

    async def resolve(self, db: AsyncSession, stripe_customer_id: str | None) -> Account | None:
        """
        Return the account for this customer, or None when it cannot be found.

        None is a soft failure: callers acknowledge the event without retrying.
        A gateway outage raises ExternalServiceError instead.
        """
        if not stripe_customer_id:
            return None

        account = await self.accounts.get_by_stripe_customer(db, stripe_customer_id)
        if account:
            return account

        try:
            email = await asyncio.to_thread(self.stripe.get_customer_email, stripe_customer_id)
        except StripeError as e:
            raise ExternalServiceError("stripe", str(e)) from e

        if not email:
            logger.warning(f"Customer {stripe_customer_id} has no email, cannot resolve account")
            return None

        account = await self.accounts.get_by_email(db, email)
        if account is None:
            logger.warning(f"No account for customer {stripe_customer_id} ({email})")
            return None

        if account.stripe_customer_id and account.stripe_customer_id != stripe_customer_id:
            logger.warning(
                f"Account {account.user_id} already linked to {account.stripe_customer_id}, "
                f"not relinking to {stripe_customer_id}"
            )
            return account

        logger.info(f"Backfilled customer {stripe_customer_id} onto account {account.user_id}")
        return await self.accounts.link_customer(db, account, stripe_customer_id)


customer_resolver = CustomerResolver()
