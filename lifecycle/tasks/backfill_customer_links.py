"""
One-time backfill: link accounts to their Stripe customer by email.

Accounts created before checkout stored the customer id have no
stripe_customer_id, so their billing events go through the slower email
lookup. This applies the customer resolver's backfill in bulk.

Usage:
    python -m lifecycle.tasks.backfill_customer_links
    python -m lifecycle.tasks.backfill_customer_links --dry-run
"""

import asyncio
import logging
import sys

from stripe import StripeError

from lifecycle.core.database import direct_session_maker
from lifecycle.domain.account_operations import account_ops
from lifecycle.services.stripe_service import stripe_service

logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s")
logger = logging.getLogger(__name__)


async def backfill_customer_links(dry_run: bool = False) -> dict[str, int]:
    """Link every unlinked account whose email matches a Stripe customer."""
    logger.info("Starting customer link backfill...")

    linked_count = 0
    missing_count = 0
    error_count = 0

    async with direct_session_maker() as db:
        accounts = await account_ops.get_unlinked(db)
        logger.info(f"Found {len(accounts)} accounts without a customer link")

        for account in accounts:
            try:
                customer_id = await asyncio.to_thread(
                    stripe_service.find_customer_by_email, account.email or ""
                )
            except StripeError as e:
                logger.error(f"Stripe lookup failed for {account.user_id}: {e}")
                error_count += 1
                continue

            if not customer_id:
                missing_count += 1
                continue

            if await account_ops.get_by_stripe_customer(db, customer_id):
                logger.warning(f"Customer {customer_id} already linked elsewhere, skipping {account.user_id}")
                missing_count += 1
                continue

            if not dry_run:
                await account_ops.link_customer(db, account, customer_id)
            logger.info(f"Linked {account.user_id} -> {customer_id}")
            linked_count += 1

        if dry_run:
            await db.rollback()
        else:
            await db.commit()

    logger.info("=" * 60)
    logger.info("Backfill complete!" + (" (dry run)" if dry_run else ""))
    logger.info(f"  Accounts linked: {linked_count}")
    logger.info(f"  No matching customer: {missing_count}")
    logger.info(f"  Lookup errors: {error_count}")
    logger.info("=" * 60)
    return {"linked": linked_count, "missing": missing_count, "errors": error_count}


def main() -> None:
    """Run the backfill."""
    asyncio.run(backfill_customer_links(dry_run="--dry-run" in sys.argv))


if __name__ == "__main__":
    main()
