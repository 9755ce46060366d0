"""Pro-rata refund on subscription cancellation."""

import asyncio
import logging
from dataclasses import asdict, dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

from stripe import StripeError

from lifecycle.config import settings
from lifecycle.core.exceptions import ExternalServiceError
from lifecycle.services.stripe_service import StripeService, stripe_service

logger = logging.getLogger(__name__)

REASON_NOT_ACTIVE = "not active"
REASON_NO_PAID_INVOICES = "no paid invoices"
REASON_INVOICE_TOO_OLD = "invoice too old"
REASON_NO_CHARGE = "no charge on invoice"
REASON_PERIOD_USED = "period mostly used"


@dataclass
class RefundOutcome:
    """Result of a refund attempt. Ephemeral; only the deletion flow stores a copy."""

    refunded: bool
    amount: int | None = None
    refund_id: str | None = None
    currency: str | None = None
    reason: str | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def subscription_period(subscription: dict[str, Any]) -> tuple[int | None, int | None]:
    """
    Current period bounds (unix seconds) of a Stripe subscription.

    Newer API versions report the period on the subscription items rather
    than on the subscription itself.
    """
    start = subscription.get("current_period_start")
    end = subscription.get("current_period_end")
    if start is None or end is None:
        items = (subscription.get("items") or {}).get("data") or []
        if items:
            start = start if start is not None else items[0].get("current_period_start")
            end = end if end is not None else items[0].get("current_period_end")
    return start, end


def unused_ratio(period_start: int, period_end: int, now: int) -> float:
    """Fraction of the period still ahead of ``now``, clamped to [0, 1]."""
    total = period_end - period_start
    if total <= 0:
        return 0.0
    return min(1.0, max(0.0, (period_end - now) / total))


def prorated_amount(amount_paid: int, period_start: int, period_end: int, now: int) -> int:
    """floor(amount_paid * unused_ratio) in integer arithmetic."""
    total = period_end - period_start
    if total <= 0 or amount_paid <= 0:
        return 0
    remaining = min(total, max(0, period_end - now))
    return (amount_paid * remaining) // total


class RefundCalculator:
    """
    Cancels a subscription immediately and refunds the unused part of the
    latest paid invoice.

    Gateway failures raise ExternalServiceError; every business exit is
    a RefundOutcome with refunded=False and a reason.
    """

    def __init__(
        self,
        stripe: StripeService = stripe_service,
        max_invoice_age_days: int | None = None,
    ) -> None:
        self.stripe = stripe
        self.max_invoice_age = timedelta(
            days=max_invoice_age_days
            if max_invoice_age_days is not None
            else settings.refund_max_invoice_age_days
        )

    async def refund_subscription(
        self,
        stripe_subscription_id: str,
        now: datetime | None = None,
    ) -> RefundOutcome:
        now = now or datetime.now(UTC)
        try:
            return await self._refund(stripe_subscription_id, now)
        except StripeError as e:
            raise ExternalServiceError("stripe", str(e)) from e

    async def _refund(self, stripe_subscription_id: str, now: datetime) -> RefundOutcome:
        subscription = await asyncio.to_thread(self.stripe.get_subscription, stripe_subscription_id)
        if subscription.get("status") != "active":
            logger.info(
                f"Subscription {stripe_subscription_id} is {subscription.get('status')}, no refund"
            )
            return RefundOutcome(refunded=False, reason=REASON_NOT_ACTIVE)

        await asyncio.to_thread(self.stripe.cancel_subscription_now, stripe_subscription_id)

        customer_id = subscription.get("customer")
        invoices = await asyncio.to_thread(
            self.stripe.list_paid_invoices, customer_id, stripe_subscription_id, 5
        )
        if not invoices:
            return RefundOutcome(refunded=False, reason=REASON_NO_PAID_INVOICES)

        latest = invoices[0]
        created = datetime.fromtimestamp(latest.get("created") or 0, tz=UTC)
        if now - created > self.max_invoice_age:
            logger.info(
                f"Latest invoice {latest.get('id')} is {(now - created).days} days old, no refund"
            )
            return RefundOutcome(refunded=False, reason=REASON_INVOICE_TOO_OLD)

        charge = latest.get("charge")
        payment_intent = latest.get("payment_intent")
        if not charge and not payment_intent:
            return RefundOutcome(refunded=False, reason=REASON_NO_CHARGE)

        period_start, period_end = subscription_period(subscription)
        if period_start is None or period_end is None:
            return RefundOutcome(refunded=False, reason=REASON_PERIOD_USED)

        now_ts = int(now.timestamp())
        amount_paid = int(latest.get("amount_paid") or 0)
        ratio = unused_ratio(period_start, period_end, now_ts)
        amount = prorated_amount(amount_paid, period_start, period_end, now_ts)
        if amount <= 0:
            return RefundOutcome(refunded=False, reason=REASON_PERIOD_USED)

        refund = await asyncio.to_thread(
            self.stripe.create_refund,
            amount,
            {
                "reason": "account_deletion",
                "user_deletion": "true",
                "unused_ratio": f"{ratio:.4f}",
                "original_amount": str(amount_paid),
            },
            charge,
            payment_intent,
        )
        currency = latest.get("currency")
        logger.info(
            f"Refunded {amount} {currency} on {stripe_subscription_id} ({round(ratio * 100)}% unused)"
        )
        return RefundOutcome(
            refunded=True,
            amount=amount,
            refund_id=refund.get("id"),
            currency=currency,
            reason=f"Pro rata refund for unused subscription period ({round(ratio * 100)}%)",
        )


refund_calculator = RefundCalculator()
