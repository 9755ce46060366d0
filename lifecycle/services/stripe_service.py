"""Stripe payment service for subscription cancellation, refunds and webhooks."""

import json
import logging
from typing import Any

import stripe
from stripe import StripeError

from lifecycle.config import settings

logger = logging.getLogger(__name__)

# Initialize Stripe with secret key
stripe.api_key = settings.stripe_secret_key


def _to_plain(obj: Any) -> dict[str, Any]:
    """Convert a StripeObject (and everything nested in it) to plain dicts."""
    return json.loads(str(obj))


class StripeService:
    """
    Handles all Stripe API interactions.

    All methods are static, stateless and synchronous; async callers run
    them through asyncio.to_thread. Failures are logged and re-raised as
    StripeError so callers decide whether they are fatal.
    """

    @staticmethod
    def construct_webhook_event(payload: bytes, signature: str) -> dict[str, Any]:
        """
        Verify and construct a webhook event from Stripe.

        Raises ValueError if signature verification fails.
        """
        try:
            stripe.Webhook.construct_event(  # type: ignore[no-untyped-call]
                payload,
                signature,
                settings.stripe_webhook_secret,
            )
        except stripe.error.SignatureVerificationError as e:
            logger.warning(f"Webhook signature verification failed: {e}")
            raise ValueError("Invalid webhook signature") from None
        except ValueError as e:
            logger.warning(f"Invalid webhook payload: {e}")
            raise ValueError("Invalid webhook payload") from None
        # Signature is verified; the raw body is the authoritative event.
        return json.loads(payload)

    @staticmethod
    def get_customer_email(stripe_customer_id: str) -> str | None:
        """Fetch the email Stripe holds for a customer (None if deleted or unset)."""
        try:
            customer = _to_plain(stripe.Customer.retrieve(stripe_customer_id))
        except StripeError as e:
            logger.error(f"Failed to retrieve customer {stripe_customer_id}: {e}")
            raise
        if customer.get("deleted"):
            return None
        return customer.get("email")

    @staticmethod
    def find_customer_by_email(email: str) -> str | None:
        """Return the ID of the first Stripe customer with this email."""
        try:
            customers = stripe.Customer.list(email=email, limit=1)
        except StripeError as e:
            logger.error(f"Failed to search customers by email: {e}")
            raise
        data = _to_plain(customers).get("data") or []
        return data[0]["id"] if data else None

    @staticmethod
    def get_subscription(stripe_subscription_id: str) -> dict[str, Any]:
        """Retrieve a Stripe subscription by ID."""
        try:
            return _to_plain(stripe.Subscription.retrieve(stripe_subscription_id))
        except StripeError as e:
            logger.error(f"Failed to retrieve subscription {stripe_subscription_id}: {e}")
            raise

    @staticmethod
    def cancel_subscription_now(stripe_subscription_id: str) -> dict[str, Any]:
        """Cancel a subscription immediately, without proration."""
        try:
            sub = stripe.Subscription.cancel(stripe_subscription_id, prorate=False)
            logger.info(f"Cancelled subscription {stripe_subscription_id} immediately")
            return _to_plain(sub)
        except StripeError as e:
            logger.error(f"Failed to cancel subscription {stripe_subscription_id}: {e}")
            raise

    @staticmethod
    def cancel_at_period_end(
        stripe_subscription_id: str,
        metadata: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        """Schedule cancellation at the end of the current billing period."""
        try:
            sub = stripe.Subscription.modify(
                stripe_subscription_id,
                cancel_at_period_end=True,
                metadata=metadata or {},
            )
            logger.info(f"Marked subscription {stripe_subscription_id} for cancellation")
            return _to_plain(sub)
        except StripeError as e:
            logger.error(f"Failed to cancel subscription {stripe_subscription_id}: {e}")
            raise

    @staticmethod
    def list_paid_invoices(
        stripe_customer_id: str,
        stripe_subscription_id: str,
        limit: int = 5,
    ) -> list[dict[str, Any]]:
        """Paid invoices for a customer's subscription, newest first."""
        try:
            invoices = stripe.Invoice.list(
                customer=stripe_customer_id,
                subscription=stripe_subscription_id,
                status="paid",
                limit=limit,
            )
        except StripeError as e:
            logger.error(f"Failed to list invoices for {stripe_subscription_id}: {e}")
            raise
        data = _to_plain(invoices).get("data") or []
        return sorted(data, key=lambda inv: inv.get("created") or 0, reverse=True)

    @staticmethod
    def create_refund(
        amount: int,
        metadata: dict[str, str],
        charge: str | None = None,
        payment_intent: str | None = None,
    ) -> dict[str, Any]:
        """Issue a partial refund against a charge (or its payment intent)."""
        params: dict[str, Any] = {
            "amount": amount,
            "reason": "requested_by_customer",
            "metadata": metadata,
        }
        if charge:
            params["charge"] = charge
        elif payment_intent:
            params["payment_intent"] = payment_intent
        else:
            raise ValueError("Refund needs a charge or payment intent")

        try:
            refund = stripe.Refund.create(**params)
            logger.info(f"Created refund {refund.id} for {amount} (charge={charge})")
            return _to_plain(refund)
        except StripeError as e:
            logger.error(f"Failed to create refund: {e}")
            raise


# Singleton instance
stripe_service = StripeService()
