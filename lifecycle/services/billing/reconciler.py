"""Reconcile Stripe billing events into local subscription and invoice state.

Every handler has the same shape: resolve the account from the event's
customer, upsert the record keyed by its Stripe ID, then decide at most one
lifecycle email. Handlers return the notifications they want sent; the
webhook ingestor dispatches them after the transaction commits.
"""

import logging
import uuid as uuid_pkg
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from lifecycle.config.plans import get_plan, tier_for_subscription_status
from lifecycle.domain.account_operations import AccountOperations, account_ops
from lifecycle.domain.invoice_operations import InvoiceOperations, invoice_ops
from lifecycle.domain.subscription_operations import SubscriptionOperations, subscription_ops
from lifecycle.models.account import Account, SubscriptionTier
from lifecycle.models.subscription import SubscriptionRecord
from lifecycle.services.billing.customer_resolver import CustomerResolver, customer_resolver
from lifecycle.services.billing.refunds import subscription_period
from lifecycle.services.crm.brevo import ContactSnapshot
from lifecycle.services.email.templates import EmailKind
from lifecycle.services.notifications import CrmSync, EmailNotification, Notification

logger = logging.getLogger(__name__)


# ─────────────────────────────────────────────────────────────────────────────
# Results and the email decision table
# ─────────────────────────────────────────────────────────────────────────────


@dataclass
class ReconcileResult:
    """What a handler did with one event."""

    outcome: str  # "processed" | "unresolved" | "ignored"
    user_id: uuid_pkg.UUID | None = None
    email: EmailKind | None = None
    notifications: list[Notification] = field(default_factory=list)

    @property
    def handled(self) -> bool:
        return self.outcome != "ignored"


@dataclass
class TransitionFacts:
    """Inputs to the lifecycle email decision, captured before the upsert."""

    subscription_status: str | None = None
    cancel_at_period_end: bool = False
    had_prior_subscription: bool = True
    was_cancel_at_period_end: bool = False
    invoice_status: str | None = None
    invoice_is_subscription: bool = False
    invoice_attempt_count: int = 0
    confirmation_pending: bool = False


def decide_lifecycle_email(facts: TransitionFacts) -> EmailKind | None:
    """
    Pick at most one lifecycle email. Rules are evaluated in order and the
    first match wins.

    - active + cancel at period end (newly set): subscription cancelled
    - active + not cancelling + account had no subscription before: confirmed
    - paid subscription invoice whose subscription never got a confirmation: confirmed
    - open invoice with at least one failed attempt: payment failed
    """
    if facts.subscription_status == "active" and facts.cancel_at_period_end:
        if not facts.was_cancel_at_period_end:
            return EmailKind.SUBSCRIPTION_CANCELLED
        return None
    if (
        facts.subscription_status == "active"
        and not facts.cancel_at_period_end
        and not facts.had_prior_subscription
    ):
        return EmailKind.SUBSCRIPTION_CONFIRMED
    if facts.invoice_status == "paid" and facts.invoice_is_subscription and facts.confirmation_pending:
        return EmailKind.SUBSCRIPTION_CONFIRMED
    if facts.invoice_status == "open" and facts.invoice_attempt_count > 0:
        return EmailKind.PAYMENT_FAILED
    return None


# ─────────────────────────────────────────────────────────────────────────────
# Stripe payload helpers
# ─────────────────────────────────────────────────────────────────────────────


def _ts(value: Any) -> datetime | None:
    """Stripe timestamps are unix seconds."""
    if value is None:
        return None
    return datetime.fromtimestamp(int(value), tz=UTC)


def _id(value: Any) -> str | None:
    """Stripe fields may be an ID string or an expanded object."""
    if isinstance(value, dict):
        return value.get("id")
    return value


def is_subscription_invoice(invoice: dict[str, Any]) -> bool:
    description = (invoice.get("description") or "").lower()
    billing_reason = invoice.get("billing_reason") or ""
    return "subscription" in description or billing_reason.startswith("subscription")


def invoice_subscription_id(invoice: dict[str, Any]) -> str | None:
    """Subscription of an invoice (top-level on older API versions, under parent on newer)."""
    sub_id = _id(invoice.get("subscription"))
    if sub_id:
        return sub_id
    parent = invoice.get("parent") or {}
    details = parent.get("subscription_details") or {}
    return _id(details.get("subscription"))


def subscription_values(sub: dict[str, Any], user_id: uuid_pkg.UUID) -> dict[str, Any]:
    """Column values for a subscription upsert."""
    items = (sub.get("items") or {}).get("data") or []
    first_item = items[0] if items else {}
    price = first_item.get("price") or {}

    period_start, period_end = subscription_period(sub)

    return {
        "user_id": user_id,
        "stripe_customer_id": _id(sub.get("customer")),
        "stripe_subscription_id": sub["id"],
        "stripe_price_id": _id(price) if price else None,
        "status": sub.get("status", ""),
        "current_period_start": _ts(period_start),
        "current_period_end": _ts(period_end),
        "cancel_at_period_end": bool(sub.get("cancel_at_period_end", False)),
        "canceled_at": _ts(sub.get("canceled_at")),
        "trial_start": _ts(sub.get("trial_start")),
        "trial_end": _ts(sub.get("trial_end")),
        "metadata": sub.get("metadata") or {},
    }


def invoice_values(invoice: dict[str, Any], user_id: uuid_pkg.UUID) -> dict[str, Any]:
    """Column values for an invoice upsert."""
    return {
        "user_id": user_id,
        "stripe_invoice_id": invoice["id"],
        "stripe_subscription_id": invoice_subscription_id(invoice),
        "stripe_customer_id": _id(invoice.get("customer")),
        "amount_due": int(invoice.get("amount_due") or 0),
        "amount_paid": int(invoice.get("amount_paid") or 0),
        "amount_remaining": int(invoice.get("amount_remaining") or 0),
        "currency": invoice.get("currency") or "eur",
        "status": invoice.get("status") or "draft",
        "description": (invoice.get("description") or None),
        "billing_reason": invoice.get("billing_reason"),
        "period_start": _ts(invoice.get("period_start")),
        "period_end": _ts(invoice.get("period_end")),
        "hosted_invoice_url": invoice.get("hosted_invoice_url"),
        "invoice_pdf": invoice.get("invoice_pdf"),
        "attempt_count": int(invoice.get("attempt_count") or 0),
    }


def _crm_sync(account: Account) -> CrmSync | None:
    if not account.email:
        return None
    return CrmSync(
        ContactSnapshot(
            email=account.email,
            first_name=account.first_name,
            last_name=account.last_name,
            subscription_tier=account.subscription_tier,
            language=account.language,
        )
    )


def _email(kind: EmailKind, account: Account, context: dict[str, Any]) -> EmailNotification | None:
    if not account.email:
        logger.warning(f"Account {account.user_id} has no email, skipping {kind.value}")
        return None
    return EmailNotification(
        kind=kind,
        to=account.email,
        language=account.language,
        context={"name": account.display_name, **context},
    )


Handler = Callable[[AsyncSession, dict[str, Any]], Awaitable[ReconcileResult]]


# ─────────────────────────────────────────────────────────────────────────────
# Reconciler
# ─────────────────────────────────────────────────────────────────────────────


class BillingReconciler:
    """Dispatches billing events by type to independent handlers."""

    def __init__(
        self,
        resolver: CustomerResolver = customer_resolver,
        accounts: AccountOperations = account_ops,
        subscriptions: SubscriptionOperations = subscription_ops,
        invoices: InvoiceOperations = invoice_ops,
    ) -> None:
        self.resolver = resolver
        self.accounts = accounts
        self.subscriptions = subscriptions
        self.invoices = invoices
        self.handlers: dict[str, Handler] = {
            "checkout.session.completed": self.checkout_completed,
            "customer.subscription.created": self.subscription_created,
            "customer.subscription.updated": self.subscription_updated,
            "customer.subscription.deleted": self.subscription_deleted,
            "customer.subscription.trial_will_end": self.trial_will_end,
            "invoice.created": self.invoice_created,
            "invoice.updated": self.invoice_updated,
            "invoice.payment_succeeded": self.invoice_payment_succeeded,
            "invoice.payment_failed": self.invoice_payment_failed,
            "customer.updated": self.customer_updated,
        }

    async def reconcile(
        self,
        db: AsyncSession,
        event_type: str,
        obj: dict[str, Any],
    ) -> ReconcileResult:
        handler = self.handlers.get(event_type)
        if handler is None:
            logger.debug(f"Unhandled webhook event type: {event_type}")
            return ReconcileResult(outcome="ignored")
        return await handler(db, obj)

    # ── checkout / customer ─────────────────────────────────────────────────

    async def checkout_completed(self, db: AsyncSession, session: dict[str, Any]) -> ReconcileResult:
        """Link the checkout's customer to the account named in its metadata."""
        customer_id = _id(session.get("customer"))
        metadata = session.get("metadata") or {}
        raw_user_id = metadata.get("user_id") or metadata.get("userId")
        if not customer_id or not raw_user_id:
            logger.info("Checkout session without customer or user metadata, nothing to link")
            return ReconcileResult(outcome="unresolved")

        try:
            user_id = uuid_pkg.UUID(str(raw_user_id))
        except ValueError:
            logger.warning(f"Checkout session carries invalid user_id {raw_user_id!r}")
            return ReconcileResult(outcome="unresolved")

        account = await self.accounts.get(db, user_id)
        if account is None:
            logger.warning(f"Checkout completed for unknown account {user_id}")
            return ReconcileResult(outcome="unresolved")

        if account.stripe_customer_id != customer_id:
            await self.accounts.link_customer(db, account, customer_id)
            logger.info(f"Linked customer {customer_id} to account {user_id} at checkout")
        return ReconcileResult(outcome="processed", user_id=user_id)

    async def customer_updated(self, db: AsyncSession, customer: dict[str, Any]) -> ReconcileResult:
        account = await self.resolver.resolve(db, customer.get("id"))
        if account is None:
            return ReconcileResult(outcome="unresolved")
        result = ReconcileResult(outcome="processed", user_id=account.user_id)
        sync = _crm_sync(account)
        if sync:
            result.notifications.append(sync)
        return result

    # ── subscriptions ───────────────────────────────────────────────────────

    async def subscription_created(self, db: AsyncSession, sub: dict[str, Any]) -> ReconcileResult:
        return await self._reconcile_subscription(db, sub)

    async def subscription_updated(self, db: AsyncSession, sub: dict[str, Any]) -> ReconcileResult:
        return await self._reconcile_subscription(db, sub)

    async def subscription_deleted(self, db: AsyncSession, sub: dict[str, Any]) -> ReconcileResult:
        return await self._reconcile_subscription(db, sub)

    async def trial_will_end(self, db: AsyncSession, sub: dict[str, Any]) -> ReconcileResult:
        result = await self._reconcile_subscription(db, sub)
        if result.user_id:
            logger.info(f"Trial ending soon for account {result.user_id}")
        return result

    async def _reconcile_subscription(self, db: AsyncSession, sub: dict[str, Any]) -> ReconcileResult:
        account = await self.resolver.resolve(db, _id(sub.get("customer")))
        if account is None:
            return ReconcileResult(outcome="unresolved")

        stripe_subscription_id = sub["id"]

        # Read pre-upsert state; after the upsert the account always has a record.
        had_prior = await self.subscriptions.exists_for_user(db, account.user_id)
        previous = await self.subscriptions.get_by_stripe_id(db, stripe_subscription_id)
        # The upsert refreshes `previous` in place, so copy what the decision needs now
        was_cancelling = bool(previous and previous.cancel_at_period_end)

        values = subscription_values(sub, account.user_id)
        record = await self.subscriptions.upsert(db, values)
        await self._mirror_tier(db, account, record)

        facts = TransitionFacts(
            subscription_status=record.status,
            cancel_at_period_end=record.cancel_at_period_end,
            had_prior_subscription=had_prior,
            was_cancel_at_period_end=was_cancelling,
        )
        kind = decide_lifecycle_email(facts)
        result = ReconcileResult(outcome="processed", user_id=account.user_id, email=kind)

        if kind == EmailKind.SUBSCRIPTION_CONFIRMED:
            await self.subscriptions.mark_confirmation_sent(
                db, stripe_subscription_id, datetime.now(UTC)
            )
        if kind is not None:
            email = _email(kind, account, self._subscription_context(record))
            if email:
                result.notifications.append(email)

        sync = _crm_sync(account)
        if sync:
            result.notifications.append(sync)

        logger.info(
            f"Reconciled subscription {stripe_subscription_id} ({record.status}) "
            f"for account {account.user_id}, email={kind.value if kind else None}"
        )
        return result

    async def _mirror_tier(
        self,
        db: AsyncSession,
        account: Account,
        record: SubscriptionRecord,
    ) -> None:
        """Reflect subscription status onto the account tier."""
        tier = tier_for_subscription_status(record.status)
        if tier == SubscriptionTier.PREMIUM.value:
            await self.accounts.set_subscription_state(
                db, account, tier, record.stripe_subscription_id, record.current_period_end
            )
        elif account.stripe_subscription_id in (None, record.stripe_subscription_id):
            # Only downgrade when this is the account's current subscription
            await self.accounts.set_subscription_state(
                db, account, tier, None, record.canceled_at or record.current_period_end
            )

    @staticmethod
    def _subscription_context(record: SubscriptionRecord) -> dict[str, Any]:
        end = record.current_period_end
        return {
            "max_letters": get_plan(SubscriptionTier.PREMIUM.value).max_letters,
            "end_date": end.strftime("%d/%m/%Y") if end else "",
        }

    # ── invoices ────────────────────────────────────────────────────────────

    async def invoice_created(self, db: AsyncSession, invoice: dict[str, Any]) -> ReconcileResult:
        return await self._reconcile_invoice(db, invoice)

    async def invoice_updated(self, db: AsyncSession, invoice: dict[str, Any]) -> ReconcileResult:
        return await self._reconcile_invoice(db, invoice)

    async def invoice_payment_succeeded(
        self, db: AsyncSession, invoice: dict[str, Any]
    ) -> ReconcileResult:
        return await self._reconcile_invoice(db, invoice)

    async def invoice_payment_failed(
        self, db: AsyncSession, invoice: dict[str, Any]
    ) -> ReconcileResult:
        result = await self._reconcile_invoice(db, invoice)
        if result.user_id:
            logger.warning(f"Payment failed for account {result.user_id} ({invoice.get('id')})")
        return result

    async def _reconcile_invoice(self, db: AsyncSession, invoice: dict[str, Any]) -> ReconcileResult:
        account = await self.resolver.resolve(db, _id(invoice.get("customer")))
        if account is None:
            return ReconcileResult(outcome="unresolved")

        values = invoice_values(invoice, account.user_id)
        stripe_subscription_id = values["stripe_subscription_id"]

        # A confirmation is pending only for a known subscription that never
        # got one; an unknown subscription will confirm on its own event.
        confirmation_pending = False
        if stripe_subscription_id:
            subscription = await self.subscriptions.get_by_stripe_id(db, stripe_subscription_id)
            confirmation_pending = (
                subscription is not None and subscription.confirmation_sent_at is None
            )

        record = await self.invoices.upsert(db, values)

        facts = TransitionFacts(
            invoice_status=record.status,
            invoice_is_subscription=is_subscription_invoice(invoice),
            invoice_attempt_count=record.attempt_count,
            confirmation_pending=confirmation_pending,
        )
        kind = decide_lifecycle_email(facts)
        result = ReconcileResult(outcome="processed", user_id=account.user_id, email=kind)

        if kind == EmailKind.SUBSCRIPTION_CONFIRMED and stripe_subscription_id:
            await self.subscriptions.mark_confirmation_sent(
                db, stripe_subscription_id, datetime.now(UTC)
            )
        if kind is not None:
            email = _email(
                kind,
                account,
                {
                    "max_letters": get_plan(SubscriptionTier.PREMIUM.value).max_letters,
                    "amount": f"{record.amount_due / 100:.2f}",
                    "currency": record.currency.upper(),
                    "invoice_url": record.hosted_invoice_url,
                },
            )
            if email:
                result.notifications.append(email)

        logger.info(
            f"Reconciled invoice {record.stripe_invoice_id} ({record.status}) "
            f"for account {account.user_id}, email={kind.value if kind else None}"
        )
        return result


billing_reconciler = BillingReconciler()
