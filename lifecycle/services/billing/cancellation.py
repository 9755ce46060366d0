"""User-initiated subscription cancellation at the end of the billing period.

The subscription stays active until the period ends; Stripe then deletes it
and the usual subscription.deleted event downgrades the account. The local
record is flagged right away so the subscription.updated event that follows
does not send a second cancellation email.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession
from stripe import StripeError

from lifecycle.core.exceptions import ExternalServiceError, NoActiveSubscriptionError
from lifecycle.domain.audit_operations import AuditOperations, audit_ops
from lifecycle.domain.subscription_operations import SubscriptionOperations, subscription_ops
from lifecycle.models.account import Account
from lifecycle.models.audit import AuditAction
from lifecycle.services.billing.refunds import subscription_period
from lifecycle.services.deletion.service import RequestContext
from lifecycle.services.email.templates import EmailKind
from lifecycle.services.notifications import (
    EmailNotification,
    Notification,
    NotificationDispatcher,
    notification_dispatcher,
)
from lifecycle.services.stripe_service import StripeService, stripe_service

logger = logging.getLogger(__name__)

CANCELLABLE_STATUSES = ("active", "trialing")


@dataclass
class CancellationResult:
    stripe_subscription_id: str
    cancel_at: datetime | None
    already_scheduled: bool = False
    notifications: list[Notification] = field(default_factory=list)


def _customer_id(sub: dict[str, Any]) -> str | None:
    customer = sub.get("customer")
    if isinstance(customer, dict):
        return customer.get("id")
    return customer


class SubscriptionCancellation:
    def __init__(
        self,
        subscriptions: SubscriptionOperations = subscription_ops,
        audit: AuditOperations = audit_ops,
        stripe: StripeService = stripe_service,
        dispatcher: NotificationDispatcher = notification_dispatcher,
    ) -> None:
        self.subscriptions = subscriptions
        self.audit = audit
        self.stripe = stripe
        self.dispatcher = dispatcher

    async def cancel_at_period_end(
        self,
        db: AsyncSession,
        account: Account,
        reason: str | None,
        ctx: RequestContext,
        now: datetime | None = None,
    ) -> CancellationResult:
        """
        Schedule the caller's subscription to end with the current period.

        A subscription that is already scheduled is a no-op success. Raises
        NoActiveSubscriptionError when there is nothing to cancel and
        ExternalServiceError when Stripe cannot be reached.
        """
        now = now or datetime.now(UTC)

        record = await self.subscriptions.get_active_for_user(db, account.user_id)
        stripe_subscription_id = (
            record.stripe_subscription_id if record is not None else account.stripe_subscription_id
        )
        if not stripe_subscription_id:
            raise NoActiveSubscriptionError("No active subscription found")

        sub = await self._call(self.stripe.get_subscription, stripe_subscription_id)

        if account.stripe_customer_id and _customer_id(sub) != account.stripe_customer_id:
            logger.warning(
                f"[billing] {account.user_id} tried to cancel {stripe_subscription_id} "
                f"owned by customer {_customer_id(sub)} from {ctx.ip_address}"
            )
            raise NoActiveSubscriptionError("No active subscription found")
        if sub.get("status") not in CANCELLABLE_STATUSES:
            raise NoActiveSubscriptionError("Subscription is not active")

        if sub.get("cancel_at_period_end"):
            if record is not None and not record.cancel_at_period_end:
                await self.subscriptions.mark_cancel_at_period_end(db, stripe_subscription_id)
                await db.commit()
            logger.info(f"[billing] {stripe_subscription_id} already scheduled for cancellation")
            return CancellationResult(
                stripe_subscription_id=stripe_subscription_id,
                cancel_at=self._period_end(sub),
                already_scheduled=True,
            )

        metadata = {
            **{str(k): str(v) for k, v in (sub.get("metadata") or {}).items()},
            "cancelled_by_user": "true",
            "cancelled_by_user_id": str(account.user_id),
            "cancelled_at": now.isoformat(),
            "cancelled_from_ip": ctx.ip_address or "unknown",
        }
        if reason:
            metadata["cancellation_reason"] = reason.strip()[:500]

        updated = await self._call(self.stripe.cancel_at_period_end, stripe_subscription_id, metadata)
        cancel_at = self._period_end(updated) or self._period_end(sub)

        await self.subscriptions.mark_cancel_at_period_end(db, stripe_subscription_id)
        await self.audit.log(
            db,
            AuditAction.SUBSCRIPTION_CANCEL_SCHEDULED,
            user_id=account.user_id,
            ip_address=ctx.ip_address,
            user_agent=ctx.user_agent,
            details={
                "stripe_subscription_id": stripe_subscription_id,
                "cancel_at": cancel_at.isoformat() if cancel_at else None,
                "reason": metadata.get("cancellation_reason"),
            },
        )
        await db.commit()

        result = CancellationResult(stripe_subscription_id=stripe_subscription_id, cancel_at=cancel_at)
        if account.email:
            result.notifications.append(
                EmailNotification(
                    kind=EmailKind.SUBSCRIPTION_CANCELLED,
                    to=account.email,
                    language=account.language,
                    context={
                        "name": account.display_name,
                        "end_date": cancel_at.strftime("%d/%m/%Y") if cancel_at else "",
                    },
                )
            )
        self.dispatcher.dispatch_all(result.notifications)

        logger.info(
            f"[billing] {stripe_subscription_id} scheduled to cancel at "
            f"{cancel_at.isoformat() if cancel_at else 'period end'} for {account.user_id}"
        )
        return result

    async def _call(self, fn: Any, *args: Any) -> dict[str, Any]:
        try:
            return await asyncio.to_thread(fn, *args)
        except StripeError as e:
            raise ExternalServiceError("stripe", str(e)) from e

    @staticmethod
    def _period_end(sub: dict[str, Any]) -> datetime | None:
        _, end = subscription_period(sub)
        return datetime.fromtimestamp(end, UTC) if end else None


subscription_cancellation = SubscriptionCancellation()
