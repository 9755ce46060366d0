"""Account deletion state machine.

    (none) --create--> pending --confirm--> confirmed --execute--> completed
                          |                    |
                          +------cancel--------+--> cancelled

pending requests older than the expiry window are removed by maintenance.
cancelled and completed are terminal. Every public transition commits its
own unit of work and only then hands notifications to the dispatcher.
"""

import asyncio
import logging
import uuid as uuid_pkg
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from stripe import StripeError

from lifecycle.config import settings
from lifecycle.core.exceptions import (
    AccountNotFoundError,
    AuthError,
    ConflictError,
    DeletionExecutionError,
    ExternalServiceError,
    InvalidTokenError,
    NoActiveRequestError,
)
from lifecycle.core.security import generate_confirmation_token
from lifecycle.domain.account_operations import AccountOperations, account_ops
from lifecycle.domain.audit_operations import AuditOperations, audit_ops
from lifecycle.domain.deletion_operations import DeletionOperations, deletion_ops
from lifecycle.domain.subscription_operations import SubscriptionOperations, subscription_ops
from lifecycle.models.account import Account, SubscriptionTier
from lifecycle.models.audit import AuditAction
from lifecycle.models.deletion_request import (
    DeletionConfirmed,
    DeletionRequest,
    DeletionRequestCreate,
    DeletionStatus,
)
from lifecycle.services.billing.refunds import (
    REASON_NOT_ACTIVE,
    RefundCalculator,
    RefundOutcome,
    refund_calculator,
)
from lifecycle.services.email.templates import EmailKind
from lifecycle.services.identity import IdentityService, identity_service
from lifecycle.services.notifications import (
    EmailNotification,
    Notification,
    NotificationDispatcher,
    notification_dispatcher,
)
from lifecycle.services.stripe_service import StripeService, stripe_service

logger = logging.getLogger(__name__)

REASON_NO_SUBSCRIPTION = "no subscription"


@dataclass
class RequestContext:
    """Where a user-initiated transition came from (audit trail)."""

    ip_address: str | None = None
    user_agent: str | None = None


def _date(value: datetime | None) -> str:
    return value.strftime("%d/%m/%Y %H:%M UTC") if value else ""


class DeletionService:
    """Owns every DeletionRequest transition except the batch scan itself."""

    def __init__(
        self,
        store: DeletionOperations = deletion_ops,
        accounts: AccountOperations = account_ops,
        subscriptions: SubscriptionOperations = subscription_ops,
        audit: AuditOperations = audit_ops,
        identity: IdentityService = identity_service,
        refunds: RefundCalculator = refund_calculator,
        stripe: StripeService = stripe_service,
        dispatcher: NotificationDispatcher = notification_dispatcher,
        cooldown_hours: int | None = None,
        expiry_days: int | None = None,
        refund_on_confirm: bool | None = None,
    ) -> None:
        self.store = store
        self.accounts = accounts
        self.subscriptions = subscriptions
        self.audit = audit
        self.identity = identity
        self.refunds = refunds
        self.stripe = stripe
        self.dispatcher = dispatcher
        self.cooldown_hours = (
            cooldown_hours if cooldown_hours is not None else settings.deletion_cooldown_hours
        )
        self.expiry = timedelta(
            days=expiry_days if expiry_days is not None else settings.deletion_request_expiry_days
        )
        self.refund_on_confirm = (
            refund_on_confirm if refund_on_confirm is not None else settings.refund_on_confirm
        )

    # ─────────────────────────────────────────────────────────────────────────
    # create: none -> pending
    # ─────────────────────────────────────────────────────────────────────────

    async def create_request(
        self,
        db: AsyncSession,
        user_id: uuid_pkg.UUID,
        email: str | None,
        body: DeletionRequestCreate,
        ctx: RequestContext,
        now: datetime | None = None,
    ) -> DeletionRequest:
        now = now or datetime.now(UTC)

        account = await self.accounts.get(db, user_id)
        if account is None:
            raise AccountNotFoundError(str(user_id))

        login_email = email or account.email
        if not login_email or not await self.identity.verify_password(login_email, body.password):
            await self.audit.log(
                db,
                AuditAction.DELETION_PASSWORD_FAILED,
                user_id=user_id,
                ip_address=ctx.ip_address,
                user_agent=ctx.user_agent,
            )
            await db.commit()
            logger.warning(f"[deletion] Bad password for {user_id} from {ctx.ip_address}")
            raise AuthError("Invalid password")

        existing = await self.store.get_live_for_user(db, user_id, for_update=True)
        if existing is not None:
            if existing.status == DeletionStatus.CONFIRMED.value:
                raise ConflictError("A confirmed deletion request is already scheduled")
            await self.store.update(
                db,
                existing,
                {"status": DeletionStatus.CANCELLED.value, "cancelled_at": now},
            )
            await self.audit.log(
                db,
                AuditAction.DELETION_SUPERSEDED,
                user_id=user_id,
                ip_address=ctx.ip_address,
                user_agent=ctx.user_agent,
                details={"request_id": str(existing.id)},
            )

        token = generate_confirmation_token()
        request = await self.store.create(
            db,
            {
                "user_id": user_id,
                "status": DeletionStatus.PENDING.value,
                "deletion_type": body.deletion_type.value,
                "reason": body.reason,
                "confirmation_token": token,
                "cooldown_hours": self.cooldown_hours,
                "scheduled_deletion_at": now + timedelta(hours=self.cooldown_hours),
                "ip_address": ctx.ip_address,
                "user_agent": ctx.user_agent,
                "created_at": now,
            },
        )
        await self.audit.log(
            db,
            AuditAction.DELETION_REQUESTED,
            user_id=user_id,
            ip_address=ctx.ip_address,
            user_agent=ctx.user_agent,
            details={"request_id": str(request.id), "deletion_type": request.deletion_type},
        )

        notifications: list[Notification] = []
        if body.send_confirmation_email and account.email:
            notifications.append(self._confirmation_email(account, request, token))
            await self.audit.log(
                db,
                AuditAction.DELETION_CONFIRMATION_SENT,
                user_id=user_id,
                details={"request_id": str(request.id)},
            )

        try:
            await db.commit()
        except IntegrityError:
            # Lost a race with a concurrent request for the same account
            await db.rollback()
            raise ConflictError("A deletion request is already in progress") from None

        self.dispatcher.dispatch_all(notifications)
        logger.info(
            f"[deletion] Request {request.id} created for {user_id}, "
            f"scheduled {request.scheduled_deletion_at.isoformat()}"
        )
        return request

    def _confirmation_email(
        self,
        account: Account,
        request: DeletionRequest,
        token: str,
    ) -> EmailNotification:
        return EmailNotification(
            kind=EmailKind.DELETION_CONFIRMATION,
            to=account.email or "",
            language=account.language,
            context={
                "name": account.display_name,
                "confirmation_url": f"{settings.frontend_url}/account/delete/confirm?token={token}",
                "scheduled_date": _date(request.scheduled_deletion_at),
                "cooldown_hours": request.cooldown_hours,
            },
        )

    # ─────────────────────────────────────────────────────────────────────────
    # confirm: pending -> confirmed
    # ─────────────────────────────────────────────────────────────────────────

    async def confirm(
        self,
        db: AsyncSession,
        token: str,
        ctx: RequestContext,
        now: datetime | None = None,
    ) -> DeletionConfirmed:
        """Confirm by token alone; the link may be opened without a session."""
        now = now or datetime.now(UTC)

        request = await self.store.get_by_token(db, token, for_update=True)
        if request is None or request.status != DeletionStatus.PENDING.value:
            raise InvalidTokenError("Invalid or already used confirmation token")
        if now > request.created_at + self.expiry:
            raise InvalidTokenError("Confirmation token expired")

        account = await self.accounts.get(db, request.user_id)
        notifications: list[Notification] = []
        updates: dict[str, Any] = {
            "status": DeletionStatus.CONFIRMED.value,
            "confirmed_at": now,
        }

        subscription_cancelled = False
        stripe_subscription_id = await self._current_subscription_id(db, request.user_id, account)
        if stripe_subscription_id:
            if self.refund_on_confirm:
                outcome = await self._refund(stripe_subscription_id, now)
                subscription_cancelled = outcome.error is None and outcome.reason != REASON_NOT_ACTIVE
                updates.update(
                    {
                        "refund_computed": True,
                        "refund_amount": outcome.amount if outcome.refunded else None,
                        "refund_id": outcome.refund_id,
                        "refund_reason": outcome.reason or outcome.error,
                    }
                )
            else:
                subscription_cancelled = await self._cancel_subscription(stripe_subscription_id)

            if subscription_cancelled:
                await self.subscriptions.mark_canceled(db, stripe_subscription_id, now)
                if account is not None:
                    await self.accounts.set_subscription_state(
                        db, account, SubscriptionTier.FREE.value, None, now
                    )
                    if account.email:
                        notifications.append(
                            EmailNotification(
                                kind=EmailKind.SUBSCRIPTION_CANCELLED,
                                to=account.email,
                                language=account.language,
                                context={"name": account.display_name, "end_date": _date(now)},
                            )
                        )

        request = await self.store.update(db, request, updates)
        await self.audit.log(
            db,
            AuditAction.DELETION_CONFIRMED,
            user_id=request.user_id,
            ip_address=ctx.ip_address,
            user_agent=ctx.user_agent,
            details={
                "request_id": str(request.id),
                "subscription_cancelled": subscription_cancelled,
            },
        )
        await db.commit()

        self.dispatcher.dispatch_all(notifications)
        logger.info(f"[deletion] Request {request.id} confirmed for {request.user_id}")
        return DeletionConfirmed(
            user_id=request.user_id,
            scheduled_deletion_at=request.scheduled_deletion_at,
            subscription_cancelled=subscription_cancelled,
        )

    async def _current_subscription_id(
        self,
        db: AsyncSession,
        user_id: uuid_pkg.UUID,
        account: Account | None,
    ) -> str | None:
        active = await self.subscriptions.get_active_for_user(db, user_id)
        if active is not None:
            return active.stripe_subscription_id
        return account.stripe_subscription_id if account else None

    async def _cancel_subscription(self, stripe_subscription_id: str) -> bool:
        """
        Hard-cancel an active subscription. Best-effort: a gateway failure is
        logged and left for the refund step at execution, which cancels too.
        """
        try:
            sub = await asyncio.to_thread(self.stripe.get_subscription, stripe_subscription_id)
            if sub.get("status") not in ("active", "trialing") or sub.get("cancel_at_period_end"):
                return False
            await asyncio.to_thread(self.stripe.cancel_subscription_now, stripe_subscription_id)
            return True
        except StripeError as e:
            logger.error(f"[deletion] Could not cancel {stripe_subscription_id} at confirm: {e}")
            return False

    async def _refund(self, stripe_subscription_id: str, now: datetime) -> RefundOutcome:
        try:
            return await self.refunds.refund_subscription(stripe_subscription_id, now=now)
        except ExternalServiceError as e:
            logger.error(f"[deletion] Refund failed for {stripe_subscription_id}: {e}")
            return RefundOutcome(refunded=False, error=str(e))

    # ─────────────────────────────────────────────────────────────────────────
    # cancel: pending|confirmed -> cancelled
    # ─────────────────────────────────────────────────────────────────────────

    async def cancel(
        self,
        db: AsyncSession,
        user_id: uuid_pkg.UUID,
        token: str | None,
        ctx: RequestContext,
        now: datetime | None = None,
    ) -> DeletionRequest:
        """Cancel the caller's live request. Only the owner may cancel."""
        now = now or datetime.now(UTC)

        if token:
            request = await self.store.get_by_token(db, token, for_update=True)
            if request is not None and request.user_id != user_id:
                logger.warning(
                    f"[deletion] {user_id} tried to cancel request {request.id} "
                    f"owned by {request.user_id} from {ctx.ip_address}"
                )
                request = None
        else:
            request = await self.store.get_live_for_user(db, user_id, for_update=True)

        if request is None or not request.is_live:
            raise NoActiveRequestError("No active deletion request found")

        request = await self.store.update(
            db,
            request,
            {
                "status": DeletionStatus.CANCELLED.value,
                "cancelled_at": now,
                "ip_address": ctx.ip_address,
                "user_agent": ctx.user_agent,
            },
        )
        await self.audit.log(
            db,
            AuditAction.DELETION_CANCELLED,
            user_id=user_id,
            ip_address=ctx.ip_address,
            user_agent=ctx.user_agent,
            details={"request_id": str(request.id)},
        )
        await db.commit()
        logger.info(f"[deletion] Request {request.id} cancelled by {user_id}")
        return request

    async def get_live(self, db: AsyncSession, user_id: uuid_pkg.UUID) -> DeletionRequest | None:
        return await self.store.get_live_for_user(db, user_id)

    # ─────────────────────────────────────────────────────────────────────────
    # expire: stale pending -> removed
    # ─────────────────────────────────────────────────────────────────────────

    async def expire(self, db: AsyncSession, now: datetime | None = None) -> int:
        """Remove pending requests never confirmed within the expiry window."""
        now = now or datetime.now(UTC)
        removed = await self.store.delete_expired_pending(db, now - self.expiry)
        if removed:
            logger.info(f"[deletion] Expired {removed} unconfirmed request(s)")
        return removed

    # ─────────────────────────────────────────────────────────────────────────
    # execute: confirmed (due) -> completed
    # ─────────────────────────────────────────────────────────────────────────

    async def execute(
        self,
        db: AsyncSession,
        request: DeletionRequest,
        now: datetime | None = None,
    ) -> list[Notification]:
        """
        Run one due request inside the caller's unit of work.

        Refund and email are best-effort. The deletion RPC is not: a False
        result raises DeletionExecutionError and the caller rolls back, so
        the request stays confirmed for the next sweep. The caller commits
        and dispatches the returned notifications.
        """
        now = now or datetime.now(UTC)
        account = await self.accounts.get(db, request.user_id)

        # Capture contact details before the RPC removes them
        recipient = account.email if account else None
        language = account.language if account else None
        name = account.display_name if account else ""

        outcome = await self._execution_refund(db, request, account, now)

        deleted = await self.accounts.execute_deletion_rpc(db, request.user_id, request.deletion_type)
        if not deleted:
            raise DeletionExecutionError(
                f"{request.deletion_type} delete reported failure for {request.user_id}"
            )

        await self.store.update(
            db,
            request,
            {
                "status": DeletionStatus.COMPLETED.value,
                "completed_at": now,
                "confirmation_token": None,
                "refund_amount": outcome.amount if outcome.refunded else None,
                "refund_id": outcome.refund_id,
                "refund_reason": outcome.reason or outcome.error,
            },
        )
        await self.audit.log(
            db,
            AuditAction.DELETION_EXECUTED,
            user_id=request.user_id,
            details={
                "request_id": str(request.id),
                "deletion_type": request.deletion_type,
                "refunded": outcome.refunded,
                "refund_amount": outcome.amount,
            },
        )
        logger.info(
            f"[deletion] Executed {request.deletion_type} delete for {request.user_id} "
            f"(refunded={outcome.refunded})"
        )

        if not recipient:
            return []
        return [
            EmailNotification(
                kind=EmailKind.ACCOUNT_DELETED,
                to=recipient,
                language=language,
                context={
                    "name": name,
                    "refund_amount": outcome.amount if outcome.refunded else None,
                    "currency": outcome.currency or "eur",
                },
            )
        ]

    async def _execution_refund(
        self,
        db: AsyncSession,
        request: DeletionRequest,
        account: Account | None,
        now: datetime,
    ) -> RefundOutcome:
        if request.refund_computed:
            return RefundOutcome(
                refunded=request.refund_amount is not None,
                amount=request.refund_amount,
                refund_id=request.refund_id,
                reason=request.refund_reason,
            )

        stripe_subscription_id = account.stripe_subscription_id if account else None
        if not stripe_subscription_id:
            latest = await self.subscriptions.get_latest_for_user(db, request.user_id)
            stripe_subscription_id = latest.stripe_subscription_id if latest else None
        if not stripe_subscription_id:
            return RefundOutcome(refunded=False, reason=REASON_NO_SUBSCRIPTION)

        return await self._refund(stripe_subscription_id, now)


deletion_service = DeletionService()
