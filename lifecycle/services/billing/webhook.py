"""Stripe webhook ingestion: verify, dedupe, reconcile under a time budget."""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from lifecycle.config import settings
from lifecycle.domain.billing_event_operations import BillingEventOperations, billing_event_ops
from lifecycle.services.billing.reconciler import BillingReconciler, billing_reconciler
from lifecycle.services.notifications import NotificationDispatcher, notification_dispatcher
from lifecycle.services.stripe_service import StripeService, stripe_service

logger = logging.getLogger(__name__)


@dataclass
class WebhookResponse:
    """A definitive answer for the gateway."""

    status_code: int
    body: dict[str, Any] = field(default_factory=dict)


class WebhookIngestor:
    """
    Runs one Stripe event through the reconciler.

    Every path returns a status code: 2xx when the event is settled
    (processed, duplicate, unresolved or unhandled), 400 for requests that
    are not authentic Stripe events, 5xx when processing failed or ran out
    of time so Stripe retries with backoff.
    """

    def __init__(
        self,
        reconciler: BillingReconciler = billing_reconciler,
        events: BillingEventOperations = billing_event_ops,
        dispatcher: NotificationDispatcher = notification_dispatcher,
        stripe: StripeService = stripe_service,
        timeout_seconds: float | None = None,
    ) -> None:
        self.reconciler = reconciler
        self.events = events
        self.dispatcher = dispatcher
        self.stripe = stripe
        self.timeout_seconds = (
            timeout_seconds if timeout_seconds is not None else settings.webhook_timeout_seconds
        )

    async def ingest(
        self,
        db: AsyncSession,
        payload: bytes,
        signature: str | None,
        content_type: str | None = None,
    ) -> WebhookResponse:
        started = time.monotonic()

        if not settings.stripe_webhook_secret:
            logger.error("[webhook] STRIPE_WEBHOOK_SECRET not configured")
            return WebhookResponse(503, {"error": "Webhook processing not configured"})
        if content_type and not content_type.lower().startswith("application/json"):
            return WebhookResponse(400, {"error": "Invalid content type"})
        if not signature:
            logger.warning("[webhook] Missing stripe-signature header")
            return WebhookResponse(400, {"error": "Missing signature"})

        try:
            event = self.stripe.construct_webhook_event(payload, signature)
        except ValueError:
            return WebhookResponse(400, {"error": "Invalid webhook signature"})

        event_type = str(event.get("type", ""))
        event_id = str(event.get("id", ""))
        obj = (event.get("data") or {}).get("object") or {}

        logger.info(f"[webhook] Received {event_type} ({event_id})")

        try:
            async with asyncio.timeout(self.timeout_seconds):
                body = await self._process(db, event_type, event_id, obj)
        except TimeoutError:
            await db.rollback()
            logger.error(
                f"[webhook] {event_type} ({event_id}) exceeded {self.timeout_seconds}s budget"
            )
            return WebhookResponse(
                500,
                {"error": "Webhook processing timeout", "event_id": event_id},
            )
        except IntegrityError:
            await db.rollback()
            # Only a concurrent delivery that recorded this same event is a duplicate
            if await self._recorded_elsewhere(db, event_id):
                logger.info(f"[webhook] Concurrent duplicate {event_id}, acknowledged")
                return WebhookResponse(
                    200, {"received": True, "duplicate": True, "event_id": event_id}
                )
            logger.exception(f"[webhook] Constraint violation processing {event_type} ({event_id})")
            return WebhookResponse(
                500,
                {"error": "Webhook processing failed", "event_id": event_id},
            )
        except Exception:
            await db.rollback()
            logger.exception(f"[webhook] Failed processing {event_type} ({event_id})")
            return WebhookResponse(
                500,
                {"error": "Webhook processing failed", "event_id": event_id},
            )

        body.update(
            {
                "received": True,
                "event_type": event_type,
                "event_id": event_id,
                "processing_time_ms": int((time.monotonic() - started) * 1000),
            }
        )
        return WebhookResponse(200, body)

    async def _process(
        self,
        db: AsyncSession,
        event_type: str,
        event_id: str,
        obj: dict[str, Any],
    ) -> dict[str, Any]:
        if await self.events.is_processed(db, event_id):
            logger.info(f"[webhook] Skipping duplicate {event_id}")
            return {"duplicate": True}

        result = await self.reconciler.reconcile(db, event_type, obj)

        if result.handled:
            await self.events.record(
                db,
                stripe_event_id=event_id,
                event_type=event_type,
                user_id=result.user_id,
                outcome=result.outcome,
                payload={"object_id": obj.get("id"), "email": result.email.value if result.email else None},
            )
        await db.commit()

        # Side effects only after the state transition is durable
        self.dispatcher.dispatch_all(result.notifications)

        return {"outcome": result.outcome}

    async def _recorded_elsewhere(self, db: AsyncSession, event_id: str) -> bool:
        try:
            return await self.events.is_processed(db, event_id)
        except Exception:
            logger.exception(f"[webhook] Could not re-check {event_id} after conflict")
            return False


webhook_ingestor = WebhookIngestor()
