"""Billing endpoints: Stripe webhook and user-initiated cancellation."""

import logging
from datetime import datetime
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from lifecycle.api.deps import CurrentAccount, DbSession, get_request_context
from lifecycle.core.exceptions import ExternalServiceError, NoActiveSubscriptionError, ValidationError
from lifecycle.core.rate_limit import SUBSCRIPTION_CANCEL_LIMIT, rate_limiter
from lifecycle.services.billing.cancellation import subscription_cancellation
from lifecycle.services.billing.webhook import webhook_ingestor
from lifecycle.services.deletion.service import RequestContext

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/billing", tags=["billing"])


# ─────────────────────────────────────────────────────────────────────────────
# Request/Response Schemas
# ─────────────────────────────────────────────────────────────────────────────


class CancelRequest(BaseModel):
    reason: str | None = Field(default=None, max_length=500)


class CancelResponse(BaseModel):
    success: bool = True
    message: str
    cancel_at: datetime | None
    already_scheduled: bool


# ─────────────────────────────────────────────────────────────────────────────
# Endpoints
# ─────────────────────────────────────────────────────────────────────────────


@router.post("/webhooks/stripe")
async def handle_stripe_webhook(
    request: Request,
    db: DbSession,
) -> JSONResponse:
    """
    Handle Stripe webhook events.

    Verifies the webhook signature before processing. No authentication
    required (verified by Stripe signature). Always answers with a
    definitive status so Stripe either stops or retries with backoff.
    """
    payload = await request.body()
    result = await webhook_ingestor.ingest(
        db,
        payload,
        signature=request.headers.get("stripe-signature"),
        content_type=request.headers.get("content-type"),
    )
    return JSONResponse(status_code=result.status_code, content=result.body)


@router.post("/subscription/cancel", response_model=CancelResponse)
async def cancel_subscription(
    body: CancelRequest,
    account: CurrentAccount,
    ctx: Annotated[RequestContext, Depends(get_request_context)],
    db: DbSession,
) -> CancelResponse:
    """
    Cancel the caller's subscription at the end of the current billing period.

    Access continues until the period ends. Calling again once the
    cancellation is scheduled succeeds without changing anything.
    """
    await rate_limiter.check_rate_limit(db, str(account.user_id), SUBSCRIPTION_CANCEL_LIMIT)
    await db.commit()

    try:
        result = await subscription_cancellation.cancel_at_period_end(db, account, body.reason, ctx)
    except NoActiveSubscriptionError as e:
        raise ValidationError(str(e)) from None
    except ExternalServiceError:
        logger.exception(f"Subscription cancellation failed for {account.user_id}")
        raise HTTPException(
            status.HTTP_503_SERVICE_UNAVAILABLE, "Could not cancel the subscription, try again"
        ) from None

    return CancelResponse(
        message=(
            "Subscription is already scheduled for cancellation"
            if result.already_scheduled
            else "Subscription will be canceled at the end of the billing period"
        ),
        cancel_at=result.cancel_at,
        already_scheduled=result.already_scheduled,
    )
