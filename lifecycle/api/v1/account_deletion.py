"""Account deletion endpoints: request, confirm, cancel and status."""

import logging
from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException, status

from lifecycle.api.deps import CurrentUser, DbSession, get_request_context
from lifecycle.core.exceptions import (
    AccountNotFoundError,
    AuthError,
    ConflictError,
    ExternalServiceError,
    InvalidTokenError,
    NoActiveRequestError,
    NotFoundError,
    ValidationError,
)
from lifecycle.core.rate_limit import (
    DELETION_CANCEL_LIMIT,
    DELETION_CONFIRM_LIMIT,
    DELETION_REQUEST_LIMIT,
    rate_limiter,
)
from lifecycle.models.deletion_request import (
    DeletionCancel,
    DeletionConfirm,
    DeletionConfirmed,
    DeletionRequestCreate,
    DeletionRequestCreated,
    DeletionRequestRead,
)
from lifecycle.services.deletion.service import RequestContext, deletion_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/account/deletion", tags=["account"])

ClientContext = Annotated[RequestContext, Depends(get_request_context)]


@router.post("", response_model=DeletionRequestCreated, status_code=status.HTTP_201_CREATED)
async def create_deletion_request(
    body: DeletionRequestCreate,
    current_user: CurrentUser,
    ctx: ClientContext,
    db: DbSession,
) -> DeletionRequestCreated:
    """
    Start account deletion.

    The caller re-enters their password; on success a confirmation link is
    emailed and the deletion is scheduled after the cooldown.
    """
    await rate_limiter.check_rate_limit(db, str(current_user.id), DELETION_REQUEST_LIMIT)
    await db.commit()

    try:
        request = await deletion_service.create_request(
            db, current_user.id, current_user.email, body, ctx
        )
    except AccountNotFoundError:
        raise NotFoundError("Account") from None
    except AuthError as e:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, e.message) from None
    except ConflictError as e:
        raise HTTPException(status.HTTP_409_CONFLICT, str(e)) from None
    except ExternalServiceError:
        logger.exception(f"Identity check unavailable for {current_user.id}")
        raise HTTPException(
            status.HTTP_503_SERVICE_UNAVAILABLE, "Password verification unavailable"
        ) from None

    return DeletionRequestCreated(
        request_id=request.id,
        scheduled_deletion_at=request.scheduled_deletion_at,
        confirmation_required=True,
        cooldown_hours=request.cooldown_hours,
        deletion_type=request.deletion_type,
    )


@router.post("/confirm", response_model=DeletionConfirmed)
async def confirm_deletion(
    body: DeletionConfirm,
    ctx: ClientContext,
    db: DbSession,
) -> DeletionConfirmed:
    """Confirm by emailed token. No session required."""
    await rate_limiter.check_rate_limit(db, ctx.ip_address or "unknown", DELETION_CONFIRM_LIMIT)
    await db.commit()

    try:
        return await deletion_service.confirm(db, body.confirmation_token, ctx)
    except InvalidTokenError as e:
        raise ValidationError(str(e)) from None


@router.post("/cancel")
async def cancel_deletion(
    body: DeletionCancel,
    current_user: CurrentUser,
    ctx: ClientContext,
    db: DbSession,
) -> dict[str, Any]:
    await rate_limiter.check_rate_limit(db, str(current_user.id), DELETION_CANCEL_LIMIT)
    await db.commit()

    try:
        request = await deletion_service.cancel(db, current_user.id, body.confirmation_token, ctx)
    except NoActiveRequestError as e:
        raise ValidationError(str(e)) from None

    return {"success": True, "request_id": str(request.id)}


@router.get("", response_model=DeletionRequestRead | None)
async def get_deletion_status(
    current_user: CurrentUser,
    db: DbSession,
) -> DeletionRequestRead | None:
    """The caller's pending or confirmed request, or null."""
    request = await deletion_service.get_live(db, current_user.id)
    if request is None:
        return None
    return DeletionRequestRead.model_validate(request, from_attributes=True)
