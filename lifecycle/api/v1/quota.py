"""Usage quota endpoints."""

from fastapi import APIRouter, HTTPException, status

from lifecycle.api.deps import CurrentAccount, DbSession
from lifecycle.core.exceptions import ConflictError, QuotaExceededError
from lifecycle.models.quota import QuotaStatus
from lifecycle.services.notifications import notification_dispatcher
from lifecycle.services.quota import quota_manager

router = APIRouter(prefix="/quota", tags=["quota"])


@router.get("", response_model=QuotaStatus)
async def get_quota(account: CurrentAccount, db: DbSession) -> QuotaStatus:
    """Current window usage, rolling the window first if it has elapsed."""
    return await quota_manager.get_status(db, account)


@router.post("/consume", response_model=QuotaStatus)
async def consume_quota(account: CurrentAccount, db: DbSession) -> QuotaStatus:
    """Count one generation. 403 with the quota attached when exhausted."""
    try:
        result = await quota_manager.consume(db, account)
    except ConflictError:
        raise HTTPException(
            status.HTTP_409_CONFLICT, "Quota changed concurrently, retry"
        ) from None

    # Persist any window reset before answering, refused or not
    await db.commit()

    if not result.allowed:
        raise QuotaExceededError(result.status.model_dump(mode="json"))

    notification_dispatcher.dispatch_all(result.notifications)
    return result.status
