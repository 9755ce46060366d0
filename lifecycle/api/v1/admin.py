"""Operator endpoints: forced deletion execution and maintenance.

These endpoints are called by cron jobs and operators, not by end users.
They bypass Supabase JWT auth and instead validate the shared admin
secret, passed in the body for POSTs and in X-Admin-Secret for GETs.
"""

import logging
import uuid as uuid_pkg
from enum import Enum
from typing import Any

from fastapi import APIRouter, Header, HTTPException, Request, status
from pydantic import BaseModel

from lifecycle.api.deps import DbSession, verify_admin_secret
from lifecycle.core.exceptions import LifecycleError, NotFoundError, ValidationError
from lifecycle.services.deletion.executor import batch_executor
from lifecycle.services.deletion.maintenance import deletion_maintenance

logger = logging.getLogger(__name__)

router = APIRouter(tags=["admin"])


# ─────────────────────────────────────────────────────────────────────────────
# Request Schemas
# ─────────────────────────────────────────────────────────────────────────────


class AdminDeletionAction(str, Enum):
    EXECUTE_PENDING_DELETIONS = "execute_pending_deletions"
    EXECUTE_USER_DELETION = "execute_user_deletion"


class MaintenanceAction(str, Enum):
    CLEANUP_EXPIRED_REQUESTS = "cleanup_expired_requests"
    EXECUTE_PENDING_DELETIONS = "execute_pending_deletions"
    FULL_MAINTENANCE = "full_maintenance"


class AdminExecuteRequest(BaseModel):
    action: AdminDeletionAction
    admin_secret: str
    user_id: uuid_pkg.UUID | None = None


class MaintenanceRequest(BaseModel):
    action: MaintenanceAction
    admin_secret: str


# ─────────────────────────────────────────────────────────────────────────────
# Endpoints
# ─────────────────────────────────────────────────────────────────────────────


@router.post("/admin/deletions/execute")
async def admin_execute(
    body: AdminExecuteRequest,
    request: Request,
    db: DbSession,
) -> dict[str, Any]:
    """Run the deletion sweep now, or force one user's confirmed deletion."""
    await verify_admin_secret(db, body.admin_secret, request, body.action.value)

    if body.action == AdminDeletionAction.EXECUTE_PENDING_DELETIONS:
        report = await batch_executor.execute_pending()
        return {"executed": report.executed, "failed": report.failed, "total": report.total}

    if body.user_id is None:
        raise ValidationError("user_id is required")

    try:
        executed = await batch_executor.execute_for_user(body.user_id)
    except LifecycleError as e:
        raise HTTPException(status.HTTP_500_INTERNAL_SERVER_ERROR, str(e)) from None
    if not executed:
        raise NotFoundError("Confirmed deletion request")
    return {"success": True, "user_id": str(body.user_id)}


@router.post("/maintenance/cleanup")
async def run_maintenance(
    body: MaintenanceRequest,
    request: Request,
    db: DbSession,
) -> dict[str, Any]:
    await verify_admin_secret(db, body.admin_secret, request, body.action.value)

    logger.info(f"[maintenance] Starting {body.action.value}")
    if body.action == MaintenanceAction.CLEANUP_EXPIRED_REQUESTS:
        result: dict[str, Any] = await deletion_maintenance.cleanup_expired_requests()
    elif body.action == MaintenanceAction.EXECUTE_PENDING_DELETIONS:
        result = await deletion_maintenance.execute_pending_deletions()
    else:
        result = await deletion_maintenance.full_maintenance()

    return {"success": True, "action": body.action.value, **result}


@router.get("/maintenance/status")
async def maintenance_status(
    request: Request,
    db: DbSession,
    x_admin_secret: str | None = Header(default=None),
) -> dict[str, Any]:
    """Deletion queue counts."""
    await verify_admin_secret(db, x_admin_secret, request, "status")
    return await deletion_maintenance.status()
