"""Caller context and operator-secret dependencies."""

import logging

from fastapi import HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from lifecycle.config import settings
from lifecycle.core.exceptions import ForbiddenError
from lifecycle.core.security import secrets_match
from lifecycle.domain.audit_operations import audit_ops
from lifecycle.models.audit import AuditAction
from lifecycle.services.deletion.service import RequestContext

logger = logging.getLogger(__name__)


def client_ip(request: Request) -> str | None:
    """First hop of X-Forwarded-For when behind the proxy, else the socket peer."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip() or None
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    return request.client.host if request.client else None


def get_request_context(request: Request) -> RequestContext:
    return RequestContext(
        ip_address=client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )


async def verify_admin_secret(
    db: AsyncSession,
    provided: str | None,
    request: Request,
    action: str,
) -> None:
    """
    Validate the operator secret for admin and maintenance calls.

    A rejected attempt is audited and committed before the 403 is raised,
    since the request session rolls back on the exception.
    """
    if not settings.admin_secret:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Admin secret not configured",
        )
    if secrets_match(provided, settings.admin_secret):
        return

    ip = client_ip(request)
    logger.warning(f"Rejected admin secret for {action} from {ip}")
    await audit_ops.log(
        db,
        AuditAction.ADMIN_SECRET_REJECTED,
        ip_address=ip,
        user_agent=request.headers.get("user-agent"),
        details={"action": action},
    )
    await db.commit()
    raise ForbiddenError()
