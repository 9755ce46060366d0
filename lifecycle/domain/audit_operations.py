"""Domain operations for the account audit log."""

import logging
import uuid as uuid_pkg
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from lifecycle.models.audit import AuditAction, AuditLog

logger = logging.getLogger(__name__)


class AuditOperations:
    async def log(
        self,
        db: AsyncSession,
        action: AuditAction,
        user_id: uuid_pkg.UUID | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> AuditLog:
        """Append an audit entry in the caller's unit of work."""
        entry = AuditLog(
            user_id=user_id,
            action=action.value,
            ip_address=ip_address,
            user_agent=user_agent[:500] if user_agent else None,
            details=details,
        )
        db.add(entry)
        await db.flush()
        logger.info(f"Audit {action.value} user={user_id} ip={ip_address}")
        return entry


audit_ops = AuditOperations()
