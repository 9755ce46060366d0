"""Account audit log - security-relevant lifecycle actions."""

import uuid as uuid_pkg
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from sqlalchemy import Column, DateTime, String, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlmodel import Field, SQLModel


class AuditAction(str, Enum):
    """Actions recorded in the account audit log."""

    DELETION_PASSWORD_FAILED = "deletion.password_failed"
    DELETION_REQUESTED = "deletion.requested"
    DELETION_SUPERSEDED = "deletion.superseded"
    DELETION_CONFIRMATION_SENT = "deletion.confirmation_sent"
    DELETION_CONFIRMED = "deletion.confirmed"
    DELETION_CANCELLED = "deletion.cancelled"
    DELETION_EXECUTED = "deletion.executed"
    DELETION_FAILED = "deletion.failed"
    SUBSCRIPTION_CANCEL_SCHEDULED = "subscription.cancel_scheduled"
    ADMIN_SECRET_REJECTED = "admin.secret_rejected"
    MAINTENANCE_RUN = "maintenance.run"


class AuditLog(SQLModel, table=True):
    """
    Account audit log entry.

    user_id carries no foreign key: entries must outlive a hard delete.
    """

    __tablename__ = "account_audit_logs"

    id: uuid_pkg.UUID = Field(
        default_factory=uuid_pkg.uuid4,
        primary_key=True,
        nullable=False,
        sa_column_kwargs={"server_default": text("gen_random_uuid()")},
    )
    user_id: uuid_pkg.UUID | None = Field(
        default=None,
        sa_column=Column(PG_UUID(as_uuid=True), nullable=True, index=True),
    )
    action: str = Field(sa_column=Column(String(50), nullable=False, index=True))
    ip_address: str | None = Field(default=None, max_length=64, nullable=True)
    user_agent: str | None = Field(default=None, max_length=500, nullable=True)
    details: dict[str, Any] | None = Field(
        default=None,
        sa_column=Column(JSONB, nullable=True),
    )

    created_at: datetime = Field(  # type: ignore[call-overload]
        default_factory=lambda: datetime.now(UTC),
        nullable=False,
        sa_type=DateTime(timezone=True),
        sa_column_kwargs={"server_default": text("now()")},
    )
