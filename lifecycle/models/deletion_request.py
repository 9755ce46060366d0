"""Account deletion request model."""

import uuid as uuid_pkg
from datetime import UTC, datetime
from enum import Enum

from sqlalchemy import Column, DateTime, Index, String, text
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlmodel import Field, SQLModel


class DeletionStatus(str, Enum):
    """Deletion request lifecycle states. CANCELLED and COMPLETED are terminal."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


LIVE_STATUSES = (DeletionStatus.PENDING.value, DeletionStatus.CONFIRMED.value)
TERMINAL_STATUSES = (DeletionStatus.CANCELLED.value, DeletionStatus.COMPLETED.value)


class DeletionType(str, Enum):
    """Which data-deletion procedure runs at execution time."""

    SOFT = "soft"  # anonymize
    HARD = "hard"  # purge


class DeletionRequest(SQLModel, table=True):
    """
    A user's request to delete their account.

    At most one pending/confirmed request exists per user, enforced by a
    partial unique index. The cooldown is fixed at creation so a later
    settings change never moves an already scheduled deletion.
    """

    __tablename__ = "account_deletion_requests"
    __table_args__ = (
        Index(
            "uq_account_deletion_requests_live_user",
            "user_id",
            unique=True,
            postgresql_where=text("status IN ('pending', 'confirmed')"),
        ),
        Index("ix_account_deletion_requests_due", "status", "scheduled_deletion_at"),
    )

    id: uuid_pkg.UUID = Field(
        default_factory=uuid_pkg.uuid4,
        primary_key=True,
        nullable=False,
        sa_column_kwargs={"server_default": text("gen_random_uuid()")},
    )
    # No foreign key: the request outlives a hard delete of the profile
    user_id: uuid_pkg.UUID = Field(
        sa_column=Column(PG_UUID(as_uuid=True), nullable=False, index=True),
    )

    status: str = Field(
        default=DeletionStatus.PENDING.value,
        sa_column=Column(
            String(20),
            nullable=False,
            server_default=DeletionStatus.PENDING.value,
        ),
    )
    deletion_type: str = Field(
        default=DeletionType.HARD.value,
        sa_column=Column(String(10), nullable=False, server_default=DeletionType.HARD.value),
    )
    reason: str | None = Field(default=None, max_length=1000, nullable=True)

    confirmation_token: str | None = Field(
        default=None, max_length=100, nullable=True, unique=True, index=True
    )
    cooldown_hours: int = Field(
        default=48,
        nullable=False,
        sa_column_kwargs={"server_default": text("48")},
    )
    scheduled_deletion_at: datetime = Field(  # type: ignore[call-overload]
        nullable=False, sa_type=DateTime(timezone=True)
    )
    confirmed_at: datetime | None = Field(  # type: ignore[call-overload]
        default=None, nullable=True, sa_type=DateTime(timezone=True)
    )
    cancelled_at: datetime | None = Field(  # type: ignore[call-overload]
        default=None, nullable=True, sa_type=DateTime(timezone=True)
    )
    completed_at: datetime | None = Field(  # type: ignore[call-overload]
        default=None, nullable=True, sa_type=DateTime(timezone=True)
    )

    # Audit context
    ip_address: str | None = Field(default=None, max_length=64, nullable=True)
    user_agent: str | None = Field(default=None, max_length=500, nullable=True)

    # Refund outcome carried from confirm to execute (refund_on_confirm mode)
    refund_computed: bool = Field(
        default=False,
        nullable=False,
        sa_column_kwargs={"server_default": text("false")},
    )
    refund_amount: int | None = Field(default=None, nullable=True)
    refund_id: str | None = Field(default=None, max_length=255, nullable=True)
    refund_reason: str | None = Field(default=None, max_length=255, nullable=True)

    created_at: datetime = Field(  # type: ignore[call-overload]
        default_factory=lambda: datetime.now(UTC),
        nullable=False,
        sa_type=DateTime(timezone=True),
        sa_column_kwargs={"server_default": text("now()")},
    )
    updated_at: datetime | None = Field(  # type: ignore[call-overload]
        default=None,
        sa_type=DateTime(timezone=True),
        sa_column_kwargs={"onupdate": text("now()")},
    )

    @property
    def is_live(self) -> bool:
        return self.status in LIVE_STATUSES


# Request/Response schemas
class DeletionRequestCreate(SQLModel):
    """Body of the create-deletion-request call."""

    password: str = Field(min_length=8, max_length=100)
    deletion_type: DeletionType = DeletionType.HARD
    reason: str | None = Field(default=None, max_length=1000)
    send_confirmation_email: bool = True


class DeletionRequestCreated(SQLModel):
    request_id: uuid_pkg.UUID
    scheduled_deletion_at: datetime
    confirmation_required: bool
    cooldown_hours: int
    deletion_type: str


class DeletionConfirm(SQLModel):
    confirmation_token: str = Field(min_length=10, max_length=100)


class DeletionConfirmed(SQLModel):
    user_id: uuid_pkg.UUID
    scheduled_deletion_at: datetime
    subscription_cancelled: bool


class DeletionCancel(SQLModel):
    confirmation_token: str | None = Field(default=None, min_length=10, max_length=100)


class DeletionRequestRead(SQLModel):
    id: uuid_pkg.UUID
    status: str
    deletion_type: str
    reason: str | None
    scheduled_deletion_at: datetime
    confirmed_at: datetime | None
    cooldown_hours: int
    created_at: datetime
