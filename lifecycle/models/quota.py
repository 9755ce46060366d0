"""Usage quota model - rolling generation window per account."""

import uuid as uuid_pkg
from datetime import UTC, datetime

from sqlalchemy import Column, DateTime, ForeignKey, text
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlmodel import Field, SQLModel


class QuotaRecord(SQLModel, table=True):
    """
    Generation counter for one account.

    No window exists until first use: reset_date and first_generation_date
    stay NULL until the first successful increment. The version column is
    bumped on every write so concurrent writers can detect a stale read.
    """

    __tablename__ = "user_quotas"

    user_id: uuid_pkg.UUID = Field(
        sa_column=Column(
            PG_UUID(as_uuid=True),
            ForeignKey("user_profiles.user_id", ondelete="CASCADE"),
            primary_key=True,
            nullable=False,
        ),
    )
    letters_generated: int = Field(
        default=0,
        nullable=False,
        sa_column_kwargs={"server_default": text("0")},
    )
    max_letters: int = Field(
        default=10,
        nullable=False,
        sa_column_kwargs={"server_default": text("10")},
    )
    reset_date: datetime | None = Field(  # type: ignore[call-overload]
        default=None, nullable=True, sa_type=DateTime(timezone=True)
    )
    first_generation_date: datetime | None = Field(  # type: ignore[call-overload]
        default=None, nullable=True, sa_type=DateTime(timezone=True)
    )
    version: int = Field(
        default=1,
        nullable=False,
        sa_column_kwargs={"server_default": text("1")},
    )

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


class QuotaStatus(SQLModel):
    """Quota snapshot returned to callers."""

    letters_generated: int
    max_letters: int
    remaining_letters: int
    reset_date: datetime | None
    first_generation_date: datetime | None
    can_generate: bool
    subscription_tier: str
