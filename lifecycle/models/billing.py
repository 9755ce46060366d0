"""Billing event log - one row per processed Stripe webhook event."""

import uuid as uuid_pkg
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import Column, DateTime, ForeignKey, String, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlmodel import Field, SQLModel


class BillingEvent(SQLModel, table=True):
    """
    Billing event audit log.

    The unique stripe_event_id lets the webhook skip exact redeliveries.
    user_id is NULL when the event could not be resolved to an account.
    """

    __tablename__ = "billing_events"

    id: uuid_pkg.UUID = Field(
        default_factory=uuid_pkg.uuid4,
        primary_key=True,
        nullable=False,
        sa_column_kwargs={"server_default": text("gen_random_uuid()")},
    )
    stripe_event_id: str = Field(max_length=255, nullable=False, unique=True, index=True)
    event_type: str = Field(
        sa_column=Column(String(80), nullable=False, index=True),
    )
    user_id: uuid_pkg.UUID | None = Field(
        default=None,
        sa_column=Column(
            PG_UUID(as_uuid=True),
            ForeignKey("user_profiles.user_id", ondelete="SET NULL"),
            nullable=True,
            index=True,
        ),
    )
    outcome: str = Field(default="processed", max_length=30, nullable=False)
    payload: dict[str, Any] | None = Field(
        default=None,
        sa_column=Column(JSONB, nullable=True),
    )

    created_at: datetime = Field(  # type: ignore[call-overload]
        default_factory=lambda: datetime.now(UTC),
        nullable=False,
        sa_type=DateTime(timezone=True),
        sa_column_kwargs={"server_default": text("now()")},
    )
