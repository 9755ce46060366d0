"""Subscription record - local mirror of a Stripe subscription."""

import uuid as uuid_pkg
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from sqlalchemy import Column, DateTime, ForeignKey, String, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlmodel import Field, SQLModel


class SubscriptionStatus(str, Enum):
    """Stripe subscription lifecycle states."""

    INCOMPLETE = "incomplete"
    INCOMPLETE_EXPIRED = "incomplete_expired"
    TRIALING = "trialing"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    UNPAID = "unpaid"
    PAUSED = "paused"


class SubscriptionRecord(SQLModel, table=True):
    """
    Subscription record keyed by the Stripe subscription id.

    Written only by the billing reconciler, always through an upsert on
    stripe_subscription_id so a redelivered event converges to the same row.
    The latest received event is authoritative.
    """

    __tablename__ = "stripe_subscriptions"

    id: uuid_pkg.UUID = Field(
        default_factory=uuid_pkg.uuid4,
        primary_key=True,
        nullable=False,
        sa_column_kwargs={"server_default": text("gen_random_uuid()")},
    )
    user_id: uuid_pkg.UUID = Field(
        sa_column=Column(
            PG_UUID(as_uuid=True),
            ForeignKey("user_profiles.user_id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )

    stripe_customer_id: str = Field(max_length=255, nullable=False, index=True)
    stripe_subscription_id: str = Field(max_length=255, nullable=False, unique=True)
    stripe_price_id: str | None = Field(default=None, max_length=255, nullable=True)

    status: str = Field(
        sa_column=Column(String(30), nullable=False),
    )

    # Billing period
    current_period_start: datetime | None = Field(  # type: ignore[call-overload]
        default=None, nullable=True, sa_type=DateTime(timezone=True)
    )
    current_period_end: datetime | None = Field(  # type: ignore[call-overload]
        default=None, nullable=True, sa_type=DateTime(timezone=True)
    )
    cancel_at_period_end: bool = Field(
        default=False,
        nullable=False,
        sa_column_kwargs={"server_default": text("false")},
    )
    canceled_at: datetime | None = Field(  # type: ignore[call-overload]
        default=None, nullable=True, sa_type=DateTime(timezone=True)
    )
    trial_start: datetime | None = Field(  # type: ignore[call-overload]
        default=None, nullable=True, sa_type=DateTime(timezone=True)
    )
    trial_end: datetime | None = Field(  # type: ignore[call-overload]
        default=None, nullable=True, sa_type=DateTime(timezone=True)
    )

    metadata_: dict[str, Any] | None = Field(
        default=None,
        sa_column=Column("metadata", JSONB, nullable=True),
    )

    # Set when the "subscription confirmed" email has gone out for this subscription
    confirmation_sent_at: datetime | None = Field(  # type: ignore[call-overload]
        default=None,
        nullable=True,
        sa_type=DateTime(timezone=True),
        sa_column_kwargs={"comment": "When the subscription confirmed email was dispatched"},
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
