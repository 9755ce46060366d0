"""Account model - the profile row the lifecycle workflows act upon."""

import uuid as uuid_pkg
from datetime import UTC, datetime
from enum import Enum

from sqlalchemy import DateTime, String, text
from sqlmodel import Field, SQLModel


class SubscriptionTier(str, Enum):
    """Account tiers granted by billing state."""

    FREE = "free"
    PREMIUM = "premium"


class Account(SQLModel, table=True):
    """
    Account model - mirrors the application's user_profiles table.

    The user_id comes from Supabase Auth. The billing columns are
    maintained by the reconciler; stripe_customer_id is backfilled by the
    customer resolver when the first billing event arrives before the
    account was linked at checkout.
    """

    __tablename__ = "user_profiles"

    user_id: uuid_pkg.UUID = Field(
        primary_key=True,
        nullable=False,
        description="UUID from Supabase auth.users",
    )
    email: str | None = Field(default=None, max_length=255, index=True)
    first_name: str | None = Field(default=None, max_length=100)
    last_name: str | None = Field(default=None, max_length=100)
    language: str = Field(
        default="fr",
        max_length=5,
        nullable=False,
        sa_column_kwargs={"server_default": text("'fr'")},
    )

    subscription_tier: str = Field(
        default=SubscriptionTier.FREE.value,
        sa_type=String(20),  # type: ignore[call-overload]
        nullable=False,
        sa_column_kwargs={"server_default": SubscriptionTier.FREE.value},
    )
    stripe_customer_id: str | None = Field(
        default=None, max_length=255, nullable=True, unique=True, index=True
    )
    stripe_subscription_id: str | None = Field(default=None, max_length=255, nullable=True)
    subscription_end_date: datetime | None = Field(  # type: ignore[call-overload]
        default=None, nullable=True, sa_type=DateTime(timezone=True)
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

    @property
    def display_name(self) -> str:
        return self.first_name or (self.email.split("@")[0] if self.email else "")
