"""Invoice record - local mirror of a Stripe invoice."""

import uuid as uuid_pkg
from datetime import UTC, datetime

from sqlalchemy import Column, DateTime, ForeignKey, String, text
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlmodel import Field, SQLModel


class InvoiceRecord(SQLModel, table=True):
    """Invoice keyed by stripe_invoice_id. Amounts are minor currency units."""

    __tablename__ = "stripe_invoices"

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

    stripe_invoice_id: str = Field(max_length=255, nullable=False, unique=True)
    stripe_subscription_id: str | None = Field(
        default=None, max_length=255, nullable=True, index=True
    )
    stripe_customer_id: str = Field(max_length=255, nullable=False)

    amount_due: int = Field(default=0, nullable=False)
    amount_paid: int = Field(default=0, nullable=False)
    amount_remaining: int = Field(default=0, nullable=False)
    currency: str = Field(default="eur", max_length=3, nullable=False)
    status: str = Field(sa_column=Column(String(30), nullable=False))

    description: str | None = Field(default=None, max_length=500, nullable=True)
    billing_reason: str | None = Field(default=None, max_length=50, nullable=True)

    period_start: datetime | None = Field(  # type: ignore[call-overload]
        default=None, nullable=True, sa_type=DateTime(timezone=True)
    )
    period_end: datetime | None = Field(  # type: ignore[call-overload]
        default=None, nullable=True, sa_type=DateTime(timezone=True)
    )

    hosted_invoice_url: str | None = Field(default=None, max_length=1000, nullable=True)
    invoice_pdf: str | None = Field(default=None, max_length=1000, nullable=True)
    attempt_count: int = Field(default=0, nullable=False)

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
