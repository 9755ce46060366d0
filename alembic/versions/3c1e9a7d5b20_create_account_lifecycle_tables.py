"""Create account lifecycle tables

Revision ID: 3c1e9a7d5b20
Revises:
Create Date: 2026-09-28

Creates:
- user_profiles: account row with tier and Stripe links
- stripe_subscriptions / stripe_invoices: local mirrors of gateway objects
- billing_events: one row per processed webhook event (redelivery guard)
- account_deletion_requests: deletion workflow, one live request per user
- account_audit_logs: security trail, survives hard deletes
- user_quotas: rolling generation window with optimistic version
- rate_limit_counters: fixed-window counters shared across instances

And the two data-deletion procedures invoked at execution time:
- execute_soft_delete_user(uuid): anonymize the profile, drop usage data
- execute_hard_delete_user(uuid): purge the profile (cascades) and the auth user

"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects.postgresql import JSONB, UUID

# revision identifiers, used by Alembic.
revision: str = "3c1e9a7d5b20"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    ]


def upgrade() -> None:
    # Step 1: Account profiles
    op.create_table(
        "user_profiles",
        sa.Column("user_id", UUID(as_uuid=True), primary_key=True),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("first_name", sa.String(100), nullable=True),
        sa.Column("last_name", sa.String(100), nullable=True),
        sa.Column("language", sa.String(5), nullable=False, server_default=sa.text("'fr'")),
        sa.Column("subscription_tier", sa.String(20), nullable=False, server_default="free"),
        sa.Column("stripe_customer_id", sa.String(255), nullable=True),
        sa.Column("stripe_subscription_id", sa.String(255), nullable=True),
        sa.Column("subscription_end_date", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_user_profiles_email", "user_profiles", ["email"])
    op.create_index(
        "ix_user_profiles_stripe_customer_id",
        "user_profiles",
        ["stripe_customer_id"],
        unique=True,
    )

    # Step 2: Gateway mirrors
    op.create_table(
        "stripe_subscriptions",
        sa.Column(
            "id",
            UUID(as_uuid=True),
            primary_key=True,
            server_default=sa.text("gen_random_uuid()"),
        ),
        sa.Column(
            "user_id",
            UUID(as_uuid=True),
            sa.ForeignKey("user_profiles.user_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("stripe_customer_id", sa.String(255), nullable=False),
        sa.Column("stripe_subscription_id", sa.String(255), nullable=False, unique=True),
        sa.Column("stripe_price_id", sa.String(255), nullable=True),
        sa.Column("status", sa.String(30), nullable=False),
        sa.Column("current_period_start", sa.DateTime(timezone=True), nullable=True),
        sa.Column("current_period_end", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "cancel_at_period_end",
            sa.Boolean,
            nullable=False,
            server_default=sa.text("false"),
        ),
        sa.Column("canceled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("trial_start", sa.DateTime(timezone=True), nullable=True),
        sa.Column("trial_end", sa.DateTime(timezone=True), nullable=True),
        sa.Column("metadata", JSONB, nullable=True),
        sa.Column(
            "confirmation_sent_at",
            sa.DateTime(timezone=True),
            nullable=True,
            comment="When the subscription confirmed email was dispatched",
        ),
        *_timestamps(),
    )
    op.create_index("ix_stripe_subscriptions_user_id", "stripe_subscriptions", ["user_id"])
    op.create_index(
        "ix_stripe_subscriptions_stripe_customer_id",
        "stripe_subscriptions",
        ["stripe_customer_id"],
    )

    op.create_table(
        "stripe_invoices",
        sa.Column(
            "id",
            UUID(as_uuid=True),
            primary_key=True,
            server_default=sa.text("gen_random_uuid()"),
        ),
        sa.Column(
            "user_id",
            UUID(as_uuid=True),
            sa.ForeignKey("user_profiles.user_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("stripe_invoice_id", sa.String(255), nullable=False, unique=True),
        sa.Column("stripe_subscription_id", sa.String(255), nullable=True),
        sa.Column("stripe_customer_id", sa.String(255), nullable=False),
        sa.Column("amount_due", sa.Integer, nullable=False, server_default=sa.text("0")),
        sa.Column("amount_paid", sa.Integer, nullable=False, server_default=sa.text("0")),
        sa.Column("amount_remaining", sa.Integer, nullable=False, server_default=sa.text("0")),
        sa.Column("currency", sa.String(3), nullable=False, server_default="eur"),
        sa.Column("status", sa.String(30), nullable=False),
        sa.Column("description", sa.String(500), nullable=True),
        sa.Column("billing_reason", sa.String(50), nullable=True),
        sa.Column("period_start", sa.DateTime(timezone=True), nullable=True),
        sa.Column("period_end", sa.DateTime(timezone=True), nullable=True),
        sa.Column("hosted_invoice_url", sa.String(1000), nullable=True),
        sa.Column("invoice_pdf", sa.String(1000), nullable=True),
        sa.Column("attempt_count", sa.Integer, nullable=False, server_default=sa.text("0")),
        *_timestamps(),
    )
    op.create_index("ix_stripe_invoices_user_id", "stripe_invoices", ["user_id"])
    op.create_index(
        "ix_stripe_invoices_stripe_subscription_id",
        "stripe_invoices",
        ["stripe_subscription_id"],
    )

    op.create_table(
        "billing_events",
        sa.Column(
            "id",
            UUID(as_uuid=True),
            primary_key=True,
            server_default=sa.text("gen_random_uuid()"),
        ),
        sa.Column("stripe_event_id", sa.String(255), nullable=False),
        sa.Column("event_type", sa.String(80), nullable=False),
        sa.Column(
            "user_id",
            UUID(as_uuid=True),
            sa.ForeignKey("user_profiles.user_id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("outcome", sa.String(30), nullable=False, server_default="processed"),
        sa.Column("payload", JSONB, nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
    )
    op.create_index(
        "ix_billing_events_stripe_event_id", "billing_events", ["stripe_event_id"], unique=True
    )
    op.create_index("ix_billing_events_event_type", "billing_events", ["event_type"])
    op.create_index("ix_billing_events_user_id", "billing_events", ["user_id"])

    # Step 3: Deletion workflow (no FK to user_profiles, rows outlive a hard delete)
    op.create_table(
        "account_deletion_requests",
        sa.Column(
            "id",
            UUID(as_uuid=True),
            primary_key=True,
            server_default=sa.text("gen_random_uuid()"),
        ),
        sa.Column("user_id", UUID(as_uuid=True), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("deletion_type", sa.String(10), nullable=False, server_default="hard"),
        sa.Column("reason", sa.String(1000), nullable=True),
        sa.Column("confirmation_token", sa.String(100), nullable=True),
        sa.Column("cooldown_hours", sa.Integer, nullable=False, server_default=sa.text("48")),
        sa.Column("scheduled_deletion_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("confirmed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("ip_address", sa.String(64), nullable=True),
        sa.Column("user_agent", sa.String(500), nullable=True),
        sa.Column(
            "refund_computed",
            sa.Boolean,
            nullable=False,
            server_default=sa.text("false"),
        ),
        sa.Column("refund_amount", sa.Integer, nullable=True),
        sa.Column("refund_id", sa.String(255), nullable=True),
        sa.Column("refund_reason", sa.String(255), nullable=True),
        *_timestamps(),
    )
    op.create_index(
        "ix_account_deletion_requests_user_id", "account_deletion_requests", ["user_id"]
    )
    op.create_index(
        "ix_account_deletion_requests_confirmation_token",
        "account_deletion_requests",
        ["confirmation_token"],
        unique=True,
    )
    op.create_index(
        "ix_account_deletion_requests_due",
        "account_deletion_requests",
        ["status", "scheduled_deletion_at"],
    )
    op.create_index(
        "uq_account_deletion_requests_live_user",
        "account_deletion_requests",
        ["user_id"],
        unique=True,
        postgresql_where=sa.text("status IN ('pending', 'confirmed')"),
    )

    op.create_table(
        "account_audit_logs",
        sa.Column(
            "id",
            UUID(as_uuid=True),
            primary_key=True,
            server_default=sa.text("gen_random_uuid()"),
        ),
        sa.Column("user_id", UUID(as_uuid=True), nullable=True),
        sa.Column("action", sa.String(50), nullable=False),
        sa.Column("ip_address", sa.String(64), nullable=True),
        sa.Column("user_agent", sa.String(500), nullable=True),
        sa.Column("details", JSONB, nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
    )
    op.create_index("ix_account_audit_logs_user_id", "account_audit_logs", ["user_id"])
    op.create_index("ix_account_audit_logs_action", "account_audit_logs", ["action"])

    # Step 4: Usage quota and rate limiting
    op.create_table(
        "user_quotas",
        sa.Column(
            "user_id",
            UUID(as_uuid=True),
            sa.ForeignKey("user_profiles.user_id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column("letters_generated", sa.Integer, nullable=False, server_default=sa.text("0")),
        sa.Column("max_letters", sa.Integer, nullable=False, server_default=sa.text("10")),
        sa.Column("reset_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("first_generation_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version", sa.Integer, nullable=False, server_default=sa.text("1")),
        *_timestamps(),
    )

    op.create_table(
        "rate_limit_counters",
        sa.Column("key", sa.String(255), primary_key=True),
        sa.Column("window_start", sa.DateTime(timezone=True), primary_key=True),
        sa.Column("count", sa.Integer, nullable=False, server_default=sa.text("0")),
    )

    # Step 5: Data-deletion procedures
    op.execute("""
        CREATE OR REPLACE FUNCTION public.execute_soft_delete_user(p_user_id uuid)
        RETURNS boolean AS $$
        BEGIN
            UPDATE public.user_profiles
            SET email = NULL,
                first_name = NULL,
                last_name = NULL,
                stripe_customer_id = NULL,
                stripe_subscription_id = NULL,
                subscription_tier = 'free',
                subscription_end_date = NULL,
                updated_at = NOW()
            WHERE user_id = p_user_id;
            IF NOT FOUND THEN
                RETURN FALSE;
            END IF;

            DELETE FROM public.user_quotas WHERE user_id = p_user_id;
            UPDATE auth.users
            SET email = NULL,
                raw_user_meta_data = '{}'::jsonb,
                banned_until = 'infinity'
            WHERE id = p_user_id;
            RETURN TRUE;
        END;
        $$ LANGUAGE plpgsql SECURITY DEFINER;
    """)

    op.execute("""
        CREATE OR REPLACE FUNCTION public.execute_hard_delete_user(p_user_id uuid)
        RETURNS boolean AS $$
        BEGIN
            DELETE FROM public.user_profiles WHERE user_id = p_user_id;
            IF NOT FOUND THEN
                RETURN FALSE;
            END IF;

            DELETE FROM auth.users WHERE id = p_user_id;
            RETURN TRUE;
        END;
        $$ LANGUAGE plpgsql SECURITY DEFINER;
    """)


def downgrade() -> None:
    op.execute("DROP FUNCTION IF EXISTS public.execute_hard_delete_user(uuid)")
    op.execute("DROP FUNCTION IF EXISTS public.execute_soft_delete_user(uuid)")

    op.drop_table("rate_limit_counters")
    op.drop_table("user_quotas")
    op.drop_table("account_audit_logs")
    op.drop_index(
        "uq_account_deletion_requests_live_user", table_name="account_deletion_requests"
    )
    op.drop_table("account_deletion_requests")
    op.drop_table("billing_events")
    op.drop_table("stripe_invoices")
    op.drop_table("stripe_subscriptions")
    op.drop_table("user_profiles")
