"""Root conftest — test infrastructure for all lifecycle tests.

Provides:
- Autouse mock for external services (Postmark, Brevo, Stripe, Supabase)
- A factory for mocked AsyncSession objects

The suite is fully mocked: no test talks to Postgres, Stripe, Postmark,
Brevo or Supabase.
"""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from lifecycle.services.crm.brevo import brevo_service
from lifecycle.services.email.postmark import postmark_service
from lifecycle.services.identity import identity_service
from lifecycle.services.stripe_service import stripe_service

# ─────────────────────────────────────────────────────────────────────────────
# Markers
# ─────────────────────────────────────────────────────────────────────────────


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line("markers", "workflow: end-to-end deletion flows over the fake store")


# ─────────────────────────────────────────────────────────────────────────────
# Database
# ─────────────────────────────────────────────────────────────────────────────


@pytest.fixture
def db() -> AsyncMock:
    """A mocked AsyncSession. add() is synchronous on the real session."""
    session = AsyncMock()
    session.add = MagicMock()
    return session


# ─────────────────────────────────────────────────────────────────────────────
# External Service Mocks (autouse)
# ─────────────────────────────────────────────────────────────────────────────


@pytest.fixture(autouse=True)
def mock_external_services():
    """SAFETY: Always mock external services.

    The singletons are patched in place rather than rebound at module level,
    because services capture them as constructor defaults at import time.
    Prevents accidental email sends, CRM writes, Stripe calls or sign-ins.
    """
    with (
        patch.object(postmark_service, "send", AsyncMock(return_value=True)) as mock_send,
        patch.object(brevo_service, "sync_contact", AsyncMock(return_value=True)) as mock_crm,
        patch.object(
            identity_service, "verify_password", AsyncMock(return_value=True)
        ) as mock_verify,
        patch.object(stripe_service, "get_subscription", MagicMock()) as mock_get_sub,
        patch.object(stripe_service, "cancel_subscription_now", MagicMock()) as mock_cancel,
        patch.object(stripe_service, "cancel_at_period_end", MagicMock()),
        patch.object(stripe_service, "list_paid_invoices", MagicMock(return_value=[])),
        patch.object(stripe_service, "create_refund", MagicMock()) as mock_refund,
        patch.object(stripe_service, "get_customer_email", MagicMock(return_value=None)),
        patch.object(stripe_service, "find_customer_by_email", MagicMock(return_value=None)),
    ):
        yield {
            "postmark": mock_send,
            "brevo": mock_crm,
            "identity": mock_verify,
            "stripe_get_subscription": mock_get_sub,
            "stripe_cancel": mock_cancel,
            "stripe_refund": mock_refund,
        }
