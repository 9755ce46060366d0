"""API test fixtures: HTTP clients over the app with a mocked session.

Builds on the root conftest (external service mocks). get_db is overridden
with an AsyncMock session; get_current_user and get_current_account return
fixed callers so routes are exercised without JWTs or Postgres. Services
the routes call are patched per test module.
"""

from __future__ import annotations

import uuid
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from httpx import ASGITransport, AsyncClient

from lifecycle.api.deps.auth import AuthenticatedUser, get_current_account, get_current_user
from lifecycle.core.database import get_db
from lifecycle.main import app

from tests.helpers.mock_factories import make_account

ADMIN_SECRET = "test-admin-secret"


@pytest.fixture
def session() -> AsyncMock:
    session = AsyncMock()
    session.add = MagicMock()
    return session


@pytest.fixture
def test_user() -> AuthenticatedUser:
    return AuthenticatedUser(id=uuid.uuid4(), email="marie@example.com")


@pytest.fixture
def test_account(test_user):
    return make_account(user_id=test_user.id, email=test_user.email)


@pytest.fixture
def admin_secret():
    """Configure the operator secret for the duration of a test."""
    with patch("lifecycle.api.deps.request_context.settings") as mock_settings:
        mock_settings.admin_secret = ADMIN_SECRET
        yield ADMIN_SECRET


# ─────────────────────────────────────────────────────────────────────────────
# Clients
# ─────────────────────────────────────────────────────────────────────────────


@pytest.fixture
async def anon_client(session):
    """HTTP client with the mocked session and no auth override."""

    async def override_db():
        yield session

    app.dependency_overrides[get_db] = override_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


@pytest.fixture
async def api_client(anon_client, test_user, test_account):
    """HTTP client that bypasses JWT auth and resolves the caller to test_account."""
    app.dependency_overrides[get_current_user] = lambda: test_user
    app.dependency_overrides[get_current_account] = lambda: test_account
    yield anon_client
