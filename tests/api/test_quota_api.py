"""Quota endpoint tests."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from lifecycle.core.exceptions import ConflictError, ExternalServiceError
from lifecycle.models.quota import QuotaStatus
from lifecycle.services.email.templates import EmailKind
from lifecycle.services.notifications import EmailNotification
from lifecycle.services.quota import ConsumeResult


def _status(generated: int, max_letters: int = 10) -> QuotaStatus:
    return QuotaStatus(
        letters_generated=generated,
        max_letters=max_letters,
        remaining_letters=max_letters - generated,
        reset_date=None,
        first_generation_date=None,
        can_generate=generated < max_letters,
        subscription_tier="free",
    )


@pytest.fixture
def manager():
    with patch("lifecycle.api.v1.quota.quota_manager") as mock_manager:
        mock_manager.get_status = AsyncMock(return_value=_status(3))
        mock_manager.consume = AsyncMock()
        yield mock_manager


@pytest.fixture
def dispatcher():
    with patch("lifecycle.api.v1.quota.notification_dispatcher") as mock_dispatcher:
        mock_dispatcher.dispatch_all = MagicMock()
        yield mock_dispatcher


@pytest.mark.asyncio
async def test_get_quota(api_client, manager, test_account):
    resp = await api_client.get("/api/v1/quota")

    assert resp.status_code == 200
    assert resp.json()["remaining_letters"] == 7
    assert manager.get_status.call_args.args[1] is test_account


@pytest.mark.asyncio
async def test_consume_commits_then_notifies(api_client, manager, dispatcher, session):
    warning = EmailNotification(kind=EmailKind.QUOTA_WARNING, to="marie@example.com")
    manager.consume.return_value = ConsumeResult(
        allowed=True, status=_status(8), notifications=[warning]
    )

    resp = await api_client.post("/api/v1/quota/consume")

    assert resp.status_code == 200
    assert resp.json()["letters_generated"] == 8
    session.commit.assert_awaited()
    dispatcher.dispatch_all.assert_called_once_with([warning])


@pytest.mark.asyncio
async def test_exhausted_quota_is_403_with_status(api_client, manager, dispatcher):
    manager.consume.return_value = ConsumeResult(allowed=False, status=_status(10))

    resp = await api_client.post("/api/v1/quota/consume")

    assert resp.status_code == 403
    detail = resp.json()["detail"]
    assert detail["quota"]["can_generate"] is False
    dispatcher.dispatch_all.assert_not_called()


@pytest.mark.asyncio
async def test_concurrent_update_is_409(api_client, manager, dispatcher):
    manager.consume.side_effect = ConflictError("version moved")

    resp = await api_client.post("/api/v1/quota/consume")

    assert resp.status_code == 409


@pytest.mark.asyncio
async def test_requires_auth(anon_client, manager):
    resp = await anon_client.get("/api/v1/quota")

    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_untranslated_upstream_failure_is_503(api_client, manager):
    manager.get_status.side_effect = ExternalServiceError("postgres", "statement timeout")

    resp = await api_client.get("/api/v1/quota")

    assert resp.status_code == 503
    assert resp.json() == {"detail": "Upstream service unavailable"}
