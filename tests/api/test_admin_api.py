"""Operator endpoint tests: admin secret, forced execution and maintenance."""

from __future__ import annotations

import uuid
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from lifecycle.core.exceptions import DeletionExecutionError
from lifecycle.models.audit import AuditAction
from lifecycle.services.deletion.executor import BatchReport


@pytest.fixture
def executor():
    with patch("lifecycle.api.v1.admin.batch_executor") as mock_executor:
        mock_executor.execute_pending = AsyncMock(
            return_value=BatchReport(executed=2, failed=1, total=3)
        )
        mock_executor.execute_for_user = AsyncMock(return_value=True)
        yield mock_executor


@pytest.fixture
def maintenance():
    with patch("lifecycle.api.v1.admin.deletion_maintenance") as mock_maintenance:
        mock_maintenance.cleanup_expired_requests = AsyncMock(
            return_value={"expired_requests_removed": 3, "rate_limit_counters_removed": 0}
        )
        mock_maintenance.execute_pending_deletions = AsyncMock(
            return_value={"executed": 0, "failed": 0, "skipped": 0, "total": 0, "errors": []}
        )
        mock_maintenance.full_maintenance = AsyncMock(
            return_value={"cleanup": {}, "deletions": {}}
        )
        mock_maintenance.status = AsyncMock(
            return_value={"active_requests": 4, "ready_for_deletion": 1, "expired_requests": 2}
        )
        yield mock_maintenance


@pytest.fixture
def audit():
    with patch("lifecycle.api.deps.request_context.audit_ops") as mock_audit:
        mock_audit.log = AsyncMock()
        yield mock_audit


# ─────────────────────────────────────────────────────────────────────────────
# POST /admin/deletions/execute
# ─────────────────────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_execute_pending(anon_client, admin_secret, executor):
    resp = await anon_client.post(
        "/api/v1/admin/deletions/execute",
        json={"action": "execute_pending_deletions", "admin_secret": admin_secret},
    )

    assert resp.status_code == 200
    assert resp.json() == {"executed": 2, "failed": 1, "total": 3}


@pytest.mark.asyncio
async def test_execute_user(anon_client, admin_secret, executor):
    user_id = uuid.uuid4()

    resp = await anon_client.post(
        "/api/v1/admin/deletions/execute",
        json={
            "action": "execute_user_deletion",
            "admin_secret": admin_secret,
            "user_id": str(user_id),
        },
    )

    assert resp.status_code == 200
    executor.execute_for_user.assert_awaited_once_with(user_id)


@pytest.mark.asyncio
async def test_execute_user_requires_user_id(anon_client, admin_secret, executor):
    resp = await anon_client.post(
        "/api/v1/admin/deletions/execute",
        json={"action": "execute_user_deletion", "admin_secret": admin_secret},
    )

    assert resp.status_code == 400
    assert resp.json() == {"detail": "user_id is required"}


@pytest.mark.asyncio
async def test_execute_user_nothing_confirmed(anon_client, admin_secret, executor):
    executor.execute_for_user.return_value = False

    resp = await anon_client.post(
        "/api/v1/admin/deletions/execute",
        json={
            "action": "execute_user_deletion",
            "admin_secret": admin_secret,
            "user_id": str(uuid.uuid4()),
        },
    )

    assert resp.status_code == 404
    assert resp.json() == {"detail": "Confirmed deletion request not found"}


@pytest.mark.asyncio
async def test_execute_user_failure(anon_client, admin_secret, executor):
    executor.execute_for_user.side_effect = DeletionExecutionError("hard delete reported failure")

    resp = await anon_client.post(
        "/api/v1/admin/deletions/execute",
        json={
            "action": "execute_user_deletion",
            "admin_secret": admin_secret,
            "user_id": str(uuid.uuid4()),
        },
    )

    assert resp.status_code == 500


@pytest.mark.asyncio
async def test_wrong_secret_is_audited(anon_client, admin_secret, executor, audit, session):
    resp = await anon_client.post(
        "/api/v1/admin/deletions/execute",
        json={"action": "execute_pending_deletions", "admin_secret": "guess"},
        headers={"X-Forwarded-For": "192.0.2.66"},
    )

    assert resp.status_code == 403
    executor.execute_pending.assert_not_awaited()
    assert audit.log.call_args.args[1] == AuditAction.ADMIN_SECRET_REJECTED
    assert audit.log.call_args.kwargs["ip_address"] == "192.0.2.66"
    session.commit.assert_awaited()


@pytest.mark.asyncio
async def test_unconfigured_secret_is_503(anon_client, executor):
    with patch("lifecycle.api.deps.request_context.settings", MagicMock(admin_secret="")):
        resp = await anon_client.post(
            "/api/v1/admin/deletions/execute",
            json={"action": "execute_pending_deletions", "admin_secret": "anything"},
        )

    assert resp.status_code == 503


# ─────────────────────────────────────────────────────────────────────────────
# Maintenance
# ─────────────────────────────────────────────────────────────────────────────


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("action", "method"),
    [
        ("cleanup_expired_requests", "cleanup_expired_requests"),
        ("execute_pending_deletions", "execute_pending_deletions"),
        ("full_maintenance", "full_maintenance"),
    ],
)
async def test_maintenance_actions(anon_client, admin_secret, maintenance, action, method):
    resp = await anon_client.post(
        "/api/v1/maintenance/cleanup",
        json={"action": action, "admin_secret": admin_secret},
    )

    assert resp.status_code == 200
    assert resp.json()["action"] == action
    getattr(maintenance, method).assert_awaited_once()


@pytest.mark.asyncio
async def test_maintenance_unknown_action(anon_client, admin_secret, maintenance):
    resp = await anon_client.post(
        "/api/v1/maintenance/cleanup",
        json={"action": "drop_everything", "admin_secret": admin_secret},
    )

    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_status_reads_secret_header(anon_client, admin_secret, maintenance):
    resp = await anon_client.get(
        "/api/v1/maintenance/status", headers={"X-Admin-Secret": admin_secret}
    )

    assert resp.status_code == 200
    assert resp.json()["ready_for_deletion"] == 1


@pytest.mark.asyncio
async def test_status_without_secret(anon_client, admin_secret, maintenance, audit):
    resp = await anon_client.get("/api/v1/maintenance/status")

    assert resp.status_code == 403
    maintenance.status.assert_not_awaited()
