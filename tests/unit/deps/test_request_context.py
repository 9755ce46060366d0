"""Unit tests for caller context and the operator secret check."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi import HTTPException

from lifecycle.api.deps.request_context import client_ip, get_request_context, verify_admin_secret
from lifecycle.core.exceptions import ForbiddenError
from lifecycle.models.audit import AuditAction


def make_request(headers: dict[str, str] | None = None, host: str | None = "10.0.0.9") -> MagicMock:
    request = MagicMock()
    request.headers = headers or {}
    request.client = MagicMock(host=host) if host else None
    return request


class TestClientIp:
    def test_prefers_first_forwarded_hop(self):
        request = make_request({"x-forwarded-for": "203.0.113.5, 10.0.0.1"})
        assert client_ip(request) == "203.0.113.5"

    def test_falls_back_to_real_ip(self):
        request = make_request({"x-real-ip": " 198.51.100.7 "})
        assert client_ip(request) == "198.51.100.7"

    def test_falls_back_to_socket_peer(self):
        assert client_ip(make_request()) == "10.0.0.9"

    def test_none_without_any_source(self):
        assert client_ip(make_request(host=None)) is None

    def test_context_carries_user_agent(self):
        ctx = get_request_context(make_request({"user-agent": "Mozilla/5.0"}))
        assert ctx.ip_address == "10.0.0.9"
        assert ctx.user_agent == "Mozilla/5.0"


class TestVerifyAdminSecret:
    def setup_method(self):
        self.db = AsyncMock()
        self.request = make_request({"user-agent": "curl/8"})

    @pytest.mark.asyncio
    async def test_accepts_matching_secret(self):
        with (
            patch("lifecycle.api.deps.request_context.settings") as mock_settings,
            patch("lifecycle.api.deps.request_context.audit_ops") as mock_audit,
        ):
            mock_settings.admin_secret = "operator-secret"
            mock_audit.log = AsyncMock()

            await verify_admin_secret(self.db, "operator-secret", self.request, "status")

        mock_audit.log.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_rejects_and_audits_wrong_secret(self):
        with (
            patch("lifecycle.api.deps.request_context.settings") as mock_settings,
            patch("lifecycle.api.deps.request_context.audit_ops") as mock_audit,
        ):
            mock_settings.admin_secret = "operator-secret"
            mock_audit.log = AsyncMock()

            with pytest.raises(ForbiddenError) as exc_info:
                await verify_admin_secret(self.db, "guess", self.request, "full_maintenance")

        assert exc_info.value.status_code == 403
        assert exc_info.value.detail == "Unauthorized"
        mock_audit.log.assert_awaited_once()
        assert mock_audit.log.call_args[0][1] == AuditAction.ADMIN_SECRET_REJECTED
        assert mock_audit.log.call_args[1]["details"] == {"action": "full_maintenance"}
        # Committed before raising so the audit survives the request rollback
        self.db.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_503_when_secret_not_configured(self):
        with patch("lifecycle.api.deps.request_context.settings") as mock_settings:
            mock_settings.admin_secret = ""

            with pytest.raises(HTTPException) as exc_info:
                await verify_admin_secret(self.db, "anything", self.request, "status")

        assert exc_info.value.status_code == 503
