"""Health endpoint tests."""

from __future__ import annotations

import pytest


@pytest.mark.asyncio
async def test_health(anon_client):
    resp = await anon_client.get("/health")

    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "healthy"
    # The lifespan does not run under ASGITransport, so no scheduler is started
    assert data["scheduler"] is False
    assert set(data["integrations"]) == {"stripe", "postmark", "crm"}
