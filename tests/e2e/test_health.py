"""
E2E: application wiring.
"""

from __future__ import annotations

import pytest
from httpx import ASGITransport, AsyncClient


pytestmark = pytest.mark.asyncio


async def test_health_and_routes_registered():
    from worksettle.main import app

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        resp = await ac.get("/health")

    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"

    paths = app.openapi()["paths"]
    assert "/api/v1/payments/status" in paths
    assert "/api/v1/urgent-fees/run" in paths
    assert "/api/v1/reports/platform-revenue" in paths
