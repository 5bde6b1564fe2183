"""
CertLedger - Health & Monitoring Tests
Tests for health checks, readiness, and metrics.
"""

import re

import pytest
from httpx import AsyncClient

from certledger.core.config import Settings, get_settings
from certledger.services.ledger import LedgerRegistry, MemoryLedgerStore, get_ledger_registry


# =============================================================================
# Health Check Tests
# =============================================================================

@pytest.mark.anyio
@pytest.mark.parametrize("path", ["/healthz", "/health", "/livez"])
async def test_liveness_endpoints(client: AsyncClient, path):
    response = await client.get(path)
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ok"
    assert re.match(r"\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}", data["timestamp"])


# =============================================================================
# Readiness Check Tests
# =============================================================================

@pytest.mark.anyio
async def test_readyz(client: AsyncClient):
    response = await client.get("/readyz")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ready"
    assert data["checks"] == {"ledger": True}
    assert data["details"]["ledger_backend"] == "memory"


@pytest.mark.anyio
async def test_readyz_degraded_when_ledger_unreachable(app, client: AsyncClient, tmp_path):
    store = MemoryLedgerStore(tmp_path / "missing-dir" / "ledger.json")
    app.dependency_overrides[get_ledger_registry] = lambda: LedgerRegistry(store)

    response = await client.get("/readyz")
    assert response.status_code == 503
    assert response.json()["status"] == "degraded"


# =============================================================================
# Metrics Tests
# =============================================================================

@pytest.mark.anyio
async def test_metrics_prometheus_format(client: AsyncClient, diploma_bytes):
    await client.post(
        "/api/credentials/issue",
        files={"file": ("diploma.txt", diploma_bytes, "text/plain")},
    )

    response = await client.get("/metrics")
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/plain")
    body = response.text
    assert "# TYPE certledger_registrations_total counter" in body
    assert "certledger_registrations_total 1" in body
    assert "certledger_requests_total 1" in body


@pytest.mark.anyio
async def test_metrics_json(client: AsyncClient):
    response = await client.get("/metrics/json")
    assert response.status_code == 200
    data = response.json()
    assert data["ledger_backend"] == "memory"
    assert "uptime_seconds" in data
    assert data["registrations_total"] == 0


@pytest.mark.anyio
async def test_metrics_can_be_disabled(app, client: AsyncClient):
    app.dependency_overrides[get_settings] = lambda: Settings(enable_metrics=False)
    response = await client.get("/metrics")
    assert response.status_code == 404


@pytest.mark.anyio
async def test_unknown_route_uses_error_format(client: AsyncClient):
    response = await client.get("/does-not-exist")
    assert response.status_code == 404
    assert response.json()["error"] == "not_found"
