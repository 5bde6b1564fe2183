"""
Health & Metrics Router
Observability endpoints for monitoring.

Endpoints:
- /healthz - Basic liveness check (is the process running?)
- /livez - Kubernetes liveness probe (same as healthz)
- /readyz - Readiness check (can the ledger store be reached?)
- /metrics - Prometheus metrics
- /metrics/json - JSON metrics
"""

import time
from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse, PlainTextResponse

from certledger.core.config import Settings, get_settings
from certledger.core.metrics import get_metrics
from certledger.services.ledger import LedgerRegistry, get_ledger_registry


router = APIRouter()

# Track startup time for uptime calculation
_start_time = time.time()

# Counters exported on /metrics: (name, help text)
_COUNTERS = [
    ("requests_total", "Total requests"),
    ("errors_total", "Total errors"),
    ("fingerprints_total", "Documents fingerprinted"),
    ("registrations_total", "New ledger registrations"),
    ("registrations_idempotent_total", "Registrations that returned an existing record"),
    ("verifications_total", "Ledger lookups"),
    ("verifications_found_total", "Ledger lookups that found a record"),
    ("analyses_total", "Forgery analyses"),
    ("analyses_forged_total", "Forgery analyses above the threshold"),
    ("extraction_failures_total", "Failed text extractions"),
    ("storage_failures_total", "Ledger store failures"),
    ("timeouts_total", "Operations that exceeded their time bound"),
]


@router.get("/healthz")
async def health_check():
    """
    Liveness probe - is the app process running?
    Returns 200 if the process is alive.
    """
    return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}


@router.get("/livez")
async def liveness_check():
    """Kubernetes liveness probe alias."""
    return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}


@router.get("/health")
async def health_alias():
    """Alias for /healthz for compatibility."""
    return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}


@router.get("/readyz")
async def readiness_check(
    settings: Settings = Depends(get_settings),
    registry: LedgerRegistry = Depends(get_ledger_registry),
):
    """
    Readiness check - is the app ready to serve traffic?
    Returns 503 when the ledger store cannot be reached.
    """
    start = time.perf_counter()
    ledger_ok = await registry.is_available()

    details = {
        "ledger_backend": registry.store.backend_name,
        "ocr_engine": settings.ocr_engine,
        "check_duration_ms": round((time.perf_counter() - start) * 1000, 2),
    }

    return JSONResponse(
        status_code=200 if ledger_ok else 503,
        content={
            "status": "ready" if ledger_ok else "degraded",
            "checks": {"ledger": ledger_ok},
            "details": details,
            "uptime_seconds": round(time.time() - _start_time, 2),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        },
    )


@router.get("/metrics", response_class=PlainTextResponse)
async def metrics(settings: Settings = Depends(get_settings)):
    """Prometheus-compatible metrics endpoint."""
    if not settings.enable_metrics:
        return PlainTextResponse("Metrics disabled", status_code=404)

    all_metrics = get_metrics()
    uptime = all_metrics.get("uptime_seconds", time.time() - _start_time)
    latency = all_metrics.get("latency", {})

    metrics_lines = [
        "# HELP certledger_uptime_seconds Time since application start",
        "# TYPE certledger_uptime_seconds gauge",
        f"certledger_uptime_seconds {uptime:.2f}",
        "",
        "# HELP certledger_info Application information",
        "# TYPE certledger_info gauge",
        f'certledger_info{{version="{settings.app_version}",ledger_backend="{settings.ledger_backend}"}} 1',
    ]

    for name, help_text in _COUNTERS:
        metrics_lines.extend([
            "",
            f"# HELP certledger_{name} {help_text}",
            f"# TYPE certledger_{name} counter",
            f"certledger_{name} {all_metrics.get(name, 0)}",
        ])

    if latency:
        metrics_lines.extend([
            "",
            "# HELP certledger_request_latency_ms Request latency in milliseconds",
            "# TYPE certledger_request_latency_ms summary",
            f'certledger_request_latency_ms{{quantile="0.5"}} {latency.get("p50_ms", 0):.2f}',
            f'certledger_request_latency_ms{{quantile="0.95"}} {latency.get("p95_ms", 0):.2f}',
        ])

    return PlainTextResponse("\n".join(metrics_lines), media_type="text/plain")


@router.get("/metrics/json")
async def metrics_json(settings: Settings = Depends(get_settings)):
    """JSON metrics endpoint for non-Prometheus consumers."""
    if not settings.enable_metrics:
        return JSONResponse({"error": "Metrics disabled"}, status_code=404)

    all_metrics = get_metrics()
    all_metrics["app_version"] = settings.app_version
    all_metrics["ledger_backend"] = settings.ledger_backend
    return all_metrics
