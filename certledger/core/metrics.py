"""
In-process counters exposed on /metrics (Prometheus text format).
"""

import time

_metrics: dict[str, int] = {
    "requests_total": 0,
    "errors_total": 0,
    "fingerprints_total": 0,
    "registrations_total": 0,
    "registrations_idempotent_total": 0,
    "verifications_total": 0,
    "verifications_found_total": 0,
    "analyses_total": 0,
    "analyses_forged_total": 0,
    "extraction_failures_total": 0,
    "storage_failures_total": 0,
    "timeouts_total": 0,
}

_latencies: list[float] = []
_startup_time: float = time.time()


def incr_metric(name: str, delta: int = 1) -> None:
    """Increment a counter metric. Unknown names are ignored."""
    if name in _metrics:
        _metrics[name] += delta


def record_request_latency(latency_ms: float) -> None:
    """Record request latency for percentile calculations."""
    _latencies.append(latency_ms)
    # Keep last 1000 samples
    if len(_latencies) > 1000:
        _latencies.pop(0)


def get_metrics() -> dict:
    """Get all metrics for the /metrics endpoint."""
    uptime = time.time() - _startup_time

    latency_stats = {}
    if _latencies:
        sorted_lat = sorted(_latencies)
        n = len(sorted_lat)
        latency_stats = {
            "p50_ms": sorted_lat[int(n * 0.50)],
            "p95_ms": sorted_lat[int(n * 0.95)] if n >= 20 else 0,
            "mean_ms": sum(sorted_lat) / n,
            "max_ms": sorted_lat[-1],
        }

    return {
        **_metrics,
        "uptime_seconds": uptime,
        "latency": latency_stats,
    }


def reset_metrics() -> None:
    """Zero all counters (tests)."""
    for key in _metrics:
        _metrics[key] = 0
    _latencies.clear()
