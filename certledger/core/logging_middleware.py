"""
Request Logging Middleware for CertLedger.

One "completed" line per API request with status and timing, plus the
request id echoed back in X-Request-Id. Probe and metrics paths are not
logged or counted.
"""

import logging
import time
import uuid
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from certledger.core.logging_config import request_id_var
from certledger.core.metrics import incr_metric, record_request_latency

logger = logging.getLogger("certledger.requests")

PROBE_PATHS = frozenset({"/healthz", "/livez", "/readyz", "/health", "/metrics", "/metrics/json"})


def client_ip(request: Request) -> str:
    """Client address, preferring proxy headers."""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.headers.get("X-Real-IP") or (request.client.host if request.client else "unknown")


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log, time and count HTTP requests."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if request.url.path in PROBE_PATHS:
            return await call_next(request)

        request_id = request.headers.get("X-Request-Id") or uuid.uuid4().hex[:8]
        token = request_id_var.set(request_id)
        try:
            response = await self._timed(request, call_next)
        finally:
            request_id_var.reset(token)
        response.headers["X-Request-Id"] = request_id
        return response

    async def _timed(self, request: Request, call_next: Callable) -> Response:
        incr_metric("requests_total")
        start = time.perf_counter()
        context = {
            "method": request.method,
            "path": request.url.path,
            "client_ip": client_ip(request),
        }

        try:
            response = await call_next(request)
        except Exception:
            incr_metric("errors_total")
            logger.exception(
                "%s %s raised after %.2fms",
                request.method,
                request.url.path,
                (time.perf_counter() - start) * 1000,
                extra=context,
            )
            raise

        duration_ms = (time.perf_counter() - start) * 1000
        record_request_latency(duration_ms)

        if response.status_code >= 500:
            incr_metric("errors_total")
            level = logging.ERROR
        elif response.status_code >= 400:
            level = logging.WARNING
        else:
            level = logging.INFO
        logger.log(
            level,
            "%s %s -> %d (%.2fms)",
            request.method,
            request.url.path,
            response.status_code,
            duration_ms,
            extra={**context, "status_code": response.status_code, "duration_ms": round(duration_ms, 2)},
        )

        response.headers["X-Response-Time"] = f"{duration_ms:.2f}ms"
        return response
