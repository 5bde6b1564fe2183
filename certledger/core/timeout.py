"""
Timeouts for CertLedger.

- bounded(): caps a single core call (extraction, registry) and raises a
  typed OperationTimeout on expiry.
- TimeoutMiddleware: caps whole HTTP requests with a 504 response.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from certledger.core.errors import OperationTimeout
from certledger.core.logging_config import request_id_var
from certledger.core.metrics import incr_metric

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def bounded(
    awaitable: Awaitable[T],
    timeout: Optional[float],
    error_cls: type[OperationTimeout] = OperationTimeout,
) -> T:
    """
    Await with an upper bound.

    The inner task is cancelled on expiry, so cleanup in it (transaction
    rollback, lock release) runs before error_cls is raised. A timeout of
    None means no bound.
    """
    if timeout is None:
        return await awaitable
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except asyncio.TimeoutError:
        incr_metric("timeouts_total")
        logger.warning(
            "%s exceeded %.1fs",
            error_cls.operation,
            timeout,
            extra={"timeout_seconds": timeout},
        )
        raise error_cls(timeout) from None


class TimeoutMiddleware(BaseHTTPMiddleware):
    """
    Caps total request time with a 504 in the standard error format.

    Usage:
        app.add_middleware(TimeoutMiddleware, timeout=120.0)
    """

    def __init__(self, app, timeout: float = 120.0):
        super().__init__(app)
        self.timeout = timeout

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        try:
            return await bounded(call_next(request), self.timeout)
        except OperationTimeout as exc:
            logger.warning(
                "Request %s %s cut off",
                request.method,
                request.url.path,
                extra={"path": request.url.path, "method": request.method},
            )
            return JSONResponse(
                status_code=exc.status_code,
                content={
                    "error": exc.error_code,
                    "message": f"Request timed out after {self.timeout} seconds",
                    "details": exc.details,
                    "request_id": request_id_var.get(),
                },
                headers={"Retry-After": "30"},
            )
