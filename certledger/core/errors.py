"""
Standardized Error Handling for CertLedger.

Every core failure is a typed CertLedgerError. The API turns them into
JSON with a standard structure; Python callers catch them directly.
"""

import logging
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from starlette.exceptions import HTTPException as StarletteHTTPException

from certledger.core.logging_config import request_id_var

logger = logging.getLogger(__name__)


# =============================================================================
# Error Response Models
# =============================================================================

class ErrorResponse(BaseModel):
    """Standard error response format."""
    error: str  # Error code (e.g., "invalid_input", "storage_unavailable")
    message: str
    details: list[dict] | None = None
    request_id: str | None = None


# =============================================================================
# Custom Exceptions
# =============================================================================

class CertLedgerError(Exception):
    """Base exception for CertLedger errors."""

    def __init__(
        self,
        message: str,
        error_code: str = "certledger_error",
        status_code: int = 500,
        details: list[dict] | None = None,
    ):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details
        super().__init__(message)


class DocumentReadError(CertLedgerError, OSError):
    """Reading document bytes failed."""

    def __init__(self, source: Any = None, reason: str = "could not be read"):
        message = f"Document {reason}"
        if source:
            message = f"Document '{source}' {reason}"
        super().__init__(
            message=message,
            error_code="document_read_error",
            status_code=400,
        )


class ExtractionFailed(CertLedgerError):
    """The text extraction adapter could not process the input."""

    def __init__(self, engine: str, message: str = "Text extraction failed"):
        self.engine = engine
        super().__init__(
            message=f"{engine}: {message}",
            error_code="extraction_failed",
            status_code=422,
        )


class InvalidInputError(CertLedgerError, ValueError):
    """Malformed input (confidence out of range, empty fingerprint)."""

    def __init__(self, message: str, field: Optional[str] = None):
        details = [{"field": field}] if field else None
        super().__init__(
            message=message,
            error_code="invalid_input",
            status_code=422,
            details=details,
        )


class StorageUnavailable(CertLedgerError):
    """Ledger store could not be reached."""

    def __init__(self, store: str = "Ledger store", message: str = "is unavailable"):
        super().__init__(
            message=f"{store} {message}",
            error_code="storage_unavailable",
            status_code=503,
        )


class OperationTimeout(CertLedgerError, TimeoutError):
    """An extraction or registry call exceeded its bound."""

    operation = "Operation"

    def __init__(self, timeout: float):
        self.timeout = timeout
        super().__init__(
            message=f"{self.operation} timed out after {timeout} seconds",
            error_code="timeout",
            status_code=504,
            details=[{"timeout_seconds": timeout}],
        )


class ExtractionTimeout(OperationTimeout):
    operation = "Text extraction"


class RegistryTimeout(OperationTimeout):
    operation = "Ledger registry call"


# =============================================================================
# Exception Handlers
# =============================================================================

# HTTPException status -> error code
_HTTP_ERROR_CODES = {
    400: "bad_request",
    404: "not_found",
    405: "method_not_allowed",
    413: "payload_too_large",
    422: "validation_error",
    503: "service_unavailable",
}


def _error_response(
    request: Request,
    status_code: int,
    error: str,
    message: str,
    details: list[dict] | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    body = ErrorResponse(
        error=error,
        message=message,
        details=details,
        request_id=request_id_var.get() or request.headers.get("X-Request-Id"),
    )
    return JSONResponse(status_code=status_code, content=body.model_dump(), headers=headers)


async def certledger_error_handler(request: Request, exc: CertLedgerError) -> JSONResponse:
    """Typed core failures keep their own status and error code."""
    log = logger.error if exc.status_code >= 500 else logger.info
    log(
        "%s on %s: %s",
        exc.error_code,
        request.url.path,
        exc.message,
        extra={"error_code": exc.error_code, "path": request.url.path},
    )
    # Outages and timeouts are transient; the caller may retry
    retry = isinstance(exc, (StorageUnavailable, OperationTimeout))
    return _error_response(
        request,
        exc.status_code,
        exc.error_code,
        exc.message,
        exc.details,
        headers={"Retry-After": "5"} if retry else None,
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return _error_response(
        request,
        exc.status_code,
        _HTTP_ERROR_CODES.get(exc.status_code, "error"),
        str(exc.detail) if exc.detail else f"HTTP {exc.status_code}",
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Request body / form validation failures."""
    details = [
        {
            "loc": [str(part) for part in error.get("loc", [])],
            "msg": error.get("msg", ""),
            "type": error.get("type", ""),
        }
        for error in exc.errors()
    ]
    logger.info("Validation error on %s: %d issues", request.url.path, len(details))
    return _error_response(request, 422, "validation_error", "Request validation failed", details)


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Anything unexpected: log the traceback, answer with a generic 500."""
    logger.error(
        "Unhandled %s on %s %s",
        type(exc).__name__,
        request.method,
        request.url.path,
        exc_info=exc,
        extra={"path": request.url.path, "method": request.method},
    )
    return _error_response(request, 500, "internal_error", "An unexpected error occurred")


def setup_exception_handlers(app: FastAPI) -> None:
    """Register all exception handlers with the FastAPI app."""
    app.add_exception_handler(CertLedgerError, certledger_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)
