"""
CertLedger - FastAPI Application
Digital credential issuance and verification with forgery analysis.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from certledger import __version__
from certledger.core.config import Settings, get_settings
from certledger.core.database import close_db
from certledger.core.errors import setup_exception_handlers
from certledger.core.logging_config import setup_logging
from certledger.core.logging_middleware import RequestLoggingMiddleware
from certledger.core.timeout import TimeoutMiddleware
from certledger.routers import credentials, health
from certledger.services.ledger import get_ledger_registry, reset_ledger_registry

logger = logging.getLogger(__name__)


# ============================================================================
# Lifespan
# ============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    setup_logging(settings.log_level, json_format=settings.log_json, log_file=settings.log_file)

    registry = get_ledger_registry()
    logger.info(
        "%s %s starting (ledger=%s, ocr=%s)",
        settings.app_name,
        settings.app_version,
        registry.store.backend_name,
        settings.ocr_engine,
    )
    # Creates the database schema before the first request can race for it
    if not await registry.is_available():
        logger.warning("Ledger store %s is not reachable at startup", registry.store.backend_name)

    yield

    await registry.store.close()
    await close_db()
    reset_ledger_registry()
    logger.info("%s stopped", settings.app_name)


# ============================================================================
# Application Setup
# ============================================================================

def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()

    app = FastAPI(
        title=settings.app_name,
        description="Issue credentials onto a tamper-evident ledger and verify them with forgery analysis",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    # Last added is outermost: request logging also sees timed-out requests
    app.add_middleware(TimeoutMiddleware, timeout=settings.request_timeout_seconds)
    app.add_middleware(RequestLoggingMiddleware)

    setup_exception_handlers(app)

    app.include_router(health.router, tags=["Health"])
    app.include_router(credentials.router, prefix="/api/credentials", tags=["Credentials"])

    return app


app = create_app()
