"""
CertLedger - Test configuration and shared fixtures.
"""

import os

# Test environment before anything reads settings
os.environ.setdefault("LEDGER_BACKEND", "memory")
os.environ.setdefault("OCR_ENGINE", "plain")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import pytest
from httpx import ASGITransport, AsyncClient

from certledger.core.config import get_settings
from certledger.core.metrics import reset_metrics
from certledger.main import create_app
from certledger.services.forgery_scoring import get_forgery_scorer
from certledger.services.ledger import (
    LedgerRegistry,
    MemoryLedgerStore,
    get_ledger_registry,
    reset_ledger_registry,
)


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture(autouse=True)
def reset_state():
    """Every test starts with fresh settings, singletons and counters."""
    get_settings.cache_clear()
    get_forgery_scorer.cache_clear()
    reset_ledger_registry()
    reset_metrics()
    yield
    get_settings.cache_clear()
    get_forgery_scorer.cache_clear()
    reset_ledger_registry()


@pytest.fixture
def registry() -> LedgerRegistry:
    """Fresh in-memory registry."""
    return LedgerRegistry(MemoryLedgerStore(), timeout=5.0)


@pytest.fixture
def app(registry):
    """Create test application bound to the fresh registry."""
    application = create_app()
    application.dependency_overrides[get_ledger_registry] = lambda: registry
    return application


@pytest.fixture
async def client(app):
    """Async HTTP client against the ASGI app."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.fixture
def diploma_bytes() -> bytes:
    return (
        b"UNIVERSITY OF EXAMPLE\n"
        b"This certifies that John Doe\n"
        b"has been awarded the degree of Bachelor of Science\n"
        b"Issued 2024-06-01\n"
    )
