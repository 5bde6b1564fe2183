"""
CertLedger Ledger Service
Pluggable ledger backends behind one idempotent registry.
"""

from typing import Optional

from certledger.core.config import Settings, get_settings
from certledger.services.ledger.base import (
    DocumentRecord,
    LedgerStats,
    LedgerStore,
    ReceiptIDGenerator,
    VerificationResult,
)
from certledger.services.ledger.memory import MemoryLedgerStore
from certledger.services.ledger.registry import LedgerRegistry


def get_ledger_store(settings: Optional[Settings] = None) -> LedgerStore:
    """
    Build the configured ledger store.

    Args:
        settings: memory | file | database, taken from settings.ledger_backend
    """
    settings = settings or get_settings()
    if settings.ledger_backend == "file":
        return MemoryLedgerStore(settings.ledger_file)
    if settings.ledger_backend == "database":
        from certledger.core.database import get_engine
        from certledger.services.ledger.database import DatabaseLedgerStore

        return DatabaseLedgerStore(get_engine())
    return MemoryLedgerStore()


_registry_instance: Optional[LedgerRegistry] = None


def get_ledger_registry() -> LedgerRegistry:
    """Get the ledger registry singleton."""
    global _registry_instance
    if _registry_instance is None:
        settings = get_settings()
        _registry_instance = LedgerRegistry(
            get_ledger_store(settings),
            timeout=settings.registry_timeout_seconds,
        )
    return _registry_instance


def reset_ledger_registry() -> None:
    """Drop the singleton so the next call rebuilds it from settings."""
    global _registry_instance
    _registry_instance = None


__all__ = [
    "DocumentRecord",
    "LedgerStats",
    "LedgerStore",
    "LedgerRegistry",
    "MemoryLedgerStore",
    "ReceiptIDGenerator",
    "VerificationResult",
    "get_ledger_store",
    "get_ledger_registry",
    "reset_ledger_registry",
]
