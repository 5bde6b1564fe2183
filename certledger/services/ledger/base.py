"""
CertLedger Ledger - Base Interface

Records, receipt ids, and the abstract store every backend implements.
"""

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional
from uuid import uuid4


# =============================================================================
# DATA CLASSES
# =============================================================================

@dataclass(frozen=True)
class DocumentRecord:
    """
    A credential on the ledger. Created once per fingerprint, never
    modified. Metadata is stored and returned verbatim.
    """
    fingerprint: str
    metadata: dict[str, Any]
    registered_at: datetime
    receipt_id: str
    registered_by: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "fingerprint": self.fingerprint,
            "metadata": self.metadata,
            "registered_at": self.registered_at.isoformat(),
            "receipt_id": self.receipt_id,
            "registered_by": self.registered_by,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "DocumentRecord":
        registered_at = datetime.fromisoformat(data["registered_at"])
        if registered_at.tzinfo is None:
            registered_at = registered_at.replace(tzinfo=timezone.utc)
        return cls(
            fingerprint=data["fingerprint"],
            metadata=data.get("metadata") or {},
            registered_at=registered_at,
            receipt_id=data["receipt_id"],
            registered_by=data.get("registered_by"),
        )


@dataclass(frozen=True)
class VerificationResult:
    """Derived on every verify call; never stored."""
    found: bool
    record: Optional[DocumentRecord] = None

    def to_dict(self) -> dict:
        return {
            "found": self.found,
            "record": self.record.to_dict() if self.record else None,
        }


@dataclass
class LedgerStats:
    total_records: int = 0
    total_issuers: int = 0
    by_document_type: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "total_records": self.total_records,
            "total_issuers": self.total_issuers,
            "by_document_type": self.by_document_type,
        }


# =============================================================================
# RECEIPT ID GENERATOR
# =============================================================================

class ReceiptIDGenerator:
    """Generate registration receipt ids."""

    PREFIX = "CRT"
    _PATTERN = re.compile(r"^CRT-(\d{4})-([0-9A-F]{12})$")

    @classmethod
    def generate(cls, now: Optional[datetime] = None) -> str:
        """
        Generate a receipt id in format: CRT-YYYY-XXXXXXXXXXXX

        YYYY = Registration year
        XXXXXXXXXXXX = Random hex suffix (restart-safe, no shared counter)
        """
        now = now or datetime.now(timezone.utc)
        return f"{cls.PREFIX}-{now:%Y}-{uuid4().hex[:12].upper()}"

    @classmethod
    def parse(cls, receipt_id: str) -> Optional[dict]:
        """Parse a receipt id to extract components."""
        match = cls._PATTERN.match(receipt_id or "")
        if match:
            return {"year": int(match.group(1)), "suffix": match.group(2)}
        return None

    @classmethod
    def is_valid(cls, receipt_id: str) -> bool:
        return cls.parse(receipt_id) is not None


# =============================================================================
# STORE INTERFACE
# =============================================================================

class LedgerStore(ABC):
    """
    Abstract base class for ledger backends.

    insert_if_absent() is the only write. It must be atomic: either the
    record is fully stored and returned, or an existing record for the same
    fingerprint is returned, or StorageUnavailable is raised and nothing is
    stored.
    """

    @property
    @abstractmethod
    def backend_name(self) -> str:
        """Return backend name: memory, file, database"""

    @abstractmethod
    async def is_connected(self) -> bool:
        """Check the store is reachable."""

    @abstractmethod
    async def get(self, fingerprint: str) -> Optional[DocumentRecord]:
        """Record for fingerprint, or None."""

    @abstractmethod
    async def insert_if_absent(self, record: DocumentRecord) -> tuple[DocumentRecord, bool]:
        """
        Compare-and-swap insert.

        Returns (stored_record, created). created is False when a record for
        the fingerprint already existed; stored_record is then that record.
        """

    @abstractmethod
    async def get_by_receipt(self, receipt_id: str) -> Optional[DocumentRecord]:
        """Record with the given receipt id, or None."""

    @abstractmethod
    async def list_by_issuer(self, issuer: str) -> list[DocumentRecord]:
        """Records registered by issuer, oldest first."""

    @abstractmethod
    async def stats(self) -> LedgerStats:
        """Aggregate counts."""

    async def close(self) -> None:
        """Release backend resources."""


def document_type_of(metadata: dict[str, Any]) -> str:
    """Document type for statistics; the ledger reads no other field."""
    return str(metadata.get("document_type") or metadata.get("documentType") or "unspecified")
