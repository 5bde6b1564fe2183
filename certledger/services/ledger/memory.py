"""
In-memory ledger store, optionally persisted to a JSON file.

Writes are all-or-nothing: the new snapshot is written to a temp file (in a
worker thread) and atomically swapped in before the record becomes visible
in memory. Inserts hold one store-wide lock from the existence check to the
in-memory insert. A caller cancelled mid-write gets the previous snapshot
restored, so it never leaves a record behind.
"""

import asyncio
import copy
import json
import logging
import os
from dataclasses import replace
from pathlib import Path
from typing import Optional, Union

from certledger.core.errors import StorageUnavailable
from certledger.services.ledger.base import (
    DocumentRecord,
    LedgerStats,
    LedgerStore,
    document_type_of,
)

logger = logging.getLogger(__name__)


def _detached(record: DocumentRecord) -> DocumentRecord:
    """Copy whose metadata cannot alias the stored record."""
    return replace(record, metadata=copy.deepcopy(record.metadata))


class MemoryLedgerStore(LedgerStore):
    """Dict-backed store. With `path`, every insert is persisted."""

    def __init__(self, path: Optional[Union[str, Path]] = None):
        self.path = Path(path) if path else None
        self._records: dict[str, DocumentRecord] = {}
        self._receipt_index: dict[str, str] = {}  # receipt_id -> fingerprint
        # Each snapshot must include every earlier insert
        self._write_lock = asyncio.Lock()
        if self.path:
            self._load()

    @property
    def backend_name(self) -> str:
        return "file" if self.path else "memory"

    # -------------------------------------------------------------------------
    # Persistence
    # -------------------------------------------------------------------------

    def _load(self) -> None:
        if not self.path.exists():
            return
        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.error("Could not load ledger file %s: %s", self.path, e)
            raise StorageUnavailable(f"Ledger file {self.path}", "could not be loaded") from e

        for item in data.get("records", []):
            record = DocumentRecord.from_dict(item)
            self._records[record.fingerprint] = record
            self._receipt_index[record.receipt_id] = record.fingerprint
        logger.info("Loaded %d ledger records from %s", len(self._records), self.path)

    def _atomic_write(self, records: list[DocumentRecord]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        payload = {"records": [r.to_dict() for r in records]}
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(payload, f, indent=2, default=str)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, self.path)

    async def _persist(self, records: list[DocumentRecord], previous: list[DocumentRecord]) -> None:
        """Write records from a worker thread; a cancelled caller's snapshot is rolled back."""
        write = asyncio.ensure_future(asyncio.to_thread(self._atomic_write, records))
        try:
            await asyncio.shield(write)
        except asyncio.CancelledError:
            # The worker thread cannot be interrupted
            await asyncio.wait([write])
            if not write.cancelled() and write.exception() is None:
                self._atomic_write(previous)
            raise

    # -------------------------------------------------------------------------
    # LedgerStore
    # -------------------------------------------------------------------------

    async def is_connected(self) -> bool:
        if not self.path:
            return True
        directory = self.path.parent
        return directory.exists() and os.access(directory, os.W_OK)

    async def get(self, fingerprint: str) -> Optional[DocumentRecord]:
        record = self._records.get(fingerprint)
        return _detached(record) if record else None

    async def insert_if_absent(self, record: DocumentRecord) -> tuple[DocumentRecord, bool]:
        async with self._write_lock:
            existing = self._records.get(record.fingerprint)
            if existing is not None:
                return _detached(existing), False

            stored = _detached(record)
            if self.path:
                previous = list(self._records.values())
                try:
                    await self._persist([*previous, stored], previous)
                except (OSError, TypeError, ValueError) as e:
                    logger.error(
                        "Ledger write failed: %s",
                        e,
                        extra={"fingerprint": record.fingerprint, "path": str(self.path)},
                    )
                    raise StorageUnavailable(f"Ledger file {self.path}", "could not be written") from e

            self._records[stored.fingerprint] = stored
            self._receipt_index[stored.receipt_id] = stored.fingerprint
            return _detached(stored), True

    async def get_by_receipt(self, receipt_id: str) -> Optional[DocumentRecord]:
        fingerprint = self._receipt_index.get(receipt_id)
        return await self.get(fingerprint) if fingerprint else None

    async def list_by_issuer(self, issuer: str) -> list[DocumentRecord]:
        matches = [r for r in self._records.values() if r.registered_by == issuer]
        matches.sort(key=lambda r: r.registered_at)
        return [_detached(r) for r in matches]

    async def stats(self) -> LedgerStats:
        by_type: dict[str, int] = {}
        issuers = set()
        for record in self._records.values():
            doc_type = document_type_of(record.metadata)
            by_type[doc_type] = by_type.get(doc_type, 0) + 1
            if record.registered_by:
                issuers.add(record.registered_by)
        return LedgerStats(
            total_records=len(self._records),
            total_issuers=len(issuers),
            by_document_type=by_type,
        )
