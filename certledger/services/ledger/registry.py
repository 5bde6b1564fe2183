"""
Ledger Registry

Idempotent fingerprint -> record registry on top of a LedgerStore.

State per fingerprint: Absent -> Registered (terminal). There is no update,
revoke or delete. Registering a known fingerprint returns the existing
record unchanged.

Concurrency: register() calls for the same fingerprint serialize on a
per-key asyncio.Lock, and the store's insert is itself a compare-and-swap,
so exactly one record is created and every caller sees the same receipt id.
verify() takes no lock.
"""

import asyncio
import copy
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Optional

from certledger.core.errors import InvalidInputError, RegistryTimeout
from certledger.core.metrics import incr_metric
from certledger.core.timeout import bounded
from certledger.services.fingerprint import normalize_fingerprint
from certledger.services.ledger.base import (
    DocumentRecord,
    LedgerStats,
    LedgerStore,
    ReceiptIDGenerator,
    VerificationResult,
)

logger = logging.getLogger(__name__)


class LedgerRegistry:
    """
    Register and verify credential fingerprints.

    Every call is bounded by `timeout` seconds (None = unbounded) and raises
    RegistryTimeout on expiry. Store outages surface as StorageUnavailable.
    Neither is retried here.
    """

    def __init__(self, store: LedgerStore, timeout: Optional[float] = 10.0):
        self.store = store
        self.timeout = timeout
        # fingerprint -> [lock, holders]; entries are dropped when unused
        self._key_locks: dict[str, list] = {}

    def _bound(self, timeout: Optional[float]) -> Optional[float]:
        return self.timeout if timeout is None else timeout

    @asynccontextmanager
    async def _key_lock(self, key: str) -> AsyncIterator[None]:
        entry = self._key_locks.get(key)
        if entry is None:
            entry = self._key_locks[key] = [asyncio.Lock(), 0]
        entry[1] += 1
        try:
            async with entry[0]:
                yield
        finally:
            entry[1] -= 1
            if entry[1] == 0:
                self._key_locks.pop(key, None)

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    async def register(
        self,
        fingerprint: str,
        metadata: Optional[dict[str, Any]] = None,
        registered_by: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> DocumentRecord:
        """
        Register fingerprint with metadata, at most once.

        Returns the new record, or the existing one if fingerprint is
        already registered (metadata of the later call is ignored).
        `timeout` overrides the registry's bound for this call.
        """
        key = normalize_fingerprint(fingerprint)
        if metadata is not None and not isinstance(metadata, dict):
            raise InvalidInputError("Metadata must be a mapping", field="metadata")
        payload = copy.deepcopy(metadata) if metadata else {}

        return await bounded(
            self._register(key, payload, registered_by),
            self._bound(timeout),
            RegistryTimeout,
        )

    async def _register(
        self,
        key: str,
        metadata: dict[str, Any],
        registered_by: Optional[str],
    ) -> DocumentRecord:
        async with self._key_lock(key):
            existing = await self.store.get(key)
            if existing is not None:
                incr_metric("registrations_idempotent_total")
                logger.debug(
                    "Fingerprint already registered",
                    extra={"fingerprint": key, "receipt_id": existing.receipt_id},
                )
                return existing

            now = datetime.now(timezone.utc)
            candidate = DocumentRecord(
                fingerprint=key,
                metadata=metadata,
                registered_at=now,
                receipt_id=ReceiptIDGenerator.generate(now),
                registered_by=registered_by,
            )
            try:
                record, created = await self.store.insert_if_absent(candidate)
            except Exception:
                incr_metric("storage_failures_total")
                raise

        if created:
            incr_metric("registrations_total")
            logger.info(
                "Registered credential %s",
                record.receipt_id,
                extra={"fingerprint": key, "receipt_id": record.receipt_id},
            )
        else:
            incr_metric("registrations_idempotent_total")
        return record

    async def verify(self, fingerprint: str, timeout: Optional[float] = None) -> VerificationResult:
        """Look up fingerprint. Not found is a normal negative result."""
        key = normalize_fingerprint(fingerprint)
        record = await bounded(self.store.get(key), self._bound(timeout), RegistryTimeout)

        incr_metric("verifications_total")
        if record is None:
            logger.debug("Fingerprint not on ledger", extra={"fingerprint": key})
            return VerificationResult(found=False)

        incr_metric("verifications_found_total")
        return VerificationResult(found=True, record=record)

    async def get_receipt(self, receipt_id: str) -> Optional[DocumentRecord]:
        """Record for a registration receipt id."""
        receipt_id = (receipt_id or "").strip().upper()
        if not receipt_id:
            raise InvalidInputError("Receipt id must not be empty", field="receipt_id")
        return await bounded(self.store.get_by_receipt(receipt_id), self.timeout, RegistryTimeout)

    async def list_by_issuer(self, issuer: str) -> list[DocumentRecord]:
        """Records registered by issuer, oldest first."""
        if not issuer or not issuer.strip():
            raise InvalidInputError("Issuer must not be empty", field="issuer")
        return await bounded(self.store.list_by_issuer(issuer.strip()), self.timeout, RegistryTimeout)

    async def get_statistics(self) -> LedgerStats:
        return await bounded(self.store.stats(), self.timeout, RegistryTimeout)

    async def is_available(self) -> bool:
        try:
            return await bounded(self.store.is_connected(), self.timeout, RegistryTimeout)
        except RegistryTimeout:
            return False
