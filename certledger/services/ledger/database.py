"""
Database-backed ledger store (async SQLAlchemy).

The fingerprint primary key is the compare-and-swap: a racing writer's
INSERT fails with IntegrityError, its transaction rolls back, and it reads
back the winner's record. Each insert is one transaction, so a failure or
cancellation before commit leaves nothing behind.
"""

import asyncio
import logging
from datetime import timezone
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from certledger.core.database import get_db_session, init_db, make_session_factory
from certledger.core.errors import StorageUnavailable
from certledger.models.models import LedgerEntry
from certledger.services.ledger.base import (
    DocumentRecord,
    LedgerStats,
    LedgerStore,
    document_type_of,
)

logger = logging.getLogger(__name__)


def _to_record(entry: LedgerEntry) -> DocumentRecord:
    registered_at = entry.registered_at
    # SQLite drops tzinfo
    if registered_at.tzinfo is None:
        registered_at = registered_at.replace(tzinfo=timezone.utc)
    return DocumentRecord(
        fingerprint=entry.fingerprint,
        metadata=dict(entry.metadata_json or {}),
        registered_at=registered_at,
        receipt_id=entry.receipt_id,
        registered_by=entry.registered_by,
    )


class DatabaseLedgerStore(LedgerStore):
    """Ledger persisted in the ledger_entries table."""

    def __init__(self, engine: AsyncEngine):
        self.engine = engine
        self._session_factory: async_sessionmaker[AsyncSession] = make_session_factory(engine)
        self._initialized = False
        self._schema_lock = asyncio.Lock()

    @property
    def backend_name(self) -> str:
        return "database"

    async def _ensure_schema(self) -> None:
        if self._initialized:
            return
        # First callers race here; only one may run CREATE TABLE
        async with self._schema_lock:
            if not self._initialized:
                await init_db(self.engine)
                self._initialized = True

    def _unavailable(self, operation: str, exc: Exception) -> StorageUnavailable:
        logger.error(
            "Ledger database %s failed: %s",
            operation,
            exc,
            extra={"operation": operation},
        )
        return StorageUnavailable("Ledger database", f"failed during {operation}")

    async def is_connected(self) -> bool:
        try:
            await self._ensure_schema()
            async with get_db_session(self._session_factory) as session:
                await session.execute(select(func.count()).select_from(LedgerEntry))
            return True
        except (SQLAlchemyError, OSError) as e:
            logger.warning("Ledger database unreachable: %s", e)
            return False

    async def get(self, fingerprint: str) -> Optional[DocumentRecord]:
        try:
            await self._ensure_schema()
            async with get_db_session(self._session_factory) as session:
                entry = await session.get(LedgerEntry, fingerprint)
                return _to_record(entry) if entry else None
        except (SQLAlchemyError, OSError) as e:
            raise self._unavailable("read", e) from e

    async def insert_if_absent(self, record: DocumentRecord) -> tuple[DocumentRecord, bool]:
        try:
            await self._ensure_schema()
            existing = await self.get(record.fingerprint)
            if existing is not None:
                return existing, False

            try:
                async with get_db_session(self._session_factory) as session:
                    session.add(LedgerEntry(
                        fingerprint=record.fingerprint,
                        receipt_id=record.receipt_id,
                        metadata_json=record.metadata,
                        registered_by=record.registered_by,
                        registered_at=record.registered_at,
                    ))
            except IntegrityError:
                # Lost the race to another writer
                winner = await self.get(record.fingerprint)
                if winner is None:
                    raise
                logger.debug(
                    "Concurrent registration resolved to existing record",
                    extra={"fingerprint": record.fingerprint, "receipt_id": winner.receipt_id},
                )
                return winner, False
        except (SQLAlchemyError, OSError) as e:
            raise self._unavailable("insert", e) from e

        return record, True

    async def get_by_receipt(self, receipt_id: str) -> Optional[DocumentRecord]:
        try:
            await self._ensure_schema()
            async with get_db_session(self._session_factory) as session:
                result = await session.execute(
                    select(LedgerEntry).where(LedgerEntry.receipt_id == receipt_id)
                )
                entry = result.scalar_one_or_none()
                return _to_record(entry) if entry else None
        except (SQLAlchemyError, OSError) as e:
            raise self._unavailable("receipt lookup", e) from e

    async def list_by_issuer(self, issuer: str) -> list[DocumentRecord]:
        try:
            await self._ensure_schema()
            async with get_db_session(self._session_factory) as session:
                result = await session.execute(
                    select(LedgerEntry)
                    .where(LedgerEntry.registered_by == issuer)
                    .order_by(LedgerEntry.registered_at)
                )
                return [_to_record(e) for e in result.scalars().all()]
        except (SQLAlchemyError, OSError) as e:
            raise self._unavailable("issuer listing", e) from e

    async def stats(self) -> LedgerStats:
        try:
            await self._ensure_schema()
            async with get_db_session(self._session_factory) as session:
                result = await session.execute(
                    select(LedgerEntry.metadata_json, LedgerEntry.registered_by)
                )
                rows = result.all()
        except (SQLAlchemyError, OSError) as e:
            raise self._unavailable("statistics", e) from e

        by_type: dict[str, int] = {}
        issuers = set()
        for metadata, registered_by in rows:
            doc_type = document_type_of(metadata or {})
            by_type[doc_type] = by_type.get(doc_type, 0) + 1
            if registered_by:
                issuers.add(registered_by)
        return LedgerStats(
            total_records=len(rows),
            total_issuers=len(issuers),
            by_document_type=by_type,
        )

    async def close(self) -> None:
        await self.engine.dispose()
