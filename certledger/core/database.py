"""
CertLedger Database Module
Async SQLAlchemy engine for the database ledger backend.
SQLite (aiosqlite) by default; any async driver URL works.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from certledger.core.config import get_settings


class Base(DeclarativeBase):
    """Base class for all ORM models."""
    pass


# Process-wide engine, created on first use
_engine: Optional[AsyncEngine] = None


def create_engine_for(database_url: str, echo: bool = False) -> AsyncEngine:
    """Async engine for database_url; SQLite connections may cross threads."""
    connect_args = {"check_same_thread": False} if database_url.startswith("sqlite") else {}
    return create_async_engine(database_url, echo=echo, connect_args=connect_args)


def make_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    # Records are rebuilt from rows after commit, so nothing needs refreshing
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


def get_engine() -> AsyncEngine:
    """Engine for settings.database_url."""
    global _engine
    if _engine is None:
        settings = get_settings()
        _engine = create_engine_for(settings.database_url, echo=settings.debug)
    return _engine


async def init_db(engine: Optional[AsyncEngine] = None) -> None:
    """Create missing tables. Safe to call repeatedly."""
    # Register ORM models on Base.metadata
    from certledger.models import models  # noqa: F401

    engine = engine or get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    """Dispose of the process-wide engine (shutdown)."""
    global _engine
    if _engine is not None:
        await _engine.dispose()
        _engine = None


@asynccontextmanager
async def get_db_session(
    factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """
    One unit of work: commit on success, roll back on any exception,
    cancellation included.

    Usage:
        async with get_db_session(factory) as db:
            entry = await db.get(LedgerEntry, fingerprint)
    """
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except BaseException:
            await session.rollback()
            raise
