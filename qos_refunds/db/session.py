"""
Database Session Management.

The primary takes every write: issue_refund, settlement and session end.
A replica (DATABASE_READ_URL) may serve evaluate_eligibility(); without
one, reads share the primary's engine and pool.
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from qos_refunds.config import settings
from qos_refunds.observability.tracing import instrument_sqlalchemy

_primary_engine: AsyncEngine | None = None
_replica_engine: AsyncEngine | None = None
_primary_sessions: async_sessionmaker[AsyncSession] | None = None
_replica_sessions: async_sessionmaker[AsyncSession] | None = None


def _create_engine(url: str) -> AsyncEngine:
    engine = create_async_engine(
        url,
        pool_size=settings.database_pool_size,
        max_overflow=settings.database_max_overflow,
        pool_timeout=settings.database_pool_timeout,
        pool_recycle=settings.database_pool_recycle,
        echo=settings.log_level == "DEBUG",
    )
    instrument_sqlalchemy(engine)
    return engine


def _sessionmaker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    # RefundData is built from ORM rows after commit
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


def get_primary_engine() -> AsyncEngine:
    global _primary_engine
    if _primary_engine is None:
        _primary_engine = _create_engine(settings.database_url)
    return _primary_engine


def get_replica_engine() -> AsyncEngine:
    """Replica engine, or the primary's when no replica is configured."""
    global _replica_engine
    if settings.read_database_url == settings.database_url:
        return get_primary_engine()
    if _replica_engine is None:
        _replica_engine = _create_engine(settings.read_database_url)
    return _replica_engine


@asynccontextmanager
async def get_write_session() -> AsyncIterator[AsyncSession]:
    """
    Session on the primary. The orchestrator commits or rolls back itself.

    Usage:
        async with get_write_session() as session:
            orchestrator = RefundOrchestrator(session, gateway)
            await orchestrator.settle_with_processor(refund_id)
    """
    global _primary_sessions
    if _primary_sessions is None:
        _primary_sessions = _sessionmaker(get_primary_engine())
    async with _primary_sessions() as session:
        yield session


@asynccontextmanager
async def get_read_session() -> AsyncIterator[AsyncSession]:
    """Session for evaluate_eligibility() only; issue and settle need the primary."""
    global _replica_sessions
    if _replica_sessions is None:
        _replica_sessions = _sessionmaker(get_replica_engine())
    async with _replica_sessions() as session:
        yield session


async def close_engines() -> None:
    """Dispose both pools; the scripts call this before exit."""
    global _primary_engine, _replica_engine, _primary_sessions, _replica_sessions

    if _replica_engine is not None:
        await _replica_engine.dispose()
    if _primary_engine is not None:
        await _primary_engine.dispose()

    _primary_engine = None
    _replica_engine = None
    _primary_sessions = None
    _replica_sessions = None
