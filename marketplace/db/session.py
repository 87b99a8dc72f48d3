"""
Database Session Management - Async SQLAlchemy engine lifecycle and sessions.

The engine is process-wide state with an explicit lifecycle:
init_database() at startup (connect + health check with bounded backoff),
close_database() at shutdown. Business logic only ever receives sessions.
"""

import asyncio
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

from sqlalchemy import event, text
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from structlog import get_logger

from marketplace.config import settings
from marketplace.exceptions import StorageUnavailableError

logger = get_logger(__name__)

# Global engine instance (set by init_database)
_engine: AsyncEngine | None = None

# Session factory
_session_factory: async_sessionmaker[AsyncSession] | None = None


def _configure_sqlite(engine: AsyncEngine) -> None:
    """
    Make every SQLite transaction take the write lock up front.

    pysqlite's deferred BEGIN lets two connections read and then deadlock on
    lock promotion; BEGIN IMMEDIATE serializes writers at the store instead.
    """

    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection: Any, connection_record: Any) -> None:
        # Disable the driver's own BEGIN so ours is the only one emitted
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn: Any) -> None:
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def create_engine_for_url(url: str, echo: bool = False) -> AsyncEngine:
    """Create an async engine configured for the given backend."""
    if url.startswith("sqlite"):
        engine = create_async_engine(url, echo=echo, connect_args={"timeout": 30})
        _configure_sqlite(engine)
        return engine

    return create_async_engine(
        url,
        pool_size=settings.database_pool_size,
        max_overflow=settings.database_max_overflow,
        pool_timeout=settings.database_pool_timeout,
        pool_recycle=settings.database_pool_recycle,
        pool_pre_ping=True,
        echo=echo,
    )


async def ping(engine: AsyncEngine) -> None:
    """Run a trivial query; raises on connectivity failure."""
    async with engine.connect() as conn:
        await conn.execute(text("SELECT 1"))


async def init_database(
    url: str | None = None,
    retries: int | None = None,
    backoff_seconds: float | None = None,
) -> AsyncEngine:
    """
    Create the process-wide engine and verify connectivity.

    Retries the health check with exponential backoff, then raises
    StorageUnavailableError. Calling it again after success is a no-op.
    """
    global _engine, _session_factory

    if _engine is not None:
        return _engine

    url = url or settings.database_url
    retries = settings.database_connect_retries if retries is None else retries
    backoff_seconds = (
        settings.database_connect_backoff_seconds if backoff_seconds is None else backoff_seconds
    )

    engine = create_engine_for_url(url, echo=settings.log_level == "DEBUG")

    last_error: Exception | None = None
    for attempt in range(1, retries + 2):
        try:
            await ping(engine)
            break
        except (DBAPIError, OSError) as exc:
            last_error = exc
            logger.warning(
                "database_connect_failed",
                attempt=attempt,
                max_attempts=retries + 1,
                error=str(exc),
            )
            if attempt > retries:
                await engine.dispose()
                raise StorageUnavailableError(
                    f"database unreachable after {attempt} attempts: {last_error}"
                ) from exc
            await asyncio.sleep(backoff_seconds * (2 ** (attempt - 1)))

    from marketplace.observability.tracing import instrument_sqlalchemy

    instrument_sqlalchemy(engine)

    _engine = engine
    _session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    logger.info("database_initialized", backend=engine.dialect.name)
    return engine


def get_engine() -> AsyncEngine:
    """Get the initialized engine."""
    if _engine is None:
        raise StorageUnavailableError("database not initialized")
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Get the session factory created by init_database()."""
    if _session_factory is None:
        raise StorageUnavailableError("database not initialized")
    return _session_factory


@asynccontextmanager
async def get_session() -> AsyncIterator[AsyncSession]:
    """
    Get an async database session outside of a request.

    Usage:
        async with get_session() as session:
            await session.execute(...)
            await session.commit()
    """
    factory = get_session_factory()
    async with factory() as session:
        try:
            yield session
        finally:
            await session.close()


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency for a database session.

    Usage:
        @app.post("/endpoint")
        async def endpoint(db: AsyncSession = Depends(get_db)):
            ...
    """
    factory = get_session_factory()
    async with factory() as session:
        try:
            yield session
        finally:
            await session.close()


async def check_database() -> bool:
    """Whether the initialized engine can serve a trivial query."""
    if _engine is None:
        return False
    try:
        await ping(_engine)
    except (DBAPIError, OSError) as exc:
        logger.warning("database_health_check_failed", error=str(exc))
        return False
    return True


async def close_database() -> None:
    """Dispose the engine (for graceful shutdown)."""
    global _engine, _session_factory

    if _engine:
        await _engine.dispose()
        _engine = None
        _session_factory = None
        logger.info("database_closed")
