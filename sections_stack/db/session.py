"""
Database Session Management - Async SQLAlchemy session factory.

Provides separate read and write database connections. Each database role is
owned by a DatabaseHandle: the engine is created once, on first acquire, and
disposed when the last holder releases it. The application lifespan holds one
reference for its whole lifetime; every request session holds its own.
"""

import threading
from collections.abc import AsyncGenerator, Callable
from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError, SQLAlchemyError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from sections_stack.config import settings
from sections_stack.exceptions import StoreUnavailableError
from sections_stack.observability.logging import get_logger

logger = get_logger(__name__)


def _create_engine(url: str) -> AsyncEngine:
    return create_async_engine(
        url,
        pool_size=settings.database_pool_size,
        max_overflow=settings.database_max_overflow,
        pool_timeout=settings.database_pool_timeout,
        pool_recycle=settings.database_pool_recycle,
        pool_pre_ping=True,
        echo=settings.log_level == "DEBUG",
    )


class DatabaseHandle:
    """Reference-counted owner of one async engine and its session factory."""

    def __init__(
        self,
        role: str,
        url: str,
        engine_factory: Callable[[str], AsyncEngine] = _create_engine,
    ) -> None:
        self.role = role
        self._url = url
        self._engine_factory = engine_factory
        self._lock = threading.Lock()
        self._engine: AsyncEngine | None = None
        self._session_factory: async_sessionmaker[AsyncSession] | None = None
        self._refcount = 0

    @property
    def refcount(self) -> int:
        return self._refcount

    @property
    def is_initialized(self) -> bool:
        return self._engine is not None

    @property
    def engine(self) -> AsyncEngine:
        """Engine of an acquired handle."""
        if self._engine is None:
            raise RuntimeError(f"{self.role} database handle is not acquired")
        return self._engine

    def acquire(self) -> async_sessionmaker[AsyncSession]:
        """Take a reference, creating the engine on first use."""
        with self._lock:
            if self._engine is None:
                self._engine = self._engine_factory(self._url)
                self._session_factory = async_sessionmaker(
                    self._engine,
                    class_=AsyncSession,
                    expire_on_commit=False,
                )
                logger.info("database_engine_created", role=self.role)
            self._refcount += 1
            assert self._session_factory is not None
            return self._session_factory

    async def release(self) -> None:
        """Drop a reference; the last release disposes the engine."""
        with self._lock:
            if self._refcount == 0:
                raise RuntimeError(f"{self.role} database handle released more times than acquired")
            self._refcount -= 1
            if self._refcount > 0:
                return
            engine = self._engine
            self._engine = None
            self._session_factory = None

        if engine is not None:
            await engine.dispose()
            logger.info("database_engine_disposed", role=self.role)


# Process-wide handles
write_db = DatabaseHandle("write", settings.database_url)
read_db = DatabaseHandle("read", settings.read_database_url)


@asynccontextmanager
async def _handle_session(handle: DatabaseHandle) -> AsyncIterator[AsyncSession]:
    factory = handle.acquire()
    try:
        async with factory() as session:
            yield session
    finally:
        await handle.release()


@asynccontextmanager
async def get_write_session() -> AsyncIterator[AsyncSession]:
    """
    Get an async database session for write operations.

    Usage:
        async with get_write_session() as session:
            await session.execute(...)
            await session.commit()
    """
    async with _handle_session(write_db) as session:
        yield session


@asynccontextmanager
async def get_read_session() -> AsyncIterator[AsyncSession]:
    """
    Get an async database session for read operations (from replica).

    Usage:
        async with get_read_session() as session:
            result = await session.execute(...)
    """
    async with _handle_session(read_db) as session:
        yield session


async def get_write_db() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency for write database session.

    Usage:
        @app.post("/endpoint")
        async def endpoint(db: AsyncSession = Depends(get_write_db)):
            ...
    """
    async with _handle_session(write_db) as session:
        yield session


async def get_read_db() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency for read database session.

    Usage:
        @app.get("/endpoint")
        async def endpoint(db: AsyncSession = Depends(get_read_db)):
            ...
    """
    async with _handle_session(read_db) as session:
        yield session


def open_engines() -> None:
    """Take the lifespan reference on both handles."""
    write_db.acquire()
    read_db.acquire()


async def close_engines() -> None:
    """Release the lifespan reference on both handles (graceful shutdown)."""
    await write_db.release()
    await read_db.release()


# ============================================================================
# Transient failure translation
# ============================================================================

TRANSIENT_ERRORS = (OperationalError, InterfaceError, PoolTimeoutError, ConnectionError)


def is_transient(exc: BaseException) -> bool:
    """True for connection loss, pool exhaustion and operational errors."""
    if isinstance(exc, TRANSIENT_ERRORS):
        return True
    return isinstance(exc, DBAPIError) and exc.connection_invalidated


@asynccontextmanager
async def store_guard(session: AsyncSession, operation: str) -> AsyncIterator[None]:
    """
    Roll back and raise StoreUnavailableError on transient store failures.

    Non-transient errors (constraint violations, programming errors) propagate
    unchanged.
    """
    try:
        yield
    except (SQLAlchemyError, ConnectionError) as exc:
        if not is_transient(exc):
            raise
        try:
            await session.rollback()
        except SQLAlchemyError as rollback_exc:
            logger.warning(
                "store_rollback_failed",
                operation=operation,
                error=str(rollback_exc),
            )
        logger.warning("store_unavailable", operation=operation, error=str(exc))
        raise StoreUnavailableError(operation, str(exc)) from exc
