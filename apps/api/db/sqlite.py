"""SQLite storage engine for the decision memory.

One SQLite file holds the whole memory. Concurrency relies on SQLite's own
single-writer / multi-reader model: WAL journaling lets readers proceed while
one writer commits, and busy_timeout makes a second writer wait for the lock
instead of failing immediately. No application-level lock is layered on top.

Retry configuration applies only to schema creation at startup, where a
second process opening the same file can briefly hold the write lock.
"""

import asyncio
import random
from pathlib import Path
from typing import Any, AsyncIterator, Callable, TypeVar

from sqlalchemy import event, text
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import StaticPool

from config import get_settings
from utils.logging import get_logger

logger = get_logger(__name__)

engine: AsyncEngine | None = None
async_session_maker: async_sessionmaker[AsyncSession] | None = None

T = TypeVar("T")

SQLITE_BUSY_TIMEOUT_MS = 5000


class Base(DeclarativeBase):
    """Base class for SQLAlchemy declarative models."""

    pass


def _calculate_backoff(
    attempt: int, base_delay: float = 0.2, max_delay: float = 2.0
) -> float:
    """Calculate exponential backoff with jitter."""
    delay = min(base_delay * (2**attempt), max_delay)
    jitter = random.uniform(0, 0.2)
    return delay + jitter


def _is_retryable_error(exc: Exception) -> bool:
    """Only lock contention is transient for a local SQLite file."""
    if not isinstance(exc, OperationalError):
        return False
    message = str(exc).lower()
    return "database is locked" in message or "database is busy" in message


async def with_retry(
    operation: Callable[..., T],
    *args: Any,
    max_retries: int = 3,
    base_delay: float = 0.2,
    operation_name: str = "database operation",
    **kwargs: Any,
) -> T:
    """Execute an async operation, retrying on SQLite lock contention.

    Args:
        operation: Async callable to execute
        *args: Positional arguments for the operation
        max_retries: Maximum number of retry attempts
        base_delay: Base delay for exponential backoff
        operation_name: Name for logging purposes
        **kwargs: Keyword arguments for the operation

    Returns:
        Result of the operation

    Raises:
        The last exception if all retries are exhausted
    """
    for attempt in range(max_retries + 1):
        try:
            return await operation(*args, **kwargs)
        except Exception as e:
            if not _is_retryable_error(e):
                logger.error(
                    f"Non-retryable error in {operation_name}: {type(e).__name__}: {e}"
                )
                raise

            if attempt >= max_retries:
                logger.error(
                    f"{operation_name} failed after {max_retries + 1} attempts. "
                    f"Last error: {type(e).__name__}: {e}"
                )
                raise

            delay = _calculate_backoff(attempt, base_delay)
            logger.warning(
                f"{operation_name} attempt {attempt + 1}/{max_retries + 1} hit a "
                f"locked database. Retrying in {delay:.2f}s"
            )
            await asyncio.sleep(delay)

    raise RuntimeError(f"Unexpected state in retry for {operation_name}")


def _set_sqlite_pragmas(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute(f"PRAGMA busy_timeout={SQLITE_BUSY_TIMEOUT_MS}")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_engine_for_url(url: str, echo: bool = False) -> AsyncEngine:
    """Build an async engine for a SQLite URL.

    In-memory databases are pinned to a single connection, otherwise every
    pooled connection would see its own empty database.
    """
    if ":memory:" in url:
        new_engine = create_async_engine(
            url,
            echo=echo,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
    else:
        db_file = url.split(":///", 1)[-1]
        Path(db_file).parent.mkdir(parents=True, exist_ok=True)
        new_engine = create_async_engine(url, echo=echo)

    event.listen(new_engine.sync_engine, "connect", _set_sqlite_pragmas)
    return new_engine


async def create_schema(target: AsyncEngine) -> None:
    """Create all memory tables if they do not exist yet."""
    # Models register themselves on Base.metadata when imported
    import models.store  # noqa: F401

    async def create_tables():
        async with target.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    await with_retry(
        create_tables,
        max_retries=3,
        operation_name="SQLite schema creation",
    )


async def init_db(url: str | None = None) -> AsyncEngine:
    """Open the memory store and make sure its schema exists."""
    global engine, async_session_maker
    settings = get_settings()
    url = url or settings.get_database_url()

    logger.info(f"Opening decision memory store: {url}")

    engine = create_engine_for_url(url, echo=settings.debug)
    async_session_maker = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    await create_schema(engine)

    logger.info("Decision memory store ready")
    return engine


async def close_db():
    """Dispose of the engine and its connections."""
    global engine, async_session_maker
    if engine:
        await engine.dispose()
        logger.info("Decision memory store closed")
    engine = None
    async_session_maker = None


async def check_db_connection() -> bool:
    """Verify the store answers a trivial query."""
    if engine is None:
        return False
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.error(f"SQLite health check failed: {e}")
        return False


async def get_db() -> AsyncIterator[AsyncSession]:
    """Yield a session that commits on success and rolls back on error."""
    if async_session_maker is None:
        raise RuntimeError("Decision memory store is not initialized")
    async with async_session_maker() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
