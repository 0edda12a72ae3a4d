"""Database engine construction, session factory, and health utilities."""

from sqlalchemy import event, text
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import OperationalError, DBAPIError
from sqlalchemy.ext.asyncio import create_async_engine, AsyncEngine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import NullPool
import asyncio
from .config import settings
from .logger import logger

# Base class for ORM models
Base = declarative_base()


# ==================== Engine Setup ====================

def _normalize_url(url: str) -> str:
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)
    return url


def _use_immediate_transactions(engine: AsyncEngine) -> None:
    """Make every SQLite transaction take the write lock up front.

    pysqlite's deferred BEGIN lets two read-then-write transactions deadlock on
    the lock upgrade; BEGIN IMMEDIATE makes them queue behind the busy timeout.
    """

    @event.listens_for(engine.sync_engine, "connect")
    def _disable_driver_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def build_engine(url: str, pooled: bool = True) -> AsyncEngine:
    """Create an async engine for PostgreSQL (asyncpg) or SQLite (aiosqlite).

    Args:
        url: Database URL from settings
        pooled: False to use NullPool (tests, one-off scripts)
    """
    url = _normalize_url(url)
    pool_args = {} if pooled else {"poolclass": NullPool}

    if url.startswith("sqlite"):
        engine = create_async_engine(
            url,
            echo=False,
            connect_args={"timeout": settings.DB_QUERY_TIMEOUT},
            **pool_args,
        )
        _use_immediate_transactions(engine)
        return engine

    if pooled:
        pool_args = {
            "pool_size": settings.DB_POOL_SIZE,
            "max_overflow": settings.DB_MAX_OVERFLOW,
            "pool_timeout": settings.DB_POOL_TIMEOUT,
            "pool_recycle": settings.DB_POOL_RECYCLE,
            "pool_pre_ping": True,  # Verify connections before use
        }
    return create_async_engine(
        url,
        echo=False,
        connect_args={
            "timeout": settings.DB_CONNECT_TIMEOUT,
            "command_timeout": settings.DB_QUERY_TIMEOUT,
        },
        **pool_args,
    )


def make_session_factory(bind: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(bind, expire_on_commit=False, class_=AsyncSession)


def dialect_insert(session: AsyncSession, model):
    """Return an INSERT construct supporting ON CONFLICT for the session's dialect."""
    if session.get_bind().dialect.name == "postgresql":
        return postgresql.insert(model)
    return sqlite.insert(model)


engine = build_engine(settings.DB_URL)

logger.info(
    f"Database engine configured: dialect={engine.dialect.name} "
    f"pool_size={settings.DB_POOL_SIZE} max_overflow={settings.DB_MAX_OVERFLOW}"
)

# Session factory for the running application
async_session = make_session_factory(engine)


# ==================== Health Check ====================


async def retry_on_db_error(func, max_retries: int = 3, base_delay: float = 0.5):
    """Retry a probe with exponential backoff on connection-level errors.

    Only the health check uses this; forum operations surface store failures
    to the caller without retrying.

    Args:
        func: Async function to retry
        max_retries: Maximum number of attempts
        base_delay: Base delay in seconds (doubles each retry)

    Raises:
        Last exception if all retries fail or the error is not retryable
    """
    for attempt in range(max_retries):
        try:
            return await func()
        except (OperationalError, DBAPIError) as e:
            error_msg = str(e).lower()
            is_retryable = any(
                marker in error_msg
                for marker in ("connection", "timeout", "database is locked", "server closed")
            )

            if not is_retryable or attempt == max_retries - 1:
                logger.error(
                    f"Database probe failed (attempt {attempt + 1}/{max_retries}): {e}",
                    exc_info=True
                )
                raise

            delay = base_delay * (2 ** attempt)
            logger.warning(
                f"Database probe error on attempt {attempt + 1}/{max_retries}, "
                f"retrying in {delay}s: {e}"
            )
            await asyncio.sleep(delay)


async def check_db_connection() -> bool:
    """Return True if the database answers ``SELECT 1``."""
    try:
        async def _check():
            async with async_session() as session:
                await session.execute(text("SELECT 1"))

        await retry_on_db_error(_check, max_retries=2, base_delay=0.1)
        return True
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        return False


# ==================== Cleanup ====================

async def dispose_engine():
    """Close all pooled connections during application shutdown."""
    logger.info("Disposing database engine and closing connections")
    try:
        await engine.dispose()
        logger.info("Database connections closed successfully")
    except Exception as e:
        logger.error(f"Error disposing database engine: {e}", exc_info=True)
