import contextlib
import logging
from typing import AsyncGenerator, Optional
from urllib.parse import urlparse, urlunparse

from sqlalchemy import event
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel

from sqlmodel_history.exceptions import HistoryDBConfigurationError, HistoryDBConnectionError
from sqlmodel_history.settings import Settings

logger = logging.getLogger(__name__)

# Global variables for the async engine and session factory
_db_engine: Optional[AsyncEngine] = None

_db_session_factory: Optional[async_sessionmaker[AsyncSession]] = None

settings = Settings()


def _mask_password(url: str) -> str:
    """Masks the password in the database URL."""
    parsed = urlparse(url)
    if parsed.password:
        return urlunparse(parsed._replace(netloc=f"{parsed.username}:***@{parsed.hostname}:{parsed.port}"))
    return url


def _get_db_url() -> str:
    """Determines the database URL, converting to an async driver URL if needed

    Returns:
        The database URL as a string.

    Raises:
        HistoryDBConfigurationError: If no database URL is configured.
    """
    database_url = settings.get_database_url()
    if not database_url:
        raise HistoryDBConfigurationError("Neither HISTORY_DATABASE_URL nor DATABASE_URL is set.")

    if database_url.startswith("postgresql://"):
        database_url = database_url.replace("postgresql://", "postgresql+asyncpg://", 1)
    elif database_url.startswith("postgres://"):
        database_url = database_url.replace("postgres://", "postgresql+asyncpg://", 1)
    elif database_url.startswith("sqlite://"):
        database_url = database_url.replace("sqlite://", "sqlite+aiosqlite://", 1)

    return database_url


def _configure_sqlite(engine: AsyncEngine) -> None:
    """Turns on foreign key enforcement and serialised write transactions for SQLite.

    SQLite ignores ``ON DELETE CASCADE`` unless ``foreign_keys`` is on, and the
    driver's implicit BEGIN breaks SAVEPOINT handling, so BEGIN is emitted here.
    """

    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def build_engine(db_url: str, echo: bool = False) -> AsyncEngine:
    """Creates an async engine for ``db_url`` without touching the global engine."""
    url = make_url(db_url)
    if url.get_backend_name() == "sqlite":
        engine = create_async_engine(db_url, echo=echo)
        _configure_sqlite(engine)
        return engine

    pool_min_size = settings.get_db_pool_min_size()
    pool_max_size = settings.get_db_pool_max_size()
    return create_async_engine(
        db_url,
        echo=echo,
        pool_pre_ping=True,
        pool_size=pool_min_size,
        max_overflow=pool_max_size - pool_min_size,
    )


async def create_db_engine(db_url: Optional[str] = None) -> AsyncEngine:
    """Creates the global async engine and session factory.

    Args:
        db_url: Database URL; read from settings when omitted.

    Returns:
        The async engine.

    Raises:
        HistoryDBConfigurationError: If the database configuration is invalid.
        HistoryDBConnectionError: If the engine cannot be created.
    """
    global _db_engine, _db_session_factory
    if _db_engine:
        logger.debug("Database engine already initialized.")
        return _db_engine

    logger.info("Attempting to create database engine...")

    db_url = db_url or _get_db_url()

    try:
        _db_engine = build_engine(db_url)
        _db_session_factory = async_sessionmaker(
            _db_engine,
            expire_on_commit=False,
            class_=AsyncSession,
        )
        logger.info("Database engine created successfully.")
        return _db_engine
    except Exception as e:
        masked_url = _mask_password(db_url)
        raise HistoryDBConnectionError(f"Failed to create database engine using URL ({masked_url}): {e}") from e


async def close_db_engine() -> None:
    """Closes the database engine."""
    global _db_engine, _db_session_factory
    if _db_engine:
        try:
            await _db_engine.dispose()
            logger.info("Database engine closed successfully.")
        except Exception as e:
            logger.error(f"Error closing database engine: {e}", exc_info=True)
        finally:
            _db_engine = None
            _db_session_factory = None
    else:
        logger.info("Database engine was already None or not initialized during shutdown.")


async def create_all_tables(engine: AsyncEngine) -> None:
    """Creates every table registered in SQLModel.metadata, history tables included."""
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)


@contextlib.asynccontextmanager
async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Get a SQLAlchemy async session for the database as a context manager."""
    if _db_session_factory is None:
        raise RuntimeError("Database session factory has not been initialized")

    async with _db_session_factory() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
