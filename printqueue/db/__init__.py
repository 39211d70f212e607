"""Database module for the print queue.

Async SQLAlchemy layer acting as the system of record. Uses SQLite through
aiosqlite by default; any async SQLAlchemy URL (e.g. PostgreSQL with
asyncpg) works as long as it supports partial unique indexes.
"""

from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncGenerator, Optional

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool

from printqueue.config import get_settings
from printqueue.utils import get_logger
from printqueue.db.models import Base

logger = get_logger("db")

# Global engine and session factory
_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker] = None
_database_url: Optional[str] = None


def get_database_url() -> str:
    """Get the configured database URL."""
    return _database_url or get_settings().database_url


def _is_memory_sqlite(url: str) -> bool:
    parsed = make_url(url)
    return parsed.get_backend_name() == "sqlite" and parsed.database in (None, "", ":memory:")


def get_engine() -> AsyncEngine:
    """Get or create the async database engine."""
    global _engine
    if _engine is None:
        url = get_database_url()
        echo = get_settings().db_echo
        if _is_memory_sqlite(url):
            # A single shared connection keeps the in-memory database alive
            _engine = create_async_engine(
                url,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
                echo=echo,
            )
        elif make_url(url).get_backend_name() == "sqlite":
            _engine = create_async_engine(url, echo=echo)
        else:
            _engine = create_async_engine(
                url,
                pool_size=20,
                max_overflow=10,
                pool_pre_ping=True,
                echo=echo,
            )
    return _engine


def get_session_factory() -> async_sessionmaker:
    """Get or create the session factory."""
    global _session_factory
    if _session_factory is None:
        _session_factory = async_sessionmaker(
            bind=get_engine(),
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )
    return _session_factory


@asynccontextmanager
async def get_session(
    factory: Optional[async_sessionmaker] = None,
) -> AsyncGenerator[AsyncSession, None]:
    """Get a database session with automatic cleanup.

    The session commits when the block exits cleanly and rolls back when it
    raises, so each block is one all-or-nothing unit of work.
    """
    factory = factory or get_session_factory()
    session = factory()
    try:
        yield session
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    finally:
        await session.close()


async def init_db() -> None:
    """Initialize the database, creating all tables."""
    url = get_database_url()
    parsed = make_url(url)
    if parsed.get_backend_name() == "sqlite" and not _is_memory_sqlite(url):
        Path(parsed.database).parent.mkdir(parents=True, exist_ok=True)

    engine = get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database initialized successfully")


async def close_db() -> None:
    """Close the database connection."""
    global _engine, _session_factory
    if _engine:
        await _engine.dispose()
        _engine = None
        _session_factory = None
    logger.info("Database connection closed")


async def configure_database(url: str) -> None:
    """Point the module at a different database, disposing the old engine."""
    global _database_url
    await close_db()
    _database_url = url
