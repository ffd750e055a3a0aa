import logging
from contextlib import asynccontextmanager
from collections.abc import AsyncIterator

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy import event

from epg_guide.config import settings
from epg_guide.models import Base

logger = logging.getLogger(__name__)

# Set by init_db() in the application lifespan
_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Get the session factory (initialized in init_db)"""
    if _session_factory is None:
        raise RuntimeError("Database not initialized. Call init_db() during startup.")
    return _session_factory


async def init_db(database_path: str | None = None) -> None:
    """Create the engine and the schema; an already open engine is closed first"""
    global _engine, _session_factory

    path = database_path or settings.database_path
    logger.info(f"Initializing database at {path}")

    if _engine is not None:
        await close_db()

    _engine = create_async_engine(
        f"sqlite+aiosqlite:///{path}",
        connect_args={"timeout": 30},
    )

    def enable_wal_and_cascades(dbapi_conn, _):
        # Readers keep the previous bundle while a refresh rewrites it;
        # channel and program rows cascade with their bundle header
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA journal_mode = WAL")
        cursor.execute("PRAGMA foreign_keys = ON")
        cursor.close()

    event.listen(_engine.sync_engine, "connect", enable_wal_and_cascades)

    async with _engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    _session_factory = async_sessionmaker(_engine, expire_on_commit=False, autoflush=False)

    logger.info("Database initialized successfully")


async def close_db() -> None:
    """Close database connections on shutdown"""
    global _engine, _session_factory
    if _engine:
        await _engine.dispose()
        logger.info("Database connections closed")
    _engine = None
    _session_factory = None


@asynccontextmanager
async def session_scope() -> AsyncIterator[AsyncSession]:
    """
    Provide a session wrapped in one transaction.

    Commits when the block exits normally and rolls back on any exception.
    """
    session_factory = get_session_factory()

    async with session_factory() as session:
        async with session.begin():
            yield session
