import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator
from collections.abc import AsyncIterator

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy import event

from app.config import settings
from app.models import Base

logger = logging.getLogger(__name__)

# Built once by init_db() in the application lifespan
_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Request-scoped guide store session for FastAPI routes"""
    session_factory = get_session_factory()

    async with session_factory() as session:
        yield session


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory whose objects stay readable after commit"""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
        autocommit=False,
    )


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Session factory built by init_db()"""
    global _session_factory
    if _session_factory is None:
        raise RuntimeError("Guide store not initialized, init_db() must run first")
    return _session_factory


def _configure_sqlite(dbapi_conn, _) -> None:
    """Apply the guide store pragmas to every new SQLite connection"""
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode = WAL")
    cursor.execute("PRAGMA cache_size = -64000")
    # Programs cascade away with their guide source
    cursor.execute("PRAGMA foreign_keys = ON")
    cursor.close()


def create_engine(database_url: str) -> AsyncEngine:
    """Create an async SQLite engine with the service pragmas applied"""
    engine = create_async_engine(
        database_url,
        echo=False,
        future=True,
        pool_pre_ping=True,
        connect_args={"timeout": 30, "check_same_thread": False},
    )
    event.listen(engine.sync_engine, "connect", _configure_sqlite)
    return engine


async def init_db(database_url: str | None = None) -> None:
    """Create the engine and the guide_sources/guide_programs tables"""
    global _engine, _session_factory

    database_url = database_url or f"sqlite+aiosqlite:///{settings.database_path}"
    logger.info(f"Initializing database at {database_url}")

    _engine = create_engine(database_url)

    # Create all tables
    async with _engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    _session_factory = create_session_factory(_engine)

    logger.info("Guide store ready")


async def close_db() -> None:
    """Dispose the guide store engine on shutdown"""
    global _engine, _session_factory
    if _engine:
        await _engine.dispose()
        _engine = None
        _session_factory = None
        logger.info("Guide store closed")


@asynccontextmanager
async def session_scope(
    *,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
) -> AsyncIterator[AsyncSession]:
    """
    Session context for service code outside a request.

    Refresh cycles use it so that their prune, clear, insert and stamp steps
    commit as one transaction.

    Args:
        session_factory: Factory to draw the session from; defaults to the one built by init_db().
    """
    session_factory = session_factory or get_session_factory()

    async with session_factory() as session:
        async with session.begin():
            yield session
