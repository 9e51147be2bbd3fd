import asyncio
from contextlib import asynccontextmanager
from enum import Enum, auto
from pathlib import Path
from typing import AsyncGenerator, Optional

from loguru import logger
from sqlalchemy import event, text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_scoped_session,
    async_sessionmaker,
    create_async_engine,
)

from tabula.models import Base
from tabula.models.search import CREATE_RECORD_SEARCH

# Module level state - one engine per database path
_engines: dict[str, AsyncEngine] = {}
_session_makers: dict[str, async_sessionmaker[AsyncSession]] = {}
_initialized: dict[str, bool] = {}


class DatabaseType(Enum):
    """Types of supported databases."""

    MEMORY = auto()
    FILESYSTEM = auto()

    @classmethod
    def get_db_url(cls, db_path: Optional[Path], db_type: "DatabaseType") -> str:
        """Get SQLAlchemy URL for database path."""
        if db_type == cls.MEMORY:
            logger.info("Using in-memory SQLite database")
            return "sqlite+aiosqlite://"

        return f"sqlite+aiosqlite:///{db_path}"


def get_scoped_session_factory(
    session_maker: async_sessionmaker[AsyncSession],
) -> async_scoped_session:
    """Create a scoped session factory scoped to current task."""
    return async_scoped_session(session_maker, scopefunc=asyncio.current_task)


@asynccontextmanager
async def scoped_session(
    session_maker: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """
    Get a scoped session with proper lifecycle management.

    Everything executed inside the block is one unit of work: it is committed when
    the block exits normally and rolled back when it raises.

    Args:
        session_maker: Session maker to create scoped sessions from
    """
    factory = get_scoped_session_factory(session_maker)
    session = factory()
    try:
        await session.execute(text("PRAGMA foreign_keys=ON"))
        yield session
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    finally:
        await session.close()
        await factory.remove()


def _enable_foreign_keys(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def _create_engine_and_session(
    db_path: Optional[Path], db_type: DatabaseType = DatabaseType.FILESYSTEM
) -> tuple[AsyncEngine, async_sessionmaker[AsyncSession]]:
    """Internal helper to create engine and session maker."""
    db_url = DatabaseType.get_db_url(db_path, db_type)
    logger.debug(f"Creating engine for db_url: {db_url}")
    engine = create_async_engine(db_url, connect_args={"check_same_thread": False})
    event.listen(engine.sync_engine, "connect", _enable_foreign_keys)
    session_maker = async_sessionmaker(engine, expire_on_commit=False)
    return engine, session_maker


async def init_database(engine: AsyncEngine, search_enabled: bool = True) -> None:
    """Create all tables and, when enabled, the FTS5 record search table."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
        if search_enabled:
            await conn.execute(CREATE_RECORD_SEARCH)
    logger.info("Database schema initialized")


async def get_or_create_db(
    db_path: Path,
    db_type: DatabaseType = DatabaseType.FILESYSTEM,
    search_enabled: bool = True,
) -> tuple[AsyncEngine, async_sessionmaker[AsyncSession]]:
    """Get or create database engine and session maker for a specific database path."""
    db_key = str(db_path)

    if db_key not in _engines:
        if db_type == DatabaseType.FILESYSTEM:
            db_path.parent.mkdir(parents=True, exist_ok=True)
        engine, session_maker = _create_engine_and_session(db_path, db_type)
        _engines[db_key] = engine
        _session_makers[db_key] = session_maker

    if not _initialized.get(db_key, False):
        await init_database(_engines[db_key], search_enabled=search_enabled)
        _initialized[db_key] = True

    engine = _engines.get(db_key)
    session_maker = _session_makers.get(db_key)

    # These checks should never fail since we just created them if they were missing
    if engine is None or session_maker is None:  # pragma: no cover
        logger.error(f"Failed to create database engine for {db_path}")
        raise RuntimeError("Database engine initialization failed")

    return engine, session_maker


async def shutdown_db() -> None:
    """Clean up all database connections."""
    for db_key, engine in _engines.items():
        await engine.dispose()
        logger.debug(f"Disposed engine for: {db_key}")

    _engines.clear()
    _session_makers.clear()
    _initialized.clear()


@asynccontextmanager
async def engine_session_factory(
    db_path: Optional[Path],
    db_type: DatabaseType = DatabaseType.MEMORY,
    search_enabled: bool = True,
) -> AsyncGenerator[tuple[AsyncEngine, async_sessionmaker[AsyncSession]], None]:
    """Create an initialized engine and session factory.

    Note: This is primarily used for testing where we want a fresh database
    for each test. For production use, use get_or_create_db() instead.
    """
    engine, session_maker = _create_engine_and_session(db_path, db_type)
    try:
        await init_database(engine, search_enabled=search_enabled)
        yield engine, session_maker
    finally:
        await engine.dispose()
