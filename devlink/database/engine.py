"""
Database engine and connection management.

Single SQLite database for the client's persisted settings.
"""

import logging
from pathlib import Path
from typing import Optional

from sqlalchemy.ext.asyncio import (
    create_async_engine,
    AsyncSession,
    async_sessionmaker,
    AsyncEngine,
)

from devlink.config import default_database_path
from .models import Base

logger = logging.getLogger("devlink.database")

# Global instances (initialized during startup)
_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker[AsyncSession]] = None
_database_path: Optional[str] = None


async def init_database(db_path: Optional[str] = None) -> async_sessionmaker[AsyncSession]:
    """
    Initialize the database engine and create tables.

    Call this once during client startup. Calling it again with a different
    path disposes the previous engine first.

    Returns the session factory.
    """
    global _engine, _session_factory, _database_path

    db_path = db_path or default_database_path()
    if _engine is not None:
        if db_path == _database_path:
            return _session_factory
        await close_database()

    Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    logger.info(f"Initializing database at: {db_path}")

    _engine = create_async_engine(
        f"sqlite+aiosqlite:///{db_path}",
        echo=False,
    )

    _session_factory = async_sessionmaker(
        _engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    async with _engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    _database_path = db_path
    logger.debug("Database tables created/verified")
    return _session_factory


async def close_database() -> None:
    """Close database connections gracefully."""
    global _engine, _session_factory, _database_path

    if _engine:
        await _engine.dispose()
        logger.debug("Database engine disposed")

    _engine = None
    _session_factory = None
    _database_path = None


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Get the session factory (must call init_database first)."""
    if _session_factory is None:
        raise RuntimeError("Database not initialized. Call init_database() first.")
    return _session_factory


def get_database_path() -> Optional[str]:
    """Path of the currently open database, if any."""
    return _database_path


class DatabaseSession:
    """
    Async context manager for database sessions.

    Usage:
        async with DatabaseSession() as session:
            result = await session.execute(query)
    """

    def __init__(self):
        self._session: Optional[AsyncSession] = None

    async def __aenter__(self) -> AsyncSession:
        factory = get_session_factory()
        self._session = factory()
        return self._session

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if self._session:
            if exc_type is not None:
                await self._session.rollback()
            await self._session.close()
