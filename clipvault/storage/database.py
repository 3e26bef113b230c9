"""Async SQLAlchemy engine and session factory for the durable stores."""

from datetime import datetime, timezone
from typing import Optional

import structlog
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

logger = structlog.get_logger(__name__)


class Base(DeclarativeBase):
    """Declarative base shared by all tables."""

    pass


def utc_now() -> datetime:
    """Get current UTC time."""
    return datetime.now(timezone.utc)


def ensure_utc_aware(dt: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes read back from SQLite."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


class Database:
    """Owns the async engine and hands out sessions.

    Args:
        url: SQLAlchemy async URL, e.g. ``sqlite+aiosqlite:///./clipvault.db``.
        echo: Log emitted SQL.
    """

    def __init__(self, url: str, echo: bool = False) -> None:
        self.url = url
        self.engine: AsyncEngine = create_async_engine(url, echo=echo)
        self.session_factory = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )

    async def create_tables(self) -> None:
        """Create missing tables. Existing tables are left untouched."""
        # Register table classes on Base.metadata before create_all
        from clipvault.storage import tables  # noqa: F401

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

        logger.info("database_initialized", tables=sorted(Base.metadata.tables))

    def session(self) -> AsyncSession:
        """Open a new session; use as ``async with db.session() as s``."""
        return self.session_factory()

    async def ping(self) -> bool:
        """Run a trivial query; False when the database is unreachable."""
        try:
            async with self.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
        except SQLAlchemyError as e:
            logger.warning("database_ping_failed", error=str(e))
            return False
        return True

    async def dispose(self) -> None:
        await self.engine.dispose()
        logger.info("database_disposed")
