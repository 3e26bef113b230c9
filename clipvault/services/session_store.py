"""Session store: resolved metadata parked while the user picks a quality.

A bounded in-process cache sits in front of a durable repository. The cache is
never authoritative; losing it (restart, eviction) only costs a durable read.
Expired sessions are never returned.
"""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

import structlog
from cachetools import TTLCache
from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError

from clipvault.core.metrics import MetricsCollector
from clipvault.models.media import VideoMetadata
from clipvault.models.outcome import Outcome
from clipvault.models.session import SESSION_TTL, Session
from clipvault.storage.database import Database, ensure_utc_aware
from clipvault.storage.tables import SessionRow

logger = structlog.get_logger(__name__)


@dataclass
class SessionStats:
    """Durable session counters."""

    total: int = 0
    expired: int = 0
    active: int = 0


class SessionRepository(ABC):
    """Storage backend for sessions."""

    @abstractmethod
    async def save(self, session: Session) -> None:
        """Insert or replace a session."""

    @abstractmethod
    async def load(self, session_id: str) -> Optional[Session]:
        """Load a session regardless of expiry, None if absent."""

    @abstractmethod
    async def remove(self, session_id: str) -> bool:
        """Remove a session. Returns True if a row was removed."""

    @abstractmethod
    async def remove_expired(self, now: datetime) -> int:
        """Remove every session with ``expires_at < now``."""

    @abstractmethod
    async def stats(self, now: datetime) -> SessionStats:
        """Count total, expired and active sessions."""


class MemorySessionRepository(SessionRepository):
    """Bounded in-process repository.

    Entries are evicted by LRU when full and dropped once older than ``ttl``.
    """

    def __init__(self, maxsize: int = 1024, ttl: timedelta = SESSION_TTL) -> None:
        self._sessions: TTLCache = TTLCache(maxsize=maxsize, ttl=ttl.total_seconds())

    async def save(self, session: Session) -> None:
        self._sessions[session.id] = session

    async def load(self, session_id: str) -> Optional[Session]:
        return self._sessions.get(session_id)

    async def remove(self, session_id: str) -> bool:
        return self._sessions.pop(session_id, None) is not None

    async def remove_expired(self, now: datetime) -> int:
        expired = [sid for sid, s in list(self._sessions.items()) if s.expires_at < now]
        for sid in expired:
            self._sessions.pop(sid, None)
        return len(expired)

    async def stats(self, now: datetime) -> SessionStats:
        sessions = list(self._sessions.values())
        expired = sum(1 for s in sessions if s.is_expired(now))
        return SessionStats(total=len(sessions), expired=expired, active=len(sessions) - expired)

    def __len__(self) -> int:
        return len(self._sessions)


class SqlSessionRepository(SessionRepository):
    """Durable repository on the ``sessions`` table."""

    def __init__(self, database: Database) -> None:
        self.database = database

    async def save(self, session: Session) -> None:
        async with self.database.session() as db:
            await db.merge(
                SessionRow(
                    id=session.id,
                    metadata_json=session.metadata.to_dict(),
                    created_at=session.created_at,
                    expires_at=session.expires_at,
                )
            )
            await db.commit()

    async def load(self, session_id: str) -> Optional[Session]:
        async with self.database.session() as db:
            row = await db.get(SessionRow, session_id)
            if row is None:
                return None
            return Session(
                id=row.id,
                metadata=VideoMetadata.from_dict(row.metadata_json),
                created_at=ensure_utc_aware(row.created_at),
                expires_at=ensure_utc_aware(row.expires_at),
            )

    async def remove(self, session_id: str) -> bool:
        async with self.database.session() as db:
            result = await db.execute(delete(SessionRow).where(SessionRow.id == session_id))
            await db.commit()
            return bool(result.rowcount)

    async def remove_expired(self, now: datetime) -> int:
        async with self.database.session() as db:
            result = await db.execute(delete(SessionRow).where(SessionRow.expires_at < now))
            await db.commit()
            return int(result.rowcount or 0)

    async def stats(self, now: datetime) -> SessionStats:
        async with self.database.session() as db:
            total = await db.scalar(select(func.count()).select_from(SessionRow))
            expired = await db.scalar(
                select(func.count()).select_from(SessionRow).where(SessionRow.expires_at < now)
            )
        total = int(total or 0)
        expired = int(expired or 0)
        return SessionStats(total=total, expired=expired, active=total - expired)


class SessionStore:
    """Two-tier session store: memory fast path, durable fallback.

    Args:
        memory: In-process repository, consulted first.
        durable: Authoritative repository.
        ttl: Lifetime of new sessions.
    """

    def __init__(
        self,
        memory: SessionRepository,
        durable: SessionRepository,
        ttl: timedelta = SESSION_TTL,
    ) -> None:
        self.memory = memory
        self.durable = durable
        self.ttl = ttl

    async def put(
        self,
        session_id: str,
        metadata: VideoMetadata,
        now: Optional[datetime] = None,
    ) -> Outcome[Session]:
        """Store metadata under ``session_id``, refreshing any previous session.

        The memory write always happens. A failed durable write is reported in
        the outcome; the session then lives only until eviction or restart.
        """
        session = Session.open(session_id, metadata, ttl=self.ttl, now=now)
        await self.memory.save(session)

        try:
            await self.durable.save(session)
        except SQLAlchemyError as e:
            logger.warning("session_persist_failed", session_id=session_id, error=str(e))
            return Outcome(ok=False, value=session, error=str(e))

        logger.debug(
            "session_stored",
            session_id=session_id,
            resource_id=metadata.id,
            expires_at=session.expires_at.isoformat(),
        )
        return Outcome.success(session)

    async def get(self, session_id: str, now: Optional[datetime] = None) -> Optional[Session]:
        """Look up a live session.

        An expired session is deleted from both tiers and reported as absent;
        the durable delete is best-effort. A durable hit is written back to
        memory. An unreachable durable store is treated as a miss.
        """
        now = now or datetime.now(timezone.utc)

        session = await self.memory.load(session_id)
        from_memory = session is not None
        if session is None:
            try:
                session = await self.durable.load(session_id)
            except SQLAlchemyError as e:
                logger.warning("session_load_failed", session_id=session_id, error=str(e))
                return None
        if session is None:
            return None

        if session.is_expired(now):
            try:
                await self.delete(session_id)
            except SQLAlchemyError as e:
                logger.warning(
                    "session_expired_delete_failed", session_id=session_id, error=str(e)
                )
            logger.info("session_expired_on_lookup", session_id=session_id)
            return None

        if not from_memory:
            await self.memory.save(session)
        return session

    async def delete(self, session_id: str) -> None:
        """Delete a session from both tiers. Deleting an absent id is a no-op."""
        await self.memory.remove(session_id)
        await self.durable.remove(session_id)

    async def sweep(self, now: Optional[datetime] = None) -> int:
        """Delete all sessions past expiry.

        Returns:
            Number of durable sessions removed.
        """
        now = now or datetime.now(timezone.utc)
        await self.memory.remove_expired(now)
        count = await self.durable.remove_expired(now)

        MetricsCollector.record_sessions_swept(count)
        if count:
            logger.info("sessions_swept", count=count)
        return count

    async def stats(self, now: Optional[datetime] = None) -> Dict[str, int]:
        """Durable session counts: total, expired and active."""
        stats = await self.durable.stats(now or datetime.now(timezone.utc))
        return {"total": stats.total, "expired": stats.expired, "active": stats.active}


async def session_sweep_scheduler(
    store: SessionStore,
    interval: int = 3600,
    run_once: bool = False,
) -> Optional[int]:
    """Run periodic session sweeps.

    Args:
        store: SessionStore to sweep.
        interval: Seconds between sweeps.
        run_once: If True, run only one sweep (for testing).

    Returns:
        Number of sessions removed if run_once is True, None otherwise.
    """
    logger.info("session_sweep_scheduler_started", interval_seconds=interval)

    while True:
        await asyncio.sleep(interval)

        try:
            count = await store.sweep()
        except SQLAlchemyError as e:
            logger.error("session_sweep_failed", error=str(e))
            count = 0

        if run_once:
            return count
