"""Result cache: fingerprint -> previously archived artifact.

Overwrite policy is last-writer-wins on the artifact fields. A repeated ``set``
for an existing fingerprint replaces the artifact reference and its descriptive
fields, while the accumulated ``hit_count`` and the original ``created_at`` are
kept. Concurrent writers are serialised by the unique constraint on the
fingerprint columns, never by application locks.
"""

from abc import ABC, abstractmethod
from dataclasses import replace
from datetime import datetime, timezone
from typing import Dict, Optional

import structlog
from sqlalchemy import case, func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from clipvault.core.exceptions import CacheWriteFailure
from clipvault.models.cache import ArtifactKind, CacheEntry, CacheStats
from clipvault.models.media import CacheFingerprint
from clipvault.models.outcome import Outcome
from clipvault.storage.database import Database, ensure_utc_aware
from clipvault.storage.tables import CacheEntryRow, CacheHitRow

logger = structlog.get_logger(__name__)


class CacheRepository(ABC):
    """Storage backend for cache entries."""

    @abstractmethod
    async def find(self, fingerprint: CacheFingerprint) -> Optional[CacheEntry]:
        """Find the entry for a fingerprint, None on miss."""

    @abstractmethod
    async def upsert(self, entry: CacheEntry) -> CacheEntry:
        """Insert an entry or overwrite the existing one for its fingerprint.

        Returns:
            The stored entry. Its ``entry_id`` is the surviving row id.
        """

    @abstractmethod
    async def increment_hits(
        self, entry_id: str, requester_id: Optional[int], at: datetime
    ) -> bool:
        """Add one hit to an entry. Returns False if the entry is unknown."""

    @abstractmethod
    async def stats(self) -> CacheStats:
        """Aggregate counters over all entries."""


class MemoryCacheRepository(CacheRepository):
    """Dictionary-backed repository for tests and test mode."""

    def __init__(self) -> None:
        self._entries: Dict[CacheFingerprint, CacheEntry] = {}

    async def find(self, fingerprint: CacheFingerprint) -> Optional[CacheEntry]:
        entry = self._entries.get(fingerprint)
        return replace(entry) if entry is not None else None

    async def upsert(self, entry: CacheEntry) -> CacheEntry:
        existing = self._entries.get(entry.fingerprint)
        if existing is not None:
            entry = replace(
                entry,
                entry_id=existing.entry_id,
                hit_count=existing.hit_count,
                created_at=existing.created_at,
                last_hit_at=existing.last_hit_at,
            )
        self._entries[entry.fingerprint] = entry
        return replace(entry)

    async def increment_hits(
        self, entry_id: str, requester_id: Optional[int], at: datetime
    ) -> bool:
        for entry in self._entries.values():
            if entry.entry_id == entry_id:
                entry.hit_count += 1
                entry.last_hit_at = at
                return True
        return False

    async def stats(self) -> CacheStats:
        entries = list(self._entries.values())
        return CacheStats(
            total_entries=len(entries),
            total_hits=sum(e.hit_count for e in entries),
            total_bytes=sum(e.byte_size for e in entries),
            video_entries=sum(1 for e in entries if e.kind == ArtifactKind.VIDEO),
            audio_entries=sum(1 for e in entries if e.kind == ArtifactKind.AUDIO),
        )


def _row_to_entry(row: CacheEntryRow) -> CacheEntry:
    return CacheEntry(
        fingerprint=CacheFingerprint(row.resource_id, row.format_id, row.rendition),
        artifact_ref=row.artifact_ref,
        archive_message_id=row.archive_message_id,
        byte_size=row.byte_size or 0,
        kind=ArtifactKind(row.kind),
        created_by=row.created_by,
        title=row.title or "",
        uploader=row.uploader,
        duration=row.duration,
        hit_count=row.hit_count or 0,
        created_at=ensure_utc_aware(row.created_at),
        last_hit_at=ensure_utc_aware(row.last_hit_at),
        entry_id=row.id,
    )


def _fingerprint_clause(fingerprint: CacheFingerprint):
    return (
        (CacheEntryRow.resource_id == fingerprint.resource_id)
        & (CacheEntryRow.format_id == fingerprint.format_id)
        & (CacheEntryRow.rendition == fingerprint.rendition)
    )


class SqlCacheRepository(CacheRepository):
    """Durable repository on the ``cache_entries`` and ``cache_hits`` tables."""

    def __init__(self, database: Database) -> None:
        self.database = database

    async def find(self, fingerprint: CacheFingerprint) -> Optional[CacheEntry]:
        async with self.database.session() as db:
            row = await db.scalar(select(CacheEntryRow).where(_fingerprint_clause(fingerprint)))
            return _row_to_entry(row) if row is not None else None

    async def upsert(self, entry: CacheEntry) -> CacheEntry:
        try:
            return await self._insert(entry)
        except IntegrityError:
            # Another writer owns the fingerprint row; overwrite its artifact fields.
            return await self._overwrite(entry)

    async def _insert(self, entry: CacheEntry) -> CacheEntry:
        async with self.database.session() as db:
            db.add(
                CacheEntryRow(
                    id=entry.entry_id,
                    resource_id=entry.fingerprint.resource_id,
                    format_id=entry.fingerprint.format_id,
                    rendition=entry.fingerprint.rendition,
                    artifact_ref=entry.artifact_ref,
                    archive_message_id=entry.archive_message_id,
                    byte_size=entry.byte_size,
                    kind=entry.kind.value,
                    created_by=entry.created_by,
                    title=entry.title,
                    uploader=entry.uploader,
                    duration=entry.duration,
                    hit_count=entry.hit_count,
                    created_at=entry.created_at,
                    last_hit_at=entry.last_hit_at,
                )
            )
            await db.commit()
        return replace(entry)

    async def _overwrite(self, entry: CacheEntry) -> CacheEntry:
        async with self.database.session() as db:
            await db.execute(
                update(CacheEntryRow)
                .where(_fingerprint_clause(entry.fingerprint))
                .values(
                    artifact_ref=entry.artifact_ref,
                    archive_message_id=entry.archive_message_id,
                    byte_size=entry.byte_size,
                    kind=entry.kind.value,
                    created_by=entry.created_by,
                    title=entry.title,
                    uploader=entry.uploader,
                    duration=entry.duration,
                )
            )
            await db.commit()
            row = await db.scalar(
                select(CacheEntryRow).where(_fingerprint_clause(entry.fingerprint))
            )
        if row is None:
            raise CacheWriteFailure(f"Cache entry vanished during overwrite: {entry.fingerprint}")
        return _row_to_entry(row)

    async def increment_hits(
        self, entry_id: str, requester_id: Optional[int], at: datetime
    ) -> bool:
        async with self.database.session() as db:
            result = await db.execute(
                update(CacheEntryRow)
                .where(CacheEntryRow.id == entry_id)
                .values(hit_count=CacheEntryRow.hit_count + 1, last_hit_at=at)
            )
            if not result.rowcount:
                await db.rollback()
                return False
            db.add(CacheHitRow(entry_id=entry_id, requester_id=requester_id, hit_at=at))
            await db.commit()
            return True

    async def stats(self) -> CacheStats:
        async with self.database.session() as db:
            row = (
                await db.execute(
                    select(
                        func.count(CacheEntryRow.id),
                        func.coalesce(func.sum(CacheEntryRow.hit_count), 0),
                        func.coalesce(func.sum(CacheEntryRow.byte_size), 0),
                        func.coalesce(
                            func.sum(case((CacheEntryRow.kind == ArtifactKind.VIDEO.value, 1), else_=0)),
                            0,
                        ),
                        func.coalesce(
                            func.sum(case((CacheEntryRow.kind == ArtifactKind.AUDIO.value, 1), else_=0)),
                            0,
                        ),
                    )
                )
            ).one()
        return CacheStats(
            total_entries=int(row[0]),
            total_hits=int(row[1]),
            total_bytes=int(row[2]),
            video_entries=int(row[3]),
            audio_entries=int(row[4]),
        )


class ResultCache:
    """Facade used by the orchestrator.

    ``get`` and ``set`` propagate repository errors so the caller decides how to
    degrade. ``record_hit`` is telemetry and reports through ``Outcome``.
    """

    def __init__(self, repository: CacheRepository) -> None:
        self.repository = repository

    async def get(self, fingerprint: CacheFingerprint) -> Optional[CacheEntry]:
        """Return the entry for ``fingerprint`` or None on miss.

        The artifact reference is returned as stored; its validity upstream is
        not checked here.
        """
        return await self.repository.find(fingerprint)

    async def set(self, entry: CacheEntry) -> CacheEntry:
        """Store ``entry``, overwriting any entry with the same fingerprint.

        Raises:
            CacheWriteFailure: If the durable write fails.
        """
        try:
            stored = await self.repository.upsert(entry)
        except SQLAlchemyError as e:
            raise CacheWriteFailure(f"Failed to store cache entry {entry.fingerprint}: {e}") from e

        logger.info(
            "cache_entry_stored",
            fingerprint=str(entry.fingerprint),
            entry_id=stored.entry_id,
            byte_size=stored.byte_size,
            kind=stored.kind.value,
        )
        return stored

    async def record_hit(
        self,
        entry_id: str,
        requester_id: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> Outcome[None]:
        """Count one hit on an entry. Never raises."""
        try:
            found = await self.repository.increment_hits(
                entry_id, requester_id, now or datetime.now(timezone.utc)
            )
        except SQLAlchemyError as e:
            logger.warning("cache_hit_record_failed", entry_id=entry_id, error=str(e))
            return Outcome.failure(str(e))

        if not found:
            logger.warning("cache_hit_unknown_entry", entry_id=entry_id)
            return Outcome.failure(f"Unknown cache entry: {entry_id}")
        return Outcome.success()

    async def stats(self) -> CacheStats:
        return await self.repository.stats()
