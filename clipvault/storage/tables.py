"""ORM tables backing the session store and the result cache."""

import uuid
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import JSON, BigInteger, DateTime, ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from clipvault.storage.database import Base, utc_now


class SessionRow(Base):
    """A resolved resource parked until the user picks a quality."""

    __tablename__ = "sessions"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    metadata_json: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (Index("ix_sessions_expires_at", "expires_at"),)


class CacheEntryRow(Base):
    """An archived artifact, one row per fingerprint."""

    __tablename__ = "cache_entries"

    id: Mapped[str] = mapped_column(
        String(32), primary_key=True, default=lambda: uuid.uuid4().hex
    )
    resource_id: Mapped[str] = mapped_column(String(64), nullable=False)
    format_id: Mapped[str] = mapped_column(String(64), nullable=False)
    rendition: Mapped[str] = mapped_column(String(32), nullable=False)
    artifact_ref: Mapped[str] = mapped_column(String(255), nullable=False)
    archive_message_id: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    byte_size: Mapped[int] = mapped_column(BigInteger, default=0)
    kind: Mapped[str] = mapped_column(String(16), nullable=False)
    created_by: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    title: Mapped[str] = mapped_column(String(255), default="")
    uploader: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    duration: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    hit_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
    last_hit_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("resource_id", "format_id", "rendition", name="uq_cache_fingerprint"),
        Index("ix_cache_entries_resource_id", "resource_id"),
    )


class CacheHitRow(Base):
    """Append-only log of cache hits."""

    __tablename__ = "cache_hits"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    entry_id: Mapped[str] = mapped_column(
        String(32), ForeignKey("cache_entries.id", ondelete="CASCADE"), nullable=False
    )
    requester_id: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    hit_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)

    __table_args__ = (Index("ix_cache_hits_entry_id", "entry_id"),)
