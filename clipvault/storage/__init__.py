"""Durable storage backed by SQLAlchemy's async engine."""

from clipvault.storage.database import Base, Database, ensure_utc_aware, utc_now

__all__ = ["Base", "Database", "ensure_utc_aware", "utc_now"]
