"""Result cache data models."""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from clipvault.models.media import CacheFingerprint


class ArtifactKind(str, Enum):
    """Kind of delivered artifact."""

    VIDEO = "video"
    AUDIO = "audio"


@dataclass
class CacheEntry:
    """A previously delivered artifact that can be re-sent by reference.

    There is at most one entry per fingerprint. Entries never expire on their own.
    """

    fingerprint: CacheFingerprint
    artifact_ref: str  # delivery-channel file handle
    archive_message_id: Optional[int] = None
    byte_size: int = 0
    kind: ArtifactKind = ArtifactKind.VIDEO
    created_by: Optional[int] = None
    title: str = ""
    uploader: Optional[str] = None
    duration: Optional[int] = None
    hit_count: int = 0
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    last_hit_at: Optional[datetime] = None
    entry_id: str = field(default_factory=lambda: uuid.uuid4().hex)

    def to_dict(self) -> Dict[str, Any]:
        """Convert entry to dictionary for API responses."""
        return {
            "entry_id": self.entry_id,
            "resource_id": self.fingerprint.resource_id,
            "format_id": self.fingerprint.format_id,
            "rendition": self.fingerprint.rendition,
            "artifact_ref": self.artifact_ref,
            "archive_message_id": self.archive_message_id,
            "byte_size": self.byte_size,
            "kind": self.kind.value,
            "title": self.title,
            "hit_count": self.hit_count,
            "created_at": self.created_at.isoformat(),
            "last_hit_at": self.last_hit_at.isoformat() if self.last_hit_at else None,
        }


@dataclass
class CacheStats:
    """Aggregate cache counters. Approximate by contract."""

    total_entries: int = 0
    total_hits: int = 0
    total_bytes: int = 0
    video_entries: int = 0
    audio_entries: int = 0
