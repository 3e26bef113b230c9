"""Session model: resolved metadata parked while the user picks a quality."""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Optional

from clipvault.models.media import VideoMetadata

SESSION_TTL = timedelta(days=7)


@dataclass
class Session:
    """A resolved resource awaiting a quality selection.

    ``expires_at`` is always ``created_at + ttl``; construct through ``Session.open``.
    """

    id: str
    metadata: VideoMetadata
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    expires_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc) + SESSION_TTL)

    @classmethod
    def open(
        cls,
        session_id: str,
        metadata: VideoMetadata,
        ttl: timedelta = SESSION_TTL,
        now: Optional[datetime] = None,
    ) -> "Session":
        """Create a session whose expiry is derived from its creation time."""
        created_at = now or datetime.now(timezone.utc)
        return cls(
            id=session_id,
            metadata=metadata,
            created_at=created_at,
            expires_at=created_at + ttl,
        )

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        """Check if the session is past its expiry."""
        return (now or datetime.now(timezone.utc)) > self.expires_at
