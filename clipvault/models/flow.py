"""Flow data models for the download state machine.

State transitions:
- RESOLVING -> PRESENTING: metadata fetched and a ladder is available
- PRESENTING -> CACHE_CHECK: the user picked a quality
- CACHE_CHECK -> DELIVERED: served from the result cache
- CACHE_CHECK -> DUPLICATE_IN_FLIGHT: an equivalent fetch is already running
- CACHE_CHECK -> QUEUED: admitted to (or waiting in) the admission queue
- QUEUED -> FETCHING -> ARCHIVING -> DELIVERED
- any step -> one of the *_FAILED / *_REJECTED / *_EXPIRED terminal states
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from clipvault.models.media import CacheFingerprint, FormatCandidate, VideoMetadata


class FlowState(str, Enum):
    """Position of a request in the download state machine."""

    RESOLVING = "resolving"
    PRESENTING = "presenting"
    CACHE_CHECK = "cache_check"
    QUEUED = "queued"
    FETCHING = "fetching"
    ARCHIVING = "archiving"
    DELIVERED = "delivered"
    DUPLICATE_IN_FLIGHT = "duplicate_in_flight"
    RESOLUTION_FAILED = "resolution_failed"
    NO_USABLE_FORMAT = "no_usable_format"
    SESSION_EXPIRED = "session_expired"
    QUEUE_REJECTED = "queue_rejected"
    FETCH_FAILED = "fetch_failed"
    UPLOAD_FAILED = "upload_failed"


TERMINAL_STATES = frozenset(
    {
        FlowState.DELIVERED,
        FlowState.DUPLICATE_IN_FLIGHT,
        FlowState.RESOLUTION_FAILED,
        FlowState.NO_USABLE_FORMAT,
        FlowState.SESSION_EXPIRED,
        FlowState.QUEUE_REJECTED,
        FlowState.FETCH_FAILED,
        FlowState.UPLOAD_FAILED,
    }
)


@dataclass
class Flow:
    """Tracks one quality selection from cache check to delivery."""

    flow_id: str
    fingerprint: CacheFingerprint
    user_id: int
    state: FlowState = FlowState.CACHE_CHECK
    progress: float = 0.0  # 0-100 percentage
    from_cache: bool = False
    archived: bool = False
    error_message: Optional[str] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: Optional[datetime] = None

    def is_terminal(self) -> bool:
        """Check if the flow reached a terminal state."""
        return self.state in TERMINAL_STATES

    def to_dict(self) -> Dict[str, Any]:
        """Convert flow to dictionary for API responses."""
        return {
            "flow_id": self.flow_id,
            "state": self.state.value,
            "resource_id": self.fingerprint.resource_id,
            "format_id": self.fingerprint.format_id,
            "rendition": self.fingerprint.rendition,
            "progress": round(self.progress, 1),
            "from_cache": self.from_cache,
            "archived": self.archived,
            "error_message": self.error_message,
            "created_at": self.created_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
        }


@dataclass
class ResolutionResult:
    """What the user is shown after a URL has been resolved."""

    session_id: str
    metadata: VideoMetadata
    choices: List[FormatCandidate]
    caption: str
    state: FlowState = FlowState.PRESENTING


@dataclass
class SelectionResult:
    """Immediate answer to a quality selection.

    ``completion`` resolves when a queued download finishes (or fails); it is
    None when nothing was queued.
    """

    flow_id: str
    state: FlowState
    message: str
    from_cache: bool = False
    completion: Optional["asyncio.Future[Any]"] = field(default=None, repr=False, compare=False)
