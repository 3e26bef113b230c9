"""Data models for the application."""

from clipvault.models.cache import ArtifactKind, CacheEntry, CacheStats
from clipvault.models.flow import (
    TERMINAL_STATES,
    Flow,
    FlowState,
    ResolutionResult,
    SelectionResult,
)
from clipvault.models.media import (
    AUDIO_RENDITION,
    CacheFingerprint,
    DedupKey,
    FormatCandidate,
    Requester,
    VideoMetadata,
)
from clipvault.models.outcome import Outcome
from clipvault.models.session import SESSION_TTL, Session

__all__ = [
    "AUDIO_RENDITION",
    "ArtifactKind",
    "CacheEntry",
    "CacheFingerprint",
    "CacheStats",
    "DedupKey",
    "Flow",
    "FlowState",
    "FormatCandidate",
    "Outcome",
    "Requester",
    "ResolutionResult",
    "SESSION_TTL",
    "SelectionResult",
    "Session",
    "TERMINAL_STATES",
    "VideoMetadata",
]
