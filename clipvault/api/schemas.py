"""Request and response schemas for API endpoints.

Pydantic models for request validation and response serialization, with
OpenAPI examples.
"""

from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, field_validator


class ResolveRequest(BaseModel):
    """Request body for the resolve endpoint."""

    url: str = Field(
        ...,
        description="Link to a single video",
        examples=["https://www.youtube.com/watch?v=dQw4w9WgXcQ"],
    )
    user_id: Optional[int] = Field(None, description="Requesting user", examples=[123456789])
    chat_id: Optional[Union[int, str]] = Field(None, examples=[123456789])

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        v = v.strip()
        if not v.startswith(("http://", "https://")):
            raise ValueError("url must be an http(s) link")
        return v


class FormatChoice(BaseModel):
    """One selectable rendition."""

    format_id: str = Field(..., examples=["137"])
    rendition: str = Field(..., examples=["1080p", "audio"])
    ext: str = Field(..., examples=["mp4"])
    filesize: int = Field(0, description="Size in bytes, 0 when unknown", examples=[50000000])
    has_audio: bool = Field(False, examples=[False])


class ResolveResponse(BaseModel):
    """Metadata summary and quality choices for a resolved link."""

    session_id: str = Field(..., examples=["9f86d081884c7d65"])
    state: str = Field("presenting", examples=["presenting"])
    resource_id: str = Field(..., examples=["dQw4w9WgXcQ"])
    title: str = Field(..., examples=["Rick Astley - Never Gonna Give You Up"])
    uploader: str = Field(..., examples=["Rick Astley"])
    duration: int = Field(..., description="Duration in seconds", examples=[212])
    thumbnail_url: str = Field("", examples=["https://i.ytimg.com/vi/dQw4w9WgXcQ/maxresdefault.jpg"])
    caption: str
    choices: List[FormatChoice]


class SelectRequest(BaseModel):
    """Request body for the select endpoint."""

    session_id: str = Field(..., min_length=1, examples=["9f86d081884c7d65"])
    format_id: str = Field(..., min_length=1, examples=["137"])
    rendition: str = Field(..., min_length=1, examples=["1080p"])
    user_id: int = Field(..., examples=[123456789])
    chat_id: Union[int, str] = Field(..., examples=[123456789])


class SelectResponse(BaseModel):
    """Immediate answer to a selection.

    HTTP 200 for delivered and duplicate selections, HTTP 202 when queued.
    """

    flow_id: str = Field(..., examples=["550e8400e29b41d4a716446655440000"])
    state: str = Field(..., examples=["queued", "delivered", "duplicate_in_flight"])
    from_cache: bool = Field(False, examples=[False])
    message: str = Field(..., examples=["Added to the download queue... Position 2."])


class FlowResponse(BaseModel):
    """State of one selection flow."""

    flow_id: str
    state: str = Field(..., examples=["fetching"])
    resource_id: str = Field(..., examples=["dQw4w9WgXcQ"])
    format_id: str = Field(..., examples=["137"])
    rendition: str = Field(..., examples=["1080p"])
    progress: float = Field(..., examples=[42.0])
    from_cache: bool
    archived: bool
    error_message: Optional[str] = None
    created_at: str = Field(..., examples=["2026-01-05T10:30:00+00:00"])
    finished_at: Optional[str] = None


class FlowListResponse(BaseModel):
    """List of tracked flows."""

    flows: List[FlowResponse]
    total: int


class QueueStatsResponse(BaseModel):
    active: int = Field(..., examples=[3])
    queued: int = Field(..., examples=[7])


class CacheStatsResponse(BaseModel):
    total_entries: int
    total_hits: int
    total_bytes: int
    video_entries: int
    audio_entries: int


class SessionStatsResponse(BaseModel):
    total: int
    expired: int
    active: int


class FlowStatsResponse(BaseModel):
    tracked: int
    active: int


class StatsResponse(BaseModel):
    """Service counters."""

    queue: QueueStatsResponse
    cache: CacheStatsResponse
    sessions: SessionStatsResponse
    flows: FlowStatsResponse


class ComponentHealth(BaseModel):
    """Health status of a single component."""

    status: Literal["healthy", "unhealthy"] = Field(..., examples=["healthy"])
    version: Optional[str] = Field(default=None, examples=["2026.01.01"])
    details: Optional[Dict[str, Any]] = Field(default=None, examples=[{"latency_ms": 150}])


class HealthResponse(BaseModel):
    """Detailed health check response."""

    status: Literal["healthy", "unhealthy"] = Field(..., examples=["healthy"])
    timestamp: str = Field(..., examples=["2026-01-05T10:30:00Z"])
    version: str = Field(..., examples=["0.1.0"])
    uptime_seconds: float = Field(..., examples=[3600.5])
    test_mode: bool = Field(False, examples=[False])
    components: Dict[str, ComponentHealth]


class LivenessResponse(BaseModel):
    """Simple liveness check response for container orchestration."""

    status: Literal["alive"] = Field(..., examples=["alive"])


class ReadinessResponse(BaseModel):
    """Readiness check response for load balancer integration."""

    status: Literal["ready", "not_ready"] = Field(..., examples=["ready"])
    ready: bool = Field(..., examples=[True])
    message: Optional[str] = Field(default=None, examples=["database unreachable"])


class ErrorDetail(BaseModel):
    """Structured error response.

    All API errors follow this format with machine-readable error codes
    and optional suggestions for resolution.
    """

    error_code: str = Field(
        ...,
        description="Machine-readable error code",
        examples=["SESSION_EXPIRED", "QUEUE_FULL", "RESOLUTION_FAILED"],
    )
    message: str = Field(
        ...,
        description="Human-readable error message",
        examples=["The link has expired. Send the video again."],
    )
    details: Optional[str] = Field(None, description="Additional error details")
    timestamp: str = Field(..., examples=["2026-01-05T10:30:00Z"])
    request_id: Optional[str] = Field(None, examples=["550e8400-e29b-41d4-a716-446655440000"])
    suggestion: Optional[str] = Field(
        None, examples=["Resolve the URL again to start a new session"]
    )
