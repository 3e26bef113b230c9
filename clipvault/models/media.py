"""Media data models shared by the resolver, the stores and the orchestrator."""

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Tuple, Union

AUDIO_RENDITION = "audio"


@dataclass(frozen=True)
class FormatCandidate:
    """One selectable rendition of a resource.

    ``format_id`` is opaque and handed back to the fetcher unchanged.
    """

    format_id: str
    ext: str
    rendition: str  # e.g. "1080p" or "audio"
    filesize: int = 0  # bytes, 0 when unknown
    quality: int = 0  # height for video, 0 for audio
    has_audio: bool = False
    vcodec: Optional[str] = None  # only used for tie-breaking

    @property
    def is_audio(self) -> bool:
        """Check if this candidate is the audio-only rendition."""
        return self.rendition == AUDIO_RENDITION

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FormatCandidate":
        return cls(
            format_id=str(data["format_id"]),
            ext=data.get("ext", ""),
            rendition=data["rendition"],
            filesize=int(data.get("filesize") or 0),
            quality=int(data.get("quality") or 0),
            has_audio=bool(data.get("has_audio", False)),
            vcodec=data.get("vcodec"),
        )


@dataclass(frozen=True)
class VideoMetadata:
    """Immutable description of a resolved resource."""

    id: str
    url: str
    title: str
    uploader: str = ""
    duration: int = 0  # seconds
    view_count: int = 0
    like_count: int = 0
    upload_date: str = ""  # YYYYMMDD as reported by the fetcher
    thumbnail: str = ""
    width: int = 0
    height: int = 0
    formats: Tuple[FormatCandidate, ...] = field(default_factory=tuple)

    def find_format(self, format_id: str, rendition: str) -> Optional[FormatCandidate]:
        """Find the offered candidate matching a selection.

        Args:
            format_id: Fetcher format identifier.
            rendition: Rendition label shown to the user.

        Returns:
            The matching FormatCandidate, or None if it was never offered.
        """
        for candidate in self.formats:
            if candidate.format_id == format_id and candidate.rendition == rendition:
                return candidate
        return None

    def to_dict(self) -> Dict[str, Any]:
        """Convert metadata to a JSON-serialisable dictionary."""
        data = asdict(self)
        data["formats"] = [candidate.to_dict() for candidate in self.formats]
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "VideoMetadata":
        """Rebuild metadata from the dictionary produced by ``to_dict``."""
        return cls(
            id=data["id"],
            url=data.get("url", ""),
            title=data.get("title", ""),
            uploader=data.get("uploader") or "",
            duration=int(data.get("duration") or 0),
            view_count=int(data.get("view_count") or 0),
            like_count=int(data.get("like_count") or 0),
            upload_date=data.get("upload_date") or "",
            thumbnail=data.get("thumbnail") or "",
            width=int(data.get("width") or 0),
            height=int(data.get("height") or 0),
            formats=tuple(FormatCandidate.from_dict(f) for f in data.get("formats", [])),
        )


@dataclass(frozen=True)
class CacheFingerprint:
    """Composite key identifying a deliverable artifact.

    Requests with equal fingerprints are interchangeable regardless of who issued them.
    """

    resource_id: str
    format_id: str
    rendition: str

    @property
    def dedup_key(self) -> "DedupKey":
        """Coarser in-flight key: the rendition is deliberately left out."""
        return (self.resource_id, self.format_id)

    def __str__(self) -> str:
        return f"{self.resource_id}|{self.format_id}|{self.rendition}"


DedupKey = Tuple[str, str]


@dataclass(frozen=True)
class Requester:
    """The end user a flow acts for, and the chat to deliver into."""

    user_id: int
    chat_id: Union[int, str]


def format_list(candidates: List[FormatCandidate]) -> List[str]:
    """Render candidates as short log-friendly labels."""
    return [f"{c.rendition}:{c.format_id}" for c in candidates]
