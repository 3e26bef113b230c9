"""Format resolution: raw fetcher format records -> ranked rendition ladder.

The ladder holds the best candidate per video height, highest first, followed by
at most one audio-only candidate. Resolution is a pure transformation.
"""

from typing import Any, Dict, Iterable, List, Optional

from clipvault.models.media import AUDIO_RENDITION, FormatCandidate

MIN_VIDEO_HEIGHT = 144

VIDEO_EXT = "mp4"
AUDIO_EXT = "m4a"

_NO_CODEC = (None, "", "none")


def is_h264(vcodec: Optional[str]) -> bool:
    """Check if a codec tag is H.264/AVC compatible."""
    if not vcodec:
        return False
    codec = vcodec.lower()
    return "avc" in codec or "h264" in codec


def declared_size(record: Dict[str, Any]) -> int:
    """Declared size of a record in bytes, 0 when unknown."""
    return int(record.get("filesize") or record.get("filesize_approx") or 0)


def _displaces(challenger: FormatCandidate, incumbent: FormatCandidate) -> bool:
    """Check if a challenger replaces the incumbent at the same height.

    Larger declared size wins. An H.264 challenger displaces an incumbent that is
    not H.264, whether the sizes tie or not.
    """
    if challenger.filesize > incumbent.filesize:
        return True
    return is_h264(challenger.vcodec) and not is_h264(incumbent.vcodec)


def resolve_formats(records: Iterable[Dict[str, Any]]) -> List[FormatCandidate]:
    """Build the rendition ladder from raw format records.

    Args:
        records: Per-format dictionaries as emitted by the fetcher's JSON dump
            (``format_id``, ``vcodec``, ``acodec``, ``height``, ``filesize``...).

    Returns:
        Video candidates sorted by height descending, then the largest audio-only
        candidate if any. Empty when nothing usable was found.
    """
    by_height: Dict[int, FormatCandidate] = {}
    best_audio: Optional[FormatCandidate] = None

    for record in records:
        has_video = record.get("vcodec") not in _NO_CODEC
        has_audio = record.get("acodec") not in _NO_CODEC
        size = declared_size(record)

        if not has_video:
            if not has_audio:
                continue
            audio = FormatCandidate(
                format_id=str(record.get("format_id", "")),
                ext=AUDIO_EXT,
                rendition=AUDIO_RENDITION,
                filesize=size,
                quality=0,
                has_audio=True,
                vcodec=None,
            )
            if best_audio is None or audio.filesize > best_audio.filesize:
                best_audio = audio
            continue

        height = int(record.get("height") or 0)
        if height < MIN_VIDEO_HEIGHT:
            continue

        candidate = FormatCandidate(
            format_id=str(record.get("format_id", "")),
            ext=VIDEO_EXT,
            rendition=f"{height}p",
            filesize=size,
            quality=height,
            has_audio=has_audio,
            vcodec=record.get("vcodec"),
        )
        incumbent = by_height.get(height)
        if incumbent is None or _displaces(candidate, incumbent):
            by_height[height] = candidate

    ladder = sorted(by_height.values(), key=lambda c: c.quality, reverse=True)
    if best_audio is not None:
        ladder.append(best_audio)
    return ladder


def presentation_window(
    ladder: List[FormatCandidate],
    min_height: int = 360,
    max_height: int = 1080,
) -> List[FormatCandidate]:
    """Narrow a ladder to the heights offered to users.

    The audio candidate is always kept.

    Args:
        ladder: Output of ``resolve_formats``.
        min_height: Lowest video height offered.
        max_height: Highest video height offered.

    Returns:
        The filtered ladder, order preserved.
    """
    return [
        c for c in ladder if c.is_audio or min_height <= c.quality <= max_height
    ]
