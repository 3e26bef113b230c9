"""Demo metadata fixtures for test mode.

Realistic yt-dlp ``--dump-single-json`` output, so the service can run
end-to-end without network access. Used when CLIPVAULT_TESTING_TEST_MODE=true.
"""

import copy
import re
from typing import Any, Dict, List, Optional

# Demo video: Rick Astley - Never Gonna Give You Up
RICK_ASTLEY_VIDEO: Dict[str, Any] = {
    "id": "dQw4w9WgXcQ",
    "title": "Rick Astley - Never Gonna Give You Up (Official Music Video)",
    "duration": 212,
    "uploader": "Rick Astley",
    "channel": "Rick Astley",
    "upload_date": "20091025",
    "view_count": 1500000000,
    "like_count": 15000000,
    "thumbnail": "https://i.ytimg.com/vi/dQw4w9WgXcQ/maxresdefault.jpg",
    "webpage_url": "https://www.youtube.com/watch?v=dQw4w9WgXcQ",
    "width": 1920,
    "height": 1080,
    "formats": [
        {"format_id": "sb0", "vcodec": "none", "acodec": "none", "height": 90},
        {"format_id": "160", "vcodec": "avc1.4d400c", "acodec": "none", "height": 144, "filesize": 1200000},
        {"format_id": "18", "vcodec": "avc1.42001E", "acodec": "mp4a.40.2", "height": 360, "filesize": 15000000},
        {"format_id": "243", "vcodec": "vp9", "acodec": "none", "height": 360, "filesize": 15000000},
        {"format_id": "247", "vcodec": "vp9", "acodec": "none", "height": 720, "filesize": 52000000},
        {"format_id": "136", "vcodec": "avc1.4d401f", "acodec": "none", "height": 720, "filesize": 45000000},
        {"format_id": "137", "vcodec": "avc1.640028", "acodec": "none", "height": 1080, "filesize": 50000000},
        {"format_id": "401", "vcodec": "av01.0.12M.08", "acodec": "none", "height": 2160, "filesize": 400000000},
        {"format_id": "139", "vcodec": "none", "acodec": "mp4a.40.5", "filesize_approx": 1300000},
        {"format_id": "140", "vcodec": "none", "acodec": "mp4a.40.2", "filesize": 3400000},
    ],
}

# Demo video: only low renditions, nothing inside the presentation window
LOW_RES_VIDEO: Dict[str, Any] = {
    "id": "jNQXAC9IVRw",
    "title": "Me at the zoo",
    "duration": 19,
    "uploader": None,
    "channel": "jawed",
    "upload_date": "20050424",
    "view_count": 300000000,
    "like_count": 17000000,
    "thumbnail": "https://i.ytimg.com/vi/jNQXAC9IVRw/hqdefault.jpg",
    "webpage_url": "https://www.youtube.com/watch?v=jNQXAC9IVRw",
    "width": 320,
    "height": 240,
    "formats": [
        {"format_id": "133", "vcodec": "avc1.4d400d", "acodec": "none", "height": 240, "filesize": 400000},
        {"format_id": "160", "vcodec": "avc1.4d400c", "acodec": "none", "height": 144, "filesize": 200000},
    ],
}

DEMO_VIDEOS: Dict[str, Dict[str, Any]] = {
    RICK_ASTLEY_VIDEO["id"]: RICK_ASTLEY_VIDEO,
    LOW_RES_VIDEO["id"]: LOW_RES_VIDEO,
}

_VIDEO_ID_PATTERNS: List[re.Pattern] = [
    re.compile(r"[?&]v=([\w-]{11})"),
    re.compile(r"youtu\.be/([\w-]{11})"),
    re.compile(r"/shorts/([\w-]{11})"),
]


def extract_video_id(url: str) -> Optional[str]:
    """Extract an 11-character video id from a YouTube URL."""
    for pattern in _VIDEO_ID_PATTERNS:
        match = pattern.search(url)
        if match:
            return match.group(1)
    return None


def get_demo_video(video_id: str) -> Optional[Dict[str, Any]]:
    """Get a deep copy of a demo metadata dump, None for unknown ids."""
    video = DEMO_VIDEOS.get(video_id)
    return copy.deepcopy(video) if video is not None else None
