"""Media fetcher contract and the yt-dlp implementation."""

from clipvault.fetcher.base import (
    FetchCompleted,
    FetchEvent,
    FetchRequest,
    MediaFetcher,
    ProgressEvent,
)
from clipvault.fetcher.media_tools import FfmpegMediaTools, MediaTools
from clipvault.fetcher.ytdlp import YtDlpFetcher

__all__ = [
    "FetchCompleted",
    "FetchEvent",
    "FetchRequest",
    "FfmpegMediaTools",
    "MediaFetcher",
    "MediaTools",
    "ProgressEvent",
    "YtDlpFetcher",
]
