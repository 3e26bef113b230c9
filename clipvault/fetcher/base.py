"""Media fetcher contract."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any, AsyncIterator, Dict, Union


@dataclass(frozen=True)
class FetchRequest:
    """What to fetch and where to put it.

    Attributes:
        url: Canonical resource URL.
        format_id: Opaque format identifier from the rendition ladder.
        is_audio: Extract audio only.
        has_audio: The video format already carries an audio track.
        output_base: Destination path without extension.
    """

    url: str
    format_id: str
    is_audio: bool
    has_audio: bool
    output_base: Path


@dataclass(frozen=True)
class ProgressEvent:
    """Download progress, 0-100."""

    percent: float


@dataclass(frozen=True)
class FetchCompleted:
    """Terminal event carrying the produced artifact."""

    path: Path


FetchEvent = Union[ProgressEvent, FetchCompleted]


class MediaFetcher(ABC):
    """External tool that extracts metadata and produces artifacts."""

    @abstractmethod
    async def fetch_metadata(self, url: str) -> Dict[str, Any]:
        """
        Dump metadata for a single resource.

        Args:
            url: Resource URL

        Returns:
            Raw metadata with a ``formats`` list of per-format records

        Raises:
            ResolutionError: If the resource is unavailable or the URL is invalid
        """
        pass

    @abstractmethod
    def fetch(self, request: FetchRequest) -> AsyncIterator[FetchEvent]:
        """
        Download a rendition.

        Yields ``ProgressEvent`` items while the tool runs and exactly one
        ``FetchCompleted`` on success. The sequence ends when the process exits.

        Raises:
            FetchFailure: On non-zero exit or when the tool cannot be spawned
        """
        pass
