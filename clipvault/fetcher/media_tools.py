"""ffmpeg/ffprobe helpers for thumbnails and container checks.

Both operations are best-effort and report through ``Outcome``.
"""

import asyncio
from abc import ABC, abstractmethod
from pathlib import Path
from typing import List, Tuple

import structlog

from clipvault.models.outcome import Outcome

logger = structlog.get_logger(__name__)

THUMBNAIL_OFFSET = "00:00:01"
THUMBNAIL_WIDTH = 320
STREAMING_BRANDS = ("isom", "mp42")


class MediaTools(ABC):
    """Companion tools applied to a fetched artifact."""

    @abstractmethod
    async def make_thumbnail(self, video: Path, thumbnail: Path) -> Outcome[Path]:
        """Extract one scaled still frame into ``thumbnail``."""

    @abstractmethod
    async def probe_streaming_ready(self, video: Path) -> Outcome[bool]:
        """Check whether the container has its metadata at the front."""


class FfmpegMediaTools(MediaTools):
    """Runs ffmpeg and ffprobe as subprocesses.

    Args:
        ffmpeg_binary: ffmpeg executable.
        ffprobe_binary: ffprobe executable.
        timeout: Seconds allowed per invocation.
    """

    def __init__(
        self,
        ffmpeg_binary: str = "ffmpeg",
        ffprobe_binary: str = "ffprobe",
        timeout: float = 10,
    ) -> None:
        self.ffmpeg_binary = ffmpeg_binary
        self.ffprobe_binary = ffprobe_binary
        self.timeout = timeout

    async def _run(self, cmd: List[str]) -> Tuple[int, bytes, bytes]:
        process = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            raise
        return process.returncode, stdout, stderr

    async def make_thumbnail(self, video: Path, thumbnail: Path) -> Outcome[Path]:
        cmd = [
            self.ffmpeg_binary,
            "-ss",
            THUMBNAIL_OFFSET,
            "-i",
            str(video),
            "-vframes",
            "1",
            "-vf",
            f"scale={THUMBNAIL_WIDTH}:-1",
            "-y",
            str(thumbnail),
        ]
        try:
            returncode, _, stderr = await self._run(cmd)
        except asyncio.TimeoutError:
            logger.warning("thumbnail_timeout", video=str(video), timeout=self.timeout)
            return Outcome.failure("thumbnail generation timed out")
        except OSError as e:
            logger.warning("thumbnail_spawn_failed", error=str(e))
            return Outcome.failure(str(e))

        if returncode != 0 or not thumbnail.exists():
            error = stderr.decode(errors="replace").strip()[-500:]
            logger.warning("thumbnail_failed", video=str(video), returncode=returncode)
            return Outcome.failure(error or f"ffmpeg exited with {returncode}")

        logger.debug("thumbnail_created", thumbnail=str(thumbnail))
        return Outcome.success(thumbnail)

    async def probe_streaming_ready(self, video: Path) -> Outcome[bool]:
        cmd = [
            self.ffprobe_binary,
            "-v",
            "error",
            "-show_entries",
            "format_tags=major_brand",
            "-of",
            "default=noprint_wrappers=1:nokey=1",
            str(video),
        ]
        try:
            returncode, stdout, _ = await self._run(cmd)
        except asyncio.TimeoutError:
            return Outcome(ok=False, value=False, error="probe timed out")
        except OSError as e:
            return Outcome(ok=False, value=False, error=str(e))

        if returncode != 0:
            return Outcome(ok=False, value=False, error=f"ffprobe exited with {returncode}")

        brand = stdout.decode(errors="replace").strip().lower()
        ready = any(b in brand for b in STREAMING_BRANDS)
        logger.debug("container_probed", video=str(video), brand=brand, streaming_ready=ready)
        return Outcome.success(ready)
