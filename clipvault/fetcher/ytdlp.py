"""yt-dlp backed media fetcher."""

import asyncio
import json
import re
from pathlib import Path
from typing import Any, AsyncIterator, Dict, List, Optional

import structlog

from clipvault.core.exceptions import FetchFailure, ResolutionError
from clipvault.core.logging import redact_command
from clipvault.fetcher.base import (
    FetchCompleted,
    FetchEvent,
    FetchRequest,
    MediaFetcher,
    ProgressEvent,
)
from clipvault.services.format_resolver import AUDIO_EXT, VIDEO_EXT

logger = structlog.get_logger(__name__)

PROGRESS_RE = re.compile(r"(\d+\.?\d*)%")

# Remux only; moves the moov atom to the front for progressive playback
FASTSTART_ARGS = "ffmpeg:-c:v copy -c:a copy -movflags +faststart"

_STDERR_TAIL = 2000


def format_selector(format_id: str, is_audio: bool, has_audio: bool) -> str:
    """Build the yt-dlp ``-f`` expression for a ladder entry.

    Video without a muxed track pulls the best audio alongside it; every
    selector falls back to ``best`` if the exact format has gone away.
    """
    if is_audio:
        return f"{format_id}/bestaudio/best"
    if has_audio:
        return f"{format_id}/best"
    return f"{format_id}+bestaudio/best"


def parse_progress(line: str) -> Optional[float]:
    """Extract a percentage token from one line of tool output."""
    match = PROGRESS_RE.search(line)
    if not match:
        return None
    try:
        return float(match.group(1))
    except ValueError:
        return None


class YtDlpFetcher(MediaFetcher):
    """Runs yt-dlp as a subprocess.

    Args:
        binary: yt-dlp executable.
        cookie_path: Netscape cookie file, passed only if it exists.
        metadata_timeout: Seconds allowed for a metadata dump.
    """

    def __init__(
        self,
        binary: str = "yt-dlp",
        cookie_path: Optional[str] = None,
        metadata_timeout: float = 60,
    ) -> None:
        self.binary = binary
        self.cookie_path = cookie_path
        self.metadata_timeout = metadata_timeout

    def _cookie_args(self) -> List[str]:
        if self.cookie_path and Path(self.cookie_path).is_file():
            return ["--cookies", self.cookie_path]
        return []

    def build_metadata_command(self, url: str) -> List[str]:
        return [
            self.binary,
            "--dump-single-json",
            "--no-playlist",
            "--no-warnings",
            *self._cookie_args(),
            url,
        ]

    def build_fetch_command(self, request: FetchRequest) -> List[str]:
        """Build the download command line for a request."""
        cmd = [
            self.binary,
            request.url,
            "--no-playlist",
            "--no-mtime",
            "--newline",
            "--progress",
            "--progress-template",
            "download:%(progress._percent_str)s",
            "--print",
            "after_move:filepath",
            "-o",
            f"{request.output_base}.%(ext)s",
            *self._cookie_args(),
            "-f",
            format_selector(request.format_id, request.is_audio, request.has_audio),
        ]
        if request.is_audio:
            cmd.extend(["--extract-audio", "--audio-format", AUDIO_EXT])
        else:
            cmd.extend(
                [
                    "--merge-output-format",
                    VIDEO_EXT,
                    "--postprocessor-args",
                    FASTSTART_ARGS,
                ]
            )
        return cmd

    async def fetch_metadata(self, url: str) -> Dict[str, Any]:
        cmd = self.build_metadata_command(url)
        logger.info("metadata_fetch_started", url=url, cmd=redact_command(cmd))

        process = None
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
            stdout, stderr = await asyncio.wait_for(
                process.communicate(), timeout=self.metadata_timeout
            )
        except asyncio.TimeoutError:
            if process is not None:
                process.kill()
                await process.wait()
            logger.warning("metadata_fetch_timeout", url=url, timeout=self.metadata_timeout)
            raise ResolutionError(f"Metadata dump timed out after {self.metadata_timeout}s")
        except OSError as e:
            logger.error("metadata_fetch_spawn_failed", binary=self.binary, error=str(e))
            raise ResolutionError(f"Failed to start {self.binary}: {e}") from e

        if process.returncode != 0:
            error = stderr.decode(errors="replace").strip()[-_STDERR_TAIL:]
            logger.warning(
                "metadata_fetch_failed",
                url=url,
                returncode=process.returncode,
                stderr=error,
            )
            raise ResolutionError(error or f"{self.binary} exited with {process.returncode}")

        try:
            data = json.loads(stdout.decode())
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise ResolutionError(f"Unparseable metadata output: {e}") from e
        if not isinstance(data, dict) or not data.get("id"):
            raise ResolutionError("Metadata output carries no resource id")

        logger.info(
            "metadata_fetch_completed",
            url=url,
            resource_id=data["id"],
            format_count=len(data.get("formats") or []),
        )
        return data

    async def fetch(self, request: FetchRequest) -> AsyncIterator[FetchEvent]:
        cmd = self.build_fetch_command(request)
        logger.info(
            "fetch_started",
            url=request.url,
            format_id=request.format_id,
            cmd=redact_command(cmd),
        )

        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            logger.error("fetch_spawn_failed", binary=self.binary, error=str(e))
            raise FetchFailure(f"Failed to start {self.binary}: {e}") from e

        stderr_task = asyncio.create_task(self._drain(process.stderr))
        final_path: Optional[Path] = None
        try:
            if process.stdout is None:
                raise FetchFailure(f"{self.binary} output stream is not available")
            async for raw in process.stdout:
                line = raw.decode(errors="replace").strip()
                if not line:
                    continue
                percent = parse_progress(line) if line.endswith("%") else None
                if percent is not None:
                    yield ProgressEvent(percent=percent)
                elif line.startswith(str(request.output_base)):
                    final_path = Path(line)

            returncode = await process.wait()
            stderr = await stderr_task

            if returncode != 0:
                logger.warning(
                    "fetch_failed",
                    url=request.url,
                    format_id=request.format_id,
                    returncode=returncode,
                    stderr=stderr[-_STDERR_TAIL:],
                )
                raise FetchFailure(f"{self.binary} exited with {returncode}")

            if final_path is None:
                ext = AUDIO_EXT if request.is_audio else VIDEO_EXT
                final_path = request.output_base.with_name(f"{request.output_base.name}.{ext}")

            logger.info("fetch_completed", url=request.url, path=str(final_path))
            yield FetchCompleted(path=final_path)
        finally:
            if process.returncode is None:
                process.kill()
                await process.wait()
            if not stderr_task.done():
                stderr_task.cancel()

    @staticmethod
    async def _drain(stream: Optional[asyncio.StreamReader]) -> str:
        if stream is None:
            return ""
        data = await stream.read()
        return data.decode(errors="replace")
