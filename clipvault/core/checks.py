"""External binary checks shared by startup and the health endpoint.

The pipeline shells out to yt-dlp, ffmpeg and ffprobe; each check runs the
binary's version command and reports availability.
"""

import asyncio
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional


@dataclass
class CheckResult:
    """Result of a component availability check.

    Attributes:
        name: Component name (e.g., "ytdlp", "ffmpeg")
        available: Whether the component is available and functional
        version: Version string if available
        error: Error message if check failed
        details: Additional details about the check result
    """

    name: str
    available: bool
    version: Optional[str] = None
    error: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)


async def _run_binary_check(
    name: str,
    command: List[str],
    timeout: float,
    parse_output: Callable[[bytes], Optional[str]],
) -> CheckResult:
    """Run a version command and turn the outcome into a CheckResult.

    Args:
        name: Component name for the result.
        command: Command and arguments to execute.
        timeout: Maximum time to wait in seconds.
        parse_output: Callback extracting a version string from stdout.

    Returns:
        CheckResult with availability status.
    """
    proc = None
    try:
        proc = await asyncio.create_subprocess_exec(
            *command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        stdout, _ = await asyncio.wait_for(proc.communicate(), timeout=timeout)

        if proc.returncode == 0:
            return CheckResult(name=name, available=True, version=parse_output(stdout))

        return CheckResult(
            name=name,
            available=False,
            error=f"{command[0]} returned non-zero exit code",
        )
    except asyncio.TimeoutError:
        if proc:
            proc.kill()
            await proc.wait()
        return CheckResult(name=name, available=False, error=f"{command[0]} check timed out")
    except FileNotFoundError:
        return CheckResult(name=name, available=False, error=f"{command[0]} not found")
    except OSError as e:
        return CheckResult(name=name, available=False, error=str(e))


def _first_line(stdout: bytes) -> Optional[str]:
    text = stdout.decode(errors="replace").strip()
    return text.splitlines()[0] if text else None


def _ffmpeg_version(stdout: bytes) -> Optional[str]:
    match = re.search(r"(?:ffmpeg|ffprobe) version (\S+)", stdout.decode(errors="replace"))
    return match.group(1) if match else "unknown"


async def check_ytdlp(binary: str = "yt-dlp", timeout: float = 5.0) -> CheckResult:
    """Check yt-dlp availability and version."""
    return await _run_binary_check("ytdlp", [binary, "--version"], timeout, _first_line)


async def check_ffmpeg(binary: str = "ffmpeg", timeout: float = 5.0) -> CheckResult:
    """Check ffmpeg availability and version."""
    return await _run_binary_check("ffmpeg", [binary, "-version"], timeout, _ffmpeg_version)


async def check_ffprobe(binary: str = "ffprobe", timeout: float = 5.0) -> CheckResult:
    """Check ffprobe availability and version."""
    return await _run_binary_check("ffprobe", [binary, "-version"], timeout, _ffmpeg_version)


async def check_binaries(
    ytdlp_binary: str = "yt-dlp",
    ffmpeg_binary: str = "ffmpeg",
    ffprobe_binary: str = "ffprobe",
    timeout: float = 5.0,
) -> Dict[str, CheckResult]:
    """Run all binary checks concurrently.

    Returns:
        Check results keyed by component name.
    """
    results: List[CheckResult] = await asyncio.gather(
        check_ytdlp(ytdlp_binary, timeout),
        check_ffmpeg(ffmpeg_binary, timeout),
        check_ffprobe(ffprobe_binary, timeout),
    )
    return {result.name: result for result in results}
