"""Tests for the yt-dlp fetcher."""

import asyncio
import json
from pathlib import Path
from typing import List
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from clipvault.core.exceptions import FetchFailure, ResolutionError
from clipvault.fetcher.base import FetchCompleted, FetchRequest, ProgressEvent
from clipvault.fetcher.ytdlp import YtDlpFetcher, format_selector, parse_progress
from clipvault.testing.fixtures import RICK_ASTLEY_VIDEO

URL = "https://www.youtube.com/watch?v=dQw4w9WgXcQ"


@pytest.fixture
def fetcher() -> YtDlpFetcher:
    return YtDlpFetcher(binary="yt-dlp", metadata_timeout=5)


def make_stream(data: bytes) -> asyncio.StreamReader:
    reader = asyncio.StreamReader()
    reader.feed_data(data)
    reader.feed_eof()
    return reader


def make_fetch_process(stdout: bytes, returncode: int = 0, stderr: bytes = b"") -> MagicMock:
    process = MagicMock()
    process.stdout = make_stream(stdout)
    process.stderr = make_stream(stderr)
    process.returncode = returncode
    process.wait = AsyncMock(return_value=returncode)
    return process


class TestFormatSelector:
    """Tests for the -f expression."""

    def test_video_only_pulls_best_audio(self) -> None:
        assert format_selector("137", is_audio=False, has_audio=False) == "137+bestaudio/best"

    def test_muxed_video(self) -> None:
        assert format_selector("18", is_audio=False, has_audio=True) == "18/best"

    def test_audio(self) -> None:
        assert format_selector("140", is_audio=True, has_audio=True) == "140/bestaudio/best"


class TestParseProgress:
    """Tests for progress line parsing."""

    @pytest.mark.parametrize(
        "line,expected",
        [
            ("  42.5%", 42.5),
            ("100%", 100.0),
            ("download: 7.0%", 7.0),
            ("[download] Destination: x.mp4", None),
            ("", None),
        ],
    )
    def test_parse(self, line: str, expected) -> None:
        assert parse_progress(line) == expected


class TestCommandBuilding:
    """Tests for command lines."""

    def test_metadata_command(self, fetcher: YtDlpFetcher) -> None:
        cmd = fetcher.build_metadata_command(URL)

        assert cmd[0] == "yt-dlp"
        assert "--dump-single-json" in cmd
        assert "--no-playlist" in cmd
        assert cmd[-1] == URL
        assert "--cookies" not in cmd

    def test_cookies_only_when_file_exists(self, tmp_path: Path) -> None:
        cookie_file = tmp_path / "cookies.txt"
        missing = YtDlpFetcher(cookie_path=str(cookie_file))
        assert "--cookies" not in missing.build_metadata_command(URL)

        cookie_file.write_text("# Netscape HTTP Cookie File\n")
        present = YtDlpFetcher(cookie_path=str(cookie_file))
        cmd = present.build_metadata_command(URL)
        assert cmd[cmd.index("--cookies") + 1] == str(cookie_file)

    def test_video_fetch_command(self, fetcher: YtDlpFetcher, tmp_path: Path) -> None:
        request = FetchRequest(URL, "137", False, False, tmp_path / "abc_1080p")

        cmd = fetcher.build_fetch_command(request)

        assert cmd[cmd.index("-f") + 1] == "137+bestaudio/best"
        assert cmd[cmd.index("-o") + 1] == f"{tmp_path / 'abc_1080p'}.%(ext)s"
        assert cmd[cmd.index("--merge-output-format") + 1] == "mp4"
        assert "+faststart" in cmd[cmd.index("--postprocessor-args") + 1]
        assert "--extract-audio" not in cmd

    def test_audio_fetch_command(self, fetcher: YtDlpFetcher, tmp_path: Path) -> None:
        request = FetchRequest(URL, "140", True, True, tmp_path / "abc_audio")

        cmd = fetcher.build_fetch_command(request)

        assert cmd[cmd.index("--audio-format") + 1] == "m4a"
        assert "--merge-output-format" not in cmd


class TestFetchMetadata:
    """Tests for fetch_metadata()."""

    @pytest.mark.asyncio
    async def test_success(self, fetcher: YtDlpFetcher) -> None:
        with patch("asyncio.create_subprocess_exec") as mock_subprocess:
            mock_process = AsyncMock()
            mock_process.returncode = 0
            stdout = json.dumps(RICK_ASTLEY_VIDEO).encode()
            mock_process.communicate = AsyncMock(return_value=(stdout, b""))
            mock_subprocess.return_value = mock_process

            data = await fetcher.fetch_metadata(URL)

            assert data["id"] == "dQw4w9WgXcQ"
            assert len(data["formats"]) == len(RICK_ASTLEY_VIDEO["formats"])

    @pytest.mark.asyncio
    async def test_nonzero_exit(self, fetcher: YtDlpFetcher) -> None:
        with patch("asyncio.create_subprocess_exec") as mock_subprocess:
            mock_process = AsyncMock()
            mock_process.returncode = 1
            mock_process.communicate = AsyncMock(return_value=(b"", b"ERROR: Video unavailable"))
            mock_subprocess.return_value = mock_process

            with pytest.raises(ResolutionError, match="Video unavailable"):
                await fetcher.fetch_metadata(URL)

    @pytest.mark.asyncio
    async def test_invalid_json(self, fetcher: YtDlpFetcher) -> None:
        with patch("asyncio.create_subprocess_exec") as mock_subprocess:
            mock_process = AsyncMock()
            mock_process.returncode = 0
            mock_process.communicate = AsyncMock(return_value=(b"not valid json", b""))
            mock_subprocess.return_value = mock_process

            with pytest.raises(ResolutionError, match="Unparseable"):
                await fetcher.fetch_metadata(URL)

    @pytest.mark.asyncio
    async def test_missing_id(self, fetcher: YtDlpFetcher) -> None:
        with patch("asyncio.create_subprocess_exec") as mock_subprocess:
            mock_process = AsyncMock()
            mock_process.returncode = 0
            mock_process.communicate = AsyncMock(return_value=(b'{"title": "x"}', b""))
            mock_subprocess.return_value = mock_process

            with pytest.raises(ResolutionError, match="no resource id"):
                await fetcher.fetch_metadata(URL)

    @pytest.mark.asyncio
    async def test_timeout_kills_process(self, fetcher: YtDlpFetcher) -> None:
        with (
            patch("asyncio.create_subprocess_exec") as mock_subprocess,
            patch("asyncio.wait_for") as mock_wait_for,
        ):
            mock_process = AsyncMock()
            mock_process.kill = MagicMock()
            mock_subprocess.return_value = mock_process
            mock_wait_for.side_effect = asyncio.TimeoutError()

            with pytest.raises(ResolutionError, match="timed out"):
                await fetcher.fetch_metadata(URL)

            mock_process.kill.assert_called_once()

    @pytest.mark.asyncio
    async def test_missing_binary(self, fetcher: YtDlpFetcher) -> None:
        with patch("asyncio.create_subprocess_exec", side_effect=FileNotFoundError("yt-dlp")):
            with pytest.raises(ResolutionError, match="Failed to start"):
                await fetcher.fetch_metadata(URL)


class TestFetch:
    """Tests for the streaming fetch()."""

    @pytest.mark.asyncio
    async def test_progress_then_completion(self, fetcher: YtDlpFetcher, tmp_path: Path) -> None:
        base = tmp_path / "abc_1080p"
        stdout = f"  10.0%\n 55.5%\n100%\n{base}.mp4\n".encode()
        request = FetchRequest(URL, "137", False, False, base)

        with patch(
            "asyncio.create_subprocess_exec", AsyncMock(return_value=make_fetch_process(stdout))
        ):
            events: List = [event async for event in fetcher.fetch(request)]

        assert events[:3] == [ProgressEvent(10.0), ProgressEvent(55.5), ProgressEvent(100.0)]
        assert events[-1] == FetchCompleted(path=Path(f"{base}.mp4"))

    @pytest.mark.asyncio
    async def test_completion_path_defaults_to_extension(
        self, fetcher: YtDlpFetcher, tmp_path: Path
    ) -> None:
        base = tmp_path / "abc_audio"
        request = FetchRequest(URL, "140", True, True, base)

        with patch(
            "asyncio.create_subprocess_exec", AsyncMock(return_value=make_fetch_process(b"50%\n"))
        ):
            events = [event async for event in fetcher.fetch(request)]

        assert events[-1] == FetchCompleted(path=tmp_path / "abc_audio.m4a")

    @pytest.mark.asyncio
    async def test_nonzero_exit_raises(self, fetcher: YtDlpFetcher, tmp_path: Path) -> None:
        request = FetchRequest(URL, "137", False, False, tmp_path / "abc_1080p")
        process = make_fetch_process(b"10%\n", returncode=1, stderr=b"ERROR: HTTP Error 403")

        with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=process)):
            with pytest.raises(FetchFailure, match="exited with 1"):
                async for _ in fetcher.fetch(request):
                    pass

    @pytest.mark.asyncio
    async def test_spawn_failure(self, fetcher: YtDlpFetcher, tmp_path: Path) -> None:
        request = FetchRequest(URL, "137", False, False, tmp_path / "abc_1080p")

        with patch("asyncio.create_subprocess_exec", side_effect=FileNotFoundError("yt-dlp")):
            with pytest.raises(FetchFailure, match="Failed to start"):
                async for _ in fetcher.fetch(request):
                    pass

    @pytest.mark.asyncio
    async def test_missing_output_stream_raises(
        self, fetcher: YtDlpFetcher, tmp_path: Path
    ) -> None:
        request = FetchRequest(URL, "137", False, False, tmp_path / "abc_1080p")
        process = make_fetch_process(b"")
        process.stdout = None

        with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=process)):
            with pytest.raises(FetchFailure, match="output stream is not available"):
                async for _ in fetcher.fetch(request):
                    pass
