"""Tests for the ffmpeg/ffprobe helpers."""

import asyncio
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from clipvault.fetcher.media_tools import FfmpegMediaTools


@pytest.fixture
def tools() -> FfmpegMediaTools:
    return FfmpegMediaTools(timeout=5)


def make_process(returncode: int = 0, stdout: bytes = b"", stderr: bytes = b"") -> AsyncMock:
    process = AsyncMock()
    process.returncode = returncode
    process.kill = MagicMock()
    process.communicate = AsyncMock(return_value=(stdout, stderr))
    return process


class TestThumbnail:
    """Tests for make_thumbnail()."""

    @pytest.mark.asyncio
    async def test_success(self, tools: FfmpegMediaTools, tmp_path: Path) -> None:
        video = tmp_path / "v.mp4"
        thumb = tmp_path / "v_thumb.jpg"
        thumb.write_bytes(b"jpg")

        with patch(
            "asyncio.create_subprocess_exec", AsyncMock(return_value=make_process())
        ) as mock_exec:
            outcome = await tools.make_thumbnail(video, thumb)

        assert outcome.ok
        assert outcome.value == thumb
        args = mock_exec.call_args.args
        assert args[0] == "ffmpeg"
        assert str(video) in args
        assert "scale=320:-1" in args

    @pytest.mark.asyncio
    async def test_failure_is_reported_not_raised(
        self, tools: FfmpegMediaTools, tmp_path: Path
    ) -> None:
        process = make_process(returncode=1, stderr=b"Invalid data found")

        with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=process)):
            outcome = await tools.make_thumbnail(tmp_path / "v.mp4", tmp_path / "t.jpg")

        assert not outcome.ok
        assert "Invalid data" in outcome.error

    @pytest.mark.asyncio
    async def test_missing_binary(self, tools: FfmpegMediaTools, tmp_path: Path) -> None:
        with patch("asyncio.create_subprocess_exec", side_effect=FileNotFoundError("ffmpeg")):
            outcome = await tools.make_thumbnail(tmp_path / "v.mp4", tmp_path / "t.jpg")

        assert not outcome.ok

    @pytest.mark.asyncio
    async def test_timeout(self, tools: FfmpegMediaTools, tmp_path: Path) -> None:
        process = make_process()

        with (
            patch("asyncio.create_subprocess_exec", AsyncMock(return_value=process)),
            patch("asyncio.wait_for", side_effect=asyncio.TimeoutError()),
        ):
            outcome = await tools.make_thumbnail(tmp_path / "v.mp4", tmp_path / "t.jpg")

        assert not outcome.ok
        process.kill.assert_called_once()


class TestProbe:
    """Tests for probe_streaming_ready()."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "brand,expected",
        [(b"isom\n", True), (b"mp42\n", True), (b"M4A \n", False), (b"", False)],
    )
    async def test_brands(
        self, tools: FfmpegMediaTools, tmp_path: Path, brand: bytes, expected: bool
    ) -> None:
        with patch(
            "asyncio.create_subprocess_exec", AsyncMock(return_value=make_process(stdout=brand))
        ):
            outcome = await tools.probe_streaming_ready(tmp_path / "v.mp4")

        assert outcome.ok
        assert outcome.value is expected

    @pytest.mark.asyncio
    async def test_probe_failure(self, tools: FfmpegMediaTools, tmp_path: Path) -> None:
        with patch(
            "asyncio.create_subprocess_exec", AsyncMock(return_value=make_process(returncode=1))
        ):
            outcome = await tools.probe_streaming_ready(tmp_path / "v.mp4")

        assert not outcome.ok
        assert outcome.unwrap_or(False) is False
