"""Tests for the Telegram delivery channel using httpx.MockTransport."""

from pathlib import Path
from typing import Any, Callable, Dict, List
from urllib.parse import parse_qs

import httpx
import pytest

from clipvault.delivery.base import DeliveryError, MediaAttributes
from clipvault.delivery.telegram import MAX_CAPTION_LENGTH, TelegramDeliveryChannel, _form
from clipvault.models.cache import ArtifactKind

TOKEN = "123456:TEST-TOKEN"


def ok(result: Any) -> httpx.Response:
    return httpx.Response(200, json={"ok": True, "result": result})


def make_channel(
    handler: Callable[[httpx.Request], httpx.Response],
) -> TelegramDeliveryChannel:
    return TelegramDeliveryChannel(
        bot_token=TOKEN,
        archive_chat_id=-1001234,
        transport=httpx.MockTransport(handler),
    )


def form_fields(request: httpx.Request) -> Dict[str, str]:
    return {k: v[0] for k, v in parse_qs(request.content.decode()).items()}


@pytest.fixture
def artifact(tmp_path: Path) -> Path:
    path = tmp_path / "abc_1080p.mp4"
    path.write_bytes(b"\x00\x00\x00\x18ftypisom")
    return path


class TestForm:
    """Tests for the form encoder."""

    def test_drops_empty_values(self) -> None:
        assert _form({"a": None, "b": "", "c": 0, "d": "x"}) == {"c": "0", "d": "x"}

    def test_booleans(self) -> None:
        assert _form({"supports_streaming": True, "x": False}) == {
            "supports_streaming": "true",
            "x": "false",
        }


class TestArchive:
    """Tests for archive()."""

    @pytest.mark.asyncio
    async def test_returns_file_reference(self, artifact: Path) -> None:
        requests: List[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return ok({"message_id": 77, "video": {"file_id": "BAACAgIAAxkBAAI"}})

        channel = make_channel(handler)
        receipt = await channel.archive(artifact, ArtifactKind.VIDEO, MediaAttributes(duration=212))
        await channel.close()

        assert receipt.artifact_ref == "BAACAgIAAxkBAAI"
        assert receipt.message_id == 77
        assert requests[0].url.path == f"/bot{TOKEN}/sendVideo"
        body = requests[0].content
        assert b'name="chat_id"' in body
        assert b"-1001234" in body
        assert b'filename="abc_1080p.mp4"' in body

    @pytest.mark.asyncio
    async def test_document_fallback(self, artifact: Path) -> None:
        channel = make_channel(
            lambda request: ok({"message_id": 5, "document": {"file_id": "DOC"}})
        )

        receipt = await channel.archive(artifact, ArtifactKind.VIDEO, MediaAttributes())

        assert receipt.artifact_ref == "DOC"

    @pytest.mark.asyncio
    async def test_missing_reference(self, artifact: Path) -> None:
        channel = make_channel(lambda request: ok({"message_id": 5}))

        with pytest.raises(DeliveryError, match="no file reference"):
            await channel.archive(artifact, ArtifactKind.VIDEO, MediaAttributes())

    @pytest.mark.asyncio
    async def test_unreadable_artifact(self, tmp_path: Path) -> None:
        channel = make_channel(lambda request: ok({}))

        with pytest.raises(DeliveryError, match="Cannot read artifact"):
            await channel.archive(tmp_path / "missing.mp4", ArtifactKind.VIDEO, MediaAttributes())

    @pytest.mark.asyncio
    async def test_audio_uses_send_audio(self, tmp_path: Path) -> None:
        path = tmp_path / "abc_audio.m4a"
        path.write_bytes(b"audio")
        paths: List[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            paths.append(request.url.path)
            return ok({"message_id": 1, "audio": {"file_id": "AUD"}})

        channel = make_channel(handler)
        receipt = await channel.archive(
            path, ArtifactKind.AUDIO, MediaAttributes(title="Song", performer="Artist")
        )

        assert receipt.artifact_ref == "AUD"
        assert paths == [f"/bot{TOKEN}/sendAudio"]


class TestSendCached:
    """Tests for send_cached()."""

    @pytest.mark.asyncio
    async def test_sends_reference_and_caption(self) -> None:
        requests: List[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return ok({"message_id": 9})

        channel = make_channel(handler)
        message_id = await channel.send_cached(
            555, "ref123", ArtifactKind.VIDEO, "x" * 2000, MediaAttributes(width=1920, height=1080)
        )

        assert message_id == 9
        fields = form_fields(requests[0])
        assert fields["chat_id"] == "555"
        assert fields["video"] == "ref123"
        assert len(fields["caption"]) == MAX_CAPTION_LENGTH
        assert fields["supports_streaming"] == "true"
        assert fields["width"] == "1920"

    @pytest.mark.asyncio
    async def test_rejected_reference(self) -> None:
        channel = make_channel(
            lambda request: httpx.Response(
                400, json={"ok": False, "description": "Bad Request: wrong file identifier"}
            )
        )

        with pytest.raises(DeliveryError, match="wrong file identifier") as exc_info:
            await channel.send_cached(555, "stale", ArtifactKind.VIDEO, "", MediaAttributes())

        assert exc_info.value.status_code == 400


class TestTransportErrors:
    """Network and protocol failures map to DeliveryError."""

    @pytest.mark.asyncio
    async def test_non_json_body(self) -> None:
        channel = make_channel(lambda request: httpx.Response(502, text="Bad Gateway"))

        with pytest.raises(DeliveryError, match="non-JSON") as exc_info:
            await channel.send_message(1, "hi")

        assert exc_info.value.status_code == 502

    @pytest.mark.asyncio
    @pytest.mark.parametrize("body", [["ok", True], "ok", 42])
    async def test_non_object_json_body(self, body: Any) -> None:
        channel = make_channel(lambda request: httpx.Response(200, json=body))

        with pytest.raises(DeliveryError, match="unexpected body") as exc_info:
            await channel.send_cached(
                555, "ref123", ArtifactKind.VIDEO, "caption", MediaAttributes()
            )

        assert exc_info.value.status_code == 200

    @pytest.mark.asyncio
    async def test_connection_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        channel = make_channel(handler)

        with pytest.raises(DeliveryError, match="sendMessage failed"):
            await channel.send_message(1, "hi")

    @pytest.mark.asyncio
    async def test_timeout(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        channel = make_channel(handler)

        with pytest.raises(DeliveryError, match="timed out"):
            await channel.send_message(1, "hi")


class TestMessages:
    """Tests for text message helpers."""

    @pytest.mark.asyncio
    async def test_send_edit_delete(self) -> None:
        calls: List[tuple] = []

        def handler(request: httpx.Request) -> httpx.Response:
            method = request.url.path.rsplit("/", 1)[-1]
            calls.append((method, form_fields(request)))
            if method == "sendMessage":
                return ok({"message_id": 3})
            return ok(True)

        channel = make_channel(handler)
        message_id = await channel.send_message(1, "Starting download...")
        await channel.edit_message(1, message_id, "Downloading... 50%")
        await channel.delete_message(1, message_id)

        assert [c[0] for c in calls] == ["sendMessage", "editMessageText", "deleteMessage"]
        assert calls[1][1] == {"chat_id": "1", "message_id": "3", "text": "Downloading... 50%"}
