"""Telegram Bot API delivery channel over httpx."""

from contextlib import ExitStack
from pathlib import Path
from typing import Any, Dict, Optional

import httpx
import structlog

from clipvault.delivery.base import (
    ArchiveReceipt,
    ChatId,
    DeliveryChannel,
    DeliveryError,
    MediaAttributes,
)
from clipvault.models.cache import ArtifactKind

logger = structlog.get_logger(__name__)

# Telegram caps captions at 1024 characters
MAX_CAPTION_LENGTH = 1024


def _form(fields: Dict[str, Any]) -> Dict[str, str]:
    """Render Bot API parameters as multipart form values, dropping empty ones."""
    form: Dict[str, str] = {}
    for key, value in fields.items():
        if value is None or value == "":
            continue
        if isinstance(value, bool):
            form[key] = "true" if value else "false"
        else:
            form[key] = str(value)
    return form


class TelegramDeliveryChannel(DeliveryChannel):
    """Delivery channel backed by the Telegram Bot API.

    Args:
        bot_token: Bot API token.
        archive_chat_id: Chat that stores archived artifacts.
        api_root: Bot API server, e.g. a self-hosted one for large uploads.
        timeout: Request timeout in seconds.
        transport: Optional httpx transport (tests use ``httpx.MockTransport``).
    """

    def __init__(
        self,
        bot_token: str,
        archive_chat_id: ChatId,
        api_root: str = "https://api.telegram.org",
        timeout: float = 600,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.archive_chat_id = archive_chat_id
        self._client = httpx.AsyncClient(
            base_url=f"{api_root.rstrip('/')}/bot{bot_token}/",
            timeout=timeout,
            transport=transport,
        )

    async def _call(
        self,
        method: str,
        data: Dict[str, Any],
        files: Optional[Dict[str, Any]] = None,
    ) -> Any:
        try:
            response = await self._client.post(method, data=_form(data), files=files)
        except httpx.TimeoutException as e:
            logger.warning("telegram_timeout", method=method)
            raise DeliveryError(f"{method} timed out") from e
        except httpx.HTTPError as e:
            logger.warning("telegram_http_error", method=method, error=str(e))
            raise DeliveryError(f"{method} failed: {e}") from e

        try:
            payload = response.json()
        except ValueError as e:
            raise DeliveryError(
                f"{method} returned a non-JSON body", status_code=response.status_code
            ) from e

        if not isinstance(payload, dict):
            raise DeliveryError(
                f"{method} returned an unexpected body", status_code=response.status_code
            )

        if not payload.get("ok"):
            description = payload.get("description") or "unknown error"
            logger.warning(
                "telegram_call_rejected",
                method=method,
                status_code=response.status_code,
                description=description,
            )
            raise DeliveryError(f"{method}: {description}", status_code=response.status_code)

        return payload.get("result")

    @staticmethod
    def _media_fields(kind: ArtifactKind, attributes: MediaAttributes) -> Dict[str, Any]:
        if kind == ArtifactKind.AUDIO:
            return {
                "title": attributes.title,
                "performer": attributes.performer,
                "duration": attributes.duration or None,
            }
        return {
            "duration": attributes.duration or None,
            "width": attributes.width or None,
            "height": attributes.height or None,
            "supports_streaming": attributes.supports_streaming,
        }

    @staticmethod
    def _file_ref(message: Dict[str, Any], kind: ArtifactKind) -> Optional[str]:
        # Videos the server cannot parse come back as documents
        for key in (kind.value, "document"):
            media = message.get(key)
            if media and media.get("file_id"):
                return media["file_id"]
        return None

    async def _upload(
        self,
        chat_id: ChatId,
        path: Path,
        kind: ArtifactKind,
        caption: Optional[str],
        attributes: MediaAttributes,
    ) -> Dict[str, Any]:
        method = "sendAudio" if kind == ArtifactKind.AUDIO else "sendVideo"
        data = {"chat_id": chat_id, "caption": _truncate(caption)}
        data.update(self._media_fields(kind, attributes))

        try:
            with ExitStack() as stack:
                files = {kind.value: (path.name, stack.enter_context(open(path, "rb")))}
                if kind == ArtifactKind.VIDEO and attributes.thumbnail is not None:
                    thumb = attributes.thumbnail
                    if thumb.exists():
                        files["thumbnail"] = (thumb.name, stack.enter_context(open(thumb, "rb")))
                return await self._call(method, data, files)
        except OSError as e:
            raise DeliveryError(f"Cannot read artifact {path}: {e}") from e

    async def archive(
        self, path: Path, kind: ArtifactKind, attributes: MediaAttributes
    ) -> ArchiveReceipt:
        message = await self._upload(self.archive_chat_id, path, kind, None, attributes)
        file_ref = self._file_ref(message, kind)
        if not file_ref:
            raise DeliveryError("Archive upload returned no file reference")

        logger.info(
            "artifact_archived",
            kind=kind.value,
            message_id=message.get("message_id"),
        )
        return ArchiveReceipt(artifact_ref=file_ref, message_id=int(message["message_id"]))

    async def send_cached(
        self,
        chat_id: ChatId,
        artifact_ref: str,
        kind: ArtifactKind,
        caption: str,
        attributes: MediaAttributes,
    ) -> int:
        method = "sendAudio" if kind == ArtifactKind.AUDIO else "sendVideo"
        data = {"chat_id": chat_id, kind.value: artifact_ref, "caption": _truncate(caption)}
        data.update(self._media_fields(kind, attributes))
        message = await self._call(method, data)
        return int(message["message_id"])

    async def send_file(
        self,
        chat_id: ChatId,
        path: Path,
        kind: ArtifactKind,
        caption: str,
        attributes: MediaAttributes,
    ) -> int:
        message = await self._upload(chat_id, path, kind, caption, attributes)
        return int(message["message_id"])

    async def send_message(self, chat_id: ChatId, text: str) -> int:
        message = await self._call("sendMessage", {"chat_id": chat_id, "text": text})
        return int(message["message_id"])

    async def edit_message(self, chat_id: ChatId, message_id: int, text: str) -> None:
        await self._call(
            "editMessageText",
            {"chat_id": chat_id, "message_id": message_id, "text": text},
        )

    async def delete_message(self, chat_id: ChatId, message_id: int) -> None:
        await self._call("deleteMessage", {"chat_id": chat_id, "message_id": message_id})

    async def close(self) -> None:
        await self._client.aclose()


def _truncate(caption: Optional[str]) -> Optional[str]:
    if caption is None:
        return None
    return caption[:MAX_CAPTION_LENGTH]
