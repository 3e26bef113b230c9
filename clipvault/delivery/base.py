"""Delivery channel contract."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

from clipvault.models.cache import ArtifactKind

ChatId = Union[int, str]


class DeliveryError(Exception):
    """Raised when the messaging platform rejects or fails a call."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


@dataclass(frozen=True)
class ArchiveReceipt:
    """Durable reference obtained by uploading into the archive chat."""

    artifact_ref: str
    message_id: int


@dataclass(frozen=True)
class MediaAttributes:
    """Presentation hints sent along with an artifact."""

    title: str = ""
    performer: Optional[str] = None
    duration: int = 0
    width: int = 0
    height: int = 0
    thumbnail: Optional[Path] = None
    supports_streaming: bool = True


class DeliveryChannel(ABC):
    """Messaging platform used to archive artifacts and reach users."""

    @abstractmethod
    async def archive(
        self, path: Path, kind: ArtifactKind, attributes: MediaAttributes
    ) -> ArchiveReceipt:
        """Upload a local artifact to the archive chat.

        Raises:
            DeliveryError: If the upload fails or yields no file reference.
        """

    @abstractmethod
    async def send_cached(
        self,
        chat_id: ChatId,
        artifact_ref: str,
        kind: ArtifactKind,
        caption: str,
        attributes: MediaAttributes,
    ) -> int:
        """Send a previously archived artifact by reference. Returns the message id.

        Raises:
            DeliveryError: If the reference is rejected (e.g. expired upstream).
        """

    @abstractmethod
    async def send_file(
        self,
        chat_id: ChatId,
        path: Path,
        kind: ArtifactKind,
        caption: str,
        attributes: MediaAttributes,
    ) -> int:
        """Upload a local artifact straight to a chat. Returns the message id."""

    @abstractmethod
    async def send_message(self, chat_id: ChatId, text: str) -> int:
        """Send a text message. Returns the message id."""

    @abstractmethod
    async def edit_message(self, chat_id: ChatId, message_id: int, text: str) -> None:
        """Replace the text of a message."""

    @abstractmethod
    async def delete_message(self, chat_id: ChatId, message_id: int) -> None:
        """Delete a message."""

    async def close(self) -> None:
        """Release network resources."""
