"""Delivery channel contract and the Telegram Bot API implementation."""

from clipvault.delivery.base import (
    ArchiveReceipt,
    ChatId,
    DeliveryChannel,
    DeliveryError,
    MediaAttributes,
)
from clipvault.delivery.telegram import TelegramDeliveryChannel

__all__ = [
    "ArchiveReceipt",
    "ChatId",
    "DeliveryChannel",
    "DeliveryError",
    "MediaAttributes",
    "TelegramDeliveryChannel",
]
