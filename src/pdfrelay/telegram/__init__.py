"""Telegram Bot API gateway."""

from .client import BotClient, TelegramClient
from .parsing import parse_update, parse_updates

__all__ = [
    "BotClient",
    "TelegramClient",
    "parse_update",
    "parse_updates",
]
