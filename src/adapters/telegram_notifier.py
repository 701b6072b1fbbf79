"""Telegram notification adapter — implements NotificationPort.

Wraps a telegram.Bot instance to satisfy the NotificationPort protocol.
"""

from __future__ import annotations

import logging

from telegram import Bot
from telegram.constants import ParseMode
from telegram.error import TelegramError

from src.ports.notification_port import NotificationError

logger = logging.getLogger(__name__)


class TelegramNotifier:
    """Telegram implementation of NotificationPort.

    Messages are rendered as HTML; delivery failures surface as
    NotificationError so the sweep can isolate them per reminder.
    """

    def __init__(self, bot: Bot) -> None:
        self._bot = bot

    async def send_message(self, owner_id: str, text: str) -> None:
        try:
            await self._bot.send_message(
                chat_id=owner_id, text=text, parse_mode=ParseMode.HTML,
            )
        except TelegramError as exc:
            logger.warning("Telegram delivery to %s failed: %s", owner_id, exc)
            raise NotificationError(str(exc)) from exc
