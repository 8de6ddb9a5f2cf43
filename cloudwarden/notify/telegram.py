"""
Telegram transport for notifications (aiogram v3).

Operators share the configured bot; users may bring their own bot token, in
which case a Bot is created for that token and cached for reuse.
"""

from __future__ import annotations

import contextlib
import logging

from aiogram import Bot
from aiogram.client.default import DefaultBotProperties
from aiogram.enums import ParseMode

from cloudwarden.interfaces import Destination

logger = logging.getLogger(__name__)

MAX_MESSAGE_LENGTH = 4096


def split_message(text: str) -> list[str]:
    """Split text into chunks that fit Telegram's limit."""
    if len(text) <= MAX_MESSAGE_LENGTH:
        return [text]

    chunks = []
    while text:
        if len(text) <= MAX_MESSAGE_LENGTH:
            chunks.append(text)
            break

        split_pos = text.rfind("\n", 0, MAX_MESSAGE_LENGTH)
        if split_pos == -1 or split_pos < MAX_MESSAGE_LENGTH // 2:
            split_pos = MAX_MESSAGE_LENGTH

        chunks.append(text[:split_pos])
        text = text[split_pos:].lstrip("\n")

    return chunks


class TelegramNotifier:
    """Notifier backed by the Telegram Bot API. Raises when a chunk cannot be sent."""

    def __init__(self, default_token: str = "") -> None:
        self.default_token = default_token
        self._bots: dict[str, Bot] = {}

    def _bot_for(self, destination: Destination) -> Bot:
        token = destination.bot_token or self.default_token
        if not token:
            raise RuntimeError(f"no bot token for Telegram destination {destination}")
        bot = self._bots.get(token)
        if bot is None:
            bot = Bot(token=token, default=DefaultBotProperties(parse_mode=ParseMode.HTML))
            self._bots[token] = bot
        return bot

    async def send(self, destination: Destination, message: str) -> None:
        if not message:
            return

        bot = self._bot_for(destination)
        for chunk in split_message(message):
            try:
                await bot.send_message(
                    chat_id=destination.chat_id,
                    text=chunk,
                    parse_mode=ParseMode.HTML,
                )
            except Exception as e:
                # Broken markup: retry the same chunk as plain text
                logger.debug("HTML send to %s failed (%s), retrying as plain text", destination, e)
                await bot.send_message(
                    chat_id=destination.chat_id,
                    text=chunk,
                    parse_mode=None,
                )

    async def close(self) -> None:
        for bot in self._bots.values():
            with contextlib.suppress(Exception):
                await bot.session.close()
        self._bots.clear()
