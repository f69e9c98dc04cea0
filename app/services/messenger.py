"""Outbound Telegram messaging.

Wraps python-telegram-bot's Bot so that every send returns a DeliveryResult
instead of raising. The router decides what to do with failures (log them).
"""
from __future__ import annotations

import logging
from typing import Iterable, Optional

from telegram import Bot, InlineKeyboardButton, InlineKeyboardMarkup
from telegram.error import TelegramError

from chat_agent.constants import ButtonType
from chat_agent.models import DeliveryResult, MenuButton

logger = logging.getLogger(__name__)


def build_inline_keyboard(buttons: Iterable[MenuButton]) -> InlineKeyboardMarkup:
    """One button per row, rows in input order."""
    rows = []
    for button in buttons:
        if button.kind is ButtonType.CALLBACK:
            rows.append([InlineKeyboardButton(button.label, callback_data=button.callback_data)])
        else:
            rows.append([InlineKeyboardButton(button.label, url=button.url)])
    return InlineKeyboardMarkup(rows)


def _error_result(error: TelegramError) -> DeliveryResult:
    # python-telegram-bot exceptions don't carry the API's numeric error code.
    return DeliveryResult(
        ok=False,
        error_code=getattr(error, "error_code", None),
        description=getattr(error, "message", None) or str(error),
    )


class TelegramMessenger:
    """Send text and inline menus through the Telegram Bot API."""

    def __init__(self, bot: Bot):
        self.bot = bot

    async def send_text(self, chat_id: int, text: str) -> DeliveryResult:
        try:
            sent = await self.bot.send_message(chat_id=chat_id, text=text)
        except TelegramError as e:
            return _error_result(e)
        if sent is None:
            return DeliveryResult(ok=False, description="response is null")
        return DeliveryResult(ok=True)

    async def send_menu(
        self, chat_id: int, header: str, buttons: Iterable[MenuButton]
    ) -> DeliveryResult:
        try:
            sent = await self.bot.send_message(
                chat_id=chat_id,
                text=header,
                reply_markup=build_inline_keyboard(buttons),
            )
        except TelegramError as e:
            return _error_result(e)
        if sent is None:
            return DeliveryResult(ok=False, description="response is null")
        return DeliveryResult(ok=True)

    async def answer_callback(self, query_id: Optional[str]) -> DeliveryResult:
        """Acknowledge a button press so the client stops showing a spinner."""
        if not query_id:
            return DeliveryResult(ok=False, description="missing callback query id")
        try:
            await self.bot.answer_callback_query(callback_query_id=query_id)
        except TelegramError as e:
            return _error_result(e)
        return DeliveryResult(ok=True)
