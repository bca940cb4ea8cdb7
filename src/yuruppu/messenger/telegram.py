"""Telegram messenger adapter using python-telegram-bot v21+."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any

from telegram import Update
from telegram.constants import ChatAction, ChatType
from telegram.ext import Application, MessageHandler as TGMessageHandler, filters

from yuruppu.core.types import ChatKind, Platform
from yuruppu.log import get_logger
from yuruppu.messenger.base import MessengerAdapter
from yuruppu.messenger.models import IncomingMessage, OutgoingMessage

logger = get_logger(__name__)

_CHAT_KINDS = {
    ChatType.PRIVATE: ChatKind.USER,
    ChatType.GROUP: ChatKind.GROUP,
    ChatType.SUPERGROUP: ChatKind.GROUP,
    ChatType.CHANNEL: ChatKind.ROOM,
}


class TelegramAdapter(MessengerAdapter):
    """Telegram bot adapter using long polling."""

    def __init__(self, bot_id: str, token: str):
        super().__init__()
        self.bot_id = bot_id
        self.token = token
        self._app: Application | None = None  # type: ignore[type-arg]
        self._tasks: set[asyncio.Task[Any]] = set()

    @property
    def platform_name(self) -> str:
        return Platform.TELEGRAM

    async def start(self) -> None:
        if not self.token:
            raise ValueError(f"Telegram bot token not configured for bot '{self.bot_id}'")

        self._app = Application.builder().token(self.token).build()
        self._app.add_handler(
            TGMessageHandler(filters.TEXT & ~filters.COMMAND, self._on_telegram_message)
        )

        await self._app.initialize()
        await self._app.start()
        await self._app.updater.start_polling(drop_pending_updates=True)  # type: ignore[union-attr]
        logger.info("telegram_adapter_started", bot_id=self.bot_id)

    async def stop(self) -> None:
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        if self._app:
            await self._app.updater.stop()  # type: ignore[union-attr]
            await self._app.stop()
            await self._app.shutdown()
            logger.info("telegram_adapter_stopped", bot_id=self.bot_id)

    async def send_message(self, message: OutgoingMessage) -> None:
        if not self._app or not self._app.bot:
            raise RuntimeError("Telegram adapter is not started")

        parse_mode = None
        if message.parse_mode == "markdown":
            parse_mode = "MarkdownV2"
        elif message.parse_mode == "html":
            parse_mode = "HTML"

        await self._app.bot.send_message(
            chat_id=int(message.chat_id),
            text=message.text,
            parse_mode=parse_mode,
            reply_to_message_id=(
                int(message.reply_to_message_id) if message.reply_to_message_id else None
            ),
        )

    async def send_typing_indicator(self, chat_id: str) -> None:
        if self._app and self._app.bot:
            await self._app.bot.send_chat_action(chat_id=int(chat_id), action=ChatAction.TYPING)

    async def _on_telegram_message(self, update: Update, context: Any) -> None:
        """Hand each text message to the callback as its own task."""
        if not update.message or not self._message_callback:
            return

        msg = update.message
        if not msg.text:
            return

        incoming = IncomingMessage(
            platform=Platform.TELEGRAM,
            bot_id=self.bot_id,
            chat_id=str(msg.chat_id),
            chat_kind=_CHAT_KINDS.get(msg.chat.type, ChatKind.ROOM),
            user_id=str(msg.from_user.id) if msg.from_user else "unknown",
            user_display_name=msg.from_user.full_name if msg.from_user else "Unknown",
            text=msg.text,
            timestamp=msg.date or datetime.now(timezone.utc),
            message_id=str(msg.message_id),
        )

        # Deliveries run concurrently; python-telegram-bot processes updates one at a time.
        task = asyncio.create_task(self._message_callback(incoming))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
