"""Telegram channel using python-telegram-bot (long polling)."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from datetime import UTC
from pathlib import Path

from telegram import Update
from telegram.constants import ChatAction
from telegram.ext import Application, ContextTypes, MessageHandler, filters

from nanoclaw.logger import logger
from nanoclaw.transcription import format_voice_content, transcribe_voice
from nanoclaw.types import NewMessage, RegisteredGroup
from nanoclaw.utils import to_iso


class TelegramChannel:
    """Telegram bot channel.

    Implements the Channel protocol from types.py. Only messages from
    registered chats are handed to ``on_message``.
    """

    name = "telegram"

    def __init__(
        self,
        token: str,
        on_message: Callable[[NewMessage], Awaitable[None]],
        on_chat_metadata: Callable[[int, str, str | None], Awaitable[None]],
        find_group: Callable[[int], RegisteredGroup | None],
    ) -> None:
        self._token = token
        self._on_message = on_message
        self._on_chat_metadata = on_chat_metadata
        self._find_group = find_group
        self._app: Application | None = None
        self._bot_id: int | None = None
        self._connected = False

    async def connect(self) -> None:
        self._app = Application.builder().token(self._token).build()
        self._app.add_handler(MessageHandler(filters.ALL, self._handle_update))
        self._app.add_error_handler(self._handle_error)

        await self._app.initialize()
        await self._app.start()
        me = await self._app.bot.get_me()
        self._bot_id = me.id
        await self._app.updater.start_polling(allowed_updates=["message"])
        self._connected = True
        logger.info("Telegram bot started (long polling)", username=me.username)

    async def disconnect(self) -> None:
        if self._app is None:
            return
        self._connected = False
        if self._app.updater and self._app.updater.running:
            await self._app.updater.stop()
        await self._app.stop()
        await self._app.shutdown()
        self._app = None
        logger.info("Telegram bot stopped")

    def is_connected(self) -> bool:
        return self._connected

    def owns_chat(self, chat_id: int) -> bool:
        return True

    async def send_message(self, chat_id: int, text: str) -> None:
        if self._app is None:
            raise RuntimeError("Telegram channel is not connected")
        await self._app.bot.send_message(chat_id=chat_id, text=text)

    async def send_typing(self, chat_id: int) -> None:
        if self._app is None:
            return
        await self._app.bot.send_chat_action(chat_id=chat_id, action=ChatAction.TYPING)

    async def download_file(self, file_id: str, dest: Path) -> None:
        if self._app is None:
            raise RuntimeError("Telegram channel is not connected")
        file = await self._app.bot.get_file(file_id)
        await file.download_to_drive(custom_path=dest)

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------

    async def _handle_update(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        message = update.message
        if message is None or message.chat is None:
            return

        chat_id = message.chat.id
        if self._find_group(chat_id) is None:
            return

        user = message.from_user
        sender = user.id if user else 0
        sender_name = (user and (user.first_name or user.username)) or str(sender)
        timestamp = to_iso(message.date.astimezone(UTC))

        content = message.text or message.caption or ""
        if message.voice is not None:
            file_id = message.voice.file_id
            transcript = await transcribe_voice(
                file_id, lambda dest: self.download_file(file_id, dest)
            )
            content = format_voice_content(transcript)

        if not content:
            return

        await self._on_chat_metadata(chat_id, timestamp, message.chat.title or sender_name)
        await self._on_message(
            NewMessage(
                id=str(message.message_id),
                chat_id=chat_id,
                sender=str(sender),
                sender_name=sender_name,
                content=content,
                timestamp=timestamp,
                is_from_me=self._bot_id is not None and sender == self._bot_id,
            )
        )

    async def _handle_error(self, update: object, context: ContextTypes.DEFAULT_TYPE) -> None:
        logger.error("Telegram bot error", err=str(context.error))
