"""
AiogramSession — BotSession поверх aiogram 3.x (Telegram Bot API).
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from pathlib import Path

from aiogram import Bot, Dispatcher
from aiogram.exceptions import TelegramAPIError, TelegramNetworkError
from aiogram.types import FSInputFile, Message
from loguru import logger

from botdash.bot.session import BotState, ObservedGroup
from botdash.errors import CollaboratorUnavailableError, ValidationError


class AiogramSession:
    """
    Сессия Telegram-бота.

    Считает входящие сообщения из групп — это activeGroups / totalMessages
    в статусе дашборда. Группа в задаче — chat_id строкой ("-1001234567890").
    """

    def __init__(self, token: str) -> None:
        self._bot = Bot(token=token)
        self._dp = Dispatcher()
        self._dp.message.register(self._on_message)
        self._connected = False
        self._account: str | None = None
        self._started_at: datetime | None = None
        self._groups: dict[int, ObservedGroup] = {}
        self._total_messages = 0
        self._last_activity: datetime | None = None
        self._polling: asyncio.Task | None = None

    async def start(self) -> None:
        me = await self._bot.get_me()
        self._account = me.username or str(me.id)
        self._started_at = datetime.now(timezone.utc)
        self._polling = asyncio.create_task(
            self._dp.start_polling(self._bot, handle_signals=False)
        )
        self._connected = True
        logger.info(f"Bot: @{self._account} (ID: {me.id}), polling started")

    async def stop(self) -> None:
        self._connected = False
        if self._polling:
            try:
                await self._dp.stop_polling()
            except RuntimeError:
                # polling ещё не успел стартовать
                self._polling.cancel()
            try:
                await self._polling
            except asyncio.CancelledError:
                pass
        await self._bot.session.close()
        logger.info("Bot stopped")

    async def get_state(self) -> BotState:
        if self._polling is not None and self._polling.done():
            self._connected = False
        return BotState(
            connected=self._connected,
            account=self._account,
            started_at=self._started_at,
            active_groups=len(self._groups),
            total_messages=self._total_messages,
            last_activity=self._last_activity,
        )

    async def send_payload(self, group: str, payload_ref: str | None) -> None:
        """Файл → документ, иначе payload_ref отправляется как текст."""
        if not payload_ref:
            raise ValidationError("Task has no payload to send")
        try:
            chat_id = int(group)
        except ValueError as e:
            raise ValidationError(f"Telegram group must be a chat id, got {group!r}") from e

        path = Path(payload_ref)
        try:
            is_file = path.is_file()
        except OSError:
            is_file = False  # длинный текст не путь

        try:
            if is_file:
                await self._bot.send_document(chat_id, FSInputFile(path))
            else:
                await self._bot.send_message(chat_id, payload_ref)
        except TelegramNetworkError as e:
            raise CollaboratorUnavailableError(f"Telegram unreachable: {e}") from e
        except TelegramAPIError as e:
            logger.debug(f"Send to {chat_id} rejected: {e}")
            raise

        self._last_activity = datetime.now(timezone.utc)

    async def list_groups(self, limit: int = 20) -> list[ObservedGroup]:
        """Группы по убыванию числа сообщений, для первичной настройки."""
        groups = sorted(self._groups.values(), key=lambda g: g.message_count, reverse=True)
        return groups[:limit]

    async def _on_message(self, message: Message) -> None:
        if message.chat.type not in ("group", "supergroup"):
            return
        chat = message.chat
        group = self._groups.get(chat.id)
        if group is None:
            group = ObservedGroup(id=str(chat.id), name=chat.title or str(chat.id))
            self._groups[chat.id] = group
        elif chat.title:
            group.name = chat.title
        group.message_count += 1
        self._total_messages += 1
        self._last_activity = datetime.now(timezone.utc)
