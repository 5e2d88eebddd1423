"""
StatusAggregator — сводит бота, задачи и ключ API в один StatusSnapshot.

Каждый источник читается независимо. Упал один — его часть снапшота
получает «неизвестную» форму, остальное считается как обычно.
Пересчёт: по таймеру и сразу после любой мутации задач.
"""

from __future__ import annotations

import asyncio
import itertools
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from loguru import logger

from botdash.status.feed import LiveFeed
from botdash.status.models import BotStatus, CredentialStatus, StatusSnapshot, WebStatus

if TYPE_CHECKING:
    from botdash.bot.session import BotSession
    from botdash.tasks.registry import TaskRegistry
    from botdash.webconfig.credentials import CredentialStore
    from botdash.webconfig.management_groups import ManagementGroupStore


class StatusAggregator:
    """Считает снапшоты и публикует их в LiveFeed."""

    def __init__(
        self,
        registry: TaskRegistry,
        feed: LiveFeed,
        bot: BotSession | None = None,
        groups: ManagementGroupStore | None = None,
        credentials: CredentialStore | None = None,
        interval_seconds: float = 5.0,
    ) -> None:
        self._registry = registry
        self._feed = feed
        self._bot = bot
        self._groups = groups
        self._credentials = credentials
        self._interval = interval_seconds
        self._sequence = itertools.count(1)
        self._running = False
        self._task: asyncio.Task | None = None

        registry.add_listener(self.refresh)

    async def compute_snapshot(self) -> StatusSnapshot:
        """Свежий снапшот. Никогда не бросает — сбои источников деградируют их часть."""
        sequence = next(self._sequence)
        bot, web, credential = await asyncio.gather(
            self._bot_status(),
            self._web_status(),
            self._credential_status(),
        )
        return StatusSnapshot(bot=bot, web=web, credential=credential, sequence=sequence)

    async def refresh(self) -> StatusSnapshot:
        """Пересчитать и разослать подписчикам."""
        snapshot = await self.compute_snapshot()
        self._feed.publish(snapshot)
        return snapshot

    # =========================================================================
    # Loop
    # =========================================================================

    async def start(self) -> None:
        """Первый снапшот сразу, дальше — каждые interval секунд."""
        if self._running:
            return

        self._running = True
        await self.refresh()
        self._task = asyncio.create_task(self._loop())
        logger.info(f"Status aggregator started (interval: {self._interval}s)")

    async def stop(self) -> None:
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        logger.info("Status aggregator stopped")

    async def _loop(self) -> None:
        while self._running:
            await asyncio.sleep(self._interval)
            try:
                await self.refresh()
            except Exception as e:
                logger.error(f"Status refresh error: {e}")

    # =========================================================================
    # Sources
    # =========================================================================

    async def _bot_status(self) -> BotStatus:
        if self._bot is None:
            # Бот не настроен: это известное состояние «отключён»
            return BotStatus(available=True)
        try:
            state = await self._bot.get_state()
        except Exception as e:
            logger.warning(f"Bot status unavailable: {e}")
            return BotStatus()

        uptime = 0.0
        if state.connected and state.started_at:
            uptime = (datetime.now(timezone.utc) - state.started_at).total_seconds()
        return BotStatus(
            connected=state.connected,
            account=state.account,
            uptime_seconds=int(uptime),
            active_groups=state.active_groups,
            total_messages=state.total_messages,
            last_activity=state.last_activity,
            available=True,
        )

    async def _web_status(self) -> WebStatus:
        try:
            store = self._registry.store
            active_tasks = await store.count_active()
            next_run = await store.next_scheduled()
            names = await self._groups.active_names() if self._groups else []
        except Exception as e:
            logger.warning(f"Web status unavailable: {e}")
            return WebStatus()

        return WebStatus(
            management_groups=tuple(names),
            active_tasks=active_tasks,
            next_scheduled_task=next_run,
            available=True,
        )

    async def _credential_status(self) -> CredentialStatus:
        if self._credentials is None:
            return CredentialStatus()
        try:
            state = await self._credentials.get_status()
        except Exception as e:
            logger.warning(f"Credential status unavailable: {e}")
            return CredentialStatus()
        return CredentialStatus(present=state.present, masked=state.masked, available=True)
