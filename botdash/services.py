"""
Services — корень композиции серверной части.

Один объект владеет хранилищами, реестром, агрегатором и лентой; API и main
получают его явно, никто не ищет соседей через глобальное состояние.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from loguru import logger

from botdash.bot.session import BotSession
from botdash.config import settings
from botdash.status.aggregator import StatusAggregator
from botdash.status.feed import LiveFeed
from botdash.tasks.registry import TaskRegistry
from botdash.tasks.scheduler import TaskScheduler
from botdash.tasks.store import TaskStore
from botdash.webconfig.credentials import CredentialStore
from botdash.webconfig.management_groups import ManagementGroupStore


@dataclass
class Services:
    store: TaskStore
    registry: TaskRegistry
    groups: ManagementGroupStore
    credentials: CredentialStore
    feed: LiveFeed
    aggregator: StatusAggregator
    scheduler: TaskScheduler
    bot: BotSession | None = None

    async def start(self) -> None:
        """Бот → агрегатор → scheduler. Бот, который не стартовал, не валит дашборд."""
        if self.bot is not None:
            try:
                await self.bot.start()
            except Exception as e:
                logger.error(f"Bot session failed to start: {e}")
        await self.aggregator.start()
        await self.scheduler.start()

    async def stop(self) -> None:
        await self.scheduler.stop()
        await self.aggregator.stop()
        self.feed.close()
        if self.bot is not None:
            try:
                await self.bot.stop()
            except Exception as e:
                logger.error(f"Bot stop error: {e}")
        await self.store.close()
        await self.groups.close()


def build_services(
    db_path: str | Path | None = None,
    bot: BotSession | None = None,
    credentials: CredentialStore | None = None,
) -> Services:
    db_path = str(db_path or settings.db_path)
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    store = TaskStore(db_path)
    registry = TaskRegistry(store, bot)
    groups = ManagementGroupStore(db_path)
    credentials = credentials or CredentialStore()
    feed = LiveFeed(queue_size=settings.subscriber_queue_size)
    aggregator = StatusAggregator(
        registry,
        feed,
        bot=bot,
        groups=groups,
        credentials=credentials,
        interval_seconds=settings.status_interval_seconds,
    )
    scheduler = TaskScheduler(registry, interval_seconds=settings.scheduler_interval_seconds)

    return Services(
        store=store,
        registry=registry,
        groups=groups,
        credentials=credentials,
        feed=feed,
        aggregator=aggregator,
        scheduler=scheduler,
        bot=bot,
    )
