"""
LiveFeed — раздача снапшотов подписчикам (push) + последний снапшот (pull).

Не брокер: один дашборд, N вкладок. У каждого подписчика своя bounded-очередь;
кто не успевает читать — отключается, остальные этого не замечают.
"""

from __future__ import annotations

import asyncio
from typing import AsyncIterator

from loguru import logger

from botdash.status.models import StatusSnapshot

_CLOSED = object()


class _Subscriber:
    def __init__(self, maxsize: int) -> None:
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)

    def close(self) -> None:
        # Очередь может быть полной, освобождаем место под маркер закрытия
        while not self.queue.empty():
            self.queue.get_nowait()
        self.queue.put_nowait(_CLOSED)


class LiveFeed:
    """Реестр открытых каналов + fan-out."""

    def __init__(self, queue_size: int = 16, initial: StatusSnapshot | None = None) -> None:
        self._queue_size = queue_size
        self._latest = initial or StatusSnapshot.unknown()
        self._subscribers: set[_Subscriber] = set()
        self._closed = False

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def get_snapshot(self) -> StatusSnapshot:
        """Последний посчитанный снапшот."""
        return self._latest

    def publish(self, snapshot: StatusSnapshot) -> bool:
        """
        Рассылает снапшот всем подписчикам. Синхронно (put_nowait) — поэтому
        все подписчики видят снапшоты в одном порядке. Устаревший (sequence
        не больше текущего) отбрасывается.
        """
        if snapshot.sequence <= self._latest.sequence:
            logger.debug(
                f"Stale snapshot #{snapshot.sequence} dropped (have #{self._latest.sequence})"
            )
            return False

        self._latest = snapshot
        for sub in list(self._subscribers):
            try:
                sub.queue.put_nowait(snapshot)
            except asyncio.QueueFull:
                logger.warning("Live feed subscriber is too slow, dropping it")
                self._drop(sub)
        return True

    async def subscribe(self) -> AsyncIterator[StatusSnapshot]:
        """
        Бесконечный поток снапшотов. Первый элемент — текущий снапшот.
        Заканчивается при отключении подписчика, его сбросе или close().
        """
        if self._closed:
            return

        sub = _Subscriber(self._queue_size)
        self._subscribers.add(sub)
        logger.debug(f"Live feed subscriber added ({len(self._subscribers)} total)")
        try:
            yield self._latest
            while True:
                item = await sub.queue.get()
                if item is _CLOSED:
                    return
                yield item
        finally:
            self._subscribers.discard(sub)
            logger.debug(f"Live feed subscriber removed ({len(self._subscribers)} left)")

    def _drop(self, sub: _Subscriber) -> None:
        self._subscribers.discard(sub)
        sub.close()

    def close(self) -> None:
        """Закрывает все потоки (shutdown)."""
        self._closed = True
        for sub in list(self._subscribers):
            self._drop(sub)
