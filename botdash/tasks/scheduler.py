import asyncio
from datetime import datetime, timezone

from loguru import logger

from botdash.tasks.models import TaskPatch, TaskStatus
from botdash.tasks.registry import TaskRegistry
from botdash.tasks.schedule import advance


class TaskScheduler:
    """Запускает задачи, у которых наступил next_run."""

    def __init__(self, registry: TaskRegistry, interval_seconds: float = 30.0) -> None:
        self._registry = registry
        self._interval = interval_seconds
        self._running = False
        self._task: asyncio.Task | None = None

    async def start(self) -> None:
        """Запускает проверку задач в фоне."""
        if self._running:
            return

        self._running = True
        self._task = asyncio.create_task(self._run_loop())
        logger.info(f"Scheduler started (interval: {self._interval}s)")

    async def stop(self) -> None:
        """Останавливает scheduler."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        logger.info("Scheduler stopped")

    async def _run_loop(self) -> None:
        while self._running:
            try:
                await self.run_due()
            except Exception as e:
                logger.error(f"Scheduler error: {e}")

            await asyncio.sleep(self._interval)

    async def run_due(self, now: datetime | None = None) -> int:
        """Выполняет наступившие задачи и сдвигает их next_run. Возвращает число запусков."""
        now = now or datetime.now(timezone.utc)
        tasks = await self._registry.store.list_due(now)

        for task in tasks:
            logger.info(f"Running scheduled task [{task.id}] {task.name!r}")

            # Сначала сдвигаем расписание, упавшая рассылка не должна крутиться в цикле
            next_run = advance(task.schedule, now)
            changes: dict = {"next_run": next_run}
            if next_run is None:
                changes["status"] = TaskStatus.DISABLED
            await self._registry.update_task(task.id, TaskPatch(changes))

            try:
                await self._registry.execute_task(task.id)
            except Exception as e:
                logger.error(f"Scheduled task [{task.id}] failed: {e}")

        return len(tasks)
