"""
Dashboard — корень композиции клиента.

Компоненты передаются явно (имя → экземпляр), глобального реестра нет.
Чтение: сначала pull (первая отрисовка), дальше push из SSE-потока;
при обрыве потока — пауза, повторный pull и новая подписка.
"""

from __future__ import annotations

import asyncio
from typing import Any

from loguru import logger

from botdash.dashboard.client import DashboardAPI, DashboardRequestError
from botdash.dashboard.views import StatusView, TasksView, ToastCenter, ViewState


def default_components() -> dict[str, Any]:
    return {
        "status": StatusView(),
        "tasks": TasksView(),
        "toasts": ToastCenter(),
    }


class Dashboard:
    def __init__(
        self,
        api: DashboardAPI,
        components: dict[str, Any] | None = None,
        reconnect_delay: float = 3.0,
    ) -> None:
        self.api = api
        self.components = components if components is not None else default_components()
        self.state: dict[str, ViewState] = {}
        self.snapshot: Any = None
        self._reconnect_delay = reconnect_delay
        self._stream_task: asyncio.Task | None = None
        self._destroyed = False

    @property
    def toasts(self) -> ToastCenter:
        return self.components["toasts"]

    async def initialize(self) -> None:
        """Первая отрисовка по pull, затем фоновое чтение потока."""
        await self.refresh()
        self._stream_task = asyncio.create_task(self._consume_stream())
        logger.info("Dashboard initialized")

    async def refresh(self) -> None:
        try:
            self.render_status(await self.api.get_status())
        except DashboardRequestError as e:
            logger.warning(f"Status load failed: {e}")
            self.render_status(None)
            self.toasts.show(f"Failed to load status: {e.message}", "error")
        await self.load_tasks()

    async def load_tasks(self) -> None:
        try:
            payload = await self.api.list_tasks()
        except DashboardRequestError as e:
            logger.warning(f"Tasks load failed: {e}")
            self.toasts.show(f"Failed to load tasks: {e.message}", "error")
            return
        self.state.update(self.components["tasks"].render(payload))

    def render_status(self, snapshot: Any) -> None:
        self.snapshot = snapshot
        self.state.update(self.components["status"].render(snapshot))

    # =========================================================================
    # User intents
    # =========================================================================

    async def create_task(self, spec: dict[str, Any]) -> dict[str, Any] | None:
        try:
            task = await self.api.create_task(spec)
        except DashboardRequestError as e:
            if e.kind == "DuplicateTaskError":
                ids = ", ".join(str(i) for i in e.payload.get("conflictingIds", []))
                self.toasts.show(f"Task already exists [{ids}]", "error")
            else:
                self.toasts.show(e.message, "error")
            return None

        self.toasts.show(f"Task created: {task.get('name', '')}", "success")
        await self.load_tasks()
        return task

    async def execute_task(self, task_id: int) -> dict[str, Any] | None:
        try:
            result = await self.api.execute_task(task_id)
        except DashboardRequestError as e:
            self.toasts.show(e.message, "error")
            return None

        if result.get("failed"):
            self.toasts.show(
                f"Delivered to {result.get('succeeded', 0)} group(s), "
                f"failed for {result.get('failed')}",
                "warning",
            )
        else:
            self.toasts.show("Task executed", "success")
        return result

    async def delete_task(self, task_id: int) -> None:
        try:
            await self.api.delete_task(task_id)
        except DashboardRequestError as e:
            self.toasts.show(e.message, "error")
            return
        self.toasts.show("Task deleted", "success")
        await self.load_tasks()

    # =========================================================================
    # Stream
    # =========================================================================

    async def _consume_stream(self) -> None:
        while not self._destroyed:
            try:
                async for snapshot in self.api.stream_status():
                    self.render_status(snapshot)
            except DashboardRequestError as e:
                logger.warning(f"Status stream error: {e}")

            if self._destroyed:
                break
            await asyncio.sleep(self._reconnect_delay)
            await self.refresh()

    async def destroy(self) -> None:
        """Останавливает поток и разбирает все компоненты. Повторный вызов — no-op."""
        if self._destroyed:
            return
        self._destroyed = True

        if self._stream_task:
            self._stream_task.cancel()
            try:
                await self._stream_task
            except asyncio.CancelledError:
                pass
            self._stream_task = None

        for name, component in self.components.items():
            teardown = getattr(component, "destroy", None)
            if teardown is not None:
                teardown()
            logger.debug(f"Dashboard component destroyed: {name}")
        self.components.clear()
        self.state.clear()
        await self.api.close()
