"""
Views — отображение снапшота в состояние элементов дашборда.

render() — чистая функция: тот же снапшот → то же состояние. Битые и
неполные данные показываются как PLACEHOLDER, исключения не бросаются.
Три состояния бота различаются: connected / disconnected / unknown.
"""

from __future__ import annotations

import math
from collections import Counter, deque
from dataclasses import dataclass
from datetime import datetime
from typing import Any

PLACEHOLDER = "—"


@dataclass(frozen=True)
class ViewState:
    text: str
    css_class: str = ""


def _section(snapshot: Any, key: str) -> dict[str, Any] | None:
    """Часть снапшота или None, если её нет или источник недоступен."""
    if not isinstance(snapshot, dict):
        return None
    part = snapshot.get(key)
    if not isinstance(part, dict) or part.get("available") is False:
        return None
    return part


def _count(value: Any) -> str:
    if isinstance(value, bool) or not isinstance(value, int):
        return PLACEHOLDER
    return str(value)


def _format_uptime(seconds: Any) -> str | None:
    if isinstance(seconds, bool) or not isinstance(seconds, (int, float)):
        return None
    if not math.isfinite(seconds) or seconds < 0:
        return None
    minutes = int(seconds) // 60
    hours, minutes = divmod(minutes, 60)
    return f"{hours}h {minutes}m" if hours else f"{minutes}m"


def _format_time(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    try:
        return datetime.fromisoformat(value).strftime("%H:%M")
    except ValueError:
        return None


class StatusView:
    """Карточки статуса: бот, группы, задачи, ключ API."""

    def render(self, snapshot: Any) -> dict[str, ViewState]:
        state: dict[str, ViewState] = {}
        state.update(self._render_bot(_section(snapshot, "bot")))
        state.update(self._render_web(_section(snapshot, "web"), _section(snapshot, "bot")))
        state.update(self._render_credential(_section(snapshot, "credential")))
        return state

    def _render_bot(self, bot: dict[str, Any] | None) -> dict[str, ViewState]:
        connected = bot.get("connected") if bot else None
        if not isinstance(connected, bool):
            return {
                "connection-text": ViewState("Unknown", "status-unknown"),
                "connection-indicator": ViewState("", "status-indicator status-unknown"),
                "connection-details": ViewState(PLACEHOLDER),
            }

        if not connected:
            return {
                "connection-text": ViewState("Disconnected", "status-disconnected"),
                "connection-indicator": ViewState("", "status-indicator status-disconnected"),
                "connection-details": ViewState("Waiting for connection..."),
            }

        account = bot.get("account")
        uptime = _format_uptime(bot.get("uptimeSeconds"))
        details = " • ".join(
            part for part in (account if isinstance(account, str) else None, uptime) if part
        )
        return {
            "connection-text": ViewState("Connected", "status-connected"),
            "connection-indicator": ViewState("", "status-indicator status-connected"),
            "connection-details": ViewState(details or PLACEHOLDER),
        }

    def _render_web(
        self, web: dict[str, Any] | None, bot: dict[str, Any] | None
    ) -> dict[str, ViewState]:
        state = {
            "groups-count": ViewState(_count(bot.get("activeGroups")) if bot else PLACEHOLDER),
            "groups-details": ViewState(PLACEHOLDER),
            "tasks-count": ViewState(PLACEHOLDER),
            "tasks-details": ViewState(PLACEHOLDER),
        }

        if bot:
            messages = _count(bot.get("totalMessages"))
            if messages != PLACEHOLDER:
                state["groups-details"] = ViewState(f"{messages} messages")

        if web is None:
            return state

        groups = web.get("managementGroups")
        if isinstance(groups, list) and groups and all(isinstance(g, str) for g in groups):
            state["groups-details"] = ViewState(", ".join(groups))

        state["tasks-count"] = ViewState(_count(web.get("activeTasks")))
        next_task = web.get("nextScheduledTask")
        if next_task is None:
            state["tasks-details"] = ViewState("No scheduled tasks")
        else:
            time_str = _format_time(next_task)
            state["tasks-details"] = ViewState(f"Next: {time_str}" if time_str else PLACEHOLDER)
        return state

    def _render_credential(self, credential: dict[str, Any] | None) -> dict[str, ViewState]:
        present = credential.get("present") if credential else None
        if not isinstance(present, bool):
            return {
                "api-text": ViewState("Unknown", "status-unknown"),
                "api-details": ViewState(PLACEHOLDER),
            }
        if not present:
            return {
                "api-text": ViewState("Missing", "status-disconnected"),
                "api-details": ViewState("No API key configured"),
            }
        masked = credential.get("masked")
        return {
            "api-text": ViewState("Active", "status-connected"),
            "api-details": ViewState(masked if isinstance(masked, str) and masked else PLACEHOLDER),
        }


class TasksView:
    """Список задач. Активные дубликаты по имени подсвечиваются."""

    def render(self, payload: Any) -> dict[str, ViewState]:
        tasks = payload.get("tasks") if isinstance(payload, dict) else payload
        if not isinstance(tasks, list):
            return {"tasks-total": ViewState(PLACEHOLDER)}

        tasks = [t for t in tasks if isinstance(t, dict)]
        active_names = Counter(
            t["name"] for t in tasks
            if t.get("status") == "active" and isinstance(t.get("name"), str)
        )

        state = {"tasks-total": ViewState(str(len(tasks)))}
        for task in tasks:
            task_id = task.get("id")
            if task_id is None:
                continue
            state[f"task-{task_id}"] = self._render_task(task, active_names)
        return state

    def _render_task(self, task: dict[str, Any], active_names: Counter) -> ViewState:
        raw_name = task.get("name")
        name = raw_name if isinstance(raw_name, str) else PLACEHOLDER
        groups = task.get("target_groups")
        groups_text = (
            f"{len(groups)} group(s)" if isinstance(groups, list) else PLACEHOLDER
        )
        schedule = task.get("schedule")
        schedule_text = schedule if isinstance(schedule, str) and schedule else "manual"

        status = task.get("status")
        if status not in ("active", "disabled", "archived"):
            css = "task-unknown"
        else:
            css = f"task-{status}"
        if status == "active" and isinstance(raw_name, str) and active_names[raw_name] > 1:
            css += " task-duplicate"

        return ViewState(f"{name} → {groups_text} • {schedule_text}", css)


@dataclass(frozen=True)
class Toast:
    message: str
    kind: str = "info"  # info | success | warning | error


class ToastCenter:
    """Последние уведомления (ограниченное число)."""

    def __init__(self, limit: int = 5) -> None:
        self._items: deque[Toast] = deque(maxlen=limit)

    @property
    def items(self) -> list[Toast]:
        return list(self._items)

    def show(self, message: str, kind: str = "info") -> Toast:
        toast = Toast(message, kind)
        self._items.append(toast)
        return toast

    def clear(self) -> None:
        self._items.clear()

    def destroy(self) -> None:
        self.clear()
