"""
BotSession — абстракция сессии бота для дашборда.

Ядру нужно две вещи: состояние соединения (для статуса) и отправка
payload в группу (для рассылки). Реализация — aiogram (AiogramSession).
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Protocol, runtime_checkable


@dataclass
class BotState:
    """Что бот сообщает о себе в данный момент."""

    connected: bool
    account: str | None = None
    started_at: datetime | None = None
    active_groups: int = 0
    total_messages: int = 0
    last_activity: datetime | None = None


@dataclass
class ObservedGroup:
    """Группа, из которой бот видел сообщения (кандидат в management group)."""

    id: str
    name: str
    message_count: int = 0

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name, "message_count": self.message_count}


@runtime_checkable
class BotSession(Protocol):
    """Протокол сессии бота. Недоступность → CollaboratorUnavailableError."""

    async def start(self) -> None: ...
    async def stop(self) -> None: ...
    async def get_state(self) -> BotState: ...
    async def send_payload(self, group: str, payload_ref: str | None) -> None: ...
    async def list_groups(self, limit: int = 20) -> list[ObservedGroup]: ...
