"""
Status Models — неизменяемый снимок состояния системы.

Снапшот собирается заново на каждом цикле и не меняется после создания.
available=False — «неизвестно» (коллаборатор недоступен), это не то же
самое, что «бот отключён».
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


@dataclass(frozen=True)
class BotStatus:
    connected: bool = False
    account: str | None = None
    uptime_seconds: int = 0
    active_groups: int = 0
    total_messages: int = 0
    last_activity: datetime | None = None
    available: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "connected": self.connected,
            "account": self.account,
            "uptimeSeconds": self.uptime_seconds,
            "activeGroups": self.active_groups,
            "totalMessages": self.total_messages,
            "lastActivity": _iso(self.last_activity),
            "available": self.available,
        }


@dataclass(frozen=True)
class WebStatus:
    management_groups: tuple[str, ...] = ()
    active_tasks: int = 0
    next_scheduled_task: datetime | None = None
    available: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "managementGroups": list(self.management_groups),
            "activeTasks": self.active_tasks,
            "nextScheduledTask": _iso(self.next_scheduled_task),
            "available": self.available,
        }


@dataclass(frozen=True)
class CredentialStatus:
    present: bool = False
    masked: str | None = None
    available: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "present": self.present,
            "masked": self.masked,
            "available": self.available,
        }


@dataclass(frozen=True)
class StatusSnapshot:
    """Состояние «мира» на один момент времени."""

    bot: BotStatus = field(default_factory=BotStatus)
    web: WebStatus = field(default_factory=WebStatus)
    credential: CredentialStatus = field(default_factory=CredentialStatus)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    sequence: int = 0

    @classmethod
    def unknown(cls) -> StatusSnapshot:
        """Всё неизвестно — до первого цикла агрегации."""
        return cls()

    def to_dict(self) -> dict[str, Any]:
        return {
            "bot": self.bot.to_dict(),
            "web": self.web.to_dict(),
            "credential": self.credential.to_dict(),
            "timestamp": self.timestamp.isoformat(),
            "sequence": self.sequence,
        }
