"""
Task Models — задачи рассылки и результаты выполнения.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from botdash.errors import PartialExecutionFailure, ValidationError


class TaskStatus(str, Enum):
    ACTIVE = "active"
    DISABLED = "disabled"
    ARCHIVED = "archived"


@dataclass
class Task:
    """Именованная рассылка: payload → упорядоченный список групп по расписанию."""

    id: int
    name: str
    target_groups: list[str] | None
    created_at: datetime
    payload_ref: str | None = None
    schedule: str | None = None            # cron или ISO-дата, для ядра непрозрачно
    next_run: datetime | None = None
    task_type: str = "scheduled"            # категория вызывающей стороны
    status: TaskStatus = TaskStatus.ACTIVE
    description: str = ""
    created_by: str = "dashboard"
    updated_at: datetime | None = None
    last_activity: datetime | None = None

    @property
    def is_active(self) -> bool:
        return self.status == TaskStatus.ACTIVE

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "target_groups": None if self.target_groups is None else list(self.target_groups),
            "payload_ref": self.payload_ref,
            "schedule": self.schedule,
            "next_run": _iso(self.next_run),
            "task_type": self.task_type,
            "status": self.status.value,
            "description": self.description,
            "created_by": self.created_by,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
            "last_activity": _iso(self.last_activity),
        }


@dataclass
class TaskSpec:
    """Что нужно для создания задачи."""

    name: str
    target_groups: list[str]
    payload_ref: str | None = None
    schedule: str | None = None
    task_type: str = "scheduled"
    status: TaskStatus = TaskStatus.ACTIVE
    description: str = ""
    created_by: str = "dashboard"


# Поля, которые можно менять через update. id и created_at неизменяемые.
PATCHABLE_FIELDS: frozenset[str] = frozenset({
    "name",
    "target_groups",
    "payload_ref",
    "schedule",
    "task_type",
    "status",
    "description",
    "next_run",
    "last_activity",
})


@dataclass
class TaskPatch:
    """Partial update: применяются только явно переданные поля."""

    changes: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        unknown = set(self.changes) - PATCHABLE_FIELDS
        if unknown:
            raise ValidationError(f"Unknown task fields: {', '.join(sorted(unknown))}")
        if "status" in self.changes:
            try:
                self.changes["status"] = TaskStatus(self.changes["status"])
            except ValueError as e:
                raise ValidationError(f"Invalid status: {self.changes['status']!r}") from e

    def __contains__(self, key: str) -> bool:
        return key in self.changes

    def get(self, key: str, default: Any = None) -> Any:
        return self.changes.get(key, default)

    def with_changes(self, **extra: Any) -> TaskPatch:
        return TaskPatch({**self.changes, **extra})


# =============================================================================
# Target groups codec
# =============================================================================


def encode_groups(groups: list[str] | None) -> str | None:
    """Список групп → JSON. None остаётся NULL, [] — это "[]"."""
    if groups is None:
        return None
    if not isinstance(groups, (list, tuple)) or not all(isinstance(g, str) for g in groups):
        raise ValidationError("target_groups must be a list of strings")
    return json.dumps(list(groups), ensure_ascii=False)


def decode_groups(raw: str | None) -> list[str] | None:
    """JSON → список групп с сохранением порядка и точного текста."""
    if raw is None:
        return None
    try:
        value = json.loads(raw)
    except (TypeError, json.JSONDecodeError) as e:
        raise ValidationError(f"Unparsable target_groups: {raw!r}") from e
    if not isinstance(value, list) or not all(isinstance(g, str) for g in value):
        raise ValidationError(f"target_groups is not a list of strings: {raw!r}")
    return value


def require_groups(groups: Any) -> list[str]:
    """Проверка для активной задачи: непустой список непустых строк."""
    if isinstance(groups, str):
        groups = decode_groups(groups)
    if not isinstance(groups, (list, tuple)) or not groups:
        raise ValidationError("target_groups must be a non-empty list")
    if not all(isinstance(g, str) and g.strip() for g in groups):
        raise ValidationError("target_groups must contain non-empty strings")
    return list(groups)


# =============================================================================
# Execution
# =============================================================================


@dataclass
class GroupOutcome:
    group: str
    ok: bool
    error: str | None = None
    sent_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "group": self.group,
            "ok": self.ok,
            "error": self.error,
            "sent_at": _iso(self.sent_at),
        }


@dataclass
class ExecutionResult:
    """Результат рассылки: исход по каждой группе. Частичный сбой — не исключение."""

    task_id: int
    started_at: datetime
    outcomes: list[GroupOutcome] = field(default_factory=list)
    finished_at: datetime | None = None

    @property
    def succeeded(self) -> list[str]:
        return [o.group for o in self.outcomes if o.ok]

    @property
    def failed(self) -> list[str]:
        return [o.group for o in self.outcomes if not o.ok]

    @property
    def partial_failure(self) -> PartialExecutionFailure | None:
        failed = self.failed
        if not failed:
            return None
        return PartialExecutionFailure(self.task_id, failed)

    def to_dict(self) -> dict[str, Any]:
        failure = self.partial_failure
        return {
            "taskId": self.task_id,
            "startedAt": _iso(self.started_at),
            "finishedAt": _iso(self.finished_at),
            "succeeded": len(self.succeeded),
            "failed": len(self.failed),
            "outcomes": [o.to_dict() for o in self.outcomes],
            "error": failure.kind if failure else None,
        }


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None
