"""
Errors — таксономия ошибок ядра.

Ошибки Store/Registry доходят до HTTP как 4xx с именем вида ошибки.
Ошибки коллабораторов (бот, ключ API) поглощаются агрегатором статуса.
"""

from __future__ import annotations


class DashboardError(Exception):
    """Базовая ошибка: kind попадает в поле "error" ответа API."""

    status_code: int = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    @property
    def kind(self) -> str:
        return type(self).__name__

    def to_payload(self) -> dict:
        return {"success": False, "error": self.kind, "message": self.message}


class ValidationError(DashboardError):
    """Некорректная спецификация задачи (пустые группы, битый JSON групп, расписание)."""

    status_code = 400


class NotFoundError(DashboardError):
    status_code = 404


class DuplicateTaskError(DashboardError):
    """Активная задача с таким именем уже есть."""

    status_code = 409

    def __init__(self, name: str, conflicting_ids: list[int]) -> None:
        ids = ", ".join(str(i) for i in conflicting_ids)
        super().__init__(f"Active task named {name!r} already exists [{ids}]")
        self.name = name
        self.conflicting_ids = list(conflicting_ids)

    def to_payload(self) -> dict:
        payload = super().to_payload()
        payload["conflictingIds"] = self.conflicting_ids
        return payload


class ManagementGroupExistsError(DashboardError):
    status_code = 409


class CollaboratorUnavailableError(DashboardError):
    """Бот или хранилище ключа недоступны. Наружу не пробрасывается — деградирует статус."""

    status_code = 503


class PartialExecutionFailure(DashboardError):
    """Часть групп не получила рассылку. Отдаётся в ExecutionResult, не бросается."""

    status_code = 200

    def __init__(self, task_id: int, failed_groups: list[str]) -> None:
        super().__init__(
            f"Task {task_id}: delivery failed for {len(failed_groups)} group(s)"
        )
        self.task_id = task_id
        self.failed_groups = list(failed_groups)
