"""
Schedule — расчёт следующего запуска.

Расписание задачи — строка: cron ("0 18 * * *") или ISO-дата для разового запуска.
"""

from __future__ import annotations

from datetime import datetime, timezone

from croniter import croniter

from botdash.config import settings
from botdash.errors import ValidationError


def is_recurring(schedule: str | None) -> bool:
    return bool(schedule) and croniter.is_valid(schedule)


def validate_schedule(schedule: str | None) -> None:
    """Бросает ValidationError если расписание не cron и не ISO-дата."""
    if not schedule or is_recurring(schedule):
        return
    _parse_once(schedule)


def next_run_for(schedule: str | None, now: datetime | None = None) -> datetime | None:
    """Следующий запуск (UTC) или None для ручных задач."""
    if not schedule:
        return None

    now = now or datetime.now(timezone.utc)
    if is_recurring(schedule):
        local_now = now.astimezone(settings.get_timezone())
        return croniter(schedule, local_now).get_next(datetime).astimezone(timezone.utc)

    return _parse_once(schedule)


def advance(schedule: str | None, now: datetime | None = None) -> datetime | None:
    """Следующий запуск после выполнения. Разовые расписания больше не срабатывают."""
    if not is_recurring(schedule):
        return None
    return next_run_for(schedule, now)


def _parse_once(value: str) -> datetime:
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError as e:
        raise ValidationError(
            f"Invalid schedule {value!r}: expected cron expression or ISO datetime"
        ) from e
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=settings.get_timezone())
    return parsed.astimezone(timezone.utc)
