"""
Перенос задач из web_tasks / scheduled_tasks старой БД (messages.db) в tasks.

created_at сохраняется (у строк без даты берётся mtime старой БД).
Строка, чьи (name, created_at) уже есть в tasks, пропускается, так что
прерванный импорт можно просто повторить. Дубликаты активных задач
переносятся как есть и логируются; чинит их только явный
reconcile_duplicates(). Старые таблицы не удаляются.
"""

from collections import defaultdict
from datetime import datetime, timezone
from pathlib import Path

import aiosqlite
from loguru import logger

from botdash.config import settings
from botdash.errors import ValidationError
from botdash.tasks.models import TaskSpec, TaskStatus, require_groups
from botdash.tasks.schedule import is_recurring, next_run_for
from botdash.tasks.store import TaskStore

LEGACY_TABLES = ("web_tasks", "scheduled_tasks")

# Разовые задачи старой схемы, которые уже отработали
FINISHED_STATUSES = ("completed", "failed", "cancelled")


def _legacy_created_at(value: str | None) -> datetime | None:
    # CURRENT_TIMESTAMP в SQLite: "YYYY-MM-DD HH:MM:SS" в UTC
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _row_to_spec(table: str, row: dict) -> TaskSpec:
    """Строка старой таблицы → TaskSpec. ValidationError если перенести нельзя."""
    name = row.get("name") or ""
    if not name.strip():
        raise ValidationError("legacy task without name")

    groups = require_groups(row.get("target_groups"))
    schedule = row.get("cron_expression") or row.get("execute_at")
    payload_ref = row.get("file_path") or row.get("custom_query")
    active = row.get("active", 1) and row.get("status") not in FINISHED_STATUSES

    return TaskSpec(
        name=name,
        target_groups=groups,
        payload_ref=payload_ref,
        schedule=schedule,
        task_type=row.get("task_type") or "scheduled",
        status=TaskStatus.ACTIVE if active else TaskStatus.DISABLED,
        description=row.get("description") or f"Imported from {table}",
        created_by=row.get("created_by") or "legacy",
    )


async def _read_legacy(legacy_path: Path) -> list[tuple[str, dict]]:
    rows: list[tuple[str, dict]] = []
    db = await aiosqlite.connect(str(legacy_path))
    db.row_factory = aiosqlite.Row
    try:
        for table in LEGACY_TABLES:
            cursor = await db.execute(
                "SELECT name FROM sqlite_master WHERE type='table' AND name=?", (table,)
            )
            if not await cursor.fetchone():
                continue
            cursor = await db.execute(f"SELECT * FROM {table} ORDER BY id")
            for row in await cursor.fetchall():
                rows.append((table, dict(row)))
    finally:
        await db.close()
    return rows


async def apply(data_dir: Path) -> None:
    legacy_path = data_dir / settings.legacy_db_path.name
    if not legacy_path.exists():
        return

    legacy_rows = await _read_legacy(legacy_path)
    if not legacy_rows:
        return

    store = TaskStore(str(data_dir / settings.db_path.name))
    imported: dict[str, list[int]] = defaultdict(list)
    total = skipped = already = 0
    now = datetime.now(timezone.utc)
    fallback_created_at = datetime.fromtimestamp(legacy_path.stat().st_mtime, timezone.utc)
    try:
        # Уже перенесённое прошлым, прерванным запуском
        existing = {(t.name, t.created_at) for t in await store.list_all()}

        for table, row in legacy_rows:
            try:
                spec = _row_to_spec(table, row)
            except ValidationError as e:
                skipped += 1
                logger.warning(f"Legacy {table}[{row.get('id')}] skipped: {e.message}")
                continue

            try:
                next_run = next_run_for(spec.schedule)
            except ValidationError as e:
                logger.warning(f"Legacy {table}[{row.get('id')}]: {e.message}, imported disabled")
                next_run = None
                spec.status = TaskStatus.DISABLED

            if next_run and not is_recurring(spec.schedule) and next_run < now:
                # Просроченный разовый запуск не должен сработать сразу после импорта
                spec.status = TaskStatus.DISABLED

            created_at = _legacy_created_at(row.get("created_at")) or fallback_created_at
            if (spec.name, created_at) in existing:
                already += 1
                continue

            task = await store.insert(spec, next_run=next_run, created_at=created_at)
            total += 1
            if task.is_active:
                imported[task.name].append(task.id)
    finally:
        await store.close()

    for name, ids in imported.items():
        if len(ids) > 1:
            logger.warning(f"Legacy duplicate active tasks {name!r}: {ids} (run reconcile)")

    logger.info(
        f"Legacy tasks imported: {total}, skipped: {skipped}, already present: {already}"
    )
