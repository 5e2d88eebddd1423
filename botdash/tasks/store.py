"""
TaskStore — SQLite хранилище задач рассылки.

Своё подключение (WAL mode). Уникальность имён схема НЕ гарантирует —
это политика TaskRegistry. Схема эволюционирует только добавлением колонок.
"""

import asyncio
from datetime import datetime, timezone
from typing import Any

import aiosqlite
from loguru import logger

from botdash.errors import NotFoundError, ValidationError
from botdash.tasks.models import (
    Task,
    TaskPatch,
    TaskSpec,
    TaskStatus,
    decode_groups,
    encode_groups,
    require_groups,
)

# Колонки, добавленные после первой версии схемы: name → DDL
_ADDED_COLUMNS: dict[str, str] = {
    "description": "TEXT DEFAULT ''",
    "created_by": "TEXT DEFAULT 'dashboard'",
    "last_activity": "TEXT",
}


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _to_db(value: datetime | None) -> str | None:
    """Все даты хранятся в UTC — тогда ISO-строки сравнимы лексикографически."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def _from_db(value: str | None) -> datetime | None:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class TaskStore:
    """Долговременное хранилище задач, доставок и аудита."""

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path
        self._db: aiosqlite.Connection | None = None
        self._db_lock = asyncio.Lock()

    async def _get_db(self) -> aiosqlite.Connection:
        if self._db is not None:
            return self._db

        async with self._db_lock:
            if self._db is None:
                db = await aiosqlite.connect(self._db_path)
                db.row_factory = aiosqlite.Row
                try:
                    await db.execute("PRAGMA journal_mode=WAL")
                    self._db = db
                    await self._init_schema()
                except Exception:
                    self._db = None
                    await db.close()
                    raise
        return self._db

    async def _init_schema(self) -> None:
        db = self._db
        # AUTOINCREMENT: id удалённой задачи никогда не переиспользуется
        await db.execute("""
            CREATE TABLE IF NOT EXISTS tasks (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL,
                task_type TEXT DEFAULT 'scheduled',
                target_groups TEXT,
                payload_ref TEXT,
                schedule TEXT,
                next_run TEXT,
                status TEXT DEFAULT 'active',
                created_at TEXT NOT NULL,
                updated_at TEXT
            )
        """)

        cursor = await db.execute("PRAGMA table_info(tasks)")
        existing = {row["name"] for row in await cursor.fetchall()}
        for column, ddl in _ADDED_COLUMNS.items():
            if column not in existing:
                await db.execute(f"ALTER TABLE tasks ADD COLUMN {column} {ddl}")
                logger.info(f"tasks: added column {column}")

        await db.execute("""
            CREATE TABLE IF NOT EXISTS task_deliveries (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                task_id INTEGER NOT NULL,
                group_ref TEXT NOT NULL,
                success INTEGER NOT NULL,
                error TEXT,
                delivered_at TEXT NOT NULL
            )
        """)
        await db.execute("""
            CREATE TABLE IF NOT EXISTS task_audit (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                task_id INTEGER NOT NULL,
                action TEXT NOT NULL,
                detail TEXT DEFAULT '',
                created_at TEXT NOT NULL
            )
        """)

        await db.execute(
            "CREATE INDEX IF NOT EXISTS idx_tasks_name_status ON tasks(name, status)"
        )
        await db.execute(
            "CREATE INDEX IF NOT EXISTS idx_tasks_next_run ON tasks(status, next_run)"
        )
        await db.execute(
            "CREATE INDEX IF NOT EXISTS idx_deliveries_task ON task_deliveries(task_id)"
        )
        await db.commit()
        logger.debug("TaskStore schema initialized")

    # =========================================================================
    # Tasks
    # =========================================================================

    async def insert(
        self,
        spec: TaskSpec,
        *,
        next_run: datetime | None = None,
        created_at: datetime | None = None,
    ) -> Task:
        """Добавляет задачу. created_at задаётся явно только при импорте старых данных."""
        if not spec.name or not spec.name.strip():
            raise ValidationError("Task name is required")
        groups = require_groups(spec.target_groups)

        created = created_at or _now()
        db = await self._get_db()
        cursor = await db.execute(
            """
            INSERT INTO tasks (
                name, task_type, target_groups, payload_ref, schedule, next_run,
                status, description, created_by, created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                spec.name,
                spec.task_type,
                encode_groups(groups),
                spec.payload_ref,
                spec.schedule,
                _to_db(next_run),
                TaskStatus(spec.status).value,
                spec.description,
                spec.created_by,
                _to_db(created),
                _to_db(created),
            ),
        )
        await db.commit()

        task = await self.get(cursor.lastrowid)
        logger.debug(f"Task inserted [{task.id}]: {task.name}")
        return task

    async def get(self, task_id: int) -> Task | None:
        db = await self._get_db()
        cursor = await db.execute("SELECT * FROM tasks WHERE id = ?", (task_id,))
        row = await cursor.fetchone()
        return self._row_to_task(row) if row else None

    async def update(self, task_id: int, patch: TaskPatch) -> Task:
        """Partial update. NotFoundError если задачи нет."""
        current = await self.get(task_id)
        if current is None:
            raise NotFoundError(f"Task {task_id} not found")

        columns: dict[str, Any] = {}
        for key, value in patch.changes.items():
            if key == "target_groups":
                columns[key] = encode_groups(value)
            elif key == "status":
                columns[key] = TaskStatus(value).value
            elif key in ("next_run", "last_activity"):
                columns[key] = _to_db(value)
            else:
                columns[key] = value

        if "name" in columns and not (columns["name"] or "").strip():
            raise ValidationError("Task name is required")

        # Итоговая задача должна оставаться валидной
        status = TaskStatus(patch.get("status", current.status))
        groups = patch.get("target_groups", current.target_groups)
        if status == TaskStatus.ACTIVE:
            require_groups(groups)

        if not columns:
            return current

        columns["updated_at"] = _to_db(_now())
        assignments = ", ".join(f"{name} = ?" for name in columns)
        db = await self._get_db()
        await db.execute(
            f"UPDATE tasks SET {assignments} WHERE id = ?",
            (*columns.values(), task_id),
        )
        await db.commit()

        updated = await self.get(task_id)
        if updated is None:
            # Удалена параллельно между UPDATE и SELECT
            raise NotFoundError(f"Task {task_id} not found")
        return updated

    async def delete(self, task_id: int) -> bool:
        """Удаляет задачу. Отсутствующий id — не ошибка. Возвращает True если строка была."""
        db = await self._get_db()
        cursor = await db.execute("DELETE FROM tasks WHERE id = ?", (task_id,))
        await db.commit()
        return cursor.rowcount > 0

    async def list_all(
        self,
        task_type: str | None = None,
        status: TaskStatus | None = None,
    ) -> list[Task]:
        """Все задачи по (name, created_at): дубликаты оказываются рядом."""
        where: list[str] = []
        params: list[Any] = []
        if task_type is not None:
            where.append("task_type = ?")
            params.append(task_type)
        if status is not None:
            where.append("status = ?")
            params.append(TaskStatus(status).value)

        query = "SELECT * FROM tasks"
        if where:
            query += " WHERE " + " AND ".join(where)
        query += " ORDER BY name, created_at, id"

        db = await self._get_db()
        cursor = await db.execute(query, params)
        rows = await cursor.fetchall()
        return [self._row_to_task(row) for row in rows]

    async def list_active_by_name(self, name: str) -> list[Task]:
        """Активные задачи с точно таким именем (регистр и Unicode как есть)."""
        db = await self._get_db()
        cursor = await db.execute(
            "SELECT * FROM tasks WHERE name = ? AND status = 'active' ORDER BY created_at, id",
            (name,),
        )
        rows = await cursor.fetchall()
        return [self._row_to_task(row) for row in rows]

    async def list_due(self, now: datetime | None = None) -> list[Task]:
        """Активные задачи, у которых next_run уже наступил."""
        db = await self._get_db()
        cursor = await db.execute(
            """
            SELECT * FROM tasks
            WHERE status = 'active' AND next_run IS NOT NULL AND next_run <= ?
            ORDER BY next_run, id
            """,
            (_to_db(now or _now()),),
        )
        rows = await cursor.fetchall()
        return [self._row_to_task(row) for row in rows]

    async def count_active(self) -> int:
        db = await self._get_db()
        cursor = await db.execute("SELECT COUNT(*) AS n FROM tasks WHERE status = 'active'")
        row = await cursor.fetchone()
        return row["n"]

    async def next_scheduled(self) -> datetime | None:
        """Ближайший next_run среди активных задач."""
        db = await self._get_db()
        cursor = await db.execute(
            "SELECT MIN(next_run) AS next_run FROM tasks "
            "WHERE status = 'active' AND next_run IS NOT NULL"
        )
        row = await cursor.fetchone()
        return _from_db(row["next_run"]) if row else None

    # =========================================================================
    # Deliveries
    # =========================================================================

    async def record_delivery(
        self,
        task_id: int,
        group: str,
        ok: bool,
        error: str | None = None,
        delivered_at: datetime | None = None,
    ) -> None:
        """Фиксирует исход отправки в одну группу (сразу после отправки)."""
        db = await self._get_db()
        await db.execute(
            """
            INSERT INTO task_deliveries (task_id, group_ref, success, error, delivered_at)
            VALUES (?, ?, ?, ?, ?)
            """,
            (task_id, group, 1 if ok else 0, error, _to_db(delivered_at or _now())),
        )
        await db.commit()

    async def list_deliveries(self, task_id: int) -> list[dict[str, Any]]:
        db = await self._get_db()
        cursor = await db.execute(
            "SELECT * FROM task_deliveries WHERE task_id = ? ORDER BY id",
            (task_id,),
        )
        rows = await cursor.fetchall()
        return [
            {
                "group": row["group_ref"],
                "ok": bool(row["success"]),
                "error": row["error"],
                "delivered_at": _from_db(row["delivered_at"]),
            }
            for row in rows
        ]

    async def execution_stats(self, task_id: int) -> dict[str, Any]:
        """Сколько доставок всего / успешных и когда была последняя."""
        db = await self._get_db()
        cursor = await db.execute(
            """
            SELECT
                COUNT(*) AS total,
                COALESCE(SUM(success), 0) AS successful,
                MAX(delivered_at) AS last_delivery
            FROM task_deliveries WHERE task_id = ?
            """,
            (task_id,),
        )
        row = await cursor.fetchone()
        return {
            "total_deliveries": row["total"],
            "successful_deliveries": row["successful"],
            "last_delivery": _from_db(row["last_delivery"]),
        }

    # =========================================================================
    # Audit
    # =========================================================================

    async def record_audit(self, task_id: int, action: str, detail: str = "") -> None:
        db = await self._get_db()
        await db.execute(
            "INSERT INTO task_audit (task_id, action, detail, created_at) VALUES (?, ?, ?, ?)",
            (task_id, action, detail, _to_db(_now())),
        )
        await db.commit()

    async def list_audit(self, task_id: int | None = None) -> list[dict[str, Any]]:
        db = await self._get_db()
        if task_id is None:
            cursor = await db.execute("SELECT * FROM task_audit ORDER BY id")
        else:
            cursor = await db.execute(
                "SELECT * FROM task_audit WHERE task_id = ? ORDER BY id", (task_id,)
            )
        rows = await cursor.fetchall()
        return [
            {
                "task_id": row["task_id"],
                "action": row["action"],
                "detail": row["detail"],
                "created_at": _from_db(row["created_at"]),
            }
            for row in rows
        ]

    # =========================================================================

    def _row_to_task(self, row: aiosqlite.Row) -> Task:
        return Task(
            id=row["id"],
            name=row["name"],
            target_groups=decode_groups(row["target_groups"]),
            payload_ref=row["payload_ref"],
            schedule=row["schedule"],
            next_run=_from_db(row["next_run"]),
            task_type=row["task_type"] or "scheduled",
            status=TaskStatus(row["status"] or TaskStatus.ACTIVE.value),
            description=row["description"] or "",
            created_by=row["created_by"] or "dashboard",
            created_at=_from_db(row["created_at"]),
            updated_at=_from_db(row["updated_at"]),
            last_activity=_from_db(row["last_activity"]),
        )

    async def close(self) -> None:
        """Закрывает соединение с БД."""
        if self._db:
            await self._db.close()
            self._db = None
