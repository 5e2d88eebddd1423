"""
TaskRegistry — единственный путь записи задач.

Политика дубликатов: reject-on-conflict. Активная задача с тем же именем
уже есть → DuplicateTaskError с id конфликтующих задач. Починка уже
существующих дубликатов — отдельная операция reconcile_duplicates().
"""

from __future__ import annotations

import asyncio
import weakref
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Awaitable, Callable

from loguru import logger

from botdash.errors import DuplicateTaskError, NotFoundError, ValidationError
from botdash.tasks.models import (
    ExecutionResult,
    GroupOutcome,
    Task,
    TaskPatch,
    TaskSpec,
    TaskStatus,
)
from botdash.tasks.schedule import next_run_for, validate_schedule
from botdash.tasks.store import TaskStore

if TYPE_CHECKING:
    from botdash.bot.session import BotSession


# Вызывается после каждой успешной мутации (агрегатор статуса пересчитывает снапшот)
MutationListener = Callable[[], Awaitable[None]]


@dataclass
class ReconcileAction:
    """Что сделал reconcile для одного имени."""

    name: str
    kept_id: int
    archived_ids: list[int] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {"name": self.name, "keptId": self.kept_id, "archivedIds": self.archived_ids}


class TaskRegistry:
    """Бизнес-логика задач поверх TaskStore."""

    def __init__(self, store: TaskStore, bot: BotSession | None = None) -> None:
        self._store = store
        self._bot = bot
        self._listeners: list[MutationListener] = []
        # Lock per name: проверка дубликата + запись: одна логическая операция.
        # Lock per task: update читает строку и пишет её под одним lock.
        # Weak: запись исчезает, когда lock никто не держит и не ждёт
        self._name_locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )
        self._task_locks: weakref.WeakValueDictionary[int, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    @property
    def store(self) -> TaskStore:
        return self._store

    def add_listener(self, callback: MutationListener) -> None:
        self._listeners.append(callback)

    @staticmethod
    def _lock_for(locks: weakref.WeakValueDictionary, key) -> asyncio.Lock:
        lock = locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            locks[key] = lock
        return lock

    def _name_lock(self, name: str) -> asyncio.Lock:
        return self._lock_for(self._name_locks, name)

    def _task_lock(self, task_id: int) -> asyncio.Lock:
        return self._lock_for(self._task_locks, task_id)

    async def _notify(self) -> None:
        for callback in list(self._listeners):
            try:
                await callback()
            except Exception as e:
                logger.error(f"Task mutation listener failed: {e}")

    # =========================================================================
    # CRUD
    # =========================================================================

    async def create_task(self, spec: TaskSpec) -> Task:
        """Создаёт задачу. DuplicateTaskError если активная с таким именем уже есть."""
        validate_schedule(spec.schedule)
        next_run = next_run_for(spec.schedule)

        async with self._name_lock(spec.name):
            if TaskStatus(spec.status) == TaskStatus.ACTIVE:
                existing = await self._store.list_active_by_name(spec.name)
                if existing:
                    logger.warning(
                        f"Rejected duplicate task {spec.name!r}: active {[t.id for t in existing]}"
                    )
                    raise DuplicateTaskError(spec.name, [t.id for t in existing])
            task = await self._store.insert(spec, next_run=next_run)

        await self._store.record_audit(task.id, "created", f"by {spec.created_by}")
        logger.info(f"Task created [{task.id}]: {task.name} → {len(task.target_groups)} group(s)")
        await self._notify()
        return task

    async def update_task(self, task_id: int, patch: TaskPatch) -> Task:
        """
        Partial update. Переименование/активация проверяются на конфликт имён.

        Строка перечитывается под lock задачи, так что параллельные update
        одной задачи видят результат друг друга.
        """
        if "schedule" in patch:
            schedule = patch.get("schedule")
            validate_schedule(schedule)
            patch = patch.with_changes(next_run=next_run_for(schedule))

        async with self._task_lock(task_id):
            current = await self.get_task(task_id)
            new_name = patch.get("name", current.name)
            new_status = TaskStatus(patch.get("status", current.status))
            becomes_active_under_name = new_status == TaskStatus.ACTIVE and (
                new_name != current.name or current.status != TaskStatus.ACTIVE
            )

            if becomes_active_under_name:
                async with self._name_lock(new_name):
                    conflicts = [
                        t.id for t in await self._store.list_active_by_name(new_name)
                        if t.id != task_id
                    ]
                    if conflicts:
                        logger.warning(
                            f"Rejected update of task [{task_id}]: {new_name!r} "
                            f"is active as {conflicts}"
                        )
                        raise DuplicateTaskError(new_name, conflicts)
                    task = await self._store.update(task_id, patch)
            else:
                task = await self._store.update(task_id, patch)

        if "status" in patch and new_status != current.status:
            await self._store.record_audit(
                task_id, new_status.value, f"was {current.status.value}"
            )
        logger.info(f"Task updated [{task_id}]: {sorted(patch.changes)}")
        await self._notify()
        return task

    async def archive_task(self, task_id: int) -> Task:
        return await self.update_task(task_id, TaskPatch({"status": TaskStatus.ARCHIVED}))

    async def delete_task(self, task_id: int) -> None:
        """Удаляет задачу. Повторное удаление — no-op."""
        deleted = await self._store.delete(task_id)
        if not deleted:
            logger.debug(f"Delete of absent task [{task_id}] ignored")
            return
        await self._store.record_audit(task_id, "deleted")
        logger.info(f"Task deleted [{task_id}]")
        await self._notify()

    async def get_task(self, task_id: int) -> Task:
        task = await self._store.get(task_id)
        if task is None:
            raise NotFoundError(f"Task {task_id} not found")
        return task

    async def list_tasks(self, task_type: str | None = None) -> list[Task]:
        """Задачи по (name, created_at); task_type — фильтр категории, None = все."""
        return await self._store.list_all(task_type=task_type)

    # =========================================================================
    # Execution
    # =========================================================================

    async def execute_task(self, task_id: int) -> ExecutionResult:
        """
        Отправляет payload во все группы задачи.

        Best-effort: ошибка одной группы не прерывает остальные.
        Исход каждой группы записывается сразу после отправки — при отмене
        отправленные остаются записанными, неотправленные не записываются.
        """
        task = await self.get_task(task_id)
        if task.status == TaskStatus.ARCHIVED:
            raise ValidationError(f"Task {task_id} is archived")

        result = ExecutionResult(task_id=task_id, started_at=datetime.now(timezone.utc))
        logger.info(f"Executing task [{task_id}] {task.name!r} → {task.target_groups}")

        try:
            for group in task.target_groups or []:
                outcome = await self._send_one(task, group)
                result.outcomes.append(outcome)
                # shield: отправленное должно быть записано даже при отмене
                await asyncio.shield(
                    self._store.record_delivery(
                        task_id, group, outcome.ok, outcome.error, outcome.sent_at
                    )
                )
        finally:
            result.finished_at = datetime.now(timezone.utc)
            if result.succeeded:
                try:
                    await asyncio.shield(
                        self._store.update(
                            task_id, TaskPatch({"last_activity": result.finished_at})
                        )
                    )
                except NotFoundError:
                    logger.debug(f"Task [{task_id}] deleted during execution")

        failure = result.partial_failure
        if failure:
            logger.warning(f"{failure.message}: {failure.failed_groups}")
        else:
            logger.info(f"Task [{task_id}] delivered to {len(result.succeeded)} group(s)")

        await self._notify()
        return result

    async def _send_one(self, task: Task, group: str) -> GroupOutcome:
        if self._bot is None:
            return GroupOutcome(group=group, ok=False, error="Bot session not configured")
        try:
            await self._bot.send_payload(group, task.payload_ref)
        except Exception as e:
            logger.warning(f"Task [{task.id}] send to {group!r} failed: {e}")
            return GroupOutcome(group=group, ok=False, error=str(e) or type(e).__name__)
        return GroupOutcome(group=group, ok=True, sent_at=datetime.now(timezone.utc))

    # =========================================================================
    # Maintenance
    # =========================================================================

    async def reconcile_duplicates(self) -> list[ReconcileAction]:
        """
        Чинит уже существующие дубликаты: для каждого имени с несколькими
        активными задачами оставляет самую новую (created_at, затем id),
        остальные архивирует с записью в аудит. Повторный запуск — no-op.
        """
        by_name: dict[str, list[Task]] = defaultdict(list)
        for task in await self._store.list_all(status=TaskStatus.ACTIVE):
            by_name[task.name].append(task)

        actions: list[ReconcileAction] = []
        for name, tasks in by_name.items():
            if len(tasks) < 2:
                continue

            async with self._name_lock(name):
                # Перечитываем под lock, между list_all и сюда могли быть изменения
                current = await self._store.list_active_by_name(name)
                if len(current) < 2:
                    continue
                keep = max(current, key=lambda t: (t.created_at, t.id))
                action = ReconcileAction(name=name, kept_id=keep.id)
                for task in current:
                    if task.id == keep.id:
                        continue
                    await self._store.update(task.id, TaskPatch({"status": TaskStatus.ARCHIVED}))
                    action.archived_ids.append(task.id)

            for archived_id in action.archived_ids:
                await self._store.record_audit(
                    archived_id, "archived_duplicate", f"kept [{keep.id}] for {name!r}"
                )
            logger.warning(
                f"Reconciled duplicates of {name!r}: kept [{keep.id}], archived {action.archived_ids}"
            )
            actions.append(action)

        if actions:
            await self._notify()
        else:
            logger.info("Reconcile: no duplicate active tasks")
        return actions
