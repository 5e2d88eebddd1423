# tests/test_task_registry.py

from __future__ import annotations

import asyncio
import gc
from datetime import datetime, timedelta, timezone

import pytest

from botdash.errors import DuplicateTaskError, NotFoundError, ValidationError
from botdash.tasks.models import TaskPatch, TaskSpec, TaskStatus
from botdash.tasks.registry import TaskRegistry
from botdash.tasks.store import TaskStore

from .fakes import FakeBotSession

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _spec(name: str = "news", groups: list[str] | None = None, **kwargs) -> TaskSpec:
    return TaskSpec(name=name, target_groups=groups or ["g1", "g2"], payload_ref="hi", **kwargs)


@pytest.mark.asyncio
async def test_duplicate_active_name_is_rejected_then_allowed_after_archive(
    registry: TaskRegistry,
) -> None:
    first = await registry.create_task(_spec())

    with pytest.raises(DuplicateTaskError) as exc:
        await registry.create_task(_spec())
    assert exc.value.conflicting_ids == [first.id]
    assert exc.value.to_payload()["conflictingIds"] == [first.id]

    await registry.archive_task(first.id)
    second = await registry.create_task(_spec())

    assert second.id != first.id
    assert [t.id for t in await registry.store.list_active_by_name("news")] == [second.id]


@pytest.mark.asyncio
async def test_names_are_compared_exactly(registry: TaskRegistry) -> None:
    await registry.create_task(_spec("Digest"))
    await registry.create_task(_spec("digest"))
    await registry.create_task(_spec("חדשות טכנולוגיה 💡"))

    with pytest.raises(DuplicateTaskError):
        await registry.create_task(_spec("חדשות טכנולוגיה 💡"))
    assert await registry.store.count_active() == 3


@pytest.mark.asyncio
async def test_inactive_task_does_not_block_name(registry: TaskRegistry) -> None:
    disabled = await registry.create_task(_spec(status=TaskStatus.DISABLED))
    active = await registry.create_task(_spec())

    assert disabled.status == TaskStatus.DISABLED
    assert active.is_active

    # re-activating the disabled one would create a duplicate
    with pytest.raises(DuplicateTaskError) as exc:
        await registry.update_task(disabled.id, TaskPatch({"status": "active"}))
    assert exc.value.conflicting_ids == [active.id]


@pytest.mark.asyncio
async def test_concurrent_creates_with_same_name_produce_one_task(
    registry: TaskRegistry,
) -> None:
    results = await asyncio.gather(
        *(registry.create_task(_spec()) for _ in range(5)),
        return_exceptions=True,
    )

    created = [r for r in results if not isinstance(r, BaseException)]
    rejected = [r for r in results if isinstance(r, DuplicateTaskError)]
    assert len(created) == 1
    assert len(rejected) == 4
    assert all(r.conflicting_ids == [created[0].id] for r in rejected)
    assert await registry.store.count_active() == 1


@pytest.mark.asyncio
async def test_rename_collision_is_rejected(registry: TaskRegistry) -> None:
    news = await registry.create_task(_spec("news"))
    weather = await registry.create_task(_spec("weather"))

    with pytest.raises(DuplicateTaskError) as exc:
        await registry.update_task(weather.id, TaskPatch({"name": "news"}))
    assert exc.value.conflicting_ids == [news.id]

    # a task never collides with itself
    same = await registry.update_task(news.id, TaskPatch({"name": "news", "description": "d"}))
    assert same.description == "d"

    renamed = await registry.update_task(weather.id, TaskPatch({"name": "forecast"}))
    assert renamed.name == "forecast"


@pytest.mark.asyncio
async def test_concurrent_activate_and_rename_keep_name_unique(
    registry: TaskRegistry,
) -> None:
    news = await registry.create_task(_spec("news"))
    draft = await registry.create_task(_spec("draft", status=TaskStatus.DISABLED))

    activated, renamed = await asyncio.gather(
        registry.update_task(draft.id, TaskPatch({"status": "active"})),
        registry.update_task(draft.id, TaskPatch({"name": "news"})),
        return_exceptions=True,
    )

    assert activated.status == TaskStatus.ACTIVE
    assert isinstance(renamed, DuplicateTaskError)
    assert renamed.conflicting_ids == [news.id]
    assert [t.id for t in await registry.store.list_active_by_name("news")] == [news.id]


@pytest.mark.asyncio
async def test_locks_are_released_after_use(registry: TaskRegistry) -> None:
    task = await registry.create_task(_spec("news"))
    await registry.update_task(task.id, TaskPatch({"name": "weather"}))
    await registry.reconcile_duplicates()

    gc.collect()
    assert len(registry._name_locks) == 0
    assert len(registry._task_locks) == 0


@pytest.mark.asyncio
async def test_update_missing_task(registry: TaskRegistry) -> None:
    with pytest.raises(NotFoundError):
        await registry.update_task(404, TaskPatch({"description": "x"}))


@pytest.mark.asyncio
async def test_schedule_change_recomputes_next_run(registry: TaskRegistry) -> None:
    task = await registry.create_task(_spec())
    assert task.next_run is None

    updated = await registry.update_task(task.id, TaskPatch({"schedule": "2030-01-01T09:00:00"}))
    assert updated.next_run == datetime(2030, 1, 1, 9, 0, tzinfo=timezone.utc)

    cleared = await registry.update_task(task.id, TaskPatch({"schedule": None}))
    assert cleared.next_run is None

    with pytest.raises(ValidationError):
        await registry.update_task(task.id, TaskPatch({"schedule": "every tuesday"}))


@pytest.mark.asyncio
async def test_delete_is_idempotent_and_notifies_once(registry: TaskRegistry) -> None:
    task = await registry.create_task(_spec())
    calls = []

    async def listener() -> None:
        calls.append(1)

    registry.add_listener(listener)

    await registry.delete_task(task.id)
    await registry.delete_task(task.id)
    await registry.delete_task(9999)

    assert len(calls) == 1
    with pytest.raises(NotFoundError):
        await registry.get_task(task.id)
    audit = await registry.store.list_audit(task.id)
    assert [a["action"] for a in audit] == ["created", "deleted"]


@pytest.mark.asyncio
async def test_failing_listener_does_not_break_mutation(registry: TaskRegistry) -> None:
    async def broken() -> None:
        raise RuntimeError("listener down")

    registry.add_listener(broken)
    task = await registry.create_task(_spec())
    assert task.id > 0


@pytest.mark.asyncio
async def test_list_tasks_filters_by_type(registry: TaskRegistry) -> None:
    await registry.create_task(_spec("a", task_type="scheduled"))
    await registry.create_task(_spec("b", task_type="one_time"))

    assert [t.name for t in await registry.list_tasks()] == ["a", "b"]
    assert [t.name for t in await registry.list_tasks("one_time")] == ["b"]


# =============================================================================
# Execution
# =============================================================================


@pytest.mark.asyncio
async def test_execute_is_best_effort_per_group(store: TaskStore) -> None:
    bot = FakeBotSession(failing_groups={"g2"})
    registry = TaskRegistry(store, bot)
    task = await registry.create_task(_spec(groups=["g1", "g2", "g3"]))

    result = await registry.execute_task(task.id)

    assert result.succeeded == ["g1", "g3"]
    assert result.failed == ["g2"]
    assert bot.sent == [("g1", "hi"), ("g3", "hi")]
    assert result.partial_failure.failed_groups == ["g2"]

    payload = result.to_dict()
    assert payload["succeeded"] == 2
    assert payload["failed"] == 1
    assert payload["error"] == "PartialExecutionFailure"
    assert "not found" in payload["outcomes"][1]["error"]

    deliveries = await store.list_deliveries(task.id)
    assert [(d["group"], d["ok"]) for d in deliveries] == [
        ("g1", True),
        ("g2", False),
        ("g3", True),
    ]
    assert (await store.get(task.id)).last_activity == result.finished_at


@pytest.mark.asyncio
async def test_execute_without_bot_fails_every_group(store: TaskStore) -> None:
    registry = TaskRegistry(store, bot=None)
    task = await registry.create_task(_spec())

    result = await registry.execute_task(task.id)

    assert result.succeeded == []
    assert result.failed == ["g1", "g2"]
    assert all(o.error == "Bot session not configured" for o in result.outcomes)
    assert (await store.get(task.id)).last_activity is None


@pytest.mark.asyncio
async def test_execute_archived_task_is_rejected(registry: TaskRegistry) -> None:
    task = await registry.create_task(_spec())
    await registry.archive_task(task.id)

    with pytest.raises(ValidationError):
        await registry.execute_task(task.id)
    with pytest.raises(NotFoundError):
        await registry.execute_task(777)


@pytest.mark.asyncio
async def test_disabled_task_can_be_executed_manually(
    registry: TaskRegistry, bot: FakeBotSession
) -> None:
    task = await registry.create_task(_spec(status=TaskStatus.DISABLED))
    result = await registry.execute_task(task.id)
    assert result.failed == []
    assert len(bot.sent) == 2


@pytest.mark.asyncio
async def test_cancelled_execution_keeps_sent_groups_recorded(store: TaskStore) -> None:
    bot = FakeBotSession(block_groups={"g2"})
    registry = TaskRegistry(store, bot)
    task = await registry.create_task(_spec(groups=["g1", "g2", "g3"]))

    running = asyncio.create_task(registry.execute_task(task.id))
    await bot.blocked.wait()
    running.cancel()
    with pytest.raises(asyncio.CancelledError):
        await running

    deliveries = await store.list_deliveries(task.id)
    assert [(d["group"], d["ok"]) for d in deliveries] == [("g1", True)]
    assert bot.sent == [("g1", "hi")]


# =============================================================================
# Reconcile
# =============================================================================


@pytest.mark.asyncio
async def test_reconcile_keeps_newest_and_archives_the_rest(registry: TaskRegistry) -> None:
    store = registry.store
    # duplicates written before the registry existed
    old = await store.insert(_spec("news"), created_at=T0)
    newest = await store.insert(_spec("news"), created_at=T0 + timedelta(days=2))
    middle = await store.insert(_spec("news"), created_at=T0 + timedelta(days=1))
    single = await store.insert(_spec("weather"), created_at=T0)

    actions = await registry.reconcile_duplicates()

    assert len(actions) == 1
    assert actions[0].name == "news"
    assert actions[0].kept_id == newest.id
    assert sorted(actions[0].archived_ids) == sorted([old.id, middle.id])

    assert (await store.get(newest.id)).status == TaskStatus.ACTIVE
    assert (await store.get(old.id)).status == TaskStatus.ARCHIVED
    assert (await store.get(middle.id)).status == TaskStatus.ARCHIVED
    assert (await store.get(single.id)).status == TaskStatus.ACTIVE

    audit = await store.list_audit(old.id)
    assert audit[-1]["action"] == "archived_duplicate"

    # nothing left to fix
    assert await registry.reconcile_duplicates() == []


@pytest.mark.asyncio
async def test_reconcile_breaks_created_at_ties_by_id(registry: TaskRegistry) -> None:
    store = registry.store
    first = await store.insert(_spec("news"), created_at=T0)
    second = await store.insert(_spec("news"), created_at=T0)

    (action,) = await registry.reconcile_duplicates()

    assert action.kept_id == second.id
    assert action.archived_ids == [first.id]
    assert action.to_dict() == {"name": "news", "keptId": second.id, "archivedIds": [first.id]}
