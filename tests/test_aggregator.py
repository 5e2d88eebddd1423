# tests/test_aggregator.py

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from botdash.status.aggregator import StatusAggregator
from botdash.status.feed import LiveFeed
from botdash.tasks.models import TaskSpec
from botdash.tasks.registry import TaskRegistry
from botdash.tasks.store import TaskStore
from botdash.webconfig.management_groups import ManagementGroupStore

from .fakes import BrokenBotSession, FakeBotSession, FakeCredentialStore


def _aggregator(registry, bot=None, groups=None, credentials=None) -> StatusAggregator:
    return StatusAggregator(
        registry,
        LiveFeed(),
        bot=bot,
        groups=groups,
        credentials=credentials,
        interval_seconds=3600,
    )


@pytest.mark.asyncio
async def test_snapshot_combines_all_sources(
    store: TaskStore, groups: ManagementGroupStore
) -> None:
    bot = FakeBotSession()
    bot.state.started_at = datetime.now(timezone.utc) - timedelta(seconds=90)
    registry = TaskRegistry(store, bot)
    next_run = datetime(2030, 1, 1, 9, 0, tzinfo=timezone.utc)
    await store.insert(TaskSpec(name="a", target_groups=["g"]), next_run=next_run)
    await store.insert(TaskSpec(name="b", target_groups=["g"]))
    await groups.add_group("Admins")
    aggregator = _aggregator(registry, bot, groups, FakeCredentialStore())

    snapshot = await aggregator.compute_snapshot()

    assert snapshot.bot.available and snapshot.bot.connected
    assert snapshot.bot.account == "dash_bot"
    assert snapshot.bot.uptime_seconds >= 90
    assert snapshot.bot.active_groups == 3
    assert snapshot.web.active_tasks == 2
    assert snapshot.web.next_scheduled_task == next_run
    assert snapshot.web.management_groups == ("Admins",)
    assert snapshot.credential.present is True
    assert snapshot.credential.masked.startswith("sk-or-v1-abc")

    data = snapshot.to_dict()
    assert data["web"]["nextScheduledTask"] == "2030-01-01T09:00:00+00:00"
    assert data["bot"]["totalMessages"] == 120
    assert isinstance(data["bot"]["uptimeSeconds"], int)


@pytest.mark.asyncio
async def test_unavailable_bot_degrades_only_its_part(store: TaskStore) -> None:
    registry = TaskRegistry(store)
    await store.insert(TaskSpec(name="a", target_groups=["g"]))
    aggregator = _aggregator(registry, BrokenBotSession(), credentials=FakeCredentialStore())

    snapshot = await aggregator.compute_snapshot()

    assert snapshot.bot.available is False
    assert snapshot.bot.connected is False
    assert snapshot.bot.account is None
    assert snapshot.bot.total_messages == 0
    assert snapshot.web.available is True
    assert snapshot.web.active_tasks == 1
    assert snapshot.credential.available is True


@pytest.mark.asyncio
async def test_missing_bot_is_reported_as_disconnected(store: TaskStore) -> None:
    aggregator = _aggregator(TaskRegistry(store))
    snapshot = await aggregator.compute_snapshot()

    assert snapshot.bot.available is True
    assert snapshot.bot.connected is False
    # no credential store wired at all
    assert snapshot.credential.available is False


@pytest.mark.asyncio
async def test_disconnected_bot_has_no_uptime(store: TaskStore) -> None:
    aggregator = _aggregator(TaskRegistry(store), FakeBotSession(connected=False))
    snapshot = await aggregator.compute_snapshot()
    assert snapshot.bot.available is True
    assert snapshot.bot.connected is False
    assert snapshot.bot.uptime_seconds == 0


@pytest.mark.asyncio
async def test_store_failure_degrades_web_part(
    store: TaskStore, monkeypatch: pytest.MonkeyPatch
) -> None:
    async def broken_count() -> int:
        raise RuntimeError("database is locked")

    monkeypatch.setattr(store, "count_active", broken_count)
    aggregator = _aggregator(TaskRegistry(store), FakeBotSession(), credentials=FakeCredentialStore())

    snapshot = await aggregator.compute_snapshot()

    assert snapshot.web.available is False
    assert snapshot.web.active_tasks == 0
    assert snapshot.web.next_scheduled_task is None
    assert snapshot.bot.available is True


@pytest.mark.asyncio
async def test_credential_failure_degrades_credential_part(store: TaskStore) -> None:
    aggregator = _aggregator(
        TaskRegistry(store), FakeBotSession(), credentials=FakeCredentialStore(fail=True)
    )
    snapshot = await aggregator.compute_snapshot()
    assert snapshot.credential.available is False
    assert snapshot.credential.present is False
    assert snapshot.bot.available is True


@pytest.mark.asyncio
async def test_each_snapshot_is_new_and_sequenced(store: TaskStore) -> None:
    aggregator = _aggregator(TaskRegistry(store))
    first = await aggregator.compute_snapshot()
    second = await aggregator.compute_snapshot()
    assert first is not second
    assert second.sequence > first.sequence


@pytest.mark.asyncio
async def test_mutation_triggers_immediate_refresh(store: TaskStore) -> None:
    registry = TaskRegistry(store, FakeBotSession())
    feed = LiveFeed()
    StatusAggregator(registry, feed, interval_seconds=3600)

    task = await registry.create_task(TaskSpec(name="news", target_groups=["g1"]))
    assert feed.get_snapshot().web.active_tasks == 1

    await registry.create_task(TaskSpec(name="weather", target_groups=["g1"]))
    assert feed.get_snapshot().web.active_tasks == 2

    await registry.archive_task(task.id)
    assert feed.get_snapshot().web.active_tasks == 1


@pytest.mark.asyncio
async def test_start_publishes_immediately(store: TaskStore) -> None:
    feed = LiveFeed()
    aggregator = StatusAggregator(TaskRegistry(store), feed, interval_seconds=3600)

    await aggregator.start()
    try:
        assert feed.get_snapshot().sequence >= 1
        assert feed.get_snapshot().web.available is True
    finally:
        await aggregator.stop()
