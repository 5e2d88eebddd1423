# tests/conftest.py

from __future__ import annotations

from pathlib import Path

import pytest
import pytest_asyncio

from botdash.config import settings
from botdash.tasks.registry import TaskRegistry
from botdash.tasks.store import TaskStore
from botdash.webconfig.management_groups import ManagementGroupStore

from .fakes import FakeBotSession


@pytest.fixture(autouse=True)
def isolated_settings(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Every test gets its own data dir, a fixed timezone and no API key."""
    monkeypatch.setattr(settings, "data_dir", tmp_path)
    monkeypatch.setattr(settings, "timezone", "UTC")
    monkeypatch.setattr(settings, "openrouter_api_key", None)
    monkeypatch.setattr(settings, "openrouter_model", "anthropic/claude-3.5-sonnet")


@pytest.fixture()
def bot() -> FakeBotSession:
    return FakeBotSession()


@pytest_asyncio.fixture()
async def store(tmp_path: Path):
    task_store = TaskStore(str(tmp_path / "tasks.sqlite"))
    yield task_store
    await task_store.close()


@pytest_asyncio.fixture()
async def registry(store: TaskStore, bot: FakeBotSession) -> TaskRegistry:
    return TaskRegistry(store, bot)


@pytest_asyncio.fixture()
async def groups(tmp_path: Path):
    group_store = ManagementGroupStore(str(tmp_path / "groups.sqlite"))
    yield group_store
    await group_store.close()
