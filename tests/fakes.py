# tests/fakes.py

from __future__ import annotations

import asyncio
from collections.abc import Iterable
from datetime import datetime, timezone

from botdash.bot.session import BotState, ObservedGroup
from botdash.errors import CollaboratorUnavailableError
from botdash.webconfig.credentials import CredentialState


class FakeBotSession:
    """
    Deterministic BotSession for unit tests.

    - Records every successful send
    - Fails for groups listed in failing_groups
    - Blocks forever on groups listed in block_groups (cancellation tests)
    """

    def __init__(
        self,
        failing_groups: Iterable[str] = (),
        block_groups: Iterable[str] = (),
        connected: bool = True,
        account: str | None = "dash_bot",
        observed_groups: Iterable[ObservedGroup] = (),
    ) -> None:
        self.failing_groups = set(failing_groups)
        self.block_groups = set(block_groups)
        self.sent: list[tuple[str, str | None]] = []
        self.observed_groups = list(observed_groups)
        self.blocked = asyncio.Event()
        self.started = False
        self.stopped = False
        self.state = BotState(
            connected=connected,
            account=account,
            started_at=datetime.now(timezone.utc) if connected else None,
            active_groups=3,
            total_messages=120,
        )

    async def start(self) -> None:
        self.started = True

    async def stop(self) -> None:
        self.stopped = True

    async def get_state(self) -> BotState:
        return self.state

    async def send_payload(self, group: str, payload_ref: str | None) -> None:
        if group in self.block_groups:
            self.blocked.set()
            await asyncio.Event().wait()
        if group in self.failing_groups:
            raise RuntimeError(f"chat {group} not found")
        self.sent.append((group, payload_ref))

    async def list_groups(self, limit: int = 20) -> list[ObservedGroup]:
        return self.observed_groups[:limit]


class BrokenBotSession(FakeBotSession):
    """Bot whose status endpoint is down."""

    async def get_state(self) -> BotState:
        raise CollaboratorUnavailableError("bot offline")


class FakeCredentialStore:
    def __init__(self, present: bool = True, fail: bool = False) -> None:
        self.present = present
        self.fail = fail

    async def get_status(self) -> CredentialState:
        if self.fail:
            raise CollaboratorUnavailableError("credential store offline")
        if not self.present:
            return CredentialState(present=False)
        return CredentialState(
            present=True,
            masked="sk-or-v1-abc••••••••wxyz",
            model="anthropic/claude-3.5-sonnet",
            status="connected",
        )
