"""
ManagementGroups — группы, из которых бот принимает команды управления.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

import aiosqlite
from loguru import logger

from botdash.errors import ManagementGroupExistsError, NotFoundError, ValidationError


@dataclass
class ManagementGroup:
    id: int
    group_name: str
    group_id: str | None = None
    active: bool = True
    created_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "group_name": self.group_name,
            "group_id": self.group_id,
            "active": self.active,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class ManagementGroupStore:
    """Хранилище групп управления в SQLite."""

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
                    await db.execute("""
                        CREATE TABLE IF NOT EXISTS management_groups (
                            id INTEGER PRIMARY KEY AUTOINCREMENT,
                            group_name TEXT NOT NULL UNIQUE,
                            group_id TEXT,
                            active INTEGER DEFAULT 1,
                            created_at TEXT NOT NULL
                        )
                    """)
                    await db.commit()
                    self._db = db
                except Exception:
                    await db.close()
                    raise
        return self._db

    async def list_groups(self) -> list[ManagementGroup]:
        """Активные сначала, новые выше."""
        db = await self._get_db()
        cursor = await db.execute(
            "SELECT * FROM management_groups ORDER BY active DESC, created_at DESC, id DESC"
        )
        rows = await cursor.fetchall()
        return [self._row_to_group(row) for row in rows]

    async def active_names(self) -> list[str]:
        return [g.group_name for g in await self.list_groups() if g.active]

    async def add_group(self, group_name: str, group_id: str | None = None) -> ManagementGroup:
        group_name = (group_name or "").strip()
        if not group_name:
            raise ValidationError("Missing group name")

        db = await self._get_db()
        try:
            cursor = await db.execute(
                "INSERT INTO management_groups (group_name, group_id, created_at) VALUES (?, ?, ?)",
                (group_name, group_id, datetime.now(timezone.utc).isoformat()),
            )
        except aiosqlite.IntegrityError as e:
            raise ManagementGroupExistsError(
                f"Group {group_name!r} is already a management group"
            ) from e
        await db.commit()

        logger.info(f"Added management group: {group_name}")
        return ManagementGroup(
            id=cursor.lastrowid,
            group_name=group_name,
            group_id=group_id,
            created_at=datetime.now(timezone.utc),
        )

    async def remove_group(self, group_row_id: int) -> None:
        db = await self._get_db()
        cursor = await db.execute(
            "DELETE FROM management_groups WHERE id = ?", (group_row_id,)
        )
        await db.commit()
        if cursor.rowcount == 0:
            raise NotFoundError(f"Management group {group_row_id} not found")
        logger.info(f"Removed management group with ID: {group_row_id}")

    def _row_to_group(self, row: aiosqlite.Row) -> ManagementGroup:
        created = row["created_at"]
        return ManagementGroup(
            id=row["id"],
            group_name=row["group_name"],
            group_id=row["group_id"],
            active=bool(row["active"]),
            created_at=datetime.fromisoformat(created) if created else None,
        )

    async def close(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None
