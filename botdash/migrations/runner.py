"""
Миграции данных для SQLite.

Модули m001_*, m002_* в этом пакете, каждый с `async def apply(data_dir: Path)`.
Список применённых хранится в data_dir/.migrations.json.
"""

import importlib
import json
import pkgutil
from pathlib import Path

from loguru import logger

_RECORD_FILE = ".migrations.json"


def _is_migration(name: str) -> bool:
    return name.startswith("m") and len(name) > 4 and name[1:4].isdigit()


def _load_applied(data_dir: Path) -> set[str]:
    path = data_dir / _RECORD_FILE
    if not path.exists():
        return set()
    return set(json.loads(path.read_text()))


def _save_applied(data_dir: Path, applied: set[str]) -> None:
    path = data_dir / _RECORD_FILE
    path.write_text(json.dumps(sorted(applied), indent=2) + "\n")


def discover_migrations() -> list[str]:
    """Имена модулей миграций в порядке применения."""
    import botdash.migrations as pkg

    return sorted(
        info.name for info in pkgutil.iter_modules(pkg.__path__) if _is_migration(info.name)
    )


async def run_migrations(data_dir: Path) -> list[str]:
    """Применить ещё не применённые миграции. Возвращает имена применённых сейчас."""
    data_dir = Path(data_dir)
    data_dir.mkdir(parents=True, exist_ok=True)
    applied = _load_applied(data_dir)

    done: list[str] = []
    for name in discover_migrations():
        if name in applied:
            continue
        mod = importlib.import_module(f"botdash.migrations.{name}")
        await mod.apply(data_dir)
        applied.add(name)
        _save_applied(data_dir, applied)
        done.append(name)
        logger.info(f"Migration applied: {name}")
    return done
