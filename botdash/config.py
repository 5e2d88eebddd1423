import json
from datetime import datetime
from pathlib import Path
from zoneinfo import ZoneInfo

from loguru import logger
from pydantic import TypeAdapter, ValidationInfo, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _detect_system_timezone() -> str:
    """Определяет системный timezone."""
    import os

    tz_env = os.environ.get("TZ")
    if tz_env:
        return tz_env

    try:
        local_tz = datetime.now().astimezone().tzinfo
        if local_tz and hasattr(local_tz, "key"):
            return local_tz.key
    except Exception:
        pass

    return "UTC"


class Settings(BaseSettings):
    """Конфигурация дашборда."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Telegram (пустой токен = бот не запускается, дашборд работает в degraded-режиме)
    tg_bot_token: str = ""

    # OpenRouter
    openrouter_api_key: str | None = None
    openrouter_model: str = "anthropic/claude-3.5-sonnet"
    openrouter_base_url: str = "https://openrouter.ai/api/v1"

    # Web
    web_host: str = "0.0.0.0"
    web_port: int = 3001

    # Статус и scheduler
    status_interval_seconds: float = 5.0
    scheduler_interval_seconds: float = 30.0
    subscriber_queue_size: int = 16

    @field_validator("status_interval_seconds", "scheduler_interval_seconds", mode="before")
    @classmethod
    def _empty_str_to_default(cls, v: object, info: ValidationInfo) -> object:
        """Пустая строка из env var → дефолт."""
        if isinstance(v, str) and v.strip() == "":
            return cls.model_fields[info.field_name].default
        return v

    # Timezone (auto = определить из системы)
    timezone: str = "auto"

    def get_timezone(self) -> ZoneInfo:
        """Возвращает timezone для расчёта расписаний."""
        tz_name = self.timezone if self.timezone != "auto" else _detect_system_timezone()
        return ZoneInfo(tz_name)

    # Paths
    data_dir: Path = Path("./data")

    @property
    def db_path(self) -> Path:
        return self.data_dir / "dashboard.sqlite"

    @property
    def legacy_db_path(self) -> Path:
        """БД старой версии бота (web_tasks / scheduled_tasks)."""
        return self.data_dir / "messages.db"


settings = Settings()

# Поля, которые можно менять из дашборда без рестарта.
MUTABLE_FIELDS: frozenset[str] = frozenset({
    "openrouter_api_key",
    "openrouter_model",
    "timezone",
})

OVERRIDES_FILE = "config_overrides.json"


def _overrides_path() -> Path:
    return settings.data_dir / OVERRIDES_FILE


def get_current_overrides() -> dict[str, object]:
    """Прочитать текущий файл overrides (пустой dict если файла нет)."""
    path = _overrides_path()
    if not path.exists():
        return {}
    return json.loads(path.read_text(encoding="utf-8"))


def save_overrides(overrides: dict[str, object]) -> None:
    """Сохранить overrides в JSON файл."""
    path = _overrides_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(overrides, ensure_ascii=False, indent=2), encoding="utf-8")


def apply_overrides(overrides: dict[str, object]) -> None:
    """Применить overrides к in-memory settings (только mutable-поля, с валидацией типов)."""
    for key, value in overrides.items():
        if key not in MUTABLE_FIELDS:
            continue
        field_info = Settings.model_fields.get(key)
        if field_info is None:
            continue
        validated = TypeAdapter(field_info.annotation).validate_python(value)
        setattr(settings, key, validated)


def load_overrides() -> None:
    """Загрузить overrides из файла и применить к settings."""
    overrides = get_current_overrides()
    if overrides:
        apply_overrides(overrides)
        logger.info(f"Config overrides loaded: {list(overrides.keys())}")
