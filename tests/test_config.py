# tests/test_config.py

from __future__ import annotations

import json

import pytest
from pydantic import ValidationError as PydanticValidationError

from botdash.config import (
    Settings,
    apply_overrides,
    get_current_overrides,
    load_overrides,
    save_overrides,
    settings,
)


def test_only_mutable_fields_are_overridden(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(settings, "web_port", 3001)

    apply_overrides({"openrouter_model": "openai/gpt-4o", "web_port": 9999, "unknown": 1})

    assert settings.openrouter_model == "openai/gpt-4o"
    assert settings.web_port == 3001


def test_override_types_are_validated() -> None:
    with pytest.raises(PydanticValidationError):
        apply_overrides({"openrouter_model": ["not", "a", "string"]})


def test_overrides_roundtrip_through_file() -> None:
    assert get_current_overrides() == {}

    save_overrides({"timezone": "Europe/Berlin"})
    assert json.loads((settings.data_dir / "config_overrides.json").read_text()) == {
        "timezone": "Europe/Berlin"
    }

    load_overrides()
    assert settings.timezone == "Europe/Berlin"
    assert settings.get_timezone().key == "Europe/Berlin"


def test_empty_interval_env_falls_back_to_default(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("STATUS_INTERVAL_SECONDS", "")
    monkeypatch.setenv("SCHEDULER_INTERVAL_SECONDS", "  ")
    fresh = Settings(_env_file=None)
    assert fresh.status_interval_seconds == 5.0
    assert fresh.scheduler_interval_seconds == 30.0
