"""
CredentialStore — ключ OpenRouter: статус (маскированный), проверка, сохранение.

Ключ живёт в settings; сохранение идёт через config_overrides.json.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any

import httpx
from loguru import logger

from botdash.config import apply_overrides, get_current_overrides, save_overrides, settings
from botdash.errors import ValidationError

API_KEY_PREFIX = "sk-or-v1-"
MASK = "••••••••"

# Клиент дашборда шлёт этот маркер, чтобы проверить уже сохранённый ключ
EXISTING_KEY_MARKER = "EXISTING_KEY"


def mask_api_key(api_key: str | None) -> str:
    """12 символов слева + маска + 4 справа. Короткий ключ — только маска."""
    if not api_key or len(api_key) < 8:
        return MASK
    return api_key[:12] + MASK + api_key[-4:]


@dataclass
class CredentialState:
    present: bool
    masked: str | None = None
    model: str | None = None
    status: str = "missing"

    def to_dict(self) -> dict[str, Any]:
        return {
            "keyPresent": self.present,
            "keyMasked": self.masked,
            "model": self.model,
            "status": self.status,
        }


class CredentialStore:
    """Хранилище ключа API."""

    def __init__(self, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self._transport = transport
        self._lock = asyncio.Lock()  # атомарность read-modify-write overrides

    async def get_status(self) -> CredentialState:
        api_key = settings.openrouter_api_key
        if not api_key:
            return CredentialState(present=False)
        return CredentialState(
            present=True,
            masked=mask_api_key(api_key),
            model=settings.openrouter_model,
            status="connected",
        )

    async def test_key(self, api_key: str | None = None) -> dict[str, Any]:
        """Проверка ключа: формат + живой запрос списка моделей."""
        if not api_key or api_key == EXISTING_KEY_MARKER:
            api_key = settings.openrouter_api_key

        if not api_key:
            return {"success": False, "error": "No API key found to test"}
        if not api_key.startswith(API_KEY_PREFIX):
            return {"success": False, "error": "Invalid API key format"}

        url = f"{settings.openrouter_base_url.rstrip('/')}/models"
        try:
            async with httpx.AsyncClient(
                timeout=10.0, trust_env=False, transport=self._transport
            ) as client:
                resp = await client.get(url, headers={"Authorization": f"Bearer {api_key}"})
        except (httpx.ConnectError, httpx.TimeoutException) as e:
            logger.warning(f"API key test: {e}")
            return {"success": False, "error": f"API test failed: {e}"}

        if resp.status_code == 401:
            return {"success": False, "error": "API key is invalid or expired"}
        if resp.status_code == 429:
            return {"success": False, "error": "Rate limit exceeded - try again later"}
        if resp.status_code != 200:
            return {"success": False, "error": f"API test failed: HTTP {resp.status_code}"}

        try:
            body = resp.json()
        except ValueError:
            logger.warning(f"API key test: non-JSON response from {url}")
            return {"success": False, "error": "API test failed: invalid response"}
        if not isinstance(body, dict):
            return {"success": False, "error": "API test failed: invalid response"}

        models = body.get("data") or []
        if not models:
            return {"success": False, "error": "API key valid but no models accessible"}
        return {
            "success": True,
            "message": "API key is valid and working",
            "details": f"Connected successfully. {len(models)} models available.",
        }

    async def save_key(self, api_key: str, model: str | None = None) -> CredentialState:
        """Сохраняет ключ (и модель) в overrides и применяет без рестарта."""
        api_key = (api_key or "").strip()
        if not api_key:
            raise ValidationError("API key cannot be empty")
        if not api_key.startswith(API_KEY_PREFIX):
            raise ValidationError("Invalid API key format")

        updates: dict[str, object] = {"openrouter_api_key": api_key}
        if model:
            updates["openrouter_model"] = model

        async with self._lock:
            apply_overrides(updates)
            current = get_current_overrides()
            current.update(updates)
            save_overrides(current)

        logger.info(f"API key saved ({mask_api_key(api_key)})")
        return await self.get_status()
