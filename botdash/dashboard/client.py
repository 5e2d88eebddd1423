"""
DashboardAPI — тонкий слой запросов дашборда к HTTP API.

Ответ с success=false или 4xx/5xx → DashboardRequestError с видом ошибки сервера.
"""

from __future__ import annotations

import json
from typing import Any, AsyncIterator

import httpx
from loguru import logger


class DashboardRequestError(Exception):
    """Запрос к API не удался. kind — вид ошибки сервера (DuplicateTaskError, ...)."""

    def __init__(
        self,
        kind: str,
        message: str,
        status_code: int | None = None,
        payload: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(f"{kind}: {message}")
        self.kind = kind
        self.message = message
        self.status_code = status_code
        self.payload = payload or {}


class DashboardAPI:
    def __init__(
        self,
        base_url: str,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = 10.0,
    ) -> None:
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            transport=transport,
            timeout=timeout,
            trust_env=False,
        )

    async def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        try:
            resp = await self._client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            raise DashboardRequestError("ConnectionError", str(e) or type(e).__name__) from e

        try:
            body = resp.json()
        except ValueError as e:
            raise DashboardRequestError(
                "InvalidResponse", f"HTTP {resp.status_code}: not JSON", resp.status_code
            ) from e

        if not isinstance(body, dict):
            raise DashboardRequestError("InvalidResponse", "unexpected body", resp.status_code)
        if resp.status_code >= 400 or body.get("success") is False:
            raise DashboardRequestError(
                body.get("error") or f"HTTP{resp.status_code}",
                body.get("message") or body.get("error") or "Request failed",
                resp.status_code,
                body,
            )
        return body

    # =========================================================================
    # Status
    # =========================================================================

    async def get_status(self) -> dict[str, Any]:
        body = await self._request("GET", "/api/status")
        return body.get("data") or {}

    async def stream_status(self) -> AsyncIterator[dict[str, Any]]:
        """SSE-поток снапшотов. Битые события пропускаются."""
        try:
            async with self._client.stream("GET", "/api/status/stream", timeout=None) as resp:
                if resp.status_code != 200:
                    raise DashboardRequestError(
                        f"HTTP{resp.status_code}", "Status stream unavailable", resp.status_code
                    )
                async for line in resp.aiter_lines():
                    if not line.startswith("data:"):
                        continue
                    try:
                        yield json.loads(line[len("data:"):].strip())
                    except json.JSONDecodeError:
                        logger.warning(f"Malformed status event skipped: {line[:80]!r}")
        except httpx.HTTPError as e:
            raise DashboardRequestError("ConnectionError", str(e) or type(e).__name__) from e

    # =========================================================================
    # Tasks
    # =========================================================================

    async def list_tasks(self, task_type: str | None = None) -> dict[str, Any]:
        params = {"type": task_type} if task_type else None
        body = await self._request("GET", "/api/tasks", params=params)
        return body.get("data") or {}

    async def create_task(self, spec: dict[str, Any]) -> dict[str, Any]:
        body = await self._request("POST", "/api/tasks", json=spec)
        return body["data"]

    async def update_task(self, task_id: int, changes: dict[str, Any]) -> dict[str, Any]:
        body = await self._request("PUT", f"/api/tasks/{task_id}", json=changes)
        return body["data"]

    async def delete_task(self, task_id: int) -> None:
        await self._request("DELETE", f"/api/tasks/{task_id}")

    async def execute_task(self, task_id: int) -> dict[str, Any]:
        body = await self._request("POST", f"/api/tasks/{task_id}/execute")
        return body["data"]

    # =========================================================================
    # Config
    # =========================================================================

    async def get_api_key_status(self) -> dict[str, Any]:
        body = await self._request("GET", "/api/config/api-key")
        return body.get("data") or {}

    async def close(self) -> None:
        await self._client.aclose()
