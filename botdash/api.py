"""
Dashboard HTTP API.

Ответы в формате {"success": true, "data": ...}; ошибки —
{"success": false, "error": <вид ошибки>, "message": ...} с 4xx-статусом.
"""

import json
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

from fastapi import APIRouter, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, StreamingResponse
from loguru import logger
from pydantic import AliasChoices, BaseModel, Field

from botdash.errors import DashboardError, ValidationError
from botdash.services import Services
from botdash.status.feed import LiveFeed
from botdash.tasks.models import TaskPatch, TaskSpec, TaskStatus


class TaskCreate(BaseModel):
    name: str
    target_groups: list[str]
    payload_ref: str | None = Field(
        default=None, validation_alias=AliasChoices("payload_ref", "file_path")
    )
    schedule: str | None = Field(
        default=None, validation_alias=AliasChoices("schedule", "cron_expression", "execute_at")
    )
    task_type: str = "scheduled"
    status: TaskStatus = TaskStatus.ACTIVE
    description: str = ""
    created_by: str = "dashboard"


class TaskUpdate(BaseModel):
    """Partial update: применяются только переданные поля (null тоже считается)."""

    name: str | None = None
    target_groups: list[str] | None = None
    payload_ref: str | None = Field(
        default=None, validation_alias=AliasChoices("payload_ref", "file_path")
    )
    schedule: str | None = Field(
        default=None, validation_alias=AliasChoices("schedule", "cron_expression", "execute_at")
    )
    task_type: str | None = None
    status: TaskStatus | None = None
    description: str | None = None


class ManagementGroupCreate(BaseModel):
    groupName: str = ""


class SetupComplete(BaseModel):
    selectedGroupName: str | None = None
    selectedGroupId: str | None = None


class ApiKeyTest(BaseModel):
    apiKey: str | None = None


class ApiKeySave(BaseModel):
    apiKey: str = ""
    model: str | None = None


def _ok(data: Any = None, **extra: Any) -> dict[str, Any]:
    body: dict[str, Any] = {"success": True}
    if data is not None:
        body["data"] = data
    body.update(extra)
    return body


async def status_events(request: Request, feed: LiveFeed) -> AsyncIterator[str]:
    """SSE: одно событие на снапшот, первое — текущий снапшот."""
    stream = feed.subscribe()
    try:
        async for snapshot in stream:
            if await request.is_disconnected():
                break
            yield f"data: {json.dumps(snapshot.to_dict(), ensure_ascii=False)}\n\n"
    finally:
        await stream.aclose()


def create_app(services: Services) -> FastAPI:
    """Создать FastAPI-приложение дашборда. Жизненный цикл services — в lifespan."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await services.start()
        try:
            yield
        finally:
            await services.stop()

    app = FastAPI(title="Bot Dashboard API", docs_url=None, redoc_url=None, lifespan=lifespan)
    api = APIRouter(prefix="/api")

    registry = services.registry
    feed = services.feed
    aggregator = services.aggregator

    @app.exception_handler(DashboardError)
    async def dashboard_error_handler(request: Request, exc: DashboardError) -> JSONResponse:
        logger.info(f"{request.method} {request.url.path} → {exc.kind}: {exc.message}")
        return JSONResponse(status_code=exc.status_code, content=exc.to_payload())

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        errors = "; ".join(
            f"{'.'.join(str(p) for p in e['loc'][1:])}: {e['msg']}" for e in exc.errors()
        )
        return JSONResponse(
            status_code=ValidationError.status_code,
            content=ValidationError(errors or "Invalid request").to_payload(),
        )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        logger.debug(f"{request.method} {request.url.path}")
        return await call_next(request)

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    # =========================================================================
    # Status
    # =========================================================================

    async def _current_snapshot():
        snapshot = feed.get_snapshot()
        if snapshot.sequence == 0:
            # Агрегатор ещё не отработал ни разу, считаем по запросу
            snapshot = await aggregator.refresh()
        return snapshot

    @api.get("/status")
    async def get_status() -> dict[str, Any]:
        snapshot = await _current_snapshot()
        return _ok(snapshot.to_dict())

    @api.get("/status/stream")
    async def stream_status(request: Request) -> StreamingResponse:
        await _current_snapshot()
        return StreamingResponse(
            status_events(request, feed),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
        )

    # =========================================================================
    # Tasks
    # =========================================================================

    @api.get("/tasks")
    async def list_tasks(type: str | None = Query(default=None)) -> dict[str, Any]:
        tasks = await registry.list_tasks(type)
        return _ok({"tasks": [t.to_dict() for t in tasks], "total": len(tasks)})

    @api.post("/tasks", status_code=201)
    async def create_task(body: TaskCreate) -> dict[str, Any]:
        task = await registry.create_task(TaskSpec(**body.model_dump()))
        return _ok(task.to_dict(), message="Task created")

    @api.post("/tasks/reconcile")
    async def reconcile_tasks() -> dict[str, Any]:
        actions = await registry.reconcile_duplicates()
        return _ok({"actions": [a.to_dict() for a in actions]})

    @api.get("/tasks/{task_id}")
    async def get_task(task_id: int) -> dict[str, Any]:
        task = await registry.get_task(task_id)
        stats = await registry.store.execution_stats(task_id)
        data = task.to_dict()
        data["total_deliveries"] = stats["total_deliveries"]
        data["successful_deliveries"] = stats["successful_deliveries"]
        last = stats["last_delivery"]
        data["last_delivery"] = last.isoformat() if last else None
        return _ok(data)

    @api.put("/tasks/{task_id}")
    async def update_task(task_id: int, body: TaskUpdate) -> dict[str, Any]:
        changes = body.model_dump(exclude_unset=True)
        if not changes:
            raise ValidationError("No fields to update")
        task = await registry.update_task(task_id, TaskPatch(changes))
        return _ok(task.to_dict(), message="Task updated")

    @api.delete("/tasks/{task_id}")
    async def delete_task(task_id: int) -> dict[str, Any]:
        await registry.delete_task(task_id)
        return _ok(message="Task deleted")

    @api.post("/tasks/{task_id}/execute")
    async def execute_task(task_id: int) -> dict[str, Any]:
        logger.info(f"Manual execution requested for task {task_id} via API")
        result = await registry.execute_task(task_id)
        return _ok(result.to_dict(), message="Task execution completed")

    # =========================================================================
    # Config: management groups, API key, setup
    # =========================================================================

    @api.get("/config/management-groups")
    async def get_management_groups() -> dict[str, Any]:
        groups = await services.groups.list_groups()
        return _ok({"groups": [g.to_dict() for g in groups]})

    @api.post("/config/management-groups")
    async def add_management_group(body: ManagementGroupCreate) -> dict[str, Any]:
        group = await services.groups.add_group(body.groupName)
        await aggregator.refresh()
        return _ok({"group": group.to_dict()}, message="Management group added")

    @api.delete("/config/management-groups/{group_id}")
    async def remove_management_group(group_id: int) -> dict[str, Any]:
        await services.groups.remove_group(group_id)
        await aggregator.refresh()
        return _ok(message="Management group removed")

    @api.get("/config/api-key")
    async def get_api_key_status() -> dict[str, Any]:
        state = await services.credentials.get_status()
        return _ok(state.to_dict())

    @api.post("/config/api-key/test")
    async def test_api_key(body: ApiKeyTest) -> dict[str, Any]:
        return await services.credentials.test_key(body.apiKey)

    @api.post("/config/api-key/save")
    async def save_api_key(body: ApiKeySave) -> dict[str, Any]:
        state = await services.credentials.save_key(body.apiKey, body.model)
        await aggregator.refresh()
        return _ok(state.to_dict(), message="API key saved")

    @api.get("/setup/status")
    async def setup_status() -> dict[str, Any]:
        groups = await services.groups.list_groups()
        return _ok({
            "needsSetup": not groups,
            "managementGroupsCount": len(groups),
            "hasConfiguration": bool(groups),
        })

    @api.get("/setup/groups")
    async def setup_groups() -> dict[str, Any]:
        if services.bot is None:
            return _ok([])
        groups = await services.bot.list_groups()
        return _ok([g.to_dict() for g in groups])

    @api.post("/setup/complete")
    async def complete_setup(body: SetupComplete) -> dict[str, Any]:
        if not (body.selectedGroupName or "").strip():
            raise ValidationError("Missing selected group name")
        group = await services.groups.add_group(body.selectedGroupName, body.selectedGroupId)
        await aggregator.refresh()
        logger.info(f"Initial setup completed with group: {group.group_name}")
        return _ok(
            {"managementGroup": group.to_dict(), "setupCompleted": True},
            message="Initial setup completed",
        )

    app.include_router(api)
    return app
