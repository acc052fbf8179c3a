# src/taskpulse/api/app.py

from __future__ import annotations

"""HTTP surface: task CRUD, manual execution, webhook test/logs, status."""

import contextlib
import logging
import time
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from ..core.errors import TaskPulseError, ValidationError
from ..core.state import AppState
from ..tasks.task_api import validate_task_id

logger = logging.getLogger(__name__)

API_PREFIX = "/api/v1"
API_VERSION = "v1"


class TaskIn(BaseModel):
    # Field rules live in TaskService; keep these loose.
    taskName: Any = None
    payload: Any = None
    priority: Any = None
    schedulePattern: Optional[Any] = None


def create_app(state: AppState, *, start_scheduler: bool = False) -> FastAPI:
    """Create the FastAPI application around an already-built AppState."""
    started_at = time.time()

    @contextlib.asynccontextmanager
    async def lifespan(app: FastAPI):
        if start_scheduler:
            state.scheduler.start()
        try:
            yield
        finally:
            state.scheduler.stop()
            if start_scheduler:
                await state.scheduler.join()
            await state.gate.wait_idle()
            aclose = getattr(state.sink, "aclose", None)
            if aclose is not None:
                await aclose()

    app = FastAPI(title="taskpulse", version=API_VERSION, lifespan=lifespan)
    app.state.taskpulse = state

    @app.exception_handler(TaskPulseError)
    async def _taskpulse_error(request: Request, exc: TaskPulseError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error("%s %s -> %s: %s", request.method, request.url.path, exc.status_code, exc.message)
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        t0 = time.perf_counter()
        response = await call_next(request)
        logger.info(
            "%s %s - %s (%.0fms)",
            request.method,
            request.url.path,
            response.status_code,
            (time.perf_counter() - t0) * 1000,
        )
        return response

    # ---- system ----

    @app.get("/health")
    async def health() -> dict[str, Any]:
        return {
            "success": True,
            "status": "operational",
            "uptime": round(time.time() - started_at, 3),
        }

    @app.get(f"{API_PREFIX}/info")
    async def info() -> dict[str, Any]:
        return {
            "service": "Task Manager API",
            "version": API_VERSION,
            "environment": getattr(state.settings, "environment", "development"),
        }

    @app.get(f"{API_PREFIX}/system/config")
    async def system_config() -> dict[str, Any]:
        settings = state.settings
        public = getattr(settings, "public_dict", None)
        config = public() if callable(public) else {
            "maxConcurrentTasks": state.gate.max_concurrent,
            "schedulerIntervalSeconds": state.scheduler.interval_seconds,
        }
        return {"success": True, "config": config}

    @app.get(f"{API_PREFIX}/scheduler/status")
    async def scheduler_status() -> dict[str, Any]:
        return {"success": True, "data": state.scheduler.status()}

    # ---- tasks ----

    @app.post(f"{API_PREFIX}/tasks", status_code=201)
    async def create_task(body: TaskIn) -> dict[str, Any]:
        task = state.service.create_task(
            task_name=body.taskName,
            payload=body.payload,
            priority=body.priority,
            schedule_pattern=body.schedulePattern,
        )
        return {"success": True, "message": "Task created successfully", "data": task.to_dict()}

    @app.get(f"{API_PREFIX}/tasks")
    async def list_tasks(
        status: Optional[str] = None,
        priority: Optional[str] = None,
        limit: Optional[str] = None,
    ) -> dict[str, Any]:
        tasks = state.service.list_tasks(status=status, priority=priority, limit=limit)
        return {"success": True, "count": len(tasks), "data": [t.to_dict() for t in tasks]}

    @app.get(f"{API_PREFIX}/tasks/stats/overview")
    async def task_stats() -> dict[str, Any]:
        return {"success": True, "data": state.service.stats().to_dict()}

    @app.get(f"{API_PREFIX}/tasks/{{task_id}}")
    async def get_task(task_id: str) -> dict[str, Any]:
        return {"success": True, "data": state.service.get_task(task_id).to_dict()}

    @app.get(f"{API_PREFIX}/tasks/{{task_id}}/history")
    async def task_history(task_id: str, limit: int = 50) -> dict[str, Any]:
        records = state.service.get_history(task_id, limit=limit)
        return {"success": True, "count": len(records), "data": [r.to_dict() for r in records]}

    @app.delete(f"{API_PREFIX}/tasks/{{task_id}}")
    async def delete_task(task_id: str) -> dict[str, Any]:
        state.service.delete_task(task_id)
        return {"success": True, "message": "Task deleted successfully"}

    @app.post(f"{API_PREFIX}/run-job/{{task_id}}")
    async def run_job(task_id: str) -> dict[str, Any]:
        result = await state.scheduler.manual_execute(validate_task_id(task_id))
        data = result.task.to_dict()
        if result.notification is not None:
            data["webhook"] = result.notification.to_dict()
        return {"success": True, "message": "Task executed successfully", "data": data}

    # ---- webhooks ----

    @app.post(f"{API_PREFIX}/webhook/test")
    async def webhook_test(payload: dict) -> dict[str, Any]:
        send_test = getattr(state.sink, "send_test", None)
        if send_test is None:
            raise ValidationError("webhook", "Configured notification sink does not support test delivery")
        result = await send_test(payload)
        return {
            "success": result.success,
            "data": result.to_dict() if result.success else None,
            "error": result.error if not result.success else None,
        }

    @app.get(f"{API_PREFIX}/webhook/logs")
    async def webhook_logs(taskId: Optional[str] = None, limit: int = 50) -> dict[str, Any]:
        if taskId:
            taskId = validate_task_id(taskId)
        if not 1 <= limit <= 1000:
            raise ValidationError("limit", "Limit must be between 1 and 1000")
        logs = state.store.list_webhook_logs(task_id=taskId, limit=limit)
        return {"success": True, "count": len(logs), "data": [entry.to_dict() for entry in logs]}

    return app
