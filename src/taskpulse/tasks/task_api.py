# src/taskpulse/tasks/task_api.py

from __future__ import annotations

import logging
import time
import uuid
from typing import Any

from ..core.errors import TaskNotFoundError, ValidationError
from .cron import next_run_after, validate_pattern
from .task_models import ExecutionRecord, Task, TaskPriority, TaskState, TaskStats
from .task_store import TaskStore

logger = logging.getLogger(__name__)

MAX_LABEL_LENGTH = 255
MIN_LIST_LIMIT = 1
MAX_LIST_LIMIT = 1000


def _parse_priority(raw: Any, *, field: str = "priority") -> TaskPriority:
    if not isinstance(raw, str) or not raw.strip():
        raise ValidationError(field, "Must be one of: low, medium, high")
    try:
        return TaskPriority(raw.strip().lower())
    except ValueError as exc:
        raise ValidationError(field, "Must be one of: low, medium, high") from exc


def _parse_state(raw: Any) -> TaskState:
    if not isinstance(raw, str) or not raw.strip():
        raise ValidationError("status", "Invalid status filter")
    try:
        return TaskState(raw.strip().lower())
    except ValueError as exc:
        raise ValidationError("status", "Invalid status filter") from exc


def _parse_limit(raw: Any) -> int:
    try:
        limit = int(raw)
    except (TypeError, ValueError) as exc:
        raise ValidationError("limit", f"Limit must be between {MIN_LIST_LIMIT} and {MAX_LIST_LIMIT}") from exc
    if not MIN_LIST_LIMIT <= limit <= MAX_LIST_LIMIT:
        raise ValidationError("limit", f"Limit must be between {MIN_LIST_LIMIT} and {MAX_LIST_LIMIT}")
    return limit


def validate_task_id(task_id: Any) -> str:
    """Task ids are UUIDs; reject anything else before touching the store."""
    try:
        return str(uuid.UUID(str(task_id)))
    except ValueError as exc:
        raise ValidationError("id", "Invalid task ID format (must be UUID)") from exc


class TaskService:
    """Request-facing operations on tasks: validation, creation, queries."""

    def __init__(self, store: TaskStore, *, clock=time.time) -> None:
        self._store = store
        self._clock = clock

    def create_task(
        self,
        *,
        task_name: Any,
        payload: Any,
        priority: Any,
        schedule_pattern: Any = None,
    ) -> Task:
        if not isinstance(task_name, str) or not task_name.strip():
            raise ValidationError("taskName", "Must be a non-empty string")
        if len(task_name) > MAX_LABEL_LENGTH:
            raise ValidationError("taskName", f"Must be {MAX_LABEL_LENGTH} characters or less")

        if payload is None:
            raise ValidationError("payload", "Payload is required")
        if not isinstance(payload, dict):
            raise ValidationError("payload", "Payload must be a JSON object")

        prio = _parse_priority(priority)

        pattern: str | None = None
        next_run_at: float | None = None
        if schedule_pattern:
            pattern = validate_pattern(schedule_pattern)
            next_run_at = next_run_after(pattern, self._clock())

        task = self._store.create(
            label=task_name.strip(),
            payload=payload,
            priority=prio,
            schedule_pattern=pattern,
            next_run_at=next_run_at,
        )
        logger.info("Task created id=%s name=%s recurring=%s", task.id, task.label, task.is_recurring)
        return task

    def list_tasks(
        self,
        *,
        status: Any = None,
        priority: Any = None,
        limit: Any = None,
    ) -> list[Task]:
        return self._store.find_all(
            state=_parse_state(status) if status else None,
            priority=_parse_priority(priority) if priority else None,
            limit=_parse_limit(limit) if limit is not None else None,
        )

    def get_task(self, task_id: str) -> Task:
        task_id = validate_task_id(task_id)
        task = self._store.find_by_id(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        return task

    def get_history(self, task_id: str, *, limit: int = 50) -> list[ExecutionRecord]:
        task = self.get_task(task_id)
        return self._store.list_execution_history(task.id, limit=_parse_limit(limit))

    def delete_task(self, task_id: str) -> None:
        task_id = validate_task_id(task_id)
        if not self._store.delete(task_id):
            raise TaskNotFoundError(task_id)
        logger.info("Task deleted id=%s", task_id)

    def stats(self) -> TaskStats:
        return self._store.stats()
