# src/taskpulse/tasks/task_models.py

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import StrEnum
from typing import Any


class TaskState(StrEnum):
    """
    Task lifecycle state.

    Transitions are driven only by the execution engine:
      queued -> processing -> completed (-> queued again when recurring)
      processing -> failed
    """

    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @classmethod
    def from_db(cls, raw: str | None) -> TaskState:
        if not raw:
            return cls.QUEUED
        try:
            return cls(raw)
        except ValueError:
            return cls.QUEUED


class TaskPriority(StrEnum):
    """Advisory only: the gate never reorders by priority."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @classmethod
    def from_db(cls, raw: str | None) -> TaskPriority:
        if not raw:
            return cls.MEDIUM
        try:
            return cls(raw.lower())
        except ValueError:
            return cls.MEDIUM


class ExecutionOutcome(StrEnum):
    SUCCESS = "success"
    FAILURE = "failure"


def ts_to_iso(ts: float | None) -> str | None:
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass(slots=True, frozen=True)
class Task:
    """Immutable snapshot of a stored task. Mutations go through the TaskStore."""

    id: str
    label: str
    payload: dict[str, Any]
    priority: TaskPriority
    state: TaskState

    created_at: float
    updated_at: float

    schedule_pattern: str | None = None
    next_run_at: float | None = None

    attempts: int = 0
    last_duration_ms: int | None = None
    last_error: str | None = None

    last_run_at: float | None = None
    completed_at: float | None = None

    @property
    def is_recurring(self) -> bool:
        return bool(self.schedule_pattern)

    def to_dict(self) -> dict[str, Any]:
        """API / webhook representation (camelCase keys, ISO-8601 instants)."""
        return {
            "id": self.id,
            "taskName": self.label,
            "payload": self.payload,
            "priority": self.priority.value,
            "status": self.state.value,
            "isRecurring": self.is_recurring,
            "schedulePattern": self.schedule_pattern,
            "nextExecutionAt": ts_to_iso(self.next_run_at),
            "executionAttempts": self.attempts,
            "executionDuration": self.last_duration_ms,
            "failureReason": self.last_error,
            "createdAt": ts_to_iso(self.created_at),
            "updatedAt": ts_to_iso(self.updated_at),
            "lastExecutedAt": ts_to_iso(self.last_run_at),
            "completedAt": ts_to_iso(self.completed_at),
        }


@dataclass(slots=True, frozen=True)
class ExecutionRecord:
    id: int
    task_id: str
    outcome: ExecutionOutcome
    started_at: float
    finished_at: float
    duration_ms: int
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "taskId": self.task_id,
            "status": self.outcome.value,
            "startedAt": ts_to_iso(self.started_at),
            "finishedAt": ts_to_iso(self.finished_at),
            "durationMs": self.duration_ms,
            "error": self.error,
        }


@dataclass(slots=True, frozen=True)
class DeliveryResult:
    """Outcome of one notification delivery (after retries)."""

    success: bool
    status_code: int | None = None
    body: Any = None
    error: str | None = None
    attempts: int = 1

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "statusCode": self.status_code,
            "body": self.body,
            "error": self.error,
            "attempts": self.attempts,
        }


@dataclass(slots=True, frozen=True)
class WebhookLog:
    id: int
    task_id: str | None
    url: str
    payload: dict[str, Any]
    status_code: int | None
    body: Any
    success: bool
    created_at: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "taskId": self.task_id,
            "webhookUrl": self.url,
            "payload": self.payload,
            "responseStatus": self.status_code,
            "responseBody": self.body,
            "deliverySuccess": self.success,
            "createdAt": ts_to_iso(self.created_at),
        }


@dataclass(slots=True, frozen=True)
class ExecutionResult:
    """What one engine run produced."""

    task: Task
    outcome: ExecutionOutcome
    duration_ms: int
    error: str | None = None
    notification: DeliveryResult | None = None

    @property
    def ok(self) -> bool:
        return self.outcome == ExecutionOutcome.SUCCESS


@dataclass(slots=True, frozen=True)
class GateStatus:
    active_count: int
    queued_count: int
    max_concurrent: int

    def to_dict(self) -> dict[str, int]:
        return {
            "activeCount": self.active_count,
            "queuedCount": self.queued_count,
            "maxConcurrent": self.max_concurrent,
        }


@dataclass(slots=True)
class TaskStats:
    total: int = 0
    by_state: dict[str, int] = field(default_factory=dict)
    recurring: int = 0

    def to_dict(self) -> dict[str, int]:
        out = {"total": self.total}
        for state in TaskState:
            out[state.value] = int(self.by_state.get(state.value, 0))
        out["recurring"] = self.recurring
        return out
