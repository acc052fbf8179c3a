# src/taskpulse/core/ports.py

from __future__ import annotations

"""
Ports (interfaces) used by the engine.

The engine depends on Protocols instead of concrete implementations.
This keeps storage, notification transport and the work unit swappable and
makes testing easier.
"""

from typing import Any, Awaitable, Iterable, Protocol

from ..tasks.task_models import (
    DeliveryResult,
    ExecutionOutcome,
    Task,
    TaskState,
)


class WorkUnit(Protocol):
    """
    The task's actual business logic. Opaque to the engine: it only observes
    success (return) or failure (exception). Any deadline is the work unit's own.
    """

    def __call__(self, task: Task) -> Awaitable[Any]: ...


class NotificationSink(Protocol):
    """Delivers an outcome notification. Must report failures, never raise them."""

    def deliver(self, task: Task) -> Awaitable[DeliveryResult]: ...


class TaskRepo(Protocol):
    # Lookup
    def find_by_id(self, task_id: str) -> Task | None: ...
    def find_due_recurring(self, now_ts: float, *, limit: int = 100) -> list[Task]: ...
    def find_stale_processing(self, older_than_ts: float) -> list[Task]: ...

    # Engine writes
    def try_begin_run(self, task_id: str, *, now_ts: float | None = None) -> Task | None: ...
    def update_state(
            self,
            task_id: str,
            new_state: TaskState,
            *,
            expected: Iterable[TaskState] | None = None,
            **fields: Any,
    ) -> Task | None: ...
    def append_execution_history(
            self,
            task_id: str,
            outcome: ExecutionOutcome,
            started_at: float,
            finished_at: float,
            error: str | None = None,
    ) -> int: ...
