# src/taskpulse/tasks/engine.py

from __future__ import annotations

"""
Execution engine.

Owns the lifecycle of a single task run:
- single-flight claim (queued/completed/failed -> processing) as one store write,
- invoking the injected work unit,
- recording the outcome (task fields + execution history),
- notifying the sink on success,
- requeueing recurring tasks with a fresh next_run_at,
- giving the gate slot back on every exit path.
"""

import asyncio
import logging
import time
from typing import Any

from ..core.errors import (
    ExecutionFailedError,
    InvalidStateTransitionError,
    TaskNotFoundError,
)
from ..core.ports import NotificationSink, TaskRepo, WorkUnit
from .cron import next_run_after
from .gate import ConcurrencyGate
from .task_models import (
    DeliveryResult,
    ExecutionOutcome,
    ExecutionResult,
    Task,
    TaskState,
)

logger = logging.getLogger(__name__)

INTERRUPTED_ERROR = "interrupted"


def _describe(exc: BaseException) -> str:
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError)):
        return str(exc) or "work unit timed out"
    return str(exc) or exc.__class__.__name__


class SimulatedWorkUnit:
    """
    Default work unit: waits for a configurable delay.

    The deadline is applied here, so a slow payload fails the run with a
    timeout error instead of occupying a slot forever.
    """

    def __init__(self, delay_seconds: float = 3.0, timeout_seconds: float | None = None) -> None:
        self.delay_seconds = max(0.0, float(delay_seconds))
        self.timeout_seconds = timeout_seconds if timeout_seconds and timeout_seconds > 0 else None

    async def _work(self, task: Task) -> dict[str, Any]:
        await asyncio.sleep(self.delay_seconds)
        logger.info("Processed task: %s", task.label)
        return {"processed": True}

    async def __call__(self, task: Task) -> Any:
        if self.timeout_seconds is None:
            return await self._work(task)
        try:
            return await asyncio.wait_for(self._work(task), timeout=self.timeout_seconds)
        except asyncio.TimeoutError as exc:
            raise TimeoutError(f"work unit exceeded {self.timeout_seconds:g}s deadline") from exc


class ExecutionEngine:
    def __init__(
        self,
        store: TaskRepo,
        gate: ConcurrencyGate,
        sink: NotificationSink,
        work_unit: WorkUnit,
        *,
        clock=time.time,
    ) -> None:
        self._store = store
        self._gate = gate
        self._sink = sink
        self._work_unit = work_unit
        self._clock = clock

    async def run(self, task: Task, *, manual: bool = False) -> ExecutionResult:
        """
        Run one admitted task.

        Scheduled runs absorb failures into the task record and history and
        return the result. Manual runs do the same bookkeeping, then raise
        ExecutionFailedError once. Not-found and already-processing are raised
        in both modes without touching the store.
        """
        try:
            return await self._run(task, manual=manual)
        finally:
            self._gate.release()

    async def _run(self, task: Task, *, manual: bool) -> ExecutionResult:
        started_at = self._clock()
        claimed = self._store.try_begin_run(task.id, now_ts=started_at)
        if claimed is None:
            current = self._store.find_by_id(task.id)
            if current is None:
                raise TaskNotFoundError(task.id)
            raise InvalidStateTransitionError(current.state.value, "execute", task.id)

        logger.info(
            "Executing task %s (%s) attempt=%s manual=%s",
            claimed.label,
            claimed.id,
            claimed.attempts,
            manual,
        )

        try:
            await self._work_unit(claimed)
        except Exception as exc:
            return self._record_failure(claimed, started_at, exc, manual=manual)

        return await self._record_success(claimed, started_at)

    async def _record_success(self, task: Task, started_at: float) -> ExecutionResult:
        finished_at = self._clock()
        duration_ms = max(0, int(round((finished_at - started_at) * 1000)))

        next_run_at: float | None = None
        if task.is_recurring:
            try:
                next_run_at = next_run_after(task.schedule_pattern or "", finished_at)
            except Exception:
                logger.exception("Cannot compute next run for task %s (pattern=%r)", task.id, task.schedule_pattern)

        # Recurring tasks get next_run_at in the same write that marks them
        # completed, so no reader sees 'completed' without it.
        fields: dict[str, Any] = {"last_duration_ms": duration_ms, "last_error": None}
        if next_run_at is not None:
            fields["next_run_at"] = next_run_at

        completed = self._store.update_state(
            task.id,
            TaskState.COMPLETED,
            expected=[TaskState.PROCESSING],
            **fields,
        )
        if completed is None:
            logger.warning("Task %s vanished while processing; skipping bookkeeping", task.id)
            return ExecutionResult(task=task, outcome=ExecutionOutcome.SUCCESS, duration_ms=duration_ms)

        self._append_history(task.id, ExecutionOutcome.SUCCESS, started_at, finished_at)
        logger.info("Task completed: %s (%s) in %sms", task.label, task.id, duration_ms)

        notification = await self._notify(completed)

        final = completed
        if next_run_at is not None:
            requeued = self._store.update_state(
                task.id,
                TaskState.QUEUED,
                expected=[TaskState.COMPLETED],
                next_run_at=next_run_at,
            )
            if requeued is not None:
                final = requeued
                logger.info("Recurring task %s requeued; next run at %.0f", task.id, next_run_at)

        return ExecutionResult(
            task=final,
            outcome=ExecutionOutcome.SUCCESS,
            duration_ms=duration_ms,
            notification=notification,
        )

    def _record_failure(
        self,
        task: Task,
        started_at: float,
        exc: Exception,
        *,
        manual: bool,
    ) -> ExecutionResult:
        finished_at = self._clock()
        duration_ms = max(0, int(round((finished_at - started_at) * 1000)))
        reason = _describe(exc)

        logger.error("Task failed: %s (%s): %s", task.label, task.id, reason)

        failed = self._store.update_state(
            task.id,
            TaskState.FAILED,
            expected=[TaskState.PROCESSING],
            last_error=reason,
            last_duration_ms=duration_ms,
        )
        self._append_history(task.id, ExecutionOutcome.FAILURE, started_at, finished_at, reason)

        if manual:
            raise ExecutionFailedError(task.id, reason) from exc

        return ExecutionResult(
            task=failed or task,
            outcome=ExecutionOutcome.FAILURE,
            duration_ms=duration_ms,
            error=reason,
        )

    def _append_history(
        self,
        task_id: str,
        outcome: ExecutionOutcome,
        started_at: float,
        finished_at: float,
        error: str | None = None,
    ) -> None:
        try:
            self._store.append_execution_history(task_id, outcome, started_at, finished_at, error)
        except Exception:
            logger.exception("Failed to log execution history task_id=%s", task_id)

    async def _notify(self, task: Task) -> DeliveryResult | None:
        try:
            result = await self._sink.deliver(task)
        except Exception:
            logger.exception("Notification sink raised for task %s", task.id)
            return None
        if not result.success:
            logger.warning(
                "Notification for task %s failed status=%s error=%s",
                task.id,
                result.status_code,
                result.error,
            )
        return result

    # ---- recovery ----

    def reconcile_interrupted(self, stale_after_seconds: float) -> int:
        """
        Fail tasks left 'processing' by a crashed process.

        Only tasks whose last_run_at is older than stale_after_seconds are
        touched. Returns how many were reconciled.
        """
        now = self._clock()
        cutoff = now - max(0.0, float(stale_after_seconds))
        count = 0
        for task in self._store.find_stale_processing(cutoff):
            updated = self._store.update_state(
                task.id,
                TaskState.FAILED,
                expected=[TaskState.PROCESSING],
                last_error=INTERRUPTED_ERROR,
            )
            if updated is None:
                continue
            started = task.last_run_at if task.last_run_at is not None else now
            self._append_history(task.id, ExecutionOutcome.FAILURE, started, now, INTERRUPTED_ERROR)
            logger.warning("Reconciled interrupted task %s (%s) -> failed", task.label, task.id)
            count += 1
        return count
