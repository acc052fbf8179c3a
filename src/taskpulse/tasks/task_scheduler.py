# src/taskpulse/tasks/task_scheduler.py

from __future__ import annotations

"""
Task scheduler.

A small polling loop that, every interval:
- fetches recurring tasks whose next_run_at has passed,
- hands each one to the concurrency gate (which runs or queues it).

Manual (API-triggered) runs go through the same gate but fail fast when it is
saturated.
"""

import asyncio
import logging
import time
from typing import Any

from ..core.errors import TaskNotFoundError
from ..core.ports import TaskRepo
from .gate import ConcurrencyGate
from .task_models import ExecutionResult, ts_to_iso

logger = logging.getLogger(__name__)


class SchedulerLoop:
    def __init__(
        self,
        store: TaskRepo,
        gate: ConcurrencyGate,
        *,
        interval_seconds: float = 60.0,
        batch_limit: int = 100,
        clock=time.time,
    ) -> None:
        self._store = store
        self._gate = gate
        self._interval = max(0.01, float(interval_seconds))
        self._batch_limit = max(1, int(batch_limit))
        self._clock = clock
        self._stop = asyncio.Event()
        self._runner: asyncio.Task | None = None
        self._ticks = 0
        self._last_tick_at: float | None = None

    @property
    def interval_seconds(self) -> float:
        return self._interval

    @property
    def is_running(self) -> bool:
        return self._runner is not None and not self._runner.done()

    async def tick(self) -> int:
        """
        One scheduling pass. Never raises: a failing pass is logged and the
        next interval proceeds as usual. Returns the number of tasks submitted.
        """
        now_ts = self._clock()
        self._ticks += 1
        self._last_tick_at = now_ts

        try:
            due = self._store.find_due_recurring(now_ts, limit=self._batch_limit)
        except Exception:
            logger.exception("find_due_recurring failed; skipping this tick")
            return 0

        if not due:
            return 0

        logger.info("Found %d task(s) ready for execution", len(due))

        submitted = 0
        for task in due:
            try:
                self._gate.submit(task)
                submitted += 1
            except Exception:
                logger.exception("submit failed task_id=%s", task.id)
        return submitted

    async def run_forever(self) -> None:
        """Tick every interval until stop() is called."""
        logger.info("Scheduler started (every %.3gs)", self._interval)
        while not self._stop.is_set():
            await self.tick()
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self._interval)
            except asyncio.TimeoutError:
                pass
        logger.info("Scheduler stopped")

    def start(self) -> asyncio.Task:
        if self.is_running:
            logger.warning("Scheduler already running")
            assert self._runner is not None
            return self._runner
        self._stop.clear()
        self._runner = asyncio.get_running_loop().create_task(
            self.run_forever(), name="taskpulse-scheduler"
        )
        return self._runner

    def stop(self) -> None:
        """Stop future ticks. Runs already admitted keep going."""
        self._stop.set()

    async def join(self) -> None:
        if self._runner is not None:
            await self._runner

    # ---- manual execution ----

    def submit_manual(self, task_id: str) -> asyncio.Future:
        """
        Look up the task and ask the gate for an immediate slot.

        Raises TaskNotFoundError, CapacityExceededError or
        InvalidStateTransitionError synchronously.
        """
        task = self._store.find_by_id(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        return self._gate.manual_submit(task)

    async def manual_execute(self, task_id: str) -> ExecutionResult:
        """Run a task now and wait for its outcome (failures are re-raised)."""
        handle = self.submit_manual(task_id)
        return await handle

    def status(self) -> dict[str, Any]:
        gate = self._gate.status()
        return {
            "isRunning": self.is_running,
            "intervalSeconds": self._interval,
            "ticks": self._ticks,
            "lastTickAt": ts_to_iso(self._last_tick_at),
            "activeTasksCount": gate.active_count,
            "queuedTasksCount": gate.queued_count,
            "maxConcurrentTasks": gate.max_concurrent,
            "totalQueuedTasks": gate.active_count + gate.queued_count,
        }
