# src/taskpulse/tasks/gate.py

from __future__ import annotations

"""
Admission control.

Bounds the number of simultaneously running tasks. Scheduled submissions that
arrive while the gate is saturated wait in a FIFO overflow queue; manual
submissions get an immediate yes/no answer instead.

All state lives on the event loop thread and no method awaits while touching it,
so increments/decrements cannot interleave.
"""

import asyncio
import logging
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from ..core.errors import CapacityExceededError, InvalidStateTransitionError
from .task_models import ExecutionResult, GateStatus, Task

logger = logging.getLogger(__name__)

Runner = Callable[..., Awaitable[ExecutionResult]]


@dataclass(slots=True)
class _Admission:
    task: Task
    manual: bool
    handle: asyncio.Future
    started: bool = False


class ConcurrencyGate:
    def __init__(self, max_concurrent: int) -> None:
        if int(max_concurrent) < 1:
            raise ValueError("max_concurrent must be a positive integer")
        self._max = int(max_concurrent)
        self._active = 0
        self._queue: deque[_Admission] = deque()
        self._holding: dict[str, _Admission] = {}
        self._running: set[asyncio.Task] = set()
        self._runner: Runner | None = None

    def bind(self, runner: Runner) -> None:
        """
        Attach the coroutine function that runs one admitted task.

        It is called as runner(task, manual=bool) and must call release() exactly
        once on every exit path.
        """
        self._runner = runner

    @property
    def max_concurrent(self) -> int:
        return self._max

    @property
    def active_count(self) -> int:
        return self._active

    @property
    def queued_count(self) -> int:
        return len(self._queue)

    def status(self) -> GateStatus:
        return GateStatus(
            active_count=self._active,
            queued_count=len(self._queue),
            max_concurrent=self._max,
        )

    def is_holding(self, task_id: str) -> bool:
        return task_id in self._holding

    # ---- submission ----

    def submit(self, task: Task) -> asyncio.Future:
        """
        Scheduled submission. Never blocks.

        Admits immediately when below capacity, otherwise appends to the overflow
        queue. A task already admitted or queued is not added twice; its existing
        handle is returned instead.
        """
        existing = self._holding.get(task.id)
        if existing is not None:
            logger.debug("Task %s already held by the gate; ignoring duplicate submit", task.id)
            return existing.handle

        adm = self._new_admission(task, manual=False)
        if self._active < self._max:
            self._admit(adm)
        else:
            self._queue.append(adm)
            logger.info(
                "Concurrency limit reached (%s/%s). Queuing task %s (queued=%s)",
                self._active,
                self._max,
                task.id,
                len(self._queue),
            )
        return adm.handle

    def manual_submit(self, task: Task) -> asyncio.Future:
        """
        Externally triggered submission: admitted now or rejected now.

        Raises CapacityExceededError when saturated and
        InvalidStateTransitionError when the gate already holds the task.
        """
        if self._active >= self._max:
            raise CapacityExceededError(self._active, self._max)

        if task.id in self._holding:
            raise InvalidStateTransitionError("processing", "execute", task.id)

        adm = self._new_admission(task, manual=True)
        self._admit(adm)
        return adm.handle

    def release(self) -> None:
        """
        Give back one slot, then admit queued tasks while capacity allows.

        Extra calls are clamped at zero rather than driving the count negative.
        """
        if self._active <= 0:
            logger.warning("release() called with no active admissions; ignoring")
            self._active = 0
        else:
            self._active -= 1

        while self._queue and self._active < self._max:
            self._admit(self._queue.popleft())

    async def wait_idle(self) -> None:
        """Wait until nothing is running or queued."""
        while self._running or self._queue:
            pending = list(self._running)
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)
            else:
                await asyncio.sleep(0)

    # ---- internals ----

    def _new_admission(self, task: Task, *, manual: bool) -> _Admission:
        loop = asyncio.get_running_loop()
        adm = _Admission(task=task, manual=manual, handle=loop.create_future())
        self._holding[task.id] = adm
        return adm

    def _admit(self, adm: _Admission) -> None:
        if self._runner is None:
            raise RuntimeError("ConcurrencyGate has no runner bound")
        self._active += 1
        logger.debug(
            "Admitted task %s (manual=%s active=%s/%s)",
            adm.task.id,
            adm.manual,
            self._active,
            self._max,
        )
        job = asyncio.get_running_loop().create_task(
            self._drive(adm), name=f"taskpulse-run-{adm.task.id}"
        )
        self._running.add(job)
        job.add_done_callback(self._running.discard)
        job.add_done_callback(lambda _job: self._on_job_done(adm))

    async def _drive(self, adm: _Admission) -> None:
        assert self._runner is not None
        result: Any = None
        error: BaseException | None = None
        adm.started = True
        try:
            result = await self._runner(adm.task, manual=adm.manual)
        except asyncio.CancelledError:
            if not adm.handle.done():
                adm.handle.cancel()
            raise
        except Exception as exc:
            error = exc
        finally:
            if self._holding.get(adm.task.id) is adm:
                del self._holding[adm.task.id]

        if adm.handle.done():
            return
        if error is None:
            adm.handle.set_result(result)
        elif adm.manual:
            adm.handle.set_exception(error)
        else:
            # Scheduled handles are never awaited.
            logger.error("Scheduled run for task %s raised: %s", adm.task.id, error)
            adm.handle.set_result(None)

    def _on_job_done(self, adm: _Admission) -> None:
        # A job cancelled before its first step never reached the runner, so
        # nothing else gives its slot back.
        if adm.started:
            return
        if self._holding.get(adm.task.id) is adm:
            del self._holding[adm.task.id]
        if not adm.handle.done():
            adm.handle.cancel()
        logger.warning("Run for task %s cancelled before it started", adm.task.id)
        self.release()
