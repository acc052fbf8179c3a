# tests/test_task_scheduler.py

from __future__ import annotations

import asyncio
import time

import pytest

from taskpulse.core.errors import CapacityExceededError, StoreUnavailableError, TaskNotFoundError
from taskpulse.tasks.engine import ExecutionEngine
from taskpulse.tasks.gate import ConcurrencyGate
from taskpulse.tasks.task_models import Task, TaskState
from taskpulse.tasks.task_scheduler import SchedulerLoop
from taskpulse.tasks.task_store import TaskStore

from .fakes import BlockingRunner, ControlledWorkUnit, RecordingSink, make_task, settle


class FakeTaskRepo:
    """
    In-memory repo used for scheduler unit tests.

    Only the due query matters to the loop itself; execution is replaced by a
    BlockingRunner bound to the gate.
    """

    def __init__(self, tasks: list[Task]) -> None:
        self.tasks = {t.id: t for t in tasks}
        self.due_calls = 0

    def find_due_recurring(self, now_ts: float, *, limit: int = 100) -> list[Task]:
        self.due_calls += 1
        out = [
            t
            for t in self.tasks.values()
            if t.is_recurring
            and t.next_run_at is not None
            and t.next_run_at <= now_ts
            and t.state in (TaskState.QUEUED, TaskState.COMPLETED)
        ]
        out.sort(key=lambda t: t.next_run_at)
        return out[:limit]

    def find_by_id(self, task_id: str) -> Task | None:
        return self.tasks.get(task_id)


class BrokenTaskRepo(FakeTaskRepo):
    def find_due_recurring(self, now_ts: float, *, limit: int = 100) -> list[Task]:
        self.due_calls += 1
        raise StoreUnavailableError("find_due_recurring", "disk I/O error")


def _recurring(task_id: str, next_run_at: float, **kw) -> Task:
    return make_task(task_id, schedule_pattern="* * * * *", next_run_at=next_run_at, **kw)


@pytest.mark.asyncio
async def test_tick_submits_only_due_recurring_tasks() -> None:
    now = time.time()
    repo = FakeTaskRepo(
        [
            _recurring("due", now - 5),
            _recurring("later", now + 600),
            _recurring("failed", now - 5, state=TaskState.FAILED),
            make_task("one-shot"),
        ]
    )
    gate = ConcurrencyGate(2)
    runner = BlockingRunner(gate)
    gate.bind(runner)
    loop = SchedulerLoop(repo, gate, interval_seconds=60)

    assert await loop.tick() == 1
    await settle()
    assert runner.started == ["due"]

    # Still held by the gate: a second tick does not start it again.
    assert await loop.tick() == 1
    await settle()
    assert runner.started == ["due"]

    runner.finish("due")
    await gate.wait_idle()


@pytest.mark.asyncio
async def test_failing_tick_is_absorbed_and_loop_keeps_going() -> None:
    repo = BrokenTaskRepo([])
    gate = ConcurrencyGate(1)
    gate.bind(BlockingRunner(gate))
    loop = SchedulerLoop(repo, gate, interval_seconds=0.01)

    assert await loop.tick() == 0

    loop.start()
    await asyncio.sleep(0.1)
    assert loop.is_running
    loop.stop()
    await loop.join()

    assert not loop.is_running
    assert repo.due_calls >= 3


@pytest.mark.asyncio
async def test_stop_lets_admitted_runs_finish() -> None:
    now = time.time()
    repo = FakeTaskRepo([_recurring("a", now - 1)])
    gate = ConcurrencyGate(1)
    runner = BlockingRunner(gate)
    gate.bind(runner)
    loop = SchedulerLoop(repo, gate, interval_seconds=0.01)

    loop.start()
    await asyncio.sleep(0.05)
    loop.stop()
    await loop.join()

    assert runner.started == ["a"]
    assert gate.active_count == 1

    runner.finish("a")
    await gate.wait_idle()
    assert gate.active_count == 0


@pytest.mark.asyncio
async def test_status_reports_gate_and_loop() -> None:
    repo = FakeTaskRepo([])
    gate = ConcurrencyGate(3)
    gate.bind(BlockingRunner(gate))
    loop = SchedulerLoop(repo, gate, interval_seconds=30)

    status = loop.status()
    assert status["isRunning"] is False
    assert status["ticks"] == 0
    assert status["lastTickAt"] is None
    assert status["maxConcurrentTasks"] == 3

    await loop.tick()
    status = loop.status()
    assert status["ticks"] == 1
    assert status["lastTickAt"].endswith("Z")
    assert status["totalQueuedTasks"] == 0


@pytest.mark.asyncio
async def test_manual_run_of_unknown_task() -> None:
    gate = ConcurrencyGate(1)
    gate.bind(BlockingRunner(gate))
    loop = SchedulerLoop(FakeTaskRepo([]), gate)

    with pytest.raises(TaskNotFoundError):
        loop.submit_manual("nope")


@pytest.mark.asyncio
async def test_manual_run_rejected_when_saturated_leaves_task_untouched(store: TaskStore) -> None:
    work = ControlledWorkUnit(block=True)
    gate = ConcurrencyGate(1)
    engine = ExecutionEngine(store, gate, RecordingSink(), work)
    gate.bind(engine.run)
    loop = SchedulerLoop(store, gate)

    busy = store.create(label="busy", payload={})
    waiting = store.create(label="waiting", payload={})
    running = gate.manual_submit(busy)
    await settle()

    with pytest.raises(CapacityExceededError):
        await loop.manual_execute(waiting.id)

    saved = store.find_by_id(waiting.id)
    assert saved.state == TaskState.QUEUED
    assert saved.attempts == 0
    assert store.list_execution_history(waiting.id) == []

    work.finish(busy.id)
    await running

    work.finish(waiting.id)
    result = await loop.manual_execute(waiting.id)
    assert result.ok
    assert store.find_by_id(waiting.id).state == TaskState.COMPLETED


@pytest.mark.asyncio
async def test_tick_over_capacity_queues_then_drains(store: TaskStore) -> None:
    work = ControlledWorkUnit(block=True)
    gate = ConcurrencyGate(2)
    engine = ExecutionEngine(store, gate, RecordingSink(), work)
    gate.bind(engine.run)
    loop = SchedulerLoop(store, gate)

    past = time.time() - 1
    tasks = [
        store.create(label=f"t{i}", payload={}, schedule_pattern="*/5 * * * *", next_run_at=past + i * 0.001)
        for i in range(3)
    ]

    assert await loop.tick() == 3
    await settle()

    assert gate.active_count == 2
    assert gate.queued_count == 1
    assert [t.id for t in work.calls] == [tasks[0].id, tasks[1].id]
    assert store.find_by_id(tasks[2].id).state == TaskState.QUEUED

    work.finish(tasks[0].id)
    await settle()
    assert [t.id for t in work.calls] == [t.id for t in tasks]
    assert gate.active_count == 2
    assert gate.queued_count == 0

    work.finish(tasks[1].id)
    work.finish(tasks[2].id)
    await gate.wait_idle()

    for task in tasks:
        saved = store.find_by_id(task.id)
        assert saved.state == TaskState.QUEUED
        assert saved.attempts == 1
        assert saved.next_run_at is not None and saved.next_run_at > time.time()

    # Nothing is due any more.
    assert await loop.tick() == 0
    assert work.max_in_flight == 2
