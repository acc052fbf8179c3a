# src/taskpulse/core/state.py

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from ..tasks.engine import ExecutionEngine
from ..tasks.gate import ConcurrencyGate
from ..tasks.task_api import TaskService
from ..tasks.task_scheduler import SchedulerLoop
from ..tasks.task_store import TaskStore


@dataclass
class AppState:
    """
    Everything the process runs on, built once by the composition root and
    passed explicitly to the HTTP layer and the scheduler.
    """

    settings: Any

    store: TaskStore
    sink: Any  # NotificationSink with optional send_test()/aclose()
    gate: ConcurrencyGate
    engine: ExecutionEngine
    scheduler: SchedulerLoop
    service: TaskService
