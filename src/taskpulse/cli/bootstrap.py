# src/taskpulse/cli/bootstrap.py

"""
CLI bootstrap helpers.

This module is the "composition root":
- loads settings once,
- ensures local (gitignored) directories exist,
- wires concrete implementations (store, webhook sink, work unit) into the
  gate, engine and scheduler, and returns them as one AppState,
- runs the start-up reconciliation pass for runs interrupted by a crash.
"""

from __future__ import annotations

import logging
from typing import Any

from ..config import get_settings
from ..core.ports import NotificationSink, WorkUnit
from ..core.state import AppState
from ..notify.webhook import LoggingNotificationSink, WebhookNotificationSink
from ..tasks.engine import ExecutionEngine, SimulatedWorkUnit
from ..tasks.gate import ConcurrencyGate
from ..tasks.task_api import TaskService
from ..tasks.task_scheduler import SchedulerLoop
from ..tasks.task_store import TaskStore

logger = logging.getLogger(__name__)


def _ensure_local_dirs(settings) -> None:
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    settings.tasks_db_path.parent.mkdir(parents=True, exist_ok=True)


def build_sink(settings, store: TaskStore) -> Any:
    if not settings.webhook_url:
        logger.info("No webhook URL configured; notifications are logged only")
        return LoggingNotificationSink()
    return WebhookNotificationSink(
        settings.webhook_url,
        retry_attempts=settings.webhook_retry_attempts,
        timeout_seconds=settings.webhook_timeout_seconds,
        backoff_seconds=settings.webhook_backoff_seconds,
        store=store,
    )


def create_initial_state(
    *,
    settings=None,
    sink: NotificationSink | None = None,
    work_unit: WorkUnit | None = None,
) -> AppState:
    """
    Create AppState from the provided settings.

    Keeping settings injectable makes the app easier to test and avoids hidden
    global config reads. If settings is None, falls back to get_settings().
    """
    if settings is None:
        settings = get_settings()

    _ensure_local_dirs(settings)

    store = TaskStore(settings.tasks_db_path)
    if sink is None:
        sink = build_sink(settings, store)
    if work_unit is None:
        work_unit = SimulatedWorkUnit(
            delay_seconds=settings.task_simulation_delay_ms / 1000.0,
            timeout_seconds=settings.work_unit_timeout_seconds,
        )

    gate = ConcurrencyGate(settings.max_concurrent_tasks)
    engine = ExecutionEngine(store, gate, sink, work_unit)
    gate.bind(engine.run)

    scheduler = SchedulerLoop(
        store,
        gate,
        interval_seconds=settings.scheduler_interval_seconds,
        batch_limit=settings.scheduler_batch_limit,
    )

    return AppState(
        settings=settings,
        store=store,
        sink=sink,
        gate=gate,
        engine=engine,
        scheduler=scheduler,
        service=TaskService(store),
    )


def reconcile_on_startup(state: AppState) -> int:
    """Fail runs left 'processing' by a previous process. Returns the count."""
    n = state.engine.reconcile_interrupted(state.settings.stale_execution_seconds)
    if n:
        logger.warning("Reconciled %d interrupted task(s) from a previous run", n)
    return n
