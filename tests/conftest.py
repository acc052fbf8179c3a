# tests/conftest.py

from __future__ import annotations

from pathlib import Path
from types import SimpleNamespace

import pytest

from taskpulse.tasks.task_api import TaskService
from taskpulse.tasks.task_store import TaskStore


@pytest.fixture()
def settings(tmp_path: Path) -> SimpleNamespace:
    """
    Minimal settings object compatible with the composition root.

    We intentionally use a SimpleNamespace rather than importing real config,
    to keep unit tests isolated and deterministic.
    """
    return SimpleNamespace(
        app_name="taskpulse-test",
        environment="test",
        # Paths (tmp per test run)
        data_dir=tmp_path,
        tasks_db_path=tmp_path / "tasks.sqlite3",
        # Engine
        max_concurrent_tasks=2,
        scheduler_interval_seconds=0.01,
        scheduler_batch_limit=10,
        task_simulation_delay_ms=0,
        work_unit_timeout_seconds=0,
        stale_execution_seconds=60.0,
        # Webhook
        webhook_url=None,
        webhook_retry_attempts=1,
        webhook_timeout_seconds=1.0,
        webhook_backoff_seconds=0.0,
    )


@pytest.fixture()
def store(settings: SimpleNamespace) -> TaskStore:
    """Real SQLite store: its conditional updates are part of what we test."""
    return TaskStore(settings.tasks_db_path)


@pytest.fixture()
def service(store: TaskStore) -> TaskService:
    return TaskService(store)
