# tests/test_config.py

from __future__ import annotations

import logging
from pathlib import Path

import pytest

from taskpulse.config import Settings
from taskpulse.logging_setup import _ConsoleNoiseFilter


@pytest.fixture()
def clean_env(monkeypatch: pytest.MonkeyPatch) -> pytest.MonkeyPatch:
    for name in (
        "TASKPULSE_MAX_CONCURRENT_TASKS",
        "MAX_CONCURRENT_TASKS",
        "TASKPULSE_WEBHOOK_URL",
        "WEBHOOK_URL",
        "TASKPULSE_DATA_DIR",
        "TASKPULSE_TASKS_DB_PATH",
        "TASKPULSE_HTTP_PORT",
        "PORT",
        "TASKPULSE_ENVIRONMENT",
        "NODE_ENV",
    ):
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


def test_defaults(clean_env: pytest.MonkeyPatch) -> None:
    s = Settings.from_env()

    assert s.max_concurrent_tasks == 5
    assert s.webhook_url is None
    assert s.http_port == 5000
    assert s.environment == "development"
    assert s.tasks_db_path == s.data_dir / "tasks.sqlite3"


def test_prefixed_variables_win(clean_env: pytest.MonkeyPatch, tmp_path: Path) -> None:
    clean_env.setenv("MAX_CONCURRENT_TASKS", "7")
    clean_env.setenv("TASKPULSE_MAX_CONCURRENT_TASKS", "3")
    clean_env.setenv("TASKPULSE_WEBHOOK_URL", "  https://hooks.example/x  ")
    clean_env.setenv("TASKPULSE_DATA_DIR", str(tmp_path))
    clean_env.setenv("PORT", "8080")

    s = Settings.from_env()

    assert s.max_concurrent_tasks == 3
    assert s.webhook_url == "https://hooks.example/x"
    assert s.tasks_db_path == tmp_path / "tasks.sqlite3"
    assert s.http_port == 8080
    assert s.public_dict()["webhookConfigured"] is True


def test_invalid_numbers_fall_back_and_are_clamped(clean_env: pytest.MonkeyPatch) -> None:
    clean_env.setenv("TASKPULSE_MAX_CONCURRENT_TASKS", "0")
    clean_env.setenv("TASKPULSE_SCHEDULER_INTERVAL_SECONDS", "soon")

    s = Settings.from_env()

    assert s.max_concurrent_tasks == 1
    assert s.scheduler_interval_seconds == 60.0


@pytest.mark.parametrize(
    ("name", "level", "shown"),
    [
        ("taskpulse.tasks.engine", logging.DEBUG, True),
        ("uvicorn.access", logging.INFO, False),
        ("uvicorn.error", logging.INFO, True),
        ("httpx", logging.INFO, False),
        ("httpx", logging.WARNING, True),
        ("somelib", logging.WARNING, False),
        ("somelib", logging.ERROR, True),
    ],
)
def test_console_noise_filter(name: str, level: int, shown: bool) -> None:
    record = logging.LogRecord(name, level, __file__, 1, "msg", None, None)
    assert _ConsoleNoiseFilter().filter(record) is shown
