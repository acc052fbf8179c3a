# src/taskpulse/config.py

"""Centralized settings loaded from environment variables (+ optional .env).

One Settings object for the whole app; nothing secret is required at import time.
The scheduler, gate and engine never read the environment themselves: they get
their numbers from Settings through the composition root.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

ENV_PREFIX = "TASKPULSE"


def _k(suffix: str) -> str:
    """Build env var name with the project prefix."""
    return f"{ENV_PREFIX}_{suffix}"


def _load_dotenv_if_available() -> None:
    """Load .env locally if python-dotenv is installed. Safe no-op otherwise."""
    try:
        from dotenv import load_dotenv  # type: ignore
    except ImportError:
        return
    load_dotenv(override=False)


_load_dotenv_if_available()


def _env(name: str, default: str = "") -> str:
    v = os.getenv(name)
    return default if v is None else v


def _first_env(*names: str, default: str | None = None) -> str | None:
    for n in names:
        v = os.getenv(n)
        if v is not None and v.strip() != "":
            return v
    return default


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_path(name: str, default: Path) -> Path:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return Path(raw).expanduser()


@dataclass(frozen=True, slots=True)
class Settings:
    # ---- App / logging ----
    app_name: str
    log_level: str
    environment: str

    # ---- Local data paths (ignored by git) ----
    data_dir: Path
    tasks_db_path: Path

    # ---- Engine ----
    max_concurrent_tasks: int
    scheduler_interval_seconds: float
    scheduler_batch_limit: int
    task_simulation_delay_ms: int
    work_unit_timeout_seconds: float
    stale_execution_seconds: float

    # ---- Webhook ----
    webhook_url: Optional[str]
    webhook_retry_attempts: int
    webhook_timeout_seconds: float
    webhook_backoff_seconds: float

    # ---- HTTP ----
    http_host: str
    http_port: int

    @staticmethod
    def from_env() -> "Settings":
        app_name = _env(_k("APP_NAME"), "taskpulse") or "taskpulse"
        log_level = _env(_k("LOG_LEVEL"), "INFO")
        environment = _first_env(_k("ENVIRONMENT"), "NODE_ENV", default="development") or "development"

        data_dir = _env_path(_k("DATA_DIR"), Path(".local/taskpulse"))
        tasks_db_path = _env_path(_k("TASKS_DB_PATH"), data_dir / "tasks.sqlite3")

        max_concurrent_tasks = _env_int(
            _k("MAX_CONCURRENT_TASKS"),
            _env_int("MAX_CONCURRENT_TASKS", 5),
        )
        scheduler_interval_seconds = _env_float(_k("SCHEDULER_INTERVAL_SECONDS"), 60.0)
        scheduler_batch_limit = _env_int(_k("SCHEDULER_BATCH_LIMIT"), 100)
        task_simulation_delay_ms = _env_int(
            _k("TASK_SIMULATION_DELAY_MS"),
            _env_int("TASK_SIMULATION_DELAY_MS", 3000),
        )
        work_unit_timeout_seconds = _env_float(_k("WORK_UNIT_TIMEOUT_SECONDS"), 300.0)
        stale_execution_seconds = _env_float(_k("STALE_EXECUTION_SECONDS"), 3600.0)

        webhook_url = (_first_env(_k("WEBHOOK_URL"), "WEBHOOK_URL", default="") or "").strip() or None
        webhook_retry_attempts = _env_int(
            _k("WEBHOOK_RETRY_ATTEMPTS"),
            _env_int("WEBHOOK_RETRY_ATTEMPTS", 3),
        )
        webhook_timeout_seconds = _env_float(_k("WEBHOOK_TIMEOUT_SECONDS"), 10.0)
        webhook_backoff_seconds = _env_float(_k("WEBHOOK_BACKOFF_SECONDS"), 1.0)

        http_host = _env(_k("HTTP_HOST"), "127.0.0.1")
        http_port = _env_int(_k("HTTP_PORT"), _env_int("PORT", 5000))

        return Settings(
            app_name=app_name,
            log_level=log_level,
            environment=environment,
            data_dir=data_dir,
            tasks_db_path=tasks_db_path,
            max_concurrent_tasks=max(1, max_concurrent_tasks),
            scheduler_interval_seconds=max(0.01, scheduler_interval_seconds),
            scheduler_batch_limit=max(1, scheduler_batch_limit),
            task_simulation_delay_ms=max(0, task_simulation_delay_ms),
            work_unit_timeout_seconds=max(0.0, work_unit_timeout_seconds),
            stale_execution_seconds=max(0.0, stale_execution_seconds),
            webhook_url=webhook_url,
            webhook_retry_attempts=max(1, webhook_retry_attempts),
            webhook_timeout_seconds=max(0.1, webhook_timeout_seconds),
            webhook_backoff_seconds=max(0.0, webhook_backoff_seconds),
            http_host=http_host,
            http_port=http_port,
        )

    def public_dict(self) -> dict[str, Any]:
        """Non-sensitive subset for the system config endpoint."""
        return {
            "taskSimulationDelay": self.task_simulation_delay_ms,
            "maxConcurrentTasks": self.max_concurrent_tasks,
            "schedulerIntervalSeconds": self.scheduler_interval_seconds,
            "webhookConfigured": bool(self.webhook_url),
            "webhookRetryAttempts": self.webhook_retry_attempts,
            "environment": self.environment,
        }


_SETTINGS: Settings | None = None


def get_settings() -> Settings:
    global _SETTINGS
    if _SETTINGS is None:
        _SETTINGS = Settings.from_env()
    return _SETTINGS
