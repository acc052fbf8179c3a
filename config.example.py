# config.example.py

"""
Documentation-only module (safe to commit).

The real configuration is loaded from environment variables (optionally via a local .env file).
Do NOT commit real webhook URLs that embed tokens. Use .env (local, gitignored).

This file exists to make the repo self-documenting even without opening .env.
"""

ENV_VARS = {
    # App / logging
    "TASKPULSE_APP_NAME": "App display name (default: taskpulse).",
    "TASKPULSE_LOG_LEVEL": "Console logging level (default: INFO). The log file always gets DEBUG.",
    "TASKPULSE_ENVIRONMENT": "Reported by /api/v1/info (default: development).",
    # Paths (gitignored)
    "TASKPULSE_DATA_DIR": "Local data directory, also holds taskpulse.log (default: .local/taskpulse).",
    "TASKPULSE_TASKS_DB_PATH": "TaskStore SQLite path (default: <data_dir>/tasks.sqlite3).",
    # Engine
    "TASKPULSE_MAX_CONCURRENT_TASKS": "Global ceiling on simultaneous runs (default: 5, min 1).",
    "TASKPULSE_SCHEDULER_INTERVAL_SECONDS": "Seconds between scheduler ticks (default: 60).",
    "TASKPULSE_SCHEDULER_BATCH_LIMIT": "Max due tasks fetched per tick (default: 100).",
    "TASKPULSE_TASK_SIMULATION_DELAY_MS": "Delay of the built-in simulated work unit (default: 3000).",
    "TASKPULSE_WORK_UNIT_TIMEOUT_SECONDS": "Deadline of the built-in work unit; 0 disables (default: 300).",
    "TASKPULSE_STALE_EXECUTION_SECONDS": (
        "A task still 'processing' this long after its run started is failed as "
        "'interrupted' at start-up (default: 3600)."
    ),
    # Webhook
    "TASKPULSE_WEBHOOK_URL": "Completion webhook URL (empty => notifications are only logged).",
    "TASKPULSE_WEBHOOK_RETRY_ATTEMPTS": "Delivery attempts per notification (default: 3).",
    "TASKPULSE_WEBHOOK_TIMEOUT_SECONDS": "Per-attempt HTTP timeout (default: 10).",
    "TASKPULSE_WEBHOOK_BACKOFF_SECONDS": "Linear backoff step between attempts (default: 1).",
    # HTTP
    "TASKPULSE_HTTP_HOST": "Bind address (default: 127.0.0.1).",
    "TASKPULSE_HTTP_PORT": "Bind port (default: 5000, falls back to PORT).",
}
