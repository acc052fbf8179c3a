# src/taskpulse/cli/main.py

"""
CLI entrypoint.

Initializes logging, builds AppState, reconciles runs interrupted by a previous
crash, then serves the HTTP API with the scheduler loop running on the same
event loop.
"""

from __future__ import annotations

import logging

import uvicorn

from ..api.app import create_app
from ..cli.bootstrap import create_initial_state, reconcile_on_startup
from ..config import get_settings
from ..logging_setup import setup_logging

logger = logging.getLogger(__name__)


def main() -> None:
    settings = get_settings()

    level_name = str(getattr(settings, "log_level", "INFO")).upper()
    console_level = getattr(logging, level_name, logging.INFO)

    log_dir = getattr(settings, "data_dir", ".local/taskpulse")
    setup_logging(log_dir=log_dir, console_level=console_level)

    logger.info("Starting %s...", getattr(settings, "app_name", "taskpulse"))

    # IMPORTANT: reuse same settings object
    state = create_initial_state(settings=settings)
    reconcile_on_startup(state)

    app = create_app(state, start_scheduler=True)

    logger.info(
        "Serving on http://%s:%s (max_concurrent=%s interval=%.3gs)",
        settings.http_host,
        settings.http_port,
        settings.max_concurrent_tasks,
        settings.scheduler_interval_seconds,
    )
    try:
        uvicorn.run(
            app,
            host=settings.http_host,
            port=settings.http_port,
            log_config=None,
        )
    finally:
        state.store.close()
        logger.info("Bye.")


if __name__ == "__main__":
    main()
