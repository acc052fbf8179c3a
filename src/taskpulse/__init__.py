"""taskpulse: run tasks now or on a cron schedule under a global concurrency ceiling."""

__version__ = "0.1.0"
