# src/taskpulse/tasks/cron.py

"""
Cron pattern evaluation.

Only standard five-field expressions (minute hour day-of-month month day-of-week)
are accepted. Evaluation is done in UTC by croniter.
"""

from __future__ import annotations

from datetime import datetime, timezone

from croniter import croniter

from ..core.errors import ValidationError

CRON_FIELDS = 5


def validate_pattern(pattern: str | None) -> str:
    """Return the normalized pattern or raise ValidationError."""
    if not isinstance(pattern, str) or not pattern.strip():
        raise ValidationError("schedulePattern", "Pattern must be a non-empty string")

    parts = pattern.split()
    if len(parts) != CRON_FIELDS:
        raise ValidationError(
            "schedulePattern",
            "Invalid cron pattern (format: minute hour day month weekday)",
        )

    normalized = " ".join(parts)
    if not croniter.is_valid(normalized):
        raise ValidationError("schedulePattern", f"Invalid cron pattern: {normalized!r}")
    return normalized


def next_run_after(pattern: str, from_ts: float) -> float:
    """Next instant strictly after from_ts that satisfies pattern (epoch seconds)."""
    start = datetime.fromtimestamp(float(from_ts), tz=timezone.utc)
    nxt = croniter(validate_pattern(pattern), start).get_next(datetime)
    ts = nxt.timestamp()
    # croniter works at minute resolution; guard the "strictly after" contract.
    if ts <= from_ts:
        ts = croniter(pattern, nxt).get_next(datetime).timestamp()
    return ts
