# src/taskpulse/core/errors.py

"""
Error taxonomy.

Every error carries the HTTP status and machine-readable code it maps to, so the
API layer can render any of them without a lookup table.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any


class TaskPulseError(Exception):
    status_code: int = 500
    error_code: str = "INTERNAL_ERROR"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message
        self.timestamp = datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": False,
            "error": {
                "code": self.error_code,
                "message": self.message,
                "timestamp": self.timestamp,
            },
        }


class TaskNotFoundError(TaskPulseError):
    status_code = 404
    error_code = "TASK_NOT_FOUND"

    def __init__(self, task_id: str) -> None:
        super().__init__(f"Task with ID '{task_id}' does not exist")
        self.task_id = task_id


class InvalidStateTransitionError(TaskPulseError):
    status_code = 400
    error_code = "INVALID_STATE_TRANSITION"

    def __init__(self, current_state: str, attempted_action: str, task_id: str | None = None) -> None:
        super().__init__(f"Cannot {attempted_action} task in '{current_state}' state")
        self.current_state = current_state
        self.attempted_action = attempted_action
        self.task_id = task_id


class ValidationError(TaskPulseError):
    status_code = 400
    error_code = "VALIDATION_ERROR"

    def __init__(self, field: str, message: str) -> None:
        super().__init__(f"Validation failed for '{field}': {message}")
        self.field = field


class ExecutionFailedError(TaskPulseError):
    status_code = 500
    error_code = "EXECUTION_FAILED"

    def __init__(self, task_id: str, reason: str) -> None:
        super().__init__(f"Task execution failed for '{task_id}': {reason}")
        self.task_id = task_id
        self.reason = reason


class CapacityExceededError(TaskPulseError):
    status_code = 429
    error_code = "CONCURRENCY_LIMIT_EXCEEDED"

    def __init__(self, current_count: int, limit: int) -> None:
        super().__init__(f"Maximum concurrent tasks limit reached ({current_count}/{limit})")
        self.current_count = current_count
        self.limit = limit


class StoreUnavailableError(TaskPulseError):
    status_code = 503
    error_code = "DB_OPERATION_FAILED"

    def __init__(self, operation: str, details: str) -> None:
        super().__init__(f"Database operation '{operation}' failed: {details}")
        self.operation = operation


class WebhookDeliveryError(TaskPulseError):
    status_code = 502
    error_code = "WEBHOOK_DELIVERY_FAILED"

    def __init__(self, url: str, reason: str, status_code: int | None = None) -> None:
        super().__init__(f"Webhook delivery to '{url}' failed: {reason}")
        self.url = url
        self.response_status = status_code
