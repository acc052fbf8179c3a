# src/taskpulse/notify/webhook.py

from __future__ import annotations

"""
Outcome notifications.

Delivery is at-least-once and best-effort: failed attempts are retried a few
times, the final outcome is returned (and audited when a store is given), and
nothing is ever raised to the engine.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Optional

import httpx

from ..core.errors import WebhookDeliveryError
from ..tasks.task_models import DeliveryResult, Task

logger = logging.getLogger(__name__)

USER_AGENT = "taskpulse-webhook/1.0"


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def _response_body(resp: httpx.Response) -> Any:
    try:
        return resp.json()
    except ValueError:
        text = resp.text
        return text[:2000] if text else None


def build_event(task: Task, event: str = "task.completed") -> dict[str, Any]:
    return {
        "event": event,
        "task": task.to_dict(),
        "timestamp": _utc_now_iso(),
    }


class LoggingNotificationSink:
    """Used when no webhook URL is configured: log the event and report success."""

    async def deliver(self, task: Task) -> DeliveryResult:
        logger.info("Task %s (%s) finished with status=%s", task.label, task.id, task.state.value)
        return DeliveryResult(success=True, attempts=0)

    async def send_test(self, payload: dict[str, Any]) -> DeliveryResult:
        logger.info("Webhook test requested but no webhook URL is configured")
        return DeliveryResult(success=False, error="no webhook URL configured", attempts=0)

    async def aclose(self) -> None:
        return


class WebhookNotificationSink:
    """POST a JSON event to a configured URL using httpx."""

    def __init__(
        self,
        url: str,
        *,
        client: Optional[httpx.AsyncClient] = None,
        retry_attempts: int = 3,
        timeout_seconds: float = 10.0,
        backoff_seconds: float = 1.0,
        store: Any = None,
    ) -> None:
        if not url:
            raise ValueError("webhook url is required")
        self.url = url
        self.retry_attempts = max(1, int(retry_attempts))
        self.backoff_seconds = max(0.0, float(backoff_seconds))
        self._store = store
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(float(timeout_seconds)),
            headers={"User-Agent": USER_AGENT},
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    async def deliver(self, task: Task) -> DeliveryResult:
        payload = build_event(task)
        result = await self._post_with_retries(payload)
        self._audit(task.id, payload, result)
        if result.success:
            logger.info("Webhook delivered for task %s status=%s", task.id, result.status_code)
        return result

    async def send_test(self, payload: dict[str, Any]) -> DeliveryResult:
        """Deliver an arbitrary payload once (no task involved)."""
        event = {"event": "webhook.test", "data": payload, "timestamp": _utc_now_iso()}
        result = await self._post_with_retries(event, attempts=1)
        self._audit(None, event, result)
        return result

    async def _post_once(self, payload: dict[str, Any]) -> DeliveryResult:
        try:
            resp = await self.client.post(self.url, json=payload)
        except httpx.HTTPError as exc:
            raise WebhookDeliveryError(self.url, str(exc) or exc.__class__.__name__) from exc

        body = _response_body(resp)
        if resp.is_success:
            return DeliveryResult(success=True, status_code=resp.status_code, body=body)
        raise WebhookDeliveryError(self.url, f"HTTP {resp.status_code}", status_code=resp.status_code)

    async def _post_with_retries(self, payload: dict[str, Any], *, attempts: int | None = None) -> DeliveryResult:
        max_attempts = self.retry_attempts if attempts is None else max(1, int(attempts))
        last_error: WebhookDeliveryError | None = None

        for attempt in range(1, max_attempts + 1):
            try:
                ok = await self._post_once(payload)
                return DeliveryResult(
                    success=True,
                    status_code=ok.status_code,
                    body=ok.body,
                    attempts=attempt,
                )
            except WebhookDeliveryError as exc:
                last_error = exc
                logger.warning(
                    "Webhook attempt %s/%s failed: %s",
                    attempt,
                    max_attempts,
                    exc.message,
                )
            if attempt < max_attempts and self.backoff_seconds > 0:
                await asyncio.sleep(self.backoff_seconds * attempt)

        assert last_error is not None
        return DeliveryResult(
            success=False,
            status_code=last_error.response_status,
            error=last_error.message,
            attempts=max_attempts,
        )

    def _audit(self, task_id: str | None, payload: dict[str, Any], result: DeliveryResult) -> None:
        if self._store is None:
            return
        try:
            self._store.log_webhook_delivery(
                task_id=task_id,
                url=self.url,
                payload=payload,
                status_code=result.status_code,
                body=result.body if result.success else {"error": result.error},
                success=result.success,
            )
        except Exception:
            logger.exception("Failed to log webhook delivery task_id=%s", task_id)
