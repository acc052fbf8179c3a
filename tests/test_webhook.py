# tests/test_webhook.py

from __future__ import annotations

import json

import httpx
import pytest

from taskpulse.notify.webhook import LoggingNotificationSink, WebhookNotificationSink
from taskpulse.tasks.task_models import TaskState
from taskpulse.tasks.task_store import TaskStore

from .fakes import make_task

URL = "https://hooks.example.com/taskpulse"


def _sink(handler, **kw) -> tuple[WebhookNotificationSink, httpx.AsyncClient]:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return WebhookNotificationSink(URL, client=client, backoff_seconds=0, **kw), client


@pytest.mark.asyncio
async def test_delivery_posts_completed_event_and_audits(store: TaskStore) -> None:
    requests: list[dict] = []

    async def handler(request: httpx.Request) -> httpx.Response:
        requests.append(json.loads(request.content.decode()))
        return httpx.Response(200, json={"received": True})

    task = store.create(label="report", payload={"k": "v"})
    task = store.update_state(task.id, TaskState.COMPLETED)
    sink, client = _sink(handler, store=store)

    result = await sink.deliver(task)
    await client.aclose()

    assert result.success
    assert result.status_code == 200
    assert result.attempts == 1
    assert result.body == {"received": True}

    assert len(requests) == 1
    event = requests[0]
    assert event["event"] == "task.completed"
    assert event["task"]["id"] == task.id
    assert event["task"]["status"] == "completed"
    assert event["timestamp"].endswith("Z")

    logs = store.list_webhook_logs(task_id=task.id)
    assert len(logs) == 1
    assert logs[0].success is True
    assert logs[0].status_code == 200
    assert logs[0].url == URL


@pytest.mark.asyncio
async def test_server_error_is_retried() -> None:
    statuses = iter([500, 200])
    calls = 0

    async def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        return httpx.Response(next(statuses), json={})

    sink, client = _sink(handler, retry_attempts=3)
    result = await sink.deliver(make_task())
    await client.aclose()

    assert result.success
    assert result.attempts == 2
    assert calls == 2


@pytest.mark.asyncio
async def test_exhausted_retries_report_failure_without_raising(store: TaskStore) -> None:
    calls = 0

    async def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        return httpx.Response(503, text="unavailable")

    task = store.create(label="x", payload={})
    sink, client = _sink(handler, retry_attempts=3, store=store)
    result = await sink.deliver(task)
    await client.aclose()

    assert result.success is False
    assert result.status_code == 503
    assert result.attempts == 3
    assert "503" in result.error
    assert calls == 3

    logs = store.list_webhook_logs(task_id=task.id)
    assert len(logs) == 1
    assert logs[0].success is False


@pytest.mark.asyncio
async def test_transport_error_is_a_failed_delivery() -> None:
    async def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    sink, client = _sink(handler, retry_attempts=2)
    result = await sink.deliver(make_task())
    await client.aclose()

    assert result.success is False
    assert result.status_code is None
    assert result.attempts == 2
    assert "connection refused" in result.error


@pytest.mark.asyncio
async def test_send_test_makes_a_single_attempt(store: TaskStore) -> None:
    seen: list[dict] = []

    async def handler(request: httpx.Request) -> httpx.Response:
        seen.append(json.loads(request.content.decode()))
        return httpx.Response(500)

    sink, client = _sink(handler, retry_attempts=5, store=store)
    result = await sink.send_test({"hello": "world"})
    await client.aclose()

    assert result.success is False
    assert result.attempts == 1
    assert seen == [{"event": "webhook.test", "data": {"hello": "world"}, "timestamp": seen[0]["timestamp"]}]
    assert store.list_webhook_logs()[0].task_id is None


def test_webhook_sink_requires_url() -> None:
    with pytest.raises(ValueError):
        WebhookNotificationSink("")


@pytest.mark.asyncio
async def test_logging_sink() -> None:
    sink = LoggingNotificationSink()

    delivered = await sink.deliver(make_task())
    tested = await sink.send_test({})

    assert delivered.success
    assert delivered.attempts == 0
    assert tested.success is False
    assert "no webhook URL" in tested.error
