from __future__ import annotations

import asyncio
import json

import allure
import httpx
import pytest

from assist_router.backend.devserver import DevserverDispatcher
from assist_router.errors import (
    DevserverPollTimeout,
    DevserverSubmitError,
    DevserverTaskFailed,
    HTTPStatusError,
    RunCancelled,
)
from assist_router.models import (
    DevserverTask,
    DevserverTaskStatus,
    ProviderDescriptor,
    RunOptions,
    TokenUsage,
)
from assist_router.pricing import PER_1M, Pricing

pytestmark = [
    allure.epic("Provider Runtime"),
    allure.feature("Devserver Dispatcher"),
]

DEVSERVER_URL = "http://devserver.test:3000"


class _FakeDevserver:
    """Answers submit with ``task_id`` and polls from a scripted status list."""

    def __init__(self, statuses: list[dict], *, task_id: str = "t1") -> None:
        self.statuses = statuses
        self.task_id = task_id
        self.submitted: list[dict] = []
        self.polls = 0

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if request.method == "POST" and request.url.path == "/api/run":
            self.submitted.append(json.loads(request.content))
            return httpx.Response(200, json={"taskId": self.task_id})
        if request.method == "GET" and request.url.path == f"/api/task/{self.task_id}":
            index = min(self.polls, len(self.statuses) - 1)
            self.polls += 1
            return httpx.Response(200, json=self.statuses[index])
        return httpx.Response(404)


class _Clock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def _dispatcher(handler, *, clock=None, **kwargs) -> DevserverDispatcher:
    clock = clock or _Clock()

    async def _sleep(seconds: float, cancel_event) -> None:
        clock.now += seconds

    descriptor = kwargs.pop(
        "descriptor",
        ProviderDescriptor(name="claude", kind="devserver", devserver_url=DEVSERVER_URL + "/"),
    )
    return DevserverDispatcher(
        descriptor,
        transport=httpx.MockTransport(handler),
        sleep=kwargs.pop("sleep", _sleep),
        clock=clock,
        **kwargs,
    )


def test_running_then_completed_returns_result() -> None:
    server = _FakeDevserver(
        [
            {"status": "running"},
            {
                "status": "completed",
                "result": {
                    "raw": '{"summary": "Done"}',
                    "parsed": {"summary": "Done"},
                    "exitCode": 0,
                    "tokenUsage": {"input": 1000, "output": 1000},
                },
            },
        ],
    )
    descriptor = ProviderDescriptor(
        name="claude",
        kind="devserver",
        devserver_url=DEVSERVER_URL,
        pricing=Pricing(input=10.0, output=40.0, unit=PER_1M),
    )

    result = asyncio.run(
        _dispatcher(server, descriptor=descriptor).run(
            "review",
            RunOptions(sandbox="read-only", timeout_ms=5000),
        ),
    )

    assert server.polls == 2
    assert result.exit_code == 0
    assert result.parsed == {"summary": "Done"}
    assert result.token_usage == TokenUsage(input=1000, output=1000)
    assert result.cost == pytest.approx(0.05)
    assert result.provider == "claude"
    assert server.submitted == [
        {
            "provider": "claude",
            "prompt": "review",
            "opts": {"sandbox": "read-only", "timeout": 5000},
        },
    ]


def test_poll_counts_and_status_are_tracked() -> None:
    server = _FakeDevserver(
        [
            {"status": "queued"},
            {"status": "running"},
            {"status": "completed", "result": {"raw": "ok", "exitCode": 0}},
        ],
    )

    async def _scenario() -> DevserverTask:
        dispatcher = _dispatcher(server)
        async with httpx.AsyncClient(transport=httpx.MockTransport(server)) as client:
            task = await dispatcher.submit(client, "hi", RunOptions())
            assert task.status is DevserverTaskStatus.QUEUED
            await dispatcher.poll(client, task, RunOptions())
            return task

    task = asyncio.run(_scenario())

    assert task.task_id == "t1"
    assert task.polls == 3
    assert task.status is DevserverTaskStatus.COMPLETED
    assert task.result is not None
    assert task.result.raw == "ok"


def test_never_finishing_task_times_out() -> None:
    server = _FakeDevserver([{"status": "running"}])
    dispatcher = _dispatcher(server, poll_interval_ms=1000, max_poll_time_ms=5000)

    with pytest.raises(DevserverPollTimeout, match="timeout after 5000ms") as caught:
        asyncio.run(dispatcher.run("hi", RunOptions()))

    assert caught.value.task_id == "t1"
    assert caught.value.transient is True
    assert server.polls == 6


def test_failed_task_raises_with_server_error() -> None:
    server = _FakeDevserver([{"status": "failed", "error": "tool crashed"}])

    with pytest.raises(DevserverTaskFailed, match="tool crashed") as caught:
        asyncio.run(_dispatcher(server).run("hi", RunOptions()))

    assert caught.value.task_id == "t1"


def test_failed_task_without_message_uses_default() -> None:
    server = _FakeDevserver([{"status": "failed"}])

    with pytest.raises(DevserverTaskFailed, match="Devserver task failed"):
        asyncio.run(_dispatcher(server).run("hi", RunOptions()))


@pytest.mark.parametrize(
    ("response", "message"),
    [
        (httpx.Response(503), "HTTP 503"),
        (httpx.Response(200, json={"accepted": True}), "no taskId"),
        (httpx.Response(200, text="not json"), "no taskId"),
    ],
)
def test_submit_failures_are_fatal(response: httpx.Response, message: str) -> None:
    calls: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request.method)
        return response

    with pytest.raises(DevserverSubmitError, match=message):
        asyncio.run(_dispatcher(handler).run("hi", RunOptions()))

    assert calls == ["POST"]


def test_submit_network_error_is_transient() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(DevserverSubmitError) as caught:
        asyncio.run(_dispatcher(handler).run("hi", RunOptions()))

    assert caught.value.transient is True


def test_poll_http_error_status_is_raised() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "POST":
            return httpx.Response(200, json={"taskId": "t9"})
        return httpx.Response(404)

    with pytest.raises(HTTPStatusError, match="t9") as caught:
        asyncio.run(_dispatcher(handler).run("hi", RunOptions()))

    assert caught.value.status_code == 404
    assert caught.value.transient is False


def test_cancellation_stops_polling() -> None:
    server = _FakeDevserver([{"status": "running"}])

    async def _scenario() -> None:
        cancel = asyncio.Event()
        dispatcher = DevserverDispatcher(
            ProviderDescriptor(name="claude", kind="devserver", devserver_url=DEVSERVER_URL),
            poll_interval_ms=10_000,
            transport=httpx.MockTransport(server),
        )
        asyncio.get_running_loop().call_later(0.05, cancel.set)
        await dispatcher.run("hi", RunOptions(cancel_event=cancel))

    with pytest.raises(RunCancelled):
        asyncio.run(_scenario())

    assert server.polls == 1
