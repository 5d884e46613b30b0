"""Submit-and-poll dispatcher for the asynchronous devserver backend."""

from __future__ import annotations

import logging
import time
from collections.abc import Awaitable, Callable, Mapping
from typing import Any

import httpx

from assist_router.backend.base import race_cancel, raise_if_cancelled, wait_or_cancel
from assist_router.config import (
    DEFAULT_API_REQUEST_TIMEOUT_SECONDS,
    DEFAULT_MAX_POLL_TIME_MS,
    DEFAULT_POLL_INTERVAL_MS,
)
from assist_router.errors import (
    DevserverPollTimeout,
    DevserverSubmitError,
    DevserverTaskFailed,
    HTTPStatusError,
    ProviderError,
)
from assist_router.models import (
    DevserverTask,
    DevserverTaskStatus,
    ProviderDescriptor,
    ProviderResult,
    RunOptions,
)
from assist_router.pricing import calculate_cost

logger = logging.getLogger(__name__)

RUN_PATH = "/api/run"
TASK_PATH = "/api/task/{task_id}"

SleepFn = Callable[[float, Any], Awaitable[None]]


class DevserverDispatcher:
    """Hand a request to a devserver and poll until the task settles.

    The server owns the `queued -> running -> completed|failed` lifecycle.
    The client adds its own `timeout` once ``max_poll_time_ms`` elapses,
    regardless of what the server would report next.
    """

    def __init__(  # noqa: PLR0913
        self,
        descriptor: ProviderDescriptor,
        *,
        poll_interval_ms: int = DEFAULT_POLL_INTERVAL_MS,
        max_poll_time_ms: int = DEFAULT_MAX_POLL_TIME_MS,
        request_timeout_seconds: float = DEFAULT_API_REQUEST_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: SleepFn | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if not descriptor.devserver_url:
            raise ValueError("Devserver dispatcher requires a devserver URL.")
        self._descriptor = descriptor
        self._base_url = descriptor.devserver_url.rstrip("/")
        self._poll_interval_ms = poll_interval_ms
        self._max_poll_time_ms = max_poll_time_ms
        self._timeout = httpx.Timeout(request_timeout_seconds, connect=10.0)
        self._transport = transport
        self._sleep = sleep or wait_or_cancel
        self._clock = clock

    async def run(self, prompt: str, options: RunOptions) -> ProviderResult:
        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            task = await self.submit(client, prompt, options)
            return await self.poll(client, task, options)

    async def submit(
        self,
        client: httpx.AsyncClient,
        prompt: str,
        options: RunOptions,
    ) -> DevserverTask:
        """POST the job. Any failure here is fatal: there is no task to poll."""

        url = f"{self._base_url}{RUN_PATH}"
        payload = {
            "provider": self._descriptor.name,
            "prompt": prompt,
            "opts": options.to_wire(),
        }
        try:
            response = await race_cancel(client.post(url, json=payload), options.cancel_event)
        except httpx.HTTPError as error:
            raise DevserverSubmitError(
                f"Devserver submit failed: {error}",
                transient=True,
            ) from error
        if not response.is_success:
            raise DevserverSubmitError(
                f"Devserver submit failed: HTTP {response.status_code}",
                transient=response.status_code >= 500,
            )
        body = _json_mapping(response)
        task_id = body.get("taskId") if body is not None else None
        if not task_id:
            raise DevserverSubmitError("Devserver submit response has no taskId.")
        logger.info("Devserver accepted task %s for %s", task_id, self._descriptor.name)
        return DevserverTask(task_id=str(task_id))

    async def poll(
        self,
        client: httpx.AsyncClient,
        task: DevserverTask,
        options: RunOptions,
    ) -> ProviderResult:
        """Poll `/api/task/{id}` at a fixed interval until a terminal status."""

        url = f"{self._base_url}{TASK_PATH.format(task_id=task.task_id)}"
        started_at = self._clock()
        deadline = started_at + self._max_poll_time_ms / 1000

        while True:
            raise_if_cancelled(options.cancel_event)
            if self._clock() > deadline:
                logger.warning(
                    "Devserver task %s still %s after %dms",
                    task.task_id,
                    task.status.value,
                    self._max_poll_time_ms,
                )
                task.status = DevserverTaskStatus.TIMEOUT
                raise DevserverPollTimeout(
                    f"Devserver task {task.task_id} timeout after {self._max_poll_time_ms}ms",
                    task_id=task.task_id,
                )

            try:
                response = await race_cancel(client.get(url), options.cancel_event)
            except httpx.HTTPError as error:
                raise ProviderError(
                    f"Devserver poll failed for task {task.task_id}: {error}",
                    transient=True,
                ) from error
            task.polls += 1
            if not response.is_success:
                raise HTTPStatusError(
                    f"Devserver poll failed for task {task.task_id}: HTTP {response.status_code}",
                    status_code=response.status_code,
                )
            body = _json_mapping(response) or {}
            status = str(body.get("status") or "")
            logger.debug("Devserver task %s poll %d: %s", task.task_id, task.polls, status)

            if status == DevserverTaskStatus.COMPLETED.value:
                task.status = DevserverTaskStatus.COMPLETED
                task.result = self._to_result(body.get("result"))
                return task.result
            if status == DevserverTaskStatus.FAILED.value:
                task.status = DevserverTaskStatus.FAILED
                task.error = str(body.get("error") or "Devserver task failed")
                logger.warning("Devserver task %s failed: %s", task.task_id, task.error)
                raise DevserverTaskFailed(task.error, task_id=task.task_id)
            if status == DevserverTaskStatus.RUNNING.value:
                task.status = DevserverTaskStatus.RUNNING

            await self._sleep(self._poll_interval_ms / 1000, options.cancel_event)

    def _to_result(self, raw: object) -> ProviderResult:
        result = ProviderResult.from_mapping(raw if isinstance(raw, Mapping) else {})
        if result.provider is None:
            result.provider = self._descriptor.name
        if result.cost is None and result.token_usage is not None:
            result.cost = calculate_cost(result.token_usage, self._descriptor.pricing)
        return result


def _json_mapping(response: httpx.Response) -> Mapping[str, Any] | None:
    try:
        body = response.json()
    except ValueError:
        return None
    return body if isinstance(body, Mapping) else None
