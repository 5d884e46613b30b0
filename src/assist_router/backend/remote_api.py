"""OpenAI-compatible chat-completion executor with 429-aware retries."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Mapping
from typing import Any

import httpx

from assist_router.backend.base import race_cancel, raise_if_cancelled, wait_or_cancel
from assist_router.config import (
    DEFAULT_API_MAX_RETRIES,
    DEFAULT_API_REQUEST_TIMEOUT_SECONDS,
    DEFAULT_API_RETRY_DELAY_MS,
)
from assist_router.models import ProviderDescriptor, ProviderResult, RunOptions, TokenUsage
from assist_router.output_parser import parse_output
from assist_router.pricing import calculate_cost, default_api_pricing

logger = logging.getLogger(__name__)

CHAT_COMPLETIONS_PATH = "/v1/chat/completions"

SleepFn = Callable[[float, Any], Awaitable[None]]


def build_request_body(
    *,
    model: str | None,
    prompt: str,
    output_schema: Mapping[str, Any] | None = None,
) -> dict[str, Any]:
    """Chat-completion body, with a json_schema response format when requested."""

    body: dict[str, Any] = {
        "model": model,
        "messages": [{"role": "user", "content": prompt}],
    }
    if output_schema is not None:
        body["response_format"] = {
            "type": "json_schema",
            "json_schema": {"name": "response", "schema": dict(output_schema)},
        }
    return body


def parse_completion(payload: Mapping[str, Any]) -> tuple[str, Any | None, TokenUsage | None]:
    """Extract ``(raw, parsed, token_usage)`` from a chat-completion body."""

    raw = ""
    choices = payload.get("choices")
    if isinstance(choices, list) and choices and isinstance(choices[0], Mapping):
        message = choices[0].get("message")
        if isinstance(message, Mapping) and isinstance(message.get("content"), str):
            raw = message["content"]

    token_usage: TokenUsage | None = None
    usage = payload.get("usage")
    if isinstance(usage, Mapping):
        prompt_tokens = usage.get("prompt_tokens")
        completion_tokens = usage.get("completion_tokens")
        if isinstance(prompt_tokens, int) and isinstance(completion_tokens, int):
            token_usage = TokenUsage(input=prompt_tokens, output=completion_tokens)

    return raw, parse_output(raw), token_usage


class RemoteApiExecutor:
    """POST prompts to `{base_url}/v1/chat/completions`.

    Transient failures are retried up to ``max_retries`` attempts in total and
    then reported as a result with ``exit_code=1``; nothing past this
    boundary raises for backend flakiness. A 429 consumes an attempt like any
    other failure.
    """

    def __init__(  # noqa: PLR0913
        self,
        descriptor: ProviderDescriptor,
        *,
        max_retries: int = DEFAULT_API_MAX_RETRIES,
        retry_delay_ms: int = DEFAULT_API_RETRY_DELAY_MS,
        request_timeout_seconds: float = DEFAULT_API_REQUEST_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: SleepFn | None = None,
    ) -> None:
        if not descriptor.base_url:
            raise ValueError("Remote API executor requires a base URL.")
        self._descriptor = descriptor
        self._max_retries = max(1, max_retries)
        self._retry_delay_ms = max(0, retry_delay_ms)
        self._timeout = httpx.Timeout(request_timeout_seconds, connect=10.0)
        self._transport = transport
        self._sleep = sleep or wait_or_cancel

    @property
    def url(self) -> str:
        return f"{(self._descriptor.base_url or '').rstrip('/')}{CHAT_COMPLETIONS_PATH}"

    async def run(self, prompt: str, options: RunOptions) -> ProviderResult:
        descriptor = self._descriptor
        headers = {"Content-Type": "application/json"}
        api_key = descriptor.resolve_api_key()
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        else:
            logger.warning(
                "No API key for %s (set %s)",
                descriptor.name,
                descriptor.env_api_key_name,
            )
        body = build_request_body(
            model=descriptor.model,
            prompt=prompt,
            output_schema=options.output_schema,
        )
        cancel_event = options.cancel_event
        last_error = "Request failed"

        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            for attempt in range(self._max_retries):
                raise_if_cancelled(cancel_event)
                has_next_attempt = attempt + 1 < self._max_retries
                logger.debug("POST %s attempt %d/%d", self.url, attempt + 1, self._max_retries)
                try:
                    response = await race_cancel(
                        client.post(self.url, headers=headers, json=body),
                        cancel_event,
                    )
                except httpx.HTTPError as error:
                    last_error = str(error) or type(error).__name__
                    logger.warning("%s request failed: %s", descriptor.name, last_error)
                    if has_next_attempt:
                        await self._sleep(self._retry_delay_ms / 1000, cancel_event)
                    continue

                if response.status_code == httpx.codes.TOO_MANY_REQUESTS:
                    last_error = "Rate limit exceeded (HTTP 429)"
                    delay = _retry_after_seconds(response)
                    if delay is None:
                        delay = self._retry_delay_ms * (attempt + 1) / 1000
                    logger.warning("%s rate limited, retrying in %.3fs", descriptor.name, delay)
                    if has_next_attempt:
                        await self._sleep(delay, cancel_event)
                    continue

                if not response.is_success:
                    last_error = _error_message(response)
                    logger.warning(
                        "%s returned HTTP %d: %s",
                        descriptor.name,
                        response.status_code,
                        last_error,
                    )
                    continue

                try:
                    payload = response.json()
                except ValueError:
                    last_error = "Invalid JSON in chat-completion response"
                    continue
                if not isinstance(payload, Mapping):
                    last_error = "Unexpected chat-completion response shape"
                    continue
                return self._build_result(payload, options)

        return ProviderResult(
            raw="",
            parsed=None,
            exit_code=1,
            token_usage=None,
            cost=None,
            error=last_error,
            provider=descriptor.name,
        )

    def _build_result(self, payload: Mapping[str, Any], options: RunOptions) -> ProviderResult:
        descriptor = self._descriptor
        raw, parsed, token_usage = parse_completion(payload)
        pricing = descriptor.pricing or default_api_pricing(
            provider=descriptor.name,
            model=descriptor.model,
        )
        warning: str | None = None
        if options.output_schema is not None and parsed is None:
            warning = "Response did not contain structured output."
        return ProviderResult(
            raw=raw,
            parsed=parsed,
            exit_code=0,
            token_usage=token_usage,
            cost=calculate_cost(token_usage, pricing),
            warning=warning,
            provider=descriptor.name,
        )


def _retry_after_seconds(response: httpx.Response) -> float | None:
    value = response.headers.get("retry-after")
    if not value:
        return None
    try:
        seconds = float(value.strip())
    except ValueError:
        return None
    if seconds <= 0:
        return None
    return seconds


def _error_message(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        payload = None
    if isinstance(payload, Mapping):
        error = payload.get("error")
        if isinstance(error, Mapping) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str) and error:
            return error
    return response.reason_phrase or f"HTTP {response.status_code}"
