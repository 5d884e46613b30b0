"""Provider descriptor validation and executor binding."""

from __future__ import annotations

import asyncio
import logging
import math
from collections.abc import Iterable, Mapping
from typing import Any

from assist_router.backend import (
    DevserverDispatcher,
    Executor,
    LocalProcessExecutor,
    RemoteApiExecutor,
)
from assist_router.config import Settings
from assist_router.errors import ConfigValidationError, RateLimitExceeded
from assist_router.models import ProviderDescriptor, ProviderKind, ProviderResult, RunOptions
from assist_router.pricing import Pricing
from assist_router.rate_limit import RateLimits, RateLimitStatus

logger = logging.getLogger(__name__)

CHARS_PER_TOKEN = 4


def validate_descriptor(descriptor: ProviderDescriptor) -> None:
    """Raise `ConfigValidationError` listing every problem with ``descriptor``."""

    problems: list[str] = []
    if not descriptor.name or not descriptor.name.strip():
        problems.append("name is required")
    kind = descriptor.kind
    if not isinstance(kind, ProviderKind):
        supported = ", ".join(item.value for item in ProviderKind)
        problems.append(f"kind must be one of: {supported} (got {kind!r})")
    elif kind is ProviderKind.LOCAL and not descriptor.command:
        problems.append("local provider requires command")
    elif kind is ProviderKind.REMOTE_API and not descriptor.base_url:
        problems.append("remoteApi provider requires baseUrl")
    elif kind is ProviderKind.DEVSERVER and not descriptor.devserver_url:
        problems.append("devserver provider requires devserverUrl")
    limits = descriptor.rate_limits
    if not isinstance(limits, RateLimits):
        problems.append("rateLimits must be an object")
    else:
        if limits.requests_per_minute <= 0:
            problems.append("rateLimits.requestsPerMinute must be > 0")
        if limits.tokens_per_minute <= 0:
            problems.append("rateLimits.tokensPerMinute must be > 0")
    pricing = descriptor.pricing
    if pricing is not None and not isinstance(pricing, Pricing):
        problems.append("pricing must be an object with input/output prices")
    elif pricing is not None:
        if pricing.input < 0 or pricing.output < 0:
            problems.append("pricing must not be negative")
        if pricing.unit <= 0:
            problems.append("pricing unit must be > 0")
    if problems:
        raise ConfigValidationError(problems)


def estimate_prompt_tokens(prompt: str) -> int:
    """Rough token estimate used for rate-limit accounting."""

    return math.ceil(len(prompt) / CHARS_PER_TOKEN)


class Provider:
    """A validated descriptor bound to exactly one executor."""

    def __init__(self, descriptor: ProviderDescriptor, executor: Executor) -> None:
        self.descriptor = descriptor
        self._executor = executor

    @property
    def name(self) -> str:
        return self.descriptor.name

    @property
    def kind(self) -> ProviderKind:
        return ProviderKind(self.descriptor.kind)

    async def run(self, prompt: str, options: RunOptions | None = None) -> ProviderResult:
        """Execute ``prompt`` on the bound backend.

        Raises `RateLimitExceeded` when the provider's window has no room.
        """

        options = options or RunOptions()
        tokens = estimate_prompt_tokens(prompt)
        if not self.descriptor.window.acquire(tokens):
            status = self.descriptor.window.status()
            raise RateLimitExceeded(
                f"Rate limit exceeded for {self.name}: "
                f"{status.requests_used}/{status.requests_limit} requests, "
                f"{status.tokens_used}/{status.tokens_limit} tokens; "
                f"resets in {status.resets_in_seconds:.1f}s",
            )
        logger.debug("Running %s (%s), ~%d prompt tokens", self.name, self.kind.value, tokens)
        result = await self._executor.run(prompt, options)
        if result.provider is None:
            result.provider = self.name
        return result

    def run_sync(self, prompt: str, options: RunOptions | None = None) -> ProviderResult:
        """Blocking wrapper for callers without an event loop."""

        return asyncio.run(self.run(prompt, options))

    def rate_limit_status(self) -> RateLimitStatus:
        return self.descriptor.window.status()


def load_settings(settings: Settings | None = None) -> Settings:
    """Return validated settings, reading the environment when none are given.

    Malformed or out-of-range values raise `ConfigValidationError`.
    """

    try:
        settings = settings or Settings.from_env()
        settings.validate()
    except ValueError as error:
        raise ConfigValidationError(str(error)) from error
    return settings


def create_provider(
    descriptor: ProviderDescriptor | Mapping[str, Any],
    *,
    settings: Settings | None = None,
    **executor_overrides: Any,
) -> Provider:
    """Validate ``descriptor`` and bind it to its executor.

    ``executor_overrides`` are passed to the executor constructor (for
    example an httpx ``transport`` or a ``spawn`` function in tests).
    """

    if not isinstance(descriptor, ProviderDescriptor):
        descriptor = ProviderDescriptor.from_mapping(descriptor)
    validate_descriptor(descriptor)
    settings = load_settings(settings)

    executor: Executor
    match descriptor.kind:
        case ProviderKind.LOCAL:
            executor = LocalProcessExecutor(
                descriptor,
                **{"default_timeout_ms": settings.local.timeout_ms, **executor_overrides},
            )
        case ProviderKind.REMOTE_API:
            executor = RemoteApiExecutor(
                descriptor,
                **{
                    "max_retries": settings.remote_api.max_retries,
                    "retry_delay_ms": settings.remote_api.retry_delay_ms,
                    "request_timeout_seconds": settings.remote_api.request_timeout_seconds,
                    **executor_overrides,
                },
            )
        case ProviderKind.DEVSERVER:
            executor = DevserverDispatcher(
                descriptor,
                **{
                    "poll_interval_ms": settings.devserver.poll_interval_ms,
                    "max_poll_time_ms": settings.devserver.max_poll_time_ms,
                    "request_timeout_seconds": settings.devserver.request_timeout_seconds,
                    **executor_overrides,
                },
            )
        case _:  # pragma: no cover
            raise ConfigValidationError(f"unsupported kind {descriptor.kind!r}")
    return Provider(descriptor, executor)


def build_providers(
    descriptors: Iterable[ProviderDescriptor | Mapping[str, Any]],
    *,
    settings: Settings | None = None,
) -> dict[str, Provider]:
    """Build a name -> provider registry, rejecting duplicate names."""

    settings = load_settings(settings)
    providers: dict[str, Provider] = {}
    for descriptor in descriptors:
        provider = create_provider(descriptor, settings=settings)
        if provider.name in providers:
            raise ConfigValidationError(f"duplicate provider name {provider.name!r}")
        providers[provider.name] = provider
    return providers
