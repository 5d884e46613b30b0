"""Domain models for provider descriptors, run options, and results."""

from __future__ import annotations

import asyncio
import os
import re
import shutil
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from assist_router.errors import ConfigValidationError
from assist_router.pricing import PER_1K, PER_1M, Pricing
from assist_router.rate_limit import (
    DEFAULT_REQUESTS_PER_MINUTE,
    DEFAULT_TOKENS_PER_MINUTE,
    RateLimits,
    RateLimitWindow,
)


class ProviderKind(str, Enum):
    """Backend variants a descriptor can bind to."""

    LOCAL = "local"
    REMOTE_API = "remoteApi"
    DEVSERVER = "devserver"


class FailureClass(str, Enum):
    """Normalized failure classes for non-zero local tool exits."""

    BACKEND_TRANSIENT = "backend_transient"
    BACKEND_NON_RETRYABLE = "backend_non_retryable"
    BILLING_OR_QUOTA = "billing_or_quota"
    ACCESS_OR_AUTH = "access_or_auth"
    MODEL_NOT_AVAILABLE = "model_not_available"


class DevserverTaskStatus(str, Enum):
    """Devserver task lifecycle as observed by the client."""

    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    TIMEOUT = "timeout"

    @property
    def is_terminal(self) -> bool:
        return self in {
            DevserverTaskStatus.COMPLETED,
            DevserverTaskStatus.FAILED,
            DevserverTaskStatus.TIMEOUT,
        }


_ENV_UNSAFE = re.compile(r"[^A-Z0-9]+")

_KIND_ALIASES = {
    "cli": ProviderKind.LOCAL,
    "api": ProviderKind.REMOTE_API,
    "remote_api": ProviderKind.REMOTE_API,
    "remoteapi": ProviderKind.REMOTE_API,
}

_MAPPING_ALIASES = {
    "baseUrl": "base_url",
    "devserverUrl": "devserver_url",
    "apiKey": "api_key",
    "rateLimits": "rate_limits",
    "headlessArgs": "args",
    "type": "kind",
    "devserverOnly": "devserver_only",
}


@dataclass(frozen=True, slots=True)
class ProviderDescriptor:
    """Immutable configuration for one executable backend.

    Each instance owns its rate-limit window, so two descriptors for the
    same backend name never share counters.

    ``detected`` reports whether a local command resolves on ``PATH``; it is
    looked up at construction unless given. ``devserver_only`` marks
    providers that are meant to be reached through a devserver rather than
    called directly, and defaults to true for remote APIs.
    """

    name: str
    kind: ProviderKind | str
    command: str | None = None
    args: tuple[str, ...] = ()
    base_url: str | None = None
    model: str | None = None
    devserver_url: str | None = None
    api_key: str | None = field(default=None, repr=False)
    pricing: Pricing | None = None
    rate_limits: RateLimits = field(default_factory=RateLimits)
    capabilities: frozenset[str] = frozenset()
    detected: bool | None = None
    devserver_only: bool | None = None
    window: RateLimitWindow = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        if isinstance(self.args, str):
            raise ConfigValidationError("args must be a list of strings, not a single string")
        kind = normalize_kind(self.kind)
        object.__setattr__(self, "kind", kind)
        object.__setattr__(self, "args", tuple(self.args))
        object.__setattr__(self, "capabilities", frozenset(self.capabilities))
        if self.detected is None:
            object.__setattr__(
                self,
                "detected",
                kind is ProviderKind.LOCAL
                and bool(self.command)
                and shutil.which(self.command or "") is not None,
            )
        if self.devserver_only is None:
            object.__setattr__(self, "devserver_only", kind is ProviderKind.REMOTE_API)
        limits = self.rate_limits if isinstance(self.rate_limits, RateLimits) else None
        object.__setattr__(self, "window", RateLimitWindow(limits))

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> ProviderDescriptor:
        """Build a descriptor from config keys (camelCase or snake_case).

        Raises `ConfigValidationError` when a value has the wrong shape.
        """

        values = {_MAPPING_ALIASES.get(key, key): value for key, value in raw.items()}
        try:
            _coerce_descriptor_values(values)
        except (TypeError, ValueError) as error:
            raise ConfigValidationError(str(error)) from error
        known = set(cls.__dataclass_fields__) - {"window"}
        return cls(
            name=str(values.get("name") or ""),
            kind=values.get("kind") or "",
            **{key: value for key, value in values.items() if key in known - {"name", "kind"}},
        )

    @property
    def env_api_key_name(self) -> str:
        return f"{_ENV_UNSAFE.sub('_', self.name.upper()).strip('_')}_API_KEY"

    def resolve_api_key(self) -> str | None:
        """Explicit key, else `{NAME}_API_KEY` from the environment."""

        if self.api_key:
            return self.api_key
        return os.getenv(self.env_api_key_name) or None


def _coerce_descriptor_values(values: dict[str, Any]) -> None:
    """Convert raw config values in place into descriptor field types."""

    pricing = values.get("pricing")
    if isinstance(pricing, Mapping):
        # Provider pricing for remote APIs is quoted per 1K tokens, like API_PRICING.
        kind = normalize_kind(values.get("kind") or "")
        default_unit = PER_1K if kind is ProviderKind.REMOTE_API else PER_1M
        values["pricing"] = Pricing.from_mapping(dict(pricing), default_unit=default_unit)
    elif pricing is not None and not isinstance(pricing, Pricing):
        raise ValueError(f"pricing must be an object with input/output prices, got {pricing!r}")

    rate_limits = values.get("rate_limits")
    if isinstance(rate_limits, Mapping):
        values["rate_limits"] = RateLimits(
            requests_per_minute=int(
                rate_limits.get(
                    "requestsPerMinute",
                    rate_limits.get("requests_per_minute", DEFAULT_REQUESTS_PER_MINUTE),
                ),
            ),
            tokens_per_minute=int(
                rate_limits.get(
                    "tokensPerMinute",
                    rate_limits.get("tokens_per_minute", DEFAULT_TOKENS_PER_MINUTE),
                ),
            ),
        )
    elif rate_limits is None:
        values.pop("rate_limits", None)
    elif not isinstance(rate_limits, RateLimits):
        raise ValueError(f"rateLimits must be an object, got {rate_limits!r}")

    args = values.get("args") or ()
    if isinstance(args, str):
        raise ValueError("args must be a list of strings, not a single string")
    values["args"] = tuple(str(arg) for arg in args)
    values["capabilities"] = frozenset(values.get("capabilities") or ())
    for flag in ("detected", "devserver_only"):
        if values.get(flag) is not None and not isinstance(values[flag], bool):
            raise ValueError(f"{flag} must be true or false, got {values[flag]!r}")


@dataclass(frozen=True, slots=True)
class RunOptions:
    """Per-call options. Never mutated by executors."""

    output_schema: Mapping[str, Any] | None = None
    sandbox: str | None = None
    cwd: str | None = None
    timeout_ms: int | None = None
    cancel_event: asyncio.Event | None = field(default=None, compare=False, repr=False)

    def to_wire(self) -> dict[str, Any]:
        """Serializable options for the devserver submit payload."""

        payload: dict[str, Any] = {}
        if self.output_schema is not None:
            payload["outputSchema"] = dict(self.output_schema)
        if self.sandbox is not None:
            payload["sandbox"] = self.sandbox
        if self.cwd is not None:
            payload["cwd"] = self.cwd
        if self.timeout_ms is not None:
            payload["timeout"] = self.timeout_ms
        return payload


@dataclass(frozen=True, slots=True)
class TokenUsage:
    """Input/output token counts for one call."""

    input: int
    output: int

    @property
    def total(self) -> int:
        return self.input + self.output

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any] | None) -> TokenUsage | None:
        if not raw:
            return None
        try:
            return cls(input=int(raw.get("input", 0)), output=int(raw.get("output", 0)))
        except (TypeError, ValueError):
            return None


@dataclass(slots=True)
class ProviderResult:
    """Normalized output every backend produces."""

    raw: str
    parsed: Any | None = None
    exit_code: int = 0
    token_usage: TokenUsage | None = None
    cost: float | None = None
    error: str | None = None
    warning: str | None = None
    stderr: str | None = None
    provider: str | None = None
    failure_class: str | None = None

    def __post_init__(self) -> None:
        if self.exit_code == 0 and self.error is not None:
            if self.warning is None:
                self.warning = self.error
            self.error = None
        if self.token_usage is None:
            self.cost = None
        elif self.cost is not None:
            self.cost = max(0.0, float(self.cost))

    @property
    def ok(self) -> bool:
        return self.exit_code == 0

    def to_dict(self) -> dict[str, Any]:
        """Wire shape with camelCase keys."""

        payload: dict[str, Any] = {
            "raw": self.raw,
            "parsed": self.parsed,
            "exitCode": self.exit_code,
            "tokenUsage": (
                {"input": self.token_usage.input, "output": self.token_usage.output}
                if self.token_usage is not None
                else None
            ),
            "cost": self.cost,
        }
        for key, value in (
            ("error", self.error),
            ("warning", self.warning),
            ("stderr", self.stderr),
            ("provider", self.provider),
            ("failureClass", self.failure_class),
        ):
            if value is not None:
                payload[key] = value
        return payload

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> ProviderResult:
        """Read a result produced elsewhere, e.g. by a devserver."""

        exit_code = raw.get("exitCode", raw.get("exit_code", 0))
        cost = raw.get("cost")
        return cls(
            raw=str(raw.get("raw") or ""),
            parsed=raw.get("parsed"),
            exit_code=int(exit_code) if exit_code is not None else 0,
            token_usage=TokenUsage.from_mapping(raw.get("tokenUsage") or raw.get("token_usage")),
            cost=float(cost) if isinstance(cost, int | float) else None,
            error=raw.get("error"),
            warning=raw.get("warning"),
            stderr=raw.get("stderr"),
            provider=raw.get("provider"),
        )


@dataclass(slots=True)
class DevserverTask:
    """Client view of one devserver job."""

    task_id: str
    status: DevserverTaskStatus = DevserverTaskStatus.QUEUED
    result: ProviderResult | None = None
    error: str | None = None
    polls: int = 0


def normalize_kind(kind: ProviderKind | str) -> ProviderKind | str:
    """Map a kind string to `ProviderKind`; unknown values are returned unchanged."""

    if isinstance(kind, ProviderKind):
        return kind
    text = str(kind or "").strip()
    try:
        return ProviderKind(text)
    except ValueError:
        return _KIND_ALIASES.get(text.lower(), text)
