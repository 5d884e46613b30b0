"""Runtime configuration for provider executors."""

from __future__ import annotations

import os
from dataclasses import dataclass, field

DEFAULT_LOCAL_TIMEOUT_MS = 120_000
DEFAULT_API_MAX_RETRIES = 3
DEFAULT_API_RETRY_DELAY_MS = 1_000
DEFAULT_API_REQUEST_TIMEOUT_SECONDS = 120.0
DEFAULT_POLL_INTERVAL_MS = 1_000
DEFAULT_MAX_POLL_TIME_MS = 300_000


@dataclass(slots=True)
class LocalSettings:
    """Local process executor settings."""

    timeout_ms: int = DEFAULT_LOCAL_TIMEOUT_MS


@dataclass(slots=True)
class RemoteApiSettings:
    """Remote chat-completion executor settings."""

    max_retries: int = DEFAULT_API_MAX_RETRIES
    retry_delay_ms: int = DEFAULT_API_RETRY_DELAY_MS
    request_timeout_seconds: float = DEFAULT_API_REQUEST_TIMEOUT_SECONDS


@dataclass(slots=True)
class DevserverSettings:
    """Devserver dispatcher settings."""

    poll_interval_ms: int = DEFAULT_POLL_INTERVAL_MS
    max_poll_time_ms: int = DEFAULT_MAX_POLL_TIME_MS
    request_timeout_seconds: float = DEFAULT_API_REQUEST_TIMEOUT_SECONDS


@dataclass(slots=True)
class Settings:
    """Executor settings grouped by backend."""

    local: LocalSettings = field(default_factory=LocalSettings)
    remote_api: RemoteApiSettings = field(default_factory=RemoteApiSettings)
    devserver: DevserverSettings = field(default_factory=DevserverSettings)

    @classmethod
    def from_env(cls) -> Settings:
        """Load settings from environment with defaults for local development."""

        request_timeout_seconds = _env_float(
            "ASSIST_ROUTER_API_REQUEST_TIMEOUT_SECONDS",
            DEFAULT_API_REQUEST_TIMEOUT_SECONDS,
        )
        return cls(
            local=LocalSettings(
                timeout_ms=_env_int("ASSIST_ROUTER_LOCAL_TIMEOUT_MS", DEFAULT_LOCAL_TIMEOUT_MS),
            ),
            remote_api=RemoteApiSettings(
                max_retries=_env_int("ASSIST_ROUTER_API_MAX_RETRIES", DEFAULT_API_MAX_RETRIES),
                retry_delay_ms=_env_int(
                    "ASSIST_ROUTER_API_RETRY_DELAY_MS",
                    DEFAULT_API_RETRY_DELAY_MS,
                ),
                request_timeout_seconds=request_timeout_seconds,
            ),
            devserver=DevserverSettings(
                poll_interval_ms=_env_int(
                    "ASSIST_ROUTER_DEVSERVER_POLL_INTERVAL_MS",
                    DEFAULT_POLL_INTERVAL_MS,
                ),
                max_poll_time_ms=_env_int(
                    "ASSIST_ROUTER_DEVSERVER_MAX_POLL_TIME_MS",
                    DEFAULT_MAX_POLL_TIME_MS,
                ),
                request_timeout_seconds=request_timeout_seconds,
            ),
        )

    def validate(self) -> None:
        """Raise configuration error if any timing or retry value is out of range."""

        if self.local.timeout_ms <= 0:
            raise ValueError("ASSIST_ROUTER_LOCAL_TIMEOUT_MS must be > 0.")
        if self.remote_api.max_retries <= 0:
            raise ValueError("ASSIST_ROUTER_API_MAX_RETRIES must be > 0.")
        if self.remote_api.retry_delay_ms < 0:
            raise ValueError("ASSIST_ROUTER_API_RETRY_DELAY_MS must be >= 0.")
        if self.remote_api.request_timeout_seconds <= 0:
            raise ValueError("ASSIST_ROUTER_API_REQUEST_TIMEOUT_SECONDS must be > 0.")
        if self.devserver.poll_interval_ms <= 0:
            raise ValueError("ASSIST_ROUTER_DEVSERVER_POLL_INTERVAL_MS must be > 0.")
        if self.devserver.max_poll_time_ms <= 0:
            raise ValueError("ASSIST_ROUTER_DEVSERVER_MAX_POLL_TIME_MS must be > 0.")


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value.strip())
    except ValueError:
        raise ValueError(f"Invalid integer value for {name}: {value!r}") from None


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return float(value.strip())
    except ValueError:
        raise ValueError(f"Invalid number value for {name}: {value!r}") from None
