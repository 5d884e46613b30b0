"""Per-provider rolling request/token counters."""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

WINDOW_SECONDS = 60.0

DEFAULT_REQUESTS_PER_MINUTE = 500
DEFAULT_TOKENS_PER_MINUTE = 150_000


@dataclass(frozen=True, slots=True)
class RateLimits:
    """Configured per-minute limits for one provider."""

    requests_per_minute: int = DEFAULT_REQUESTS_PER_MINUTE
    tokens_per_minute: int = DEFAULT_TOKENS_PER_MINUTE


@dataclass(slots=True)
class RateLimitStatus:
    """Snapshot of window usage for diagnostics."""

    requests_used: int
    requests_limit: int
    tokens_used: int
    tokens_limit: int
    resets_in_seconds: float


class RateLimitWindow:
    """Counters for the current 60s window of one provider instance.

    Reset and increment happen under one lock, so a stale window is reset
    at most once no matter how many callers observe it.
    """

    def __init__(
        self,
        limits: RateLimits | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.limits = limits or RateLimits()
        self._clock = clock
        self._lock = threading.Lock()
        self.requests_this_window = 0
        self.tokens_this_window = 0
        self.window_started_at = clock()

    def check_reset(self) -> bool:
        """Reset counters if the window is stale. Returns True when reset."""

        with self._lock:
            return self._reset_if_stale(self._clock())

    def within_limits(self, tokens: int) -> bool:
        """Whether one more request of ``tokens`` fits the current window."""

        with self._lock:
            self._reset_if_stale(self._clock())
            return self._fits(tokens)

    def acquire(self, tokens: int) -> bool:
        """Reserve one request and ``tokens`` if they fit; otherwise change nothing."""

        tokens = max(0, tokens)
        with self._lock:
            self._reset_if_stale(self._clock())
            if not self._fits(tokens):
                return False
            self.requests_this_window += 1
            self.tokens_this_window += tokens
            return True

    def status(self) -> RateLimitStatus:
        with self._lock:
            now = self._clock()
            self._reset_if_stale(now)
            return RateLimitStatus(
                requests_used=self.requests_this_window,
                requests_limit=self.limits.requests_per_minute,
                tokens_used=self.tokens_this_window,
                tokens_limit=self.limits.tokens_per_minute,
                resets_in_seconds=max(0.0, WINDOW_SECONDS - (now - self.window_started_at)),
            )

    def _fits(self, tokens: int) -> bool:
        if self.requests_this_window + 1 > self.limits.requests_per_minute:
            return False
        return self.tokens_this_window + tokens <= self.limits.tokens_per_minute

    def _reset_if_stale(self, now: float) -> bool:
        if now - self.window_started_at < WINDOW_SECONDS:
            return False
        self.requests_this_window = 0
        self.tokens_this_window = 0
        self.window_started_at = now
        return True
