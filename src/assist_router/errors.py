"""Error taxonomy for provider construction and execution."""

from __future__ import annotations


class ProviderError(RuntimeError):
    """Base provider error with retryability hint."""

    def __init__(self, message: str, *, transient: bool = False) -> None:
        super().__init__(message)
        self.transient = transient


class ConfigValidationError(ProviderError, ValueError):
    """Provider descriptor is malformed. Raised at construction time."""

    def __init__(self, problems: list[str] | str) -> None:
        if isinstance(problems, str):
            problems = [problems]
        self.problems = list(problems)
        super().__init__("Invalid provider config: " + "; ".join(self.problems))


class ProcessSpawnError(ProviderError):
    """Local command is missing or cannot be executed."""


class ProcessTimeout(ProviderError):
    """Local process exceeded its wall-clock budget and was terminated."""

    def __init__(self, message: str, *, timeout_ms: int) -> None:
        super().__init__(message, transient=True)
        self.timeout_ms = timeout_ms


class HTTPStatusError(ProviderError):
    """Remote endpoint answered with a non-2xx status other than 429."""

    def __init__(self, message: str, *, status_code: int) -> None:
        super().__init__(message, transient=status_code >= 500)
        self.status_code = status_code


class RateLimitExceeded(ProviderError):
    """Remote 429 after retries, or local rate-limit window denial."""

    def __init__(self, message: str) -> None:
        super().__init__(message, transient=True)


class MalformedOutput(ProviderError):
    """Backend output has no structured payload.

    Never raised by the output parser: a missing payload surfaces as
    ``parsed=None`` on the result.
    """


class DevserverSubmitError(ProviderError):
    """Initial devserver job submission failed."""


class DevserverTaskFailed(ProviderError):
    """Devserver reported the task as failed."""

    def __init__(self, message: str, *, task_id: str) -> None:
        super().__init__(message)
        self.task_id = task_id


class DevserverPollTimeout(ProviderError):
    """Client-side poll budget elapsed before a terminal task status."""

    def __init__(self, message: str, *, task_id: str) -> None:
        super().__init__(message, transient=True)
        self.task_id = task_id


class RunCancelled(ProviderError):
    """Caller cancellation token was set while a run was in flight."""
