"""Provider execution layer for coding-assistance requests."""

from assist_router.errors import (
    ConfigValidationError,
    DevserverPollTimeout,
    DevserverSubmitError,
    DevserverTaskFailed,
    HTTPStatusError,
    ProcessSpawnError,
    ProcessTimeout,
    ProviderError,
    RateLimitExceeded,
    RunCancelled,
)
from assist_router.factory import Provider, build_providers, create_provider
from assist_router.models import (
    ProviderDescriptor,
    ProviderKind,
    ProviderResult,
    RunOptions,
    TokenUsage,
)
from assist_router.output_parser import parse_output
from assist_router.pricing import Pricing, calculate_cost

__version__ = "0.1.0"

__all__ = [
    "ConfigValidationError",
    "DevserverPollTimeout",
    "DevserverSubmitError",
    "DevserverTaskFailed",
    "HTTPStatusError",
    "Pricing",
    "ProcessSpawnError",
    "ProcessTimeout",
    "Provider",
    "ProviderDescriptor",
    "ProviderError",
    "ProviderKind",
    "ProviderResult",
    "RateLimitExceeded",
    "RunCancelled",
    "RunOptions",
    "TokenUsage",
    "__version__",
    "build_providers",
    "calculate_cost",
    "create_provider",
    "parse_output",
]
