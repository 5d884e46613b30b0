"""Token cost normalization across per-1K and per-1M pricing tables."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from assist_router.models import TokenUsage

PER_1K = 1_000
PER_1M = 1_000_000

PRICING_ENV = "ASSIST_ROUTER_PRICING"


@dataclass(frozen=True, slots=True)
class Pricing:
    """Input/output price per ``unit`` tokens.

    The unit travels with the table the price came from; the API table is
    quoted per 1K tokens while model tables are quoted per 1M.
    """

    input: float
    output: float
    unit: int = PER_1M

    @classmethod
    def from_mapping(cls, raw: dict[str, Any], *, default_unit: int = PER_1M) -> Pricing:
        """Build pricing from `{input, output, unit}` or `{inputPerMillion, ...}`.

        ``default_unit`` applies only when ``raw`` names no unit of its own.
        """

        if "inputPerMillion" in raw or "outputPerMillion" in raw:
            return cls(
                input=float(raw.get("inputPerMillion", 0.0)),
                output=float(raw.get("outputPerMillion", 0.0)),
                unit=PER_1M,
            )
        return cls(
            input=float(raw.get("input", 0.0)),
            output=float(raw.get("output", 0.0)),
            unit=int(raw.get("unit", default_unit)),
        )


API_PRICING: dict[str, Pricing] = {
    "deepseek": Pricing(input=0.0001, output=0.0002, unit=PER_1K),
    "mistral": Pricing(input=0.0002, output=0.0006, unit=PER_1K),
    "default": Pricing(input=0.001, output=0.002, unit=PER_1K),
}

MODEL_PRICING: dict[str, Pricing] = {
    "o3": Pricing(input=10.0, output=40.0, unit=PER_1M),
    "gpt-4o": Pricing(input=2.5, output=10.0, unit=PER_1M),
    "deepseek-coder": Pricing(input=0.14, output=0.28, unit=PER_1M),
}


def calculate_cost(token_usage: TokenUsage | None, pricing: Pricing | None) -> float | None:
    """Return cost in USD, or ``None`` when usage or pricing is unknown."""

    if token_usage is None or pricing is None:
        return None
    total = token_usage.input * pricing.input + token_usage.output * pricing.output
    return max(0.0, total / pricing.unit)


def split_aggregate_tokens(total_tokens: int) -> tuple[int, int]:
    """Split an aggregate token count 50/50 into (input, output)."""

    total_tokens = max(0, total_tokens)
    half = total_tokens // 2
    return half, total_tokens - half


def estimate_cost(total_tokens: int | None, pricing: Pricing | None) -> float | None:
    """Estimate cost from an aggregate token count using a 50/50 split."""

    if total_tokens is None or pricing is None:
        return None
    input_tokens, output_tokens = split_aggregate_tokens(total_tokens)
    return max(
        0.0,
        (input_tokens * pricing.input + output_tokens * pricing.output) / pricing.unit,
    )


def lookup_pricing(*, provider: str, model: str | None = None) -> Pricing | None:
    """Resolve pricing from the env override first, then the API table."""

    mapping = _parse_pricing_mapping(os.getenv(PRICING_ENV, ""))
    provider_key = provider.strip().lower()
    model_key = (model or "").strip()
    for key in ((provider_key, model_key), (provider_key, "*"), ("*", "*")):
        found = mapping.get(key)
        if found is not None:
            return found

    if model_key in MODEL_PRICING:
        return MODEL_PRICING[model_key]
    return API_PRICING.get(provider_key)


def default_api_pricing(*, provider: str, model: str | None = None) -> Pricing:
    """Pricing used by the remote API path when the descriptor has none."""

    found = lookup_pricing(provider=provider, model=model)
    if found is not None:
        return found
    for key in (provider.strip().lower(), (model or "").strip().lower()):
        for name, pricing in API_PRICING.items():
            if name != "default" and key.startswith(name):
                return pricing
    return API_PRICING["default"]


def _parse_pricing_mapping(raw: str) -> dict[tuple[str, str], Pricing]:
    """Parse `ASSIST_ROUTER_PRICING`.

    Format:
    - `provider:model:input_per_1m:output_per_1m`
    - multiple entries separated by `,`
    - supports wildcards in provider/model (`*`)
    - rows with negative or non-numeric prices are skipped
    """

    parsed: dict[tuple[str, str], Pricing] = {}
    if not raw.strip():
        return parsed

    for entry in raw.split(","):
        value = entry.strip()
        if not value:
            continue
        parts = [part.strip() for part in value.split(":")]
        if len(parts) != 4:
            continue
        provider, model, input_price, output_price = parts
        try:
            input_per_1m = float(input_price)
            output_per_1m = float(output_price)
        except ValueError:
            continue
        if input_per_1m < 0 or output_per_1m < 0:
            continue
        parsed[(provider.lower(), model)] = Pricing(
            input=input_per_1m,
            output=output_per_1m,
            unit=PER_1M,
        )
    return parsed
