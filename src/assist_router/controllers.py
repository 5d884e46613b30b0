"""Controllers for assist-router CLI commands."""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from assist_router.config import Settings
from assist_router.errors import ProviderError
from assist_router.factory import Provider, build_providers, create_provider, load_settings
from assist_router.models import RunOptions, TokenUsage
from assist_router.output_parser import parse_output
from assist_router.pricing import (
    PER_1K,
    PER_1M,
    Pricing,
    calculate_cost,
    estimate_cost,
)

PRICING_UNITS = {"1k": PER_1K, "1m": PER_1M}


@dataclass(slots=True)
class RunCommand:
    """CLI input for one provider run."""

    prompt: str
    providers_file: Path | None
    name: str | None
    kind: str | None
    command: str | None
    args: tuple[str, ...]
    base_url: str | None
    model: str | None
    devserver_url: str | None
    output_schema_file: Path | None
    sandbox: str | None
    cwd: Path | None
    timeout_ms: int | None


@dataclass(slots=True)
class CostCommand:
    """CLI input for cost calculation."""

    input_tokens: int | None
    output_tokens: int | None
    total_tokens: int | None
    price_input: float
    price_output: float
    unit: str


@dataclass(slots=True)
class CommandResult:
    """Lines to print plus overall success."""

    lines: list[str]
    success: bool


class RouterCliController:
    """Coordinates provider runs and offline helpers for the CLI."""

    def run(self, command: RunCommand) -> CommandResult:
        try:
            settings = load_settings()
            provider = self._resolve_provider(command, settings)
            options = RunOptions(
                output_schema=_read_json(command.output_schema_file),
                sandbox=command.sandbox,
                cwd=str(command.cwd) if command.cwd is not None else None,
                timeout_ms=command.timeout_ms,
            )
            result = asyncio.run(provider.run(command.prompt, options))
        except (ProviderError, ValueError, OSError) as error:
            return CommandResult(lines=[f"Provider run failed: {error}"], success=False)

        return CommandResult(
            lines=[json.dumps(result.to_dict(), indent=2, ensure_ascii=False)],
            success=result.ok,
        )

    def parse(self, text: str) -> CommandResult:
        parsed = parse_output(text)
        return CommandResult(
            lines=[json.dumps(parsed, indent=2, ensure_ascii=False)],
            success=parsed is not None,
        )

    def cost(self, command: CostCommand) -> CommandResult:
        pricing = Pricing(
            input=command.price_input,
            output=command.price_output,
            unit=PRICING_UNITS[command.unit],
        )
        if command.input_tokens is not None or command.output_tokens is not None:
            usage = TokenUsage(
                input=command.input_tokens or 0,
                output=command.output_tokens or 0,
            )
            cost = calculate_cost(usage, pricing)
            basis = f"input={usage.input} output={usage.output}"
        elif command.total_tokens is not None:
            cost = estimate_cost(command.total_tokens, pricing)
            basis = f"total={command.total_tokens} (50/50 split)"
        else:
            return CommandResult(
                lines=["Provide --input-tokens/--output-tokens or --total-tokens."],
                success=False,
            )
        return CommandResult(
            lines=[f"Cost: ${cost:.6f} for {basis} at per-{command.unit} pricing"],
            success=True,
        )

    def _resolve_provider(self, command: RunCommand, settings: Settings) -> Provider:
        if command.providers_file is not None:
            raw = _read_json(command.providers_file)
            entries = raw.get("providers", []) if isinstance(raw, dict) else raw
            if not isinstance(entries, list):
                raise ValueError("Providers file must hold a list or {providers: [...]}.")
            providers = build_providers(entries, settings=settings)
            if command.name is None:
                if len(providers) != 1:
                    raise ValueError("Pass --name to select a provider from the file.")
                return next(iter(providers.values()))
            if command.name not in providers:
                raise ValueError(f"Unknown provider: {command.name}")
            return providers[command.name]

        return create_provider(
            {
                "name": command.name or command.kind or "",
                "kind": command.kind or "",
                "command": command.command,
                "args": command.args,
                "base_url": command.base_url,
                "model": command.model,
                "devserver_url": command.devserver_url,
            },
            settings=settings,
        )


def _read_json(path: Path | None) -> Any:
    if path is None:
        return None
    return json.loads(path.read_text("utf-8"))
