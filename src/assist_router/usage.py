"""Usage extraction helpers for local CLI tool output streams."""

from __future__ import annotations

import re
from dataclasses import dataclass

from assist_router.models import TokenUsage
from assist_router.pricing import split_aggregate_tokens

_JSON_PROMPT_TOKENS = re.compile(r'"(?:prompt|input)_tokens"\s*:\s*(\d+)', re.IGNORECASE)
_JSON_COMPLETION_TOKENS = re.compile(
    r'"(?:completion|output)_tokens"\s*:\s*(\d+)',
    re.IGNORECASE,
)
_JSON_TOTAL_TOKENS = re.compile(r'"total_tokens"\s*:\s*(\d+)', re.IGNORECASE)

_TOKENS_USED = re.compile(r"tokens used\s*[\r\n: ]+\s*([\d,]+)", re.IGNORECASE)
_INPUT_TOKENS = re.compile(r"input[_ ]tokens?\s*[:=]\s*([\d,]+)", re.IGNORECASE)
_OUTPUT_TOKENS = re.compile(r"(?:output|completion)[_ ]tokens?\s*[:=]\s*([\d,]+)", re.IGNORECASE)
_TOTAL_TOKENS = re.compile(r"total[_ ]tokens?\s*[:=]\s*([\d,]+)", re.IGNORECASE)


@dataclass(slots=True)
class UsageExtraction:
    """Best-effort token usage extraction result."""

    input_tokens: int | None
    output_tokens: int | None
    total_tokens: int | None
    usage_status: str
    usage_source: str

    def to_token_usage(self) -> TokenUsage | None:
        """Return a split usage, falling back to 50/50 for an aggregate total."""

        if self.input_tokens is not None and self.output_tokens is not None:
            return TokenUsage(input=self.input_tokens, output=self.output_tokens)
        if self.total_tokens is None:
            return None
        input_tokens, output_tokens = split_aggregate_tokens(self.total_tokens)
        return TokenUsage(input=input_tokens, output=output_tokens)


def extract_usage(*, stdout: str, stderr: str) -> UsageExtraction:
    """Extract token usage from structured or textual tool output."""

    structured = _extract(
        stdout=stdout,
        stderr=stderr,
        patterns=(_JSON_PROMPT_TOKENS, _JSON_COMPLETION_TOKENS, _JSON_TOTAL_TOKENS),
    )
    if structured is not None:
        return structured

    textual = _extract(
        stdout=stdout,
        stderr=stderr,
        patterns=(_INPUT_TOKENS, _OUTPUT_TOKENS, _TOTAL_TOKENS),
    )
    if textual is not None:
        return textual

    for source_name, text in (("tool_stderr", stderr), ("tool_stdout", stdout)):
        used = _extract_int(_TOKENS_USED, text)
        if used is not None:
            return UsageExtraction(
                input_tokens=None,
                output_tokens=None,
                total_tokens=used,
                usage_status="reported",
                usage_source=source_name,
            )

    return UsageExtraction(
        input_tokens=None,
        output_tokens=None,
        total_tokens=None,
        usage_status="unknown",
        usage_source="none",
    )


def _extract(
    *,
    stdout: str,
    stderr: str,
    patterns: tuple[re.Pattern[str], re.Pattern[str], re.Pattern[str]],
) -> UsageExtraction | None:
    input_pattern, output_pattern, total_pattern = patterns
    for source_name, text in (("tool_stdout", stdout), ("tool_stderr", stderr)):
        input_tokens = _extract_int(input_pattern, text)
        output_tokens = _extract_int(output_pattern, text)
        total = _extract_int(total_pattern, text)
        total_was_reported = total is not None
        if input_tokens is None and output_tokens is None and total is None:
            continue
        if total is None:
            known = [value for value in (input_tokens, output_tokens) if value is not None]
            total = sum(known) if known else None
        return UsageExtraction(
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            total_tokens=total,
            usage_status="reported" if total_was_reported else "estimated",
            usage_source=source_name,
        )
    return None


def _extract_int(pattern: re.Pattern[str], text: str) -> int | None:
    match = pattern.search(text)
    if match is None:
        return None
    raw = match.group(1).replace(",", "").strip()
    if not raw.isdigit():
        return None
    return int(raw)
