"""Best-effort structured payload recovery from free-form backend output."""

from __future__ import annotations

import json
import re
from typing import Any

_FENCED_JSON = re.compile(r"```(?:json)?\s*(\{.*?\})\s*```", re.DOTALL | re.IGNORECASE)
_BRACED = re.compile(r"\{[\s\S]*\}")


def parse_output(text: str | None) -> Any | None:
    """Extract a JSON value from backend text, or ``None`` when there is none.

    Tries the whole string first, then a fenced ```json block, then the
    widest ``{...}`` span. This is a heuristic scan, not a parser: the caller
    keeps the raw text either way.
    """

    if not text:
        return None
    stripped = text.strip()
    if not stripped:
        return None

    direct = _try_load(stripped)
    if direct is not None:
        return direct

    fenced = _FENCED_JSON.search(stripped)
    if fenced is not None:
        payload = _try_load(fenced.group(1))
        if payload is not None:
            return payload

    braced = _BRACED.search(stripped)
    if braced is None:
        return None
    return _try_load(braced.group(0))


def _try_load(raw: str) -> Any | None:
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return None
