"""Normalization helpers.

Placeholder-tolerant coercion shared by the push and pull parsers. Every
helper returns ``None`` for values the backend uses to mean "not available".
"""

from __future__ import annotations

import math
from typing import Any

_BLANKS = frozenset({"", "--"})
_TRUE_WORDS = frozenset({"1", "true", "yes", "on", "active"})
_FALSE_WORDS = frozenset({"0", "false", "no", "off", "inactive"})


def safe_float(value: Any) -> float | None:
    if value is None or isinstance(value, bool) or (isinstance(value, str) and value.strip() in _BLANKS):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return None if math.isnan(number) else number


def safe_int(value: Any) -> int | None:
    number = safe_float(value)
    return None if number is None else int(number)


def safe_str(value: Any) -> str | None:
    text = "" if value is None else str(value).strip()
    return text or None


def safe_bool(value: Any) -> bool | None:
    """Interpret the truthy spellings the backend uses (``true``, ``1``, ``"on"``)."""
    if value is None or isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    word = str(value).strip().lower()
    if word in _TRUE_WORDS:
        return True
    if word in _FALSE_WORDS:
        return False
    return None


def unwrap_data(payload: Any, *keys: str) -> Any:
    """Return ``payload["data"]`` (then each of *keys*) when present.

    Push and REST payloads are sometimes wrapped in ``{"data": ...}``, and
    roster lists sometimes arrive as ``{"locations": [...]}``.
    """
    current = payload
    if isinstance(current, dict) and "data" in current:
        current = current["data"]
    for key in keys:
        if isinstance(current, dict) and key in current:
            current = current[key]
    return current
