"""Masking of personal data in debug logs.

Location payloads name agents, carry their e-mail addresses and pin them to a
few metres. :func:`redact_for_log` keeps the shape of a payload while hiding
contact details and coarsening coordinates.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

_MASKED = "<redacted>"
_MAX_DEPTH = 20

_MASKED_KEYS = frozenset({"email", "contact", "password", "token", "authorization", "cookie"})

# Three decimals is roughly 100 m.
_COORDINATE_KEYS = frozenset({"latitude", "longitude", "lat", "lng", "lon"})
_COORDINATE_DECIMALS = 3


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _redact_entry(key: str, value: Any, max_string: int, depth: int) -> Any:
    name = key.lower()
    if name in _MASKED_KEYS:
        return _MASKED
    if name in _COORDINATE_KEYS and _is_number(value):
        return round(float(value), _COORDINATE_DECIMALS)
    return redact_for_log(value, max_string=max_string, _depth=depth + 1)


def redact_for_log(value: Any, *, max_string: int = 256, _depth: int = 0) -> Any:
    """Return a copy of *value* that is safe to log at DEBUG level."""
    if _depth > _MAX_DEPTH:
        return "<max-depth>"
    if value is None or isinstance(value, (bool, int, float)):
        return value
    if isinstance(value, str):
        return value if len(value) <= max_string else f"{value[:max_string]}…<truncated>"
    if isinstance(value, (bytes, bytearray)):
        return f"<bytes:{len(value)}b>"
    if isinstance(value, Mapping):
        return {str(k): _redact_entry(str(k), v, max_string, _depth) for k, v in value.items()}
    if isinstance(value, Sequence):
        return [redact_for_log(item, max_string=max_string, _depth=_depth + 1) for item in value]
    return repr(value)
