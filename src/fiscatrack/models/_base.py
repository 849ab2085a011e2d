"""Base model for tracking backend payloads.

Wire models inherit from :class:`TrackerBaseModel`:

* camelCase keys map to snake_case fields through ``to_camel``;
* placeholder values (``""``, ``"--"``, ``"null"``, NaN) are dropped before
  validation so field defaults apply;
* ``_KEY_ALIASES`` renames legacy backend keys, ``_reshape`` lets a model
  flatten nested payloads;
* the untouched payload is kept in ``raw``.
"""

from __future__ import annotations

import math
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Annotated, Any, ClassVar

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

_PLACEHOLDERS = frozenset({"", "--", "NaN", "nan", "null"})

# Epoch numbers at or above this are milliseconds.
_MS_THRESHOLD = 1_000_000_000_000


def is_negative(value: int | float) -> bool:
    return value < 0


def parse_timestamp(value: Any) -> datetime | None:
    """Convert an ISO-8601 string or epoch number (seconds or ms) to a UTC datetime.

    Naive datetimes are assumed to be UTC.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo is not None else value.replace(tzinfo=UTC)
    if isinstance(value, (int, float)):
        seconds = value / 1000.0 if value >= _MS_THRESHOLD else float(value)
        return datetime.fromtimestamp(seconds, tz=UTC)
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    return parsed if parsed.tzinfo is not None else parsed.replace(tzinfo=UTC)


def format_timestamp(value: datetime) -> str:
    """Render a datetime the way the backend emits it (``...Z`` with milliseconds)."""
    return value.astimezone(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


Timestamp = Annotated[datetime, BeforeValidator(parse_timestamp)]
OptionalTimestamp = Annotated[datetime | None, BeforeValidator(parse_timestamp)]


def _is_placeholder(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() in _PLACEHOLDERS
    return isinstance(value, float) and math.isnan(value)


def strip_placeholders(values: dict[str, Any], aliases: dict[str, str] | None = None) -> dict[str, Any]:
    """Return *values* with *aliases* applied and placeholder entries removed.

    An alias never overwrites a key that is already present.
    """
    renamed = dict(values)
    for legacy, current in (aliases or {}).items():
        if legacy in renamed and current not in renamed:
            renamed[current] = renamed.pop(legacy)
    return {key: value for key, value in renamed.items() if not _is_placeholder(value)}


class TrackerBaseModel(BaseModel):
    """Frozen base for every payload model."""

    _KEY_ALIASES: ClassVar[dict[str, str]] = {}

    _SENTINEL_RULES: ClassVar[dict[str, Callable[..., bool]]] = {}
    """``{"field": predicate}``; a field whose value matches becomes ``None``."""

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
        alias_generator=to_camel,
    )

    raw: dict[str, Any] = Field(default_factory=dict, repr=False)

    @classmethod
    def _reshape(cls, values: dict[str, Any]) -> dict[str, Any]:
        return values

    @model_validator(mode="before")
    @classmethod
    def _prepare_payload(cls, values: Any) -> Any:
        if not isinstance(values, dict):
            return values
        prepared = cls._reshape(strip_placeholders(values, cls._KEY_ALIASES))
        # An explicit raw= from the caller wins.
        if "raw" not in values:
            prepared["raw"] = dict(values)
        return prepared

    @model_validator(mode="after")
    def _apply_sentinel_rules(self) -> TrackerBaseModel:
        for name, matches in type(self)._SENTINEL_RULES.items():
            current = getattr(self, name, None)
            if current is not None and matches(current):
                object.__setattr__(self, name, None)
        return self
