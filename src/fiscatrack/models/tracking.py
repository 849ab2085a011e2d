"""Tracking flag, statistics and maintenance models."""

from __future__ import annotations

from typing import Any, ClassVar

from pydantic import Field, field_validator

from fiscatrack.ingestion.normalize import safe_bool, safe_int
from fiscatrack.models._base import OptionalTimestamp, TrackerBaseModel


class TrackingFlag(TrackerBaseModel):
    """Process-wide tracking switch.

    ``last_changed_at`` and ``changed_by`` are overwritten on every change.
    """

    active: bool = False
    last_changed_at: OptionalTimestamp = None
    changed_by: str | None = None


class TrackingStats(TrackerBaseModel):
    """Aggregate tracking statistics reported by the backend."""

    _KEY_ALIASES: ClassVar[dict[str, str]] = {"activeUsers24h": "activeUsers24H"}

    active: bool = False
    total_active: int = 0
    online: int = 0
    total_locations: int = 0
    active_users_24h: int = Field(default=0, alias="activeUsers24H")
    log_interval: int | None = None

    @field_validator("active", mode="before")
    @classmethod
    def _coerce_active(cls, value: Any) -> bool:
        return bool(safe_bool(value))

    @field_validator("total_active", "online", "total_locations", "active_users_24h", mode="before")
    @classmethod
    def _coerce_counts(cls, value: Any) -> int:
        return safe_int(value) or 0

    @field_validator("log_interval", mode="before")
    @classmethod
    def _coerce_interval(cls, value: Any) -> int | None:
        return safe_int(value)


class CleanupResult(TrackerBaseModel):
    """Result of a history cleanup request."""

    message: str = ""
    deleted_count: int = 0

    @field_validator("deleted_count", mode="before")
    @classmethod
    def _coerce_count(cls, value: Any) -> int:
        return safe_int(value) or 0
