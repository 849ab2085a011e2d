"""Agent location and history models."""

from __future__ import annotations

from typing import Any, ClassVar

from pydantic import BaseModel, ConfigDict, Field, field_validator

from fiscatrack.ingestion.normalize import safe_float, safe_int, safe_str
from fiscatrack.models._base import OptionalTimestamp, Timestamp, TrackerBaseModel, is_negative


class Coordinates(BaseModel):
    """A (latitude, longitude) pair in degrees."""

    model_config = ConfigDict(frozen=True)

    latitude: float
    longitude: float

    @field_validator("latitude", "longitude", mode="before")
    @classmethod
    def _coerce_floats(cls, value: Any) -> Any:
        parsed = safe_float(value)
        return value if parsed is None else parsed

    def as_tuple(self) -> tuple[float, float]:
        return (self.latitude, self.longitude)


# Backend location keys → camelCase field aliases.
LOCATION_KEY_ALIASES: dict[str, str] = {
    "userId": "agentId",
    "username": "displayName",
    "email": "contact",
    "accuracy": "accuracyMeters",
    "timestamp": "sampledAt",
    "lastUpdate": "lastSeenAt",
}


def fold_coordinates(values: dict[str, Any]) -> dict[str, Any]:
    """Move flat ``latitude``/``longitude`` keys into a ``coordinates`` mapping."""
    if "coordinates" in values:
        return values
    if "latitude" not in values and "longitude" not in values:
        return values
    working = dict(values)
    working["coordinates"] = {
        "latitude": working.pop("latitude", None),
        "longitude": working.pop("longitude", None),
    }
    return working


class AgentLocation(TrackerBaseModel):
    """Most recent known position of one field agent.

    Parameters
    ----------
    agent_id : str
        Stable agent identity (wire ``userId``).
    display_name : str or None
        Human-readable name (wire ``username``).
    contact : str or None
        Contact address (wire ``email``).
    coordinates : Coordinates
        Position in degrees.
    accuracy_meters : float or None
        Sensor error estimate; negative values are treated as missing.
    sampled_at : datetime
        When the position was captured at the source (wire ``timestamp``).
    online : bool
        Whether the agent is considered actively reporting.
    last_seen_at : datetime or None
        Receipt time of the last event that touched this record (wire ``lastUpdate``).
    """

    _KEY_ALIASES: ClassVar[dict[str, str]] = LOCATION_KEY_ALIASES
    _SENTINEL_RULES: ClassVar[dict[str, Any]] = {"accuracy_meters": is_negative}

    agent_id: str
    display_name: str | None = None
    contact: str | None = None
    coordinates: Coordinates
    accuracy_meters: float | None = None
    sampled_at: Timestamp
    online: bool = False
    last_seen_at: OptionalTimestamp = None

    @classmethod
    def _reshape(cls, values: dict[str, Any]) -> dict[str, Any]:
        return fold_coordinates(values)

    @field_validator("agent_id", mode="before")
    @classmethod
    def _coerce_agent_id(cls, value: Any) -> Any:
        # Backends emit numeric ids for some agents.
        if isinstance(value, int):
            return str(value)
        if isinstance(value, str):
            value = value.strip()
            if not value:
                raise ValueError("agent_id must be non-empty")
        return value

    @field_validator("accuracy_meters", mode="before")
    @classmethod
    def _coerce_accuracy(cls, value: Any) -> float | None:
        return safe_float(value)

    @field_validator("display_name", "contact", mode="before")
    @classmethod
    def _coerce_text(cls, value: Any) -> str | None:
        return safe_str(value)

    @property
    def latitude(self) -> float:
        return self.coordinates.latitude

    @property
    def longitude(self) -> float:
        return self.coordinates.longitude


class LocationHistoryPoint(TrackerBaseModel):
    """One stored position from an agent's history."""

    latitude: float
    longitude: float
    accuracy: float | None = None
    timestamp: Timestamp

    @field_validator("latitude", "longitude", "accuracy", mode="before")
    @classmethod
    def _coerce_floats(cls, value: Any) -> Any:
        parsed = safe_float(value)
        return value if parsed is None else parsed


class Pagination(TrackerBaseModel):
    """Pagination block of a history response."""

    _KEY_ALIASES: ClassVar[dict[str, str]] = {"currentPage": "page"}

    page: int | None = None
    limit: int | None = None
    offset: int | None = None
    total: int = 0
    total_pages: int = 0

    @field_validator("page", "limit", "offset", mode="before")
    @classmethod
    def _coerce_ints(cls, value: Any) -> int | None:
        return safe_int(value)

    @field_validator("total", "total_pages", mode="before")
    @classmethod
    def _coerce_counts(cls, value: Any) -> int:
        return safe_int(value) or 0


class HistoryPage(TrackerBaseModel):
    """A page of :class:`LocationHistoryPoint` with pagination info."""

    _KEY_ALIASES: ClassVar[dict[str, str]] = {"history": "data", "locations": "data"}

    data: list[LocationHistoryPoint] = Field(default_factory=list)
    pagination: Pagination = Field(default_factory=Pagination)

    @property
    def has_more(self) -> bool:
        """Whether another page exists after this one."""
        pag = self.pagination
        if pag.offset is not None and pag.limit:
            return pag.offset + len(self.data) < pag.total
        if pag.page is not None and pag.total_pages:
            return pag.page < pag.total_pages
        return False


class PositionSample(BaseModel):
    """One reading delivered by the position sensor."""

    model_config = ConfigDict(frozen=True)

    coordinates: Coordinates
    accuracy_meters: float | None = None
    sampled_at: Timestamp
