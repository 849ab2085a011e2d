"""Push channel event models.

Inbound events are parsed from the payloads the tracking backend broadcasts;
outbound requests render themselves to the wire shape via ``to_payload()``.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Any, ClassVar

from pydantic import BaseModel, ConfigDict, Field, field_validator

from fiscatrack.ingestion.normalize import safe_bool, safe_float, safe_str
from fiscatrack.models._base import OptionalTimestamp, Timestamp, TrackerBaseModel, format_timestamp, is_negative
from fiscatrack.models.location import LOCATION_KEY_ALIASES, AgentLocation, Coordinates, fold_coordinates


class PushEventName(StrEnum):
    """Event names used on the push channel."""

    # inbound
    LOCATION_REALTIME = "location:realtime"
    LOCATION_ALL = "location:allLocations"
    LOCATION_CONFIRMED = "location:confirmed"
    LOCATION_ERROR = "location:error"
    TRACKING_STATUS = "tracking:status"
    TRACKING_STATUS_CHANGED = "tracking:statusChanged"
    TRACKING_STATUS_RESPONSE = "tracking:statusResponse"
    TRACKING_STATS = "tracking:stats"
    TRACKING_CLEANUP_RESPONSE = "tracking:cleanupResponse"
    # outbound
    LOCATION_UPDATE = "location:update"
    TRACKING_SET_STATUS = "tracking:setStatus"
    TRACKING_GET_STATUS = "tracking:getStatus"
    TRACKING_GET_STATS = "tracking:getStats"
    LOCATION_GET_ALL = "location:getAll"
    TRACKING_CLEANUP = "tracking:cleanup"


class AgentLocationEvent(TrackerBaseModel):
    """Single-agent position update."""

    _KEY_ALIASES: ClassVar[dict[str, str]] = LOCATION_KEY_ALIASES
    _SENTINEL_RULES: ClassVar[dict[str, Any]] = {"accuracy_meters": is_negative}

    agent_id: str
    coordinates: Coordinates
    accuracy_meters: float | None = None
    sampled_at: Timestamp
    display_name: str | None = None
    contact: str | None = None

    @classmethod
    def _reshape(cls, values: dict[str, Any]) -> dict[str, Any]:
        return fold_coordinates(values)

    @field_validator("agent_id", mode="before")
    @classmethod
    def _coerce_agent_id(cls, value: Any) -> Any:
        return str(value) if isinstance(value, int) else value

    @field_validator("accuracy_meters", mode="before")
    @classmethod
    def _coerce_accuracy(cls, value: Any) -> float | None:
        return safe_float(value)

    @field_validator("display_name", "contact", mode="before")
    @classmethod
    def _coerce_text(cls, value: Any) -> str | None:
        return safe_str(value)


class RosterReplaceEvent(BaseModel):
    """Full-roster replacement; authoritative for agent liveness."""

    model_config = ConfigDict(frozen=True)

    entries: list[AgentLocation] = Field(default_factory=list)


class TrackingFlagChangedEvent(TrackerBaseModel):
    """Authoritative tracking flag broadcast from the server."""

    _KEY_ALIASES: ClassVar[dict[str, str]] = {
        "updatedBy": "changedBy",
        "timestamp": "at",
        "updatedAt": "at",
    }

    active: bool
    changed_by: str | None = None
    at: OptionalTimestamp = None

    @field_validator("active", mode="before")
    @classmethod
    def _coerce_active(cls, value: Any) -> Any:
        parsed = safe_bool(value)
        return value if parsed is None else parsed


class TrackingStatusResponse(TrackerBaseModel):
    """Server reply to a ``tracking:setStatus`` request."""

    success: bool = True
    message: str = ""
    active: bool | None = None
    request_id: str | None = None


class LocationUpdate(BaseModel):
    """Outbound position sample forwarded by the Sensor Watch Controller."""

    model_config = ConfigDict(frozen=True)

    agent_id: str
    coordinates: Coordinates
    accuracy_meters: float | None = None
    sampled_at: Timestamp

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "userId": self.agent_id,
            "latitude": self.coordinates.latitude,
            "longitude": self.coordinates.longitude,
            "timestamp": format_timestamp(self.sampled_at),
        }
        if self.accuracy_meters is not None:
            payload["accuracy"] = self.accuracy_meters
        return payload


class SetTrackingStatusRequest(BaseModel):
    """Outbound request to change the global tracking flag."""

    model_config = ConfigDict(frozen=True)

    active: bool
    agent_id: str | None = None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"active": self.active}
        if self.agent_id:
            payload["userId"] = self.agent_id
        return payload
