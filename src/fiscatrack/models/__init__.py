"""Typed models for the tracking backend."""

from fiscatrack.models.location import (
    AgentLocation,
    Coordinates,
    HistoryPage,
    LocationHistoryPoint,
    Pagination,
    PositionSample,
)
from fiscatrack.models.push import (
    AgentLocationEvent,
    LocationUpdate,
    PushEventName,
    RosterReplaceEvent,
    SetTrackingStatusRequest,
    TrackingFlagChangedEvent,
    TrackingStatusResponse,
)
from fiscatrack.models.status import ConnectivityState, SensorErrorKind, SensorPermissionState, WatchState
from fiscatrack.models.tracking import CleanupResult, TrackingFlag, TrackingStats

__all__ = [
    "AgentLocation",
    "AgentLocationEvent",
    "CleanupResult",
    "ConnectivityState",
    "Coordinates",
    "HistoryPage",
    "LocationHistoryPoint",
    "LocationUpdate",
    "Pagination",
    "PositionSample",
    "PushEventName",
    "RosterReplaceEvent",
    "SensorErrorKind",
    "SensorPermissionState",
    "SetTrackingStatusRequest",
    "TrackingFlag",
    "TrackingFlagChangedEvent",
    "TrackingStats",
    "TrackingStatusResponse",
    "WatchState",
]
