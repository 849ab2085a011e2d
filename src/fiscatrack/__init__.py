"""fiscatrack - Async client keeping a live roster of field agent locations."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("fiscatrack")
except PackageNotFoundError:
    __version__ = "0+local"
from fiscatrack.client import TrackerClient
from fiscatrack.config import TrackerConfig, WatchOptions
from fiscatrack.exceptions import (
    TrackerApiError,
    TrackerChannelError,
    TrackerConfigError,
    TrackerError,
    TrackerSensorError,
    TrackerTransportError,
)
from fiscatrack.export import history_to_csv
from fiscatrack.models import (
    AgentLocation,
    ConnectivityState,
    Coordinates,
    HistoryPage,
    LocationHistoryPoint,
    PositionSample,
    SensorErrorKind,
    SensorPermissionState,
    TrackingFlag,
    TrackingStats,
    WatchState,
)
from fiscatrack.sensor import PositionSensor
from fiscatrack.state.policy import derive_watch_state

__all__ = [
    "__version__",
    "AgentLocation",
    "ConnectivityState",
    "Coordinates",
    "HistoryPage",
    "LocationHistoryPoint",
    "PositionSample",
    "PositionSensor",
    "SensorErrorKind",
    "SensorPermissionState",
    "TrackerApiError",
    "TrackerChannelError",
    "TrackerClient",
    "TrackerConfig",
    "TrackerConfigError",
    "TrackerError",
    "TrackerSensorError",
    "TrackerTransportError",
    "TrackingFlag",
    "TrackingStats",
    "WatchOptions",
    "WatchState",
    "derive_watch_state",
    "history_to_csv",
]
