"""Connectivity, permission and watch state enums."""

from __future__ import annotations

from enum import StrEnum


class ConnectivityState(StrEnum):
    """Push channel state. Owned by the Channel Lifecycle Manager."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class SensorPermissionState(StrEnum):
    """Position sensor permission as reported by the platform."""

    UNKNOWN = "unknown"
    GRANTED = "granted"
    DENIED = "denied"

    @classmethod
    def _missing_(cls, value: object) -> SensorPermissionState:
        # Browser-style "prompt" means nothing has been decided yet.
        return cls.UNKNOWN


class WatchState(StrEnum):
    """Sensor Watch Controller state."""

    IDLE = "idle"
    WATCHING = "watching"


class SensorErrorKind(StrEnum):
    """Classification of position sensor errors."""

    PERMISSION_DENIED = "permission_denied"
    POSITION_UNAVAILABLE = "position_unavailable"
    TIMEOUT = "timeout"

    @property
    def is_fatal(self) -> bool:
        """Fatal errors force the watch back to Idle."""
        return self is SensorErrorKind.PERMISSION_DENIED
