"""Custom exception hierarchy for fiscatrack."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from fiscatrack.models.status import SensorErrorKind


class TrackerError(Exception):
    """Base exception for all fiscatrack errors."""


class TrackerConfigError(TrackerError):
    """Invalid or missing configuration."""


class TrackerTransportError(TrackerError):
    """HTTP-level failure (network, non-200, invalid JSON)."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        endpoint: str = "",
    ) -> None:
        self.status_code = status_code
        self.endpoint = endpoint
        super().__init__(message)


class TrackerApiError(TrackerError):
    """API answered with ``success: false`` or an unusable ``data`` envelope."""

    def __init__(
        self,
        message: str,
        *,
        endpoint: str = "",
    ) -> None:
        self.endpoint = endpoint
        super().__init__(message)


class TrackerChannelError(TrackerError):
    """Push channel failure (connect failure, unexpected drop, send failure).

    Never raised out of channel callbacks; recorded as
    :attr:`fiscatrack.channel.ChannelLifecycleManager.last_error` instead.
    """


class TrackerSensorError(TrackerError):
    """Error reported by the position sensor.

    ``kind`` decides whether the Sensor Watch Controller treats it as
    transient (timeout, unavailable signal) or fatal (permission revoked).
    """

    def __init__(self, message: str, *, kind: SensorErrorKind) -> None:
        self.kind = kind
        super().__init__(message)
