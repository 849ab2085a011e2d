"""Deterministic merge and watch policy.

This module intentionally contains *no* payload parsing. The ingestion /
Pydantic boundary is responsible for producing typed events and timestamps.
"""

from __future__ import annotations

from datetime import datetime

from fiscatrack.models.status import ConnectivityState, SensorPermissionState, WatchState


def should_overwrite_position(*, stored_sampled_at: datetime | None, incoming_sampled_at: datetime) -> bool:
    """Decide whether an incoming single-agent update may replace the stored position.

    Policy:
    - No stored position: accept.
    - Incoming sample older than the stored one: reject (out-of-order delivery).
    - Same or newer: accept.
    """
    if stored_sampled_at is None:
        return True
    return incoming_sampled_at >= stored_sampled_at


def derive_watch_state(
    connectivity: ConnectivityState,
    tracking_active: bool,
    permission: SensorPermissionState,
) -> WatchState:
    """Watching iff connected, tracking is on and the sensor permission is granted."""
    if (
        connectivity is ConnectivityState.CONNECTED
        and tracking_active
        and permission is SensorPermissionState.GRANTED
    ):
        return WatchState.WATCHING
    return WatchState.IDLE
