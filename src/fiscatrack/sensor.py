"""Sensor Watch Controller.

Starts and stops the device position subscription so that exactly one watch
exists while the channel is connected, tracking is on and permission is
granted, and none otherwise.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any, Protocol

from fiscatrack.config import WatchOptions
from fiscatrack.exceptions import TrackerSensorError
from fiscatrack.models.location import PositionSample
from fiscatrack.models.push import LocationUpdate
from fiscatrack.models.status import (
    ConnectivityState,
    SensorPermissionState,
    WatchState,
)
from fiscatrack.state.policy import derive_watch_state

_logger = logging.getLogger(__name__)

SampleCallback = Callable[[PositionSample], None]
ErrorCallback = Callable[[TrackerSensorError], None]
PermissionCallback = Callable[[SensorPermissionState], None]
WatchObserver = Callable[[WatchState], None]


class PositionSensor(Protocol):
    """Platform position sensor.

    Callbacks are expected on the event loop thread. The handle returned by
    :meth:`watch_position` is opaque to the controller.
    """

    async def request_permission(self) -> SensorPermissionState: ...

    def watch_position(
        self,
        on_sample: SampleCallback,
        on_error: ErrorCallback,
        options: WatchOptions,
    ) -> Any: ...

    def clear_watch(self, handle: Any) -> None: ...

    def on_permission_change(self, callback: PermissionCallback) -> Callable[[], None]: ...


class SensorWatchController:
    """Own the sensor subscription handle and forward samples to the channel."""

    def __init__(
        self,
        sensor: PositionSensor,
        *,
        agent_id: str,
        send: Callable[[LocationUpdate], bool],
        is_connected: Callable[[], bool],
        options: WatchOptions | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._sensor = sensor
        self._agent_id = agent_id
        self._send = send
        self._is_connected = is_connected
        self._options = options or WatchOptions()
        self._logger = logger or _logger

        self._connectivity = ConnectivityState.DISCONNECTED
        self._tracking_active = False
        self._permission = SensorPermissionState.UNKNOWN
        self._state = WatchState.IDLE

        self._handle: Any = None
        self._generation = 0
        self._detach: Callable[[], None] | None = None
        self._observers: list[WatchObserver] = []

        self.samples_forwarded = 0
        self.samples_dropped = 0
        self.last_error: TrackerSensorError | None = None

    # ------------------------------------------------------------------
    # Read access
    # ------------------------------------------------------------------

    @property
    def state(self) -> WatchState:
        return self._state

    @property
    def permission(self) -> SensorPermissionState:
        return self._permission

    @property
    def active_handle(self) -> Any:
        """The live subscription handle, or ``None`` while Idle."""
        return self._handle

    def subscribe(self, observer: WatchObserver) -> Callable[[], None]:
        self._observers.append(observer)

        def _unsubscribe() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return _unsubscribe

    # ------------------------------------------------------------------
    # Inputs
    # ------------------------------------------------------------------

    def set_connectivity(self, connectivity: ConnectivityState) -> None:
        self._connectivity = connectivity
        self._reevaluate()

    def set_tracking(self, active: bool) -> None:
        self._tracking_active = bool(active)
        self._reevaluate()

    def set_permission(self, permission: SensorPermissionState) -> None:
        if permission is not self._permission:
            self._logger.info("Position sensor permission is now %s", permission)
        self._permission = permission
        self._reevaluate()

    def attach(self) -> None:
        """Follow the sensor's permission changes. Idempotent."""
        if self._detach is None:
            self._detach = self._sensor.on_permission_change(self.set_permission)

    async def request_permission(self) -> SensorPermissionState:
        permission = await self._sensor.request_permission()
        self.set_permission(permission)
        return permission

    def close(self) -> None:
        if self._detach is not None:
            self._detach()
            self._detach = None
        self._stop_watch()
        self._set_state(WatchState.IDLE)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _reevaluate(self) -> None:
        target = derive_watch_state(self._connectivity, self._tracking_active, self._permission)
        if target is self._state:
            return
        if target is WatchState.WATCHING:
            self._start_watch()
        else:
            self._stop_watch()
        self._set_state(target)

    def _start_watch(self) -> None:
        self._stop_watch()
        self._generation += 1
        generation = self._generation

        def on_sample(sample: PositionSample) -> None:
            if generation == self._generation:
                self._handle_sample(sample)
            else:
                self._logger.debug("Discarding sample from cleared watch generation=%d", generation)

        def on_error(error: TrackerSensorError) -> None:
            if generation == self._generation:
                self._handle_error(error)

        self._handle = self._sensor.watch_position(on_sample, on_error, self._options)
        self._logger.debug("Position watch started generation=%d", generation)

    def _stop_watch(self) -> None:
        # Bumping the generation first makes any callback still queued for the
        # old handle a no-op.
        self._generation += 1
        handle = self._handle
        self._handle = None
        if handle is not None:
            self._sensor.clear_watch(handle)
            self._logger.debug("Position watch cleared")

    def _handle_sample(self, sample: PositionSample) -> None:
        if not self._is_connected():
            self.samples_dropped += 1
            self._logger.debug("Channel not connected; dropping position sample")
            return
        update = LocationUpdate(
            agent_id=self._agent_id,
            coordinates=sample.coordinates,
            accuracy_meters=sample.accuracy_meters,
            sampled_at=sample.sampled_at,
        )
        if self._send(update):
            self.samples_forwarded += 1
        else:
            self.samples_dropped += 1

    def _handle_error(self, error: TrackerSensorError) -> None:
        self.last_error = error
        if error.kind.is_fatal:
            self._logger.warning("Position sensor permission revoked: %s", error)
            self.set_permission(SensorPermissionState.DENIED)
            return
        self._logger.warning("Position sensor error (%s): %s", error.kind, error)

    def _set_state(self, state: WatchState) -> None:
        if state is self._state:
            return
        self._state = state
        self._logger.debug("Watch state -> %s", state)
        for observer in list(self._observers):
            try:
                observer(state)
            except Exception:
                self._logger.exception("Watch observer %r failed", observer)
