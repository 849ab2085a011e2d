"""Test doubles shared by the test modules."""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Mapping
from datetime import UTC, datetime, timedelta
from typing import Any

from fiscatrack._push import PushEvent, PushListener
from fiscatrack.config import WatchOptions
from fiscatrack.exceptions import TrackerSensorError
from fiscatrack.models.location import Coordinates, PositionSample
from fiscatrack.models.status import SensorErrorKind, SensorPermissionState

BASE_TIME = datetime(2026, 1, 1, 12, 0, tzinfo=UTC)


def at(seconds: float) -> datetime:
    return BASE_TIME + timedelta(seconds=seconds)


class FakeClock:
    def __init__(self, start: datetime = BASE_TIME) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now = self.now + timedelta(seconds=seconds)
        return self.now


class FakePushTransport:
    """Push transport that records calls; tests drive the listener directly."""

    def __init__(self, *, publish_ok: bool = True, start_error: Exception | None = None) -> None:
        self.publish_ok = publish_ok
        self.start_error = start_error
        self.listener: PushListener | None = None
        self.endpoints: list[str] = []
        self.published: list[tuple[str, dict[str, Any]]] = []
        self.stop_calls = 0
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    def start(self, endpoint: str, listener: PushListener) -> None:
        if self.start_error is not None:
            raise self.start_error
        self.endpoints.append(endpoint)
        self.listener = listener
        self._running = True

    def stop(self) -> None:
        self.stop_calls += 1
        self._running = False

    def publish(self, event: str, payload: Mapping[str, Any]) -> bool:
        if not self.publish_ok:
            return False
        self.published.append((event, dict(payload)))
        return True

    # -- helpers ---------------------------------------------------------

    def connected(self) -> None:
        assert self.listener is not None
        self.listener.on_transport_connected()

    def dropped(self, reason: str = "network lost") -> None:
        assert self.listener is not None
        self.listener.on_transport_disconnected(reason)

    def emit(self, event: str, payload: Any) -> None:
        assert self.listener is not None
        self.listener.on_transport_event(PushEvent(event=event, payload=payload))

    def events_named(self, name: str) -> list[dict[str, Any]]:
        return [payload for event, payload in self.published if event == name]


class FakeRestTransport:
    """REST transport returning canned responses per endpoint.

    A response can be an ``asyncio.Future`` to hold the request open, or an
    exception instance to raise.
    """

    def __init__(self, responses: dict[str, Any] | None = None) -> None:
        self.responses: dict[str, Any] = dict(responses or {})
        self.calls: list[tuple[str, str, Any]] = []

    async def get_json(self, endpoint: str, params: Mapping[str, str] | None = None) -> Any:
        self.calls.append(("GET", endpoint, dict(params or {})))
        return await self._respond(endpoint)

    async def post_json(self, endpoint: str, body: Mapping[str, Any]) -> Any:
        self.calls.append(("POST", endpoint, dict(body)))
        return await self._respond(endpoint)

    async def _respond(self, endpoint: str) -> Any:
        response = self.responses.get(endpoint)
        if isinstance(response, asyncio.Future):
            return await response
        if isinstance(response, Exception):
            raise response
        return response

    def count(self, endpoint: str) -> int:
        return sum(1 for _method, called, _params in self.calls if called == endpoint)


class FakeSensor:
    """Position sensor that hands out numbered watch handles."""

    def __init__(self, permission: SensorPermissionState = SensorPermissionState.GRANTED) -> None:
        self.permission = permission
        self.watches: dict[int, tuple[Callable[[PositionSample], None], Callable[[TrackerSensorError], None]]] = {}
        self.cleared: list[int] = []
        self.started = 0
        self.options: list[WatchOptions] = []
        self.permission_requests = 0
        self._permission_callbacks: list[Callable[[SensorPermissionState], None]] = []
        self._next_handle = 0
        # Callbacks of cleared watches, kept to simulate late delivery.
        self.retired: dict[int, tuple[Callable[[PositionSample], None], Callable[[TrackerSensorError], None]]] = {}

    async def request_permission(self) -> SensorPermissionState:
        self.permission_requests += 1
        return self.permission

    def watch_position(
        self,
        on_sample: Callable[[PositionSample], None],
        on_error: Callable[[TrackerSensorError], None],
        options: WatchOptions,
    ) -> int:
        self._next_handle += 1
        self.started += 1
        self.options.append(options)
        self.watches[self._next_handle] = (on_sample, on_error)
        return self._next_handle

    def clear_watch(self, handle: int) -> None:
        self.cleared.append(handle)
        callbacks = self.watches.pop(handle, None)
        if callbacks is not None:
            self.retired[handle] = callbacks

    def on_permission_change(self, callback: Callable[[SensorPermissionState], None]) -> Callable[[], None]:
        self._permission_callbacks.append(callback)

        def _unsubscribe() -> None:
            if callback in self._permission_callbacks:
                self._permission_callbacks.remove(callback)

        return _unsubscribe

    # -- helpers ---------------------------------------------------------

    @property
    def active_watches(self) -> int:
        return len(self.watches)

    @property
    def permission_listeners(self) -> int:
        return len(self._permission_callbacks)

    def change_permission(self, permission: SensorPermissionState) -> None:
        self.permission = permission
        for callback in list(self._permission_callbacks):
            callback(permission)

    def deliver(self, latitude: float, longitude: float, *, when: datetime, accuracy: float | None = 5.0) -> None:
        for on_sample, _on_error in list(self.watches.values()):
            on_sample(make_sample(latitude, longitude, when=when, accuracy=accuracy))

    def deliver_late(self, handle: int, latitude: float, longitude: float, *, when: datetime) -> None:
        on_sample, _on_error = self.retired[handle]
        on_sample(make_sample(latitude, longitude, when=when))

    def fail(self, kind: SensorErrorKind, message: str = "sensor error") -> None:
        for _on_sample, on_error in list(self.watches.values()):
            on_error(TrackerSensorError(message, kind=kind))


def make_sample(latitude: float, longitude: float, *, when: datetime, accuracy: float | None = 5.0) -> PositionSample:
    return PositionSample(
        coordinates=Coordinates(latitude=latitude, longitude=longitude),
        accuracy_meters=accuracy,
        sampled_at=when,
    )


def location_payload(
    agent_id: str,
    latitude: float,
    longitude: float,
    *,
    when: datetime,
    username: str | None = None,
    accuracy: float | None = None,
) -> dict[str, Any]:
    """A ``location:realtime`` payload as the backend broadcasts it."""
    location: dict[str, Any] = {
        "latitude": latitude,
        "longitude": longitude,
        "timestamp": when.isoformat().replace("+00:00", "Z"),
    }
    if username is not None:
        location["username"] = username
    if accuracy is not None:
        location["accuracy"] = accuracy
    return {"userId": agent_id, "location": location, "timestamp": when.isoformat().replace("+00:00", "Z")}


def roster_item(agent_id: str, latitude: float, longitude: float, *, when: datetime, **extra: Any) -> dict[str, Any]:
    """One entry of a roster list as returned by ``GET /locations``."""
    item: dict[str, Any] = {
        "userId": agent_id,
        "latitude": latitude,
        "longitude": longitude,
        "timestamp": when.isoformat().replace("+00:00", "Z"),
    }
    item.update(extra)
    return item
