from __future__ import annotations

import itertools

import pytest
from fakes import FakeSensor, at

from fiscatrack.config import WatchOptions
from fiscatrack.models.push import LocationUpdate
from fiscatrack.models.status import ConnectivityState, SensorErrorKind, SensorPermissionState, WatchState
from fiscatrack.sensor import SensorWatchController
from fiscatrack.state.policy import derive_watch_state


class _Outbox:
    def __init__(self, *, connected: bool = True, accept: bool = True) -> None:
        self.connected = connected
        self.accept = accept
        self.sent: list[LocationUpdate] = []

    def send(self, update: LocationUpdate) -> bool:
        if not self.accept:
            return False
        self.sent.append(update)
        return True

    def is_connected(self) -> bool:
        return self.connected


def _controller(
    sensor: FakeSensor | None = None,
    outbox: _Outbox | None = None,
) -> tuple[SensorWatchController, FakeSensor, _Outbox]:
    sensor = sensor or FakeSensor()
    outbox = outbox or _Outbox()
    controller = SensorWatchController(
        sensor,
        agent_id="7",
        send=outbox.send,
        is_connected=outbox.is_connected,
        options=WatchOptions(high_accuracy=True, timeout=15.0, maximum_age=10.0),
    )
    return controller, sensor, outbox


def _watching(controller: SensorWatchController) -> None:
    controller.set_permission(SensorPermissionState.GRANTED)
    controller.set_tracking(True)
    controller.set_connectivity(ConnectivityState.CONNECTED)


_COMBINATIONS = list(
    itertools.product(
        list(ConnectivityState),
        [True, False],
        list(SensorPermissionState),
    )
)


@pytest.mark.parametrize(("connectivity", "tracking", "permission"), _COMBINATIONS)
def test_derive_watch_state_is_watching_only_when_all_three_hold(
    connectivity: ConnectivityState,
    tracking: bool,
    permission: SensorPermissionState,
) -> None:
    expected = (
        connectivity is ConnectivityState.CONNECTED and tracking and permission is SensorPermissionState.GRANTED
    )
    assert (derive_watch_state(connectivity, tracking, permission) is WatchState.WATCHING) is expected


@pytest.mark.parametrize(("connectivity", "tracking", "permission"), _COMBINATIONS)
def test_controller_matches_derived_state_from_any_starting_point(
    connectivity: ConnectivityState,
    tracking: bool,
    permission: SensorPermissionState,
) -> None:
    for start in _COMBINATIONS:
        controller, sensor, _outbox = _controller()
        controller.set_connectivity(start[0])
        controller.set_tracking(start[1])
        controller.set_permission(start[2])

        controller.set_connectivity(connectivity)
        controller.set_tracking(tracking)
        controller.set_permission(permission)

        expected = derive_watch_state(connectivity, tracking, permission)
        assert controller.state is expected
        assert sensor.active_watches == (1 if expected is WatchState.WATCHING else 0)
        assert (controller.active_handle is not None) is (expected is WatchState.WATCHING)


def test_retoggle_tracking_never_leaks_a_subscription() -> None:
    controller, sensor, _outbox = _controller()
    _watching(controller)
    first = controller.active_handle
    assert sensor.active_watches == 1

    controller.set_tracking(False)
    assert controller.state is WatchState.IDLE
    assert sensor.active_watches == 0
    assert sensor.cleared == [first]

    controller.set_tracking(True)
    assert sensor.active_watches == 1
    assert sensor.started == 2
    assert controller.active_handle != first


def test_repeated_inputs_do_not_restart_the_watch() -> None:
    controller, sensor, _outbox = _controller()
    _watching(controller)
    controller.set_tracking(True)
    controller.set_connectivity(ConnectivityState.CONNECTED)
    controller.set_permission(SensorPermissionState.GRANTED)

    assert sensor.started == 1
    assert sensor.cleared == []


def test_watch_uses_configured_options() -> None:
    controller, sensor, _outbox = _controller()
    _watching(controller)
    assert sensor.options == [WatchOptions(high_accuracy=True, timeout=15.0, maximum_age=10.0)]


def test_samples_are_forwarded_as_location_updates() -> None:
    controller, sensor, outbox = _controller()
    _watching(controller)

    sensor.deliver(-12.05, -77.04, when=at(1), accuracy=7.0)

    assert len(outbox.sent) == 1
    update = outbox.sent[0]
    assert update.agent_id == "7"
    assert update.coordinates.as_tuple() == (-12.05, -77.04)
    assert update.accuracy_meters == 7.0
    assert update.sampled_at == at(1)
    assert controller.samples_forwarded == 1


def test_samples_while_channel_not_connected_are_dropped_not_queued() -> None:
    outbox = _Outbox(connected=False)
    controller, sensor, _ = _controller(outbox=outbox)
    _watching(controller)

    sensor.deliver(1, 1, when=at(1))
    outbox.connected = True
    sensor.deliver(2, 2, when=at(2))

    assert [u.coordinates.as_tuple() for u in outbox.sent] == [(2, 2)]
    assert controller.samples_dropped == 1


def test_failed_send_counts_as_dropped() -> None:
    outbox = _Outbox(accept=False)
    controller, sensor, _ = _controller(outbox=outbox)
    _watching(controller)

    sensor.deliver(1, 1, when=at(1))

    assert controller.samples_dropped == 1
    assert controller.samples_forwarded == 0


def test_late_sample_from_cleared_watch_is_discarded() -> None:
    controller, sensor, outbox = _controller()
    _watching(controller)
    old_handle = controller.active_handle

    controller.set_tracking(False)
    controller.set_tracking(True)
    sensor.deliver_late(old_handle, 5, 5, when=at(3))

    assert outbox.sent == []


@pytest.mark.parametrize("kind", [SensorErrorKind.TIMEOUT, SensorErrorKind.POSITION_UNAVAILABLE])
def test_transient_errors_keep_watching(kind: SensorErrorKind) -> None:
    controller, sensor, _outbox = _controller()
    _watching(controller)

    sensor.fail(kind)

    assert controller.state is WatchState.WATCHING
    assert sensor.active_watches == 1
    assert controller.last_error is not None
    assert controller.last_error.kind is kind


def test_permission_denied_error_is_fatal() -> None:
    controller, sensor, _outbox = _controller()
    _watching(controller)

    sensor.fail(SensorErrorKind.PERMISSION_DENIED)

    assert controller.state is WatchState.IDLE
    assert controller.permission is SensorPermissionState.DENIED
    assert sensor.active_watches == 0


def test_attach_follows_permission_changes_once() -> None:
    controller, sensor, _outbox = _controller()
    controller.attach()
    controller.attach()
    assert sensor.permission_listeners == 1

    controller.set_tracking(True)
    controller.set_connectivity(ConnectivityState.CONNECTED)
    sensor.change_permission(SensorPermissionState.GRANTED)
    assert controller.state is WatchState.WATCHING

    sensor.change_permission(SensorPermissionState.DENIED)
    assert controller.state is WatchState.IDLE
    assert sensor.active_watches == 0


@pytest.mark.asyncio
async def test_request_permission_applies_result() -> None:
    sensor = FakeSensor(permission=SensorPermissionState.GRANTED)
    controller, _sensor, _outbox = _controller(sensor=sensor)
    controller.set_tracking(True)
    controller.set_connectivity(ConnectivityState.CONNECTED)

    result = await controller.request_permission()

    assert result is SensorPermissionState.GRANTED
    assert controller.state is WatchState.WATCHING


def test_observers_see_each_transition() -> None:
    controller, _sensor, _outbox = _controller()
    seen: list[WatchState] = []
    controller.subscribe(seen.append)

    _watching(controller)
    controller.set_connectivity(ConnectivityState.DISCONNECTED)

    assert seen == [WatchState.WATCHING, WatchState.IDLE]


def test_close_detaches_and_clears_the_watch() -> None:
    controller, sensor, _outbox = _controller()
    controller.attach()
    _watching(controller)

    controller.close()

    assert controller.state is WatchState.IDLE
    assert sensor.active_watches == 0
    assert sensor.permission_listeners == 0
