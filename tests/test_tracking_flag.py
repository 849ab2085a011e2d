from __future__ import annotations

from fakes import FakeClock, at

from fiscatrack.models.tracking import TrackingFlag
from fiscatrack.state.tracking import TrackingFlagState


def test_set_overwrites_annotations_and_notifies_even_without_change() -> None:
    clock = FakeClock()
    state = TrackingFlagState(clock=clock)
    seen: list[TrackingFlag] = []
    state.subscribe(seen.append)

    state.set(True, changed_by="admin")
    clock.advance(30)
    state.set(True, changed_by="7")

    assert [flag.changed_by for flag in seen] == ["admin", "7"]
    assert state.flag.active is True
    assert state.flag.last_changed_at == at(30)


def test_explicit_timestamp_wins_over_clock() -> None:
    state = TrackingFlagState(clock=FakeClock())

    flag = state.set(False, changed_by=None, at=at(-60))

    assert flag.last_changed_at == at(-60)
    assert flag.changed_by is None


def test_failing_observer_does_not_block_others() -> None:
    state = TrackingFlagState(clock=FakeClock())
    seen: list[bool] = []

    def broken(_flag: TrackingFlag) -> None:
        raise RuntimeError("boom")

    state.subscribe(broken)
    unsubscribe = state.subscribe(lambda flag: seen.append(flag.active))
    state.set(True, changed_by="admin")
    unsubscribe()
    state.set(False, changed_by="admin")

    assert seen == [True]
