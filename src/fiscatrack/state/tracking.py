"""Process-wide tracking flag holder."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, datetime

from fiscatrack.models.tracking import TrackingFlag

_logger = logging.getLogger(__name__)

TrackingObserver = Callable[[TrackingFlag], None]


def _utcnow() -> datetime:
    return datetime.now(UTC)


class TrackingFlagState:
    """Holds the current :class:`TrackingFlag` and notifies observers on change.

    The flag is only changed by an explicit toggle request or by an
    authoritative server status; both paths go through :meth:`set`.
    """

    def __init__(self, *, clock: Callable[[], datetime] = _utcnow) -> None:
        self._clock = clock
        self._flag = TrackingFlag()
        self._observers: list[TrackingObserver] = []

    @property
    def flag(self) -> TrackingFlag:
        return self._flag

    @property
    def active(self) -> bool:
        return self._flag.active

    def set(self, active: bool, *, changed_by: str | None, at: datetime | None = None) -> TrackingFlag:
        """Record a change; annotations are overwritten even if ``active`` is unchanged."""
        previous = self._flag.active
        self._flag = TrackingFlag(
            active=active,
            last_changed_at=at or self._clock(),
            changed_by=changed_by,
            raw={},
        )
        if previous != active:
            _logger.info("Tracking %s by %s", "enabled" if active else "disabled", changed_by or "unknown")
        for observer in list(self._observers):
            try:
                observer(self._flag)
            except Exception:
                _logger.exception("Tracking observer %r failed", observer)
        return self._flag

    def subscribe(self, observer: TrackingObserver) -> Callable[[], None]:
        self._observers.append(observer)

        def _unsubscribe() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return _unsubscribe
