"""Event Merge Engine.

This is the only component allowed to write to the :class:`LocationRoster`.
It applies three kinds of inbound facts with fixed precedence:

- single-agent push updates (upsert, subject to out-of-order suppression),
- full-roster push replacements (authoritative, replace everything),
- pull snapshots from the Periodic Reconciler (same precedence as a push
  replacement).
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from datetime import UTC, datetime
from typing import Any

from fiscatrack.models.location import AgentLocation
from fiscatrack.models.push import AgentLocationEvent, RosterReplaceEvent
from fiscatrack.state.policy import should_overwrite_position
from fiscatrack.state.roster import LocationRoster

_logger = logging.getLogger(__name__)

DEFAULT_DISPLAY_NAME = "Fiscalizador {agent_id}"


def _utcnow() -> datetime:
    return datetime.now(UTC)


class EventMergeEngine:
    """Translate push events and pull snapshots into roster operations.

    Given the same sequence of events and clock readings, the resulting roster
    is always the same.
    """

    def __init__(
        self,
        roster: LocationRoster,
        *,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._roster = roster
        self._clock = clock
        self.suppressed_updates = 0

    @property
    def roster(self) -> LocationRoster:
        return self._roster

    def apply_agent_update(self, event: AgentLocationEvent) -> bool:
        """Apply a single-agent update.

        Returns ``True`` when the position was written, ``False`` when it was
        suppressed as out of order. Liveness (``online``/``last_seen_at``) is
        advanced either way.
        """
        now = self._clock()
        existing = self._roster.get(event.agent_id)

        patch: dict[str, Any] = {"online": True, "last_seen_at": now}
        if event.display_name is not None:
            patch["display_name"] = event.display_name
        if event.contact is not None:
            patch["contact"] = event.contact

        accepted = should_overwrite_position(
            stored_sampled_at=existing.sampled_at if existing is not None else None,
            incoming_sampled_at=event.sampled_at,
        )
        if accepted:
            # A position is atomic: accuracy is replaced even when the event omits it.
            patch["coordinates"] = event.coordinates
            patch["accuracy_meters"] = event.accuracy_meters
            patch["sampled_at"] = event.sampled_at
        else:
            self.suppressed_updates += 1
            _logger.debug(
                "Out-of-order update for agent=%s suppressed (incoming=%s stored=%s)",
                event.agent_id,
                event.sampled_at.isoformat(),
                existing.sampled_at.isoformat() if existing is not None else None,
            )

        if existing is None and "display_name" not in patch:
            patch["display_name"] = DEFAULT_DISPLAY_NAME.format(agent_id=event.agent_id)

        self._roster.upsert(event.agent_id, patch)
        return accepted

    def apply_roster_replace(self, event: RosterReplaceEvent) -> None:
        """Apply a full-roster push; agents absent from it are dropped."""
        _logger.debug("Roster replace from push with %d entries", len(event.entries))
        self._roster.replace_all(event.entries)

    def apply_snapshot(self, entries: Iterable[AgentLocation]) -> None:
        """Apply a pull snapshot with the same precedence as a push replace."""
        materialized = list(entries)
        _logger.debug("Roster replace from pull with %d entries", len(materialized))
        self._roster.replace_all(materialized)
