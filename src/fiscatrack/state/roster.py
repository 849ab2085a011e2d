"""In-memory roster of current agent locations.

Only the Event Merge Engine writes to the roster; the rendering layer reads
snapshots and subscribes for change notifications.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Iterator, Mapping
from typing import Any

from fiscatrack.models.location import AgentLocation

_logger = logging.getLogger(__name__)

RosterObserver = Callable[[list[AgentLocation]], None]


class LocationRoster:
    """Insertion-ordered mapping of agent id → :class:`AgentLocation`.

    At most one entry exists per agent id. Entries are never removed except by
    :meth:`replace_all`.
    """

    def __init__(self) -> None:
        self._entries: dict[str, AgentLocation] = {}
        self._observers: list[RosterObserver] = []

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, agent_id: object) -> bool:
        return agent_id in self._entries

    def __iter__(self) -> Iterator[AgentLocation]:
        return iter(list(self._entries.values()))

    def get(self, agent_id: str) -> AgentLocation | None:
        return self._entries.get(agent_id)

    def agent_ids(self) -> list[str]:
        return list(self._entries)

    def snapshot(self) -> list[AgentLocation]:
        """Current entries in insertion order."""
        return list(self._entries.values())

    def upsert(self, agent_id: str, patch: Mapping[str, Any]) -> AgentLocation:
        """Merge *patch* into the entry for *agent_id*, creating it if absent.

        Keys missing from *patch* keep their stored values. Creating an entry
        still goes through :class:`AgentLocation` validation.
        """
        if not agent_id:
            raise ValueError("agent_id must be non-empty")
        update = {key: value for key, value in patch.items() if key != "agent_id"}

        existing = self._entries.get(agent_id)
        if existing is None:
            entry = AgentLocation.model_validate({**update, "agent_id": agent_id, "raw": {}})
        else:
            entry = existing.model_copy(update=update)
        self._entries[agent_id] = entry
        self._notify()
        return entry

    def replace_all(self, entries: Iterable[AgentLocation]) -> None:
        """Discard the roster and install exactly *entries*.

        Agents the source no longer reports are removed. When one agent id
        appears more than once, the last occurrence wins.
        """
        replacement: dict[str, AgentLocation] = {}
        for entry in entries:
            replacement[entry.agent_id] = entry
        self._entries = replacement
        self._notify()

    def subscribe(self, observer: RosterObserver) -> Callable[[], None]:
        """Register *observer*; returns a callable that unsubscribes it."""
        self._observers.append(observer)

        def _unsubscribe() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return _unsubscribe

    def _notify(self) -> None:
        if not self._observers:
            return
        snapshot = self.snapshot()
        for observer in list(self._observers):
            try:
                observer(snapshot)
            except Exception:
                _logger.exception("Roster observer %r failed", observer)
