"""Push ingestion helpers.

This module translates raw push channel payloads into typed events for the
Event Merge Engine and the tracking flag holder. It is also used for pull
snapshots so both paths produce identical roster entries.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from pydantic import ValidationError

from fiscatrack._redact import redact_for_log
from fiscatrack.ingestion.normalize import unwrap_data
from fiscatrack.models.location import AgentLocation
from fiscatrack.models.push import (
    AgentLocationEvent,
    RosterReplaceEvent,
    TrackingFlagChangedEvent,
    TrackingStatusResponse,
)
from fiscatrack.models.tracking import CleanupResult, TrackingStats

_logger = logging.getLogger(__name__)


def _flatten_realtime(payload: dict[str, Any]) -> dict[str, Any]:
    """Flatten ``{userId, location: {...}, timestamp}`` into one location mapping.

    The outer ``timestamp`` is the broadcast time; it only stands in for the
    sample time when the nested location carries none.
    """
    nested = payload.get("location")
    if not isinstance(nested, dict):
        return dict(payload)
    flat = dict(nested)
    for key in ("userId", "agentId"):
        if key in payload and key not in flat:
            flat[key] = payload[key]
    if not flat.get("timestamp") and payload.get("timestamp"):
        flat["timestamp"] = payload["timestamp"]
    return flat


def parse_agent_location_event(payload: Any, *, received_at: datetime) -> AgentLocationEvent | None:
    """Build an :class:`AgentLocationEvent` from a ``location:realtime`` payload."""
    payload = unwrap_data(payload)
    if not isinstance(payload, dict):
        return None
    flat = _flatten_realtime(payload)
    if not flat.get("timestamp") and not flat.get("sampledAt"):
        flat["timestamp"] = received_at
    flat["raw"] = payload
    try:
        return AgentLocationEvent.model_validate(flat)
    except ValidationError:
        _logger.debug("Discarding malformed location event %s", redact_for_log(flat), exc_info=True)
        return None


def parse_location_list(payload: Any, *, received_at: datetime) -> list[AgentLocation] | None:
    """Parse a roster list (push ``location:allLocations`` or REST ``/locations``).

    Returns ``None`` when *payload* does not hold a list at all, so callers
    never mistake a broken response for an empty roster. Entries that do not
    validate are skipped. Entries without a receipt time get *received_at*;
    entries without an ``online`` flag are considered online.
    """
    items = unwrap_data(payload, "locations")
    if isinstance(items, dict) and isinstance(items.get("entries"), list):
        items = items["entries"]
    if not isinstance(items, list):
        return None

    entries: list[AgentLocation] = []
    for item in items:
        if not isinstance(item, dict):
            continue
        working = dict(item)
        if not working.get("lastUpdate") and not working.get("lastSeenAt"):
            working["lastUpdate"] = received_at
        working.setdefault("online", True)
        working["raw"] = item
        try:
            entries.append(AgentLocation.model_validate(working))
        except ValidationError:
            _logger.debug("Skipping malformed roster entry %s", redact_for_log(item), exc_info=True)
    return entries


def parse_roster_replace_event(payload: Any, *, received_at: datetime) -> RosterReplaceEvent | None:
    entries = parse_location_list(payload, received_at=received_at)
    if entries is None:
        _logger.debug("Discarding roster broadcast without a location list %s", redact_for_log(payload))
        return None
    return RosterReplaceEvent(entries=entries)


def parse_tracking_flag_event(payload: Any) -> TrackingFlagChangedEvent | None:
    payload = unwrap_data(payload)
    if not isinstance(payload, dict):
        return None
    try:
        return TrackingFlagChangedEvent.model_validate(payload)
    except ValidationError:
        _logger.debug("Discarding malformed tracking status %s", payload, exc_info=True)
        return None


def parse_status_response(payload: Any) -> TrackingStatusResponse | None:
    payload = unwrap_data(payload)
    if not isinstance(payload, dict):
        return None
    try:
        return TrackingStatusResponse.model_validate(payload)
    except ValidationError:
        _logger.debug("Discarding malformed status response %s", payload, exc_info=True)
        return None


def parse_tracking_stats(payload: Any) -> TrackingStats | None:
    payload = unwrap_data(payload)
    if not isinstance(payload, dict):
        return None
    try:
        return TrackingStats.model_validate(payload)
    except ValidationError:
        _logger.debug("Discarding malformed tracking stats %s", payload, exc_info=True)
        return None


def parse_cleanup_result(payload: Any) -> CleanupResult | None:
    payload = unwrap_data(payload)
    if not isinstance(payload, dict):
        return None
    try:
        return CleanupResult.model_validate(payload)
    except ValidationError:
        _logger.debug("Discarding malformed cleanup response %s", payload, exc_info=True)
        return None
