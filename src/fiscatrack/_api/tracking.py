"""Tracking endpoints.

Endpoints:
  - GET /tracking/stats
  - POST /tracking/cleanup
"""

from __future__ import annotations

from pydantic import ValidationError

from fiscatrack._api._common import unwrap_envelope
from fiscatrack._constants import CLEANUP_ENDPOINT, STATS_ENDPOINT
from fiscatrack._transport import Transport
from fiscatrack.exceptions import TrackerApiError
from fiscatrack.models.tracking import CleanupResult, TrackingStats


async def fetch_stats(transport: Transport) -> TrackingStats:
    response = await transport.get_json(STATS_ENDPOINT)
    data = unwrap_envelope(response, endpoint=STATS_ENDPOINT)
    if not isinstance(data, dict):
        raise TrackerApiError(f"{STATS_ENDPOINT} returned no stats", endpoint=STATS_ENDPOINT)
    try:
        return TrackingStats.model_validate(data)
    except ValidationError as exc:
        raise TrackerApiError(f"{STATS_ENDPOINT} returned invalid stats: {exc}", endpoint=STATS_ENDPOINT) from exc


async def request_cleanup(transport: Transport, *, days_to_keep: int = 7) -> CleanupResult:
    """Ask the backend to delete location history older than *days_to_keep* days."""
    if days_to_keep < 0:
        raise ValueError("days_to_keep must be non-negative")
    response = await transport.post_json(CLEANUP_ENDPOINT, {"daysToKeep": days_to_keep})
    data = unwrap_envelope(response, endpoint=CLEANUP_ENDPOINT)
    if not isinstance(data, dict):
        data = {}
    return CleanupResult.model_validate(data)
