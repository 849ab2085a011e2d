"""Location endpoints.

Endpoints:
  - GET /locations (roster snapshot used by the reconciler)
  - GET /locations/user/{userId}
  - GET /locations/history/{userId}
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime

from pydantic import ValidationError

from fiscatrack._api._common import unwrap_envelope
from fiscatrack._constants import HISTORY_ENDPOINT, LOCATIONS_ENDPOINT, USER_LOCATION_ENDPOINT
from fiscatrack._transport import Transport
from fiscatrack.exceptions import TrackerApiError
from fiscatrack.ingestion.push import parse_location_list
from fiscatrack.models._base import format_timestamp
from fiscatrack.models.location import AgentLocation, HistoryPage

_logger = logging.getLogger(__name__)


def _date_param(value: datetime | str) -> str:
    if isinstance(value, datetime):
        return format_timestamp(value)
    return value


async def fetch_all_locations(transport: Transport) -> list[AgentLocation]:
    """Fetch the full roster snapshot."""
    response = await transport.get_json(LOCATIONS_ENDPOINT)
    data = unwrap_envelope(response, endpoint=LOCATIONS_ENDPOINT)
    entries = parse_location_list(data, received_at=datetime.now(UTC))
    if entries is None:
        raise TrackerApiError(f"{LOCATIONS_ENDPOINT} returned no location list", endpoint=LOCATIONS_ENDPOINT)
    _logger.debug("Fetched %d locations", len(entries))
    return entries


async def fetch_user_location(transport: Transport, agent_id: str) -> AgentLocation:
    """Fetch the stored location of one agent."""
    endpoint = USER_LOCATION_ENDPOINT.format(agent_id=agent_id)
    response = await transport.get_json(endpoint)
    data = unwrap_envelope(response, endpoint=endpoint)
    if not isinstance(data, dict):
        raise TrackerApiError(f"{endpoint} returned no location", endpoint=endpoint)
    try:
        return AgentLocation.model_validate({"userId": agent_id, **data})
    except ValidationError as exc:
        raise TrackerApiError(f"{endpoint} returned an invalid location: {exc}", endpoint=endpoint) from exc


async def fetch_history(
    transport: Transport,
    agent_id: str,
    *,
    limit: int = 100,
    offset: int = 0,
    start_date: datetime | str | None = None,
    end_date: datetime | str | None = None,
) -> HistoryPage:
    """Fetch one page of an agent's location history."""
    endpoint = HISTORY_ENDPOINT.format(agent_id=agent_id)
    params: dict[str, str] = {"limit": str(limit), "offset": str(offset)}
    if start_date:
        params["startDate"] = _date_param(start_date)
    if end_date:
        params["endDate"] = _date_param(end_date)

    response = await transport.get_json(endpoint, params)
    data = unwrap_envelope(response, endpoint=endpoint)
    if isinstance(data, list):
        data = {"data": data}
    if not isinstance(data, dict):
        raise TrackerApiError(f"{endpoint} returned no history", endpoint=endpoint)
    try:
        return HistoryPage.model_validate(data)
    except ValidationError as exc:
        raise TrackerApiError(f"{endpoint} returned an invalid history page: {exc}", endpoint=endpoint) from exc
