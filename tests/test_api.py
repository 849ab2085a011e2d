from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

import aiohttp
import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer as _TestServer
from fakes import FakeRestTransport, at, roster_item

from fiscatrack._api.locations import fetch_all_locations, fetch_history, fetch_user_location
from fiscatrack._api.tracking import fetch_stats, request_cleanup
from fiscatrack._transport import HttpTransport
from fiscatrack.config import TrackerConfig
from fiscatrack.exceptions import TrackerApiError, TrackerTransportError


def _ok(data: Any) -> dict[str, Any]:
    return {"success": True, "data": data}


@pytest.fixture
def backend() -> FakeRestTransport:
    return FakeRestTransport(
        {
            "/locations": _ok(
                {
                    "locations": [
                        roster_item("1", -12.0, -77.0, when=at(0), username="Ana", online=True),
                        roster_item("2", -12.1, -77.1, when=at(5), username="Beto", online=False),
                    ]
                }
            ),
            "/locations/user/1": _ok({"latitude": -12.0, "longitude": -77.0, "timestamp": "2026-01-01T12:00:00Z"}),
            "/locations/history/1": _ok(
                {
                    "history": [
                        {"latitude": -12.0, "longitude": -77.0, "accuracy": 5, "timestamp": "2026-01-01T12:00:00Z"},
                        {"latitude": -12.1, "longitude": -77.1, "timestamp": "2026-01-01T12:01:00Z"},
                    ],
                    "pagination": {"limit": 2, "offset": 0, "total": 3},
                }
            ),
            "/tracking/stats": _ok(
                {"active": True, "totalActive": 2, "online": 1, "totalLocations": 40, "activeUsers24h": 3}
            ),
            "/tracking/cleanup": _ok({"message": "Cleanup done", "deletedCount": 17}),
        }
    )


@pytest.mark.asyncio
async def test_fetch_all_locations(backend: FakeRestTransport) -> None:
    entries = await fetch_all_locations(backend)

    assert [e.agent_id for e in entries] == ["1", "2"]
    assert entries[0].display_name == "Ana"
    assert entries[1].online is False


@pytest.mark.asyncio
async def test_fetch_user_location_fills_agent_id(backend: FakeRestTransport) -> None:
    location = await fetch_user_location(backend, "1")

    assert location.agent_id == "1"
    assert location.sampled_at == at(0)


@pytest.mark.asyncio
async def test_fetch_history_sends_paging_and_date_filters(backend: FakeRestTransport) -> None:
    page = await fetch_history(
        backend,
        "1",
        limit=2,
        start_date=datetime(2026, 1, 1, tzinfo=UTC),
        end_date="2026-01-02",
    )

    assert len(page.data) == 2
    assert page.data[1].accuracy is None
    assert page.has_more is True
    assert backend.calls[-1] == (
        "GET",
        "/locations/history/1",
        {"limit": "2", "offset": "0", "startDate": "2026-01-01T00:00:00.000Z", "endDate": "2026-01-02"},
    )


@pytest.mark.asyncio
async def test_fetch_history_accepts_bare_list() -> None:
    transport = FakeRestTransport({"/locations/history/9": _ok([{"latitude": 1, "longitude": 2, "timestamp": 0}])})

    page = await fetch_history(transport, "9")

    assert len(page.data) == 1
    assert page.has_more is False
    assert transport.calls[-1][2] == {"limit": "100", "offset": "0"}


@pytest.mark.asyncio
async def test_fetch_stats(backend: FakeRestTransport) -> None:
    stats = await fetch_stats(backend)

    assert stats.active is True
    assert stats.total_locations == 40
    assert stats.active_users_24h == 3


@pytest.mark.asyncio
async def test_request_cleanup_posts_days_to_keep(backend: FakeRestTransport) -> None:
    result = await request_cleanup(backend, days_to_keep=30)

    assert result.deleted_count == 17
    assert backend.calls[-1] == ("POST", "/tracking/cleanup", {"daysToKeep": 30})


@pytest.mark.asyncio
async def test_request_cleanup_rejects_negative_days(backend: FakeRestTransport) -> None:
    with pytest.raises(ValueError):
        await request_cleanup(backend, days_to_keep=-1)
    assert backend.calls == []


@pytest.mark.asyncio
async def test_unsuccessful_envelope_raises_api_error() -> None:
    transport = FakeRestTransport({"/tracking/stats": {"success": False, "message": "db down"}})

    with pytest.raises(TrackerApiError, match="db down") as excinfo:
        await fetch_stats(transport)
    assert excinfo.value.endpoint == "/tracking/stats"


@pytest.mark.asyncio
async def test_envelope_without_data_raises_api_error() -> None:
    transport = FakeRestTransport({"/locations": {"success": True}})

    with pytest.raises(TrackerApiError):
        await fetch_all_locations(transport)


# ------------------------------------------------------------------
# HttpTransport against a local aiohttp server
# ------------------------------------------------------------------


async def _serve(handlers: dict[tuple[str, str], Any]) -> _TestServer:
    app = web.Application()
    for (method, path), handler in handlers.items():
        app.router.add_route(method, path, handler)
    server = _TestServer(app)
    await server.start_server()
    return server


@pytest.mark.asyncio
async def test_http_transport_round_trip() -> None:
    seen: dict[str, Any] = {}

    async def stats(request: web.Request) -> web.Response:
        seen["query"] = dict(request.query)
        seen["user_agent"] = request.headers.get("user-agent")
        return web.json_response(_ok({"active": False}))

    async def cleanup(request: web.Request) -> web.Response:
        seen["body"] = await request.json()
        return web.json_response(_ok({"deletedCount": 1}))

    server = await _serve({("GET", "/api/tracking/stats"): stats, ("POST", "/api/tracking/cleanup"): cleanup})
    try:
        config = TrackerConfig(api_base_url=str(server.make_url("/api")))
        async with aiohttp.ClientSession() as session:
            transport = HttpTransport(config, session)
            response = await transport.get_json("/tracking/stats", {"x": "1"})
            posted = await transport.post_json("/tracking/cleanup", {"daysToKeep": 7})
    finally:
        await server.close()

    assert response == {"success": True, "data": {"active": False}}
    assert posted["data"] == {"deletedCount": 1}
    assert seen["query"] == {"x": "1"}
    assert seen["body"] == {"daysToKeep": 7}
    assert seen["user_agent"].startswith("fiscatrack/")


@pytest.mark.asyncio
async def test_http_transport_maps_http_errors() -> None:
    async def broken(_request: web.Request) -> web.Response:
        return web.Response(status=503, text="maintenance")

    async def not_json(_request: web.Request) -> web.Response:
        return web.Response(status=200, text="<html>")

    server = await _serve({("GET", "/api/locations"): broken, ("GET", "/api/tracking/stats"): not_json})
    try:
        config = TrackerConfig(api_base_url=str(server.make_url("/api")))
        async with aiohttp.ClientSession() as session:
            transport = HttpTransport(config, session)
            with pytest.raises(TrackerTransportError) as excinfo:
                await transport.get_json("/locations")
            with pytest.raises(TrackerTransportError, match="Invalid JSON"):
                await transport.get_json("/tracking/stats")
    finally:
        await server.close()

    assert excinfo.value.status_code == 503
    assert excinfo.value.endpoint == "/locations"


@pytest.mark.asyncio
@pytest.mark.parametrize("data", [None, {"locations": None}, "oops", {"count": 2}])
async def test_fetch_all_locations_rejects_response_without_list(data: Any) -> None:
    transport = FakeRestTransport({"/locations": {"success": True, "data": data}})

    with pytest.raises(TrackerApiError) as excinfo:
        await fetch_all_locations(transport)
    assert excinfo.value.endpoint == "/locations"


@pytest.mark.asyncio
async def test_fetch_all_locations_accepts_empty_list() -> None:
    transport = FakeRestTransport({"/locations": _ok({"locations": []})})

    assert await fetch_all_locations(transport) == []
