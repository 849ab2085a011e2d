"""HTTP transport for the pull API."""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from typing import Any, Protocol

import aiohttp

from fiscatrack._constants import USER_AGENT
from fiscatrack.config import TrackerConfig
from fiscatrack.exceptions import TrackerTransportError

_logger = logging.getLogger(__name__)


class Transport(Protocol):
    """What the endpoint modules need from a REST transport.

    Both methods return the decoded JSON body; unwrapping the envelope is
    left to ``_api._common``.
    """

    async def get_json(self, endpoint: str, params: Mapping[str, str] | None = None) -> Any: ...

    async def post_json(self, endpoint: str, body: Mapping[str, Any]) -> Any: ...


class HttpTransport:
    """JSON-over-HTTP transport bound to the configured API base URL."""

    def __init__(
        self,
        config: TrackerConfig,
        http_session: aiohttp.ClientSession,
    ) -> None:
        self._config = config
        self._http = http_session
        self._timeout = aiohttp.ClientTimeout(total=config.request_timeout)

    def _url(self, endpoint: str) -> str:
        return f"{self._config.api_base_url.rstrip('/')}{endpoint}"

    async def get_json(self, endpoint: str, params: Mapping[str, str] | None = None) -> Any:
        return await self._request("GET", endpoint, params=params)

    async def post_json(self, endpoint: str, body: Mapping[str, Any]) -> Any:
        return await self._request("POST", endpoint, body=body)

    async def _request(
        self,
        method: str,
        endpoint: str,
        *,
        params: Mapping[str, str] | None = None,
        body: Mapping[str, Any] | None = None,
    ) -> Any:
        headers: dict[str, str] = {
            "accept": "application/json",
            "user-agent": USER_AGENT,
        }
        data: str | None = None
        if body is not None:
            headers["content-type"] = "application/json; charset=UTF-8"
            data = json.dumps(body, separators=(",", ":"))

        url = self._url(endpoint)
        _logger.debug("%s %s params=%s", method, url, dict(params or {}))

        try:
            async with self._http.request(
                method,
                url,
                params=params,
                data=data,
                headers=headers,
                timeout=self._timeout,
            ) as resp:
                text = await resp.text()
                if resp.status != 200:
                    raise TrackerTransportError(
                        f"HTTP {resp.status} from {endpoint}: {text[:200]}",
                        status_code=resp.status,
                        endpoint=endpoint,
                    )
        except TrackerTransportError:
            raise
        except (aiohttp.ClientError, TimeoutError) as exc:
            raise TrackerTransportError(
                f"Request to {endpoint} failed: {exc}",
                endpoint=endpoint,
            ) from exc

        try:
            return json.loads(text)
        except json.JSONDecodeError as exc:
            raise TrackerTransportError(
                f"Invalid JSON from {endpoint}: {text[:200]}",
                endpoint=endpoint,
            ) from exc
