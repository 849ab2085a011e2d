"""Shared helpers for REST endpoint modules.

This module centralizes unwrapping the ``{"success", "message", "data"}``
envelope the backend wraps every response in. It is internal to fiscatrack
and may change at any time.
"""

from __future__ import annotations

from typing import Any

from fiscatrack.exceptions import TrackerApiError


def unwrap_envelope(response: Any, *, endpoint: str) -> Any:
    """Return the ``data`` member of a response envelope.

    Raises
    ------
    TrackerApiError
        If the response is not an envelope, reports ``success: false``, or
        carries no ``data``.
    """
    if not isinstance(response, dict):
        raise TrackerApiError(f"{endpoint} returned a non-object response", endpoint=endpoint)
    if response.get("success") is False:
        message = response.get("message") or response.get("error") or "unknown error"
        raise TrackerApiError(f"{endpoint} failed: {message}", endpoint=endpoint)
    if "data" not in response:
        raise TrackerApiError(f"{endpoint} response missing 'data'", endpoint=endpoint)
    return response["data"]
