"""History export helpers."""

from __future__ import annotations

import csv
import io
from collections.abc import Iterable
from datetime import UTC, date, datetime, tzinfo

from fiscatrack._constants import HISTORY_CSV_DATE_FORMAT, HISTORY_CSV_HEADER
from fiscatrack.models.location import LocationHistoryPoint


def history_to_csv(points: Iterable[LocationHistoryPoint], *, tz: tzinfo = UTC) -> str:
    """Render history points as CSV with a ``Fecha,Latitud,Longitud,Precisión`` header.

    Timestamps are converted to *tz* and written as ``dd/mm/YYYY, HH:MM:SS``;
    a missing accuracy becomes an empty cell. Returns ``""`` when there are no
    points.
    """
    rows = list(points)
    if not rows:
        return ""

    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(HISTORY_CSV_HEADER)
    for point in rows:
        writer.writerow(
            [
                point.timestamp.astimezone(tz).strftime(HISTORY_CSV_DATE_FORMAT),
                repr(point.latitude),
                repr(point.longitude),
                "" if point.accuracy is None else repr(point.accuracy),
            ]
        )
    return buffer.getvalue()


def history_csv_filename(agent_id: str, *, on: date | None = None) -> str:
    """Suggested download name, e.g. ``historial_7_2024-05-01.csv``."""
    day = on or datetime.now(UTC).date()
    return f"historial_{agent_id}_{day.isoformat()}.csv"
