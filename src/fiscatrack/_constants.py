"""Internal constants shared across the library."""

USER_AGENT = "fiscatrack/0.1"

# ------------------------------------------------------------------
# REST endpoints (relative to the configured API base URL)
# ------------------------------------------------------------------

STATS_ENDPOINT = "/tracking/stats"
CLEANUP_ENDPOINT = "/tracking/cleanup"
LOCATIONS_ENDPOINT = "/locations"
USER_LOCATION_ENDPOINT = "/locations/user/{agent_id}"
HISTORY_ENDPOINT = "/locations/history/{agent_id}"

# ------------------------------------------------------------------
# History CSV export
# ------------------------------------------------------------------

HISTORY_CSV_HEADER: tuple[str, ...] = ("Fecha", "Latitud", "Longitud", "Precisión")
HISTORY_CSV_DATE_FORMAT = "%d/%m/%Y, %H:%M:%S"
