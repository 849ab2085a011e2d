"""Client configuration for fiscatrack."""

from __future__ import annotations

import dataclasses
import os
from typing import Any

from fiscatrack.exceptions import TrackerConfigError


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


def _env_number(env_key: str, value: str, kind: type[int] | type[float]) -> int | float:
    try:
        return kind(value)
    except ValueError as exc:
        raise TrackerConfigError(f"{env_key} must be a number, got {value!r}") from exc


@dataclasses.dataclass(frozen=True)
class WatchOptions:
    """Options passed to the position sensor when a watch starts.

    These mirror the browser geolocation options the field app uses.
    """

    high_accuracy: bool = True
    timeout: float = 15.0
    maximum_age: float = 10.0


@dataclasses.dataclass(frozen=True)
class TrackerConfig:
    """Client configuration.

    Parameters
    ----------
    api_base_url : str
        Base URL of the REST API (pull channel), including the ``/api`` prefix.
    push_endpoint : str
        Push broker endpoint, e.g. ``"mqtt://localhost:1883"`` or
        ``"mqtts://broker.example:8883"``.
    topic_prefix : str
        MQTT topic prefix; events arrive on ``<prefix>/events`` and requests
        are published to ``<prefix>/requests``.
    agent_id : str or None
        Identity of this device when it reports its own position. Without
        it the sensor watch is never started.
    reconcile_interval : float
        Seconds between periodic full roster pulls while connected.
    auto_refresh : bool
        Whether the periodic pull runs at all. The reconnect pull always runs.
    request_timeout : float
        Total timeout in seconds for one REST request.
    mqtt_keepalive : int
        MQTT keepalive in seconds.
    reconnect_min_delay : float
        Initial delay before the push transport retries a dropped connection.
    reconnect_max_delay : float
        Upper bound of the reconnect back-off.
    auto_reconnect : bool
        When ``False`` an unexpected drop stops the push transport instead of
        letting it retry.
    history_page_size : int
        Default ``limit`` for history requests.
    cleanup_days_to_keep : int
        Default retention passed to the cleanup endpoint.
    watch : WatchOptions
        Position sensor watch options.
    """

    api_base_url: str = "http://localhost:4000/api"
    push_endpoint: str = "mqtt://localhost:1883"
    topic_prefix: str = "fiscamoto"
    agent_id: str | None = None
    reconcile_interval: float = 15.0
    auto_refresh: bool = True
    request_timeout: float = 20.0
    mqtt_keepalive: int = 60
    reconnect_min_delay: float = 1.0
    reconnect_max_delay: float = 30.0
    auto_reconnect: bool = True
    history_page_size: int = 100
    cleanup_days_to_keep: int = 7
    watch: WatchOptions = dataclasses.field(default_factory=WatchOptions)

    def __post_init__(self) -> None:
        if self.reconcile_interval <= 0:
            raise TrackerConfigError("reconcile_interval must be positive")
        if self.reconnect_min_delay <= 0 or self.reconnect_max_delay < self.reconnect_min_delay:
            raise TrackerConfigError("reconnect delays must satisfy 0 < min <= max")

    @property
    def events_topic(self) -> str:
        return f"{self.topic_prefix}/events"

    @property
    def requests_topic(self) -> str:
        return f"{self.topic_prefix}/requests"

    @classmethod
    def from_env(cls, **overrides: Any) -> TrackerConfig:
        """Create configuration from environment variables.

        Reads optional ``FISCA_*`` variables. Explicit keyword arguments
        override environment values.

        Parameters
        ----------
        **overrides
            Explicit field values that take precedence over env vars.

        Returns
        -------
        TrackerConfig
            Populated configuration.

        Raises
        ------
        TrackerConfigError
            If a numeric variable cannot be parsed.
        """
        env = os.environ

        watch_kwargs: dict[str, Any] = {}
        if "FISCA_WATCH_HIGH_ACCURACY" in env:
            watch_kwargs["high_accuracy"] = _env_bool(env["FISCA_WATCH_HIGH_ACCURACY"], True)
        for env_key, field_name in (
            ("FISCA_WATCH_TIMEOUT", "timeout"),
            ("FISCA_WATCH_MAXIMUM_AGE", "maximum_age"),
        ):
            val = env.get(env_key)
            if val is not None:
                watch_kwargs[field_name] = _env_number(env_key, val, float)

        watch_overrides = overrides.pop("watch", None)
        if isinstance(watch_overrides, dict):
            watch_kwargs.update(watch_overrides)
        elif isinstance(watch_overrides, WatchOptions):
            watch_kwargs = dataclasses.asdict(watch_overrides)

        config_kwargs: dict[str, Any] = {"watch": WatchOptions(**watch_kwargs)}

        _ENV_STR_MAP = {
            "FISCA_API_BASE_URL": "api_base_url",
            "FISCA_PUSH_ENDPOINT": "push_endpoint",
            "FISCA_TOPIC_PREFIX": "topic_prefix",
            "FISCA_AGENT_ID": "agent_id",
        }
        for env_key, field_name in _ENV_STR_MAP.items():
            val = env.get(env_key)
            if val is not None:
                config_kwargs[field_name] = val

        _ENV_NUMBER_MAP: dict[str, tuple[str, type[int] | type[float]]] = {
            "FISCA_RECONCILE_INTERVAL": ("reconcile_interval", float),
            "FISCA_REQUEST_TIMEOUT": ("request_timeout", float),
            "FISCA_MQTT_KEEPALIVE": ("mqtt_keepalive", int),
            "FISCA_RECONNECT_MIN_DELAY": ("reconnect_min_delay", float),
            "FISCA_RECONNECT_MAX_DELAY": ("reconnect_max_delay", float),
            "FISCA_HISTORY_PAGE_SIZE": ("history_page_size", int),
            "FISCA_CLEANUP_DAYS_TO_KEEP": ("cleanup_days_to_keep", int),
        }
        for env_key, (field_name, kind) in _ENV_NUMBER_MAP.items():
            val = env.get(env_key)
            if val is not None and field_name not in overrides:
                config_kwargs[field_name] = _env_number(env_key, val, kind)

        if "auto_refresh" not in overrides:
            config_kwargs["auto_refresh"] = _env_bool(env.get("FISCA_AUTO_REFRESH"), True)
        if "auto_reconnect" not in overrides:
            config_kwargs["auto_reconnect"] = _env_bool(env.get("FISCA_AUTO_RECONNECT"), True)

        config_kwargs.update(overrides)

        return cls(**config_kwargs)
