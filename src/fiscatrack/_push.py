"""Internal push channel transport: endpoint parsing, message codec and MQTT runtime."""

from __future__ import annotations

import asyncio
import json
import logging
import secrets
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Protocol, cast

import paho.mqtt.client as mqtt

from fiscatrack.exceptions import TrackerChannelError

_DEFAULT_PORTS = {"mqtt": 1883, "tcp": 1883, "mqtts": 8883, "ssl": 8883}


@dataclass(frozen=True)
class PushEndpoint:
    """Broker address resolved from an endpoint string."""

    host: str
    port: int
    tls: bool


@dataclass(frozen=True)
class PushEvent:
    """Normalized inbound push event."""

    event: str
    payload: Any
    topic: str = ""


class PushListener(Protocol):
    """Receiver of transport callbacks. Always invoked on the event loop thread."""

    def on_transport_connected(self) -> None: ...

    def on_transport_disconnected(self, reason: str) -> None: ...

    def on_transport_event(self, event: PushEvent) -> None: ...


class PushTransport(Protocol):
    """Structural interface of a push channel transport.

    The core treats the transport as an opaque event source; `MqttPushRuntime`
    is the production implementation and tests pass fakes.
    """

    @property
    def is_running(self) -> bool: ...

    def start(self, endpoint: str, listener: PushListener) -> None: ...

    def stop(self) -> None: ...

    def publish(self, event: str, payload: Mapping[str, Any]) -> bool: ...


def parse_push_endpoint(raw_endpoint: str) -> PushEndpoint:
    """Parse ``scheme://host[:port][/path]`` into a :class:`PushEndpoint`.

    Schemes ``mqtts`` and ``ssl`` enable TLS. A bare ``host[:port]`` is plain MQTT.
    """
    value = raw_endpoint.strip()
    if not value:
        raise ValueError("Push endpoint is empty")

    scheme = "mqtt"
    if "://" in value:
        scheme, value = value.split("://", 1)
        scheme = scheme.lower()
        if scheme not in _DEFAULT_PORTS:
            raise ValueError(f"Unsupported push endpoint scheme: {scheme}")
    if "/" in value:
        value = value.split("/", 1)[0]

    tls = scheme in {"mqtts", "ssl"}
    host, _, maybe_port = value.rpartition(":")
    if host and maybe_port.isdigit():
        return PushEndpoint(host=host, port=int(maybe_port), tls=tls)
    if not value:
        raise ValueError("Push endpoint has no host")
    return PushEndpoint(host=value, port=_DEFAULT_PORTS[scheme], tls=tls)


def encode_push_message(event: str, payload: Mapping[str, Any]) -> bytes:
    """Encode an outbound request as ``{"event": ..., "data": ...}`` JSON."""
    return json.dumps({"event": event, "data": dict(payload)}, separators=(",", ":")).encode("utf-8")


def decode_push_message(raw: bytes, *, topic: str = "") -> PushEvent:
    """Decode an inbound ``{"event": ..., "data": ...}`` JSON message."""
    try:
        parsed = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise TrackerChannelError(f"Push payload is not JSON: {exc}") from exc
    if not isinstance(parsed, dict):
        raise TrackerChannelError("Push payload decoded to non-object JSON")
    event_name = parsed.get("event")
    if not isinstance(event_name, str) or not event_name:
        raise TrackerChannelError("Push payload missing event name")
    return PushEvent(event=event_name, payload=parsed.get("data"), topic=topic)


class MqttPushRuntime:
    """Threaded paho-mqtt runtime that emits parsed events onto an asyncio loop.

    paho retries dropped connections on its own while the network loop runs;
    each successful (re)connect is reported as ``on_transport_connected``.
    """

    def __init__(
        self,
        *,
        loop: asyncio.AbstractEventLoop,
        events_topic: str,
        requests_topic: str,
        client_id: str | None = None,
        keepalive: int = 60,
        reconnect_min_delay: float = 1.0,
        reconnect_max_delay: float = 30.0,
        logger: logging.Logger | None = None,
    ) -> None:
        self._loop = loop
        self._events_topic = events_topic
        self._requests_topic = requests_topic
        self._client_id = client_id or f"fiscatrack-{secrets.token_hex(6)}"
        self._keepalive = keepalive
        self._reconnect_min_delay = max(1, int(round(reconnect_min_delay)))
        self._reconnect_max_delay = max(self._reconnect_min_delay, int(round(reconnect_max_delay)))
        self._logger = logger or logging.getLogger(__name__)
        self._client: mqtt.Client | None = None
        self._running = False

    @property
    def is_running(self) -> bool:
        """Whether the MQTT network loop is actively running."""
        return self._running

    def start(self, endpoint: str, listener: PushListener) -> None:
        """Start connecting to *endpoint*; results arrive through *listener*."""
        self.stop()
        target = parse_push_endpoint(endpoint)
        self._logger.debug(
            "MQTT runtime start requested host=%s port=%s tls=%s topic=%s client_id=%s",
            target.host,
            target.port,
            target.tls,
            self._events_topic,
            self._client_id,
        )

        client = mqtt.Client(
            callback_api_version=cast(Any, mqtt).CallbackAPIVersion.VERSION2,
            client_id=self._client_id,
            protocol=mqtt.MQTTv311,
        )
        client.enable_logger(self._logger)
        client.reconnect_delay_set(min_delay=self._reconnect_min_delay, max_delay=self._reconnect_max_delay)
        if target.tls:
            client.tls_set()

        loop = self._loop
        events_topic = self._events_topic

        def on_connect(
            c: mqtt.Client,
            _userdata: Any,
            _flags: Any,
            reason_code: Any,
            _properties: Any,
        ) -> None:
            if reason_code.value != 0:
                self._logger.warning("MQTT connect refused: %s", reason_code)
                loop.call_soon_threadsafe(listener.on_transport_disconnected, f"connect refused: {reason_code}")
                return
            self._logger.debug("MQTT connected reason=%s; subscribing topic=%s", reason_code, events_topic)
            c.subscribe(events_topic, qos=0)
            loop.call_soon_threadsafe(listener.on_transport_connected)

        def on_connect_fail(_c: mqtt.Client, _userdata: Any) -> None:
            self._logger.debug("MQTT connect attempt failed")
            loop.call_soon_threadsafe(listener.on_transport_disconnected, "connect failed")

        def on_message(_c: mqtt.Client, _userdata: Any, msg: mqtt.MQTTMessage) -> None:
            try:
                event = decode_push_message(msg.payload, topic=msg.topic)
            except TrackerChannelError:
                self._logger.debug("Push payload parse failure topic=%s", msg.topic, exc_info=True)
                return
            self._logger.debug("Received event=%s topic=%s", event.event, msg.topic)
            loop.call_soon_threadsafe(listener.on_transport_event, event)

        def on_disconnect(
            _client: mqtt.Client,
            _userdata: Any,
            _disconnect_flags: Any,
            reason_code: Any,
            _properties: Any,
        ) -> None:
            if self._running:
                self._logger.debug("MQTT disconnected: %s", reason_code)
                loop.call_soon_threadsafe(listener.on_transport_disconnected, str(reason_code))

        client.on_connect = on_connect
        client.on_connect_fail = on_connect_fail
        client.on_message = on_message
        client.on_disconnect = on_disconnect

        client.connect_async(target.host, target.port, keepalive=self._keepalive)
        client.loop_start()

        self._client = client
        self._running = True
        self._logger.debug("MQTT network loop started")

    def stop(self) -> None:
        """Stop and disconnect current MQTT client if running."""
        client = self._client
        self._client = None
        was_running = self._running
        self._running = False

        if client is None:
            return
        try:
            if was_running:
                self._logger.debug("MQTT disconnect requested")
                client.disconnect()
        finally:
            client.loop_stop()
            self._logger.debug("MQTT network loop stopped")

    def publish(self, event: str, payload: Mapping[str, Any]) -> bool:
        """Publish an outbound request; returns whether paho accepted it."""
        client = self._client
        if client is None or not self._running:
            return False
        info = client.publish(self._requests_topic, encode_push_message(event, payload), qos=0)
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            self._logger.debug("MQTT publish failed event=%s rc=%s", event, info.rc)
            return False
        return True
