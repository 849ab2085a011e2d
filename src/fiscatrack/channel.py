"""Channel Lifecycle Manager.

Owns:
- connecting/disconnecting the push transport
- the connectivity state and the connection epoch
- the reconnect resync (one immediate full pull per successful connect)
- correlating ``tracking:setStatus`` acknowledgements
"""

from __future__ import annotations

import asyncio
import logging
import secrets
from collections.abc import Callable, Mapping
from typing import Any

from fiscatrack._push import PushEvent, PushTransport
from fiscatrack.exceptions import TrackerChannelError
from fiscatrack.models.push import PushEventName
from fiscatrack.models.status import ConnectivityState

_logger = logging.getLogger(__name__)

ConnectivityObserver = Callable[[ConnectivityState], None]
AckCallback = Callable[[dict[str, Any] | None], None]


class _SessionListener:
    """Transport listener bound to one ``connect()`` call.

    Callbacks from a previous session (queued on the loop before a disconnect
    or reconnect) are ignored.
    """

    def __init__(self, manager: ChannelLifecycleManager, session: int) -> None:
        self._manager = manager
        self._session = session

    def on_transport_connected(self) -> None:
        if self._manager._session == self._session:
            self._manager._handle_connected()

    def on_transport_disconnected(self, reason: str) -> None:
        if self._manager._session == self._session:
            self._manager._handle_disconnected(reason)

    def on_transport_event(self, event: PushEvent) -> None:
        if self._manager._session == self._session:
            self._manager._handle_event(event)


class ChannelLifecycleManager:
    """Own the push channel connection and surface connectivity transitions.

    The epoch changes on every transition into or out of ``CONNECTED``; pull
    responses tagged with an older epoch must be discarded.
    """

    def __init__(
        self,
        transport: PushTransport,
        *,
        on_event: Callable[[PushEvent], None],
        resync: Callable[[], None] | None = None,
        auto_reconnect: bool = True,
        logger: logging.Logger | None = None,
    ) -> None:
        self._transport = transport
        self._on_event = on_event
        self._resync = resync
        self._auto_reconnect = auto_reconnect
        self._logger = logger or _logger
        self._state = ConnectivityState.DISCONNECTED
        self._epoch = 0
        self._session = 0
        self._endpoint: str | None = None
        self._observers: list[ConnectivityObserver] = []
        self._pending_acks: dict[str, AckCallback] = {}
        self._background: set[asyncio.Future[Any]] = set()
        self.last_error: TrackerChannelError | None = None

    @property
    def state(self) -> ConnectivityState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is ConnectivityState.CONNECTED

    @property
    def epoch(self) -> int:
        return self._epoch

    @property
    def endpoint(self) -> str | None:
        return self._endpoint

    def set_resync(self, resync: Callable[[], None] | None) -> None:
        self._resync = resync

    def subscribe(self, observer: ConnectivityObserver) -> Callable[[], None]:
        """Register *observer* for connectivity transitions; returns an unsubscribe callable."""
        self._observers.append(observer)

        def _unsubscribe() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return _unsubscribe

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def connect(self, endpoint: str) -> None:
        """Start connecting to *endpoint*.

        The state becomes ``CONNECTING`` immediately and ``CONNECTED`` once the
        transport reports success. A failure to start is recorded in
        :attr:`last_error` and leaves the channel ``DISCONNECTED``.
        """
        if self._state is not ConnectivityState.DISCONNECTED:
            await self.disconnect()

        self._session += 1
        self._endpoint = endpoint
        listener = _SessionListener(self, self._session)
        self._set_state(ConnectivityState.CONNECTING)
        try:
            self._transport.start(endpoint, listener)
        except Exception as exc:
            self._session += 1
            self.last_error = TrackerChannelError(f"Push channel start failed: {exc}")
            self._logger.warning("Push channel start failed endpoint=%s: %s", endpoint, exc)
            self._set_state(ConnectivityState.DISCONNECTED)

    async def disconnect(self) -> None:
        """Tear down the channel; in-flight pulls become stale, pending acks are dropped."""
        self._session += 1
        was = self._state
        if was is not ConnectivityState.DISCONNECTED:
            self._epoch += 1
            self._set_state(ConnectivityState.DISCONNECTED)
        self._drop_pending_acks()
        if self._transport.is_running:
            await asyncio.get_running_loop().run_in_executor(None, self._transport.stop)
        self._logger.debug("Push channel disconnected (was %s)", was)

    async def close(self) -> None:
        await self.disconnect()
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)

    # ------------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------------

    def send(
        self,
        event: str,
        payload: Mapping[str, Any] | None = None,
        *,
        ack: AckCallback | None = None,
    ) -> bool:
        """Publish *event*; returns ``False`` when not connected or the send failed.

        When *ack* is given a ``requestId`` is attached and *ack* is invoked with
        the matching ``tracking:statusResponse`` payload, or with ``None`` if
        the channel drops first.
        """
        if not self.is_connected:
            self._logger.debug("Not connected; dropping outbound event=%s", event)
            return False

        message = dict(payload or {})
        request_id: str | None = None
        if ack is not None:
            request_id = secrets.token_hex(8)
            message["requestId"] = request_id
            self._pending_acks[request_id] = ack

        try:
            sent = self._transport.publish(event, message)
            detail = ""
        except Exception as exc:
            self._logger.debug("Publish raised for event=%s", event, exc_info=True)
            sent = False
            detail = f": {exc}"

        if not sent:
            if request_id is not None:
                self._pending_acks.pop(request_id, None)
            self.last_error = TrackerChannelError(f"Send failed for {event}{detail}")
            self._logger.warning("Push send failed event=%s%s", event, detail)
        return sent

    # ------------------------------------------------------------------
    # Transport callbacks (event loop thread)
    # ------------------------------------------------------------------

    def _handle_connected(self) -> None:
        if self._state is ConnectivityState.CONNECTED:
            return
        self._epoch += 1
        self.last_error = None
        self._logger.info("Push channel connected endpoint=%s epoch=%d", self._endpoint, self._epoch)
        self._set_state(ConnectivityState.CONNECTED)
        if self._resync is not None and self.is_connected:
            try:
                self._resync()
            except Exception:
                self._logger.exception("Resync after connect failed")

    def _handle_disconnected(self, reason: str) -> None:
        if self._state is ConnectivityState.DISCONNECTED:
            return
        self._epoch += 1
        self.last_error = TrackerChannelError(f"Push channel dropped: {reason}")
        self._logger.warning("Push channel dropped endpoint=%s reason=%s", self._endpoint, reason)
        self._drop_pending_acks()
        self._set_state(ConnectivityState.DISCONNECTED)

        if not self._auto_reconnect:
            self._session += 1
            future = asyncio.get_running_loop().run_in_executor(None, self._transport.stop)
            self._background.add(future)
            future.add_done_callback(self._background.discard)

    def _handle_event(self, event: PushEvent) -> None:
        if event.event == PushEventName.TRACKING_STATUS_RESPONSE and isinstance(event.payload, dict):
            request_id = event.payload.get("requestId")
            ack = self._pending_acks.pop(request_id, None) if isinstance(request_id, str) else None
            if ack is not None:
                self._invoke_ack(ack, event.payload)
        try:
            self._on_event(event)
        except Exception:
            self._logger.exception("Push event handler failed for event=%s", event.event)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _set_state(self, state: ConnectivityState) -> None:
        if state is self._state:
            return
        self._state = state
        for observer in list(self._observers):
            try:
                observer(state)
            except Exception:
                self._logger.exception("Connectivity observer %r failed", observer)

    def _drop_pending_acks(self) -> None:
        pending = self._pending_acks
        self._pending_acks = {}
        for ack in pending.values():
            self._invoke_ack(ack, None)

    def _invoke_ack(self, ack: AckCallback, payload: dict[str, Any] | None) -> None:
        try:
            ack(payload)
        except Exception:
            self._logger.exception("Ack callback failed")
