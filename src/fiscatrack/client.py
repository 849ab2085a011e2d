"""High-level async client for the field tracking backend."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import UTC, date, datetime, tzinfo
from typing import Any

import aiohttp

from fiscatrack._api import locations as _locations_api
from fiscatrack._api import tracking as _tracking_api
from fiscatrack._push import MqttPushRuntime, PushEvent, PushTransport
from fiscatrack._redact import redact_for_log
from fiscatrack._transport import HttpTransport, Transport
from fiscatrack.channel import AckCallback, ChannelLifecycleManager
from fiscatrack.config import TrackerConfig
from fiscatrack.exceptions import TrackerError
from fiscatrack.export import history_csv_filename, history_to_csv
from fiscatrack.ingestion.push import (
    parse_agent_location_event,
    parse_cleanup_result,
    parse_roster_replace_event,
    parse_status_response,
    parse_tracking_flag_event,
    parse_tracking_stats,
)
from fiscatrack.models.location import AgentLocation, HistoryPage
from fiscatrack.models.push import LocationUpdate, PushEventName, SetTrackingStatusRequest, TrackingStatusResponse
from fiscatrack.models.status import ConnectivityState, SensorPermissionState, WatchState
from fiscatrack.models.tracking import CleanupResult, TrackingFlag, TrackingStats
from fiscatrack.reconciler import PeriodicReconciler
from fiscatrack.sensor import PositionSensor, SensorWatchController
from fiscatrack.state.merge import EventMergeEngine
from fiscatrack.state.roster import LocationRoster, RosterObserver
from fiscatrack.state.tracking import TrackingFlagState, TrackingObserver

_logger = logging.getLogger(__name__)

StatsObserver = Callable[[TrackingStats], None]
StatusAckCallback = Callable[[TrackingStatusResponse | None], None]


def _utcnow() -> datetime:
    return datetime.now(UTC)


class TrackerClient:
    """Async client keeping a live roster of field agents.

    Usage::

        async with TrackerClient(config) as client:
            client.subscribe_roster(render)
            await client.connect()
            ...

    The REST transport, push transport and position sensor can be injected;
    by default the client talks HTTP through aiohttp and MQTT through paho,
    and does not report its own position.
    """

    def __init__(
        self,
        config: TrackerConfig,
        *,
        session: aiohttp.ClientSession | None = None,
        transport: Transport | None = None,
        push_transport: PushTransport | None = None,
        sensor: PositionSensor | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._config = config
        self._external_session = session is not None
        self._http_session = session
        self._transport = transport
        self._push_transport = push_transport
        self._sensor = sensor
        self._clock = clock

        self._roster = LocationRoster()
        self._merge = EventMergeEngine(self._roster, clock=clock)
        self._tracking = TrackingFlagState(clock=clock)
        self._stats: TrackingStats | None = None
        self._stats_observers: list[StatsObserver] = []
        self._last_cleanup: CleanupResult | None = None

        self._channel: ChannelLifecycleManager | None = None
        self._reconciler: PeriodicReconciler | None = None
        self._watch: SensorWatchController | None = None
        self._unsubscribers: list[Callable[[], None]] = []

    # ------------------------------------------------------------------
    # Context manager lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> TrackerClient:
        loop = asyncio.get_running_loop()
        if self._transport is None:
            if self._http_session is None:
                self._http_session = aiohttp.ClientSession()
            self._transport = HttpTransport(self._config, self._http_session)

        push = self._push_transport or MqttPushRuntime(
            loop=loop,
            events_topic=self._config.events_topic,
            requests_topic=self._config.requests_topic,
            keepalive=self._config.mqtt_keepalive,
            reconnect_min_delay=self._config.reconnect_min_delay,
            reconnect_max_delay=self._config.reconnect_max_delay,
            logger=logging.getLogger("fiscatrack._push"),
        )
        self._push_transport = push

        channel = ChannelLifecycleManager(
            push,
            on_event=self._on_push_event,
            resync=self._resync,
            auto_reconnect=self._config.auto_reconnect,
        )
        self._channel = channel
        self._reconciler = PeriodicReconciler(
            fetch=self._fetch_roster_snapshot,
            apply=self._merge.apply_snapshot,
            channel=channel,
            interval=self._config.reconcile_interval,
        )
        self._unsubscribers.append(channel.subscribe(self._on_connectivity))

        if self._sensor is not None and self._config.agent_id:
            watch = SensorWatchController(
                self._sensor,
                agent_id=self._config.agent_id,
                send=self._send_location,
                is_connected=lambda: channel.is_connected,
                options=self._config.watch,
            )
            watch.attach()
            watch.set_tracking(self._tracking.active)
            self._unsubscribers.append(self._tracking.subscribe(lambda flag: watch.set_tracking(flag.active)))
            self._watch = watch
        elif self._sensor is not None:
            _logger.info("No agent_id configured; position reporting disabled")

        if self._config.auto_refresh:
            self._reconciler.start()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        if self._watch is not None:
            self._watch.close()
            self._watch = None
        if self._reconciler is not None:
            await self._reconciler.stop()
            self._reconciler = None
        if self._channel is not None:
            await self._channel.close()
            self._channel = None
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()
        if not self._external_session and self._http_session is not None:
            await self._http_session.close()
            self._http_session = None

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _require_transport(self) -> Transport:
        if self._transport is None:
            raise TrackerError("Client not initialized. Use 'async with TrackerClient(...) as client:'")
        return self._transport

    def _require_channel(self) -> ChannelLifecycleManager:
        if self._channel is None:
            raise TrackerError("Client not initialized. Use 'async with TrackerClient(...) as client:'")
        return self._channel

    def _require_reconciler(self) -> PeriodicReconciler:
        if self._reconciler is None:
            raise TrackerError("Client not initialized. Use 'async with TrackerClient(...) as client:'")
        return self._reconciler

    async def _fetch_roster_snapshot(self) -> list[AgentLocation]:
        return await _locations_api.fetch_all_locations(self._require_transport())

    def _resync(self) -> None:
        """Run once per successful connect."""
        self._require_reconciler().request_pull("reconnect")
        channel = self._require_channel()
        channel.send(PushEventName.TRACKING_GET_STATUS)
        channel.send(PushEventName.TRACKING_GET_STATS)

    def _on_connectivity(self, state: ConnectivityState) -> None:
        if self._reconciler is not None:
            self._reconciler.on_connectivity(state)
        if self._watch is not None:
            self._watch.set_connectivity(state)

    def _send_location(self, update: LocationUpdate) -> bool:
        return self._require_channel().send(PushEventName.LOCATION_UPDATE, update.to_payload())

    def _apply_stats(self, stats: TrackingStats) -> None:
        self._stats = stats
        if stats.active != self._tracking.active:
            self._tracking.set(stats.active, changed_by=None)
        for observer in list(self._stats_observers):
            try:
                observer(stats)
            except Exception:
                _logger.exception("Stats observer %r failed", observer)

    def _on_push_event(self, event: PushEvent) -> None:
        """Dispatch one inbound push event (event loop thread)."""
        name = event.event
        payload = event.payload
        if _logger.isEnabledFor(logging.DEBUG):
            _logger.debug("Push event=%s payload=%s", name, redact_for_log(payload))

        if name == PushEventName.LOCATION_REALTIME:
            update = parse_agent_location_event(payload, received_at=self._clock())
            if update is not None:
                self._merge.apply_agent_update(update)
        elif name == PushEventName.LOCATION_ALL:
            replace = parse_roster_replace_event(payload, received_at=self._clock())
            if replace is not None:
                self._merge.apply_roster_replace(replace)
        elif name in (PushEventName.TRACKING_STATUS, PushEventName.TRACKING_STATUS_CHANGED):
            flag_event = parse_tracking_flag_event(payload)
            if flag_event is not None:
                self._tracking.set(flag_event.active, changed_by=flag_event.changed_by, at=flag_event.at)
        elif name == PushEventName.TRACKING_STATUS_RESPONSE:
            response = parse_status_response(payload)
            if response is not None and response.active is not None:
                if not response.success:
                    _logger.warning("Tracking status request rejected: %s", response.message)
                if response.active != self._tracking.active:
                    self._tracking.set(response.active, changed_by=None)
        elif name == PushEventName.TRACKING_STATS:
            stats = parse_tracking_stats(payload)
            if stats is not None:
                self._apply_stats(stats)
        elif name == PushEventName.TRACKING_CLEANUP_RESPONSE:
            cleanup = parse_cleanup_result(payload)
            if cleanup is not None:
                self._last_cleanup = cleanup
                _logger.info("Cleanup removed %d records", cleanup.deleted_count)
        elif name == PushEventName.LOCATION_ERROR:
            _logger.warning("Server rejected location update: %s", redact_for_log(payload))
        elif name == PushEventName.LOCATION_CONFIRMED:
            _logger.debug("Location update confirmed")
        else:
            _logger.debug("Ignoring unknown push event=%s", name)

    # ------------------------------------------------------------------
    # Channel
    # ------------------------------------------------------------------

    @property
    def connectivity(self) -> ConnectivityState:
        if self._channel is None:
            return ConnectivityState.DISCONNECTED
        return self._channel.state

    @property
    def is_connected(self) -> bool:
        return self._channel is not None and self._channel.is_connected

    @property
    def channel(self) -> ChannelLifecycleManager:
        return self._require_channel()

    async def connect(self, endpoint: str | None = None) -> None:
        """Connect the push channel; the first successful connect pulls the full roster."""
        await self._require_channel().connect(endpoint or self._config.push_endpoint)

    async def disconnect(self) -> None:
        await self._require_channel().disconnect()

    def subscribe_connectivity(self, observer: Callable[[ConnectivityState], None]) -> Callable[[], None]:
        return self._require_channel().subscribe(observer)

    # ------------------------------------------------------------------
    # Roster
    # ------------------------------------------------------------------

    @property
    def roster(self) -> LocationRoster:
        return self._roster

    @property
    def locations(self) -> list[AgentLocation]:
        """Snapshot of the current roster in insertion order."""
        return self._roster.snapshot()

    def subscribe_roster(self, observer: RosterObserver) -> Callable[[], None]:
        return self._roster.subscribe(observer)

    @property
    def last_reconciled_at(self) -> datetime | None:
        return self._reconciler.last_reconciled_at if self._reconciler is not None else None

    def refresh_locations(self) -> asyncio.Task[None] | None:
        """Request an immediate roster pull. Returns ``None`` if one is already running or offline."""
        return self._require_reconciler().request_pull("manual")

    def request_all_locations(self) -> bool:
        """Ask the server to broadcast the roster over the push channel.

        The answer arrives as ``location:allLocations`` and replaces the roster
        like any other broadcast; it does not count as a reconciliation pull.
        """
        return self._require_channel().send(PushEventName.LOCATION_GET_ALL)

    # ------------------------------------------------------------------
    # Tracking flag
    # ------------------------------------------------------------------

    @property
    def tracking(self) -> TrackingFlag:
        return self._tracking.flag

    @property
    def tracking_active(self) -> bool:
        return self._tracking.active

    def subscribe_tracking(self, observer: TrackingObserver) -> Callable[[], None]:
        return self._tracking.subscribe(observer)

    def set_tracking_active(self, active: bool, *, ack: StatusAckCallback | None = None) -> bool:
        """Ask the server to switch tracking on or off.

        The local flag follows immediately when the request was sent; the
        server's status response or broadcast has the final say. *ack*, when
        given, receives the parsed status response, or ``None`` if the channel
        dropped before the server answered.
        """
        request = SetTrackingStatusRequest(active=active, agent_id=self._config.agent_id)

        channel_ack: AckCallback | None = None
        if ack is not None:
            user_ack = ack

            def _forward(payload: dict[str, Any] | None) -> None:
                user_ack(parse_status_response(payload) if payload is not None else None)

            channel_ack = _forward

        sent = self._require_channel().send(PushEventName.TRACKING_SET_STATUS, request.to_payload(), ack=channel_ack)
        if sent:
            self._tracking.set(active, changed_by=self._config.agent_id or "operator")
        return sent

    async def toggle_tracking(self, *, ack: StatusAckCallback | None = None) -> bool:
        """Flip the tracking flag.

        When this client reports its own position and tracking is being
        switched on without a granted permission, the permission is requested
        first; a refusal leaves tracking unchanged and returns ``False``.
        """
        target = not self._tracking.active
        if target and self._watch is not None and self._watch.permission is not SensorPermissionState.GRANTED:
            permission = await self._watch.request_permission()
            if permission is not SensorPermissionState.GRANTED:
                _logger.warning("Location permission %s; not enabling tracking", permission)
                return False
        return self.set_tracking_active(target, ack=ack)

    # ------------------------------------------------------------------
    # Stats
    # ------------------------------------------------------------------

    @property
    def stats(self) -> TrackingStats | None:
        """Latest stats received by push or :meth:`get_stats`."""
        return self._stats

    def subscribe_stats(self, observer: StatsObserver) -> Callable[[], None]:
        self._stats_observers.append(observer)

        def _unsubscribe() -> None:
            if observer in self._stats_observers:
                self._stats_observers.remove(observer)

        return _unsubscribe

    def request_stats(self) -> bool:
        """Ask for a ``tracking:stats`` push; returns ``False`` while disconnected."""
        return self._require_channel().send(PushEventName.TRACKING_GET_STATS)

    # ------------------------------------------------------------------
    # Position reporting
    # ------------------------------------------------------------------

    @property
    def watch_state(self) -> WatchState:
        return self._watch.state if self._watch is not None else WatchState.IDLE

    @property
    def watch(self) -> SensorWatchController | None:
        return self._watch

    async def request_location_permission(self) -> SensorPermissionState:
        if self._watch is None:
            raise TrackerError("Position reporting needs a sensor and config.agent_id")
        return await self._watch.request_permission()

    # ------------------------------------------------------------------
    # REST
    # ------------------------------------------------------------------

    async def get_stats(self) -> TrackingStats:
        stats = await _tracking_api.fetch_stats(self._require_transport())
        self._apply_stats(stats)
        return stats

    async def get_all_locations(self) -> list[AgentLocation]:
        """Fetch the roster snapshot without applying it."""
        return await _locations_api.fetch_all_locations(self._require_transport())

    async def get_user_location(self, agent_id: str) -> AgentLocation:
        return await _locations_api.fetch_user_location(self._require_transport(), agent_id)

    async def get_history(
        self,
        agent_id: str,
        *,
        limit: int | None = None,
        offset: int = 0,
        start_date: datetime | str | None = None,
        end_date: datetime | str | None = None,
    ) -> HistoryPage:
        return await _locations_api.fetch_history(
            self._require_transport(),
            agent_id,
            limit=limit if limit is not None else self._config.history_page_size,
            offset=offset,
            start_date=start_date,
            end_date=end_date,
        )

    async def cleanup(self, days_to_keep: int | None = None) -> CleanupResult:
        """Delete stored history older than *days_to_keep* days (default from config)."""
        days = days_to_keep if days_to_keep is not None else self._config.cleanup_days_to_keep
        result = await _tracking_api.request_cleanup(self._require_transport(), days_to_keep=days)
        self._last_cleanup = result
        _logger.info("Cleanup removed %d records", result.deleted_count)
        return result

    def request_cleanup(self, days_to_keep: int | None = None) -> bool:
        """Ask for a cleanup over the push channel; the outcome arrives as ``tracking:cleanupResponse``."""
        days = days_to_keep if days_to_keep is not None else self._config.cleanup_days_to_keep
        if days < 0:
            raise ValueError("days_to_keep must be non-negative")
        return self._require_channel().send(PushEventName.TRACKING_CLEANUP, {"daysToKeep": days})

    @property
    def last_cleanup(self) -> CleanupResult | None:
        """Result of the latest cleanup, from :meth:`cleanup` or a push response."""
        return self._last_cleanup

    async def export_history_csv(
        self,
        agent_id: str,
        *,
        start_date: datetime | str | None = None,
        end_date: datetime | str | None = None,
        tz: tzinfo = UTC,
    ) -> tuple[str, str]:
        """Fetch every history page for *agent_id* and render it as CSV.

        Returns ``(filename, csv_text)``.
        """
        points = []
        offset = 0
        while True:
            page = await self.get_history(agent_id, offset=offset, start_date=start_date, end_date=end_date)
            points.extend(page.data)
            if not page.has_more or not page.data:
                break
            offset += len(page.data)
        today: date = self._clock().date()
        return history_csv_filename(agent_id, on=today), history_to_csv(points, tz=tz)
