"""Periodic Reconciler.

Pulls the full roster on a fixed cadence while the push channel is connected
and merges the result, correcting drift from push events missed during a
disconnect window.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import Any, Protocol

from pydantic import ValidationError

from fiscatrack.exceptions import TrackerError
from fiscatrack.models.location import AgentLocation
from fiscatrack.models.status import ConnectivityState

_logger = logging.getLogger(__name__)


class ConnectionContext(Protocol):
    """What the reconciler needs to know about the channel."""

    @property
    def is_connected(self) -> bool: ...

    @property
    def epoch(self) -> int: ...


class PeriodicReconciler:
    """Issue at most one roster pull at a time and merge only current-epoch results.

    A pull in flight when the channel disconnects is abandoned: the task keeps
    running until the request returns, but its result is discarded and it no
    longer blocks a new pull.
    """

    def __init__(
        self,
        *,
        fetch: Callable[[], Awaitable[list[AgentLocation]]],
        apply: Callable[[list[AgentLocation]], None],
        channel: ConnectionContext,
        interval: float = 15.0,
        logger: logging.Logger | None = None,
    ) -> None:
        self._fetch = fetch
        self._apply = apply
        self._channel = channel
        self._interval = interval
        self._logger = logger or _logger
        self._inflight: asyncio.Task[None] | None = None
        self._abandoned: set[asyncio.Task[None]] = set()
        self._ticker: asyncio.Task[None] | None = None
        self.pulls_issued = 0
        self.last_reconciled_at: datetime | None = None
        self.last_error: Exception | None = None

    @property
    def interval(self) -> float:
        return self._interval

    @property
    def is_running(self) -> bool:
        return self._ticker is not None and not self._ticker.done()

    @property
    def pull_in_flight(self) -> bool:
        return self._inflight is not None and not self._inflight.done()

    def start(self) -> None:
        """Start the periodic ticker. Idempotent."""
        if self.is_running:
            return
        self._ticker = asyncio.get_running_loop().create_task(self._tick_forever(), name="fiscatrack-reconciler")

    async def stop(self) -> None:
        """Stop the ticker and cancel any pull still running."""
        tasks: list[asyncio.Task[Any]] = []
        if self._ticker is not None:
            self._ticker.cancel()
            tasks.append(self._ticker)
            self._ticker = None
        if self._inflight is not None:
            self._inflight.cancel()
            tasks.append(self._inflight)
            self._inflight = None
        for task in list(self._abandoned):
            task.cancel()
            tasks.append(task)
        self._abandoned.clear()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def on_connectivity(self, state: ConnectivityState) -> None:
        """Abandon the in-flight pull as soon as the channel is not connected."""
        if state is not ConnectivityState.CONNECTED:
            self.abandon()

    def abandon(self) -> None:
        task = self._inflight
        self._inflight = None
        if task is None or task.done():
            return
        self._logger.debug("Abandoning in-flight roster pull")
        self._abandoned.add(task)
        task.add_done_callback(self._abandoned.discard)

    def request_pull(self, reason: str = "manual") -> asyncio.Task[None] | None:
        """Issue one roster pull now, unless disconnected or a pull is already in flight."""
        if not self._channel.is_connected:
            self._logger.debug("Skipping roster pull (%s): not connected", reason)
            return None
        if self.pull_in_flight:
            self._logger.debug("Skipping roster pull (%s): previous pull still in flight", reason)
            return None

        epoch = self._channel.epoch
        self.pulls_issued += 1
        self._logger.debug("Roster pull issued reason=%s epoch=%d", reason, epoch)
        task = asyncio.get_running_loop().create_task(self._pull(epoch), name=f"fiscatrack-pull-{reason}")
        self._inflight = task
        return task

    async def _pull(self, epoch: int) -> None:
        try:
            entries = await self._fetch()
        except (TrackerError, ValidationError) as exc:
            self.last_error = exc
            self._logger.warning("Roster pull failed; keeping current roster: %s", exc)
            return

        if self._channel.epoch != epoch or not self._channel.is_connected:
            self._logger.debug(
                "Discarding roster pull from epoch=%d (current epoch=%d)",
                epoch,
                self._channel.epoch,
            )
            return

        self._apply(entries)
        self.last_error = None
        self.last_reconciled_at = datetime.now(UTC)

    async def _tick_forever(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            self.request_pull("interval")
