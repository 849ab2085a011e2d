#!/usr/bin/env python3
"""Passive roster probe.

Connects a :class:`fiscatrack.TrackerClient` to the configured backend and
prints every roster change, connectivity transition and tracking flag change.
Configuration comes from ``FISCA_*`` environment variables.

Use this to check that push events and periodic pulls keep the roster in sync.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
import time
from dataclasses import dataclass
from pathlib import Path

# Allow running from repo root without installing the package.
_repo = Path(__file__).resolve().parent.parent
_src = _repo / "src"
if _src.is_dir():
    sys.path.insert(0, str(_src))

from fiscatrack import AgentLocation, ConnectivityState, TrackerClient, TrackerConfig, TrackingFlag  # noqa: E402


@dataclass
class ProbeStats:
    started_at: float
    roster_updates: int = 0
    connects: int = 0
    drops: int = 0
    last_update_at: float | None = None


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Print live roster changes from the tracking backend.",
    )
    parser.add_argument(
        "--duration",
        type=int,
        default=0,
        help="Maximum runtime in seconds (0 = run until Ctrl+C).",
    )
    parser.add_argument(
        "--endpoint",
        default=None,
        help="Push endpoint override, e.g. mqtt://localhost:1883.",
    )
    parser.add_argument(
        "--interval",
        type=float,
        default=None,
        help="Reconcile interval override in seconds.",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable debug logs.",
    )
    return parser.parse_args()


def _format_entry(entry: AgentLocation) -> str:
    name = entry.display_name or entry.agent_id
    accuracy = f" ±{entry.accuracy_meters:.0f}m" if entry.accuracy_meters is not None else ""
    state = "online" if entry.online else "offline"
    return (
        f"{entry.agent_id:>6} {name:<24} {entry.latitude:.5f},{entry.longitude:.5f}{accuracy} "
        f"{state} sampled={entry.sampled_at.isoformat()}"
    )


def _print_summary(stats: ProbeStats) -> None:
    runtime = time.time() - stats.started_at
    print("[probe] Summary")
    print(f"[probe]   runtime_s      : {runtime:.1f}")
    print(f"[probe]   roster_updates : {stats.roster_updates}")
    print(f"[probe]   connects       : {stats.connects}")
    print(f"[probe]   drops          : {stats.drops}")


async def _run(args: argparse.Namespace) -> int:
    overrides: dict[str, object] = {}
    if args.endpoint:
        overrides["push_endpoint"] = args.endpoint
    if args.interval:
        overrides["reconcile_interval"] = args.interval
    config = TrackerConfig.from_env(**overrides)

    stats = ProbeStats(started_at=time.time())
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    def on_roster(entries: list[AgentLocation]) -> None:
        stats.roster_updates += 1
        stats.last_update_at = time.time()
        print(f"[probe] roster update #{stats.roster_updates}: {len(entries)} agents")
        for entry in entries:
            print(f"[probe]   {_format_entry(entry)}")

    def on_connectivity(state: ConnectivityState) -> None:
        if state is ConnectivityState.CONNECTED:
            stats.connects += 1
        elif state is ConnectivityState.DISCONNECTED and stats.connects:
            stats.drops += 1
        print(f"[probe] connectivity: {state}")

    def on_tracking(flag: TrackingFlag) -> None:
        print(f"[probe] tracking active={flag.active} by={flag.changed_by or '-'}")

    async with TrackerClient(config) as client:
        client.subscribe_roster(on_roster)
        client.subscribe_connectivity(on_connectivity)
        client.subscribe_tracking(on_tracking)

        print(f"[probe] Connecting to {args.endpoint or config.push_endpoint} (api={config.api_base_url})")
        await client.connect(args.endpoint)
        try:
            if args.duration > 0:
                await asyncio.wait_for(stop.wait(), timeout=args.duration)
            else:
                await stop.wait()
        except TimeoutError:
            print(f"[probe] Reached --duration={args.duration}s, stopping.")

    _print_summary(stats)
    return 0


def _main() -> int:
    args = _parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )
    try:
        return asyncio.run(_run(args))
    except Exception as exc:  # pragma: no cover - network/system interaction
        print(f"[probe] Failed: {exc}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    raise SystemExit(_main())
