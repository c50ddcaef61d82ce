#!/usr/bin/env python3
"""Run the aircraft tracker and serve snapshots over WebSocket.

Configuration comes from ``SBS_*`` environment variables (see
``pysbs.config.TrackerConfig.from_env``); command-line flags override them.
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
import signal
from typing import Any

from pysbs import AircraftTracker, FeedServer, TrackerConfig
from pysbs.exceptions import SbsConfigError

_LOG = logging.getLogger("feed_server")


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Aggregate a BaseStation (SBS-1) feed and publish snapshots over WebSocket.",
    )
    parser.add_argument("--source", choices=("tcp", "mqtt"), help="Inbound transport.")
    parser.add_argument("--host", help="BaseStation TCP host (or MQTT broker with --source mqtt).")
    parser.add_argument("--port", type=int, help="BaseStation TCP port (or MQTT broker port).")
    parser.add_argument("--ws-port", type=int, help="WebSocket listen port.")
    parser.add_argument(
        "--push-incremental",
        action="store_true",
        help="Also push single-aircraft updates between snapshots.",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable debug logs.",
    )
    return parser.parse_args()


def _overrides(args: argparse.Namespace) -> dict[str, Any]:
    overrides: dict[str, Any] = {}
    if args.source:
        overrides["source"] = args.source
    source = args.source or "tcp"
    if args.host:
        overrides["mqtt_host" if source == "mqtt" else "tcp_host"] = args.host
    if args.port:
        overrides["mqtt_port" if source == "mqtt" else "tcp_port"] = args.port
    if args.ws_port is not None:
        overrides["ws_port"] = args.ws_port
    if args.push_incremental:
        overrides["push_incremental"] = True
    return overrides


async def _run(config: TrackerConfig) -> None:
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(signum, stop.set)

    async with AircraftTracker(config) as tracker, FeedServer(tracker, config.ws_host, config.ws_port):
        await stop.wait()
        _LOG.info("Shutting down")


def main() -> int:
    args = _parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        config = TrackerConfig.from_env(**_overrides(args))
    except SbsConfigError as exc:
        _LOG.error("Invalid configuration: %s", exc)
        return 2
    asyncio.run(_run(config))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
