#!/usr/bin/env python3
"""Subscribe to a feed server and print the aircraft table as it changes."""

from __future__ import annotations

import argparse
import asyncio
import logging

from pysbs import SubscriberSession, TrackerConfig
from pysbs.exceptions import SbsSessionFailedError
from pysbs.session import ConnectionState

_LOG = logging.getLogger("watch_feed")


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Watch aircraft published by a pysbs feed server.")
    parser.add_argument("url", nargs="?", default="ws://localhost:8080/ws", help="Feed server WebSocket URL.")
    parser.add_argument("--limit", type=int, default=20, help="Rows to print per update.")
    parser.add_argument(
        "--max-attempts",
        type=int,
        default=None,
        help="Reconnect attempts before giving up (default: SBS_MAX_RECONNECT_ATTEMPTS or 5).",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logs.")
    return parser.parse_args()


def _print_table(session: SubscriberSession, limit: int) -> None:
    aircraft = session.aircraft
    summary = session.altitude_range
    header = f"[{session.state}] {len(aircraft)} aircraft"
    if summary is not None and summary.min is not None:
        header += f", altitude {summary.min}-{summary.max} ft"
    print(header)
    for record in aircraft[:limit]:
        position = f"{record.latitude:.4f},{record.longitude:.4f}" if record.has_position else "-"
        print(
            f"  {record.hex_ident} {record.callsign or '':8} {record.airline[:18]:18} "
            f"alt={record.altitude if record.altitude is not None else '-':>6} "
            f"gs={record.ground_speed if record.ground_speed is not None else '-':>4} pos={position}"
        )


async def _run(args: argparse.Namespace) -> int:
    last_printed = 0

    def on_change(session: SubscriberSession) -> None:
        nonlocal last_printed
        if session.payloads_received != last_printed:
            last_printed = session.payloads_received
            _print_table(session, args.limit)

    overrides = {} if args.max_attempts is None else {"max_reconnect_attempts": args.max_attempts}
    config = TrackerConfig.from_env(**overrides)

    async with SubscriberSession.from_config(args.url, config, on_change=on_change) as session:
        try:
            await session.wait_connected()
            await session.wait_for_state(ConnectionState.FAILED)
        except SbsSessionFailedError as exc:
            _LOG.error("%s", exc)
            return 1
    _LOG.error("Feed at %s is unreachable", args.url)
    return 1


def main() -> int:
    args = _parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )
    try:
        return asyncio.run(_run(args))
    except KeyboardInterrupt:
        return 0


if __name__ == "__main__":
    raise SystemExit(main())
