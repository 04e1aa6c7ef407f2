"""Command-line entry point for the notification retry worker.

Usage:
    # Create tables (development; use alembic for deployed databases):
    herald-worker init-db

    # Run the retry sweeper until interrupted:
    herald-worker sweep

    # Run a single sweep and print its report:
    herald-worker sweep-once

    # Print delivery analytics for the last 24 hours:
    herald-worker analytics --hours 24
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import signal
import sys
from datetime import datetime, timedelta, timezone

from herald.app import Herald, create_herald
from herald.core.config import Settings
from herald.core.logging import configure_logging

logger = logging.getLogger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="herald-worker",
        description="Run the notification retry sweeper and related maintenance commands.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sweep = sub.add_parser("sweep", help="Run the retry sweeper until interrupted.")
    sweep.add_argument(
        "--interval",
        type=float,
        default=None,
        help="Seconds between sweeps (defaults to HERALD_RETRY_SWEEP_INTERVAL_SECONDS).",
    )

    sub.add_parser("sweep-once", help="Run a single retry sweep and print the report.")
    sub.add_parser("init-db", help="Create database tables.")

    analytics = sub.add_parser("analytics", help="Print delivery analytics as JSON.")
    analytics.add_argument(
        "--hours",
        type=float,
        default=24.0,
        help="Size of the window ending now, in hours.",
    )
    analytics.add_argument("--channel", type=str, default=None, help="Only report one channel.")
    return parser.parse_args(argv)


async def _sweep_forever(herald: Herald, interval: float | None) -> None:
    if interval is not None:
        herald.sweeper.interval_seconds = interval

    loop = asyncio.get_running_loop()
    stop = asyncio.Event()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            pass

    herald.sweeper.start()
    await stop.wait()
    logger.info("Shutdown requested")


async def _analytics(herald: Herald, hours: float, channel: str | None) -> dict:
    end = datetime.now(timezone.utc)
    start = end - timedelta(hours=hours)
    if channel:
        stats = await herald.analytics.get_channel_stats(channel, start, end)
        return {
            "channel": channel.upper(),
            "start": start.isoformat(),
            "end": end.isoformat(),
            "counts": {status.value: count for status, count in stats.items()},
        }
    report = await herald.analytics.get_delivery_analytics(start, end)
    return report.model_dump(mode="json")


async def run(args: argparse.Namespace, settings: Settings | None = None) -> int:
    settings = settings or Settings()
    herald = create_herald(settings)
    try:
        if args.command == "init-db":
            await herald.db.create_all()
            print("Database tables created.")
        elif args.command == "sweep-once":
            report = await herald.retry_engine.process_failed_notifications()
            print(report.model_dump_json(indent=2))
        elif args.command == "sweep":
            await _sweep_forever(herald, args.interval)
        elif args.command == "analytics":
            print(json.dumps(await _analytics(herald, args.hours, args.channel), indent=2))
        else:
            raise ValueError(f"Unknown command: {args.command}")
    finally:
        await herald.close()
    return 0


def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)
    settings = Settings()
    configure_logging(settings)
    sys.exit(asyncio.run(run(args, settings)))


if __name__ == "__main__":
    main()
