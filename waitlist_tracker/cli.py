"""Command-line interface for the upgrade waitlist tracker"""

import argparse
import asyncio
import sys
from pathlib import Path
from typing import List, Optional

import orjson
from loguru import logger

from . import __version__
from .browser import BrowserSessionManager, CamoufoxLauncher
from .challenge import ChallengeHandler
from .config import (
    CACHE_FRESHNESS,
    DEFAULT_DATA_DIR,
    DEFAULT_SCREENSHOT_DIR,
    RATE_LIMIT_INTERVAL,
    SNAPSHOT_INTERVAL,
)
from .date_utils import parse_date_or_range, validate_flight_input
from .exceptions import InvalidRequestError
from .gateway import SnapshotGateway
from .logging_config import setup_logging
from .models import TrackResult
from .rate_limiter import FetchRateLimiter
from .scheduler import SnapshotScheduler
from .store import JsonSnapshotStore


class DateAction(argparse.Action):
    """Collect --date and --dates values into one list"""

    def __call__(self, parser, namespace, values, option_string=None):
        if getattr(namespace, self.dest, None) is None:
            setattr(namespace, self.dest, [])

        if isinstance(values, list):
            getattr(namespace, self.dest).extend(values)
        else:
            getattr(namespace, self.dest).append(values)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Upgrade waitlist tracker",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    # Single lookup
    lookup_group = parser.add_argument_group("Waitlist Lookup")
    lookup_group.add_argument("--flight", type=str, help="Flight number (100 or AS100)")
    lookup_group.add_argument(
        "--date", "--dates",
        dest="dates",
        action=DateAction,
        nargs="+",
        help="Flight date(s): YYYY-MM-DD, 'December 29, 2024', or a range START:END",
    )
    lookup_group.add_argument(
        "--passenger", type=str, default="", help="Name code to rank, e.g. SMI/J"
    )
    lookup_group.add_argument(
        "--force-refresh", action="store_true", help="Ignore stored snapshots and refetch"
    )
    lookup_group.add_argument(
        "--cached-only",
        action="store_true",
        help="Show the last stored waitlist without opening a browser, however old",
    )
    lookup_group.add_argument("--json", action="store_true", help="Print results as JSON")

    # Scheduler
    schedule_group = parser.add_argument_group("Snapshot Scheduler")
    mode = schedule_group.add_mutually_exclusive_group()
    mode.add_argument(
        "--snapshot-once", action="store_true", help="Snapshot all upcoming tracked flights once"
    )
    mode.add_argument(
        "--schedule", action="store_true", help="Snapshot upcoming tracked flights periodically"
    )
    schedule_group.add_argument(
        "--interval-hours",
        type=float,
        default=SNAPSHOT_INTERVAL / 3600,
        help="Hours between scheduled snapshot runs (default: 4)",
    )

    # Browser
    browser_group = parser.add_argument_group("Browser")
    browser_group.add_argument("--no-headless", action="store_true", help="Visible browser mode")
    browser_group.add_argument(
        "--screenshots",
        type=str,
        nargs="?",
        const=str(DEFAULT_SCREENSHOT_DIR),
        help="Capture screenshots while passing verification (optional directory)",
    )
    browser_group.add_argument(
        "--lenient-content-check",
        action="store_true",
        help="Only treat explicit verification markers as a challenge",
    )

    # Configuration
    config_group = parser.add_argument_group("Configuration")
    config_group.add_argument(
        "--data-dir", type=str, default=str(DEFAULT_DATA_DIR), help="Snapshot store directory"
    )
    config_group.add_argument(
        "--rate-limit-minutes",
        type=float,
        default=RATE_LIMIT_INTERVAL / 60,
        help="Minimum minutes between fetches of one flight (default: 10)",
    )
    config_group.add_argument(
        "--cache-minutes",
        type=float,
        default=CACHE_FRESHNESS / 60,
        help="Serve stored snapshots younger than this (default: 5)",
    )
    config_group.add_argument("--verbose", action="store_true", help="Debug logging")
    config_group.add_argument("--log-file", type=str, help="Log file path")

    return parser


def build_gateway(args: argparse.Namespace) -> SnapshotGateway:
    """Wire store, browser, verification and limiter from parsed arguments"""
    sessions = BrowserSessionManager(launcher=CamoufoxLauncher(headless=not args.no_headless))
    challenge = ChallengeHandler(
        screenshot_dir=Path(args.screenshots) if args.screenshots else None,
        strict_content_check=not args.lenient_content_check,
    )
    return SnapshotGateway(
        store=JsonSnapshotStore(Path(args.data_dir)),
        sessions=sessions,
        challenge=challenge,
        rate_limiter=FetchRateLimiter(interval=args.rate_limit_minutes * 60),
        cache_freshness=args.cache_minutes * 60,
    )


def print_result(result: TrackResult, passenger: str) -> None:
    logger.info("=" * 60)
    logger.info(f"AS{result.flight_number} on {result.date}: {result.outcome.value}")
    if not result.ok:
        logger.error(f"  {result.error}")
        if result.retry_after is not None:
            logger.info(f"  Retry after {result.retry_after:.0f}s")
        return

    for entry in result.segments:
        segment = entry.segment
        logger.info(
            f"  Segment {segment.segment_index + 1}: {segment.origin} → {segment.destination} "
            f"{segment.departure_time}-{segment.arrival_time}"
        )
        if entry.snapshot is None:
            logger.info("    No upgrade waitlist shown")
            continue
        snapshot = entry.snapshot
        logger.info(
            f"    Waitlisted: {entry.total_waitlisted}  Capacity: {snapshot.capacity}  "
            f"Available: {snapshot.available}  Checked-in: {snapshot.checked_in}"
        )
        if passenger:
            if entry.position is None:
                logger.info(f"    {passenger} is not on the waitlist")
            else:
                likely = "likely" if entry.upgrade_likely else "not yet likely"
                logger.info(f"    {passenger} is #{entry.position} (upgrade {likely})")


async def lookup(
    gateway: SnapshotGateway,
    flight: str,
    dates: List[str],
    passenger: str,
    force_refresh: bool = False,
    as_json: bool = False,
    cached_only: bool = False,
) -> int:
    """
    Look up one flight on one or more dates.

    Returns:
        Process exit code (0 when every lookup succeeded)
    """
    results = []
    for date in dates:
        if cached_only:
            result = await gateway.get_cached(flight, date, passenger=passenger)
        else:
            result = await gateway.get_or_fetch(
                flight, date, passenger=passenger, force_refresh=force_refresh
            )
        results.append(result)
        if not as_json:
            print_result(result, passenger.strip().upper())

    if as_json:
        payload = [result.to_dict() for result in results]
        sys.stdout.write(orjson.dumps(payload, option=orjson.OPT_INDENT_2).decode() + "\n")

    return 0 if all(result.ok for result in results) else 1


async def run_schedule(scheduler: SnapshotScheduler) -> None:
    task = scheduler.start()
    try:
        await task
    finally:
        await scheduler.stop()


def main(argv: Optional[List[str]] = None) -> None:
    """Main CLI entry point"""
    parser = build_parser()
    args = parser.parse_args(argv)

    log_file = Path(args.log_file) if args.log_file else Path("./logs/waitlist_tracker.log")
    # Keep stdout for the JSON document
    setup_logging(
        verbose=args.verbose,
        log_file=log_file,
        stream=sys.stderr if args.json else sys.stdout,
    )

    logger.info("=" * 60)
    logger.info(f"Upgrade Waitlist Tracker (v{__version__})")
    logger.info("=" * 60)

    scheduled = args.snapshot_once or args.schedule
    dates: List[str] = []
    if not scheduled:
        if not args.flight or not args.dates:
            logger.error("--flight and --date are required unless --snapshot-once or --schedule is used")
            sys.exit(1)
        if args.cached_only and args.force_refresh:
            logger.error("--cached-only and --force-refresh cannot be combined")
            sys.exit(1)
        try:
            for spec in args.dates:
                dates.extend(parse_date_or_range(spec))
        except InvalidRequestError as e:
            logger.error(str(e))
            sys.exit(1)
        for date in dates:
            is_valid, error_msg = validate_flight_input(args.flight, date)
            if not is_valid:
                logger.error(f"Invalid request: {error_msg}")
                sys.exit(1)

    async def run() -> int:
        gateway = build_gateway(args)
        try:
            if args.snapshot_once:
                stats = await SnapshotScheduler(gateway).run_once()
                return 0 if stats.failed == 0 else 1
            if args.schedule:
                await run_schedule(SnapshotScheduler(gateway, interval=args.interval_hours * 3600))
                return 0
            return await lookup(
                gateway,
                args.flight,
                dates,
                args.passenger,
                force_refresh=args.force_refresh,
                as_json=args.json,
                cached_only=args.cached_only,
            )
        finally:
            await gateway.close()

    try:
        exit_code = asyncio.run(run())
    except KeyboardInterrupt:
        logger.warning("Interrupted by user")
        sys.exit(1)

    if exit_code:
        sys.exit(exit_code)


if __name__ == "__main__":
    main()
