"""Periodic waitlist snapshots for upcoming flights"""

import asyncio
from contextlib import suppress
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, List, Optional, Tuple

from loguru import logger

from .config import SNAPSHOT_INTERVAL, SNAPSHOT_LOOKAHEAD_DAYS
from .gateway import SnapshotGateway, utc_now
from .models import FetchOutcome


@dataclass
class BatchStats:
    """Outcome counts of one scheduler pass"""

    flights: int = 0
    fetched: int = 0
    skipped: int = 0
    failed: int = 0
    failures: List[Tuple[str, str, str]] = field(default_factory=list)

    @property
    def success_rate(self) -> float:
        return self.fetched / self.flights * 100 if self.flights else 0.0


class SnapshotScheduler:
    """
    Re-fetches every tracked flight departing within the lookahead window,
    immediately on start and then on a fixed interval.
    """

    def __init__(
        self,
        gateway: SnapshotGateway,
        interval: float = SNAPSHOT_INTERVAL,
        lookahead_days: int = SNAPSHOT_LOOKAHEAD_DAYS,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.gateway = gateway
        self.interval = interval
        self.lookahead_days = lookahead_days
        self.clock = clock
        self._task: Optional[asyncio.Task] = None
        self.runs = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self, now: Optional[datetime] = None) -> BatchStats:
        """
        Snapshot all tracked flights dated today through today + lookahead.

        Each flight is force-fetched with status updates deferred, then the
        tier engine runs over every enumerated flight. One flight failing
        never stops the batch.

        Returns:
            BatchStats for the pass
        """
        now = now or self.clock()
        today = now.date()
        date_from = today.isoformat()
        date_to = (today + timedelta(days=self.lookahead_days)).isoformat()

        flights = await self.gateway.store.all_flights_between(date_from, date_to)
        stats = BatchStats(flights=len(flights))
        logger.info(f"📅 Snapshot run: {len(flights)} flight(s) between {date_from} and {date_to}")

        for flight_number, date in flights:
            try:
                result = await self.gateway.get_or_fetch(
                    flight_number, date, passenger="", force_refresh=True, update_statuses=False
                )
            except Exception as e:
                stats.failed += 1
                stats.failures.append((flight_number, date, str(e) or type(e).__name__))
                logger.exception(f"   ❌ AS{flight_number} {date} raised: {e}")
                continue

            if result.outcome is FetchOutcome.FRESH:
                stats.fetched += 1
            elif result.outcome is FetchOutcome.RATE_LIMITED:
                # Fetched on demand moments ago, the stored snapshot is current
                stats.skipped += 1
                logger.info(f"   AS{flight_number} {date} fetched recently, skipping")
            else:
                stats.failed += 1
                stats.failures.append((flight_number, date, result.error or "unknown error"))
                logger.warning(f"   ⚠️ AS{flight_number} {date} failed: {result.error}")

        for flight_number, date in flights:
            try:
                await self.gateway.status_engine.update_flight(flight_number, date, now)
            except Exception as e:
                logger.exception(f"❌ Tier update failed for AS{flight_number} {date}: {e}")

        self.runs += 1
        logger.info(
            f"✅ Snapshot run complete: {stats.fetched} fetched, {stats.skipped} skipped, "
            f"{stats.failed} failed ({stats.success_rate:.1f}% success)"
        )
        return stats

    def start(self) -> asyncio.Task:
        """Start the periodic loop (first run immediately)"""
        if self.running:
            logger.warning("Snapshot scheduler already running")
            return self._task
        self._task = asyncio.create_task(self._loop())
        logger.info(f"⏰ Snapshot scheduler started (every {self.interval / 3600:.1f}h)")
        return self._task

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        with suppress(asyncio.CancelledError):
            await task
        logger.info("Snapshot scheduler stopped")

    async def _loop(self) -> None:
        while True:
            try:
                await self.run_once()
            except Exception as e:
                logger.exception(f"❌ Snapshot run failed: {e}")
            await asyncio.sleep(self.interval)
