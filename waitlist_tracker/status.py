"""Waitlist diffing and passenger tier tracking"""

from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Sequence

from loguru import logger

from .config import (
    AIRPORT_UTC_OFFSETS,
    DEFAULT_UTC_OFFSET,
    TIER_HIGHEST_HOURS,
    TIER_MIDDLE_HOURS,
)
from .models import FlightSegment, PassengerStatus, Reorder, Tier, WaitlistDiff, WaitlistSnapshot
from .store import SnapshotStore


def diff_waitlists(old: Sequence[str], new: Sequence[str]) -> WaitlistDiff:
    """
    Compare two ordered waitlists.

    Args:
        old: Previous passenger order
        new: Current passenger order

    Returns:
        Added and removed passengers in list order, plus a reorder event
        (zero-based positions) for every passenger present in both whose
        index changed
    """
    old_index: Dict[str, int] = {}
    for index, passenger in enumerate(old):
        old_index.setdefault(passenger, index)
    new_set = set(new)

    added = [passenger for passenger in new if passenger not in old_index]
    removed = [passenger for passenger in old if passenger not in new_set]
    reordered = [
        Reorder(passenger, old_index[passenger], index)
        for index, passenger in enumerate(new)
        if passenger in old_index and old_index[passenger] != index
    ]
    return WaitlistDiff(added=added, removed=removed, reordered=reordered)


def classify_tier(hours: float) -> Tier:
    if hours >= TIER_HIGHEST_HOURS:
        return Tier.MVP_GOLD_75K
    if hours >= TIER_MIDDLE_HOURS:
        return Tier.MVP_GOLD
    return Tier.MVP


def hours_before_departure(
    date: str, departure_time: str, origin: str, now: datetime
) -> Optional[float]:
    """
    Hours from now until the scheduled departure.

    The departure is local wall-clock time at the origin, converted with a
    fixed per-airport UTC offset (no daylight saving). Unknown airports use
    DEFAULT_UTC_OFFSET.

    Returns:
        Hours (negative once departed), or None when date/time cannot be parsed
    """
    try:
        local = datetime.strptime(f"{date} {departure_time}", "%Y-%m-%d %H:%M")
    except (TypeError, ValueError):
        return None

    offset = AIRPORT_UTC_OFFSETS.get((origin or "").upper(), DEFAULT_UTC_OFFSET)
    departure = local.replace(tzinfo=timezone(timedelta(hours=offset)))
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return (departure - now).total_seconds() / 3600


def tier_for(hours: float, position: int, since_previous: Optional[timedelta]) -> Tier:
    # position and since_previous are passed through but do not affect the tier yet
    return classify_tier(hours)


class StatusEngine:
    """Diffs consecutive snapshots and keeps per-passenger tiers current"""

    def __init__(self, store: SnapshotStore):
        self.store = store

    async def update_segment(
        self,
        segment: FlightSegment,
        snapshot: WaitlistSnapshot,
        now: Optional[datetime] = None,
    ) -> WaitlistDiff:
        """
        Diff a stored snapshot against its predecessor and upsert the tier of
        every passenger on it.

        Args:
            segment: Segment the snapshot belongs to
            snapshot: Stored snapshot (flight_id and captured_at set)
            now: Reference time for tier computation (defaults to UTC now)

        Returns:
            Difference from the previous snapshot (everything added if none)
        """
        now = now or datetime.now(timezone.utc)

        previous = None
        if snapshot.flight_id is not None and snapshot.captured_at is not None:
            previous = await self.store.previous_snapshot_before(
                snapshot.flight_id, snapshot.captured_at
            )

        diff = diff_waitlists(previous.passengers if previous else [], snapshot.passengers)
        self._log_diff(segment, diff)

        hours = hours_before_departure(
            segment.date, segment.departure_time, segment.origin, now
        )
        if hours is None:
            logger.warning(
                f"⚠️ Cannot compute departure time for AS{segment.flight_number} {segment.date} "
                f"('{segment.departure_time}'), skipping tier update"
            )
            return diff

        since_previous = None
        if previous is not None and previous.captured_at and snapshot.captured_at:
            since_previous = snapshot.captured_at - previous.captured_at

        prior = await self.store.passenger_statuses_for(segment.flight_number, segment.date)

        for position, passenger in enumerate(snapshot.passengers, start=1):
            tier = tier_for(hours, position, since_previous)
            old = prior.get(passenger)
            if old is not None and old.tier is not tier:
                logger.info(f"🏷️ {passenger} on AS{segment.flight_number}: {old.tier.value} → {tier.value}")

            await self.store.upsert_passenger_status(
                PassengerStatus(
                    passenger=passenger,
                    flight_number=segment.flight_number,
                    date=segment.date,
                    tier=tier,
                    updated_at=now,
                )
            )

        logger.debug(
            f"Updated {len(snapshot.passengers)} passenger tiers for AS{segment.flight_number} "
            f"{segment.date} ({hours:.1f}h before departure)"
        )
        return diff

    async def update_flight(
        self, flight_number: str, date: str, now: Optional[datetime] = None
    ) -> List[WaitlistDiff]:
        """Run update_segment for the latest snapshot of each stored segment"""
        diffs = []
        for segment, snapshot in await self.store.latest_snapshots_for(flight_number, date):
            if snapshot is None:
                continue
            diffs.append(await self.update_segment(segment, snapshot, now))
        return diffs

    @staticmethod
    def _log_diff(segment: FlightSegment, diff: WaitlistDiff) -> None:
        label = f"AS{segment.flight_number} {segment.date} segment {segment.segment_index + 1}"
        if diff.is_empty:
            logger.debug(f"No waitlist changes for {label}")
            return

        logger.info(
            f"📋 Waitlist changes for {label}: +{len(diff.added)} -{len(diff.removed)} "
            f"~{len(diff.reordered)}"
        )
        for passenger in diff.added:
            logger.debug(f"   + {passenger}")
        for passenger in diff.removed:
            logger.debug(f"   - {passenger}")
        for event in diff.reordered:
            logger.debug(
                f"   {event.passenger}: {event.old_position + 1} → {event.new_position + 1}"
            )
