from datetime import datetime, timedelta, timezone

import pytest

from waitlist_tracker.models import FlightSegment, Tier, WaitlistSnapshot
from waitlist_tracker.status import (
    StatusEngine,
    classify_tier,
    diff_waitlists,
    hours_before_departure,
)
from waitlist_tracker.store import JsonSnapshotStore

NOW = datetime(2024, 12, 27, 16, 0, tzinfo=timezone.utc)


def test_identical_lists_have_empty_diff():
    names = ["ABC/D", "SMI/J", "DOE/K"]
    assert diff_waitlists(names, list(names)).is_empty


def test_added_and_removed_are_symmetric():
    old = ["ABC/D", "SMI/J", "DOE/K"]
    new = ["SMI/J", "DOE/K", "NEW/P", "LAT/Q"]

    forward = diff_waitlists(old, new)
    backward = diff_waitlists(new, old)

    assert forward.added == ["NEW/P", "LAT/Q"]
    assert forward.removed == ["ABC/D"]
    assert backward.added == forward.removed
    assert backward.removed == forward.added


def test_reorders_record_both_positions():
    diff = diff_waitlists(["ABC/D", "SMI/J", "DOE/K"], ["SMI/J", "ABC/D", "DOE/K"])

    assert diff.added == [] and diff.removed == []
    moves = {event.passenger: (event.old_position, event.new_position) for event in diff.reordered}
    assert moves == {"SMI/J": (1, 0), "ABC/D": (0, 1)}
    assert [event.movement for event in diff.reordered] == [1, -1]


def test_removal_shifts_everyone_behind():
    diff = diff_waitlists(["ABC/D", "SMI/J", "DOE/K"], ["SMI/J", "DOE/K"])

    assert diff.removed == ["ABC/D"]
    assert [(e.passenger, e.movement) for e in diff.reordered] == [("SMI/J", 1), ("DOE/K", 1)]


@pytest.mark.parametrize(
    "hours,tier",
    [
        (80, Tier.MVP_GOLD_75K),
        (72, Tier.MVP_GOLD_75K),
        (71.99, Tier.MVP_GOLD),
        (50, Tier.MVP_GOLD),
        (48, Tier.MVP_GOLD),
        (47.5, Tier.MVP),
        (10, Tier.MVP),
        (-2, Tier.MVP),
    ],
)
def test_classify_tier_boundaries(hours, tier):
    assert classify_tier(hours) is tier


def test_hours_use_origin_offset():
    # 08:15 at SEA (UTC-8) is 16:15Z, at ORD (UTC-6) 14:15Z
    assert hours_before_departure("2024-12-29", "08:15", "SEA", NOW) == pytest.approx(48.25)
    assert hours_before_departure("2024-12-29", "08:15", "ORD", NOW) == pytest.approx(46.25)
    assert hours_before_departure("2024-12-29", "08:15", "HNL", NOW) == pytest.approx(50.25)


def test_unknown_airport_defaults_to_pacific():
    assert hours_before_departure("2024-12-29", "08:15", "XYZ", NOW) == pytest.approx(48.25)
    assert hours_before_departure("2024-12-29", "08:15", "", NOW) == pytest.approx(48.25)


@pytest.mark.parametrize("time_value", ["", "TBD", "25:99"])
def test_unparsable_time_gives_none(time_value):
    assert hours_before_departure("2024-12-29", time_value, "SEA", NOW) is None


def test_upgrade_position_helpers():
    snapshot = WaitlistSnapshot(passengers=["ABC/D", "SMI/J"], available=1)

    assert snapshot.position_of(" smi/j ") == 2
    assert snapshot.position_of("") is None


async def _store_snapshot(store, segment, names, captured_at):
    flight_id = await store.upsert_flight_segment(segment)
    return await store.append_waitlist_snapshot(
        flight_id, WaitlistSnapshot(passengers=names, captured_at=captured_at)
    )


@pytest.mark.asyncio
async def test_update_segment_diffs_and_stores_tiers(tmp_path):
    store = JsonSnapshotStore(tmp_path)
    engine = StatusEngine(store)
    segment = FlightSegment("100", "2024-12-30", "SEA", "SFO", "08:15", "10:25")

    await _store_snapshot(store, segment, ["ABC/D", "SMI/J"], NOW - timedelta(hours=4))
    latest = await _store_snapshot(store, segment, ["SMI/J", "DOE/K"], NOW)

    diff = await engine.update_segment(segment, latest, now=NOW)

    assert diff.added == ["DOE/K"]
    assert diff.removed == ["ABC/D"]
    statuses = await store.passenger_statuses_for("100", "2024-12-30")
    assert set(statuses) == {"SMI/J", "DOE/K"}
    # 72.25h before departure
    assert statuses["SMI/J"].tier is Tier.MVP_GOLD_75K
    assert statuses["SMI/J"].updated_at == NOW


@pytest.mark.asyncio
async def test_tiers_step_down_as_departure_nears(tmp_path):
    store = JsonSnapshotStore(tmp_path)
    engine = StatusEngine(store)
    segment = FlightSegment("100", "2024-12-30", "SEA", "SFO", "08:15", "10:25")
    snapshot = await _store_snapshot(store, segment, ["SMI/J"], NOW)

    await engine.update_segment(segment, snapshot, now=NOW)
    await engine.update_segment(segment, snapshot, now=NOW + timedelta(hours=30))

    statuses = await store.passenger_statuses_for("100", "2024-12-30")
    assert statuses["SMI/J"].tier is Tier.MVP


@pytest.mark.asyncio
async def test_unknown_departure_time_skips_tiers(tmp_path):
    store = JsonSnapshotStore(tmp_path)
    engine = StatusEngine(store)
    segment = FlightSegment("100", "2024-12-30", "SEA", "SFO")
    snapshot = await _store_snapshot(store, segment, ["SMI/J"], NOW)

    diff = await engine.update_segment(segment, snapshot, now=NOW)

    assert diff.added == ["SMI/J"]
    assert await store.passenger_statuses_for("100", "2024-12-30") == {}


@pytest.mark.asyncio
async def test_update_flight_covers_every_segment(tmp_path):
    store = JsonSnapshotStore(tmp_path)
    engine = StatusEngine(store)
    first = FlightSegment("100", "2024-12-29", "SEA", "SFO", "08:15", "10:25", segment_index=0)
    second = FlightSegment("100", "2024-12-29", "SFO", "LAX", "12:00", "13:30", segment_index=1)
    await _store_snapshot(store, first, ["ABC/D"], NOW)
    await _store_snapshot(store, second, ["XYZ/Q"], NOW)

    diffs = await engine.update_flight("100", "2024-12-29", now=NOW)

    assert len(diffs) == 2
    statuses = await store.passenger_statuses_for("100", "2024-12-29")
    assert set(statuses) == {"ABC/D", "XYZ/Q"}
