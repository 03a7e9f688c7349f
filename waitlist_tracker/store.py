"""Persistent store for flight segments, waitlist snapshots and passenger tiers"""

import asyncio
import dataclasses
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import aiofiles
import aiofiles.os
import orjson
from loguru import logger

from .models import FlightSegment, PassengerStatus, Tier, WaitlistSnapshot


class SnapshotStore(ABC):
    """Read/write contract the tracker needs from its database"""

    @abstractmethod
    async def upsert_flight_segment(self, segment: FlightSegment) -> int:
        """Insert or update a segment by (flight_number, date, segment_index); return its id"""

    @abstractmethod
    async def append_waitlist_snapshot(
        self, flight_id: int, snapshot: WaitlistSnapshot
    ) -> WaitlistSnapshot:
        """Append an immutable snapshot for a segment"""

    @abstractmethod
    async def latest_snapshots_for(
        self, flight_number: str, date: str
    ) -> List[Tuple[FlightSegment, Optional[WaitlistSnapshot]]]:
        """Each stored segment of a flight with its most recent snapshot, by segment index"""

    @abstractmethod
    async def previous_snapshot_before(
        self, flight_id: int, timestamp: datetime
    ) -> Optional[WaitlistSnapshot]:
        """Most recent snapshot of a segment captured strictly before timestamp"""

    @abstractmethod
    async def upsert_passenger_status(self, status: PassengerStatus) -> None:
        """Insert or replace the tier record of (passenger, flight_number, date)"""

    @abstractmethod
    async def passenger_statuses_for(
        self, flight_number: str, date: str
    ) -> Dict[str, PassengerStatus]:
        """Current tier records of a flight keyed by passenger"""

    @abstractmethod
    async def all_flights_between(self, date_from: str, date_to: str) -> List[Tuple[str, str]]:
        """Distinct (flight_number, date) pairs with date_from <= date <= date_to"""


def _snapshot_to_record(snapshot: WaitlistSnapshot) -> Dict[str, Any]:
    return {
        "flight_id": snapshot.flight_id,
        "segment_index": snapshot.segment_index,
        "passengers": snapshot.passengers,
        "capacity": snapshot.capacity,
        "available": snapshot.available,
        "checked_in": snapshot.checked_in,
        "captured_at": snapshot.captured_at.isoformat() if snapshot.captured_at else None,
    }


def _snapshot_from_record(record: Dict[str, Any]) -> WaitlistSnapshot:
    captured_at = record.get("captured_at")
    return WaitlistSnapshot(
        passengers=list(record.get("passengers") or []),
        capacity=record.get("capacity"),
        available=record.get("available"),
        checked_in=record.get("checked_in"),
        captured_at=datetime.fromisoformat(captured_at) if captured_at else None,
        segment_index=record.get("segment_index", 0),
        flight_id=record.get("flight_id"),
    )


def _status_to_record(status: PassengerStatus) -> Dict[str, Any]:
    return {
        "passenger": status.passenger,
        "flight_number": status.flight_number,
        "date": status.date,
        "tier": status.tier.value,
        "updated_at": status.updated_at.isoformat(),
    }


def _status_from_record(record: Dict[str, Any]) -> PassengerStatus:
    return PassengerStatus(
        passenger=record["passenger"],
        flight_number=record["flight_number"],
        date=record["date"],
        tier=Tier(record["tier"]),
        updated_at=datetime.fromisoformat(record["updated_at"]),
    )


class JsonSnapshotStore(SnapshotStore):
    """
    File-backed store in a single directory.
    Uses aiofiles for async I/O and orjson for serialization.

    - flights.json: segment table with integer ids
    - snapshots.jsonl: append-only snapshot log, one record per line
    - passenger_status.json: tier table, last write wins
    """

    FLIGHTS_FILE = "flights.json"
    SNAPSHOTS_FILE = "snapshots.jsonl"
    STATUS_FILE = "passenger_status.json"

    def __init__(self, data_dir: Path):
        """
        Initialize JSON store.

        Args:
            data_dir: Directory holding the store files (created if missing)
        """
        self.data_dir = data_dir
        self._lock = asyncio.Lock()
        self._loaded = False

        self._next_id = 1
        self._flights: Dict[int, FlightSegment] = {}
        self._snapshots: List[WaitlistSnapshot] = []
        self._statuses: Dict[Tuple[str, str, str], PassengerStatus] = {}

    @property
    def flights_path(self) -> Path:
        return self.data_dir / self.FLIGHTS_FILE

    @property
    def snapshots_path(self) -> Path:
        return self.data_dir / self.SNAPSHOTS_FILE

    @property
    def status_path(self) -> Path:
        return self.data_dir / self.STATUS_FILE

    # ------------------------------------------------------------------
    # Loading and persistence
    # ------------------------------------------------------------------

    async def _ensure_loaded(self) -> None:
        if self._loaded:
            return

        self.data_dir.mkdir(parents=True, exist_ok=True)

        flights = await self._read_json(self.flights_path)
        if flights:
            self._next_id = flights.get("next_id", 1)
            for record in flights.get("flights", []):
                flight_id = record.pop("id")
                self._flights[flight_id] = FlightSegment(**record)

        if self.snapshots_path.exists():
            async with aiofiles.open(self.snapshots_path, "rb") as f:
                async for line in f:
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        self._snapshots.append(_snapshot_from_record(orjson.loads(line)))
                    except (orjson.JSONDecodeError, KeyError, ValueError) as e:
                        logger.warning(f"Skipping corrupt snapshot record: {e}")

        statuses = await self._read_json(self.status_path)
        for record in statuses or []:
            status = _status_from_record(record)
            self._statuses[(status.passenger, status.flight_number, status.date)] = status

        self._loaded = True
        logger.debug(
            f"Loaded store from {self.data_dir}: {len(self._flights)} segments, "
            f"{len(self._snapshots)} snapshots, {len(self._statuses)} passenger statuses"
        )

    @staticmethod
    async def _read_json(path: Path) -> Any:
        if not path.exists():
            return None
        async with aiofiles.open(path, "rb") as f:
            content = await f.read()
        return orjson.loads(content) if content else None

    @staticmethod
    async def _write_json(path: Path, data: Any) -> None:
        """Write to a temporary file and swap it in so readers never see a partial file"""
        tmp_path = path.with_suffix(path.suffix + ".tmp")
        async with aiofiles.open(tmp_path, "wb") as f:
            await f.write(orjson.dumps(data, option=orjson.OPT_INDENT_2))
        await aiofiles.os.replace(tmp_path, path)

    async def _save_flights(self) -> None:
        records = [
            {"id": flight_id, **dataclasses.asdict(segment)}
            for flight_id, segment in sorted(self._flights.items())
        ]
        await self._write_json(self.flights_path, {"next_id": self._next_id, "flights": records})

    async def _save_statuses(self) -> None:
        records = [_status_to_record(status) for status in self._statuses.values()]
        await self._write_json(self.status_path, records)

    # ------------------------------------------------------------------
    # Contract
    # ------------------------------------------------------------------

    async def upsert_flight_segment(self, segment: FlightSegment) -> int:
        async with self._lock:
            await self._ensure_loaded()

            flight_id = self._find_segment_id(segment.key)
            if flight_id is None:
                flight_id = self._next_id
                self._next_id += 1
                logger.debug(f"New segment #{flight_id}: AS{segment.flight_number} {segment.date}")

            self._flights[flight_id] = dataclasses.replace(segment)
            await self._save_flights()
            return flight_id

    def _find_segment_id(self, key: tuple) -> Optional[int]:
        for flight_id, stored in self._flights.items():
            if stored.key == key:
                return flight_id
        return None

    async def append_waitlist_snapshot(
        self, flight_id: int, snapshot: WaitlistSnapshot
    ) -> WaitlistSnapshot:
        async with self._lock:
            await self._ensure_loaded()
            if flight_id not in self._flights:
                raise KeyError(f"Unknown flight segment id {flight_id}")

            stored = dataclasses.replace(
                snapshot, flight_id=flight_id, passengers=list(snapshot.passengers)
            )
            line = orjson.dumps(_snapshot_to_record(stored)) + b"\n"
            async with aiofiles.open(self.snapshots_path, "ab") as f:
                await f.write(line)

            self._snapshots.append(stored)
            logger.debug(
                f"💾 Snapshot for segment #{flight_id}: {len(stored.passengers)} passengers"
            )
            return stored

    def _snapshots_of(self, flight_id: int) -> List[WaitlistSnapshot]:
        # Stable sort keeps append order for identical timestamps
        return sorted(
            (s for s in self._snapshots if s.flight_id == flight_id and s.captured_at),
            key=lambda s: s.captured_at,
        )

    async def latest_snapshots_for(
        self, flight_number: str, date: str
    ) -> List[Tuple[FlightSegment, Optional[WaitlistSnapshot]]]:
        async with self._lock:
            await self._ensure_loaded()
            results = []
            for flight_id, segment in self._flights.items():
                if segment.flight_number != flight_number or segment.date != date:
                    continue
                history = self._snapshots_of(flight_id)
                results.append((segment, history[-1] if history else None))
            results.sort(key=lambda item: item[0].segment_index)
            return results

    async def previous_snapshot_before(
        self, flight_id: int, timestamp: datetime
    ) -> Optional[WaitlistSnapshot]:
        async with self._lock:
            await self._ensure_loaded()
            earlier = [s for s in self._snapshots_of(flight_id) if s.captured_at < timestamp]
            return earlier[-1] if earlier else None

    async def upsert_passenger_status(self, status: PassengerStatus) -> None:
        async with self._lock:
            await self._ensure_loaded()
            self._statuses[(status.passenger, status.flight_number, status.date)] = status
            await self._save_statuses()

    async def passenger_statuses_for(
        self, flight_number: str, date: str
    ) -> Dict[str, PassengerStatus]:
        async with self._lock:
            await self._ensure_loaded()
            return {
                passenger: status
                for (passenger, number, day), status in self._statuses.items()
                if number == flight_number and day == date
            }

    async def all_flights_between(self, date_from: str, date_to: str) -> List[Tuple[str, str]]:
        async with self._lock:
            await self._ensure_loaded()
            pairs = {
                (segment.flight_number, segment.date)
                for segment in self._flights.values()
                if date_from <= segment.date <= date_to
            }
            return sorted(pairs, key=lambda pair: (pair[1], pair[0]))
