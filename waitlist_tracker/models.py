"""Data models and enums for the waitlist tracker"""

from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


class ChallengeState(Enum):
    """Verification page states"""

    NORMAL = "normal"  # Status content reachable
    CHALLENGE_DETECTED = "challenge_detected"
    PASSED = "passed"
    FAILED = "failed"


class ErrorType(Enum):
    """Error categories for different handling strategies"""

    TRANSIENT = "transient"  # Connection lost, retry later without penalty
    RATE_LIMIT = "rate_limit"  # Wait out the interval
    CHALLENGE = "challenge"  # Bot check not passed
    PERMANENT = "permanent"  # Don't retry


class Tier(Enum):
    """Passenger status tier derived from time before departure"""

    MVP_GOLD_75K = "MVP_GOLD_75K"  # T-120 to T-72
    MVP_GOLD = "MVP_GOLD"  # T-72 to T-48
    MVP = "MVP"  # Less than T-48


class FetchOutcome(Enum):
    """How a tracking request was answered"""

    FRESH = "fresh"
    CACHED = "cached"
    RATE_LIMITED = "rate_limited"
    FAILED = "failed"


@dataclass
class FlightSegment:
    """One flown leg of an itinerary on a given date"""

    flight_number: str
    date: str
    origin: str = ""
    destination: str = ""
    departure_time: str = ""
    arrival_time: str = ""
    segment_index: int = 0

    @property
    def key(self) -> tuple:
        return (self.flight_number, self.date, self.segment_index)


@dataclass
class WaitlistSnapshot:
    """Timestamped, ordered capture of the upgrade waitlist for one segment"""

    passengers: List[str] = field(default_factory=list)
    capacity: Optional[int] = None
    available: Optional[int] = None
    checked_in: Optional[int] = None
    captured_at: Optional[datetime] = None
    segment_index: int = 0
    flight_id: Optional[int] = None

    def position_of(self, passenger: str) -> Optional[int]:
        """1-based rank of a passenger, None when not waitlisted"""
        if not passenger:
            return None
        name = passenger.strip().upper()
        try:
            return self.passengers.index(name) + 1
        except ValueError:
            return None


@dataclass
class PassengerStatus:
    passenger: str
    flight_number: str
    date: str
    tier: Tier
    updated_at: datetime


@dataclass
class Reorder:
    passenger: str
    old_position: int
    new_position: int

    @property
    def movement(self) -> int:
        """Positive when the passenger moved towards the front"""
        return self.old_position - self.new_position


@dataclass
class WaitlistDiff:
    added: List[str] = field(default_factory=list)
    removed: List[str] = field(default_factory=list)
    reordered: List[Reorder] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.added or self.removed or self.reordered)


@dataclass
class SegmentPosition:
    """A segment with its waitlist and the requesting passenger's rank"""

    segment: FlightSegment
    snapshot: Optional[WaitlistSnapshot] = None
    position: Optional[int] = None

    @property
    def total_waitlisted(self) -> Optional[int]:
        if self.snapshot is None:
            return None
        return len(self.snapshot.passengers)

    @property
    def upgrade_likely(self) -> bool:
        if self.snapshot is None or self.snapshot.available is None:
            return False
        return self.position is not None and self.snapshot.available >= self.position

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self.segment)
        data["position"] = self.position
        data["total_waitlisted"] = self.total_waitlisted
        data["upgrade_likely"] = self.upgrade_likely
        if self.snapshot is not None:
            data["names"] = list(self.snapshot.passengers)
            data["waitlist_info"] = {
                "capacity": self.snapshot.capacity,
                "available": self.snapshot.available,
                "checked_in": self.snapshot.checked_in,
            }
            data["captured_at"] = (
                self.snapshot.captured_at.isoformat() if self.snapshot.captured_at else None
            )
        return data


@dataclass
class TrackResult:
    """Answer to a tracking request: data, a rate-limit wait, or a failure reason"""

    flight_number: str
    date: str
    outcome: FetchOutcome
    segments: List[SegmentPosition] = field(default_factory=list)
    error: Optional[str] = None
    error_type: Optional[str] = None
    retry_after: Optional[float] = None
    http_status: int = 200

    @property
    def ok(self) -> bool:
        return self.outcome in (FetchOutcome.FRESH, FetchOutcome.CACHED)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "flight_number": self.flight_number,
            "date": self.date,
            "outcome": self.outcome.value,
            "segments": [segment.to_dict() for segment in self.segments],
        }
        if self.error:
            data["error"] = self.error
            data["error_type"] = self.error_type
        if self.retry_after is not None:
            data["retry_after"] = self.retry_after
        return data
