"""Upgrade Waitlist Tracker
Scrapes flight status pages and tracks upgrade waitlist positions over time
"""

__version__ = "0.1.0"

from .browser import BrowserSessionManager, CamoufoxLauncher
from .challenge import ChallengeHandler, ScreenshotRecorder
from .exceptions import (
    ChallengeFailedError,
    InvalidRequestError,
    NoSegmentsFoundError,
    RateLimitError,
    SessionUnavailableError,
    TransientConnectionError,
    WaitlistTrackerError,
)
from .extractor import PageExtractor
from .gateway import SnapshotGateway
from .models import ChallengeState, ErrorType, FetchOutcome, Tier, TrackResult
from .rate_limiter import FetchRateLimiter
from .scheduler import SnapshotScheduler
from .status import StatusEngine, classify_tier, diff_waitlists
from .store import JsonSnapshotStore, SnapshotStore

__all__ = [
    "__version__",
    "BrowserSessionManager",
    "CamoufoxLauncher",
    "ChallengeHandler",
    "ScreenshotRecorder",
    "ChallengeFailedError",
    "InvalidRequestError",
    "NoSegmentsFoundError",
    "RateLimitError",
    "SessionUnavailableError",
    "TransientConnectionError",
    "WaitlistTrackerError",
    "PageExtractor",
    "SnapshotGateway",
    "ChallengeState",
    "ErrorType",
    "FetchOutcome",
    "Tier",
    "TrackResult",
    "FetchRateLimiter",
    "SnapshotScheduler",
    "StatusEngine",
    "classify_tier",
    "diff_waitlists",
    "JsonSnapshotStore",
    "SnapshotStore",
]
