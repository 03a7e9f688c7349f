"""Per-flight fetch rate limiter"""

import time
from typing import Callable, Dict

from loguru import logger

from .config import RATE_LIMIT_INTERVAL


def flight_key(flight_number: str, date: str) -> str:
    """Rate-limit and cache scope for a flight on a date"""
    return f"{flight_number}|{date}"


class FetchRateLimiter:
    """
    Enforces a minimum interval between fetches of the same flight key.
    State lives in process memory only and is lost on restart.
    """

    def __init__(
        self,
        interval: float = RATE_LIMIT_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize rate limiter.

        Args:
            interval: Minimum seconds between fetches per key
            clock: Monotonic time source in seconds
        """
        self.interval = interval
        self.clock = clock
        self.last_fetch: Dict[str, float] = {}

        logger.debug(f"Fetch rate limiter initialized: one fetch per {interval:.0f}s per flight")

    def can_fetch(self, key: str) -> bool:
        """Check if enough time has passed since the last fetch of this key"""
        return self.time_until_next_fetch(key) <= 0

    def time_until_next_fetch(self, key: str) -> float:
        """Seconds until the next fetch of this key is allowed"""
        last = self.last_fetch.get(key)
        if last is None:
            return 0.0
        elapsed = self.clock() - last
        return max(0.0, self.interval - elapsed)

    def record_fetch(self, key: str) -> None:
        """Record a successful fetch"""
        self.last_fetch[key] = self.clock()
        logger.debug(f"Recorded fetch for {key}")

    def clear(self, key: str) -> None:
        """Forget the last fetch so a failed attempt does not cost the caller a window"""
        if self.last_fetch.pop(key, None) is not None:
            logger.debug(f"Cleared rate limit for {key}")
