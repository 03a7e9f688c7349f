"""Snapshot gateway: serve fresh stored waitlists or fetch, persist and rank"""

import asyncio
from datetime import datetime, timezone
from typing import Callable, List, Optional, Tuple

from loguru import logger
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from .browser import BrowserSessionManager
from .challenge import ChallengeHandler
from .config import (
    CACHE_FRESHNESS,
    CONTENT_WAIT_TIMEOUT_MS,
    FETCH_TIMEOUT,
    NAVIGATION_ATTEMPTS,
    NAVIGATION_RETRY_DELAY,
    NAVIGATION_TIMEOUT_MS,
    POST_CHALLENGE_WAIT_TIMEOUT_MS,
    STATUS_CONTENT_SELECTORS,
    STATUS_URL_TEMPLATE,
)
from .date_utils import normalize_flight_date, parse_flight_number
from .exceptions import (
    InvalidRequestError,
    NoSegmentsFoundError,
    RateLimitError,
    SessionUnavailableError,
    TransientConnectionError,
    WaitlistTrackerError,
)
from .extractor import PageExtractor
from .models import (
    ChallengeState,
    ErrorType,
    FetchOutcome,
    FlightSegment,
    SegmentPosition,
    TrackResult,
    WaitlistSnapshot,
)
from .rate_limiter import FetchRateLimiter, flight_key
from .retry import RetryPolicy, classify_error, is_connection_closed
from .status import StatusEngine
from .store import SnapshotStore

StoredSegments = List[Tuple[FlightSegment, Optional[WaitlistSnapshot]]]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class SnapshotGateway:
    """
    Single entry point for waitlist lookups.

    Flow: normalise input -> fresh stored snapshot? -> rate limit ->
    exclusive browser session -> navigate -> verification -> extract ->
    persist -> record fetch -> update passenger tiers -> rank passenger.
    """

    def __init__(
        self,
        store: SnapshotStore,
        sessions: BrowserSessionManager,
        extractor: Optional[PageExtractor] = None,
        challenge: Optional[ChallengeHandler] = None,
        rate_limiter: Optional[FetchRateLimiter] = None,
        status_engine: Optional[StatusEngine] = None,
        navigation_policy: Optional[RetryPolicy] = None,
        cache_freshness: float = CACHE_FRESHNESS,
        fetch_timeout: float = FETCH_TIMEOUT,
        content_wait_timeout_ms: int = CONTENT_WAIT_TIMEOUT_MS,
        clock: Callable[[], datetime] = utc_now,
    ):
        """
        Initialize gateway.

        Args:
            store: Persistent snapshot store
            sessions: Browser session manager
            extractor: Page extractor
            challenge: Verification handler
            rate_limiter: Per-flight fetch limiter
            status_engine: Passenger tier engine (defaults to one on the same store)
            navigation_policy: Retry policy for page navigation
            cache_freshness: Max age in seconds of a stored snapshot served without fetching
            fetch_timeout: Budget in seconds for one complete fetch
            content_wait_timeout_ms: How long to wait for status content after navigation
            clock: Source of timezone-aware "now"
        """
        self.store = store
        self.sessions = sessions
        self.extractor = extractor or PageExtractor()
        self.challenge = challenge or ChallengeHandler()
        self.rate_limiter = rate_limiter or FetchRateLimiter()
        self.status_engine = status_engine or StatusEngine(store)
        self.navigation_policy = navigation_policy or RetryPolicy.fixed(
            NAVIGATION_ATTEMPTS, NAVIGATION_RETRY_DELAY, name="Navigation"
        )
        self.cache_freshness = cache_freshness
        self.fetch_timeout = fetch_timeout
        self.content_wait_timeout_ms = content_wait_timeout_ms
        self.clock = clock

    async def get_or_fetch(
        self,
        flight_number: str,
        date: str,
        passenger: str = "",
        force_refresh: bool = False,
        update_statuses: bool = True,
    ) -> TrackResult:
        """
        Look up a flight's upgrade waitlists and the passenger's rank on each segment.

        Args:
            flight_number: Flight number ('100', 'AS100')
            date: Flight date (ISO or 'December 29, 2024')
            passenger: Name code to rank, e.g. 'SMI/J' (empty for none)
            force_refresh: Skip the stored-snapshot shortcut
            update_statuses: Run the tier engine after a fresh fetch

        Returns:
            TrackResult; errors are reported in the result, never raised
        """
        try:
            number = parse_flight_number(flight_number)
            day = normalize_flight_date(date)
        except InvalidRequestError as e:
            logger.warning(f"Rejected lookup: {e}")
            return self._failure(flight_number, date, e)

        passenger = (passenger or "").strip().upper()
        key = flight_key(number, day)

        if not force_refresh:
            try:
                cached = await self._fresh_snapshots(number, day)
            except Exception as e:
                logger.warning(f"Error checking stored waitlist for AS{number} {day}, fetching: {e}")
                cached = None
            if cached is not None:
                logger.info(f"📦 Serving stored waitlist for AS{number} on {day}")
                return TrackResult(
                    number, day, FetchOutcome.CACHED, segments=self._rank(cached, passenger)
                )

        if not self.rate_limiter.can_fetch(key):
            wait = self.rate_limiter.time_until_next_fetch(key)
            return self._rate_limited(number, day, RateLimitError(wait))

        try:
            outcome, stored = await asyncio.wait_for(
                self._fetch(number, day, key, update_statuses), timeout=self.fetch_timeout
            )
        except RateLimitError as e:
            return self._rate_limited(number, day, e)
        except asyncio.TimeoutError:
            self.rate_limiter.clear(key)
            error = TransientConnectionError(f"Fetch exceeded {self.fetch_timeout:.0f}s budget")
            logger.error(f"❌ AS{number} {day}: {error}")
            return self._failure(number, day, error)
        except (TransientConnectionError, SessionUnavailableError) as e:
            self.rate_limiter.clear(key)
            logger.error(f"❌ AS{number} {day}: {e}")
            return self._failure(number, day, e)
        except WaitlistTrackerError as e:
            logger.error(f"❌ AS{number} {day}: {e}")
            return self._failure(number, day, e)
        except PlaywrightError as e:
            error: BaseException = e
            if classify_error(e) is ErrorType.TRANSIENT:
                self.rate_limiter.clear(key)
                error = TransientConnectionError(str(e))
            logger.error(f"❌ AS{number} {day}: {error}")
            return self._failure(number, day, error)
        except Exception as e:
            logger.exception(f"❌ Unexpected error fetching AS{number} {day}: {e}")
            return self._failure(number, day, e)

        return TrackResult(number, day, outcome, segments=self._rank(stored, passenger))

    async def get_cached(self, flight_number: str, date: str, passenger: str = "") -> TrackResult:
        """
        Serve the most recently stored waitlist regardless of its age.

        Never touches the browser or the rate limiter.

        Args:
            flight_number: Flight number ('100', 'AS100')
            date: Flight date (ISO or 'December 29, 2024')
            passenger: Name code to rank (empty for none)

        Returns:
            CACHED TrackResult, or FAILED when nothing is stored for the flight
        """
        try:
            number = parse_flight_number(flight_number)
            day = normalize_flight_date(date)
        except InvalidRequestError as e:
            logger.warning(f"Rejected lookup: {e}")
            return self._failure(flight_number, date, e)

        passenger = (passenger or "").strip().upper()
        try:
            stored = self._latest_fetch(await self.store.latest_snapshots_for(number, day))
        except Exception as e:
            logger.exception(f"❌ Error reading stored waitlist for AS{number} {day}: {e}")
            return self._failure(number, day, e)

        if not stored:
            error = NoSegmentsFoundError(f"No stored waitlist for AS{number} on {day}")
            logger.warning(f"⚠️ {error}")
            return self._failure(number, day, error)

        captured_at = stored[0][1].captured_at
        logger.info(
            f"📦 Serving stored waitlist for AS{number} on {day} "
            f"captured {captured_at:%Y-%m-%d %H:%M}"
        )
        return TrackResult(number, day, FetchOutcome.CACHED, segments=self._rank(stored, passenger))

    async def close(self) -> None:
        await self.sessions.close()

    # ------------------------------------------------------------------
    # Fetch pipeline
    # ------------------------------------------------------------------

    async def _fetch(
        self, number: str, day: str, key: str, update_statuses: bool
    ) -> Tuple[FetchOutcome, StoredSegments]:
        session = await self.sessions.acquire()
        try:
            # Another request for this flight may have fetched while we queued
            if not self.rate_limiter.can_fetch(key):
                cached = await self._fresh_snapshots(number, day)
                if cached is not None:
                    return FetchOutcome.CACHED, cached
                raise RateLimitError(self.rate_limiter.time_until_next_fetch(key))

            html = await self._load_status_page(session.page, number, day)
            captured_at = self.clock()
            stored = await self._persist(number, day, html, captured_at)
            # Recorded before the session is released so queued duplicates see it
            self.rate_limiter.record_fetch(key)
        finally:
            await self.sessions.release(session)

        logger.success(f"✅ Fetched AS{number} {day}: {len(stored)} segment(s)")

        if update_statuses:
            try:
                for segment, snapshot in stored:
                    if snapshot is not None:
                        await self.status_engine.update_segment(segment, snapshot, now=captured_at)
            except Exception as e:
                # Snapshots are already persisted; tiers catch up on the next update
                logger.exception(f"Error updating passenger tiers for AS{number} {day}: {e}")

        return FetchOutcome.FRESH, stored

    async def _persist(
        self, number: str, day: str, html: str, captured_at: datetime
    ) -> StoredSegments:
        """Upsert every extracted segment and append its waitlist snapshot"""
        segments = self.extractor.extract_segments(html)
        if not segments:
            raise NoSegmentsFoundError(f"No flight segments found for AS{number} on {day}")

        stored: StoredSegments = []
        for segment in segments:
            flight_id = await self.store.upsert_flight_segment(segment)
            snapshot = self.extractor.extract_waitlist(html, segment.segment_index)
            if snapshot is not None:
                snapshot.captured_at = captured_at
                snapshot = await self.store.append_waitlist_snapshot(flight_id, snapshot)
            stored.append((segment, snapshot))
        return stored

    async def _load_status_page(self, page: Page, number: str, day: str) -> str:
        url = STATUS_URL_TEMPLATE.format(flight_number=number, date=day)
        try:
            await self.navigation_policy.run(
                self._navigate, page, url, retry_on=(PlaywrightError,)
            )
            await self._wait_for_content(page, self.content_wait_timeout_ms)

            state = await self.challenge.ensure_passed(page)
            if state is ChallengeState.PASSED:
                await self._wait_for_content(page, POST_CHALLENGE_WAIT_TIMEOUT_MS)

            return await page.content()
        except PlaywrightError as e:
            if is_connection_closed(e):
                raise TransientConnectionError(f"Browser connection lost: {e}") from e
            raise

    async def _navigate(self, page: Page, url: str) -> None:
        logger.info(f"🌐 Loading {url}")
        try:
            await page.goto(url, wait_until="networkidle", timeout=NAVIGATION_TIMEOUT_MS)
        except PlaywrightError as e:
            if is_connection_closed(e):
                # Retrying on a dead page is pointless
                raise TransientConnectionError(f"Browser connection lost: {e}") from e
            raise

    @staticmethod
    async def _wait_for_content(page: Page, timeout_ms: int) -> None:
        try:
            await page.wait_for_selector(", ".join(STATUS_CONTENT_SELECTORS), timeout=timeout_ms)
        except PlaywrightTimeoutError:
            logger.debug(f"Status content not visible after {timeout_ms}ms")

    # ------------------------------------------------------------------
    # Cache and results
    # ------------------------------------------------------------------

    async def _fresh_snapshots(self, number: str, day: str) -> Optional[StoredSegments]:
        """Segments of the latest fetch when their snapshots are younger than cache_freshness"""
        current = self._latest_fetch(await self.store.latest_snapshots_for(number, day))
        if not current:
            return None

        captured_at = current[0][1].captured_at
        if (self.clock() - captured_at).total_seconds() >= self.cache_freshness:
            return None
        return current

    @staticmethod
    def _latest_fetch(stored: StoredSegments) -> StoredSegments:
        """
        Keep the segments captured by the most recent fetch.

        Every snapshot written by one fetch shares its captured_at, so a segment
        the page no longer shows is left behind with an older snapshot.
        """
        captures = [s.captured_at for _, s in stored if s is not None and s.captured_at]
        if not captures:
            return []
        newest = max(captures)
        return [
            (segment, snapshot)
            for segment, snapshot in stored
            if snapshot is not None and snapshot.captured_at == newest
        ]

    @staticmethod
    def _rank(stored: StoredSegments, passenger: str) -> List[SegmentPosition]:
        return [
            SegmentPosition(
                segment=segment,
                snapshot=snapshot,
                position=snapshot.position_of(passenger) if snapshot is not None else None,
            )
            for segment, snapshot in stored
        ]

    @staticmethod
    def _rate_limited(number: str, day: str, error: RateLimitError) -> TrackResult:
        logger.warning(f"⏳ AS{number} {day} rate limited: {error}")
        return TrackResult(
            number,
            day,
            FetchOutcome.RATE_LIMITED,
            error=str(error),
            error_type=classify_error(error).value,
            retry_after=error.wait_seconds,
            http_status=error.http_status,
        )

    @staticmethod
    def _failure(number: str, day: str, error: BaseException) -> TrackResult:
        if isinstance(error, InvalidRequestError):
            error_type = "invalid_request"
        else:
            error_type = classify_error(error).value

        if isinstance(error, WaitlistTrackerError):
            message, status = error.user_message, error.http_status
        else:
            message, status = WaitlistTrackerError.user_message, WaitlistTrackerError.http_status

        return TrackResult(
            number,
            day,
            FetchOutcome.FAILED,
            error=message,
            error_type=error_type,
            http_status=status,
        )
