"""Press-and-hold verification detection and resolution"""

import asyncio
import random
from contextlib import suppress
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Tuple

from loguru import logger
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page

from .config import (
    CHALLENGE_ATTEMPT_TIMEOUT,
    CHALLENGE_ATTEMPTS,
    CHALLENGE_CONTENT_MARKERS,
    CHALLENGE_CONTROL_SELECTOR,
    CHALLENGE_FALLBACK_X,
    CHALLENGE_FALLBACK_Y,
    CHALLENGE_HOLD_SECONDS,
    CHALLENGE_JITTER_PX,
    CHALLENGE_RECHECK_SECONDS,
    CHALLENGE_RETRY_DELAY,
    CHALLENGE_SETTLE_SECONDS,
    CHALLENGE_TITLE_MARKERS,
    CHALLENGE_VERIFY_WAIT_SECONDS,
    DENIAL_CONTENT_MARKERS,
    DENIAL_TITLE_MARKERS,
    SCREENSHOT_INTERVAL,
    SCREENSHOT_MAX_DURATION,
    STATUS_CONTENT_SELECTORS,
    WAITLIST_CONTAINER_SELECTOR,
)
from .exceptions import ChallengeFailedError, TransientConnectionError
from .models import ChallengeState
from .retry import RetryPolicy, is_connection_closed


class ScreenshotRecorder:
    """
    Periodically captures the page while a verification is in progress.
    Purely diagnostic: failures are logged and never interrupt the caller.
    """

    def __init__(
        self,
        page: Page,
        output_dir: Path,
        interval: float = SCREENSHOT_INTERVAL,
        max_duration: float = SCREENSHOT_MAX_DURATION,
        prefix: str = "verification",
    ):
        self.page = page
        self.output_dir = output_dir
        self.interval = interval
        self.max_duration = max_duration
        self.prefix = prefix
        self.count = 0
        self._task: Optional[asyncio.Task] = None

    async def start(self) -> None:
        if self._task is not None:
            logger.debug("Screenshot recording already in progress")
            return
        try:
            self.output_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.debug(f"Screenshot recording disabled: {e}")
            return
        self.count = 0
        self._task = asyncio.create_task(self._record())

    async def _record(self) -> None:
        loop = asyncio.get_running_loop()
        started = loop.time()
        while loop.time() - started < self.max_duration:
            timestamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%f")
            path = self.output_dir / f"{self.prefix}_{timestamp}_{self.count}.png"
            try:
                await self.page.screenshot(path=str(path), full_page=False)
                self.count += 1
                logger.debug(f"📸 Captured screenshot {self.count}: {path.name}")
            except PlaywrightError as e:
                logger.debug(f"Error capturing screenshot: {e}")
            await asyncio.sleep(self.interval)

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        with suppress(asyncio.CancelledError):
            await task
        logger.debug(f"Screenshot recording stopped. Captured {self.count} screenshots")


@dataclass(frozen=True)
class ChallengeTimings:
    """Durations (seconds) of the press-and-hold sequence"""

    hold: float = CHALLENGE_HOLD_SECONDS
    settle: float = CHALLENGE_SETTLE_SECONDS
    verify_wait: float = CHALLENGE_VERIFY_WAIT_SECONDS
    recheck: float = CHALLENGE_RECHECK_SECONDS
    pointer_pause: Tuple[float, float] = (0.1, 0.4)
    attempt_timeout: float = CHALLENGE_ATTEMPT_TIMEOUT


class ChallengeHandler:
    """
    Detects the anti-automation interstitial and passes it with a timed,
    human-like press-and-hold on its control.

    State machine: NORMAL -> CHALLENGE_DETECTED -> {PASSED, FAILED}
    """

    def __init__(
        self,
        retry_policy: Optional[RetryPolicy] = None,
        timings: Optional[ChallengeTimings] = None,
        screenshot_dir: Optional[Path] = None,
        strict_content_check: bool = True,
        rng: Optional[random.Random] = None,
    ):
        """
        Initialize challenge handler.

        Args:
            retry_policy: Attempts and spacing for press-and-hold tries
            timings: Hold and wait durations
            screenshot_dir: Directory for diagnostic screenshots (None disables)
            strict_content_check: Treat a page with none of the expected status
                containers as a challenge
            rng: Random source for pointer jitter
        """
        self.retry_policy = retry_policy or RetryPolicy.fixed(
            CHALLENGE_ATTEMPTS, CHALLENGE_RETRY_DELAY, name="Verification"
        )
        self.timings = timings or ChallengeTimings()
        self.screenshot_dir = screenshot_dir
        self.strict_content_check = strict_content_check
        self.rng = rng or random.Random()

    # ------------------------------------------------------------------
    # Detection
    # ------------------------------------------------------------------

    async def detect(self, page: Page) -> ChallengeState:
        """Classify the current page as NORMAL or CHALLENGE_DETECTED"""
        try:
            if await self._has_element(page, WAITLIST_CONTAINER_SELECTOR):
                return ChallengeState.NORMAL

            title = await page.title()
            content = await page.content()

            if self._has_challenge_markers(title, content) or await self._has_element(
                page, CHALLENGE_CONTROL_SELECTOR
            ):
                logger.warning("🛡️ Verification page detected")
                return ChallengeState.CHALLENGE_DETECTED

            if self.strict_content_check:
                for selector in STATUS_CONTENT_SELECTORS:
                    if await self._has_element(page, selector):
                        return ChallengeState.NORMAL
                logger.warning("🛡️ No status content after navigation, assuming verification page")
                return ChallengeState.CHALLENGE_DETECTED

            return ChallengeState.NORMAL

        except PlaywrightError as e:
            if is_connection_closed(e):
                # Let the caller's next page operation surface the lost connection
                logger.warning(f"Connection lost while checking for verification: {e}")
                return ChallengeState.NORMAL
            logger.warning(f"Error checking verification status: {e}")
            return ChallengeState.CHALLENGE_DETECTED

    async def needs_verification(self, page: Page) -> bool:
        return await self.detect(page) is ChallengeState.CHALLENGE_DETECTED

    @staticmethod
    def _has_challenge_markers(title: str, content: str) -> bool:
        title_markers = CHALLENGE_TITLE_MARKERS + DENIAL_TITLE_MARKERS
        content_markers = CHALLENGE_CONTENT_MARKERS + DENIAL_CONTENT_MARKERS
        return any(marker in title for marker in title_markers) or any(
            marker in content for marker in content_markers
        )

    @staticmethod
    async def _has_element(page: Page, selector: str) -> bool:
        return await page.query_selector(selector) is not None

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    async def ensure_passed(self, page: Page) -> ChallengeState:
        """Resolve a challenge if one is showing; NORMAL pages pass through"""
        state = await self.detect(page)
        if state is ChallengeState.NORMAL:
            return state
        return await self.resolve(page)

    async def resolve(self, page: Page) -> ChallengeState:
        """
        Run press-and-hold attempts until the page passes.

        Returns:
            ChallengeState.PASSED

        Raises:
            ChallengeFailedError: All attempts were rejected or timed out
            TransientConnectionError: The page closed mid-attempt
        """
        try:
            state = await self.retry_policy.run(
                self._attempt, page, retry_on=(ChallengeFailedError, PlaywrightError)
            )
        except (ChallengeFailedError, PlaywrightError) as e:
            raise ChallengeFailedError(
                f"Verification failed after {self.retry_policy.max_attempts} attempts: {e}"
            ) from e

        logger.success("✓ Verification passed")
        return state

    async def _attempt(self, page: Page) -> ChallengeState:
        recorder = ScreenshotRecorder(page, self.screenshot_dir) if self.screenshot_dir else None
        if recorder:
            await recorder.start()

        try:
            state = await asyncio.wait_for(
                self._press_hold_and_check(page), timeout=self.timings.attempt_timeout
            )
        except asyncio.TimeoutError:
            logger.warning(f"Verification attempt exceeded {self.timings.attempt_timeout:.0f}s")
            state = ChallengeState.FAILED
        except PlaywrightError as e:
            if is_connection_closed(e):
                raise TransientConnectionError(f"Page closed during verification: {e}") from e
            raise
        finally:
            if recorder:
                await recorder.stop()

        if state is ChallengeState.FAILED:
            raise ChallengeFailedError("Verification was not accepted")
        return state

    async def _press_hold_and_check(self, page: Page) -> ChallengeState:
        await self._press_and_hold(page)
        return await self._outcome(page)

    async def _press_and_hold(self, page: Page) -> None:
        timings = self.timings
        await asyncio.sleep(timings.settle)

        x, y = await self._target_point(page)

        with suppress(PlaywrightError):
            await page.mouse.up()
        await page.mouse.move(0, 0)

        for _ in range(self.rng.randint(2, 4)):
            await page.mouse.move(
                self.rng.uniform(40, 640),
                self.rng.uniform(40, 480),
                steps=self.rng.randint(3, 8),
            )
            await asyncio.sleep(self.rng.uniform(*timings.pointer_pause))

        await page.mouse.move(x, y, steps=10)
        await asyncio.sleep(self.rng.uniform(*timings.pointer_pause))

        logger.info(f"🖱️ Press-and-hold at ({x:.0f}, {y:.0f}) for {timings.hold:.0f}s")
        await page.mouse.down()
        try:
            await asyncio.sleep(timings.hold)
        finally:
            with suppress(PlaywrightError):
                await page.mouse.up()

        await asyncio.sleep(timings.verify_wait)

    async def _target_point(self, page: Page) -> Tuple[float, float]:
        """Centre of the challenge control, or the known region, with jitter"""
        box = None
        with suppress(PlaywrightError):
            control = await page.query_selector(CHALLENGE_CONTROL_SELECTOR)
            if control is not None:
                box = await control.bounding_box()

        if box and box.get("width") and box.get("height"):
            jitter_x = min(CHALLENGE_JITTER_PX, box["width"] / 4)
            jitter_y = min(CHALLENGE_JITTER_PX, box["height"] / 4)
            x = box["x"] + box["width"] / 2 + self.rng.uniform(-jitter_x, jitter_x)
            y = box["y"] + box["height"] / 2 + self.rng.uniform(-jitter_y, jitter_y)
            return x, y

        return self.rng.uniform(*CHALLENGE_FALLBACK_X), self.rng.uniform(*CHALLENGE_FALLBACK_Y)

    async def _outcome(self, page: Page) -> ChallengeState:
        title = await page.title()
        content = await page.content()

        denied = any(marker in title for marker in DENIAL_TITLE_MARKERS) or any(
            marker in content for marker in DENIAL_CONTENT_MARKERS
        )
        if denied or await self._has_element(page, CHALLENGE_CONTROL_SELECTOR):
            logger.warning("Verification rejected or still showing")
            return ChallengeState.FAILED

        if await self._has_element(page, WAITLIST_CONTAINER_SELECTOR):
            return ChallengeState.PASSED

        await asyncio.sleep(self.timings.recheck)
        if await self.needs_verification(page):
            logger.warning("Verification still needed after final check")
            return ChallengeState.FAILED
        return ChallengeState.PASSED
