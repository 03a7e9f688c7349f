"""Browser session management: one shared browser, exclusive page sessions"""

import asyncio
import random
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, FrozenSet, Optional, Protocol

from loguru import logger
from playwright.async_api import Browser, BrowserContext, Page, Route
from playwright.async_api import Error as PlaywrightError

from .config import (
    BLOCKED_RESOURCE_TYPES,
    DISCONNECT_DEBOUNCE,
    FIREFOX_VERSIONS,
    LAUNCH_ATTEMPTS,
    LAUNCH_INITIAL_BACKOFF,
    LAUNCH_MAX_BACKOFF,
    MACOS_MINOR_VERSIONS,
    NAVIGATION_TIMEOUT_MS,
    SELECTOR_CHECK_TIMEOUT_MS,
    STRAY_PROCESS_PATTERN,
    VIEWPORTS,
)
from .exceptions import SessionUnavailableError, TransientConnectionError
from .retry import RetryPolicy


@dataclass(frozen=True)
class Fingerprint:
    """Per-session browser identity"""

    width: int
    height: int
    user_agent: str

    @property
    def viewport(self) -> dict:
        return {"width": self.width, "height": self.height}


def random_fingerprint(rng: random.Random = random) -> Fingerprint:
    """Pick a common desktop viewport and a plausible Firefox-on-macOS user agent"""
    width, height = rng.choice(VIEWPORTS)
    macos = f"10.{rng.choice(MACOS_MINOR_VERSIONS)}"
    firefox = rng.choice(FIREFOX_VERSIONS)
    user_agent = (
        f"Mozilla/5.0 (Macintosh; Intel Mac OS X {macos}; rv:{firefox}.0) "
        f"Gecko/20100101 Firefox/{firefox}.0"
    )
    return Fingerprint(width=width, height=height, user_agent=user_agent)


class BrowserLauncher(Protocol):
    """Starts and cleans up the underlying automation browser"""

    async def launch(self) -> Browser: ...

    async def cleanup(self) -> None: ...

    async def shutdown(self) -> None: ...


class CamoufoxLauncher:
    """Launches Camoufox (hardened Firefox) through Playwright"""

    def __init__(self, headless: bool = True, stray_process_pattern: str = STRAY_PROCESS_PATTERN):
        self.headless = headless
        self.stray_process_pattern = stray_process_pattern
        self._playwright = None

    async def launch(self) -> Browser:
        from camoufox.async_api import AsyncNewBrowser
        from playwright.async_api import async_playwright

        if self._playwright is None:
            self._playwright = await async_playwright().start()

        logger.info(f"🦊 Launching Camoufox (headless={self.headless})")
        return await AsyncNewBrowser(self._playwright, headless=self.headless)

    async def cleanup(self) -> None:
        """Best-effort kill of stray browser processes left by a previous run"""
        try:
            process = await asyncio.create_subprocess_exec(
                "pkill",
                "-f",
                self.stray_process_pattern,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
            )
            await process.wait()
        except OSError as e:
            # pkill missing on this platform
            logger.debug(f"Stray process cleanup skipped: {e}")

    async def shutdown(self) -> None:
        if self._playwright is not None:
            try:
                await self._playwright.stop()
            except PlaywrightError as e:
                logger.debug(f"Playwright stop failed: {e}")
            self._playwright = None


@dataclass
class BrowserSession:
    """An exclusive page on the shared browser"""

    browser: Browser
    context: BrowserContext
    page: Page
    fingerprint: Fingerprint
    released: bool = False

    def is_connected(self) -> bool:
        return self.browser.is_connected() and not self.page.is_closed()


class BrowserSessionManager:
    """
    Owns the single browser process and hands out exclusive sessions.

    - Lazy launch on first demand; concurrent launches collapse into one task
    - Launch retries with exponential backoff, then SessionUnavailableError
    - Disconnects drop the browser; relaunch waits out a debounce window
    - Every session gets a fresh context with a randomized fingerprint and
      heavy resources blocked
    """

    def __init__(
        self,
        launcher: Optional[BrowserLauncher] = None,
        launch_policy: Optional[RetryPolicy] = None,
        page_policy: Optional[RetryPolicy] = None,
        disconnect_debounce: float = DISCONNECT_DEBOUNCE,
        blocked_resource_types: FrozenSet[str] = BLOCKED_RESOURCE_TYPES,
        launch_timeout: float = 60.0,
    ):
        """
        Initialize session manager.

        Args:
            launcher: Browser launcher (Camoufox by default)
            launch_policy: Retry policy for browser launch
            page_policy: Retry policy for opening a session page
            disconnect_debounce: Seconds to wait after a disconnect before relaunching
            blocked_resource_types: Playwright resource types to abort
            launch_timeout: Seconds allowed for a single launch attempt
        """
        self.launcher = launcher or CamoufoxLauncher()
        self.launch_policy = launch_policy or RetryPolicy(
            max_attempts=LAUNCH_ATTEMPTS,
            initial_backoff=LAUNCH_INITIAL_BACKOFF,
            max_backoff=LAUNCH_MAX_BACKOFF,
            name="Browser launch",
        )
        self.page_policy = page_policy or RetryPolicy.fixed(3, 1.0, name="Page creation")
        self.disconnect_debounce = disconnect_debounce
        self.blocked_resource_types = blocked_resource_types
        self.launch_timeout = launch_timeout

        self._browser: Optional[Browser] = None
        self._launch_task: Optional[asyncio.Task] = None
        self._disconnected_at: Optional[float] = None
        self._lock = asyncio.Lock()
        self.launch_count = 0

    # ------------------------------------------------------------------
    # Browser lifecycle
    # ------------------------------------------------------------------

    def health_check(self) -> bool:
        """True when a launched browser is still connected"""
        return self._browser is not None and self._browser.is_connected()

    async def get_browser(self) -> Browser:
        """Return the live browser, launching it (single-flight) if needed"""
        if self.health_check():
            return self._browser

        if self._browser is not None:
            logger.warning("Browser failed health check, discarding")
            await self._discard_browser()

        if self._launch_task is None:
            self._launch_task = asyncio.ensure_future(self._launch())

        # Shield so one cancelled waiter does not abort the launch for the others
        return await asyncio.shield(self._launch_task)

    async def _launch(self) -> Browser:
        try:
            await self._wait_out_debounce()
            try:
                browser = await self.launch_policy.run(self._launch_once)
            except Exception as e:
                raise SessionUnavailableError(
                    f"Browser launch failed after {self.launch_policy.max_attempts} attempts: {e}"
                ) from e

            browser.on("disconnected", self._on_disconnected)
            self._browser = browser
            self._disconnected_at = None
            self.launch_count += 1
            logger.success(f"✅ Browser ready (launch #{self.launch_count})")
            return browser
        finally:
            self._launch_task = None

    async def _launch_once(self) -> Browser:
        await self.launcher.cleanup()
        browser = await asyncio.wait_for(self.launcher.launch(), timeout=self.launch_timeout)
        if not browser.is_connected():
            raise PlaywrightError("Browser disconnected immediately after launch")
        return browser

    async def _wait_out_debounce(self) -> None:
        if self._disconnected_at is None:
            return
        remaining = self.disconnect_debounce - (time.monotonic() - self._disconnected_at)
        if remaining > 0:
            logger.info(f"⏳ Waiting {remaining:.1f}s after disconnect before relaunching")
            await asyncio.sleep(remaining)

    def _on_disconnected(self, browser: Browser) -> None:
        if browser is not self._browser:
            return
        logger.warning("🔌 Browser disconnected, will relaunch on next request")
        self._browser = None
        self._disconnected_at = time.monotonic()

    async def _discard_browser(self) -> None:
        browser, self._browser = self._browser, None
        if browser is None:
            return
        try:
            await browser.close()
        except PlaywrightError as e:
            logger.debug(f"Error closing discarded browser: {e}")

    async def close(self) -> None:
        """Close the browser and the automation runtime"""
        await self._discard_browser()
        await self.launcher.shutdown()
        logger.info("Browser session manager closed")

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    async def acquire(self) -> BrowserSession:
        """
        Acquire an exclusive session. Callers must hand it back with release().

        Raises:
            SessionUnavailableError: Browser could not be launched
            TransientConnectionError: Browser kept dropping while opening a page
        """
        await self._lock.acquire()
        try:
            session = await self.page_policy.run(
                self._open_session, retry_on=(PlaywrightError, asyncio.TimeoutError)
            )
        except (PlaywrightError, asyncio.TimeoutError) as e:
            self._lock.release()
            raise TransientConnectionError(f"Could not open a browser page: {e}") from e
        except BaseException:
            self._lock.release()
            raise
        return session

    async def release(self, session: BrowserSession) -> None:
        """Close the session's page and context and free the session slot"""
        if session.released:
            logger.debug("Session already released")
            return
        session.released = True
        try:
            await self._close_session(session)
        finally:
            self._lock.release()

    @asynccontextmanager
    async def session(self) -> AsyncIterator[BrowserSession]:
        session = await self.acquire()
        try:
            yield session
        finally:
            await self.release(session)

    async def _open_session(self) -> BrowserSession:
        browser = await self.get_browser()
        fingerprint = random_fingerprint()

        context = await browser.new_context(
            viewport=fingerprint.viewport,
            user_agent=fingerprint.user_agent,
            locale="en-US",
        )
        try:
            await context.route("**/*", self._route_request)
            page = await context.new_page()
        except PlaywrightError:
            await self._close_quietly(context)
            raise

        page.set_default_navigation_timeout(NAVIGATION_TIMEOUT_MS)
        page.set_default_timeout(SELECTOR_CHECK_TIMEOUT_MS)
        page.on("pageerror", lambda error: logger.debug(f"Page error: {error}"))

        logger.debug(
            f"Opened session {fingerprint.width}x{fingerprint.height} "
            f"UA={fingerprint.user_agent}"
        )
        return BrowserSession(browser=browser, context=context, page=page, fingerprint=fingerprint)

    async def _route_request(self, route: Route) -> None:
        try:
            if route.request.resource_type in self.blocked_resource_types:
                await route.abort()
            else:
                await route.continue_()
        except PlaywrightError as e:
            # Page closed while the request was in flight
            logger.debug(f"Route handling skipped: {e}")

    async def _close_session(self, session: BrowserSession) -> None:
        await self._close_quietly(session.page)
        await self._close_quietly(session.context)

    @staticmethod
    async def _close_quietly(target) -> None:
        try:
            await target.close()
        except PlaywrightError as e:
            logger.debug(f"Error closing {type(target).__name__}: {e}")
