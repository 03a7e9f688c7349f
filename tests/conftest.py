import asyncio
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional

import pytest
from bs4 import BeautifulSoup
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from waitlist_tracker.challenge import ChallengeHandler, ChallengeTimings
from waitlist_tracker.retry import RetryPolicy


# ----------------------------------------------------------------------------
# HTML builders
# ----------------------------------------------------------------------------

def flight_block(
    flight="AS 100",
    origin="SEA",
    destination="SFO",
    departure="2024-12-29 08:15",
    arrival="2024-12-29 10:25",
):
    return (
        '<div class="main-row-status">'
        f'<auro-flight flights="{flight}" departurestation="{origin}" '
        f'arrivalstation="{destination}" departuretime="{departure}" '
        f'arrivaltime="{arrival}"></auro-flight>'
        "</div>"
    )


def waitlist_accordion(names, capacity=12, available=2, checked_in=8, heading="Upgrade requests"):
    rows = "".join(
        f"<tr><td>{i}</td><td>{name}</td><td>Requested</td></tr>"
        for i, name in enumerate(names, start=1)
    )
    return (
        '<div class="accordion-container-fs">'
        '<div class="waitlist-single-container">'
        f"<h4>{heading}</h4>"
        '<div class="waitlist-text-container">'
        f"<span>First class capacity: {capacity}</span>"
        f"<span>Available: {available}</span>"
        f"<span>Checked-in: {checked_in}</span>"
        "</div>"
        f'<table class="auro_table"><tbody>{rows}</tbody></table>'
        "</div>"
        "</div>"
    )


def status_page(blocks, accordions="", date_text="December 29, 2024", title="Flight status"):
    return (
        f"<html><head><title>{title}</title></head><body>"
        f'<div class="timestamp">{date_text}</div>'
        f"{''.join(blocks) if isinstance(blocks, list) else blocks}"
        f"{''.join(accordions) if isinstance(accordions, list) else accordions}"
        "</body></html>"
    )


CHALLENGE_PAGE = (
    "<html><head><title>Please Verify</title></head><body>"
    '<div id="px-captcha"></div><p>Press & Hold to confirm you are a human</p>'
    "</body></html>"
)

DENIED_PAGE = (
    "<html><head><title>Access to this page has been denied</title></head><body>"
    "<p>Access to this page has been denied</p><div id=\"px-captcha\"></div>"
    "</body></html>"
)

EMPTY_PAGE = "<html><head><title>Alaska Airlines</title></head><body><p>Loading</p></body></html>"


@pytest.fixture
def one_segment_page():
    return status_page(
        [flight_block()],
        [waitlist_accordion(["ABC/D", "SMI/J", "DOE/K"], available=2)],
    )


# ----------------------------------------------------------------------------
# Fake Playwright objects
# ----------------------------------------------------------------------------

class FakeElement:
    def __init__(self, box=None):
        self.box = box

    async def bounding_box(self):
        return self.box


class FakeMouse:
    def __init__(self, page):
        self.page = page
        self.events: List[tuple] = []
        self.downs = 0
        self._pressed = False

    async def move(self, x, y, steps=1):
        self.events.append(("move", x, y, steps))

    async def down(self):
        self.downs += 1
        self._pressed = True
        self.events.append(("down",))

    async def up(self):
        self.events.append(("up",))
        if self._pressed:
            self._pressed = False
            self.page.hold_released()


class FakePage:
    """
    Serves fixed HTML; selectors are answered by BeautifulSoup over that HTML.

    after_hold: HTML the page switches to after a press-and-hold (None keeps
    the current HTML, i.e. the verification is rejected).
    """

    def __init__(
        self,
        html: str = EMPTY_PAGE,
        after_hold: Optional[str] = None,
        goto_errors: Optional[List[Exception]] = None,
        content_error: Optional[Exception] = None,
        captcha_box: Optional[dict] = None,
    ):
        self.html = html
        self.after_hold = after_hold
        self.goto_errors = list(goto_errors or [])
        self.content_error = content_error
        self.captcha_box = captcha_box
        self.mouse = FakeMouse(self)
        self.visits: List[str] = []
        self.screenshots: List[str] = []
        self.closed = False
        self.handlers = {}

    def hold_released(self):
        if self.after_hold is not None:
            self.html = self.after_hold

    def _soup(self):
        return BeautifulSoup(self.html, "lxml")

    async def goto(self, url, wait_until=None, timeout=None):
        self.visits.append(url)
        if self.goto_errors:
            raise self.goto_errors.pop(0)

    async def title(self):
        title = self._soup().title
        return title.get_text() if title else ""

    async def content(self):
        if self.content_error is not None:
            raise self.content_error
        return self.html

    async def query_selector(self, selector):
        if self._soup().select_one(selector) is None:
            return None
        if selector == "#px-captcha":
            return FakeElement(self.captcha_box)
        return FakeElement()

    async def wait_for_selector(self, selector, timeout=None):
        soup = self._soup()
        for part in selector.split(","):
            if soup.select_one(part.strip()) is not None:
                return FakeElement()
        raise PlaywrightTimeoutError(f"Timeout {timeout}ms exceeded waiting for {selector}")

    async def screenshot(self, path=None, full_page=False):
        self.screenshots.append(path)

    def set_default_navigation_timeout(self, timeout):
        self.navigation_timeout = timeout

    def set_default_timeout(self, timeout):
        self.default_timeout = timeout

    def on(self, event, handler):
        self.handlers[event] = handler

    def is_closed(self):
        return self.closed

    async def close(self):
        self.closed = True


class FakeContext:
    def __init__(self, browser, page_factory: Callable[[], FakePage], **options):
        self.browser = browser
        self.options = options
        self.page_factory = page_factory
        self.routes = []
        self.closed = False

    async def route(self, pattern, handler):
        self.routes.append((pattern, handler))

    async def new_page(self):
        if not self.browser.is_connected():
            raise PlaywrightError("Target page, context or browser has been closed")
        return self.page_factory()

    async def close(self):
        self.closed = True


class FakeBrowser:
    def __init__(self, page_factory: Callable[[], FakePage] = FakePage):
        self.page_factory = page_factory
        self.connected = True
        self.listeners = {}
        self.contexts: List[FakeContext] = []

    def is_connected(self):
        return self.connected

    def on(self, event, callback):
        self.listeners.setdefault(event, []).append(callback)

    def disconnect(self):
        self.connected = False
        for callback in self.listeners.get("disconnected", []):
            callback(self)

    async def new_context(self, **options):
        context = FakeContext(self, self.page_factory, **options)
        self.contexts.append(context)
        return context

    async def close(self):
        self.connected = False


class FakeLauncher:
    """Launcher that fails a configurable number of times before succeeding"""

    def __init__(self, failures: int = 0, page_factory: Callable[[], FakePage] = FakePage, delay: float = 0):
        self.failures = failures
        self.page_factory = page_factory
        self.delay = delay
        self.launches = 0
        self.cleanups = 0
        self.browsers: List[FakeBrowser] = []

    async def launch(self):
        self.launches += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.failures > 0:
            self.failures -= 1
            raise PlaywrightError("Browser closed during launch")
        browser = FakeBrowser(self.page_factory)
        self.browsers.append(browser)
        return browser

    async def cleanup(self):
        self.cleanups += 1

    async def shutdown(self):
        pass


class FakeSession:
    def __init__(self, page):
        self.page = page


class FakeSessions:
    """Stand-in for BrowserSessionManager handing out one page"""

    def __init__(
        self,
        page: FakePage,
        acquire_error: Optional[Exception] = None,
        acquire_delay: float = 0,
    ):
        self.page = page
        self.acquire_error = acquire_error
        self.acquire_delay = acquire_delay
        self.acquired = 0
        self.released = 0
        self.closed = False
        self.lock = asyncio.Lock()

    async def acquire(self):
        self.acquired += 1
        if self.acquire_error is not None:
            raise self.acquire_error
        if self.acquire_delay:
            await asyncio.sleep(self.acquire_delay)
        await self.lock.acquire()
        return FakeSession(self.page)

    async def release(self, session):
        self.released += 1
        self.lock.release()

    async def close(self):
        self.closed = True


# ----------------------------------------------------------------------------
# Clocks and handlers
# ----------------------------------------------------------------------------

class FakeClock:
    """Shared wall clock (aware datetimes) and monotonic clock (seconds)"""

    def __init__(self, start: Optional[datetime] = None):
        self.current = start or datetime(2024, 12, 27, 16, 0, tzinfo=timezone.utc)
        self.elapsed = 0.0

    def now(self) -> datetime:
        return self.current

    def monotonic(self) -> float:
        return self.elapsed

    def advance(self, **kwargs):
        delta = timedelta(**kwargs)
        self.current += delta
        self.elapsed += delta.total_seconds()


@pytest.fixture
def clock():
    return FakeClock()


INSTANT_TIMINGS = ChallengeTimings(
    hold=0, settle=0, verify_wait=0, recheck=0, pointer_pause=(0, 0), attempt_timeout=5
)


@pytest.fixture
def instant_challenge():
    return ChallengeHandler(
        retry_policy=RetryPolicy.fixed(3, 0, name="Verification"),
        timings=INSTANT_TIMINGS,
    )
