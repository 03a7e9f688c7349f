import asyncio

import pytest
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from waitlist_tracker.exceptions import (
    ChallengeFailedError,
    InvalidRequestError,
    RateLimitError,
    SessionUnavailableError,
    TransientConnectionError,
)
from waitlist_tracker.models import ErrorType
from waitlist_tracker.retry import RetryPolicy, classify_error, is_connection_closed


class Flaky:
    def __init__(self, failures, error=ValueError):
        self.failures = failures
        self.error = error
        self.calls = 0

    async def __call__(self, value):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error(f"failure {self.calls}")
        return value


@pytest.mark.asyncio
async def test_run_recovers_after_failures():
    func = Flaky(failures=2)
    retries = []

    async def on_retry(attempt, error):
        retries.append((attempt, str(error)))

    result = await RetryPolicy.fixed(3, 0).run(func, "ok", retry_on=(ValueError,), on_retry=on_retry)

    assert result == "ok"
    assert func.calls == 3
    assert retries == [(1, "failure 1"), (2, "failure 2")]


@pytest.mark.asyncio
async def test_exhaustion_raises_last_error():
    func = Flaky(failures=5)

    with pytest.raises(ValueError, match="failure 3"):
        await RetryPolicy.fixed(3, 0).run(func, "ok", retry_on=(ValueError,))

    assert func.calls == 3


@pytest.mark.asyncio
async def test_other_errors_propagate_immediately():
    func = Flaky(failures=1, error=KeyError)

    with pytest.raises(KeyError):
        await RetryPolicy.fixed(3, 0).run(func, "ok", retry_on=(ValueError,))

    assert func.calls == 1


def test_backoff_grows_and_is_capped():
    policy = RetryPolicy(initial_backoff=1.0, max_backoff=5.0, multiplier=2.0)

    assert [policy.backoff(n) for n in range(1, 5)] == [1.0, 2.0, 4.0, 5.0]


def test_backoff_jitter_stays_in_range():
    policy = RetryPolicy(initial_backoff=2.0, max_backoff=100.0, jitter=(0.5, 1.5))

    for _ in range(20):
        assert 1.0 <= policy.backoff(1) <= 3.0


@pytest.mark.parametrize(
    "error,expected",
    [
        (RateLimitError(30), ErrorType.RATE_LIMIT),
        (ChallengeFailedError("held too short"), ErrorType.CHALLENGE),
        (SessionUnavailableError("no browser"), ErrorType.TRANSIENT),
        (TransientConnectionError("closed"), ErrorType.TRANSIENT),
        (PlaywrightTimeoutError("Timeout 30000ms exceeded"), ErrorType.TRANSIENT),
        (asyncio.TimeoutError(), ErrorType.TRANSIENT),
        (PlaywrightError("Target closed"), ErrorType.TRANSIENT),
        (PlaywrightError("net::ERR_NAME_NOT_RESOLVED"), ErrorType.PERMANENT),
        (InvalidRequestError("bad"), ErrorType.PERMANENT),
        (ValueError("boom"), ErrorType.PERMANENT),
    ],
)
def test_classify_error(error, expected):
    assert classify_error(error) is expected


def test_is_connection_closed():
    assert is_connection_closed(PlaywrightError("Target page, context or browser has been closed"))
    assert is_connection_closed(TransientConnectionError("gone"))
    assert not is_connection_closed(PlaywrightTimeoutError("Timeout: target closed"))
    assert not is_connection_closed(PlaywrightError("Element is not visible"))


def test_rate_limit_error_message_rounds_up():
    error = RateLimitError(539.2)

    assert error.wait_seconds == 539.2
    assert str(error) == "Please wait 540 seconds before trying again"
    assert error.http_status == 429
