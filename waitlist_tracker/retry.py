"""Retry policy with bounded attempts and exponential backoff"""

import asyncio
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Tuple, Type

from loguru import logger
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from .exceptions import (
    ChallengeFailedError,
    RateLimitError,
    SessionUnavailableError,
    TransientConnectionError,
)
from .models import ErrorType

# Messages Playwright raises when the browser, context or page went away
CONNECTION_CLOSED_MARKERS = (
    "target closed",
    "target page, context or browser has been closed",
    "browser has been closed",
    "browser closed",
    "connection closed",
    "session closed",
    "socket hang up",
)


@dataclass(frozen=True)
class RetryPolicy:
    """
    How many times to try an operation and how long to wait in between.

    The delay before retry ``n`` (1-based) is
    ``initial_backoff * multiplier ** (n - 1)`` scaled by a random jitter
    factor and capped at ``max_backoff``.
    """

    max_attempts: int = 3
    initial_backoff: float = 1.0
    max_backoff: float = 10.0
    multiplier: float = 2.0
    jitter: Tuple[float, float] = (1.0, 1.0)
    name: str = "operation"

    @classmethod
    def fixed(cls, max_attempts: int, delay: float, name: str = "operation") -> "RetryPolicy":
        return cls(
            max_attempts=max_attempts,
            initial_backoff=delay,
            max_backoff=delay,
            multiplier=1.0,
            name=name,
        )

    def backoff(self, retry_number: int) -> float:
        """Seconds to wait before the given retry (1 = first retry)"""
        delay = self.initial_backoff * (self.multiplier ** (retry_number - 1))
        delay *= random.uniform(*self.jitter)
        return min(delay, self.max_backoff)

    async def run(
        self,
        func: Callable[..., Awaitable],
        *args,
        retry_on: Tuple[Type[BaseException], ...] = (Exception,),
        on_retry: Optional[Callable[[int, BaseException], Awaitable[None]]] = None,
        **kwargs,
    ):
        """
        Execute an async function under this policy.

        Args:
            func: Async function to execute
            retry_on: Exception types that trigger another attempt; anything
                else propagates immediately
            on_retry: Optional callback awaited before each retry:
                on_retry(attempt, error)

        Raises:
            The last exception once all attempts are exhausted
        """
        last_exception: Optional[BaseException] = None

        for attempt in range(1, self.max_attempts + 1):
            try:
                result = await func(*args, **kwargs)
                if attempt > 1:
                    logger.success(f"✓ {self.name} recovered on attempt {attempt}")
                return result

            except retry_on as e:
                last_exception = e

                if attempt >= self.max_attempts:
                    logger.error(
                        f"❌ {self.name} failed after {self.max_attempts} attempts: {e}"
                    )
                    break

                sleep_time = self.backoff(attempt)
                logger.warning(
                    f"⚠️ {self.name} attempt {attempt}/{self.max_attempts} failed "
                    f"({classify_error(e).value}): {e}"
                )
                logger.info(f"   Retrying in {sleep_time:.1f}s...")

                if on_retry:
                    await on_retry(attempt, e)

                await asyncio.sleep(sleep_time)

        raise last_exception


def is_connection_closed(error: BaseException) -> bool:
    """True when an error means the browser session went away mid-operation"""
    if isinstance(error, TransientConnectionError):
        return True
    if isinstance(error, PlaywrightTimeoutError):
        return False
    message = str(error).lower()
    return any(marker in message for marker in CONNECTION_CLOSED_MARKERS)


def classify_error(error: BaseException) -> ErrorType:
    """Classify error for appropriate handling"""
    if isinstance(error, RateLimitError):
        return ErrorType.RATE_LIMIT
    elif isinstance(error, ChallengeFailedError):
        return ErrorType.CHALLENGE
    elif isinstance(error, (SessionUnavailableError, TransientConnectionError)):
        return ErrorType.TRANSIENT
    elif isinstance(error, (PlaywrightTimeoutError, asyncio.TimeoutError)):
        return ErrorType.TRANSIENT
    elif isinstance(error, PlaywrightError):
        return ErrorType.TRANSIENT if is_connection_closed(error) else ErrorType.PERMANENT
    else:
        return ErrorType.PERMANENT
