"""Custom exception classes for the waitlist tracker"""

import math
from typing import Optional


class WaitlistTrackerError(Exception):
    """Base exception for tracker errors"""

    http_status = 500
    user_message = "Unable to retrieve waitlist"


class InvalidRequestError(WaitlistTrackerError):
    """Raised when flight number or date cannot be understood"""

    http_status = 400
    user_message = "Invalid flight number or date"


class SessionUnavailableError(WaitlistTrackerError):
    """Raised when the browser could not be launched after all attempts"""

    http_status = 503
    user_message = "Browser unavailable, please try again shortly"


class ChallengeFailedError(WaitlistTrackerError):
    """Raised when the press-and-hold verification could not be passed"""

    http_status = 503
    user_message = "Could not pass the site's verification check"


class TransientConnectionError(WaitlistTrackerError):
    """Raised when the browser or page closed in the middle of a fetch

    Does not count against the caller's rate limit.
    """

    http_status = 503
    user_message = "Temporary connection issue, please try again in a few moments"


class NoSegmentsFoundError(WaitlistTrackerError):
    """Raised when a rendered status page yields no flight segments"""

    user_message = "No flight segments found"


class RateLimitError(WaitlistTrackerError):
    """Raised when a flight was fetched too recently"""

    http_status = 429
    user_message = "Rate limit exceeded"

    def __init__(self, wait_seconds: float, message: Optional[str] = None):
        self.wait_seconds = wait_seconds
        super().__init__(
            message or f"Please wait {math.ceil(wait_seconds)} seconds before trying again"
        )
