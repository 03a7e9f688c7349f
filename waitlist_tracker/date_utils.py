"""Flight number and date normalisation and validation"""

import datetime
import re
from typing import List, Optional, Tuple

from dateutil.parser import ParserError
from dateutil.parser import parse as parse_date
from dateutil.rrule import DAILY, rrule

from .config import MAX_DAYS_AHEAD
from .exceptions import InvalidRequestError

FLIGHT_NUMBER_RE = re.compile(r"^(?:[A-Z]{2}\s*)?(\d{1,5})$")


def parse_flight_number(value: str) -> str:
    """
    Normalise a flight number to its digits.

    Args:
        value: '100', 'AS100' or 'AS 100'

    Returns:
        The 1-5 digit flight number

    Raises:
        InvalidRequestError: If the value is not a flight number
    """
    match = FLIGHT_NUMBER_RE.match((value or "").strip().upper())
    if not match:
        raise InvalidRequestError(f"Invalid flight number '{value}'")
    return match.group(1)


def normalize_flight_date(value: str) -> str:
    """
    Convert a user or page date to YYYY-MM-DD.

    Accepts ISO dates as well as the long form shown on status pages
    ('December 29, 2024').

    Raises:
        InvalidRequestError: If the date cannot be parsed
    """
    if not value or not value.strip():
        raise InvalidRequestError("No date provided")
    try:
        return parse_date(value.strip()).date().isoformat()
    except (ParserError, ValueError, OverflowError) as e:
        raise InvalidRequestError(f"Invalid date '{value}': {e}") from e


def validate_flight_input(
    flight_number: str,
    date: str,
    today: Optional[datetime.date] = None,
    max_days_ahead: int = MAX_DAYS_AHEAD,
) -> Tuple[bool, str]:
    """
    Validate a lookup request.

    Args:
        flight_number: Flight number as entered
        date: Flight date as entered
        today: Reference date (defaults to the local date)
        max_days_ahead: Furthest bookable date

    Returns:
        Tuple of (is_valid, error_message)
    """
    try:
        parse_flight_number(flight_number)
        iso_date = normalize_flight_date(date)
    except InvalidRequestError as e:
        return False, str(e)

    today = today or datetime.date.today()
    flight_date = datetime.date.fromisoformat(iso_date)

    if flight_date < today:
        return False, f"Date {iso_date} is in the past"
    if flight_date > today + datetime.timedelta(days=max_days_ahead):
        return False, f"Date {iso_date} is more than {max_days_ahead} days ahead"
    return True, ""


def parse_date_or_range(date_spec: str) -> List[str]:
    """
    Parse a date specification that can be a single date or a range.

    Args:
        date_spec: A date, or a range in START:END form

    Returns:
        List of date strings in YYYY-MM-DD format

    Raises:
        InvalidRequestError: If a date is invalid or the end date is before the start date
    """
    if ":" not in date_spec:
        return [normalize_flight_date(date_spec)]

    start_spec, end_spec = date_spec.split(":", 1)
    start_date = datetime.date.fromisoformat(normalize_flight_date(start_spec))
    end_date = datetime.date.fromisoformat(normalize_flight_date(end_spec))

    if end_date < start_date:
        raise InvalidRequestError(f"End date {end_spec} is before start date {start_spec}")

    return [dt.strftime("%Y-%m-%d") for dt in rrule(DAILY, dtstart=start_date, until=end_date)]
