import datetime

import pytest

from waitlist_tracker.date_utils import (
    normalize_flight_date,
    parse_date_or_range,
    parse_flight_number,
    validate_flight_input,
)
from waitlist_tracker.exceptions import InvalidRequestError

TODAY = datetime.date(2024, 12, 27)


@pytest.mark.parametrize("value", ["100", "AS100", "AS 100", " as 100 ", "00042"])
def test_parse_flight_number_accepts_common_forms(value):
    assert parse_flight_number(value) == value.strip().upper().replace("AS", "").strip()


@pytest.mark.parametrize("value", ["", "AS", "flight one", "123456", "A100", "AS-100"])
def test_parse_flight_number_rejects_garbage(value):
    with pytest.raises(InvalidRequestError):
        parse_flight_number(value)


@pytest.mark.parametrize(
    "value,expected",
    [("2024-12-29", "2024-12-29"), ("December 29, 2024", "2024-12-29"), ("12/29/2024", "2024-12-29")],
)
def test_normalize_flight_date(value, expected):
    assert normalize_flight_date(value) == expected


@pytest.mark.parametrize("value", ["", "   ", "2024-13-45", "tomorrowish"])
def test_normalize_flight_date_rejects_invalid(value):
    with pytest.raises(InvalidRequestError):
        normalize_flight_date(value)


def test_validate_accepts_today_and_horizon():
    assert validate_flight_input("100", "2024-12-27", today=TODAY) == (True, "")
    horizon = (TODAY + datetime.timedelta(days=330)).isoformat()
    assert validate_flight_input("AS100", horizon, today=TODAY) == (True, "")


def test_validate_rejects_past_and_far_future():
    ok, message = validate_flight_input("100", "2024-12-26", today=TODAY)
    assert not ok and "past" in message

    too_far = (TODAY + datetime.timedelta(days=331)).isoformat()
    ok, message = validate_flight_input("100", too_far, today=TODAY)
    assert not ok and "330 days" in message


def test_validate_reports_bad_flight_number():
    ok, message = validate_flight_input("XYZ", "2024-12-29", today=TODAY)

    assert not ok
    assert "flight number" in message


def test_single_date_spec():
    assert parse_date_or_range("2024-12-29") == ["2024-12-29"]


def test_range_spans_month_boundary():
    assert parse_date_or_range("2024-12-30:2025-01-02") == [
        "2024-12-30",
        "2024-12-31",
        "2025-01-01",
        "2025-01-02",
    ]


def test_reversed_range_rejected():
    with pytest.raises(InvalidRequestError, match="before start date"):
        parse_date_or_range("2024-12-30:2024-12-29")
