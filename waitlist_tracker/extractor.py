"""Flight status page extractor: segments and upgrade waitlists"""

import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence

import orjson
from bs4 import BeautifulSoup, Tag
from dateutil.parser import ParserError
from dateutil.parser import parse as parse_date
from loguru import logger

from .config import (
    ACCORDION_SELECTOR,
    FLIGHT_ELEMENT_SELECTOR,
    PASSENGER_CODE_PATTERN,
    SEGMENT_BLOCK_SELECTOR,
    UPGRADE_PANEL_HEADING,
    WAITLIST_CONTAINER_SELECTOR,
    WAITLIST_PANEL_SELECTOR,
    WAITLIST_TABLE_ROW_SELECTOR,
)
from .models import FlightSegment, WaitlistSnapshot

PASSENGER_CODE_RE = re.compile(PASSENGER_CODE_PATTERN)
TIME_RE = re.compile(r"(\d{1,2}):(\d{2})")
INTEGER_RE = re.compile(r"\d+")

# Counter label substrings inside the waitlist text container
COUNTER_LABELS = {
    "capacity": "capacity",
    "available": "Available",
    "checked_in": "Checked-in",
}


def normalize_flight_number(value: Optional[str]) -> Optional[str]:
    """'AS 100' / 'AS100' / '100' -> '100'"""
    if not value:
        return None
    match = re.search(r"\d{1,5}", value)
    return match.group(0) if match else None


def normalize_date(value: Optional[str]) -> Optional[str]:
    """'December 29, 2024' / '2024-12-29 08:15' -> '2024-12-29'"""
    if not value or not value.strip():
        return None
    try:
        return parse_date(value.strip()).date().isoformat()
    except (ParserError, ValueError, OverflowError):
        return None


def normalize_time(value: Optional[str]) -> Optional[str]:
    """'2024-12-29 08:15' / '2024-12-29T8:15:00' -> '08:15'"""
    if not value:
        return None
    match = TIME_RE.search(value)
    if not match:
        return None
    return f"{int(match.group(1)):02d}:{match.group(2)}"


def first_integer(text: str) -> Optional[int]:
    match = INTEGER_RE.search(text)
    return int(match.group(0)) if match else None


def normalize_passenger(value: str) -> Optional[str]:
    """Return the upper-cased name code when it looks like 'ABC/D'"""
    name = value.strip().upper()
    return name if PASSENGER_CODE_RE.match(name) else None


@dataclass
class _SegmentSource:
    """Everything a field strategy may look at for one segment block"""

    soup: BeautifulSoup
    flight: Tag
    linked_data: Dict[str, Any] = field(default_factory=dict)

    def attr(self, name: str) -> Optional[str]:
        value = self.flight.get(name)
        if isinstance(value, list):
            value = " ".join(value)
        return value.strip() if value and value.strip() else None

    def meta(self, name: str) -> Optional[str]:
        tag = self.soup.find("meta", attrs={"name": name})
        if tag is None:
            return None
        content = tag.get("content")
        return content.strip() if content and content.strip() else None

    def linked(self, key: str) -> Optional[str]:
        value = self.linked_data.get(key)
        if isinstance(value, dict):
            value = value.get("iataCode") or value.get("name")
        if value is None:
            return None
        value = str(value).strip()
        return value or None


Strategy = Callable[[_SegmentSource], Optional[str]]


def _timestamp_text(source: _SegmentSource) -> Optional[str]:
    element = source.soup.select_one(".timestamp")
    if element is None:
        return None
    return element.get_text(strip=True) or None


# Ordered fallbacks per field. Each returns the raw value or None.
FIELD_STRATEGIES: Dict[str, Sequence[Strategy]] = {
    "flight_number": (
        lambda s: normalize_flight_number(s.attr("flights")),
        lambda s: normalize_flight_number(s.linked("flightNumber")),
        lambda s: normalize_flight_number(s.meta("flightNumber")),
    ),
    "origin": (
        lambda s: s.attr("departurestation"),
        lambda s: s.linked("departureAirport"),
        lambda s: s.meta("origin"),
    ),
    "destination": (
        lambda s: s.attr("arrivalstation"),
        lambda s: s.linked("arrivalAirport"),
        lambda s: s.meta("destination"),
    ),
    "departure_time": (
        lambda s: normalize_time(s.attr("departuretime")),
        lambda s: normalize_time(s.linked("departureTime")),
        lambda s: normalize_time(s.meta("departureTime")),
    ),
    "arrival_time": (
        lambda s: normalize_time(s.attr("arrivaltime")),
        lambda s: normalize_time(s.linked("arrivalTime")),
        lambda s: normalize_time(s.meta("arrivalTime")),
    ),
    "date": (
        lambda s: normalize_date(_timestamp_text(s)),
        lambda s: normalize_date(s.attr("departuretime")),
        lambda s: normalize_date(s.linked("departureTime")),
        lambda s: normalize_date(s.meta("flightDate")),
    ),
}


def resolve_field(name: str, source: _SegmentSource) -> Optional[str]:
    """Run the strategies for a field in order and return the first hit"""
    for strategy in FIELD_STRATEGIES[name]:
        value = strategy(source)
        if value:
            return value
    return None


class PageExtractor:
    """
    Extract flight segments and upgrade waitlists from flight status HTML.

    Extraction never raises on a missing field: absent values degrade to
    None or an empty list.
    """

    def __init__(self, parser: str = "lxml"):
        self.parser = parser

    def _soup(self, html: str) -> BeautifulSoup:
        return BeautifulSoup(html, self.parser)

    def extract_segments(self, html: str) -> List[FlightSegment]:
        """
        Parse every flown leg shown on the page.

        Args:
            html: Rendered page HTML

        Returns:
            Segments in page order; blocks without a flight number or date are dropped
        """
        soup = self._soup(html)
        linked_flights = self._linked_flights(soup)
        segments = []
        flight_blocks = [
            flight
            for flight in (
                block.select_one(FLIGHT_ELEMENT_SELECTOR)
                for block in soup.select(SEGMENT_BLOCK_SELECTOR)
            )
            if flight is not None
        ]

        # Index follows block order so it lines up with the waitlist accordions
        for index, flight in enumerate(flight_blocks):
            if index < len(linked_flights):
                linked = linked_flights[index]
            else:
                linked = linked_flights[0] if linked_flights else {}
            source = _SegmentSource(soup=soup, flight=flight, linked_data=linked)
            values = {name: resolve_field(name, source) for name in FIELD_STRATEGIES}

            if not values["flight_number"] or not values["date"]:
                logger.warning(
                    f"Skipping segment block {index + 1}: missing "
                    f"{'flight number' if not values['flight_number'] else 'date'}"
                )
                continue

            segment = FlightSegment(
                flight_number=values["flight_number"],
                date=values["date"],
                origin=values["origin"] or "",
                destination=values["destination"] or "",
                departure_time=values["departure_time"] or "",
                arrival_time=values["arrival_time"] or "",
                segment_index=index,
            )
            logger.debug(
                f"Parsed segment {index + 1}: AS{segment.flight_number} {segment.date} "
                f"{segment.origin} → {segment.destination} "
                f"{segment.departure_time}-{segment.arrival_time}"
            )
            segments.append(segment)

        logger.debug(f"Total segments found: {len(segments)}")
        return segments

    def extract_waitlist(self, html: str, segment_index: int) -> Optional[WaitlistSnapshot]:
        """
        Parse the upgrade waitlist panel of one segment.

        Args:
            html: Rendered page HTML
            segment_index: Zero-based segment position on the page

        Returns:
            Snapshot (possibly empty), or None when the segment has no accordion
        """
        soup = self._soup(html)
        accordions = soup.select(ACCORDION_SELECTOR)
        if segment_index >= len(accordions):
            logger.debug(f"No accordion found for segment {segment_index + 1}")
            return None

        snapshot = WaitlistSnapshot(segment_index=segment_index)
        panel = self._upgrade_panel(accordions[segment_index])
        if panel is None:
            logger.debug(f"No upgrade request panel for segment {segment_index + 1}")
            return snapshot

        for span in panel.select(f"{WAITLIST_CONTAINER_SELECTOR} span"):
            text = span.get_text(" ", strip=True)
            for counter, label in COUNTER_LABELS.items():
                if label in text and getattr(snapshot, counter) is None:
                    setattr(snapshot, counter, first_integer(text))

        for row in panel.select(WAITLIST_TABLE_ROW_SELECTOR):
            cells = row.find_all("td")
            if len(cells) < 2:
                continue
            name = normalize_passenger(cells[1].get_text(strip=True))
            if name:
                snapshot.passengers.append(name)

        logger.debug(
            f"Segment {segment_index + 1} waitlist: {len(snapshot.passengers)} names, "
            f"capacity={snapshot.capacity} available={snapshot.available} "
            f"checked_in={snapshot.checked_in}"
        )
        return snapshot

    @staticmethod
    def _upgrade_panel(accordion: Tag) -> Optional[Tag]:
        for panel in accordion.select(WAITLIST_PANEL_SELECTOR):
            heading = panel.find("h4")
            if heading is not None and heading.get_text(strip=True) == UPGRADE_PANEL_HEADING:
                return panel
        return None

    @staticmethod
    def _linked_flights(soup: BeautifulSoup) -> List[Dict[str, Any]]:
        """Flight objects from embedded JSON-LD, in document order"""
        flights: List[Dict[str, Any]] = []
        for script in soup.find_all("script", attrs={"type": "application/ld+json"}):
            # orjson only accepts exact str, not NavigableString
            raw = str(script.string or script.get_text())
            if not raw or not raw.strip():
                continue
            try:
                data = orjson.loads(raw)
            except orjson.JSONDecodeError as e:
                logger.debug(f"Failed to parse JSON-LD: {e}")
                continue

            if isinstance(data, dict):
                items = data.get("@graph", [data])
            elif isinstance(data, list):
                items = data
            else:
                continue

            for item in items:
                if isinstance(item, dict) and (
                    "departureAirport" in item or "flightNumber" in item
                ):
                    flights.append(item)
        return flights
