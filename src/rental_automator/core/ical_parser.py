"""iCal feed parsers for the supported booking platforms."""

import logging
import re
from dataclasses import asdict, dataclass
from datetime import date, datetime
from typing import Any, Optional

from icalendar.prop import vDDDTypes

from rental_automator.config import CalendarFormat

logger = logging.getLogger(__name__)

_VEVENT_RE = re.compile(r"BEGIN:VEVENT[\s\S]*?END:VEVENT")


@dataclass(frozen=True)
class CalendarEvent:
    """A booking event as found in the feed.

    Dates are kept as the raw iCal strings; use extract_date_from_ical_date
    or parse_ical_date to interpret them.
    """

    summary: Optional[str]
    start_date: Optional[str]
    end_date: Optional[str]
    door_code: Optional[str] = None
    guest_name: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CalendarEvent":
        return cls(
            summary=data.get("summary"),
            start_date=data.get("start_date"),
            end_date=data.get("end_date"),
            door_code=data.get("door_code"),
            guest_name=data.get("guest_name"),
        )

    def __repr__(self) -> str:
        return f"<CalendarEvent {self.summary} {self.start_date}-{self.end_date}>"


def extract_property(event_text: str, property_name: str) -> Optional[str]:
    """Extract a property value from a VEVENT block.

    Finds a line containing the property name, followed eventually by a
    colon, and captures the word characters right after it. Custom fields
    embedded in DESCRIPTION (e.g. "DoorCode: 1234") are found the same way.

    The property name is a regex fragment, so "Last 4 Digits." also matches
    AirBNB's "Phone Number (Last 4 Digits): 5678".
    """
    pattern = re.compile(rf".*{property_name}.*?:[ \t]*(\w*)")
    match = pattern.search(event_text)
    if not match:
        logger.debug("iCal parsing: property %s not found", property_name)
        return None
    return match.group(1).replace("\\n", "").strip()


def extract_date_from_ical_date(date_str: Optional[str]) -> Optional[str]:
    """Return the yyyyMMdd portion of an iCal date or date-time string."""
    if date_str is not None and len(date_str) >= 8:
        return date_str[:8]
    return date_str


def parse_ical_date(date_str: Optional[str]) -> Optional[datetime]:
    """Parse an iCal date-time (yyyyMMddTHHmmss) or date into a naive datetime."""
    if not date_str:
        return None
    try:
        value = vDDDTypes.from_ical(date_str)
    except ValueError as e:
        logger.error("iCal parsing: error parsing date/time %r: %s", date_str, e)
        return None
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            # UTC ("...Z") times are converted to the host's local time
            return value.astimezone().replace(tzinfo=None)
        return value
    if isinstance(value, date):
        return datetime.combine(value, datetime.min.time())
    logger.error("iCal parsing: unsupported date value %r", date_str)
    return None


class CalendarParser:
    """Base parser; subclasses map platform fields onto CalendarEvent."""

    format: CalendarFormat
    status_field: str
    expected_summary: str
    door_code_field: str
    guest_name_field: Optional[str] = None
    supports_exact_times = False

    def parse(self, ical_data: str) -> list[CalendarEvent]:
        blocks = _VEVENT_RE.findall(ical_data or "")
        logger.debug("%s parsing: found %d VEVENT blocks", self.format.value, len(blocks))
        return [self.parse_event(block) for block in blocks]

    def parse_event(self, block: str) -> CalendarEvent:
        return CalendarEvent(
            summary=extract_property(block, self.status_field),
            start_date=extract_property(block, "DTSTART"),
            end_date=extract_property(block, "DTEND"),
            door_code=extract_property(block, self.door_code_field),
            guest_name=self.guest_name(block),
        )

    def guest_name(self, block: str) -> Optional[str]:
        if self.guest_name_field is None:
            return None
        return extract_property(block, self.guest_name_field)


class AirBNBParser(CalendarParser):
    """AirBNB: SUMMARY "Reserved", date-only DTSTART/DTEND, code from "Last 4 Digits."."""

    format = CalendarFormat.AIRBNB
    status_field = "SUMMARY"
    expected_summary = "Reserved"
    door_code_field = "Last 4 Digits."

    def guest_name(self, block: str) -> Optional[str]:
        # AirBNB does not publish guest names in the feed
        return " "


class OwnerRezParser(CalendarParser):
    """OwnerRez: STATUS "CONFIRMED", date-time DTSTART/DTEND, DoorCode and FirstName fields."""

    format = CalendarFormat.OWNERREZ
    status_field = "STATUS"
    expected_summary = "CONFIRMED"
    door_code_field = "DoorCode"
    guest_name_field = "FirstName"
    supports_exact_times = True


PARSERS: dict[CalendarFormat, CalendarParser] = {
    parser.format: parser for parser in (AirBNBParser(), OwnerRezParser())
}


def get_parser(calendar_format) -> Optional[CalendarParser]:
    """Look up the parser for a format name or CalendarFormat."""
    try:
        return PARSERS.get(CalendarFormat(calendar_format))
    except ValueError:
        return None


def parse_calendar_data(ical_data: str, calendar_format) -> list[CalendarEvent]:
    """Parse raw iCal text using the parser registered for the format.

    Unknown formats yield an empty list.
    """
    parser = get_parser(calendar_format)
    if parser is None:
        logger.error("Calendar parsing: unknown format: %s", calendar_format)
        return []
    events = parser.parse(ical_data)
    logger.debug("iCal parsing: parsed %d events using %s parser", len(events), parser.format.value)
    return events
