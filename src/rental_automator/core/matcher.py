"""Check-in and check-out event matching."""

import logging
from dataclasses import dataclass
from datetime import date
from typing import Iterable, Optional

from rental_automator.core.code_manager import is_valid_door_code, mask_code, sanitize_guest_name
from rental_automator.core.ical_parser import CalendarEvent, extract_date_from_ical_date

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BookingMatch:
    """A check-in reduced to what lock programming needs."""

    door_code: str
    guest_name: Optional[str]

    def __repr__(self) -> str:
        return f"<BookingMatch {sanitize_guest_name(self.guest_name)} {mask_code(self.door_code)}>"


def _today_str(today: Optional[date]) -> str:
    return (today or date.today()).strftime("%Y%m%d")


def find_all_checkin_events(
    events: Optional[Iterable[CalendarEvent]],
    expected_summary: str,
    force_override: bool = False,
    today: Optional[date] = None,
) -> list[BookingMatch]:
    """Find every booking starting today that carries a usable door code.

    Args:
        events: Parsed calendar events (None is treated as no data)
        expected_summary: Status token of a confirmed booking for the feed format
        force_override: Ignore the date and match any confirmed booking
        today: Date to match against (defaults to the current date)

    Returns:
        One BookingMatch per qualifying event, in feed order
    """
    todays_date = _today_str(today)
    matches: list[BookingMatch] = []

    for event in events or []:
        date_match = force_override or extract_date_from_ical_date(event.start_date or "") == todays_date
        if not date_match:
            continue
        if event.summary != expected_summary:
            continue
        if event.door_code is None or not is_valid_door_code(event.door_code):
            continue
        logger.debug(
            "Check-in search: matched booking start=%s door=%s name=%s",
            event.start_date, mask_code(event.door_code), sanitize_guest_name(event.guest_name),
        )
        matches.append(BookingMatch(door_code=event.door_code, guest_name=event.guest_name))

    if matches:
        logger.debug("Check-in search: found %d booking(s) starting today", len(matches))
    else:
        logger.debug("Check-in search: no bookings starting today")
    return matches


def find_all_checkout_events(
    events: Optional[Iterable[CalendarEvent]],
    expected_summary: str,
    force_override: bool = False,
    today: Optional[date] = None,
) -> list[CalendarEvent]:
    """Find every confirmed booking ending today.

    No door code is required: check-out removes codes by ownership label.
    """
    todays_date = _today_str(today)
    matches = [
        event
        for event in events or []
        if (force_override or extract_date_from_ical_date(event.end_date or "") == todays_date)
        and event.summary == expected_summary
    ]
    logger.debug("Check-out search: found %d booking(s) ending today", len(matches))
    return matches


def find_todays_checkin_event(
    events: Optional[Iterable[CalendarEvent]],
    expected_summary: str,
    today: Optional[date] = None,
) -> Optional[CalendarEvent]:
    """First confirmed booking starting today, used for exact-time scheduling."""
    todays_date = _today_str(today)
    for event in events or []:
        if event.summary == expected_summary and extract_date_from_ical_date(event.start_date or "") == todays_date:
            return event
    return None


def find_todays_checkout_event(
    events: Optional[Iterable[CalendarEvent]],
    expected_summary: str,
    today: Optional[date] = None,
) -> Optional[CalendarEvent]:
    """First confirmed booking ending today, used for exact-time scheduling."""
    todays_date = _today_str(today)
    for event in events or []:
        if event.summary == expected_summary and extract_date_from_ical_date(event.end_date or "") == todays_date:
            return event
    return None
