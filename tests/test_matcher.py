"""Unit tests for check-in and check-out matching."""

from rental_automator.core.ical_parser import CalendarEvent
from rental_automator.core.matcher import (
    BookingMatch,
    find_all_checkin_events,
    find_all_checkout_events,
    find_todays_checkin_event,
    find_todays_checkout_event,
)
from tests.conftest import TODAY


def event(start, end, code="1234", name="Jordan", summary="CONFIRMED"):
    return CalendarEvent(summary=summary, start_date=start, end_date=end, door_code=code, guest_name=name)


class TestCheckinMatching:
    def test_all_same_day_bookings_returned(self):
        events = [
            event("20240115T160000", "20240118T110000", code="1111", name="Alex"),
            event("20240115T170000", "20240116T110000", code="2222", name="Sam"),
            event("20240116T160000", "20240118T110000", code="3333", name="Kim"),
        ]

        matches = find_all_checkin_events(events, "CONFIRMED", today=TODAY)

        assert matches == [BookingMatch("1111", "Alex"), BookingMatch("2222", "Sam")]

    def test_requires_status(self):
        events = [event("20240115T160000", "20240118T110000", summary="CANCELLED")]
        assert find_all_checkin_events(events, "CONFIRMED", today=TODAY) == []

    def test_requires_valid_code(self):
        events = [
            event("20240115T160000", "20240118T110000", code=None),
            event("20240115T160000", "20240118T110000", code="12"),
            event("20240115T160000", "20240118T110000", code="12ab"),
        ]
        assert find_all_checkin_events(events, "CONFIRMED", today=TODAY) == []

    def test_force_override_ignores_date(self):
        events = [event("20240301T160000", "20240305T110000", code="4444")]

        matches = find_all_checkin_events(events, "CONFIRMED", force_override=True, today=TODAY)

        assert matches == [BookingMatch("4444", "Jordan")]

    def test_none_events(self):
        assert find_all_checkin_events(None, "CONFIRMED", today=TODAY) == []


class TestCheckoutMatching:
    def test_no_code_needed(self):
        events = [event("20240110T160000", "20240115T110000", code=None)]

        matches = find_all_checkout_events(events, "CONFIRMED", today=TODAY)

        assert matches == events

    def test_other_days_and_statuses_excluded(self):
        events = [
            event("20240110T160000", "20240116T110000"),
            event("20240110T160000", "20240115T110000", summary="TENTATIVE"),
        ]
        assert find_all_checkout_events(events, "CONFIRMED", today=TODAY) == []

    def test_force_override(self):
        events = [event("20240301T160000", "20240305T110000")]
        assert find_all_checkout_events(events, "CONFIRMED", force_override=True, today=TODAY) == events


class TestTodaysEvent:
    def test_first_matching_event(self):
        departing = event("20240110T160000", "20240115T110000", code="1111")
        arriving = event("20240115T160000", "20240118T110000", code="2222")
        events = [departing, arriving]

        assert find_todays_checkout_event(events, "CONFIRMED", TODAY) is departing
        assert find_todays_checkin_event(events, "CONFIRMED", TODAY) is arriving

    def test_none_when_absent(self):
        events = [event("20240120T160000", "20240122T110000")]
        assert find_todays_checkin_event(events, "CONFIRMED", TODAY) is None
        assert find_todays_checkout_event(None, "CONFIRMED", TODAY) is None
