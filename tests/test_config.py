"""Tests for configuration derivation and validation."""

from datetime import time

import pytest

from rental_automator.config import (
    DEFAULT_PREP_MINUTES,
    CalendarFormat,
    Settings,
    build_automator_config,
    is_valid_secure_url,
    validate_configuration,
)
from tests.conftest import FakeLock, make_config


class TestOffsets:
    @pytest.mark.parametrize(
        "configured, expected",
        [(None, 0), (-5, 0), (0, 0), (45, 45), (60, 60), (90, 60)],
    )
    def test_clamped(self, configured, expected):
        config = make_config(checkin_early_minutes=configured, checkout_late_minutes=configured)

        assert config.validated_early_minutes == expected
        assert config.validated_late_minutes == expected

    def test_prep_disabled(self):
        assert make_config(checkin_prep=False, checkin_prep_minutes=45).validated_prep_minutes == 0

    @pytest.mark.parametrize("minutes", [None, 0, -10])
    def test_prep_defaults(self, minutes):
        config = make_config(checkin_prep=True, checkin_prep_minutes=minutes)
        assert config.validated_prep_minutes == DEFAULT_PREP_MINUTES

    def test_prep_mode(self):
        assert make_config(checkin_prep_same_mode=True, checkin_prep_mode="Prep").prep_mode == "Stay"
        assert make_config(checkin_prep_same_mode=False, checkin_prep_mode="Prep").prep_mode == "Prep"


class TestValidation:
    def test_valid(self):
        assert validate_configuration(make_config(), [FakeLock()]) == []

    def test_collects_all_problems(self):
        config = make_config(
            calendar_url="http://calendar.example.com/feed.ics",
            checkin_mode=None,
            checkout_mode=None,
            check_in_time=None,
            checkin_early_minutes=75,
            checkin_prep=True,
            checkin_prep_minutes=0,
            checkin_prep_same_mode=False,
        )
        lock = FakeLock(commands=("set_code",))

        errors = validate_configuration(config, [lock])

        assert errors == [
            "Calendar URL must use HTTPS for security",
            "Check-in prep minutes must be a positive number",
            "Check-in prep mode must be selected when not using same mode as check-in",
            "Lock 'Front Door' does not support code deletion (delete_code)",
            "Check-in mode must be selected",
            "Check-out mode must be selected",
            "Check-in time must be set",
            "Check-in early minutes must be between 0 and 60",
        ]

    def test_empty_url_not_flagged(self):
        assert validate_configuration(make_config(calendar_url=""), []) == []

    @pytest.mark.parametrize(
        "url, expected",
        [
            ("https://example.com/feed.ics", True),
            ("HTTPS://example.com/feed.ics", True),
            ("http://example.com/feed.ics", False),
            ("", False),
            (None, False),
        ],
    )
    def test_secure_url(self, url, expected):
        assert is_valid_secure_url(url) is expected


class TestSettings:
    def test_automator_config_from_settings(self):
        settings = Settings(
            _env_file=None,
            calendar_url="https://calendar.example.com/feed.ics",
            calendar_format=CalendarFormat.AIRBNB,
            check_in_time=time(15, 0),
            checkout_late_minutes=30,
            debug=True,
        )

        config = build_automator_config(settings)

        assert config.calendar_format is CalendarFormat.AIRBNB
        assert config.check_in_time == time(15, 0)
        assert config.validated_late_minutes == 30
        assert config.checkin_mode == "Stay"
        assert config.debug is True

    def test_env_prefix(self, monkeypatch):
        monkeypatch.setenv("RENTAL_AUTOMATOR_CALENDAR_FORMAT", "AirBNB")
        monkeypatch.setenv("RENTAL_AUTOMATOR_DOOR_LOCKS", '["lock.front_door", "lock.back_door"]')

        settings = Settings(_env_file=None)

        assert settings.calendar_format is CalendarFormat.AIRBNB
        assert settings.door_locks == ["lock.front_door", "lock.back_door"]
