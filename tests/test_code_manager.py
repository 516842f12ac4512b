"""Unit tests for door code helpers."""

import pytest

from rental_automator.core.code_manager import (
    build_code_label,
    is_own_label,
    is_valid_door_code,
    mask_code,
    next_free_slot,
    normalize_code_table,
    own_code_slots,
    sanitize_guest_name,
    slot_holds_code,
)


class TestDoorCodeValidation:
    @pytest.mark.parametrize("code", ["1234", "00000", "123456", "9876543", "12345678"])
    def test_accepts_4_to_8_digits(self, code):
        assert is_valid_door_code(code)

    @pytest.mark.parametrize(
        "code",
        ["123", "123456789", "12a4", "12 34", "-1234", "1234\n", "", "    ", None, "١٢٣٤"],
    )
    def test_rejects_everything_else(self, code):
        assert not is_valid_door_code(code)


class TestMaskCode:
    @pytest.mark.parametrize("code", ["12", "1234", "87654321"])
    def test_keeps_last_two(self, code):
        masked = mask_code(code)
        assert len(masked) == len(code)
        assert masked[-2:] == code[-2:]
        assert set(masked[:-2]) <= {"*"}

    @pytest.mark.parametrize("code", ["", "7", None])
    def test_short_codes_use_placeholder(self, code):
        assert mask_code(code) == "****"


class TestLabels:
    def test_sanitize_strips_symbols(self):
        assert sanitize_guest_name("  O'Brien-Smith!  ") == "OBrienSmith"

    def test_sanitize_truncates_and_retrims(self):
        assert sanitize_guest_name("Alexandria Catherine Montgomery") == "Alexandria Catherine"
        assert sanitize_guest_name("Abcdefghijklmnopqrs tuv") == "Abcdefghijklmnopqrs"

    @pytest.mark.parametrize("name", [None, "", "   ", "!!!"])
    def test_placeholder(self, name):
        assert sanitize_guest_name(name) == "Guest"

    def test_build_label(self):
        assert build_code_label("Jordan") == "RentalAutomator Jordan"
        assert build_code_label(" ") == "RentalAutomator Guest"

    def test_is_own_label(self):
        assert is_own_label("RentalAutomator Jordan")
        assert not is_own_label("Master")
        assert not is_own_label(None)


class TestCodeTable:
    def test_normalize_json_string(self):
        table = normalize_code_table('{"1": {"name": "Master", "code": "0000"}, "x": {}}')
        assert table == {1: {"name": "Master", "code": "0000"}}

    def test_normalize_empty(self):
        assert normalize_code_table(None) == {}
        assert normalize_code_table("") == {}

    def test_gap_aware_slot(self):
        codes = {"1": {"name": "Master"}, "3": {"name": "Cleaner"}}
        assert next_free_slot(codes, 5) == 2

    def test_full_lock(self):
        codes = {str(i): {"name": "x"} for i in range(1, 4)}
        assert next_free_slot(codes, 3) is None

    def test_default_max_slots(self):
        codes = {str(i): {"name": "x"} for i in range(1, 30)}
        assert next_free_slot(codes, None) == 30

    def test_own_code_slots_sorted(self):
        codes = {
            "7": {"name": "RentalAutomator Sam"},
            "1": {"name": "Master"},
            "4": {"name": "RentalAutomator Jordan"},
        }
        assert own_code_slots(codes) == [4, 7]

    def test_slot_holds_code_only_own(self):
        codes = {
            "1": {"name": "Master", "code": "5678"},
            "2": {"name": "RentalAutomator Jordan", "code": "5678"},
        }
        assert slot_holds_code(codes, "5678") == 2
        assert slot_holds_code(codes, "1111") is None
