"""Door code helpers: validation, masking, labels and slot allocation."""

import json
import re
from typing import Any, Optional

# Every code this system writes carries this prefix in its slot label
OWN_CODE_PREFIX = "RentalAutomator"

DEFAULT_MAX_SLOTS = 30
MAX_GUEST_NAME_LENGTH = 20
GUEST_NAME_PLACEHOLDER = "Guest"

_DOOR_CODE_RE = re.compile(r"[0-9]{4,8}")


def is_valid_door_code(code: Optional[str]) -> bool:
    """Check that a door code is a 4-8 digit numeric PIN."""
    if not code or not code.strip():
        return False
    return _DOOR_CODE_RE.fullmatch(code) is not None


def mask_code(code: Optional[str]) -> str:
    """Mask a door code for logging, keeping only the last two digits."""
    if not code or len(code) < 2:
        return "****"
    return "*" * (len(code) - 2) + code[-2:]


def sanitize_guest_name(name: Optional[str]) -> str:
    """Reduce a guest name to something safe to store in a lock slot label."""
    if not name or not name.strip():
        return GUEST_NAME_PLACEHOLDER
    sanitized = re.sub(r"[^a-zA-Z0-9\s]", "", name).strip()
    if len(sanitized) > MAX_GUEST_NAME_LENGTH:
        sanitized = sanitized[:MAX_GUEST_NAME_LENGTH].strip()
    return sanitized or GUEST_NAME_PLACEHOLDER


def build_code_label(guest_name: Optional[str]) -> str:
    """Build the slot label for a code written by this system."""
    return f"{OWN_CODE_PREFIX} {sanitize_guest_name(guest_name)}"


def is_own_label(label: Any) -> bool:
    return label is not None and OWN_CODE_PREFIX in str(label)


def normalize_code_table(codes: Any) -> dict[int, dict[str, Any]]:
    """Normalize a lock's code table to {slot_number: {"name": ..., "code": ...}}.

    Locks report the table as a JSON string or a mapping keyed by slot
    number (usually as strings). Entries with non-numeric keys are dropped.
    """
    if not codes:
        return {}
    if isinstance(codes, str):
        codes = json.loads(codes)
    table: dict[int, dict[str, Any]] = {}
    for key, data in codes.items():
        try:
            slot = int(key)
        except (TypeError, ValueError):
            continue
        table[slot] = data if isinstance(data, dict) else {}
    return table


def own_code_slots(codes: Any) -> list[int]:
    """Slots whose label marks them as written by this system, in slot order."""
    table = normalize_code_table(codes)
    return sorted(slot for slot, data in table.items() if is_own_label(data.get("name")))


def next_free_slot(codes: Any, max_slots: Optional[int]) -> Optional[int]:
    """First unused slot in 1..max_slots, or None if the lock is full."""
    used = set(normalize_code_table(codes))
    limit = int(max_slots) if max_slots else DEFAULT_MAX_SLOTS
    for slot in range(1, limit + 1):
        if slot not in used:
            return slot
    return None


def slot_holds_code(codes: Any, code: str) -> Optional[int]:
    """Return the own slot holding this exact code, if any."""
    table = normalize_code_table(codes)
    for slot in sorted(table):
        data = table[slot]
        if is_own_label(data.get("name")) and str(data.get("code")) == code:
            return slot
    return None
