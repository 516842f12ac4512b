"""Shared fixtures and fakes for rental automator tests."""

import copy
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Optional

import httpx
import pytest
import pytest_asyncio

from rental_automator.config import AutomatorConfig, CalendarFormat
from rental_automator.core.calendar_fetcher import CalendarFetcher
from rental_automator.core.devices import Notifier
from rental_automator.core.manager import RentalAutomator
from rental_automator.core.provisioning import LockProvisioner
from rental_automator.db.database import Database
from rental_automator.db.store import FlagStore, SnapshotStore

CALENDAR_URL = "https://calendar.example.com/feed.ics"
TODAY = date(2024, 1, 15)
NOW = datetime(2024, 1, 15, 9, 0)


# Calendar builders


def ownerrez_event(
    start: str,
    end: str,
    code: Optional[str] = "1234",
    name: Optional[str] = "Jordan",
    status: str = "CONFIRMED",
) -> str:
    description = []
    if name is not None:
        description.append(f"FirstName: {name}")
    if code is not None:
        description.append(f"DoorCode: {code}")
    lines = [
        "BEGIN:VEVENT",
        f"DTSTART:{start}",
        f"DTEND:{end}",
        f"STATUS:{status}",
        "SUMMARY:Booking",
    ]
    if description:
        lines.append("DESCRIPTION:" + "\\n".join(description))
    lines.append("END:VEVENT")
    return "\n".join(lines)


def airbnb_event(start: str, end: str, last4: Optional[str] = "5678", summary: str = "Reserved") -> str:
    lines = [
        "BEGIN:VEVENT",
        f"DTSTART;VALUE=DATE:{start}",
        f"DTEND;VALUE=DATE:{end}",
        f"SUMMARY:{summary}",
    ]
    if last4 is not None:
        lines.append(
            "DESCRIPTION:Reservation URL: https://www.airbnb.com/hosting/reservations/details/ABC123"
            f"\\nPhone Number (Last 4 Digits): {last4}"
        )
    lines.append("END:VEVENT")
    return "\n".join(lines)


def calendar(*events: str) -> str:
    body = "\n".join(events)
    return f"BEGIN:VCALENDAR\nVERSION:2.0\nPRODID:-//Test//EN\n{body}\nEND:VCALENDAR\n"


# Fakes


class FakeFeed:
    """Serves calendar text through httpx.MockTransport."""

    def __init__(self, text: str = ""):
        self.text = text
        self.status_code = 200
        self.error: Optional[Exception] = None
        self.requests = 0

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests += 1
        if self.error is not None:
            raise self.error
        return httpx.Response(self.status_code, text=self.text)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


class FakeLock:
    """In-memory keypad lock.

    dropped_commands silently ignores that many set/delete commands, like a
    lossy radio link. raise_on_set raises from that many set_code calls.
    """

    def __init__(
        self,
        name: str = "Front Door",
        codes: Optional[dict[int, dict[str, Any]]] = None,
        max_slots: Optional[int] = 30,
        dropped_commands: int = 0,
        raise_on_set: int = 0,
        report_code_values: bool = True,
        commands: tuple[str, ...] = ("set_code", "delete_code"),
    ):
        self.name = name
        self.codes: dict[str, dict[str, Any]] = {str(slot): data for slot, data in (codes or {}).items()}
        self.max_slots = max_slots
        self.dropped_commands = dropped_commands
        self.raise_on_set = raise_on_set
        self.report_code_values = report_code_values
        self.commands = commands
        self.offline = False
        self.set_calls: list[tuple[int, str, str]] = []
        self.delete_calls: list[int] = []

    def has_command(self, command: str) -> bool:
        return command in self.commands

    async def set_code(self, slot: int, code: str, label: str) -> None:
        self.set_calls.append((slot, code, label))
        if self.raise_on_set:
            self.raise_on_set -= 1
            raise RuntimeError("radio timeout")
        if self.dropped_commands:
            self.dropped_commands -= 1
            return
        self.codes[str(slot)] = {"name": label, "code": code}

    async def delete_code(self, slot: int) -> None:
        self.delete_calls.append(slot)
        if self.dropped_commands:
            self.dropped_commands -= 1
            return
        self.codes.pop(str(slot), None)

    async def current_codes(self) -> Optional[dict[str, Any]]:
        if self.offline:
            return None
        codes = copy.deepcopy(self.codes)
        if not self.report_code_values:
            for data in codes.values():
                data["code"] = ""
        return codes

    async def current_max_slots(self) -> Optional[int]:
        return self.max_slots

    def own_codes(self) -> dict[int, str]:
        return {
            int(slot): data["code"]
            for slot, data in self.codes.items()
            if "RentalAutomator" in data.get("name", "")
        }


class FakeModeController:
    def __init__(self, error: Optional[Exception] = None):
        self.modes: list[str] = []
        self.error = error

    async def set_mode(self, mode: str) -> None:
        if self.error is not None:
            raise self.error
        self.modes.append(mode)


class FakeSink:
    def __init__(self, name: str = "phone", error: Optional[Exception] = None):
        self.name = name
        self.error = error
        self.messages: list[str] = []

    async def send(self, message: str) -> None:
        if self.error is not None:
            raise self.error
        self.messages.append(message)


def make_config(**overrides: Any) -> AutomatorConfig:
    values: dict[str, Any] = {
        "calendar_url": CALENDAR_URL,
        "calendar_format": CalendarFormat.OWNERREZ,
        "checkin_mode": "Stay",
        "checkout_mode": "Away",
    }
    values.update(overrides)
    return AutomatorConfig(**values)


def event_types(state) -> list[str]:
    return [event.type for event in state.analytics.recent_events]


# Fixtures


@pytest_asyncio.fixture
async def database(tmp_path):
    db = Database(f"sqlite+aiosqlite:///{tmp_path / 'automator.db'}")
    await db.init_db()
    yield db
    await db.close()


@pytest.fixture
def flags(database) -> FlagStore:
    return FlagStore(database)


@pytest.fixture
def snapshots(database) -> SnapshotStore:
    return SnapshotStore(database)


@pytest.fixture
def sink() -> FakeSink:
    return FakeSink()


@pytest.fixture
def notifier(sink) -> Notifier:
    return Notifier([sink])


@dataclass
class Harness:
    automator: RentalAutomator
    locks: list[FakeLock]
    modes: FakeModeController
    sink: FakeSink
    feed: FakeFeed
    snapshots: SnapshotStore
    flags: FlagStore
    fetcher: CalendarFetcher


@pytest.fixture
def build_automator(snapshots, flags):
    """Factory building a RentalAutomator wired to fakes."""

    def _build(
        feed_text: str = "",
        locks: Optional[list[FakeLock]] = None,
        config: Optional[AutomatorConfig] = None,
        now: datetime = NOW,
        modes: Optional[FakeModeController] = None,
        lock_settle_seconds: float = 0,
    ) -> Harness:
        config = config or make_config()
        feed = FakeFeed(feed_text)
        sink = FakeSink()
        notifier = Notifier([sink])
        fetcher = CalendarFetcher(config, flags, notifier, transport=feed.transport)
        locks = locks if locks is not None else [FakeLock()]
        modes = modes or FakeModeController()
        automator = RentalAutomator(
            config=config,
            locks=locks,
            mode_controller=modes,
            notifier=notifier,
            snapshots=snapshots,
            flags=flags,
            fetcher=fetcher,
            provisioner=LockProvisioner(notifier, settle_seconds=lock_settle_seconds),
            checkout_settle_seconds=0,
            clock=lambda: now,
        )
        return Harness(automator, locks, modes, sink, feed, snapshots, flags, fetcher)

    return _build
