"""Interfaces to the devices and services the automator drives."""

import logging
from typing import Any, Optional, Protocol, Sequence

logger = logging.getLogger(__name__)


class LockDevice(Protocol):
    """A keypad lock that stores labelled codes in numbered slots."""

    name: str

    def has_command(self, command: str) -> bool: ...

    async def set_code(self, slot: int, code: str, label: str) -> None: ...

    async def delete_code(self, slot: int) -> None: ...

    async def current_codes(self) -> dict[str, Any]:
        """Live code table keyed by slot number: {"3": {"name": ..., "code": ...}}."""
        ...

    async def current_max_slots(self) -> Optional[int]: ...


class ModeController(Protocol):
    """Switches the premises into a named mode (e.g. "Stay", "Away")."""

    async def set_mode(self, mode: str) -> None: ...


class NotificationSink(Protocol):
    name: str

    async def send(self, message: str) -> None: ...


class Notifier:
    """Fire-and-forget delivery of user notifications to every configured sink."""

    def __init__(self, sinks: Sequence[NotificationSink] = (), hub_name: str = ""):
        self._sinks = list(sinks)
        self._hub_name = hub_name

    def format(self, message: str) -> str:
        if self._hub_name:
            return f"Rental Automator ({self._hub_name}): {message}"
        return f"Rental Automator: {message}"

    async def send(self, message: str) -> None:
        text = self.format(message)
        for sink in self._sinks:
            logger.debug("Notification: sending to %s", sink.name)
            try:
                await sink.send(text)
            except Exception as e:
                logger.error("Notification: failed to send to %s: %s", sink.name, e)
