"""Home Assistant implementations of the device interfaces."""

from typing import Any, Optional

from rental_automator.ha.client import HomeAssistantClient


class HomeAssistantLock:
    """A lock entity whose code table is exposed through its attributes.

    The entity id doubles as the lock name so code-change events can be
    correlated with pending operations.
    """

    def __init__(
        self,
        client: HomeAssistantClient,
        entity_id: str,
        set_code_service: str,
        clear_code_service: str,
    ):
        self._client = client
        self.name = entity_id
        self._set_code_service = set_code_service
        self._clear_code_service = clear_code_service

    def __repr__(self) -> str:
        return f"<HomeAssistantLock {self.name}>"

    def has_command(self, command: str) -> bool:
        if command == "set_code":
            return bool(self._set_code_service)
        if command == "delete_code":
            return bool(self._clear_code_service)
        return False

    async def set_code(self, slot: int, code: str, label: str) -> None:
        await self._client.set_lock_code(self._set_code_service, self.name, slot, code, label)

    async def delete_code(self, slot: int) -> None:
        await self._client.clear_lock_code(self._clear_code_service, self.name, slot)

    async def current_codes(self) -> Optional[dict[str, Any]]:
        return await self._client.get_lock_codes(self.name)

    async def current_max_slots(self) -> Optional[int]:
        return await self._client.get_max_codes(self.name)


class HomeAssistantModeController:
    def __init__(self, client: HomeAssistantClient, entity_id: str):
        self._client = client
        self._entity_id = entity_id

    async def set_mode(self, mode: str) -> None:
        await self._client.select_mode(self._entity_id, mode)


class HomeAssistantNotifySink:
    """Delivers notifications through one notify service."""

    def __init__(self, client: HomeAssistantClient, service: str):
        self._client = client
        self.name = service

    async def send(self, message: str) -> None:
        await self._client.send_notification(self.name, message)
