"""Home Assistant API client."""

import json
import logging
from typing import Any, Optional

import httpx

logger = logging.getLogger(__name__)


class HomeAssistantClient:
    """Client for communicating with Home Assistant API."""

    def __init__(
        self,
        url: str,
        token: str,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the client.

        Args:
            url: Home Assistant URL (e.g., "http://192.168.1.100:8123")
            token: Long-lived access token
            timeout: Request timeout in seconds
            transport: Optional httpx transport (tests)
        """
        self.url = url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                transport=self._transport,
                headers={
                    "Authorization": f"Bearer {self.token}",
                    "Content-Type": "application/json",
                },
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def call_service(self, service: str, data: dict[str, Any]) -> Any:
        """Call a Home Assistant service.

        Args:
            service: Full service name (e.g., "input_select.select_option")
            data: Service data

        Returns:
            Response data
        """
        domain, _, name = service.partition(".")
        if not domain or not name:
            raise ValueError(f"Invalid service name: {service!r}")
        client = await self._get_client()
        response = await client.post(f"{self.url}/api/services/{domain}/{name}", json=data)
        response.raise_for_status()
        return response.json() if response.content else {}

    async def get_state(self, entity_id: str) -> dict[str, Any]:
        """Get the state of an entity."""
        client = await self._get_client()
        response = await client.get(f"{self.url}/api/states/{entity_id}")
        response.raise_for_status()
        return response.json()

    async def get_attribute(self, entity_id: str, attribute: str) -> Any:
        data = await self.get_state(entity_id)
        return data.get("attributes", {}).get(attribute)

    # Lock code operations

    async def get_lock_codes(self, entity_id: str) -> Optional[dict[str, Any]]:
        """Read the lock's code table from its lock_codes attribute.

        Returns:
            Mapping of slot number to {"name": ..., "code": ...}, or None
            when the lock does not report one
        """
        codes = await self.get_attribute(entity_id, "lock_codes")
        if codes is None:
            return None
        if isinstance(codes, str):
            codes = json.loads(codes) if codes.strip() else {}
        return codes

    async def get_max_codes(self, entity_id: str) -> Optional[int]:
        value = await self.get_attribute(entity_id, "max_codes")
        if value is None:
            return None
        return int(value)

    async def set_lock_code(
        self, service: str, entity_id: str, code_slot: int, usercode: str, name: str
    ) -> None:
        """Write a labelled code into a slot.

        Args:
            service: Service accepting entity_id, code_slot, usercode and name
            entity_id: Lock entity ID
            code_slot: Slot number
            usercode: The code to set
            name: Slot label
        """
        await self.call_service(
            service,
            {
                "entity_id": entity_id,
                "code_slot": code_slot,
                "usercode": usercode,
                "name": name,
            },
        )

    async def clear_lock_code(self, service: str, entity_id: str, code_slot: int) -> None:
        await self.call_service(service, {"entity_id": entity_id, "code_slot": code_slot})

    # Mode and notifications

    async def select_mode(self, entity_id: str, option: str) -> None:
        """Select a house mode on an input_select entity."""
        await self.call_service(
            "input_select.select_option",
            {"entity_id": entity_id, "option": option},
        )

    async def send_notification(self, service: str, message: str, title: str = "Rental Automator") -> None:
        """Send a notification via a notify service (e.g., "notify.mobile_app_phone")."""
        await self.call_service(service, {"message": message, "title": title})

    async def health_check(self) -> bool:
        """Check if the Home Assistant instance is reachable.

        Returns:
            True if HA is reachable
        """
        try:
            client = await self._get_client()
            response = await client.get(f"{self.url}/api/")
            return response.status_code == 200
        except httpx.HTTPError as e:
            logger.debug("Home Assistant health check failed: %s", e)
            return False
