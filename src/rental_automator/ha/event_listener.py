"""Home Assistant WebSocket listener for lock code-change events."""

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, Optional

import websockets

logger = logging.getLogger(__name__)


class HAEventListener:
    """Listens to the Home Assistant websocket API for lock code events.

    Each event is expected to carry the lock's entity_id and a free-text
    value describing what happened to the code ("set", "deleted", ...).
    """

    RECONNECT_DELAY = 10

    def __init__(
        self,
        ha_url: str,
        ha_token: str,
        event_type: str,
        on_code_event: Callable[[str, Optional[str]], Awaitable[None]],
    ):
        self._ws_url = ha_url.replace("http://", "ws://").replace("https://", "wss://") + "/api/websocket"
        self._token = ha_token
        self._event_type = event_type
        self._on_code_event = on_code_event
        self._task: Optional[asyncio.Task] = None
        self._running = False
        self._msg_id = 0

    def _next_id(self) -> int:
        self._msg_id += 1
        return self._msg_id

    async def start(self) -> None:
        """Start listening for events in a background task."""
        if self._task and not self._task.done():
            return
        self._running = True
        self._task = asyncio.create_task(self._listen_loop())
        logger.info("HA event listener started")

    async def stop(self) -> None:
        """Stop listening."""
        self._running = False
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        logger.info("HA event listener stopped")

    async def _listen_loop(self) -> None:
        """Reconnecting listen loop."""
        while self._running:
            try:
                await self._connect_and_listen()
            except asyncio.CancelledError:
                break
            except Exception as e:
                if self._running:
                    logger.warning(
                        "HA websocket disconnected: %s, reconnecting in %ds...", e, self.RECONNECT_DELAY
                    )
                    await asyncio.sleep(self.RECONNECT_DELAY)

    async def _connect_and_listen(self) -> None:
        """Connect to HA websocket, authenticate, and subscribe to code events."""
        logger.info("Connecting to HA websocket")

        async with websockets.connect(self._ws_url, ping_interval=30, ping_timeout=10) as ws:
            msg = json.loads(await ws.recv())
            if msg.get("type") != "auth_required":
                logger.error("Unexpected first message: %s", msg.get("type"))
                return

            await ws.send(json.dumps({"type": "auth", "access_token": self._token}))
            msg = json.loads(await ws.recv())
            if msg.get("type") != "auth_ok":
                logger.error("HA auth failed: %s", msg.get("message", msg.get("type")))
                return
            logger.info("HA websocket authenticated")

            sub_id = self._next_id()
            await ws.send(json.dumps({
                "id": sub_id,
                "type": "subscribe_events",
                "event_type": self._event_type,
            }))
            result = json.loads(await ws.recv())
            if not result.get("success"):
                logger.error("Failed to subscribe to %s: %s", self._event_type, result)
                return
            logger.info("Subscribed to %s events", self._event_type)

            while self._running:
                msg = json.loads(await ws.recv())
                if msg.get("type") == "event":
                    await self.handle_event(msg.get("event", {}))

    async def handle_event(self, event: dict[str, Any]) -> None:
        """Forward a code-change event to the automator."""
        data = event.get("data", {})
        entity_id = data.get("entity_id")
        if not entity_id:
            logger.debug("Code event without entity_id ignored")
            return

        value = data.get("value")
        logger.debug("Code event: %s %s", entity_id, value)
        try:
            await self._on_code_event(entity_id, value)
        except Exception as e:
            logger.error("Error processing code event: %s", e)
