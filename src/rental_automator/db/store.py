"""State stores: a per-invocation snapshot store and a strongly consistent flag store."""

import json
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator

from rental_automator.db.database import Database
from rental_automator.db.models import Flag, StateDocument
from rental_automator.db.state import AutomatorState, migrate_state

logger = logging.getLogger(__name__)

STATE_KEY = "automator"

# Flag keys
AUTOMATION_ENABLED = "automation_enabled"
TEST_CALENDAR = "test_calendar"
TEST_CALENDAR_URL_STATE = "test_calendar_url_state"


class SnapshotStore:
    """Bulk state read at the start of an invocation and written at its end.

    Writes are invisible to other invocations until the owning invocation
    finishes; concurrent invocations are last-writer-wins.
    """

    def __init__(self, database: Database):
        self._db = database

    async def _load_raw(self) -> dict[str, Any]:
        async with self._db.session() as session:
            document = await session.get(StateDocument, STATE_KEY)
            if document is None:
                return {}
            return json.loads(document.value)

    async def load(self) -> AutomatorState:
        raw = await self._load_raw()
        if not raw:
            return AutomatorState()
        return AutomatorState.model_validate(migrate_state(raw))

    async def save(self, state: AutomatorState) -> None:
        value = state.model_dump_json()
        async with self._db.session() as session:
            document = await session.get(StateDocument, STATE_KEY)
            if document is None:
                session.add(StateDocument(key=STATE_KEY, value=value))
            else:
                document.value = value

    async def migrate(self) -> AutomatorState:
        """Apply pending schema migrations and persist the result."""
        raw = await self._load_raw()
        if raw:
            state = AutomatorState.model_validate(migrate_state(raw))
        else:
            state = AutomatorState()
        await self.save(state)
        return state

    @asynccontextmanager
    async def snapshot(self) -> AsyncGenerator[AutomatorState, None]:
        """Load state for one invocation and write it back when it ends."""
        state = await self.load()
        try:
            yield state
        finally:
            await self.save(state)


class FlagStore:
    """Flags shared by concurrent invocations; every read and write hits the database."""

    def __init__(self, database: Database):
        self._db = database

    async def get(self, key: str, default: Any = None) -> Any:
        async with self._db.session() as session:
            flag = await session.get(Flag, key)
            if flag is None:
                return default
            return json.loads(flag.value)

    async def set(self, key: str, value: Any) -> None:
        encoded = json.dumps(value)
        async with self._db.session() as session:
            flag = await session.get(Flag, key)
            if flag is None:
                session.add(Flag(key=key, value=encoded))
            else:
                flag.value = encoded
        logger.debug("Flag %s set to %s", key, encoded)

    async def remove(self, key: str) -> None:
        async with self._db.session() as session:
            flag = await session.get(Flag, key)
            if flag is not None:
                await session.delete(flag)
