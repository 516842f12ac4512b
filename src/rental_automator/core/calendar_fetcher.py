"""Calendar feed retrieval with rate limiting and last-known-good fallback."""

import logging
import time
from typing import Callable, Optional

import httpx

from rental_automator.config import CALENDAR_FETCH_MIN_INTERVAL, AutomatorConfig, is_valid_secure_url
from rental_automator.core.devices import Notifier
from rental_automator.core.ical_parser import CalendarEvent, parse_calendar_data
from rental_automator.db.state import AutomatorState
from rental_automator.db.store import TEST_CALENDAR, TEST_CALENDAR_URL_STATE, FlagStore

logger = logging.getLogger(__name__)


class CalendarFetchError(Exception):
    """The feed could not be retrieved or did not look like a calendar."""


class CalendarFetcher:
    """Fetches and parses the booking feed, falling back to the cached copy.

    A short outage of the feed at the moment a procedure runs should not
    block it, so any failure returns the last successfully parsed events.
    """

    def __init__(
        self,
        config: AutomatorConfig,
        flags: FlagStore,
        notifier: Notifier,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], float] = time.time,
    ):
        self._config = config
        self._flags = flags
        self._notifier = notifier
        self.timeout = timeout
        self._transport = transport
        self._clock = clock
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout, transport=self._transport)
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def can_fetch(self, state: AutomatorState) -> bool:
        """Check whether the minimum interval since the last successful fetch has passed."""
        last_fetch = state.schedule.last_calendar_fetch
        if not last_fetch:
            return True
        return (self._clock() - last_fetch) >= CALENDAR_FETCH_MIN_INTERVAL

    @staticmethod
    def cached_events(state: AutomatorState) -> Optional[list[CalendarEvent]]:
        if state.schedule.cached_events is None:
            return None
        return [CalendarEvent.from_dict(data) for data in state.schedule.cached_events]

    async def get_calendar_data(self, url: str) -> str:
        """Fetch the raw feed text.

        The URL is never logged since feed URLs embed access tokens.
        """
        logger.debug("Calendar fetch: fetching from configured URL")
        client = await self._get_client()
        response = await client.get(url)
        response.raise_for_status()
        data = response.text.strip()
        # Raw feed text holds guest details, so only its size is logged
        logger.debug("Calendar fetch: retrieved iCal data (%d characters)", len(data))
        return data

    async def fetch(
        self, state: AutomatorState, url: Optional[str], force_fetch: bool = False
    ) -> Optional[list[CalendarEvent]]:
        """Fetch and parse the feed.

        Args:
            state: Invocation state holding the cache and last fetch time
            url: Calendar URL (must be HTTPS)
            force_fetch: Bypass the rate limit (manual tests)

        Returns:
            Fresh events, the cached events on failure, or None when neither
            is available
        """
        cached = self.cached_events(state)

        if not is_valid_secure_url(url):
            logger.error("Calendar fetch: URL must use HTTPS, skipping")
            await self._flags.set(TEST_CALENDAR_URL_STATE, False)
            if cached is not None:
                logger.debug("Calendar fetch: returning cached data due to invalid URL")
            return cached

        if not force_fetch and not self._config.debug and not self.can_fetch(state):
            if cached is not None:
                logger.debug("Calendar fetch: rate limited, using cached data")
                return cached

        try:
            ical_data = await self.get_calendar_data(url)
            if not ical_data:
                raise CalendarFetchError("Empty response. Check URL is valid and accessible.")
            if "VCALENDAR" not in ical_data:
                raise CalendarFetchError("Invalid response, does not contain VCALENDAR")
            events = parse_calendar_data(ical_data, self._config.calendar_format)
        except httpx.HTTPError as e:
            logger.error("Calendar fetch: HTTP request failed: %s", type(e).__name__)
        except CalendarFetchError as e:
            logger.error("Calendar fetch: %s", e)
        except Exception as e:
            logger.error("Calendar fetch: failed to parse iCalendar data: %s", e)
        else:
            state.schedule.cached_events = [event.to_dict() for event in events]
            state.schedule.last_calendar_fetch = self._clock()
            await self._flags.set(TEST_CALENDAR_URL_STATE, True)
            logger.debug("Calendar fetch: retrieved %d events", len(events))
            return events

        await self._flags.set(TEST_CALENDAR_URL_STATE, False)
        if cached is not None:
            logger.debug("Calendar fetch: reverting to previous cached data")
            return cached

        logger.error(
            "Calendar fetch: unable to read iCal URL and no cached copy. "
            "Check-in and check-out operations cannot proceed."
        )
        await self._notifier.send(
            "Unable to read iCal URL and no previous copy. "
            "Therefore unable to perform check-in or check-out operations"
        )
        return None

    async def test_calendar_url(self, state: AutomatorState, url: Optional[str]) -> bool:
        """Force a fetch of the calendar URL and report whether it worked."""
        await self._flags.set(TEST_CALENDAR, True)
        logger.info("Calendar test: testing iCalendar URL")
        if not url:
            logger.info("Calendar test: URL must be configured first")
            await self._flags.set(TEST_CALENDAR_URL_STATE, False)
            return False
        if not is_valid_secure_url(url):
            logger.error("Calendar test: URL must use HTTPS")
            await self._flags.set(TEST_CALENDAR_URL_STATE, False)
            return False
        await self.fetch(state, url, force_fetch=True)
        return bool(await self._flags.get(TEST_CALENDAR_URL_STATE, False))
