"""Time scheduler for check-in, check-out and cleanup procedures."""

import logging
from datetime import datetime, time, timedelta
from typing import AsyncContextManager, Awaitable, Callable, Optional

from apscheduler.job import Job
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.date import DateTrigger

from rental_automator.config import AutomatorConfig
from rental_automator.core.calendar_fetcher import CalendarFetcher
from rental_automator.core.ical_parser import get_parser, parse_ical_date
from rental_automator.core.matcher import find_todays_checkin_event, find_todays_checkout_event
from rental_automator.db.state import AutomatorState

logger = logging.getLogger(__name__)

Procedure = Callable[[AutomatorState], Awaitable[None]]

# Job ids
CHECKIN_JOB = "checkin"
CHECKIN_PREP_JOB = "checkin_prep"
CHECKOUT_JOB = "checkout"
POLL_JOB = "poll_updates"
REFRESH_JOB = "daily_refresh"
SAFETY_CLEANUP_JOB = "safety_cleanup"


def shift_time(base: time, minutes: int) -> time:
    """Shift a time of day by a number of minutes, wrapping around midnight."""
    anchor = datetime.combine(datetime(2000, 1, 1), base)
    return (anchor + timedelta(minutes=minutes)).time()


class BookingScheduler:
    """Registers the daily procedure triggers with APScheduler.

    Every timer firing runs its procedure inside a fresh state snapshot.
    Past-due exact-time procedures run immediately with the caller's state
    instead, check-out before check-in so a lock is freed before the next
    guest's code is written.
    """

    POLL_LEAD = timedelta(minutes=30)
    # Exact times are re-resolved shortly after midnight
    DAILY_REFRESH_AT = time(0, 5)
    SAFETY_CLEANUP_DELAY = timedelta(hours=1)

    def __init__(
        self,
        config: AutomatorConfig,
        fetcher: CalendarFetcher,
        snapshot: Callable[[], AsyncContextManager[AutomatorState]],
        on_checkin: Procedure,
        on_checkin_prep: Procedure,
        on_checkout: Procedure,
        on_safety_cleanup: Procedure,
        clock: Callable[[], datetime] = datetime.now,
    ):
        """Initialize the scheduler.

        Args:
            config: Automator configuration
            fetcher: Calendar fetcher for exact-time resolution
            snapshot: Factory opening a state snapshot for a timer invocation
            on_checkin: Check-in procedure
            on_checkin_prep: Check-in prep procedure
            on_checkout: Check-out procedure
            on_safety_cleanup: Safety code cleanup procedure
            clock: Source of the current local time
        """
        self._config = config
        self._fetcher = fetcher
        self._snapshot = snapshot
        self._on_checkin = on_checkin
        self._on_checkin_prep = on_checkin_prep
        self._on_checkout = on_checkout
        self._on_safety_cleanup = on_safety_cleanup
        self._clock = clock

        self._scheduler = AsyncIOScheduler()

    @property
    def uses_exact_times(self) -> bool:
        parser = get_parser(self._config.calendar_format)
        return bool(parser and parser.supports_exact_times and self._config.use_exact_times)

    def start(self) -> None:
        """Start the scheduler."""
        self._scheduler.start()
        logger.info("Scheduler started")

    def stop(self) -> None:
        """Stop the scheduler."""
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")

    # Job wrappers

    async def _run_job(self, procedure: Procedure, name: str) -> None:
        try:
            async with self._snapshot() as state:
                await procedure(state)
        except Exception as e:
            logger.error("Error running %s: %s", name, e)

    async def _handle_checkin(self) -> None:
        await self._run_job(self._on_checkin, "check-in")

    async def _handle_checkin_prep(self) -> None:
        await self._run_job(self._on_checkin_prep, "check-in prep")

    async def _handle_checkout(self) -> None:
        await self._run_job(self._on_checkout, "check-out")

    async def _handle_safety_cleanup(self) -> None:
        await self._run_job(self._on_safety_cleanup, "safety cleanup")

    async def _handle_poll(self) -> None:
        await self._run_job(self.poll_for_updates, "calendar poll")

    async def _handle_refresh(self) -> None:
        await self._run_job(self.enable, "daily refresh")

    # Registration

    def _add_daily(self, job_id: str, func: Callable[[], Awaitable[None]], at: time) -> None:
        self._scheduler.add_job(
            func,
            CronTrigger(hour=at.hour, minute=at.minute),
            id=job_id,
            replace_existing=True,
        )
        logger.debug("Scheduling: %s daily at %02d:%02d", job_id, at.hour, at.minute)

    def _schedule_checkin_from_time(self) -> None:
        if self._config.check_in_time is None:
            logger.error("Scheduling: no check-in time configured; check-in not scheduled")
            return
        early = self._config.validated_early_minutes
        self._add_daily(CHECKIN_JOB, self._handle_checkin, shift_time(self._config.check_in_time, -early))

        prep = self._config.validated_prep_minutes
        if prep > 0:
            # Prep is relative to the already shifted check-in time
            self._add_daily(
                CHECKIN_PREP_JOB,
                self._handle_checkin_prep,
                shift_time(self._config.check_in_time, -(early + prep)),
            )

    def _schedule_checkout_from_time(self) -> None:
        if self._config.check_out_time is None:
            logger.error("Scheduling: no check-out time configured; check-out not scheduled")
            return
        late = self._config.validated_late_minutes
        self._add_daily(CHECKOUT_JOB, self._handle_checkout, shift_time(self._config.check_out_time, late))

    def _schedule_checkin_at(self, checkin_at: datetime, now: datetime) -> bool:
        """Schedule check-in (and prep) from an exact time.

        Returns:
            True if the shifted check-in time has already passed
        """
        adjusted = checkin_at - timedelta(minutes=self._config.validated_early_minutes)
        if adjusted < now:
            logger.warning("Scheduling: check-in time %s has already passed; will execute directly", adjusted)
            return True

        self._add_daily(CHECKIN_JOB, self._handle_checkin, adjusted.time())

        prep = self._config.validated_prep_minutes
        if prep > 0:
            prep_at = adjusted - timedelta(minutes=prep)
            if prep_at < now:
                logger.warning("Scheduling: check-in prep time %s has already passed; skipping", prep_at)
            else:
                self._add_daily(CHECKIN_PREP_JOB, self._handle_checkin_prep, prep_at.time())
        return False

    def _schedule_checkout_at(self, checkout_at: datetime, now: datetime) -> bool:
        """Schedule check-out from an exact time.

        Returns:
            True if the shifted check-out time has already passed
        """
        adjusted = checkout_at + timedelta(minutes=self._config.validated_late_minutes)
        if adjusted < now:
            logger.warning("Scheduling: check-out time %s has already passed; will execute directly", adjusted)
            return True
        self._add_daily(CHECKOUT_JOB, self._handle_checkout, adjusted.time())
        return False

    def schedule_with_default_times(self) -> None:
        logger.info("Scheduling: using default times")
        self._schedule_checkin_from_time()
        self._schedule_checkout_from_time()

    async def schedule_with_exact_times(self, state: AutomatorState) -> None:
        """Schedule from today's booking times in the feed.

        Each side without a usable event falls back to the default time.
        """
        logger.info("Scheduling: using exact booking times")
        events = await self._fetcher.fetch(state, self._config.calendar_url)
        if events is None:
            logger.warning("Exact-time scheduling: calendar data unavailable; falling back to default times")
            self.schedule_with_default_times()
            return

        now = self._clock()
        expected_summary = get_parser(self._config.calendar_format).expected_summary
        state.schedule.exact_checkout = None
        state.schedule.exact_checkin = None

        # Check-out first so it runs before check-in when both are past due
        checkout_past_due = False
        checkout_event = find_todays_checkout_event(events, expected_summary, now.date())
        if checkout_event is None:
            logger.debug("Exact-time scheduling: no check-out event today; using default time")
            self._schedule_checkout_from_time()
        else:
            checkout_at = parse_ical_date(checkout_event.end_date)
            if checkout_at is None:
                logger.error("Exact-time scheduling: failed to parse check-out date %s", checkout_event.end_date)
                self._schedule_checkout_from_time()
            else:
                state.schedule.exact_checkout = checkout_at
                checkout_past_due = self._schedule_checkout_at(checkout_at, now)

        checkin_past_due = False
        checkin_event = find_todays_checkin_event(events, expected_summary, now.date())
        if checkin_event is None:
            logger.debug("Exact-time scheduling: no check-in event today; using default time")
            self._schedule_checkin_from_time()
        else:
            checkin_at = parse_ical_date(checkin_event.start_date)
            if checkin_at is None:
                logger.error("Exact-time scheduling: failed to parse check-in date %s", checkin_event.start_date)
                self._schedule_checkin_from_time()
            else:
                state.schedule.exact_checkin = checkin_at
                checkin_past_due = self._schedule_checkin_at(checkin_at, now)

        self._scheduler.add_job(
            self._handle_poll,
            CronTrigger(minute="*/15"),
            id=POLL_JOB,
            replace_existing=True,
        )

        if checkout_past_due:
            if state.schedule.checkout_executed_on == now.date():
                # Re-running would delete codes already written for the arriving guest
                logger.info("Scheduling: check-out already ran today; not running it again")
            else:
                logger.info("Scheduling: running past-due check-out procedure now")
                await self._on_checkout(state)
        if checkin_past_due:
            logger.info("Scheduling: running past-due check-in procedure now")
            await self._on_checkin(state)

    async def enable(self, state: AutomatorState) -> None:
        """Clear all jobs and schedule the procedures from the current configuration."""
        logger.info(
            "Automation: enabling (format: %s, exact times: %s)",
            self._config.calendar_format.value, self._config.use_exact_times,
        )
        self._scheduler.remove_all_jobs()
        if self.uses_exact_times:
            self._add_daily(REFRESH_JOB, self._handle_refresh, self.DAILY_REFRESH_AT)
            await self.schedule_with_exact_times(state)
        else:
            self.schedule_with_default_times()

    def disable(self) -> None:
        logger.info("Automation: disabling all schedules")
        self._scheduler.remove_all_jobs()

    async def poll_for_updates(self, state: AutomatorState) -> None:
        """Reschedule when today's booking times in the feed have changed.

        Only active from 30 minutes before the stored check-out time until
        the stored check-in time.
        """
        if not self.uses_exact_times:
            logger.debug("Calendar polling: not using exact times; skipping")
            return

        checkout_at = state.schedule.exact_checkout
        checkin_at = state.schedule.exact_checkin
        if checkout_at is None or checkin_at is None:
            logger.debug("Calendar polling: stored times not available; skipping")
            return

        now = self._clock()
        poll_start = checkout_at - self.POLL_LEAD
        if not (poll_start < now < checkin_at):
            logger.debug("Calendar polling: outside window (%s to %s); skipping", poll_start, checkin_at)
            return

        logger.debug("Calendar polling: checking for updated times")
        events = await self._fetcher.fetch(state, self._config.calendar_url)
        if events is None:
            logger.warning("Calendar polling: calendar data unavailable; skipping poll")
            return

        expected_summary = get_parser(self._config.calendar_format).expected_summary
        checkout_event = find_todays_checkout_event(events, expected_summary, now.date())
        checkin_event = find_todays_checkin_event(events, expected_summary, now.date())
        if checkout_event is None and checkin_event is None:
            logger.debug("Calendar polling: no events for today; skipping")
            return

        # A missing or unparseable side keeps its stored value
        new_checkout = (parse_ical_date(checkout_event.end_date) if checkout_event else None) or checkout_at
        new_checkin = (parse_ical_date(checkin_event.start_date) if checkin_event else None) or checkin_at

        if new_checkout == checkout_at and new_checkin == checkin_at:
            logger.debug("Calendar polling: no change in times from last poll")
            return

        logger.info(
            "Calendar polling: times changed (check-out %s -> %s, check-in %s -> %s); rescheduling",
            checkout_at, new_checkout, checkin_at, new_checkin,
        )
        state.schedule.exact_checkout = new_checkout
        state.schedule.exact_checkin = new_checkin
        self.disable()
        await self.enable(state)

    def schedule_safety_cleanup(self) -> None:
        """Schedule a one-off removal of leftover codes one hour from now."""
        run_at = self._clock() + self.SAFETY_CLEANUP_DELAY
        self._scheduler.add_job(
            self._handle_safety_cleanup,
            DateTrigger(run_date=run_at),
            id=SAFETY_CLEANUP_JOB,
            replace_existing=True,
        )
        logger.info("Safety cleanup: scheduled for %s", run_at)

    # Introspection

    def get_job(self, job_id: str) -> Optional[Job]:
        return self._scheduler.get_job(job_id)

    def get_scheduled_jobs(self) -> list[dict[str, Optional[str]]]:
        """Describe all registered jobs."""
        jobs = []
        for job in self._scheduler.get_jobs():
            next_run = getattr(job, "next_run_time", None)
            jobs.append({
                "id": job.id,
                "trigger": str(job.trigger),
                "next_run_time": next_run.isoformat() if next_run else None,
            })
        return jobs
