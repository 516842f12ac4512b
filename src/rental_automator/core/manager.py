"""Main rental automator that orchestrates all components."""

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncGenerator, Callable, Optional, Sequence

from rental_automator.config import AutomatorConfig, Settings, build_automator_config, validate_configuration
from rental_automator.core import analytics
from rental_automator.core.analytics import record_event
from rental_automator.core.calendar_fetcher import CalendarFetcher
from rental_automator.core.devices import LockDevice, ModeController, Notifier
from rental_automator.core.ical_parser import get_parser
from rental_automator.core.matcher import find_all_checkin_events, find_all_checkout_events
from rental_automator.core.provisioning import LockProvisioner
from rental_automator.db.database import Database
from rental_automator.db.state import AutomatorState
from rental_automator.db.store import (
    AUTOMATION_ENABLED,
    TEST_CALENDAR,
    TEST_CALENDAR_URL_STATE,
    FlagStore,
    SnapshotStore,
)
from rental_automator.ha.adapters import HomeAssistantLock, HomeAssistantModeController, HomeAssistantNotifySink
from rental_automator.ha.client import HomeAssistantClient
from rental_automator.ha.event_listener import HAEventListener
from rental_automator.scheduler.scheduler import BookingScheduler

logger = logging.getLogger(__name__)

TEST_LOCK_CODE = "1234"
TEST_GUEST_NAME = "Test"


class RentalAutomator:
    """Runs the booking procedures against the configured locks and mode."""

    # Runaway guard for the check-out delete loop
    MAX_CHECKOUT_DELETES = 10

    def __init__(
        self,
        config: AutomatorConfig,
        locks: Sequence[LockDevice],
        mode_controller: ModeController,
        notifier: Notifier,
        snapshots: SnapshotStore,
        flags: FlagStore,
        fetcher: CalendarFetcher,
        provisioner: LockProvisioner,
        checkout_settle_seconds: float = 10.0,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.config = config
        self.locks = list(locks)
        self._modes = mode_controller
        self._notifier = notifier
        self._snapshots = snapshots
        self._flags = flags
        self._fetcher = fetcher
        self._provisioner = provisioner
        self._checkout_settle_seconds = checkout_settle_seconds
        self._clock = clock
        self._ha_client: Optional[HomeAssistantClient] = None
        self._event_listener: Optional[HAEventListener] = None
        # States of invocations currently running in this process
        self._open_states: list[AutomatorState] = []

        self.scheduler = BookingScheduler(
            config=config,
            fetcher=fetcher,
            snapshot=self.invocation,
            on_checkin=self.checkin_procedure,
            on_checkin_prep=self.checkin_prep_procedure,
            on_checkout=self.checkout_procedure,
            on_safety_cleanup=self.safety_code_cleanup,
            clock=clock,
        )

    @classmethod
    def from_settings(cls, settings: Settings, database: Database) -> "RentalAutomator":
        """Wire the automator to Home Assistant from application settings."""
        config = build_automator_config(settings)
        client = HomeAssistantClient(settings.ha_url, settings.ha_token)
        locks = [
            HomeAssistantLock(client, entity_id, settings.set_code_service, settings.clear_code_service)
            for entity_id in settings.door_locks
        ]
        notifier = Notifier(
            [HomeAssistantNotifySink(client, service) for service in settings.notification_services],
            hub_name=settings.hub_name,
        )
        flags = FlagStore(database)
        automator = cls(
            config=config,
            locks=locks,
            mode_controller=HomeAssistantModeController(client, settings.mode_entity_id),
            notifier=notifier,
            snapshots=SnapshotStore(database),
            flags=flags,
            fetcher=CalendarFetcher(config, flags, notifier),
            provisioner=LockProvisioner(notifier, settle_seconds=settings.lock_settle_seconds),
            checkout_settle_seconds=settings.checkout_settle_seconds,
        )
        automator._ha_client = client
        if settings.ha_url:
            automator._event_listener = HAEventListener(
                ha_url=settings.ha_url,
                ha_token=settings.ha_token,
                event_type=settings.code_event_type,
                on_code_event=automator.lock_code_changed,
            )
        return automator

    @property
    def _expected_summary(self) -> str:
        return get_parser(self.config.calendar_format).expected_summary

    @asynccontextmanager
    async def invocation(self) -> AsyncGenerator[AutomatorState, None]:
        """Open a state snapshot that lock events can reach while it is in use."""
        async with self._snapshots.snapshot() as state:
            self._open_states.append(state)
            try:
                yield state
            finally:
                self._open_states = [s for s in self._open_states if s is not state]

    # Lifecycle

    async def start(self) -> None:
        """Migrate state, validate configuration and restore the schedule."""
        logger.info("Initialization: starting Rental Automator")

        await self._flags.remove(TEST_CALENDAR)
        await self._flags.remove(TEST_CALENDAR_URL_STATE)
        await self._snapshots.migrate()

        self.scheduler.start()

        async with self.invocation() as state:
            errors = validate_configuration(self.config, self.locks)
            if errors:
                logger.error("Settings: configuration errors found: %s", ", ".join(errors))
                state.configuration_valid = False
            else:
                logger.debug("Settings: configuration validated successfully")
                state.configuration_valid = True

            if await self._flags.get(AUTOMATION_ENABLED, False):
                await self.scheduler.enable(state)

        if self._event_listener:
            await self._event_listener.start()

        logger.info("Rental Automator started")

    async def stop(self) -> None:
        if self._event_listener:
            await self._event_listener.stop()
        self.scheduler.stop()
        await self._fetcher.close()
        if self._ha_client:
            await self._ha_client.close()
        logger.info("Rental Automator stopped")

    # Check-in

    async def process_checkin_event(
        self, state: AutomatorState, mode: str, force_override: bool, program_locks: bool
    ) -> bool:
        """Set the mode and optionally program codes for today's check-ins.

        Returns:
            False if programming failed on any lock for any booking
        """
        events = await self._fetcher.fetch(state, self.config.calendar_url)
        bookings = find_all_checkin_events(
            events, self._expected_summary, force_override, today=self._clock().date()
        )

        if not bookings:
            logger.info("Check-In: no check-in scheduled for today")
            return True

        total = len(bookings)
        logger.info("Check-In: running procedure for mode %s with %d booking(s)", mode, total)

        if total > 1:
            logger.warning("Check-In: multiple events (%d) found for today, bookings may overlap", total)
            await self._notifier.send(f"Warning: {total} check-in events found for today")
            record_event(state.analytics, "multiple_checkins_warning", f"Count: {total}")

        await self._modes.set_mode(mode)
        logger.info("Check-In: mode set to %s", mode)

        if not program_locks:
            record_event(state.analytics, "checkin_success", f"Mode: {mode} (no lock programming)")
            if not self.config.notification_on_errors_only:
                await self._notifier.send(f"Successfully ran the Check-In procedure for mode {mode}")
            return True

        all_successful = True
        for number, booking in enumerate(bookings, start=1):
            booking_label = f" (booking {number}/{total})" if total > 1 else ""
            for lock in self.locks:
                result = await self._provisioner.program_code(state, lock, booking.door_code, booking.guest_name)
                if result:
                    logger.info("Check-In: lock %s programmed successfully%s", lock.name, booking_label)
                else:
                    logger.error("Check-In: programming lock %s failed%s", lock.name, booking_label)
                    await self._notifier.send(f"Check-In procedure failed for {lock.name}{booking_label}")
                    all_successful = False

        for lock in self.locks:
            await self._provisioner.validate_lock_state(state, lock, expected=total)

        if all_successful:
            logger.info("Check-In: procedure completed successfully")
            record_event(state.analytics, "checkin_success", f"Mode: {mode}, Bookings: {total}")
            if not self.config.notification_on_errors_only:
                if total > 1:
                    await self._notifier.send(f"Successfully ran the Check-In procedure for {total} bookings")
                else:
                    await self._notifier.send(f"Successfully ran the Check-In procedure for mode {mode}")
        else:
            record_event(state.analytics, "checkin_failed", f"Lock programming failed, Bookings: {total}")
        return all_successful

    async def _run_checkin(
        self, state: AutomatorState, label: str, mode: Optional[str], force_override: bool, program_locks: bool
    ) -> bool:
        try:
            if not mode:
                logger.error("%s: mode is not configured", label)
                await self._notifier.send(f"{label} failed: Mode not configured. Please check settings.")
                record_event(state.analytics, "checkin_failed", f"{label}: mode not configured")
                return False
            return await self.process_checkin_event(state, mode, force_override, program_locks)
        except Exception as e:
            logger.error("%s: error in procedure: %s", label, e)
            await self._notifier.send(f"Failed to run the {label} procedure due to error")
            record_event(state.analytics, "checkin_failed", f"{label} exception: {e}")
            return False

    async def checkin_procedure(self, state: AutomatorState, force_override: bool = False) -> bool:
        """Check-in: set the check-in mode and program codes unless prep already did."""
        return await self._run_checkin(
            state,
            "Check-In",
            self.config.checkin_mode,
            force_override,
            not self.config.program_locks_at_checkin_prep,
        )

    async def checkin_prep_procedure(self, state: AutomatorState, force_override: bool = False) -> bool:
        """Check-in prep: set the prep mode and program codes early if configured."""
        return await self._run_checkin(
            state,
            "Check-In Prep",
            self.config.prep_mode,
            force_override,
            self.config.program_locks_at_checkin_prep,
        )

    # Check-out

    async def _delete_all_own_codes(self, state: AutomatorState, lock: LockDevice) -> bool:
        deleted = 0
        while await self._provisioner.find_own_code_slots(lock):
            result = await self._provisioner.delete_code(state, lock)
            if not result:
                logger.error("Check-Out: deleting code on %s failed after retries", lock.name)
                await self._notifier.send(f"Check-Out procedure failed for {lock.name}")
                return False
            deleted += 1
            if deleted >= self.MAX_CHECKOUT_DELETES:
                logger.warning("Check-Out: deleted %d codes from %s, stopping", deleted, lock.name)
                break
        if deleted:
            logger.info("Check-Out: deleted %d code(s) from %s", deleted, lock.name)
        return True

    async def checkout_procedure(self, state: AutomatorState, force_override: bool = False) -> bool:
        """Check-out: set the check-out mode and remove this system's codes from every lock.

        A safety cleanup is always scheduled once check-out has run, whether
        or not the deletions succeeded.
        """
        try:
            mode = self.config.checkout_mode
            if not mode:
                logger.error("Check-Out: mode is not configured")
                await self._notifier.send("Check-Out failed: Mode not configured. Please check settings.")
                record_event(state.analytics, "checkout_failed", "Mode not configured")
                self.scheduler.schedule_safety_cleanup()
                return False

            events = await self._fetcher.fetch(state, self.config.calendar_url)
            checkouts = find_all_checkout_events(
                events, self._expected_summary, force_override, today=self._clock().date()
            )
            if not checkouts:
                logger.info("Check-Out: no check-out scheduled for today")
                return True
            if not force_override:
                state.schedule.checkout_executed_on = self._clock().date()

            total = len(checkouts)
            logger.info("Check-Out: running procedure for %d booking(s)", total)
            if total > 1:
                logger.warning("Check-Out: multiple events (%d) found for today, bookings may overlap", total)
                await self._notifier.send(f"Warning: {total} check-out events found for today")
                record_event(state.analytics, "multiple_checkouts_warning", f"Count: {total}")

            await self._modes.set_mode(mode)
            logger.info("Check-Out: mode set to %s", mode)

            all_successful = True
            for lock in self.locks:
                if not await self._delete_all_own_codes(state, lock):
                    all_successful = False

            # Sweep anything left behind (duplicates, late arrivals)
            await asyncio.sleep(self._checkout_settle_seconds)
            for lock in self.locks:
                remaining = await self._provisioner.find_own_code_slots(lock)
                if remaining:
                    logger.warning("Check-Out: found %d lingering code(s) on %s, cleaning up", len(remaining), lock.name)
                    for slot in remaining:
                        await self._provisioner.force_delete(state, lock, slot)

            self.scheduler.schedule_safety_cleanup()

            if all_successful:
                logger.info("Check-Out: procedure completed successfully")
                record_event(state.analytics, "checkout_success", f"Mode: {mode}, Bookings: {total}")
                if not self.config.notification_on_errors_only:
                    if total > 1:
                        await self._notifier.send(f"Successfully ran the Check-Out procedure for {total} bookings")
                    else:
                        await self._notifier.send("Successfully ran the Check-Out procedure")
            else:
                logger.error("Check-Out: lock deletion failed for one or more locks")
                record_event(state.analytics, "checkout_failed", f"Lock deletion failed, Bookings: {total}")
            return all_successful
        except Exception as e:
            logger.error("Check-Out: error in procedure: %s", e)
            await self._notifier.send("Failed to run the Check-Out procedure due to error")
            record_event(state.analytics, "checkout_failed", f"Exception: {e}")
            self.scheduler.schedule_safety_cleanup()
            return False

    async def safety_code_cleanup(self, state: AutomatorState) -> int:
        """Remove lingering codes an hour after check-out.

        Skipped when a guest checks in today, since their code is legitimate.

        Returns:
            Number of codes removed
        """
        logger.info("Safety cleanup: running")
        try:
            events = await self._fetcher.fetch(state, self.config.calendar_url)
            if find_all_checkin_events(events, self._expected_summary, today=self._clock().date()):
                logger.debug("Safety cleanup: check-in scheduled for today, skipping")
                return 0

            removed = 0
            for lock in self.locks:
                slots = await self._provisioner.find_own_code_slots(lock)
                if slots:
                    logger.warning("Safety cleanup: found %d lingering code(s) on %s", len(slots), lock.name)
                for slot in slots:
                    await self._provisioner.force_delete(state, lock, slot)
                    removed += 1

            if removed:
                logger.info("Safety cleanup: removed %d lingering code(s)", removed)
                record_event(state.analytics, "safety_cleanup_success", f"Codes removed: {removed}")
                await self._notifier.send(f"Safety cleanup removed {removed} lingering door code(s)")
            else:
                logger.debug("Safety cleanup: no lingering codes found")
                record_event(state.analytics, "safety_cleanup_success", "No codes to remove")
            return removed
        except Exception as e:
            logger.error("Safety cleanup: error - %s", e)
            record_event(state.analytics, "safety_cleanup_failed", f"Exception: {e}")
            return 0

    # Device events

    async def lock_code_changed(self, lock_id: str, value: Optional[str]) -> None:
        """Handle a code-change report from a lock."""
        logger.debug("Lock event: code change received - %s - %s", lock_id, value)
        # A procedure waiting on this lock holds the pending entry in its open state
        for state in reversed(self._open_states):
            if lock_id in state.pending_lock_operations:
                self._provisioner.handle_code_event(state, lock_id, value)
                return
        async with self.invocation() as state:
            self._provisioner.handle_code_event(state, lock_id, value)

    # Control actions

    async def enable_automation(self) -> None:
        async with self.invocation() as state:
            await self.scheduler.enable(state)
        await self._flags.set(AUTOMATION_ENABLED, True)

    async def disable_automation(self) -> None:
        self.scheduler.disable()
        await self._flags.set(AUTOMATION_ENABLED, False)

    async def toggle_automation(self) -> bool:
        """Flip automation on or off and return the new setting."""
        await self._flags.set(TEST_CALENDAR, False)
        if await self._flags.get(AUTOMATION_ENABLED, False):
            await self.disable_automation()
            return False
        await self.enable_automation()
        return True

    async def run_checkin(self, force_override: bool = False) -> bool:
        async with self.invocation() as state:
            return await self.checkin_procedure(state, force_override)

    async def run_checkin_prep(self, force_override: bool = False) -> bool:
        async with self.invocation() as state:
            return await self.checkin_prep_procedure(state, force_override)

    async def run_checkout(self, force_override: bool = False) -> bool:
        async with self.invocation() as state:
            return await self.checkout_procedure(state, force_override)

    async def test_door_lock_programming(self) -> dict[str, bool]:
        """Program a test code on every lock and report which succeeded."""
        results: dict[str, bool] = {}
        async with self.invocation() as state:
            for lock in self.locks:
                result = await self._provisioner.program_code(state, lock, TEST_LOCK_CODE, TEST_GUEST_NAME)
                logger.info("Lock test: programming %s for %s", "succeeded" if result else "failed", lock.name)
                results[lock.name] = result.success
        return results

    async def test_calendar_url(self) -> bool:
        async with self.invocation() as state:
            return await self._fetcher.test_calendar_url(state, self.config.calendar_url)

    async def poll_for_updates(self) -> None:
        async with self.invocation() as state:
            await self.scheduler.poll_for_updates(state)

    async def send_test_notification(self) -> None:
        await self._notifier.send("This is a test notification")

    async def reset_analytics(self) -> None:
        async with self.invocation() as state:
            analytics.reset(state.analytics)
        logger.info("Analytics: all data has been reset")

    async def get_analytics(self) -> dict[str, Any]:
        state = await self._snapshots.load()
        return analytics.summarize(state.analytics)

    async def get_status(self) -> dict[str, Any]:
        state = await self._snapshots.load()
        schedule = state.schedule
        return {
            "automation_enabled": bool(await self._flags.get(AUTOMATION_ENABLED, False)),
            "configuration_valid": state.configuration_valid,
            "calendar_url_ok": await self._flags.get(TEST_CALENDAR_URL_STATE),
            "calendar_format": self.config.calendar_format.value,
            "exact_times": self.scheduler.uses_exact_times,
            "exact_checkin": schedule.exact_checkin.isoformat() if schedule.exact_checkin else None,
            "exact_checkout": schedule.exact_checkout.isoformat() if schedule.exact_checkout else None,
            "last_calendar_fetch": schedule.last_calendar_fetch,
            "cached_events": len(schedule.cached_events) if schedule.cached_events is not None else None,
            "locks": [lock.name for lock in self.locks],
            "pending_lock_operations": {
                lock_id: pending.operation.value
                for lock_id, pending in state.pending_lock_operations.items()
            },
            "jobs": self.scheduler.get_scheduled_jobs(),
        }

    async def health_check(self) -> dict[str, Any]:
        ha_ok = await self._ha_client.health_check() if self._ha_client else None
        return {"status": "ok", "home_assistant": ha_ok}
