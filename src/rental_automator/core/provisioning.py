"""Lock code provisioning with retry and read-back verification."""

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Optional

from rental_automator.core.analytics import record_event, record_retry_stats
from rental_automator.core.code_manager import (
    DEFAULT_MAX_SLOTS,
    build_code_label,
    is_own_label,
    mask_code,
    next_free_slot,
    normalize_code_table,
    own_code_slots,
    slot_holds_code,
)
from rental_automator.core.devices import LockDevice, Notifier
from rental_automator.db.state import AutomatorState, LockOperation, PendingLockOperation

logger = logging.getLogger(__name__)


class AttemptStep(str, Enum):
    """What the action of a single attempt decided."""

    PROCEED = "proceed"  # command sent (or tried), settle and verify
    SATISFIED = "satisfied"  # desired state already holds
    ABORT = "abort"  # cannot proceed at all, do not retry


class ProvisionOutcome(str, Enum):
    VERIFIED = "verified"
    ALREADY_SATISFIED = "already_satisfied"
    VERIFICATION_FAILED = "verification_failed"
    NO_FREE_SLOT = "no_free_slot"


@dataclass
class ProvisionResult:
    """Result of a provisioning operation."""

    success: bool
    outcome: ProvisionOutcome
    attempts: int = 0
    slot: Optional[int] = None

    def __bool__(self) -> bool:
        return self.success


class LockProvisioner:
    """Programs and deletes this system's codes on keypad locks.

    Wireless lock commands are slow and lossy, so every mutation is followed
    by a settle delay and a re-read of the live code table. Up to
    max_attempts are made; the first verified attempt wins.
    """

    MAX_ATTEMPTS = 3
    SETTLE_SECONDS = 10.0

    def __init__(
        self,
        notifier: Notifier,
        settle_seconds: float = SETTLE_SECONDS,
        max_attempts: int = MAX_ATTEMPTS,
        clock: Callable[[], float] = time.time,
    ):
        self._notifier = notifier
        self._settle_seconds = settle_seconds
        self._max_attempts = max_attempts
        self._clock = clock

    # Lock reads

    async def _read_codes(self, lock: LockDevice) -> Optional[dict[int, dict]]:
        """Live code table, or None if the lock did not report one."""
        try:
            codes = await lock.current_codes()
        except Exception as e:
            logger.warning("Code search: reading codes from %s failed: %s", lock.name, e)
            return None
        if codes is None:
            logger.warning("Code search: %s returned no lock codes (lock may be offline)", lock.name)
            return None
        return normalize_code_table(codes)

    async def _max_slots(self, lock: LockDevice) -> int:
        try:
            max_slots = await lock.current_max_slots()
        except Exception as e:
            logger.warning("Code slot search: reading max slots from %s failed: %s", lock.name, e)
            max_slots = None
        if max_slots is None:
            logger.warning(
                "Code slot search: %s does not report max slots; defaulting to %d",
                lock.name, DEFAULT_MAX_SLOTS,
            )
            return DEFAULT_MAX_SLOTS
        return int(max_slots)

    async def find_own_code_slots(self, lock: LockDevice) -> list[int]:
        """All slots on the lock holding a code written by this system."""
        table = await self._read_codes(lock)
        if table is None:
            return []
        slots = own_code_slots(table)
        logger.debug("Code search: found %d own code(s) on %s", len(slots), lock.name)
        return slots

    async def find_next_free_slot(self, lock: LockDevice) -> Optional[int]:
        """First unused slot on the lock, or None if it is full or unreadable."""
        table = await self._read_codes(lock)
        if table is None:
            return None
        slot = next_free_slot(table, await self._max_slots(lock))
        if slot is None:
            logger.warning("Code slot search: no available slots on %s", lock.name)
        return slot

    # Lock commands

    def _record_pending(self, state: AutomatorState, lock: LockDevice, operation: LockOperation) -> None:
        state.pending_lock_operations[lock.name] = PendingLockOperation(
            lock_id=lock.name, operation=operation, submitted_at=self._clock(),
        )
        logger.debug("Lock tracking: recorded pending %s for %s", operation.value, lock.name)

    async def _send_set_code(
        self, state: AutomatorState, lock: LockDevice, slot: int, code: str, label: str
    ) -> bool:
        logger.debug(
            "Lock command: programming %s at slot %d, code %s, label %s",
            lock.name, slot, mask_code(code), label,
        )
        self._record_pending(state, lock, LockOperation.PROGRAM)
        try:
            await lock.set_code(slot, code, label)
        except Exception as e:
            logger.error("Lock command: error programming code on %s: %s", lock.name, e)
            return False
        logger.info("Lock command: set_code sent to %s at slot %d", lock.name, slot)
        return True

    async def _send_delete_code(self, state: AutomatorState, lock: LockDevice, slot: int) -> bool:
        self._record_pending(state, lock, LockOperation.DELETE)
        try:
            await lock.delete_code(slot)
        except Exception as e:
            logger.error("Lock command: error deleting code on %s: %s", lock.name, e)
            return False
        logger.info("Lock command: delete_code sent to %s at slot %d", lock.name, slot)
        return True

    async def force_delete(self, state: AutomatorState, lock: LockDevice, slot: int) -> bool:
        """Delete a slot with a single command and no verification."""
        return await self._send_delete_code(state, lock, slot)

    # Retry engine

    async def attempt_with_retry(
        self,
        state: AutomatorState,
        operation_name: str,
        action: Callable[[], Awaitable[AttemptStep]],
        verify: Callable[[], Awaitable[bool]],
    ) -> ProvisionResult:
        """Run action/settle/verify until verified or attempts run out.

        Args:
            state: Invocation state receiving analytics
            operation_name: "lock_program" or "lock_delete"
            action: Performs the mutation for one attempt
            verify: Re-reads the device and reports whether the goal holds

        Returns:
            ProvisionResult with the number of attempts made
        """
        analytics = state.analytics

        for attempt in range(1, self._max_attempts + 1):
            step = await action()

            if step is AttemptStep.ABORT:
                logger.warning("Retry: %s cannot proceed; stopping", operation_name)
                record_event(analytics, f"{operation_name}_failed", "No free code slot")
                record_retry_stats(analytics, operation_name, self._max_attempts, False)
                return ProvisionResult(False, ProvisionOutcome.NO_FREE_SLOT, attempts=attempt)

            if step is AttemptStep.SATISFIED:
                logger.info("Retry: %s already satisfied on attempt %d", operation_name, attempt)
                record_event(analytics, f"{operation_name}_success", f"Attempt: {attempt} (already applied)")
                record_retry_stats(analytics, operation_name, attempt, True)
                return ProvisionResult(True, ProvisionOutcome.ALREADY_SATISFIED, attempts=attempt)

            await asyncio.sleep(self._settle_seconds)

            if await verify():
                logger.info("Retry: %s succeeded on attempt %d", operation_name, attempt)
                record_event(analytics, f"{operation_name}_success", f"Attempt: {attempt}")
                record_retry_stats(analytics, operation_name, attempt, True)
                return ProvisionResult(True, ProvisionOutcome.VERIFIED, attempts=attempt)

            logger.debug("Retry: %s attempt %d not verified", operation_name, attempt)

        logger.error("Retry: %s failed after %d attempts", operation_name, self._max_attempts)
        record_event(analytics, f"{operation_name}_failed", f"Retries: {self._max_attempts}")
        record_retry_stats(analytics, operation_name, self._max_attempts, False)
        return ProvisionResult(False, ProvisionOutcome.VERIFICATION_FAILED, attempts=self._max_attempts)

    async def program_code(
        self, state: AutomatorState, lock: LockDevice, code: str, guest_name: Optional[str]
    ) -> ProvisionResult:
        """Program a guest code into the first free slot of a lock."""
        label = build_code_label(guest_name)
        programmed_slot: Optional[int] = None

        async def action() -> AttemptStep:
            nonlocal programmed_slot
            table = await self._read_codes(lock)
            if table is None:
                # Nothing safe to write against; wait for the lock to report again
                return AttemptStep.PROCEED
            if slot_holds_code(table, code) is not None:
                return AttemptStep.SATISFIED
            slot = next_free_slot(table, await self._max_slots(lock))
            if slot is None:
                logger.warning("Lock programming: no available code slot on %s", lock.name)
                return AttemptStep.ABORT
            programmed_slot = slot
            await self._send_set_code(state, lock, slot, code, label)
            return AttemptStep.PROCEED

        async def verify() -> bool:
            table = await self._read_codes(lock)
            if table is None:
                return False
            if slot_holds_code(table, code) is not None:
                return True
            # Some locks never report code values; fall back to the label
            entry = table.get(programmed_slot) if programmed_slot is not None else None
            return bool(entry) and is_own_label(entry.get("name")) and not entry.get("code")

        result = await self.attempt_with_retry(state, "lock_program", action, verify)
        result.slot = programmed_slot
        if result.success:
            logger.info("Lock programming: %s confirmed (code %s)", lock.name, mask_code(code))
        else:
            logger.error("Lock programming: failed for %s (%s)", lock.name, result.outcome.value)
        return result

    async def delete_code(self, state: AutomatorState, lock: LockDevice) -> ProvisionResult:
        """Delete one of this system's codes from a lock.

        Succeeds immediately when the lock holds no such code.
        """
        slots = await self.find_own_code_slots(lock)
        if not slots:
            logger.debug("Lock deletion: %s has no own code, nothing to delete", lock.name)
            record_event(state.analytics, "lock_delete_success", f"Lock: {lock.name} (no code found)")
            return ProvisionResult(True, ProvisionOutcome.ALREADY_SATISFIED)

        target = slots[0]

        async def still_present() -> Optional[bool]:
            table = await self._read_codes(lock)
            if table is None:
                return None
            return target in own_code_slots(table)

        async def action() -> AttemptStep:
            if await still_present() is False:
                return AttemptStep.SATISFIED
            logger.debug("Lock deletion: %s at slot %d", lock.name, target)
            await self._send_delete_code(state, lock, target)
            return AttemptStep.PROCEED

        async def verify() -> bool:
            return await still_present() is False

        result = await self.attempt_with_retry(state, "lock_delete", action, verify)
        result.slot = target
        if result.success:
            logger.info("Lock deletion: %s slot %d confirmed removed", lock.name, target)
        else:
            logger.error("Lock deletion: failed for %s after retries", lock.name)
        return result

    async def validate_lock_state(self, state: AutomatorState, lock: LockDevice, expected: int = 1) -> bool:
        """Flag locks holding more of this system's codes than there are current bookings."""
        slots = await self.find_own_code_slots(lock)
        if len(slots) > expected:
            logger.warning("Lock validation: %d own codes on %s at slots %s", len(slots), lock.name, slots)
            await self._notifier.send(
                f"Warning: Duplicate codes detected on {lock.name}. Manual review recommended."
            )
            record_event(state.analytics, "lock_conflict_detected", f"Lock: {lock.name}, Slots: {slots}")
            return False
        return True

    # Device confirmations

    def handle_code_event(self, state: AutomatorState, lock_id: str, value: Optional[str]) -> None:
        """Correlate a device code-change report with the pending operation for that lock.

        Purely observational: the retry loop never waits on these events.
        """
        pending = state.pending_lock_operations.pop(lock_id, None)
        if pending is None:
            logger.debug("Lock event: %s unexpected code change - %s", lock_id, value)
            return

        text = value or ""
        if "set" in text or "added" in text:
            if pending.operation is LockOperation.PROGRAM:
                logger.debug("Lock event: %s code programming confirmed", lock_id)
                record_event(state.analytics, "lock_event_confirmed", f"Lock: {lock_id}, Operation: program")
        elif "deleted" in text or "removed" in text:
            if pending.operation is LockOperation.DELETE:
                logger.debug("Lock event: %s code deletion confirmed", lock_id)
                record_event(state.analytics, "lock_event_confirmed", f"Lock: {lock_id}, Operation: delete")
        elif "failed" in text:
            logger.warning("Lock event: %s operation failed - %s", lock_id, value)
            record_event(state.analytics, "lock_event_failed", f"Lock: {lock_id}, Value: {value}")
