"""Persisted automator state and its schema migrations."""

import logging
from datetime import date, datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

# Current persisted-state schema version
#   1: initial release
#   2: analytics.recent_events, pending_lock_operations, configuration_valid
#   3: analytics.retry statistics per operation class
APP_VERSION = 3

RETRY_OPERATIONS = ("lock_program", "lock_delete")


class LockOperation(str, Enum):
    """Kind of lock command awaiting device confirmation."""

    PROGRAM = "program"
    DELETE = "delete"


class PendingLockOperation(BaseModel):
    """A lock command that was sent and not yet reported back by the device."""

    lock_id: str
    operation: LockOperation
    submitted_at: float


class RetryStatistics(BaseModel):
    """Monotonic counters for one class of retried lock operation."""

    successes: int = 0
    failures: int = 0
    attempt_total: int = 0
    first_try_successes: int = 0


class AnalyticsEvent(BaseModel):
    timestamp: str
    type: str
    details: str = ""


class AnalyticsState(BaseModel):
    counters: dict[str, int] = Field(default_factory=dict)
    last_checkin: Optional[str] = None
    last_checkout: Optional[str] = None
    recent_events: list[AnalyticsEvent] = Field(default_factory=list)
    retry: dict[str, RetryStatistics] = Field(
        default_factory=lambda: {op: RetryStatistics() for op in RETRY_OPERATIONS}
    )


class ScheduleState(BaseModel):
    """Calendar cache and exact-time anchors.

    cached_events only changes on a successful fetch so it can serve as
    the fallback when the feed is unavailable.
    """

    last_calendar_fetch: Optional[float] = None
    cached_events: Optional[list[dict[str, Any]]] = None
    exact_checkin: Optional[datetime] = None
    exact_checkout: Optional[datetime] = None
    # Day a scheduled check-out last ran; guards against re-running it
    checkout_executed_on: Optional[date] = None


class AutomatorState(BaseModel):
    """Everything loaded at the start of an invocation and saved at its end."""

    app_version: int = APP_VERSION
    configuration_valid: bool = True
    schedule: ScheduleState = Field(default_factory=ScheduleState)
    analytics: AnalyticsState = Field(default_factory=AnalyticsState)
    pending_lock_operations: dict[str, PendingLockOperation] = Field(default_factory=dict)


def migrate_state(data: dict[str, Any]) -> dict[str, Any]:
    """Bring a raw persisted state document up to APP_VERSION.

    Each step only adds missing structures, so running it against an
    already-migrated document is harmless.
    """
    state_version = data.get("app_version") or 1

    if state_version >= APP_VERSION:
        logger.debug("State migration: already current (version %d)", state_version)
        return data

    logger.info("State migration: migrating from version %d to %d", state_version, APP_VERSION)

    if state_version < 2:
        analytics = data.get("analytics")
        if analytics is not None and not analytics.get("recent_events"):
            analytics["recent_events"] = []
            logger.debug("State migration: added analytics.recent_events")
        if not data.get("pending_lock_operations"):
            data["pending_lock_operations"] = {}
            logger.debug("State migration: initialized pending_lock_operations")
        if data.get("configuration_valid") is None:
            data["configuration_valid"] = True
            logger.debug("State migration: set default configuration_valid")

    if state_version < 3:
        analytics = data.setdefault("analytics", {})
        retry = analytics.setdefault("retry", {})
        for op in RETRY_OPERATIONS:
            retry.setdefault(op, RetryStatistics().model_dump())
        logger.debug("State migration: ensured analytics.retry statistics")

    data["app_version"] = APP_VERSION
    logger.info("State migration: complete (now at version %d)", APP_VERSION)
    return data
