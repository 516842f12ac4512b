"""Analytics counters, recent events and retry statistics."""

from datetime import datetime
from typing import Any, Optional

from rental_automator.db.state import (
    RETRY_OPERATIONS,
    AnalyticsEvent,
    AnalyticsState,
    RetryStatistics,
)

MAX_RECENT_EVENTS = 20

# Event types that bump a counter of the same name
COUNTED_EVENTS = (
    "checkin_success",
    "checkin_failed",
    "checkout_success",
    "checkout_failed",
    "lock_program_success",
    "lock_program_failed",
    "lock_delete_success",
    "lock_delete_failed",
)


def record_event(
    analytics: AnalyticsState,
    event_type: str,
    details: str = "",
    now: Optional[datetime] = None,
) -> None:
    """Record an analytics event and update the matching counter."""
    timestamp = (now or datetime.now()).strftime("%Y-%m-%d %H:%M:%S")

    if event_type in COUNTED_EVENTS:
        analytics.counters[event_type] = analytics.counters.get(event_type, 0) + 1
    if event_type == "checkin_success":
        analytics.last_checkin = timestamp
    elif event_type == "checkout_success":
        analytics.last_checkout = timestamp

    analytics.recent_events.insert(
        0, AnalyticsEvent(timestamp=timestamp, type=event_type, details=details)
    )
    del analytics.recent_events[MAX_RECENT_EVENTS:]


def record_retry_stats(
    analytics: AnalyticsState, operation: str, attempts: int, success: bool
) -> None:
    """Update the aggregate retry statistics for a terminal outcome.

    Only used for reporting; nothing reads these back to alter behaviour.
    """
    stats = analytics.retry.setdefault(operation, RetryStatistics())
    if success:
        stats.successes += 1
        stats.attempt_total += attempts
        if attempts == 1:
            stats.first_try_successes += 1
    else:
        stats.failures += 1


def success_rate(success_count: int, failed_count: int) -> Optional[float]:
    """Success percentage rounded to one decimal, or None with no data."""
    total = success_count + failed_count
    if total == 0:
        return None
    return round(success_count / total * 100, 1)


def summarize(analytics: AnalyticsState) -> dict[str, Any]:
    """Summary of automation reliability for the status API."""
    counters = analytics.counters

    def pair(name: str) -> dict[str, Any]:
        success = counters.get(f"{name}_success", 0)
        failed = counters.get(f"{name}_failed", 0)
        return {"success": success, "failed": failed, "rate": success_rate(success, failed)}

    retry: dict[str, Any] = {}
    for op in RETRY_OPERATIONS:
        stats = analytics.retry.get(op, RetryStatistics())
        retry[op] = {
            **stats.model_dump(),
            "average_attempts": (
                round(stats.attempt_total / stats.successes, 1) if stats.successes else None
            ),
            "first_try_rate": (
                round(stats.first_try_successes / stats.successes * 100, 1)
                if stats.successes
                else None
            ),
        }

    return {
        "checkins": pair("checkin"),
        "checkouts": pair("checkout"),
        "lock_programming": pair("lock_program"),
        "lock_deletion": pair("lock_delete"),
        "retry": retry,
        "last_checkin": analytics.last_checkin,
        "last_checkout": analytics.last_checkout,
        "recent_events": [event.model_dump() for event in analytics.recent_events],
    }


def reset(analytics: AnalyticsState) -> None:
    """Clear all analytics in place."""
    fresh = AnalyticsState()
    analytics.counters = fresh.counters
    analytics.last_checkin = None
    analytics.last_checkout = None
    analytics.recent_events = fresh.recent_events
    analytics.retry = fresh.retry
