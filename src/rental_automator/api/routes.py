"""API routes for the rental automator."""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException

from rental_automator.config import settings
from rental_automator.core.manager import RentalAutomator

router = APIRouter()

# Dependency to get the automator instance
_automator: Optional[RentalAutomator] = None


def get_automator() -> RentalAutomator:
    if _automator is None:
        raise HTTPException(status_code=500, detail="Automator not initialized")
    return _automator


def set_automator(automator: Optional[RentalAutomator]) -> None:
    global _automator
    _automator = automator


# Health and status endpoints


@router.get("/health")
async def health_check(automator: RentalAutomator = Depends(get_automator)):
    """Check the health of the service and Home Assistant."""
    return await automator.health_check()


@router.get("/status")
async def get_status(automator: RentalAutomator = Depends(get_automator)):
    """Automation state, schedule and calendar status."""
    return await automator.get_status()


@router.get("/analytics")
async def get_analytics(automator: RentalAutomator = Depends(get_automator)):
    return await automator.get_analytics()


@router.post("/analytics/reset")
async def reset_analytics(automator: RentalAutomator = Depends(get_automator)):
    await automator.reset_analytics()
    return {"reset": True}


# Automation


@router.post("/automation/toggle")
async def toggle_automation(automator: RentalAutomator = Depends(get_automator)):
    enabled = await automator.toggle_automation()
    return {"automation_enabled": enabled}


@router.post("/automation/enable")
async def enable_automation(automator: RentalAutomator = Depends(get_automator)):
    await automator.enable_automation()
    return {"automation_enabled": True}


@router.post("/automation/disable")
async def disable_automation(automator: RentalAutomator = Depends(get_automator)):
    await automator.disable_automation()
    return {"automation_enabled": False}


# Test actions


@router.post("/test/calendar")
async def test_calendar(automator: RentalAutomator = Depends(get_automator)):
    """Fetch the configured calendar URL now, bypassing the rate limit."""
    return {"success": await automator.test_calendar_url()}


@router.post("/test/checkin-prep")
async def test_checkin_prep(automator: RentalAutomator = Depends(get_automator)):
    success = await automator.run_checkin_prep(force_override=settings.force_event_override)
    return {"success": success}


@router.post("/test/checkin")
async def test_checkin(automator: RentalAutomator = Depends(get_automator)):
    success = await automator.run_checkin(force_override=settings.force_event_override)
    return {"success": success}


@router.post("/test/checkout")
async def test_checkout(automator: RentalAutomator = Depends(get_automator)):
    success = await automator.run_checkout(force_override=settings.force_event_override)
    return {"success": success}


@router.post("/test/lock-programming")
async def test_lock_programming(automator: RentalAutomator = Depends(get_automator)):
    """Program the test code on every lock."""
    return {"results": await automator.test_door_lock_programming()}


@router.post("/test/polling")
async def test_polling(automator: RentalAutomator = Depends(get_automator)):
    await automator.poll_for_updates()
    return {"polled": True}


@router.post("/test/notification")
async def test_notification(automator: RentalAutomator = Depends(get_automator)):
    await automator.send_test_notification()
    return {"sent": True}
