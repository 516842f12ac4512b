"""Tests for the HTTP API routes."""

import httpx
import pytest
import pytest_asyncio
from fastapi import FastAPI

from rental_automator.api.routes import router, set_automator


class StubAutomator:
    def __init__(self):
        self.calls: list[tuple] = []
        self.enabled = False

    async def health_check(self):
        return {"status": "ok", "home_assistant": True}

    async def get_status(self):
        return {"automation_enabled": self.enabled}

    async def get_analytics(self):
        return {"checkins": {"success": 1, "failed": 0, "rate": 100.0}}

    async def reset_analytics(self):
        self.calls.append(("reset_analytics",))

    async def toggle_automation(self):
        self.enabled = not self.enabled
        return self.enabled

    async def enable_automation(self):
        self.enabled = True

    async def disable_automation(self):
        self.enabled = False

    async def test_calendar_url(self):
        return True

    async def run_checkin(self, force_override=False):
        self.calls.append(("checkin", force_override))
        return True

    async def run_checkin_prep(self, force_override=False):
        self.calls.append(("checkin_prep", force_override))
        return True

    async def run_checkout(self, force_override=False):
        self.calls.append(("checkout", force_override))
        return False

    async def test_door_lock_programming(self):
        return {"lock.front_door": True, "lock.back_door": False}

    async def poll_for_updates(self):
        self.calls.append(("poll",))

    async def send_test_notification(self):
        self.calls.append(("notify",))


@pytest.fixture
def automator():
    stub = StubAutomator()
    set_automator(stub)
    yield stub
    set_automator(None)


@pytest_asyncio.fixture
async def api():
    app = FastAPI()
    app.include_router(router, prefix="/api")
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as client:
        yield client


class TestRoutes:
    @pytest.mark.asyncio
    async def test_not_initialized(self, api):
        set_automator(None)

        response = await api.get("/api/status")

        assert response.status_code == 500
        assert response.json()["detail"] == "Automator not initialized"

    @pytest.mark.asyncio
    async def test_health_and_status(self, api, automator):
        assert (await api.get("/api/health")).json() == {"status": "ok", "home_assistant": True}
        assert (await api.get("/api/status")).json() == {"automation_enabled": False}
        assert (await api.get("/api/analytics")).json()["checkins"]["rate"] == 100.0

    @pytest.mark.asyncio
    async def test_automation_switches(self, api, automator):
        assert (await api.post("/api/automation/toggle")).json() == {"automation_enabled": True}
        assert (await api.post("/api/automation/disable")).json() == {"automation_enabled": False}
        assert automator.enabled is False
        assert (await api.post("/api/automation/enable")).json() == {"automation_enabled": True}
        assert automator.enabled is True

    @pytest.mark.asyncio
    async def test_procedures_use_force_override(self, api, automator):
        assert (await api.post("/api/test/checkin")).json() == {"success": True}
        assert (await api.post("/api/test/checkin-prep")).json() == {"success": True}
        assert (await api.post("/api/test/checkout")).json() == {"success": False}

        assert automator.calls == [("checkin", True), ("checkin_prep", True), ("checkout", True)]

    @pytest.mark.asyncio
    async def test_test_actions(self, api, automator):
        assert (await api.post("/api/test/calendar")).json() == {"success": True}
        assert (await api.post("/api/test/lock-programming")).json() == {
            "results": {"lock.front_door": True, "lock.back_door": False}
        }
        assert (await api.post("/api/test/polling")).json() == {"polled": True}
        assert (await api.post("/api/test/notification")).json() == {"sent": True}
        assert (await api.post("/api/analytics/reset")).json() == {"reset": True}

        assert automator.calls == [("poll",), ("notify",), ("reset_analytics",)]
