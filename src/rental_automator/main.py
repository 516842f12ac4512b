"""Main application entry point."""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from rental_automator import __version__
from rental_automator.api.routes import router as api_router, set_automator
from rental_automator.config import settings
from rental_automator.core.manager import RentalAutomator
from rental_automator.db.database import Database

# Configure logging
logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Global automator instance
automator: Optional[RentalAutomator] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    global automator

    logger.info("Starting rental automator application...")

    database = Database(settings.database_url)
    await database.init_db()

    automator = RentalAutomator.from_settings(settings, database)
    set_automator(automator)
    await automator.start()

    logger.info("Application started successfully")

    yield

    logger.info("Shutting down rental automator application...")
    await automator.stop()
    set_automator(None)
    await database.close()
    logger.info("Application shutdown complete")


app = FastAPI(
    title="Rental Automator",
    description="Calendar-driven check-in and check-out automation for rental properties",
    version=__version__,
    lifespan=lifespan,
)

app.include_router(api_router, prefix="/api")


class LockCodePayload(BaseModel):
    """Payload from an HA automation reporting a lock code change."""

    entity_id: str
    value: Optional[str] = None


@app.post("/webhooks/lock-code")
async def webhook_lock_code(payload: LockCodePayload):
    """Receive lock code-change events from an HA automation.

    Mounted outside /api so automations can post to it directly; an
    alternative to the websocket listener.
    """
    if not automator:
        return JSONResponse(status_code=503, content={"error": "Automator not initialized"})
    await automator.lock_code_changed(payload.entity_id, payload.value)
    return {"received": True}


def main():
    """Run the application."""
    import uvicorn

    uvicorn.run(
        "rental_automator.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )


if __name__ == "__main__":
    main()
