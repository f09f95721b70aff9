"""Entry point for the telephony voice-lead bridge."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from api.admin_routes import router as admin_router
from api.dependencies import build_bridge
from api.routes import router as api_router
from api.twilio_routes import router as twilio_router
from config.settings import get_settings
from db.base import engine, init_db

LOGGER = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    LOGGER.info("Starting %s (%s)", settings.service_name, settings.environment)
    await init_db()
    bridge = build_bridge(settings)
    app.state.bridge = bridge
    try:
        await bridge.context_store.refresh(force=True)
    except Exception as exc:
        LOGGER.exception("Initial context load failed, retrying on first call: %s", exc)
    yield
    await bridge.aclose()
    await engine.dispose()


settings = get_settings()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

app = FastAPI(
    title="Voice Lead Bridge",
    description="Real-time phone receptionist bridging Twilio Media Streams to a dialogue model.",
    lifespan=lifespan,
)
app.include_router(api_router, prefix="/api")
app.include_router(twilio_router, prefix="/api")
app.include_router(admin_router)
