"""Entry point for the call matchmaking and signaling service."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from api.dependencies import get_directory
from api.routes import router as api_router
from api.ws import router as ws_router
from calls.engine import CallEngine
from config.settings import get_settings
from db.base import dispose_db, init_db


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_db()
    app.state.engine = CallEngine(get_directory(), settings=settings)
    yield
    await app.state.engine.close()
    await dispose_db()


settings = get_settings()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

app = FastAPI(
    title="Call Matchmaker",
    description="Presence, matchmaking, ringing, WebRTC signaling relay and call billing.",
    lifespan=lifespan,
)
app.include_router(api_router, prefix="/api")
app.include_router(ws_router)
