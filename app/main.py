from __future__ import annotations
import logging

from fastapi import FastAPI, status

from app.api.errors import register_exception_handlers
from app.api.v1.auth import router as auth_router
from app.api.v1.events import router as events_router
from app.api.v1.health import router as health_router
from app.api.v1.swaps import router as swaps_router
from app.config import settings
from app.core.swaps.factory import build_negotiation_engine

logging.basicConfig(level=settings.LOG_LEVEL.upper())
log = logging.getLogger(__name__)

description = """
Slot Swapper: trade calendar slots with other users.

Mark your events as swappable, browse other users' swappable slots and
propose an exchange. Accepting a proposal swaps the owners of both slots
atomically and withdraws any other pending proposal that involved them.
"""
tags_metadata = [
    {"name": "Authentication & Testing", "description": "Development login and current user."},
    {"name": "Events", "description": "My calendar slots."},
    {"name": "Swaps", "description": "Marketplace browsing and swap proposals."},
    {"name": "Health", "description": "Liveness and dependency checks."},
]

app = FastAPI(
    title="Slot Swapper API",
    description=description,
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_tags=tags_metadata,
)

# The engine lives exactly as long as this application instance
app.state.negotiation_engine = build_negotiation_engine()

register_exception_handlers(app)
app.include_router(auth_router)
app.include_router(events_router)
app.include_router(swaps_router)
app.include_router(health_router)

log.info("\U0001F331 FastAPI application configured. Environment: %s", settings.ENVIRONMENT)


@app.on_event("startup")
async def startup_event() -> None:
    log.info("\U0001F680 FastAPI application startup complete.")


@app.on_event("shutdown")
async def shutdown_event() -> None:
    await app.state.negotiation_engine.locks.close()
    log.info("\U0001F44B FastAPI application shutdown.")


@app.get("/healthz", tags=["Health"], status_code=status.HTTP_200_OK)
async def health_check():
    """Basic health check endpoint."""
    return {"status": "ok", "environment": settings.ENVIRONMENT}
