# src/gym_floor/main.py
"""Main entry point for the Gym Floor application."""

from __future__ import annotations

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware

from gym_floor.api.errors import contention_error_handler
from gym_floor.api.v1 import (
    analytics_router,
    equipment_router,
    queue_router,
    realtime_router,
    sessions_router,
)
from gym_floor.core.settings import settings
from gym_floor.services.coordinator import build_coordinator
from gym_floor.services.errors import ContentionError
from gym_floor.services.locks import build_equipment_lock
from gym_floor.services.notifications import (
    BackgroundDispatcher,
    ChannelFanout,
    PushChannel,
    RealtimeHub,
    build_push_channel,
)
from gym_floor.services.queue_cache import build_queue_cache
from gym_floor.services.rewards import RewardsHook, build_rewards_hook
from gym_floor.services.sweeper import ExpirySweeper

logger = logging.getLogger(__name__)

DESCRIPTION = "Exclusive equipment claims, FIFO queues and claim timeouts for the gym floor"

# Initialize FastAPI app
app = FastAPI(
    title=settings.app_name,
    description=DESCRIPTION,
    version=settings.app_version,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=settings.cors_allow_credentials,
    allow_methods=settings.cors_allow_methods,
    allow_headers=settings.cors_allow_headers,
)

# Add GZip middleware for compression
app.add_middleware(GZipMiddleware)

app.add_exception_handler(ContentionError, contention_error_handler)

# Include API routers
app.include_router(equipment_router, prefix="/api/v1")
app.include_router(sessions_router, prefix="/api/v1")
app.include_router(queue_router, prefix="/api/v1")
app.include_router(analytics_router, prefix="/api/v1")
app.include_router(realtime_router, prefix="/api/v1")


def configure_logging() -> None:
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@app.on_event("startup")
async def on_startup() -> None:
    configure_logging()
    dispatcher = BackgroundDispatcher(settings.notification_workers)
    hub = RealtimeHub()
    push = build_push_channel(settings)
    coordinator = build_coordinator(
        settings,
        notifier=ChannelFanout(hub, dispatcher, push),
        cache=build_queue_cache(settings),
        lock=build_equipment_lock(settings),
        rewards=build_rewards_hook(settings, dispatcher),
    )
    app.state.dispatcher = dispatcher
    app.state.hub = hub
    app.state.push = push
    app.state.coordinator = coordinator

    if settings.sweeper_enabled:
        sweeper = ExpirySweeper(coordinator)
        await sweeper.start()
        app.state.sweeper = sweeper
    else:
        app.state.sweeper = None
    logger.info("%s %s started", settings.app_name, settings.app_version)


@app.on_event("shutdown")
async def on_shutdown() -> None:
    sweeper: ExpirySweeper | None = getattr(app.state, "sweeper", None)
    if sweeper:
        await sweeper.stop()
    dispatcher: BackgroundDispatcher | None = getattr(app.state, "dispatcher", None)
    if dispatcher:
        dispatcher.shutdown(wait=True)
    push: PushChannel | None = getattr(app.state, "push", None)
    if push:
        push.close()
    coordinator = getattr(app.state, "coordinator", None)
    rewards: RewardsHook | None = getattr(coordinator, "rewards", None)
    if rewards:
        rewards.close()


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint to verify the service is running."""
    return {"status": "ok"}


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint with basic information about the API."""
    return {
        "name": settings.app_name,
        "version": settings.app_version,
        "description": DESCRIPTION,
        "docs": "/docs",
        "redoc": "/redoc",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("gym_floor.main:app", host="0.0.0.0", port=8000, reload=settings.debug)
