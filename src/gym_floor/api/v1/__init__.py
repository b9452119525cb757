"""Version 1 API endpoints."""

from .endpoints import (
    analytics_router,
    equipment_router,
    queue_router,
    realtime_router,
    sessions_router,
)

__all__ = [
    "equipment_router",
    "sessions_router",
    "queue_router",
    "analytics_router",
    "realtime_router",
]
