"""API endpoint modules for version 1 of the Gym Floor API."""

from .analytics import router as analytics_router
from .equipment import router as equipment_router
from .queue import router as queue_router
from .realtime import router as realtime_router
from .sessions import router as sessions_router

__all__ = [
    "analytics_router",
    "equipment_router",
    "queue_router",
    "realtime_router",
    "sessions_router",
]
