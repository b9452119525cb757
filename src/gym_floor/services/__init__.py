"""Business logic services for the Gym Floor application."""

from .analytics import AnalyticsEstimator
from .coordinator import ContentionCoordinator, CoordinatorConfig, Measurements, build_coordinator
from .errors import ContentionError
from .notifications import BackgroundDispatcher, ChannelFanout, RealtimeHub
from .sweeper import ExpirySweeper, SweepReport

__all__ = [
    "AnalyticsEstimator",
    "BackgroundDispatcher",
    "ChannelFanout",
    "ContentionCoordinator",
    "ContentionError",
    "CoordinatorConfig",
    "ExpirySweeper",
    "Measurements",
    "RealtimeHub",
    "SweepReport",
    "build_coordinator",
]
