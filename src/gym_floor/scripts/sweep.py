# src/gym_floor/scripts/sweep.py
"""Run a single expiry sweep pass, for cron-driven deployments.

Usage:
  python -m gym_floor.scripts.sweep
"""
from __future__ import annotations

import argparse
import logging
import sys

from gym_floor.core.settings import settings
from gym_floor.services.coordinator import build_coordinator
from gym_floor.services.locks import build_equipment_lock
from gym_floor.services.notifications import (
    BackgroundDispatcher,
    ChannelFanout,
    RealtimeHub,
    build_push_channel,
)
from gym_floor.services.queue_cache import build_queue_cache
from gym_floor.services.rewards import build_rewards_hook
from gym_floor.services.sweeper import ExpirySweeper

logger = logging.getLogger("gym_floor.scripts.sweep")


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Enforce session and claim deadlines once")
    parser.add_argument("--log-level", default=settings.log_level, help="Logging level")
    args = parser.parse_args(argv)
    logging.basicConfig(level=args.log_level.upper())

    dispatcher = BackgroundDispatcher(settings.notification_workers)
    push = build_push_channel(settings)
    # No WebSocket clients live in this process; push is the only reachable channel.
    coordinator = build_coordinator(
        settings,
        notifier=ChannelFanout(RealtimeHub(), dispatcher, push),
        cache=build_queue_cache(settings),
        lock=build_equipment_lock(settings),
        rewards=build_rewards_hook(settings, dispatcher),
    )
    try:
        report = ExpirySweeper(coordinator).sweep_once()
    finally:
        dispatcher.shutdown(wait=True)
        if push is not None:
            push.close()
    logger.info(
        "released=%d expired_claims=%d warnings=%d",
        report.sessions_released,
        report.claims_expired,
        report.warnings_sent,
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
