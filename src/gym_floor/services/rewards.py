"""One-way hook into the points/rewards service after a session closes."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from gym_floor.core.settings import Settings
from gym_floor.services.notifications import BackgroundDispatcher

logger = logging.getLogger(__name__)

SESSION_COMPLETED_PATH = "/points/session-completed"


class RewardsHook:
    """Posts completed sessions to the rewards service without waiting for it."""

    def __init__(
        self,
        client: httpx.Client,
        base_url: str,
        dispatcher: BackgroundDispatcher,
    ) -> None:
        self._client = client
        self._url = base_url.rstrip("/") + SESSION_COMPLETED_PATH
        self._dispatcher = dispatcher

    def session_completed(
        self,
        *,
        consumer_id: str,
        session_id: str,
        equipment_id: str,
        calories: int,
        duration_seconds: int,
    ) -> None:
        """Queue the award call; delivery failures are only logged."""
        payload = {
            "member_id": consumer_id,
            "session_id": session_id,
            "equipment_id": equipment_id,
            "calories_burned": calories,
            "duration_seconds": duration_seconds,
        }
        self._dispatcher.submit("rewards", self._post, payload)

    def _post(self, payload: dict[str, Any]) -> None:
        response = self._client.post(self._url, json=payload)
        response.raise_for_status()
        logger.info("Rewards recorded for session %s", payload["session_id"])

    def close(self) -> None:
        self._client.close()


def build_rewards_hook(config: Settings, dispatcher: BackgroundDispatcher) -> RewardsHook | None:
    """Return the hook when ``REWARDS_BASE_URL`` is configured."""
    if not config.rewards_base_url:
        return None
    client = httpx.Client(timeout=config.rewards_http_timeout_seconds)
    return RewardsHook(client, config.rewards_base_url, dispatcher)
