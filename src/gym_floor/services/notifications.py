"""Notification fan-out: real-time rooms and mobile push.

The coordinator and the sweeper talk to a :class:`NotificationFanout`. The
production implementation hands every delivery to a
:class:`BackgroundDispatcher` so the caller never waits on a channel, and a
failing channel is logged and forgotten.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from collections import defaultdict
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Protocol

import httpx

from gym_floor.core.settings import Settings

logger = logging.getLogger(__name__)

# Broadcast to equipment rooms
EVENT_STATUS_CHANGED = "equipment:status_changed"
EVENT_AVAILABLE = "equipment:available"
EVENT_ISSUE_REPORTED = "equipment:issue_reported"
EVENT_QUEUE_UPDATED = "queue:updated"
# Directed to a single member
EVENT_YOUR_TURN = "queue:your_turn"
EVENT_CLAIM_EXPIRED = "queue:expired"
EVENT_SESSION_EXPIRING = "session:expiring"

PUSH_MESSAGES: dict[str, tuple[str, str]] = {
    EVENT_YOUR_TURN: (
        "It's your turn",
        "{equipment_name} is ready for you. Claim it before {claim_expires_at}.",
    ),
    EVENT_CLAIM_EXPIRED: (
        "Your turn has passed",
        "You did not claim {equipment_name} in time and left the queue.",
    ),
    EVENT_SESSION_EXPIRING: (
        "Session ending soon",
        "Your session on {equipment_name} ends automatically at {auto_end_at}.",
    ),
}


def equipment_room(equipment_id: str) -> str:
    return f"equipment:{equipment_id}"


def consumer_room(consumer_id: str) -> str:
    return f"consumer:{consumer_id}"


class NotificationFanout(Protocol):
    """Fire-and-forget sink for contention events."""

    def publish_status_changed(self, equipment_id: str, status: str) -> None: ...

    def broadcast(self, equipment_id: str, event: str, payload: dict[str, Any]) -> None: ...

    def notify_consumer(self, consumer_id: str, event: str, payload: dict[str, Any]) -> None: ...


class BackgroundDispatcher:
    """Bounded worker pool that runs deliveries off the request thread."""

    def __init__(self, max_workers: int = 4) -> None:
        self._executor = ThreadPoolExecutor(
            max_workers=max(1, int(max_workers)),
            thread_name_prefix="gym-floor-dispatch",
        )

    def submit(
        self,
        label: str,
        fn: Callable[..., Any],
        *args: Any,
        **kwargs: Any,
    ) -> Future[None] | None:
        """Schedule ``fn``; failures are logged under ``label``."""
        try:
            return self._executor.submit(self._run, label, fn, args, kwargs)
        except RuntimeError:
            logger.warning("Dropped %s delivery: dispatcher is shut down", label)
            return None

    @staticmethod
    def _run(
        label: str,
        fn: Callable[..., Any],
        args: tuple[Any, ...],
        kwargs: dict[str, Any],
    ) -> None:
        try:
            fn(*args, **kwargs)
        except Exception:
            logger.warning("%s delivery failed", label, exc_info=True)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)


@dataclass(eq=False)
class Subscription:
    """A WebSocket client's view of one or more rooms."""

    rooms: tuple[str, ...]
    loop: asyncio.AbstractEventLoop
    queue: asyncio.Queue[dict[str, Any]] = field(default_factory=lambda: asyncio.Queue(maxsize=100))


class RealtimeHub:
    """In-process room registry feeding WebSocket subscribers.

    ``publish`` may be called from any thread; messages are handed to each
    subscriber's event loop with ``call_soon_threadsafe``.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._rooms: dict[str, set[Subscription]] = defaultdict(set)

    def subscribe(self, *rooms: str) -> Subscription:
        """Register a subscriber on the running event loop."""
        subscription = Subscription(rooms=rooms, loop=asyncio.get_running_loop())
        with self._lock:
            for room in rooms:
                self._rooms[room].add(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        with self._lock:
            for room in subscription.rooms:
                members = self._rooms.get(room)
                if members is None:
                    continue
                members.discard(subscription)
                if not members:
                    del self._rooms[room]

    def subscriber_count(self, room: str) -> int:
        with self._lock:
            return len(self._rooms.get(room, ()))

    def publish(self, room: str, event: str, payload: dict[str, Any]) -> int:
        """Deliver an event to every subscriber of ``room``; returns the fan-out size."""
        message = {"event": event, "room": room, "data": payload}
        with self._lock:
            targets = list(self._rooms.get(room, ()))
        delivered = 0
        for subscription in targets:
            try:
                subscription.loop.call_soon_threadsafe(_offer, subscription, message)
            except RuntimeError:
                # Event loop already closed; the socket is gone.
                self.unsubscribe(subscription)
                continue
            delivered += 1
        return delivered


def _offer(subscription: Subscription, message: dict[str, Any]) -> None:
    try:
        subscription.queue.put_nowait(message)
    except asyncio.QueueFull:
        logger.warning(
            "Dropping %s for slow subscriber on %s",
            message["event"],
            subscription.rooms,
        )


class _Blank(dict[str, Any]):
    def __missing__(self, key: str) -> str:
        return ""


class PushChannel:
    """Mobile push delivery through an Expo-compatible HTTP API."""

    def __init__(self, client: httpx.Client, api_url: str) -> None:
        self._client = client
        self._api_url = api_url
        self._lock = threading.Lock()
        self._tokens: dict[str, str] = {}

    def register_token(self, consumer_id: str, token: str) -> None:
        with self._lock:
            self._tokens[consumer_id] = token

    def forget_token(self, consumer_id: str) -> None:
        with self._lock:
            self._tokens.pop(consumer_id, None)

    def token_for(self, consumer_id: str) -> str | None:
        with self._lock:
            return self._tokens.get(consumer_id)

    def send(self, consumer_id: str, event: str, payload: dict[str, Any]) -> bool:
        """Push a directed event to the member's device, if one is registered."""
        template = PUSH_MESSAGES.get(event)
        token = self.token_for(consumer_id)
        if template is None or token is None:
            return False
        title, body = template
        message = {
            "to": token,
            "sound": "default",
            "title": title,
            "body": body.format_map(_Blank(payload)),
            "data": {"type": event, **payload},
        }
        try:
            response = self._client.post(self._api_url, json=message)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.warning("Push delivery of %s to %s failed: %s", event, consumer_id, exc)
            return False
        ticket = response.json().get("data") or {}
        if isinstance(ticket, dict) and ticket.get("status") == "error":
            logger.warning(
                "Push provider rejected %s for %s: %s",
                event,
                consumer_id,
                ticket.get("message"),
            )
            return False
        return True

    def close(self) -> None:
        self._client.close()


class ChannelFanout:
    """Production fan-out over the real-time hub and, optionally, push."""

    def __init__(
        self,
        hub: RealtimeHub,
        dispatcher: BackgroundDispatcher,
        push: PushChannel | None = None,
    ) -> None:
        self.hub = hub
        self.push = push
        self._dispatcher = dispatcher

    def publish_status_changed(self, equipment_id: str, status: str) -> None:
        payload = {"equipment_id": equipment_id, "status": status}
        self.broadcast(equipment_id, EVENT_STATUS_CHANGED, payload)

    def broadcast(self, equipment_id: str, event: str, payload: dict[str, Any]) -> None:
        room = equipment_room(equipment_id)
        self._dispatcher.submit(event, self.hub.publish, room, event, payload)

    def notify_consumer(self, consumer_id: str, event: str, payload: dict[str, Any]) -> None:
        self._dispatcher.submit(event, self.hub.publish, consumer_room(consumer_id), event, payload)
        if self.push is not None:
            self._dispatcher.submit(f"push {event}", self.push.send, consumer_id, event, payload)


def build_push_channel(config: Settings) -> PushChannel | None:
    """Return the push channel when ``PUSH_ENABLED`` is set."""
    if not config.push_enabled:
        return None
    client = httpx.Client(timeout=config.push_http_timeout_seconds)
    return PushChannel(client, config.push_api_url)
