"""Real-time WebSocket rooms and push registration."""

from __future__ import annotations

import asyncio
import contextlib
import logging

from fastapi import (
    APIRouter,
    HTTPException,
    Response,
    WebSocket,
    WebSocketDisconnect,
    status,
)
from pydantic import BaseModel, Field

from gym_floor.api.v1.dependencies import (
    ConsumerDep,
    HubDep,
    PushDep,
    SocketConsumerDep,
)
from gym_floor.services.notifications import (
    RealtimeHub,
    Subscription,
    consumer_room,
    equipment_room,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/realtime", tags=["realtime"])


class PushTokenRegistration(BaseModel):
    token: str = Field(..., min_length=1, max_length=512)


async def _forward(websocket: WebSocket, subscription: Subscription) -> None:
    while True:
        message = await subscription.queue.get()
        await websocket.send_json(message)


async def _pump(websocket: WebSocket, hub: RealtimeHub, *rooms: str) -> None:
    # Subscribe before accepting so nothing published after the handshake is missed.
    subscription = hub.subscribe(*rooms)
    await websocket.accept()
    sender = asyncio.create_task(_forward(websocket, subscription))
    try:
        while True:
            # Client frames are ignored; receiving only detects the disconnect.
            await websocket.receive_text()
    except WebSocketDisconnect:
        logger.debug("Subscriber left %s", rooms)
    finally:
        sender.cancel()
        with contextlib.suppress(asyncio.CancelledError, WebSocketDisconnect, RuntimeError):
            await sender
        hub.unsubscribe(subscription)


@router.websocket("/equipment/{equipment_id}")
async def equipment_events(websocket: WebSocket, equipment_id: str, hub: HubDep) -> None:
    """Status, availability, queue and issue events for one equipment item."""
    await _pump(websocket, hub, equipment_room(equipment_id))


@router.websocket("/consumer")
async def consumer_events(
    websocket: WebSocket,
    consumer_id: SocketConsumerDep,
    hub: HubDep,
) -> None:
    """Directed events for the calling member (your turn, claim expired, session expiring).

    The room comes from the gateway's ``X-Consumer-Id`` header, never from the URL.
    """
    await _pump(websocket, hub, consumer_room(consumer_id))


@router.put("/push-token", status_code=status.HTTP_204_NO_CONTENT)
async def register_push_token(
    payload: PushTokenRegistration,
    consumer_id: ConsumerDep,
    push: PushDep,
) -> Response:
    """Remember the caller's device token for push delivery.

    Answers 503 when the deployment runs without a push channel,
    so clients know the token was not stored.
    """
    if push is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Push delivery is disabled",
        )
    push.register_token(consumer_id, payload.token)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
