"""Shared API dependencies for caller identity and wired services."""

from typing import Annotated

from fastapi import (
    Depends,
    Header,
    HTTPException,
    Request,
    WebSocket,
    WebSocketException,
    status,
)
from sqlalchemy.orm import Session

from gym_floor.db.session import get_db
from gym_floor.services.analytics import AnalyticsEstimator
from gym_floor.services.coordinator import ContentionCoordinator
from gym_floor.services.notifications import PushChannel, RealtimeHub

# Type alias for database session dependency
SessionDep = Annotated[Session, Depends(get_db)]


def get_consumer_id(
    x_consumer_id: Annotated[str | None, Header()] = None,
) -> str:
    """Return the member id asserted by the authenticating gateway.

    Raises:
        HTTPException: If the header is missing or blank
    """
    if x_consumer_id is None or not x_consumer_id.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="X-Consumer-Id header required",
        )
    return x_consumer_id.strip()


def get_socket_consumer_id(
    x_consumer_id: Annotated[str | None, Header()] = None,
) -> str:
    """WebSocket counterpart of ``get_consumer_id``; closes with 1008 instead of 401."""
    if x_consumer_id is None or not x_consumer_id.strip():
        raise WebSocketException(
            code=status.WS_1008_POLICY_VIOLATION,
            reason="X-Consumer-Id header required",
        )
    return x_consumer_id.strip()


def get_coordinator(request: Request) -> ContentionCoordinator:
    """Return the coordinator wired at startup."""
    return request.app.state.coordinator


def get_analytics(
    coordinator: Annotated[ContentionCoordinator, Depends(get_coordinator)],
) -> AnalyticsEstimator:
    return coordinator.analytics


def get_hub(websocket: WebSocket) -> RealtimeHub:
    return websocket.app.state.hub


def get_push_channel(request: Request) -> PushChannel | None:
    return getattr(request.app.state, "push", None)


ConsumerDep = Annotated[str, Depends(get_consumer_id)]
SocketConsumerDep = Annotated[str, Depends(get_socket_consumer_id)]
CoordinatorDep = Annotated[ContentionCoordinator, Depends(get_coordinator)]
AnalyticsDep = Annotated[AnalyticsEstimator, Depends(get_analytics)]
HubDep = Annotated[RealtimeHub, Depends(get_hub)]
PushDep = Annotated[PushChannel | None, Depends(get_push_channel)]
