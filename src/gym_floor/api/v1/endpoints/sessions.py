"""Usage session endpoints for the Gym Floor API."""

from __future__ import annotations

from fastapi import APIRouter

from gym_floor.api.errors import ERROR_RESPONSES
from gym_floor.api.v1.dependencies import ConsumerDep, CoordinatorDep, SessionDep
from gym_floor.schemas.usage import ActivityRequest, ReleaseRequest, UsageSessionResponse
from gym_floor.services.coordinator import Measurements

router = APIRouter(prefix="/sessions", tags=["sessions"], responses=ERROR_RESPONSES)


@router.post("/{session_id}/release", response_model=UsageSessionResponse)
def release_session(
    session_id: str,
    consumer_id: ConsumerDep,
    coordinator: CoordinatorDep,
    db: SessionDep,
    payload: ReleaseRequest | None = None,
) -> UsageSessionResponse:
    """Finish the caller's session; the next member in line is called."""
    measurements = Measurements(**payload.model_dump()) if payload else None
    usage = coordinator.release_resource(db, session_id, consumer_id, measurements)
    return UsageSessionResponse.model_validate(usage)


@router.post("/{session_id}/activity", response_model=UsageSessionResponse)
def record_activity(
    session_id: str,
    payload: ActivityRequest,
    consumer_id: ConsumerDep,
    coordinator: CoordinatorDep,
    db: SessionDep,
) -> UsageSessionResponse:
    """Fold a heart-rate / sensor sample into the open session."""
    usage = coordinator.record_activity(
        db,
        session_id,
        consumer_id,
        heart_rate=payload.heart_rate,
        heart_rate_max=payload.heart_rate_max,
        sensor_data=payload.sensor_data,
    )
    return UsageSessionResponse.model_validate(usage)
