"""Advisory analytics endpoints for the Gym Floor API."""

from __future__ import annotations

from fastapi import APIRouter

from gym_floor.api.errors import ERROR_RESPONSES
from gym_floor.api.v1.dependencies import AnalyticsDep, SessionDep
from gym_floor.schemas.analytics import (
    AvailabilityResponse,
    PositionPredictionResponse,
    QueueAnalyticsResponse,
)

router = APIRouter(prefix="/analytics", tags=["analytics"], responses=ERROR_RESPONSES)


@router.get("/equipment/{equipment_id}/queue", response_model=QueueAnalyticsResponse)
def queue_analytics(
    equipment_id: str,
    analytics: AnalyticsDep,
    db: SessionDep,
) -> QueueAnalyticsResponse:
    """Queue with per-entry wait estimates and historical averages."""
    return QueueAnalyticsResponse.model_validate(analytics.queue_analytics(db, equipment_id))


@router.get("/equipment/{equipment_id}/availability", response_model=AvailabilityResponse)
def predict_availability(
    equipment_id: str,
    analytics: AnalyticsDep,
    db: SessionDep,
) -> AvailabilityResponse:
    return AvailabilityResponse.model_validate(analytics.predict_availability(db, equipment_id))


@router.get(
    "/equipment/{equipment_id}/positions/{position}",
    response_model=PositionPredictionResponse,
)
def predict_for_position(
    equipment_id: str,
    position: int,
    analytics: AnalyticsDep,
    db: SessionDep,
) -> PositionPredictionResponse:
    prediction = analytics.predict_for_position(db, equipment_id, position)
    return PositionPredictionResponse.model_validate(prediction)
