"""Analytics Pydantic schemas; every duration is in minutes."""
from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict

from gym_floor.models.equipment import EquipmentStatus
from gym_floor.models.queue import QueueState


class OccupantResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    session_id: str
    consumer_id: str
    started_at: datetime
    auto_end_at: datetime
    remaining_minutes: float


class EntryEstimateResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    entry_id: str
    consumer_id: str
    position: int
    state: QueueState
    joined_at: datetime
    estimated_wait_minutes: float


class QueueAnalyticsResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    equipment_id: str
    status: EquipmentStatus
    queue_length: int
    average_duration_minutes: float
    average_wait_minutes: float
    history_size: int
    occupant: OccupantResponse | None = None
    entries: list[EntryEstimateResponse]


class AvailabilityResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    equipment_id: str
    status: EquipmentStatus
    available_now: bool
    predicted_available_at: datetime | None = None
    queue_length: int


class PositionPredictionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    equipment_id: str
    position: int
    estimated_wait_minutes: float
    predicted_start_at: datetime
