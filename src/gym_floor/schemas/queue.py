"""Queue Pydantic schemas."""
from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict

from gym_floor.models.queue import QueueState


class QueueEntryResponse(BaseModel):
    """A queue entry as returned by the API."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    equipment_id: str
    consumer_id: str
    position: int
    state: QueueState
    joined_at: datetime
    notified_at: datetime | None = None
    claim_expires_at: datetime | None = None


class QueuePositionResponse(BaseModel):
    """The caller's place in line with an advisory wait estimate."""

    model_config = ConfigDict(from_attributes=True)

    entry_id: str
    equipment_id: str
    consumer_id: str
    position: int
    state: QueueState
    queue_length: int
    joined_at: datetime
    notified_at: datetime | None = None
    claim_expires_at: datetime | None = None
    estimated_wait_minutes: float
