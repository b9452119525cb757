"""Usage session Pydantic schemas."""
from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ReleaseRequest(BaseModel):
    """Optional measurements reported when finishing a session."""

    heart_rate_avg: int | None = Field(None, ge=20, le=250)
    heart_rate_max: int | None = Field(None, ge=20, le=250)
    sets_completed: int | None = Field(None, ge=0)
    reps_completed: int | None = Field(None, ge=0)
    weight_used: float | None = Field(None, ge=0)
    sensor_data: dict[str, Any] | None = None


class ActivityRequest(BaseModel):
    """Periodic in-session telemetry sample."""

    heart_rate: int | None = Field(None, ge=20, le=250)
    heart_rate_max: int | None = Field(None, ge=20, le=250)
    sensor_data: dict[str, Any] | None = None


class UsageSessionResponse(BaseModel):
    """Schema for usage session information returned by the API."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    equipment_id: str
    consumer_id: str
    queue_entry_id: str | None = None
    started_at: datetime
    ended_at: datetime | None = None
    auto_end_at: datetime
    ended_by: str | None = None
    duration_seconds: int | None = None
    calories_burned: int | None = None
    heart_rate_avg: int | None = None
    heart_rate_max: int | None = None
    sets_completed: int | None = None
    reps_completed: int | None = None
    weight_used: float | None = None
    sensor_data: dict[str, Any] | None = None
    last_activity_at: datetime | None = None
