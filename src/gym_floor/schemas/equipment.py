"""Equipment-related Pydantic schemas."""
from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from gym_floor.models.equipment import EquipmentCategory, EquipmentStatus


class EquipmentCreate(BaseModel):
    """Schema for registering a new equipment item."""

    name: str = Field(..., min_length=1, max_length=200)
    category: EquipmentCategory
    location: str | None = Field(None, max_length=200)


class EquipmentStatusUpdate(BaseModel):
    """Administrative status change."""

    status: EquipmentStatus


class EquipmentResponse(BaseModel):
    """Schema for equipment information returned by the API."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    category: EquipmentCategory
    location: str | None
    status: EquipmentStatus
    usage_hours: float
    created_at: datetime
    updated_at: datetime
    queue_length: int = 0
