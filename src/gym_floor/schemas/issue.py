"""Issue report Pydantic schemas."""
from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from gym_floor.models.issue import IssueSeverity


class IssueCreate(BaseModel):
    """Schema for reporting a problem with an equipment item."""

    issue_type: str = Field("other", min_length=1, max_length=40)
    severity: IssueSeverity = IssueSeverity.MEDIUM
    description: str | None = Field(None, max_length=2000)


class IssueResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    equipment_id: str
    consumer_id: str
    issue_type: str
    severity: IssueSeverity
    description: str | None = None
    created_at: datetime
