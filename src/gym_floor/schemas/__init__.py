"""
Pydantic schemas for API request/response models.

These schemas define the structure of API data for serialization and validation.
"""

from .analytics import (
    AvailabilityResponse,
    PositionPredictionResponse,
    QueueAnalyticsResponse,
)
from .common import ErrorDetail, ErrorResponse
from .equipment import EquipmentCreate, EquipmentResponse, EquipmentStatusUpdate
from .issue import IssueCreate, IssueResponse
from .queue import QueueEntryResponse, QueuePositionResponse
from .usage import ActivityRequest, ReleaseRequest, UsageSessionResponse

__all__ = [
    "AvailabilityResponse", "PositionPredictionResponse", "QueueAnalyticsResponse",
    "ErrorDetail", "ErrorResponse",
    "EquipmentCreate", "EquipmentResponse", "EquipmentStatusUpdate",
    "IssueCreate", "IssueResponse",
    "QueueEntryResponse", "QueuePositionResponse",
    "ActivityRequest", "ReleaseRequest", "UsageSessionResponse",
]
