# src/gym_floor/models/__init__.py
"""SQLAlchemy models for the Gym Floor service."""

from .equipment import Equipment, EquipmentCategory, EquipmentStatus
from .issue import IssueReport, IssueSeverity
from .queue import QueueEntry, QueueState
from .usage import UsageSession

__all__ = [
    "Equipment", "EquipmentCategory", "EquipmentStatus",
    "IssueReport", "IssueSeverity",
    "QueueEntry", "QueueState",
    "UsageSession",
]
