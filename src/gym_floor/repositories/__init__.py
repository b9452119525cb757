"""Data access helpers for the resource store and the session/queue ledgers."""

from .equipment_repo import EquipmentRepository
from .issue_repo import IssueRepository
from .queue_repo import QueueRepository
from .usage_repo import UsageRepository

__all__ = [
    "EquipmentRepository",
    "IssueRepository",
    "QueueRepository",
    "UsageRepository",
]
