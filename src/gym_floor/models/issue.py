# src/gym_floor/models/issue.py
"""Issue reports filed by members against equipment items."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from sqlalchemy import Enum as SAEnum
from sqlalchemy import ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from gym_floor.db.session import Base
from gym_floor.db.time import utcnow
from gym_floor.db.types import UTCDateTime
from gym_floor.models.equipment import new_id


class IssueSeverity(str, Enum):
    """Reported severity; HIGH and CRITICAL take the equipment out of order."""

    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


BLOCKING_SEVERITIES = frozenset({IssueSeverity.HIGH, IssueSeverity.CRITICAL})


class IssueReport(Base):
    """Audit record of a reported problem with an equipment item."""

    __tablename__ = "issue_report"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    equipment_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("equipment.id"),
        nullable=False,
        index=True,
    )
    consumer_id: Mapped[str] = mapped_column(String(64), nullable=False)
    issue_type: Mapped[str] = mapped_column(String(40), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    severity: Mapped[IssueSeverity] = mapped_column(
        SAEnum(IssueSeverity, native_enum=False, length=10),
        nullable=False,
    )
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=utcnow)
