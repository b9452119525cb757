# src/gym_floor/models/equipment.py
"""Resource store: the physical equipment items members contend for."""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum

from sqlalchemy import Enum as SAEnum
from sqlalchemy import Float, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from gym_floor.db.session import Base
from gym_floor.db.time import utcnow
from gym_floor.db.types import UTCDateTime


class EquipmentStatus(str, Enum):
    """Lifecycle states of a piece of equipment."""

    AVAILABLE = "AVAILABLE"
    IN_USE = "IN_USE"
    RESERVED = "RESERVED"
    MAINTENANCE = "MAINTENANCE"
    OUT_OF_ORDER = "OUT_OF_ORDER"


class EquipmentCategory(str, Enum):
    """Equipment families; each maps to a calorie rate."""

    CARDIO = "CARDIO"
    STRENGTH = "STRENGTH"
    FREE_WEIGHTS = "FREE_WEIGHTS"
    FUNCTIONAL = "FUNCTIONAL"
    STRETCHING = "STRETCHING"
    RECOVERY = "RECOVERY"
    SPECIALIZED = "SPECIALIZED"


def new_id() -> str:
    """Return a fresh string identifier for a ledger row."""
    return str(uuid.uuid4())


class Equipment(Base):
    """A physical resource that at most one member may occupy at a time.

    ``status`` is the single source of truth for whether a new claim may
    proceed. Rows are never deleted while usage history references them.
    """

    __tablename__ = "equipment"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[EquipmentCategory] = mapped_column(
        SAEnum(EquipmentCategory, native_enum=False, length=20),
        nullable=False,
    )
    location: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[EquipmentStatus] = mapped_column(
        SAEnum(EquipmentStatus, native_enum=False, length=20),
        nullable=False,
        default=EquipmentStatus.AVAILABLE,
    )
    # Cumulative occupation, fractional hours.
    usage_hours: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )
