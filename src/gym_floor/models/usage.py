# src/gym_floor/models/usage.py
"""Session ledger: one row per exclusive occupation of an equipment item."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, Float, ForeignKey, Index, Integer, String, text
from sqlalchemy.orm import Mapped, mapped_column

from gym_floor.db.session import Base
from gym_floor.db.types import UTCDateTime
from gym_floor.models.equipment import new_id

ENDED_BY_CONSUMER = "consumer"
ENDED_BY_SWEEPER = "sweeper"


class UsageSession(Base):
    """Append-only record of a member occupying an equipment item.

    Created when a claim succeeds and closed exactly once, either by the member
    or by the expiry sweeper. Closed rows are never modified again.
    """

    __tablename__ = "usage_session"
    __table_args__ = (
        # At most one open session per equipment item.
        Index(
            "uq_usage_session_open_equipment",
            "equipment_id",
            unique=True,
            sqlite_where=text("ended_at IS NULL"),
            postgresql_where=text("ended_at IS NULL"),
        ),
        Index("ix_usage_session_equipment_ended", "equipment_id", "ended_at"),
        Index("ix_usage_session_auto_end", "auto_end_at"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    equipment_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("equipment.id"),
        nullable=False,
    )
    consumer_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    # Queue entry this claim served, when the member came through the queue.
    queue_entry_id: Mapped[str | None] = mapped_column(
        String(36),
        ForeignKey("queue_entry.id"),
        nullable=True,
    )

    started_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    ended_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    auto_end_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    warning_sent_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    last_activity_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    ended_by: Mapped[str | None] = mapped_column(String(16), nullable=True)

    # Derived on close.
    duration_seconds: Mapped[int | None] = mapped_column(Integer, nullable=True)
    calories_burned: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # Optional measurements reported by the member or the machine.
    heart_rate_avg: Mapped[int | None] = mapped_column(Integer, nullable=True)
    heart_rate_max: Mapped[int | None] = mapped_column(Integer, nullable=True)
    sets_completed: Mapped[int | None] = mapped_column(Integer, nullable=True)
    reps_completed: Mapped[int | None] = mapped_column(Integer, nullable=True)
    weight_used: Mapped[float | None] = mapped_column(Float, nullable=True)
    sensor_data: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    @property
    def is_open(self) -> bool:
        return self.ended_at is None
