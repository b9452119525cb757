# src/gym_floor/models/queue.py
"""Queue ledger: members waiting for an equipment item, in FIFO order."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from sqlalchemy import Enum as SAEnum
from sqlalchemy import ForeignKey, Index, Integer, String, text
from sqlalchemy.orm import Mapped, mapped_column

from gym_floor.db.session import Base
from gym_floor.db.time import utcnow
from gym_floor.db.types import UTCDateTime
from gym_floor.models.equipment import new_id


class QueueState(str, Enum):
    """Queue entry lifecycle.

    WAITING -> NOTIFIED -> COMPLETED, WAITING -> CONFIRMED, and WAITING or
    NOTIFIED -> CANCELLED / EXPIRED. Everything but WAITING and NOTIFIED is
    terminal.
    """

    WAITING = "WAITING"
    NOTIFIED = "NOTIFIED"
    CONFIRMED = "CONFIRMED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    EXPIRED = "EXPIRED"


ACTIVE_QUEUE_STATES = (QueueState.WAITING, QueueState.NOTIFIED)


class QueueEntry(Base):
    """A member's place in line for one equipment item.

    Positions of WAITING entries are dense and 1-based per equipment item.
    A NOTIFIED entry keeps the position it had when it reached the head of
    the line. Rows are never deleted.
    """

    __tablename__ = "queue_entry"
    __table_args__ = (
        # One live entry per member per equipment item.
        Index(
            "uq_queue_entry_live_consumer",
            "equipment_id",
            "consumer_id",
            unique=True,
            sqlite_where=text("state IN ('WAITING', 'NOTIFIED')"),
            postgresql_where=text("state IN ('WAITING', 'NOTIFIED')"),
        ),
        Index("ix_queue_entry_equipment_state_position", "equipment_id", "state", "position"),
        Index("ix_queue_entry_state_claim_expiry", "state", "claim_expires_at"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    equipment_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("equipment.id"),
        nullable=False,
    )
    consumer_id: Mapped[str] = mapped_column(String(64), nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    state: Mapped[QueueState] = mapped_column(
        SAEnum(QueueState, native_enum=False, length=20),
        nullable=False,
        default=QueueState.WAITING,
    )
    joined_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=utcnow)
    notified_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    claim_expires_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    # Stamped on every transition into a terminal state.
    resolved_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
