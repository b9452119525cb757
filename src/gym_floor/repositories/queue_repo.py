"""Data access helpers for the queue ledger."""
from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import case, func, select, update

from gym_floor.models.queue import ACTIVE_QUEUE_STATES, QueueEntry, QueueState

from .base import Repository

__all__ = ["QueueRepository"]


class QueueRepository(Repository):
    """Thin wrapper around database access for queue entries.

    Positions among WAITING entries of one equipment item are kept dense:
    every departure from WAITING is followed by :meth:`close_gap`.
    """

    def get(self, entry_id: str) -> QueueEntry | None:
        """Return a queue entry by identifier."""
        return self.session.get(QueueEntry, entry_id)

    def get_live_for_consumer(self, equipment_id: str, consumer_id: str) -> QueueEntry | None:
        """Return the consumer's WAITING or NOTIFIED entry for an equipment item."""
        stmt = select(QueueEntry).where(
            QueueEntry.equipment_id == equipment_id,
            QueueEntry.consumer_id == consumer_id,
            QueueEntry.state.in_(ACTIVE_QUEUE_STATES),
        )
        return self.session.execute(stmt).scalars().first()

    def list_live(self, equipment_id: str) -> list[QueueEntry]:
        """Return live entries, the notified head first, then WAITING by position."""
        notified_first = case((QueueEntry.state == QueueState.NOTIFIED, 0), else_=1)
        stmt = (
            select(QueueEntry)
            .where(
                QueueEntry.equipment_id == equipment_id,
                QueueEntry.state.in_(ACTIVE_QUEUE_STATES),
            )
            .order_by(notified_first, QueueEntry.position, QueueEntry.joined_at)
        )
        return list(self.session.execute(stmt).scalars())

    def count_live(self, equipment_id: str) -> int:
        """Return how many WAITING or NOTIFIED entries an equipment item has."""
        stmt = select(func.count()).select_from(QueueEntry).where(
            QueueEntry.equipment_id == equipment_id,
            QueueEntry.state.in_(ACTIVE_QUEUE_STATES),
        )
        return int(self.session.execute(stmt).scalar() or 0)

    def max_waiting_position(self, equipment_id: str) -> int:
        """Return the tail position of the WAITING line, 0 when empty."""
        stmt = select(func.max(QueueEntry.position)).where(
            QueueEntry.equipment_id == equipment_id,
            QueueEntry.state == QueueState.WAITING,
        )
        return int(self.session.execute(stmt).scalar() or 0)

    def waiting_positions(self, equipment_id: str) -> list[int]:
        """Return WAITING positions in ascending order."""
        stmt = (
            select(QueueEntry.position)
            .where(
                QueueEntry.equipment_id == equipment_id,
                QueueEntry.state == QueueState.WAITING,
            )
            .order_by(QueueEntry.position)
        )
        return [int(value) for value in self.session.execute(stmt).scalars()]

    def head_waiting(self, equipment_id: str) -> QueueEntry | None:
        """Return the WAITING entry with the smallest position."""
        stmt = (
            select(QueueEntry)
            .where(
                QueueEntry.equipment_id == equipment_id,
                QueueEntry.state == QueueState.WAITING,
            )
            .order_by(QueueEntry.position, QueueEntry.joined_at)
            .limit(1)
        )
        return self.session.execute(stmt).scalars().first()

    def open_hold(self, equipment_id: str, now: datetime) -> QueueEntry | None:
        """Return a NOTIFIED entry whose claim window is still open."""
        stmt = select(QueueEntry).where(
            QueueEntry.equipment_id == equipment_id,
            QueueEntry.state == QueueState.NOTIFIED,
            QueueEntry.claim_expires_at > now,
        )
        return self.session.execute(stmt).scalars().first()

    def has_notified(self, equipment_id: str) -> bool:
        stmt = select(func.count()).select_from(QueueEntry).where(
            QueueEntry.equipment_id == equipment_id,
            QueueEntry.state == QueueState.NOTIFIED,
        )
        return bool(self.session.execute(stmt).scalar())

    def create(
        self,
        *,
        equipment_id: str,
        consumer_id: str,
        position: int,
        joined_at: datetime,
    ) -> QueueEntry:
        """Insert a WAITING entry and return the persisted ORM instance."""
        entry = QueueEntry(
            equipment_id=equipment_id,
            consumer_id=consumer_id,
            position=position,
            state=QueueState.WAITING,
            joined_at=joined_at,
        )
        self.session.add(entry)
        self.session.flush()
        return entry

    def transition(
        self,
        entry_id: str,
        *,
        expected: tuple[QueueState, ...],
        new: QueueState,
        **values: Any,
    ) -> bool:
        """Move an entry to ``new`` only if it is currently in one of ``expected``."""
        stmt = (
            update(QueueEntry)
            .where(QueueEntry.id == entry_id, QueueEntry.state.in_(expected))
            .values(state=new, **values)
        )
        return self._execute_update(stmt, QueueEntry) == 1

    def close_gap(self, equipment_id: str, vacated_position: int) -> int:
        """Shift every WAITING entry behind ``vacated_position`` forward by one."""
        stmt = (
            update(QueueEntry)
            .where(
                QueueEntry.equipment_id == equipment_id,
                QueueEntry.state == QueueState.WAITING,
                QueueEntry.position > vacated_position,
            )
            .values(position=QueueEntry.position - 1)
        )
        return self._execute_update(stmt, QueueEntry)

    def list_expired_claims(self, now: datetime) -> list[tuple[str, str, str]]:
        """Return ``(entry_id, equipment_id, consumer_id)`` for lapsed claim windows."""
        stmt = (
            select(QueueEntry.id, QueueEntry.equipment_id, QueueEntry.consumer_id)
            .where(
                QueueEntry.state == QueueState.NOTIFIED,
                QueueEntry.claim_expires_at <= now,
            )
            .order_by(QueueEntry.claim_expires_at)
        )
        return [(row[0], row[1], row[2]) for row in self.session.execute(stmt)]

    def completed_since(self, equipment_id: str, since: datetime) -> list[QueueEntry]:
        """Return entries served from the queue since ``since``."""
        stmt = select(QueueEntry).where(
            QueueEntry.equipment_id == equipment_id,
            QueueEntry.state == QueueState.COMPLETED,
            QueueEntry.resolved_at >= since,
        )
        return list(self.session.execute(stmt).scalars())
