"""Data access helpers for the usage session ledger."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy import select, update

from gym_floor.models.usage import UsageSession

from .base import Repository

__all__ = ["SessionClose", "UsageRepository"]


@dataclass(frozen=True)
class SessionClose:
    """Column values written when a session is closed."""

    ended_at: datetime
    duration_seconds: int
    calories_burned: int
    ended_by: str
    measurements: dict[str, Any]


class UsageRepository(Repository):
    """Thin wrapper around database access for usage sessions."""

    def get(self, session_id: str) -> UsageSession | None:
        """Return a usage session by identifier."""
        return self.session.get(UsageSession, session_id)

    def get_open_for_equipment(self, equipment_id: str) -> UsageSession | None:
        """Return the open session occupying an equipment item, if any."""
        stmt = select(UsageSession).where(
            UsageSession.equipment_id == equipment_id,
            UsageSession.ended_at.is_(None),
        )
        return self.session.execute(stmt).scalars().first()

    def get_open_for_consumer(self, equipment_id: str, consumer_id: str) -> UsageSession | None:
        """Return the consumer's open session on an equipment item, if any."""
        stmt = select(UsageSession).where(
            UsageSession.equipment_id == equipment_id,
            UsageSession.consumer_id == consumer_id,
            UsageSession.ended_at.is_(None),
        )
        return self.session.execute(stmt).scalars().first()

    def create(
        self,
        *,
        equipment_id: str,
        consumer_id: str,
        started_at: datetime,
        auto_end_at: datetime,
        queue_entry_id: str | None = None,
    ) -> UsageSession:
        """Insert an open session and return the persisted ORM instance."""
        usage = UsageSession(
            equipment_id=equipment_id,
            consumer_id=consumer_id,
            started_at=started_at,
            auto_end_at=auto_end_at,
            queue_entry_id=queue_entry_id,
        )
        self.session.add(usage)
        self.session.flush()
        return usage

    def close(self, session_id: str, values: SessionClose) -> bool:
        """Close an open session.

        Returns False when the session was already closed, which makes
        concurrent closes by a member and the sweeper resolve to one winner.
        """
        stmt = (
            update(UsageSession)
            .where(UsageSession.id == session_id, UsageSession.ended_at.is_(None))
            .values(
                ended_at=values.ended_at,
                duration_seconds=values.duration_seconds,
                calories_burned=values.calories_burned,
                ended_by=values.ended_by,
                **values.measurements,
            )
        )
        return self._execute_update(stmt, UsageSession) == 1

    def list_expired_ids(self, now: datetime) -> list[str]:
        """Return ids of open sessions whose auto-expiry deadline has passed."""
        stmt = (
            select(UsageSession.id)
            .where(UsageSession.ended_at.is_(None), UsageSession.auto_end_at <= now)
            .order_by(UsageSession.auto_end_at)
        )
        return list(self.session.execute(stmt).scalars())

    def list_needing_warning(self, now: datetime, horizon: datetime) -> list[UsageSession]:
        """Return open sessions expiring before ``horizon`` that were not warned yet."""
        stmt = (
            select(UsageSession)
            .where(
                UsageSession.ended_at.is_(None),
                UsageSession.warning_sent_at.is_(None),
                UsageSession.auto_end_at > now,
                UsageSession.auto_end_at <= horizon,
            )
            .order_by(UsageSession.auto_end_at)
        )
        return list(self.session.execute(stmt).scalars())

    def mark_warning_sent(self, session_id: str, now: datetime) -> bool:
        """Stamp the expiry warning once; False if another pass got there first."""
        stmt = (
            update(UsageSession)
            .where(
                UsageSession.id == session_id,
                UsageSession.ended_at.is_(None),
                UsageSession.warning_sent_at.is_(None),
            )
            .values(warning_sent_at=now)
        )
        return self._execute_update(stmt, UsageSession) == 1

    def recent_durations(self, equipment_id: str, limit: int) -> list[int]:
        """Durations (seconds) of the latest ``limit`` closed sessions."""
        stmt = (
            select(UsageSession.duration_seconds)
            .where(
                UsageSession.equipment_id == equipment_id,
                UsageSession.ended_at.is_not(None),
                UsageSession.duration_seconds.is_not(None),
            )
            .order_by(UsageSession.ended_at.desc())
            .limit(limit)
        )
        return [int(value) for value in self.session.execute(stmt).scalars()]

    def update_open(self, session_id: str, **values: Any) -> bool:
        """Write in-session telemetry; False once the session has closed."""
        stmt = (
            update(UsageSession)
            .where(UsageSession.id == session_id, UsageSession.ended_at.is_(None))
            .values(**values)
        )
        return self._execute_update(stmt, UsageSession) == 1
