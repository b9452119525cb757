"""Advisory wait-time estimates derived from the session and queue ledgers.

Nothing here gates a state transition. Every figure is in minutes.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from gym_floor.core.settings import Settings
from gym_floor.db.time import as_utc, utcnow
from gym_floor.models.equipment import Equipment, EquipmentStatus
from gym_floor.models.queue import QueueEntry, QueueState
from gym_floor.models.usage import UsageSession
from gym_floor.repositories import EquipmentRepository, QueueRepository, UsageRepository
from gym_floor.services.errors import InvalidRequest, ResourceNotFound


@dataclass(frozen=True)
class OccupantSnapshot:
    session_id: str
    consumer_id: str
    started_at: datetime
    auto_end_at: datetime
    remaining_minutes: float


@dataclass(frozen=True)
class EntryEstimate:
    entry_id: str
    consumer_id: str
    position: int
    state: QueueState
    joined_at: datetime
    estimated_wait_minutes: float


@dataclass(frozen=True)
class QueueAnalytics:
    equipment_id: str
    status: EquipmentStatus
    queue_length: int
    average_duration_minutes: float
    average_wait_minutes: float
    history_size: int
    occupant: OccupantSnapshot | None
    entries: list[EntryEstimate] = field(default_factory=list)


@dataclass(frozen=True)
class AvailabilityPrediction:
    equipment_id: str
    status: EquipmentStatus
    available_now: bool
    predicted_available_at: datetime | None
    queue_length: int


@dataclass(frozen=True)
class PositionPrediction:
    equipment_id: str
    position: int
    estimated_wait_minutes: float
    predicted_start_at: datetime


def _minutes(delta: timedelta) -> float:
    return max(0.0, delta.total_seconds() / 60)


class AnalyticsEstimator:
    """Historical averages and per-position wait predictions."""

    def __init__(
        self,
        *,
        history_size: int = 100,
        default_duration_minutes: float = 30.0,
        wait_lookback_days: int = 7,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.history_size = max(1, history_size)
        self.default_duration_minutes = default_duration_minutes
        self.wait_lookback = timedelta(days=wait_lookback_days)
        self._clock = clock

    @classmethod
    def from_settings(
        cls,
        config: Settings,
        clock: Callable[[], datetime] = utcnow,
    ) -> AnalyticsEstimator:
        return cls(
            history_size=config.analytics_history_size,
            default_duration_minutes=config.analytics_default_duration_minutes,
            wait_lookback_days=config.analytics_wait_lookback_days,
            clock=clock,
        )

    def _durations(self, db: Session, equipment_id: str) -> list[int]:
        return UsageRepository(db).recent_durations(equipment_id, self.history_size)

    def average_duration_minutes(self, db: Session, equipment_id: str) -> float:
        """Trailing mean of the latest closed sessions, or the configured default."""
        durations = self._durations(db, equipment_id)
        if not durations:
            return self.default_duration_minutes
        return sum(durations) / len(durations) / 60

    def average_wait_minutes(
        self,
        db: Session,
        equipment_id: str,
        *,
        fallback: float | None = None,
    ) -> float:
        """Mean time from joining to being called, over the lookback window.

        Falls back to the average session duration when no entry was served
        from the queue in that window.
        """
        since = self._clock() - self.wait_lookback
        samples = [
            _minutes(as_utc(entry.notified_at or entry.resolved_at) - as_utc(entry.joined_at))
            for entry in QueueRepository(db).completed_since(equipment_id, since)
            if entry.notified_at or entry.resolved_at
        ]
        if samples:
            return sum(samples) / len(samples)
        if fallback is not None:
            return fallback
        return self.average_duration_minutes(db, equipment_id)

    def occupant(self, db: Session, equipment_id: str) -> OccupantSnapshot | None:
        usage: UsageSession | None = UsageRepository(db).get_open_for_equipment(equipment_id)
        if usage is None:
            return None
        return OccupantSnapshot(
            session_id=usage.id,
            consumer_id=usage.consumer_id,
            started_at=usage.started_at,
            auto_end_at=usage.auto_end_at,
            remaining_minutes=_minutes(as_utc(usage.auto_end_at) - self._clock()),
        )

    def _wait_for(
        self,
        position: int,
        *,
        remaining: float,
        notified_ahead: int,
        average_duration: float,
    ) -> float:
        # Everyone ahead, including a called head that has not claimed yet,
        # is assumed to use the equipment for one average session.
        ahead = max(0, position - 1) + notified_ahead
        return round(remaining + ahead * average_duration, 1)

    def _require_equipment(self, db: Session, equipment_id: str) -> Equipment:
        equipment = EquipmentRepository(db).get(equipment_id)
        if equipment is None:
            raise ResourceNotFound(
                f"Equipment {equipment_id} not found",
                details={"equipment_id": equipment_id},
            )
        return equipment

    def queue_analytics(self, db: Session, equipment_id: str) -> QueueAnalytics:
        equipment = self._require_equipment(db, equipment_id)
        durations = self._durations(db, equipment_id)
        if durations:
            avg_duration = sum(durations) / len(durations) / 60
        else:
            avg_duration = self.default_duration_minutes
        avg_wait = self.average_wait_minutes(db, equipment_id, fallback=avg_duration)
        occupant = self.occupant(db, equipment_id)
        remaining = occupant.remaining_minutes if occupant else 0.0

        live: list[QueueEntry] = QueueRepository(db).list_live(equipment_id)
        notified = sum(1 for entry in live if entry.state == QueueState.NOTIFIED)
        entries = []
        for entry in live:
            if entry.state == QueueState.NOTIFIED:
                wait = 0.0
            else:
                wait = self._wait_for(
                    entry.position,
                    remaining=remaining,
                    notified_ahead=notified,
                    average_duration=avg_duration,
                )
            entries.append(
                EntryEstimate(
                    entry_id=entry.id,
                    consumer_id=entry.consumer_id,
                    position=entry.position,
                    state=entry.state,
                    joined_at=entry.joined_at,
                    estimated_wait_minutes=wait,
                )
            )
        return QueueAnalytics(
            equipment_id=equipment_id,
            status=equipment.status,
            queue_length=len(live),
            average_duration_minutes=round(avg_duration, 1),
            average_wait_minutes=round(avg_wait, 1),
            history_size=len(durations),
            occupant=occupant,
            entries=entries,
        )

    def estimate_wait_minutes(self, db: Session, equipment_id: str, position: int) -> float:
        """Estimated wait for a WAITING member at ``position``."""
        occupant = self.occupant(db, equipment_id)
        notified = 1 if QueueRepository(db).has_notified(equipment_id) else 0
        return self._wait_for(
            position,
            remaining=occupant.remaining_minutes if occupant else 0.0,
            notified_ahead=notified,
            average_duration=self.average_duration_minutes(db, equipment_id),
        )

    def predict_availability(self, db: Session, equipment_id: str) -> AvailabilityPrediction:
        equipment = self._require_equipment(db, equipment_id)
        now = self._clock()
        queue_length = QueueRepository(db).count_live(equipment_id)
        usage = UsageRepository(db).get_open_for_equipment(equipment_id)

        available_now = equipment.status == EquipmentStatus.AVAILABLE and queue_length == 0
        predicted: datetime | None = None
        if available_now:
            predicted = now
        elif usage is not None:
            predicted = as_utc(usage.auto_end_at)
            if queue_length:
                predicted += timedelta(minutes=self.average_duration_minutes(db, equipment_id))
        elif equipment.status == EquipmentStatus.AVAILABLE:
            # Free but held for a called member.
            predicted = now + timedelta(minutes=self.average_duration_minutes(db, equipment_id))
        return AvailabilityPrediction(
            equipment_id=equipment_id,
            status=equipment.status,
            available_now=available_now,
            predicted_available_at=predicted,
            queue_length=queue_length,
        )

    def predict_for_position(
        self,
        db: Session,
        equipment_id: str,
        position: int,
    ) -> PositionPrediction:
        if position < 1:
            raise InvalidRequest("position must be 1 or greater", details={"position": position})
        self._require_equipment(db, equipment_id)
        wait = self.estimate_wait_minutes(db, equipment_id, position)
        return PositionPrediction(
            equipment_id=equipment_id,
            position=position,
            estimated_wait_minutes=wait,
            predicted_start_at=self._clock() + timedelta(minutes=wait),
        )
