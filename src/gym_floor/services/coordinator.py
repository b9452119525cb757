"""Contention coordinator: exclusive claims, releases and the FIFO queue.

Every mutating operation runs as one store transaction on the caller's
``Session``. The equipment row is read ``FOR UPDATE`` and the decisive write
is a compare-and-set ``UPDATE`` whose row count picks the winner, so two
racing requests can never both succeed. Cache invalidation and notification
dispatch are collected while the transaction runs and only happen after it
commits.
"""

from __future__ import annotations

import contextlib
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, TypeVar

from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.orm import Session

from gym_floor.core.settings import Settings
from gym_floor.db.time import as_utc, utcnow
from gym_floor.models.equipment import Equipment, EquipmentCategory, EquipmentStatus
from gym_floor.models.issue import BLOCKING_SEVERITIES, IssueReport, IssueSeverity
from gym_floor.models.queue import ACTIVE_QUEUE_STATES, QueueEntry, QueueState
from gym_floor.models.usage import ENDED_BY_CONSUMER, ENDED_BY_SWEEPER, UsageSession
from gym_floor.repositories import (
    EquipmentRepository,
    IssueRepository,
    QueueRepository,
    UsageRepository,
)
from gym_floor.repositories.usage_repo import SessionClose
from gym_floor.services.analytics import AnalyticsEstimator
from gym_floor.services.calories import calories_burned, elapsed_seconds, round_half_up
from gym_floor.services.errors import (
    AlreadyActive,
    AlreadyQueued,
    ContentionError,
    InvalidRequest,
    NotOwner,
    QueueEntryNotFound,
    QueueFull,
    ResourceIdle,
    ResourceNotFound,
    ResourceUnavailable,
    SessionNotFound,
    StoreUnavailable,
)
from gym_floor.services.locks import EquipmentLock, NoopEquipmentLock
from gym_floor.services.notifications import (
    EVENT_AVAILABLE,
    EVENT_CLAIM_EXPIRED,
    EVENT_ISSUE_REPORTED,
    EVENT_QUEUE_UPDATED,
    EVENT_SESSION_EXPIRING,
    EVENT_YOUR_TURN,
    NotificationFanout,
)
from gym_floor.services.queue_cache import QueueCache
from gym_floor.services.rewards import RewardsHook

logger = logging.getLogger(__name__)

T = TypeVar("T")

# One automatic retry after a serialization conflict.
MAX_TRANSACTION_ATTEMPTS = 2
SERIALIZATION_SQLSTATES = frozenset({"40001", "40P01"})

ADMIN_STATUSES = frozenset(
    {
        EquipmentStatus.AVAILABLE,
        EquipmentStatus.RESERVED,
        EquipmentStatus.MAINTENANCE,
        EquipmentStatus.OUT_OF_ORDER,
    }
)


@dataclass(frozen=True)
class CoordinatorConfig:
    """Behavioral windows and queue policy."""

    max_occupation_seconds: int = 3 * 60 * 60
    claim_window_seconds: int = 5 * 60
    expiry_warning_seconds: int = 10 * 60
    max_queue_length: int = 10
    queue_hold_enforced: bool = True

    @classmethod
    def from_settings(cls, config: Settings) -> CoordinatorConfig:
        return cls(
            max_occupation_seconds=config.max_occupation_seconds,
            claim_window_seconds=config.claim_window_seconds,
            expiry_warning_seconds=config.expiry_warning_seconds,
            max_queue_length=config.max_queue_length,
            queue_hold_enforced=config.queue_hold_enforced,
        )


@dataclass
class Measurements:
    """Optional figures a member reports when finishing a session."""

    heart_rate_avg: int | None = None
    heart_rate_max: int | None = None
    sets_completed: int | None = None
    reps_completed: int | None = None
    weight_used: float | None = None
    sensor_data: dict[str, Any] | None = None

    def as_columns(self) -> dict[str, Any]:
        return {name: value for name, value in vars(self).items() if value is not None}


@dataclass(frozen=True)
class QueuePosition:
    entry_id: str
    equipment_id: str
    consumer_id: str
    position: int
    state: QueueState
    queue_length: int
    joined_at: datetime
    notified_at: datetime | None
    claim_expires_at: datetime | None
    estimated_wait_minutes: float


@dataclass
class _AfterCommit:
    """Side effects deferred until the transaction has committed."""

    invalidate: set[str] = field(default_factory=set)
    actions: list[tuple[str, Callable[..., None], tuple[Any, ...], dict[str, Any]]] = field(
        default_factory=list
    )

    def defer(self, label: str, fn: Callable[..., None], *args: Any, **kwargs: Any) -> None:
        self.actions.append((label, fn, args, kwargs))


def _iso(value: datetime | None) -> str | None:
    return as_utc(value).isoformat() if value is not None else None


def queue_entry_payload(entry: QueueEntry) -> dict[str, Any]:
    """JSON-safe view of a queue entry, as mirrored in the queue cache."""
    return {
        "id": entry.id,
        "equipment_id": entry.equipment_id,
        "consumer_id": entry.consumer_id,
        "position": entry.position,
        "state": QueueState(entry.state).value,
        "joined_at": _iso(entry.joined_at),
        "notified_at": _iso(entry.notified_at),
        "claim_expires_at": _iso(entry.claim_expires_at),
    }


def _is_serialization_failure(exc: DBAPIError) -> bool:
    orig = exc.orig
    code = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if code in SERIALIZATION_SQLSTATES:
        return True
    return "database is locked" in str(orig).lower()


def _require_id(value: str | None, name: str) -> str:
    if value is None or not str(value).strip():
        raise InvalidRequest(f"{name} is required", details={"field": name})
    return str(value).strip()


class ContentionCoordinator:
    """Arbitrates exclusive, time-bounded access to equipment."""

    def __init__(
        self,
        *,
        notifier: NotificationFanout,
        cache: QueueCache,
        lock: EquipmentLock | None = None,
        rewards: RewardsHook | None = None,
        config: CoordinatorConfig | None = None,
        analytics: AnalyticsEstimator | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.notifier = notifier
        self.cache = cache
        self.lock = lock or NoopEquipmentLock()
        self.rewards = rewards
        self.config = config or CoordinatorConfig()
        self.analytics = analytics or AnalyticsEstimator(clock=clock)
        self._clock = clock

    # ------------------------------------------------------------------
    # Transaction plumbing
    # ------------------------------------------------------------------

    def _transact(
        self,
        db: Session,
        label: str,
        work: Callable[[_AfterCommit], T],
        *,
        equipment_id: str | None = None,
        on_integrity: Callable[[], ContentionError] | None = None,
    ) -> T:
        """Run ``work`` in one transaction and translate store failures."""
        guard = (
            self.lock.hold(equipment_id)
            if equipment_id is not None
            else contextlib.nullcontext(False)
        )
        with guard:
            for attempt in range(1, MAX_TRANSACTION_ATTEMPTS + 1):
                effects = _AfterCommit()
                try:
                    result = work(effects)
                    db.commit()
                except ContentionError:
                    db.rollback()
                    raise
                except IntegrityError as exc:
                    db.rollback()
                    if on_integrity is None:
                        logger.error("%s violated a store constraint: %s", label, exc.orig)
                        raise StoreUnavailable(f"{label} could not be recorded") from exc
                    raise on_integrity() from exc
                except DBAPIError as exc:
                    db.rollback()
                    if _is_serialization_failure(exc):
                        if attempt < MAX_TRANSACTION_ATTEMPTS:
                            logger.info("%s hit a serialization conflict; retrying", label)
                            continue
                        raise ResourceUnavailable(
                            f"{label} conflicted with a concurrent update",
                            details={"equipment_id": equipment_id},
                        ) from exc
                    logger.error("%s failed against the store: %s", label, exc)
                    raise StoreUnavailable("The equipment store is unavailable") from exc
                self._after_commit(effects)
                return result
        raise AssertionError("unreachable")

    def _after_commit(self, effects: _AfterCommit) -> None:
        for equipment_id in effects.invalidate:
            self.cache.invalidate(equipment_id)
        for label, fn, args, kwargs in effects.actions:
            try:
                fn(*args, **kwargs)
            except Exception:
                logger.warning("Dispatch of %s failed", label, exc_info=True)

    def _locked_equipment(self, db: Session, equipment_id: str) -> Equipment:
        equipment = EquipmentRepository(db).get_for_update(equipment_id)
        if equipment is None:
            raise ResourceNotFound(
                f"Equipment {equipment_id} not found",
                details={"equipment_id": equipment_id},
            )
        return equipment

    def _queue_changed(self, effects: _AfterCommit, equipment_id: str) -> None:
        if equipment_id in effects.invalidate:
            return
        effects.invalidate.add(equipment_id)
        effects.defer(
            EVENT_QUEUE_UPDATED,
            self.notifier.broadcast,
            equipment_id,
            EVENT_QUEUE_UPDATED,
            {"equipment_id": equipment_id},
        )

    def _status_changed(
        self,
        effects: _AfterCommit,
        equipment_id: str,
        status: EquipmentStatus,
    ) -> None:
        effects.defer(
            "status change",
            self.notifier.publish_status_changed,
            equipment_id,
            status.value,
        )

    # ------------------------------------------------------------------
    # Claims and releases
    # ------------------------------------------------------------------

    def claim_resource(self, db: Session, equipment_id: str, consumer_id: str) -> UsageSession:
        """Give ``consumer_id`` exclusive use of the equipment.

        Raises:
            ResourceNotFound: unknown equipment.
            AlreadyActive: the member already holds this equipment.
            ResourceUnavailable: not AVAILABLE, or held for the called member.
        """
        equipment_id = _require_id(equipment_id, "equipment_id")
        consumer_id = _require_id(consumer_id, "consumer_id")

        def work(effects: _AfterCommit) -> UsageSession:
            now = self._clock()
            equipment = self._locked_equipment(db, equipment_id)
            usage_repo = UsageRepository(db)
            queue_repo = QueueRepository(db)

            if usage_repo.get_open_for_consumer(equipment_id, consumer_id) is not None:
                raise AlreadyActive(
                    "You are already using this equipment",
                    details={"equipment_id": equipment_id},
                )
            if equipment.status != EquipmentStatus.AVAILABLE:
                raise ResourceUnavailable(
                    f"Equipment is {equipment.status.value}",
                    details={"equipment_id": equipment_id, "status": equipment.status.value},
                )
            if self.config.queue_hold_enforced:
                hold = queue_repo.open_hold(equipment_id, now)
                if hold is not None and hold.consumer_id != consumer_id:
                    raise ResourceUnavailable(
                        "Equipment is held for the next member in the queue",
                        details={
                            "equipment_id": equipment_id,
                            "held_until": _iso(hold.claim_expires_at),
                        },
                    )

            entry = queue_repo.get_live_for_consumer(equipment_id, consumer_id)
            entry_id = entry.id if entry else None
            entry_state = entry.state if entry else None
            entry_position = entry.position if entry else None

            if not EquipmentRepository(db).compare_and_set_status(
                equipment_id,
                expected=(EquipmentStatus.AVAILABLE,),
                new=EquipmentStatus.IN_USE,
            ):
                raise ResourceUnavailable(
                    "Equipment was claimed by another member",
                    details={"equipment_id": equipment_id},
                )

            if entry_id is not None:
                if entry_state == QueueState.NOTIFIED:
                    queue_repo.transition(
                        entry_id,
                        expected=(QueueState.NOTIFIED,),
                        new=QueueState.COMPLETED,
                        resolved_at=now,
                    )
                else:
                    if queue_repo.transition(
                        entry_id,
                        expected=(QueueState.WAITING,),
                        new=QueueState.CONFIRMED,
                        resolved_at=now,
                    ):
                        queue_repo.close_gap(equipment_id, entry_position)
                self._queue_changed(effects, equipment_id)

            usage = usage_repo.create(
                equipment_id=equipment_id,
                consumer_id=consumer_id,
                started_at=now,
                auto_end_at=now + timedelta(seconds=self.config.max_occupation_seconds),
                queue_entry_id=entry_id,
            )
            self._status_changed(effects, equipment_id, EquipmentStatus.IN_USE)
            logger.info(
                "Equipment %s claimed by %s (session %s)",
                equipment_id,
                consumer_id,
                usage.id,
            )
            return usage

        return self._transact(
            db,
            "claim",
            work,
            equipment_id=equipment_id,
            on_integrity=lambda: ResourceUnavailable(
                "Equipment was claimed by another member",
                details={"equipment_id": equipment_id},
            ),
        )

    def release_resource(
        self,
        db: Session,
        session_id: str,
        consumer_id: str,
        measurements: Measurements | None = None,
    ) -> UsageSession:
        """Close the member's open session and hand the equipment to the queue."""
        session_id = _require_id(session_id, "session_id")
        consumer_id = _require_id(consumer_id, "consumer_id")
        usage = UsageRepository(db).get(session_id)
        if usage is None or not usage.is_open:
            raise SessionNotFound(
                "No open session with that id",
                details={"session_id": session_id},
            )
        if usage.consumer_id != consumer_id:
            raise NotOwner(
                "This session belongs to another member",
                details={"session_id": session_id},
            )
        equipment_id = usage.equipment_id

        def work(effects: _AfterCommit) -> UsageSession:
            now = self._clock()
            equipment = self._locked_equipment(db, equipment_id)
            current = UsageRepository(db).get(session_id)
            if current is None or not self._close_session(
                db,
                effects,
                current,
                equipment,
                ended_at=now,
                ended_by=ENDED_BY_CONSUMER,
                measurements=measurements,
            ):
                raise SessionNotFound(
                    "Session was already closed",
                    details={"session_id": session_id},
                )
            return current

        return self._transact(db, "release", work, equipment_id=equipment_id)

    def _close_session(
        self,
        db: Session,
        effects: _AfterCommit,
        usage: UsageSession,
        equipment: Equipment,
        *,
        ended_at: datetime,
        ended_by: str,
        measurements: Measurements | None = None,
    ) -> bool:
        """Close ``usage`` and free its equipment. False if already closed."""
        session_id = usage.id
        consumer_id = usage.consumer_id
        equipment_id = equipment.id
        category = equipment.category
        seconds = elapsed_seconds(usage.started_at, ended_at)
        kcal = calories_burned(seconds, category)

        closed = UsageRepository(db).close(
            session_id,
            SessionClose(
                ended_at=ended_at,
                duration_seconds=seconds,
                calories_burned=kcal,
                ended_by=ended_by,
                measurements=measurements.as_columns() if measurements else {},
            ),
        )
        if not closed:
            return False

        equipment_repo = EquipmentRepository(db)
        equipment_repo.add_usage_hours(equipment_id, seconds / 3600)
        if equipment_repo.compare_and_set_status(
            equipment_id,
            expected=(EquipmentStatus.IN_USE,),
            new=EquipmentStatus.AVAILABLE,
        ):
            self._status_changed(effects, equipment_id, EquipmentStatus.AVAILABLE)
            self._equipment_freed(db, effects, equipment_id, self._clock())
        else:
            logger.info(
                "Session %s closed on equipment %s left in status %s",
                session_id,
                equipment_id,
                EquipmentStatus(equipment.status).value,
            )

        if self.rewards is not None and kcal > 0:
            effects.defer(
                "rewards",
                self.rewards.session_completed,
                consumer_id=consumer_id,
                session_id=session_id,
                equipment_id=equipment_id,
                calories=kcal,
                duration_seconds=seconds,
            )
        logger.info(
            "Session %s on %s ended by %s after %ss (%s kcal)",
            session_id,
            equipment_id,
            ended_by,
            seconds,
            kcal,
        )
        return True

    # ------------------------------------------------------------------
    # Queue
    # ------------------------------------------------------------------

    def _equipment_freed(
        self,
        db: Session,
        effects: _AfterCommit,
        equipment_id: str,
        now: datetime,
    ) -> QueueEntry | None:
        """Announce availability and call the next member in line."""
        called = self._advance(db, effects, equipment_id, now)
        effects.defer(
            EVENT_AVAILABLE,
            self.notifier.broadcast,
            equipment_id,
            EVENT_AVAILABLE,
            {
                "equipment_id": equipment_id,
                "next_consumer_id": called.consumer_id if called else None,
            },
        )
        return called

    def _advance(
        self,
        db: Session,
        effects: _AfterCommit,
        equipment_id: str,
        now: datetime,
    ) -> QueueEntry | None:
        queue_repo = QueueRepository(db)
        if queue_repo.has_notified(equipment_id):
            # The called head has not resolved yet.
            return None
        head = queue_repo.head_waiting(equipment_id)
        if head is None:
            return None
        entry_id = head.id
        consumer_id = head.consumer_id
        position = head.position
        deadline = now + timedelta(seconds=self.config.claim_window_seconds)
        if not queue_repo.transition(
            entry_id,
            expected=(QueueState.WAITING,),
            new=QueueState.NOTIFIED,
            notified_at=now,
            claim_expires_at=deadline,
        ):
            return None
        queue_repo.close_gap(equipment_id, position)

        equipment = EquipmentRepository(db).get(equipment_id)
        effects.defer(
            EVENT_YOUR_TURN,
            self.notifier.notify_consumer,
            consumer_id,
            EVENT_YOUR_TURN,
            {
                "equipment_id": equipment_id,
                "equipment_name": equipment.name if equipment else None,
                "queue_entry_id": entry_id,
                "claim_expires_at": _iso(deadline),
            },
        )
        self._queue_changed(effects, equipment_id)
        logger.info(
            "Queue entry %s on %s notified; claim window ends %s",
            entry_id,
            equipment_id,
            deadline.isoformat(),
        )
        return queue_repo.get(entry_id)

    def advance_queue(self, db: Session, equipment_id: str) -> QueueEntry | None:
        """Call the head of the WAITING line if the equipment is free."""
        equipment_id = _require_id(equipment_id, "equipment_id")

        def work(effects: _AfterCommit) -> QueueEntry | None:
            equipment = self._locked_equipment(db, equipment_id)
            if equipment.status != EquipmentStatus.AVAILABLE:
                return None
            return self._advance(db, effects, equipment_id, self._clock())

        return self._transact(db, "advance queue", work, equipment_id=equipment_id)

    def join_queue(self, db: Session, equipment_id: str, consumer_id: str) -> QueueEntry:
        """Append the member to the equipment's WAITING line.

        Raises:
            ResourceIdle: the equipment is free and nobody is being called.
            AlreadyQueued: the member already has a live entry.
            QueueFull: the line is at its configured length.
        """
        equipment_id = _require_id(equipment_id, "equipment_id")
        consumer_id = _require_id(consumer_id, "consumer_id")

        def work(effects: _AfterCommit) -> QueueEntry:
            now = self._clock()
            equipment = self._locked_equipment(db, equipment_id)
            queue_repo = QueueRepository(db)

            if UsageRepository(db).get_open_for_consumer(equipment_id, consumer_id) is not None:
                raise AlreadyActive(
                    "You are already using this equipment",
                    details={"equipment_id": equipment_id},
                )
            existing = queue_repo.get_live_for_consumer(equipment_id, consumer_id)
            if existing is not None:
                raise AlreadyQueued(
                    "You are already in the queue for this equipment",
                    details={"queue_entry_id": existing.id, "position": existing.position},
                )
            if (
                equipment.status == EquipmentStatus.AVAILABLE
                and not queue_repo.has_notified(equipment_id)
            ):
                raise ResourceIdle(
                    "Equipment is available; claim it directly",
                    details={"equipment_id": equipment_id},
                )
            length = queue_repo.count_live(equipment_id)
            if length >= self.config.max_queue_length:
                raise QueueFull(
                    "The queue for this equipment is full",
                    details={"equipment_id": equipment_id, "max": self.config.max_queue_length},
                )

            position = queue_repo.max_waiting_position(equipment_id) + 1
            entry = queue_repo.create(
                equipment_id=equipment_id,
                consumer_id=consumer_id,
                position=position,
                joined_at=now,
            )
            self._queue_changed(effects, equipment_id)
            logger.info(
                "%s joined queue for %s at position %d",
                consumer_id,
                equipment_id,
                position,
            )
            return entry

        return self._transact(
            db,
            "join queue",
            work,
            equipment_id=equipment_id,
            on_integrity=lambda: AlreadyQueued(
                "You are already in the queue for this equipment",
                details={"equipment_id": equipment_id},
            ),
        )

    def leave_queue(
        self,
        db: Session,
        entry_id: str,
        consumer_id: str | None = None,
    ) -> QueueEntry:
        """Cancel a live entry and close the gap it leaves.

        ``consumer_id`` restricts the cancellation to the entry's owner; pass
        None for administrative removal.
        """
        entry_id = _require_id(entry_id, "entry_id")
        entry = QueueRepository(db).get(entry_id)
        if entry is None or entry.state not in ACTIVE_QUEUE_STATES:
            raise QueueEntryNotFound(
                "No live queue entry with that id",
                details={"entry_id": entry_id},
            )
        if consumer_id is not None and entry.consumer_id != consumer_id:
            raise NotOwner(
                "This queue entry belongs to another member",
                details={"entry_id": entry_id},
            )
        equipment_id = entry.equipment_id

        def work(effects: _AfterCommit) -> QueueEntry:
            now = self._clock()
            equipment = self._locked_equipment(db, equipment_id)
            queue_repo = QueueRepository(db)
            current = queue_repo.get(entry_id)
            if current is None or current.state not in ACTIVE_QUEUE_STATES:
                raise QueueEntryNotFound(
                    "Queue entry is no longer live",
                    details={"entry_id": entry_id},
                )
            state = current.state
            position = current.position
            status = equipment.status

            if not queue_repo.transition(
                entry_id,
                expected=(state,),
                new=QueueState.CANCELLED,
                resolved_at=now,
            ):
                raise QueueEntryNotFound(
                    "Queue entry is no longer live",
                    details={"entry_id": entry_id},
                )
            if state == QueueState.WAITING:
                queue_repo.close_gap(equipment_id, position)
            elif status == EquipmentStatus.AVAILABLE:
                self._equipment_freed(db, effects, equipment_id, now)
            self._queue_changed(effects, equipment_id)
            logger.info("Queue entry %s on %s cancelled", entry_id, equipment_id)
            return queue_repo.get(entry_id)

        return self._transact(db, "leave queue", work, equipment_id=equipment_id)

    def get_queue(self, db: Session, equipment_id: str) -> list[dict[str, Any]]:
        """Live queue, called head first, served from the cache when warm."""
        cached = self.cache.get_list(equipment_id)
        if cached is not None:
            return cached
        if EquipmentRepository(db).get(equipment_id) is None:
            raise ResourceNotFound(
                f"Equipment {equipment_id} not found",
                details={"equipment_id": equipment_id},
            )
        live = QueueRepository(db).list_live(equipment_id)
        entries = [queue_entry_payload(entry) for entry in live]
        self.cache.set_list(equipment_id, entries)
        self.cache.set_length(equipment_id, len(entries))
        return entries

    def get_queue_length(self, db: Session, equipment_id: str) -> int:
        cached = self.cache.get_length(equipment_id)
        if cached is not None:
            return cached
        length = QueueRepository(db).count_live(equipment_id)
        self.cache.set_length(equipment_id, length)
        return length

    def get_queue_position(self, db: Session, equipment_id: str, consumer_id: str) -> QueuePosition:
        if EquipmentRepository(db).get(equipment_id) is None:
            raise ResourceNotFound(
                f"Equipment {equipment_id} not found",
                details={"equipment_id": equipment_id},
            )
        queue_repo = QueueRepository(db)
        entry = queue_repo.get_live_for_consumer(equipment_id, consumer_id)
        if entry is None:
            raise QueueEntryNotFound(
                "You are not in the queue for this equipment",
                details={"equipment_id": equipment_id},
            )
        if entry.state == QueueState.NOTIFIED:
            wait = 0.0
        else:
            wait = self.analytics.estimate_wait_minutes(db, equipment_id, entry.position)
        return QueuePosition(
            entry_id=entry.id,
            equipment_id=equipment_id,
            consumer_id=consumer_id,
            position=entry.position,
            state=entry.state,
            queue_length=queue_repo.count_live(equipment_id),
            joined_at=entry.joined_at,
            notified_at=entry.notified_at,
            claim_expires_at=entry.claim_expires_at,
            estimated_wait_minutes=wait,
        )

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def get_active_session(
        self,
        db: Session,
        equipment_id: str,
        consumer_id: str,
    ) -> UsageSession | None:
        if EquipmentRepository(db).get(equipment_id) is None:
            raise ResourceNotFound(
                f"Equipment {equipment_id} not found",
                details={"equipment_id": equipment_id},
            )
        return UsageRepository(db).get_open_for_consumer(equipment_id, consumer_id)

    def record_activity(
        self,
        db: Session,
        session_id: str,
        consumer_id: str,
        *,
        heart_rate: int | None = None,
        heart_rate_max: int | None = None,
        sensor_data: dict[str, Any] | None = None,
    ) -> UsageSession:
        """Fold a telemetry sample into the member's open session."""
        session_id = _require_id(session_id, "session_id")

        def work(effects: _AfterCommit) -> UsageSession:
            usage_repo = UsageRepository(db)
            usage = usage_repo.get(session_id)
            if usage is None or not usage.is_open:
                raise SessionNotFound(
                    "No open session with that id",
                    details={"session_id": session_id},
                )
            if usage.consumer_id != consumer_id:
                raise NotOwner(
                    "This session belongs to another member",
                    details={"session_id": session_id},
                )

            values: dict[str, Any] = {"last_activity_at": self._clock()}
            if heart_rate is not None:
                if usage.heart_rate_avg:
                    running = (usage.heart_rate_avg + heart_rate) / 2
                    values["heart_rate_avg"] = round_half_up(running)
                else:
                    values["heart_rate_avg"] = round_half_up(heart_rate)
            if heart_rate_max is not None:
                peak = round_half_up(heart_rate_max)
                values["heart_rate_max"] = max(usage.heart_rate_max or 0, peak)
            if sensor_data:
                values["sensor_data"] = {**(usage.sensor_data or {}), **sensor_data}
            if not usage_repo.update_open(session_id, **values):
                raise SessionNotFound(
                    "Session was already closed",
                    details={"session_id": session_id},
                )
            return usage_repo.get(session_id)

        return self._transact(db, "record activity", work)

    # ------------------------------------------------------------------
    # Sweeper operations
    # ------------------------------------------------------------------

    def expire_session(self, db: Session, session_id: str) -> bool:
        """Force-close a session past its deadline, billed up to the deadline.

        Returns False when it was already closed or is not yet due.
        """
        usage = UsageRepository(db).get(session_id)
        if usage is None or not usage.is_open:
            return False
        equipment_id = usage.equipment_id

        def work(effects: _AfterCommit) -> bool:
            now = self._clock()
            equipment = self._locked_equipment(db, equipment_id)
            current = UsageRepository(db).get(session_id)
            if current is None or not current.is_open or as_utc(current.auto_end_at) > now:
                return False
            return self._close_session(
                db,
                effects,
                current,
                equipment,
                ended_at=as_utc(current.auto_end_at),
                ended_by=ENDED_BY_SWEEPER,
            )

        return self._transact(db, "expire session", work, equipment_id=equipment_id)

    def expire_claim(self, db: Session, entry_id: str) -> bool:
        """Expire a called entry whose claim window lapsed and call the next one."""
        entry = QueueRepository(db).get(entry_id)
        if entry is None or entry.state != QueueState.NOTIFIED:
            return False
        equipment_id = entry.equipment_id

        def work(effects: _AfterCommit) -> bool:
            now = self._clock()
            equipment = self._locked_equipment(db, equipment_id)
            queue_repo = QueueRepository(db)
            current = queue_repo.get(entry_id)
            if (
                current is None
                or current.state != QueueState.NOTIFIED
                or current.claim_expires_at is None
                or as_utc(current.claim_expires_at) > now
            ):
                return False
            consumer_id = current.consumer_id
            name = equipment.name
            status = equipment.status
            if not queue_repo.transition(
                entry_id,
                expected=(QueueState.NOTIFIED,),
                new=QueueState.EXPIRED,
                resolved_at=now,
            ):
                return False
            effects.defer(
                EVENT_CLAIM_EXPIRED,
                self.notifier.notify_consumer,
                consumer_id,
                EVENT_CLAIM_EXPIRED,
                {"equipment_id": equipment_id, "equipment_name": name, "queue_entry_id": entry_id},
            )
            self._queue_changed(effects, equipment_id)
            if status == EquipmentStatus.AVAILABLE:
                self._equipment_freed(db, effects, equipment_id, now)
            logger.info("Claim window for entry %s on %s expired", entry_id, equipment_id)
            return True

        return self._transact(db, "expire claim", work, equipment_id=equipment_id)

    def send_expiry_warning(self, db: Session, session_id: str) -> bool:
        """Warn the occupant once that the session will be closed soon."""

        def work(effects: _AfterCommit) -> bool:
            now = self._clock()
            usage_repo = UsageRepository(db)
            usage = usage_repo.get(session_id)
            if usage is None or not usage.is_open:
                return False
            consumer_id = usage.consumer_id
            equipment_id = usage.equipment_id
            auto_end_at = usage.auto_end_at
            if not usage_repo.mark_warning_sent(session_id, now):
                return False
            equipment = EquipmentRepository(db).get(equipment_id)
            effects.defer(
                EVENT_SESSION_EXPIRING,
                self.notifier.notify_consumer,
                consumer_id,
                EVENT_SESSION_EXPIRING,
                {
                    "equipment_id": equipment_id,
                    "equipment_name": equipment.name if equipment else None,
                    "session_id": session_id,
                    "auto_end_at": _iso(auto_end_at),
                },
            )
            return True

        return self._transact(db, "expiry warning", work)

    # ------------------------------------------------------------------
    # Equipment administration and issues
    # ------------------------------------------------------------------

    def report_issue(
        self,
        db: Session,
        equipment_id: str,
        consumer_id: str,
        severity: IssueSeverity,
        *,
        issue_type: str = "other",
        description: str | None = None,
    ) -> IssueReport:
        """Record a problem; blocking severities take the equipment out of order.

        An open session on the equipment is left running.
        """
        equipment_id = _require_id(equipment_id, "equipment_id")
        consumer_id = _require_id(consumer_id, "consumer_id")

        def work(effects: _AfterCommit) -> IssueReport:
            equipment = self._locked_equipment(db, equipment_id)
            issue = IssueRepository(db).create(
                equipment_id=equipment_id,
                consumer_id=consumer_id,
                issue_type=issue_type,
                severity=severity,
                description=description,
            )
            if severity in BLOCKING_SEVERITIES and equipment.status != EquipmentStatus.OUT_OF_ORDER:
                EquipmentRepository(db).force_status(equipment_id, EquipmentStatus.OUT_OF_ORDER)
                self._status_changed(effects, equipment_id, EquipmentStatus.OUT_OF_ORDER)
                logger.warning(
                    "Equipment %s out of order after %s issue %s",
                    equipment_id,
                    IssueSeverity(severity).value,
                    issue.id,
                )
            effects.defer(
                EVENT_ISSUE_REPORTED,
                self.notifier.broadcast,
                equipment_id,
                EVENT_ISSUE_REPORTED,
                {
                    "equipment_id": equipment_id,
                    "issue_id": issue.id,
                    "issue_type": issue_type,
                    "severity": IssueSeverity(severity).value,
                },
            )
            return issue

        return self._transact(db, "report issue", work, equipment_id=equipment_id)

    def list_issues(self, db: Session, equipment_id: str) -> list[IssueReport]:
        self.get_equipment(db, equipment_id)
        return IssueRepository(db).list_for_equipment(equipment_id)

    def set_equipment_status(
        self,
        db: Session,
        equipment_id: str,
        status: EquipmentStatus,
    ) -> Equipment:
        """Administrative status change.

        IN_USE is only ever set by a claim. AVAILABLE and RESERVED are refused
        while a member is using the equipment.
        """
        equipment_id = _require_id(equipment_id, "equipment_id")
        if status not in ADMIN_STATUSES:
            raise InvalidRequest(
                f"Status {EquipmentStatus(status).value} cannot be set directly",
                details={"status": EquipmentStatus(status).value},
            )

        def work(effects: _AfterCommit) -> Equipment:
            equipment = self._locked_equipment(db, equipment_id)
            previous = equipment.status
            occupied = UsageRepository(db).get_open_for_equipment(equipment_id) is not None
            if occupied and status in (EquipmentStatus.AVAILABLE, EquipmentStatus.RESERVED):
                raise ResourceUnavailable(
                    "Equipment is in use; release the session first",
                    details={"equipment_id": equipment_id},
                )
            if previous != status:
                EquipmentRepository(db).force_status(equipment_id, status)
                self._status_changed(effects, equipment_id, status)
                if status == EquipmentStatus.AVAILABLE:
                    self._equipment_freed(db, effects, equipment_id, self._clock())
                logger.info(
                    "Equipment %s status %s -> %s",
                    equipment_id,
                    EquipmentStatus(previous).value,
                    status.value,
                )
            return EquipmentRepository(db).get(equipment_id)

        return self._transact(db, "set status", work, equipment_id=equipment_id)

    def create_equipment(
        self,
        db: Session,
        *,
        name: str,
        category: EquipmentCategory,
        location: str | None = None,
    ) -> Equipment:
        name = _require_id(name, "name")

        def work(effects: _AfterCommit) -> Equipment:
            return EquipmentRepository(db).create(name=name, category=category, location=location)

        equipment = self._transact(db, "create equipment", work)
        logger.info("Registered equipment %s (%s)", equipment.id, name)
        return equipment

    def get_equipment(self, db: Session, equipment_id: str) -> Equipment:
        equipment = EquipmentRepository(db).get(equipment_id)
        if equipment is None:
            raise ResourceNotFound(
                f"Equipment {equipment_id} not found",
                details={"equipment_id": equipment_id},
            )
        return equipment

    def list_equipment(
        self,
        db: Session,
        *,
        status: EquipmentStatus | None = None,
        category: EquipmentCategory | None = None,
    ) -> list[Equipment]:
        return EquipmentRepository(db).list_all(status=status, category=category)


def build_coordinator(
    config: Settings,
    *,
    notifier: NotificationFanout,
    cache: QueueCache,
    lock: EquipmentLock | None = None,
    rewards: RewardsHook | None = None,
    clock: Callable[[], datetime] = utcnow,
) -> ContentionCoordinator:
    """Wire a coordinator from application settings."""
    return ContentionCoordinator(
        notifier=notifier,
        cache=cache,
        lock=lock,
        rewards=rewards,
        config=CoordinatorConfig.from_settings(config),
        analytics=AnalyticsEstimator.from_settings(config, clock=clock),
        clock=clock,
    )
