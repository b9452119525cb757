# tests/services/test_queue.py
from __future__ import annotations

from datetime import timedelta

import pytest
from sqlalchemy import select
from sqlalchemy.orm import Session

from gym_floor.models import Equipment, EquipmentStatus, QueueEntry, QueueState, UsageSession
from gym_floor.repositories import QueueRepository
from gym_floor.services.coordinator import ContentionCoordinator
from gym_floor.services.errors import (
    AlreadyActive,
    AlreadyQueued,
    NotOwner,
    QueueEntryNotFound,
    QueueFull,
    ResourceIdle,
    ResourceNotFound,
    ResourceUnavailable,
)
from tests.conftest import START, FakeClock, RecordingNotifier


def _waiting_positions(db: Session, equipment_id: str) -> list[tuple[str, int]]:
    db.expire_all()
    stmt = (
        select(QueueEntry.consumer_id, QueueEntry.position)
        .where(QueueEntry.equipment_id == equipment_id, QueueEntry.state == QueueState.WAITING)
        .order_by(QueueEntry.position)
    )
    return [(row[0], row[1]) for row in db.execute(stmt)]


def _entry(db: Session, entry_id: str) -> QueueEntry:
    db.expire_all()
    entry = db.get(QueueEntry, entry_id)
    assert entry is not None
    return entry


@pytest.fixture()
def occupied(
    db_session: Session,
    coordinator: ContentionCoordinator,
    treadmill: Equipment,
) -> UsageSession:
    """The treadmill, claimed by member-x."""
    return coordinator.claim_resource(db_session, treadmill.id, "member-x")


class TestJoin:
    def test_join_idle_equipment_suggests_claim(
        self,
        db_session: Session,
        coordinator: ContentionCoordinator,
        treadmill: Equipment,
    ) -> None:
        with pytest.raises(ResourceIdle) as excinfo:
            coordinator.join_queue(db_session, treadmill.id, "member-y")
        assert excinfo.value.hint == "claim"

    def test_join_assigns_dense_positions(
        self,
        db_session: Session,
        coordinator: ContentionCoordinator,
        treadmill: Equipment,
        occupied: UsageSession,
        notifier: RecordingNotifier,
    ) -> None:
        entries = [
            coordinator.join_queue(db_session, treadmill.id, member)
            for member in ("member-a", "member-b", "member-c")
        ]

        assert [entry.position for entry in entries] == [1, 2, 3]
        assert all(entry.state == QueueState.WAITING for entry in entries)
        assert entries[0].joined_at == START
        assert len(notifier.named("queue:updated")) == 3

    def test_join_on_maintenance_equipment(
        self,
        db_session: Session,
        coordinator: ContentionCoordinator,
        make_equipment,
    ) -> None:
        equipment = make_equipment(status=EquipmentStatus.MAINTENANCE)
        entry = coordinator.join_queue(db_session, equipment.id, "member-a")
        assert entry.position == 1

    def test_join_twice(
        self,
        db_session: Session,
        coordinator: ContentionCoordinator,
        treadmill: Equipment,
        occupied: UsageSession,
    ) -> None:
        coordinator.join_queue(db_session, treadmill.id, "member-a")
        with pytest.raises(AlreadyQueued):
            coordinator.join_queue(db_session, treadmill.id, "member-a")

    def test_occupant_cannot_queue(
        self,
        db_session: Session,
        coordinator: ContentionCoordinator,
        treadmill: Equipment,
        occupied: UsageSession,
    ) -> None:
        with pytest.raises(AlreadyActive):
            coordinator.join_queue(db_session, treadmill.id, "member-x")

    def test_queue_full(
        self,
        db_session: Session,
        make_coordinator,
        treadmill: Equipment,
    ) -> None:
        coordinator = make_coordinator(max_queue_length=2)
        coordinator.claim_resource(db_session, treadmill.id, "member-x")
        coordinator.join_queue(db_session, treadmill.id, "member-a")
        coordinator.join_queue(db_session, treadmill.id, "member-b")
        with pytest.raises(QueueFull):
            coordinator.join_queue(db_session, treadmill.id, "member-c")

    def test_join_unknown_equipment(
        self,
        db_session: Session,
        coordinator: ContentionCoordinator,
    ) -> None:
        with pytest.raises(ResourceNotFound):
            coordinator.join_queue(db_session, "missing", "member-a")

    def test_rejoin_after_leaving(
        self,
        db_session: Session,
        coordinator: ContentionCoordinator,
        treadmill: Equipment,
        occupied: UsageSession,
    ) -> None:
        first = coordinator.join_queue(db_session, treadmill.id, "member-a")
        coordinator.join_queue(db_session, treadmill.id, "member-b")
        coordinator.leave_queue(db_session, first.id, "member-a")

        again = coordinator.join_queue(db_session, treadmill.id, "member-a")
        assert again.id != first.id
        assert _waiting_positions(db_session, treadmill.id) == [("member-b", 1), ("member-a", 2)]


class TestLeave:
    def test_leave_closes_the_gap(
        self,
        db_session: Session,
        coordinator: ContentionCoordinator,
        treadmill: Equipment,
        occupied: UsageSession,
    ) -> None:
        members = ["member-a", "member-b", "member-c", "member-d", "member-e"]
        entries = {m: coordinator.join_queue(db_session, treadmill.id, m) for m in members}

        left = coordinator.leave_queue(db_session, entries["member-c"].id, "member-c")

        assert left.state == QueueState.CANCELLED
        assert left.resolved_at == START
        assert _waiting_positions(db_session, treadmill.id) == [
            ("member-a", 1),
            ("member-b", 2),
            ("member-d", 3),
            ("member-e", 4),
        ]

    def test_leave_head_and_tail(
        self,
        db_session: Session,
        coordinator: ContentionCoordinator,
        treadmill: Equipment,
        occupied: UsageSession,
    ) -> None:
        a = coordinator.join_queue(db_session, treadmill.id, "member-a")
        coordinator.join_queue(db_session, treadmill.id, "member-b")
        c = coordinator.join_queue(db_session, treadmill.id, "member-c")

        coordinator.leave_queue(db_session, c.id, "member-c")
        coordinator.leave_queue(db_session, a.id, "member-a")

        assert _waiting_positions(db_session, treadmill.id) == [("member-b", 1)]

    def test_leave_by_another_member(
        self,
        db_session: Session,
        coordinator: ContentionCoordinator,
        treadmill: Equipment,
        occupied: UsageSession,
    ) -> None:
        entry = coordinator.join_queue(db_session, treadmill.id, "member-a")
        with pytest.raises(NotOwner):
            coordinator.leave_queue(db_session, entry.id, "member-b")

    def test_administrative_leave(
        self,
        db_session: Session,
        coordinator: ContentionCoordinator,
        treadmill: Equipment,
        occupied: UsageSession,
    ) -> None:
        entry = coordinator.join_queue(db_session, treadmill.id, "member-a")
        assert coordinator.leave_queue(db_session, entry.id).state == QueueState.CANCELLED

    def test_leave_twice(
        self,
        db_session: Session,
        coordinator: ContentionCoordinator,
        treadmill: Equipment,
        occupied: UsageSession,
    ) -> None:
        entry = coordinator.join_queue(db_session, treadmill.id, "member-a")
        coordinator.leave_queue(db_session, entry.id, "member-a")
        with pytest.raises(QueueEntryNotFound):
            coordinator.leave_queue(db_session, entry.id, "member-a")

    def test_notified_member_leaving_calls_the_next(
        self,
        db_session: Session,
        coordinator: ContentionCoordinator,
        treadmill: Equipment,
        occupied: UsageSession,
        notifier: RecordingNotifier,
    ) -> None:
        a = coordinator.join_queue(db_session, treadmill.id, "member-a")
        b = coordinator.join_queue(db_session, treadmill.id, "member-b")
        coordinator.release_resource(db_session, occupied.id, "member-x")
        notifier.clear()

        coordinator.leave_queue(db_session, a.id, "member-a")

        assert _entry(db_session, b.id).state == QueueState.NOTIFIED
        assert [event[1] for event in notifier.named("queue:your_turn")] == ["member-b"]


class TestAdvance:
    def test_release_notifies_only_the_head(
        self,
        db_session: Session,
        coordinator: ContentionCoordinator,
        treadmill: Equipment,
        occupied: UsageSession,
        clock: FakeClock,
        notifier: RecordingNotifier,
    ) -> None:
        a = coordinator.join_queue(db_session, treadmill.id, "member-a")
        b = coordinator.join_queue(db_session, treadmill.id, "member-b")
        clock.advance(minutes=20)

        coordinator.release_resource(db_session, occupied.id, "member-x")

        head = _entry(db_session, a.id)
        assert head.state == QueueState.NOTIFIED
        assert head.notified_at == clock.now
        assert head.claim_expires_at == clock.now + timedelta(minutes=5)
        assert head.position == 1
        assert _entry(db_session, b.id).state == QueueState.WAITING
        assert _waiting_positions(db_session, treadmill.id) == [("member-b", 1)]
        assert db_session.get(Equipment, treadmill.id).status == EquipmentStatus.AVAILABLE

        your_turn = notifier.named("queue:your_turn")
        assert len(your_turn) == 1
        _, consumer, _, payload = your_turn[0]
        assert consumer == "member-a"
        assert payload["queue_entry_id"] == a.id
        assert payload["equipment_name"] == "Treadmill 1"
        assert payload["claim_expires_at"] == (clock.now + timedelta(minutes=5)).isoformat()
        available = notifier.named("equipment:available")
        assert available[0][3]["next_consumer_id"] == "member-a"

    def test_hold_blocks_other_members(
        self,
        db_session: Session,
        coordinator: ContentionCoordinator,
        treadmill: Equipment,
        occupied: UsageSession,
    ) -> None:
        coordinator.join_queue(db_session, treadmill.id, "member-a")
        coordinator.join_queue(db_session, treadmill.id, "member-b")
        coordinator.release_resource(db_session, occupied.id, "member-x")

        for other in ("member-x", "member-b", "walk-in"):
            with pytest.raises(ResourceUnavailable) as excinfo:
                coordinator.claim_resource(db_session, treadmill.id, other)
            assert "held_until" in excinfo.value.details

    def test_hold_not_enforced(
        self,
        db_session: Session,
        make_coordinator,
        treadmill: Equipment,
    ) -> None:
        coordinator = make_coordinator(queue_hold_enforced=False)
        usage = coordinator.claim_resource(db_session, treadmill.id, "member-x")
        coordinator.join_queue(db_session, treadmill.id, "member-a")
        coordinator.release_resource(db_session, usage.id, "member-x")

        walk_in = coordinator.claim_resource(db_session, treadmill.id, "walk-in")
        assert walk_in.consumer_id == "walk-in"

    def test_notified_member_claims(
        self,
        db_session: Session,
        coordinator: ContentionCoordinator,
        treadmill: Equipment,
        occupied: UsageSession,
        clock: FakeClock,
    ) -> None:
        a = coordinator.join_queue(db_session, treadmill.id, "member-a")
        coordinator.join_queue(db_session, treadmill.id, "member-b")
        coordinator.release_resource(db_session, occupied.id, "member-x")
        clock.advance(minutes=2)

        usage = coordinator.claim_resource(db_session, treadmill.id, "member-a")

        assert usage.queue_entry_id == a.id
        served = _entry(db_session, a.id)
        assert served.state == QueueState.COMPLETED
        assert served.resolved_at == clock.now
        assert db_session.get(Equipment, treadmill.id).status == EquipmentStatus.IN_USE
        assert _waiting_positions(db_session, treadmill.id) == [("member-b", 1)]

    def test_waiting_member_claims_after_window_lapsed(
        self,
        db_session: Session,
        coordinator: ContentionCoordinator,
        treadmill: Equipment,
        occupied: UsageSession,
        clock: FakeClock,
    ) -> None:
        coordinator.join_queue(db_session, treadmill.id, "member-a")
        b = coordinator.join_queue(db_session, treadmill.id, "member-b")
        coordinator.join_queue(db_session, treadmill.id, "member-c")
        coordinator.release_resource(db_session, occupied.id, "member-x")
        clock.advance(minutes=6)

        usage = coordinator.claim_resource(db_session, treadmill.id, "member-b")

        assert usage.queue_entry_id == b.id
        assert _entry(db_session, b.id).state == QueueState.CONFIRMED
        assert _waiting_positions(db_session, treadmill.id) == [("member-c", 1)]

    def test_join_while_head_is_called(
        self,
        db_session: Session,
        coordinator: ContentionCoordinator,
        treadmill: Equipment,
        occupied: UsageSession,
    ) -> None:
        coordinator.join_queue(db_session, treadmill.id, "member-a")
        coordinator.release_resource(db_session, occupied.id, "member-x")

        late = coordinator.join_queue(db_session, treadmill.id, "member-b")

        assert late.position == 1
        assert late.state == QueueState.WAITING

    def test_advance_queue_needs_available_equipment(
        self,
        db_session: Session,
        coordinator: ContentionCoordinator,
        treadmill: Equipment,
        occupied: UsageSession,
    ) -> None:
        coordinator.join_queue(db_session, treadmill.id, "member-a")
        assert coordinator.advance_queue(db_session, treadmill.id) is None

    def test_advance_queue_is_a_no_op_while_head_is_called(
        self,
        db_session: Session,
        coordinator: ContentionCoordinator,
        treadmill: Equipment,
        occupied: UsageSession,
    ) -> None:
        coordinator.join_queue(db_session, treadmill.id, "member-a")
        b = coordinator.join_queue(db_session, treadmill.id, "member-b")
        coordinator.release_resource(db_session, occupied.id, "member-x")

        assert coordinator.advance_queue(db_session, treadmill.id) is None
        assert _entry(db_session, b.id).state == QueueState.WAITING


class TestReads:
    def test_get_queue_lists_called_member_first(
        self,
        db_session: Session,
        coordinator: ContentionCoordinator,
        treadmill: Equipment,
        occupied: UsageSession,
    ) -> None:
        coordinator.join_queue(db_session, treadmill.id, "member-a")
        coordinator.join_queue(db_session, treadmill.id, "member-b")
        coordinator.release_resource(db_session, occupied.id, "member-x")

        queue = coordinator.get_queue(db_session, treadmill.id)

        assert [(e["consumer_id"], e["state"], e["position"]) for e in queue] == [
            ("member-a", "NOTIFIED", 1),
            ("member-b", "WAITING", 1),
        ]
        assert coordinator.get_queue_length(db_session, treadmill.id) == 2

    def test_get_queue_is_served_from_cache_until_invalidated(
        self,
        db_session: Session,
        coordinator: ContentionCoordinator,
        treadmill: Equipment,
        occupied: UsageSession,
        clock: FakeClock,
    ) -> None:
        coordinator.join_queue(db_session, treadmill.id, "member-a")
        assert len(coordinator.get_queue(db_session, treadmill.id)) == 1

        # A write that bypasses the coordinator is invisible until the next invalidation.
        QueueRepository(db_session).create(
            equipment_id=treadmill.id,
            consumer_id="member-z",
            position=2,
            joined_at=clock.now,
        )
        db_session.commit()
        assert len(coordinator.get_queue(db_session, treadmill.id)) == 1
        assert coordinator.get_queue_length(db_session, treadmill.id) == 1

        coordinator.join_queue(db_session, treadmill.id, "member-b")
        assert len(coordinator.get_queue(db_session, treadmill.id)) == 3

    def test_get_queue_unknown_equipment(
        self,
        db_session: Session,
        coordinator: ContentionCoordinator,
    ) -> None:
        with pytest.raises(ResourceNotFound):
            coordinator.get_queue(db_session, "missing")

    def test_queue_position_with_estimate(
        self,
        db_session: Session,
        coordinator: ContentionCoordinator,
        treadmill: Equipment,
        occupied: UsageSession,
    ) -> None:
        coordinator.join_queue(db_session, treadmill.id, "member-a")
        coordinator.join_queue(db_session, treadmill.id, "member-b")

        first = coordinator.get_queue_position(db_session, treadmill.id, "member-a")
        second = coordinator.get_queue_position(db_session, treadmill.id, "member-b")

        assert (first.position, first.queue_length) == (1, 2)
        # Three hours left on the occupant, then 30 minutes per member ahead.
        assert first.estimated_wait_minutes == 180.0
        assert second.estimated_wait_minutes == 210.0

    def test_queue_position_of_called_member(
        self,
        db_session: Session,
        coordinator: ContentionCoordinator,
        treadmill: Equipment,
        occupied: UsageSession,
    ) -> None:
        coordinator.join_queue(db_session, treadmill.id, "member-a")
        coordinator.release_resource(db_session, occupied.id, "member-x")

        position = coordinator.get_queue_position(db_session, treadmill.id, "member-a")

        assert position.state == QueueState.NOTIFIED
        assert position.estimated_wait_minutes == 0.0
        assert position.claim_expires_at is not None

    def test_queue_position_when_not_queued(
        self,
        db_session: Session,
        coordinator: ContentionCoordinator,
        treadmill: Equipment,
    ) -> None:
        with pytest.raises(QueueEntryNotFound):
            coordinator.get_queue_position(db_session, treadmill.id, "member-a")
