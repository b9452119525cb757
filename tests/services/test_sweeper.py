# tests/services/test_sweeper.py
from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest
from sqlalchemy.orm import Session, sessionmaker

from gym_floor.models import Equipment, EquipmentStatus, QueueEntry, QueueState, UsageSession
from gym_floor.services.coordinator import ContentionCoordinator
from gym_floor.services.sweeper import ExpirySweeper, SweepReport
from tests.conftest import START, FakeClock, RecordingNotifier


def _reload(db: Session, model: type, key: str):
    db.expire_all()
    return db.get(model, key)


@pytest.fixture()
def sweeper(
    coordinator: ContentionCoordinator,
    session_factory: sessionmaker[Session],
    clock: FakeClock,
) -> ExpirySweeper:
    return ExpirySweeper(
        coordinator,
        session_factory=session_factory,
        interval_seconds=0.1,
        clock=clock,
    )


class TestSessionSweep:
    def test_overdue_session_is_billed_to_its_deadline(
        self,
        db_session: Session,
        coordinator: ContentionCoordinator,
        sweeper: ExpirySweeper,
        treadmill: Equipment,
        clock: FakeClock,
    ) -> None:
        usage = coordinator.claim_resource(db_session, treadmill.id, "member-x")
        clock.advance(hours=3, minutes=20)

        report = sweeper.sweep(db_session)

        assert report.sessions_released == 1
        closed = _reload(db_session, UsageSession, usage.id)
        assert closed.ended_at == START + timedelta(hours=3)
        assert closed.duration_seconds == 3 * 60 * 60
        assert closed.calories_burned == 12 * 180
        assert closed.ended_by == "sweeper"
        assert _reload(db_session, Equipment, treadmill.id).status == EquipmentStatus.AVAILABLE

    def test_session_not_yet_due_is_left_alone(
        self,
        db_session: Session,
        coordinator: ContentionCoordinator,
        sweeper: ExpirySweeper,
        treadmill: Equipment,
        clock: FakeClock,
    ) -> None:
        usage = coordinator.claim_resource(db_session, treadmill.id, "member-x")
        clock.advance(hours=1)

        assert sweeper.sweep(db_session).sessions_released == 0
        assert coordinator.expire_session(db_session, usage.id) is False
        assert _reload(db_session, UsageSession, usage.id).ended_at is None

    def test_expiry_calls_the_queue(
        self,
        db_session: Session,
        coordinator: ContentionCoordinator,
        sweeper: ExpirySweeper,
        treadmill: Equipment,
        clock: FakeClock,
        notifier: RecordingNotifier,
    ) -> None:
        coordinator.claim_resource(db_session, treadmill.id, "member-x")
        entry = coordinator.join_queue(db_session, treadmill.id, "member-a")
        clock.advance(hours=4)

        sweeper.sweep(db_session)

        called = _reload(db_session, QueueEntry, entry.id)
        assert called.state == QueueState.NOTIFIED
        assert called.claim_expires_at == clock.now + timedelta(minutes=5)
        assert [e[1] for e in notifier.named("queue:your_turn")] == ["member-a"]

    def test_sweeping_twice_changes_nothing_the_second_time(
        self,
        db_session: Session,
        coordinator: ContentionCoordinator,
        sweeper: ExpirySweeper,
        treadmill: Equipment,
        clock: FakeClock,
        notifier: RecordingNotifier,
    ) -> None:
        coordinator.claim_resource(db_session, treadmill.id, "member-x")
        coordinator.join_queue(db_session, treadmill.id, "member-a")
        clock.advance(hours=4)

        first = sweeper.sweep(db_session)
        events_after_first = list(notifier.events)
        second = sweeper.sweep(db_session)

        assert first.changed
        assert not second.changed
        assert notifier.events == events_after_first

    def test_member_release_wins_over_a_late_sweep(
        self,
        db_session: Session,
        coordinator: ContentionCoordinator,
        treadmill: Equipment,
        clock: FakeClock,
    ) -> None:
        usage = coordinator.claim_resource(db_session, treadmill.id, "member-x")
        clock.advance(hours=3, minutes=1)
        coordinator.release_resource(db_session, usage.id, "member-x")

        assert coordinator.expire_session(db_session, usage.id) is False
        assert _reload(db_session, UsageSession, usage.id).ended_by == "consumer"


class TestClaimSweep:
    def test_lapsed_claim_expires_and_calls_the_next(
        self,
        db_session: Session,
        coordinator: ContentionCoordinator,
        sweeper: ExpirySweeper,
        treadmill: Equipment,
        clock: FakeClock,
        notifier: RecordingNotifier,
    ) -> None:
        usage = coordinator.claim_resource(db_session, treadmill.id, "member-x")
        y = coordinator.join_queue(db_session, treadmill.id, "member-y")
        z = coordinator.join_queue(db_session, treadmill.id, "member-z")
        coordinator.release_resource(db_session, usage.id, "member-x")
        notifier.clear()
        clock.advance(minutes=5, seconds=1)

        report = sweeper.sweep(db_session)

        assert report.claims_expired == 1
        expired = _reload(db_session, QueueEntry, y.id)
        assert expired.state == QueueState.EXPIRED
        assert expired.resolved_at == clock.now
        assert _reload(db_session, QueueEntry, z.id).state == QueueState.NOTIFIED
        assert [e[1] for e in notifier.named("queue:expired")] == ["member-y"]
        assert [e[1] for e in notifier.named("queue:your_turn")] == ["member-z"]

    def test_open_claim_window_is_left_alone(
        self,
        db_session: Session,
        coordinator: ContentionCoordinator,
        sweeper: ExpirySweeper,
        treadmill: Equipment,
        clock: FakeClock,
    ) -> None:
        usage = coordinator.claim_resource(db_session, treadmill.id, "member-x")
        y = coordinator.join_queue(db_session, treadmill.id, "member-y")
        coordinator.release_resource(db_session, usage.id, "member-x")
        clock.advance(minutes=4)

        assert sweeper.sweep(db_session).claims_expired == 0
        assert coordinator.expire_claim(db_session, y.id) is False
        assert _reload(db_session, QueueEntry, y.id).state == QueueState.NOTIFIED

    def test_claim_beats_the_sweeper(
        self,
        db_session: Session,
        coordinator: ContentionCoordinator,
        treadmill: Equipment,
        clock: FakeClock,
    ) -> None:
        usage = coordinator.claim_resource(db_session, treadmill.id, "member-x")
        y = coordinator.join_queue(db_session, treadmill.id, "member-y")
        coordinator.release_resource(db_session, usage.id, "member-x")
        clock.advance(minutes=4)
        coordinator.claim_resource(db_session, treadmill.id, "member-y")
        clock.advance(minutes=2)

        assert coordinator.expire_claim(db_session, y.id) is False
        assert _reload(db_session, QueueEntry, y.id).state == QueueState.COMPLETED

    def test_lapsed_claim_on_occupied_equipment_does_not_call_the_next(
        self,
        db_session: Session,
        coordinator: ContentionCoordinator,
        sweeper: ExpirySweeper,
        treadmill: Equipment,
        clock: FakeClock,
    ) -> None:
        usage = coordinator.claim_resource(db_session, treadmill.id, "member-x")
        y = coordinator.join_queue(db_session, treadmill.id, "member-y")
        z = coordinator.join_queue(db_session, treadmill.id, "member-z")
        coordinator.release_resource(db_session, usage.id, "member-x")
        clock.advance(minutes=6)
        # member-z walks up once the hold has lapsed.
        coordinator.claim_resource(db_session, treadmill.id, "member-z")

        assert sweeper.sweep(db_session).claims_expired == 1
        assert _reload(db_session, QueueEntry, y.id).state == QueueState.EXPIRED
        assert _reload(db_session, QueueEntry, z.id).state == QueueState.CONFIRMED


class TestExpiryWarning:
    def test_warning_is_sent_once(
        self,
        db_session: Session,
        coordinator: ContentionCoordinator,
        sweeper: ExpirySweeper,
        treadmill: Equipment,
        clock: FakeClock,
        notifier: RecordingNotifier,
    ) -> None:
        usage = coordinator.claim_resource(db_session, treadmill.id, "member-x")
        clock.advance(hours=2, minutes=55)

        assert sweeper.sweep(db_session).warnings_sent == 1
        clock.advance(minutes=1)
        assert sweeper.sweep(db_session).warnings_sent == 0

        [(_, consumer, _, payload)] = notifier.named("session:expiring")
        assert consumer == "member-x"
        assert payload["session_id"] == usage.id
        assert payload["auto_end_at"] == (START + timedelta(hours=3)).isoformat()
        assert _reload(db_session, UsageSession, usage.id).warning_sent_at is not None

    def test_no_warning_far_from_the_deadline(
        self,
        db_session: Session,
        coordinator: ContentionCoordinator,
        sweeper: ExpirySweeper,
        treadmill: Equipment,
        clock: FakeClock,
    ) -> None:
        coordinator.claim_resource(db_session, treadmill.id, "member-x")
        clock.advance(hours=2)
        assert sweeper.sweep(db_session).warnings_sent == 0


class TestBackgroundLoop:
    def test_sweep_once_uses_its_own_session(
        self,
        db_session: Session,
        coordinator: ContentionCoordinator,
        sweeper: ExpirySweeper,
        treadmill: Equipment,
        clock: FakeClock,
    ) -> None:
        usage = coordinator.claim_resource(db_session, treadmill.id, "member-x")
        clock.advance(hours=3, seconds=1)

        report = sweeper.sweep_once()

        assert report.sessions_released == 1
        assert _reload(db_session, UsageSession, usage.id).ended_by == "sweeper"

    @pytest.mark.asyncio
    async def test_start_and_stop(
        self,
        db_session: Session,
        coordinator: ContentionCoordinator,
        sweeper: ExpirySweeper,
        treadmill: Equipment,
        clock: FakeClock,
    ) -> None:
        usage = coordinator.claim_resource(db_session, treadmill.id, "member-x")
        clock.advance(hours=3, seconds=1)

        await sweeper.start()
        assert sweeper.running
        await asyncio.sleep(0.3)
        await sweeper.stop()

        assert not sweeper.running
        assert _reload(db_session, UsageSession, usage.id).ended_at is not None

    @pytest.mark.asyncio
    async def test_failed_pass_does_not_stop_the_loop(
        self,
        coordinator: ContentionCoordinator,
        clock: FakeClock,
        mocker,
    ) -> None:
        sweeper = ExpirySweeper(coordinator, interval_seconds=0.1, clock=clock)
        calls: list[int] = []

        def flaky() -> SweepReport:
            calls.append(1)
            if len(calls) <= 2:
                raise RuntimeError("boom")
            return SweepReport()

        mocker.patch.object(sweeper, "sweep_once", side_effect=flaky)

        await sweeper.start()
        await asyncio.sleep(0.6)
        await sweeper.stop()

        assert len(calls) >= 3
