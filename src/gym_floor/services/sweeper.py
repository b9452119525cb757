"""Background enforcement of occupation and claim deadlines.

This module provides the ExpirySweeper class. Each pass:

- closes open sessions whose auto-expiry deadline has passed
- expires called queue entries whose claim window lapsed, calling the next member
- warns occupants whose session is about to be closed

Every step goes through the coordinator's conditional transitions, so a pass
that races a member's own release or claim, or a second sweeper, is a no-op
for the rows it loses.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from gym_floor.core.settings import settings
from gym_floor.db.session import SessionLocal
from gym_floor.db.time import utcnow
from gym_floor.repositories import QueueRepository, UsageRepository
from gym_floor.services.coordinator import ContentionCoordinator
from gym_floor.services.errors import ContentionError

# Configure logger for this module
logger = logging.getLogger(__name__)


@dataclass
class SweepReport:
    """Counts of what a single pass changed."""

    sessions_released: int = 0
    claims_expired: int = 0
    warnings_sent: int = 0

    @property
    def changed(self) -> bool:
        return bool(self.sessions_released or self.claims_expired or self.warnings_sent)


class ExpirySweeper:
    """Periodically enforces deadlines independent of request traffic."""

    def __init__(
        self,
        coordinator: ContentionCoordinator,
        *,
        session_factory: Callable[[], Session] = SessionLocal,
        interval_seconds: float | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        """Initialize the sweeper.

        Args:
            coordinator: Coordinator whose transitions the sweeper reuses.
            session_factory: Callable returning a fresh database session per pass.
            interval_seconds: Delay between passes; defaults to settings.
            clock: Source of the current time.
        """
        self.coordinator = coordinator
        self._session_factory = session_factory
        self._interval = (
            interval_seconds
            if interval_seconds is not None
            else settings.sweeper_interval_seconds
        )
        self._clock = clock
        self._task: asyncio.Task[None] | None = None
        self._stopping = asyncio.Event()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        """Start the background sweep loop."""
        if self._task is None or self._task.done():
            self._stopping.clear()
            self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        """Stop the background sweep loop."""
        if self._task is None:
            return
        self._stopping.set()
        await self._task
        self._task = None

    async def _run(self) -> None:
        interval = max(0.1, float(self._interval))
        while not self._stopping.is_set():
            try:
                report = await asyncio.to_thread(self.sweep_once)
            except SQLAlchemyError as exc:
                logger.warning("ExpirySweeper could not reach the store: %s", exc)
                report = None
            except Exception:
                logger.error("ExpirySweeper pass failed", exc_info=True)
                report = None
            if report is not None and report.changed:
                logger.info(
                    "Sweep released %d session(s), expired %d claim(s), sent %d warning(s)",
                    report.sessions_released,
                    report.claims_expired,
                    report.warnings_sent,
                )
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=interval)
            except TimeoutError:
                continue

    def sweep_once(self) -> SweepReport:
        """Run one synchronous pass with its own database session."""
        with self._session_factory() as db:
            return self.sweep(db)

    def sweep(self, db: Session) -> SweepReport:
        """Run one pass against ``db``."""
        report = SweepReport()
        now = self._clock()

        session_ids = UsageRepository(db).list_expired_ids(now)
        claim_rows = QueueRepository(db).list_expired_claims(now)

        for session_id in session_ids:
            if self._attempt(db, "expire session", session_id, self.coordinator.expire_session):
                report.sessions_released += 1

        for entry_id, _equipment_id, _consumer_id in claim_rows:
            if self._attempt(db, "expire claim", entry_id, self.coordinator.expire_claim):
                report.claims_expired += 1

        horizon = now + timedelta(seconds=self.coordinator.config.expiry_warning_seconds)
        warn_ids = [usage.id for usage in UsageRepository(db).list_needing_warning(now, horizon)]
        for session_id in warn_ids:
            if self._attempt(db, "expiry warning", session_id, self.coordinator.send_expiry_warning):
                report.warnings_sent += 1
        return report

    @staticmethod
    def _attempt(
        db: Session,
        label: str,
        target_id: str,
        operation: Callable[[Session, str], bool],
    ) -> bool:
        try:
            return operation(db, target_id)
        except ContentionError as exc:
            # One row failing must not stall the rest of the pass.
            logger.warning("Sweeper %s for %s failed: %s", label, target_id, exc.message)
            return False
