# tests/conftest.py
from __future__ import annotations

import os
from collections.abc import Callable, Generator, Iterator
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ["SWEEPER_ENABLED"] = "false"
os.environ["CACHE_BACKEND"] = "memory"
os.environ["EQUIPMENT_LOCK_ENABLED"] = "false"
os.environ["PUSH_ENABLED"] = "false"
os.environ.pop("REWARDS_BASE_URL", None)

from gym_floor.api.v1.dependencies import get_coordinator as app_get_coordinator
from gym_floor.db.session import Base
from gym_floor.db.session import get_db as app_get_session
from gym_floor.main import app as fastapi_app
from gym_floor.models import Equipment, EquipmentCategory, EquipmentStatus
from gym_floor.services.coordinator import ContentionCoordinator, CoordinatorConfig
from gym_floor.services.queue_cache import MemoryQueueCache

TEST_DB_URL = "sqlite://"
START = datetime(2026, 1, 5, 9, 0, tzinfo=UTC)


class FakeClock:
    """Controllable replacement for ``utcnow``."""

    def __init__(self, start: datetime = START) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class RecordingNotifier:
    """NotificationFanout that keeps every event it is handed."""

    def __init__(self) -> None:
        self.events: list[tuple[str, str, str, dict[str, Any]]] = []

    def publish_status_changed(self, equipment_id: str, status: str) -> None:
        self.events.append(("status", equipment_id, "equipment:status_changed", {"status": status}))

    def broadcast(self, equipment_id: str, event: str, payload: dict[str, Any]) -> None:
        self.events.append(("broadcast", equipment_id, event, payload))

    def notify_consumer(self, consumer_id: str, event: str, payload: dict[str, Any]) -> None:
        self.events.append(("consumer", consumer_id, event, payload))

    def named(self, event: str) -> list[tuple[str, str, str, dict[str, Any]]]:
        return [item for item in self.events if item[2] == event]

    def clear(self) -> None:
        self.events.clear()


def _sqlite_savepoint_support(engine: Engine) -> None:
    # pysqlite defers BEGIN on its own; take over so SAVEPOINT nests correctly.
    @event.listens_for(engine, "connect")
    def do_connect(dbapi_connection: Any, connection_record: Any) -> None:
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def do_begin(conn: Connection) -> None:
        conn.exec_driver_sql("BEGIN")


@pytest.fixture(scope="session")
def engine() -> Generator[Engine, None, None]:
    engine = create_engine(
        TEST_DB_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    _sqlite_savepoint_support(engine)
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture()
def connection(engine: Engine) -> Iterator[Connection]:
    connection = engine.connect()
    transaction = connection.begin()
    try:
        yield connection
    finally:
        if transaction.is_active:
            transaction.rollback()
        connection.close()

        # Ensure each test sees a clean database even if commits escaped.
        with engine.begin() as cleanup_conn:
            for table in reversed(Base.metadata.sorted_tables):
                cleanup_conn.execute(table.delete())


@pytest.fixture()
def session_factory(connection: Connection) -> sessionmaker[Session]:
    """Sessions whose commits become savepoint releases on the test connection."""
    return sessionmaker(
        bind=connection,
        autoflush=False,
        join_transaction_mode="create_savepoint",
    )


@pytest.fixture()
def db_session(session_factory: sessionmaker[Session]) -> Iterator[Session]:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture()
def cache() -> MemoryQueueCache:
    return MemoryQueueCache(ttl_seconds=120)


@pytest.fixture()
def make_coordinator(
    notifier: RecordingNotifier,
    cache: MemoryQueueCache,
    clock: FakeClock,
) -> Callable[..., ContentionCoordinator]:
    """Build a coordinator over the shared fakes with config overrides."""

    def _make(**config: Any) -> ContentionCoordinator:
        return ContentionCoordinator(
            notifier=notifier,
            cache=cache,
            config=CoordinatorConfig(**config),
            clock=clock,
        )

    return _make


@pytest.fixture()
def coordinator(make_coordinator: Callable[..., ContentionCoordinator]) -> ContentionCoordinator:
    return make_coordinator()


@pytest.fixture()
def make_equipment(db_session: Session) -> Callable[..., Equipment]:
    """Insert and commit an equipment row."""

    def _make(
        name: str = "Treadmill 1",
        category: EquipmentCategory = EquipmentCategory.CARDIO,
        status: EquipmentStatus = EquipmentStatus.AVAILABLE,
        location: str | None = "Cardio deck",
    ) -> Equipment:
        equipment = Equipment(
            name=name,
            category=category,
            status=status,
            location=location,
            usage_hours=0.0,
        )
        db_session.add(equipment)
        db_session.commit()
        return equipment

    return _make


@pytest.fixture()
def treadmill(make_equipment: Callable[..., Equipment]) -> Equipment:
    return make_equipment()


@pytest.fixture(scope="session")
def app() -> FastAPI:
    return fastapi_app


@pytest.fixture()
def client(
    app: FastAPI,
    db_session: Session,
    coordinator: ContentionCoordinator,
) -> Iterator[TestClient]:
    def _get_session_override() -> Generator[Session, None, None]:
        yield db_session

    app.dependency_overrides[app_get_session] = _get_session_override
    app.dependency_overrides[app_get_coordinator] = lambda: coordinator
    try:
        with TestClient(app, base_url="http://test") as test_client:
            yield test_client
    finally:
        app.dependency_overrides.pop(app_get_session, None)
        app.dependency_overrides.pop(app_get_coordinator, None)


def member(consumer_id: str) -> dict[str, str]:
    """Headers identifying a member the way the gateway does."""
    return {"X-Consumer-Id": consumer_id}
