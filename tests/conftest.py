"""Root conftest for all tests.

Provides an in-memory SQLite database wired into activity_dedup.db.session,
plus factories for activity records and stored activities.
"""

from datetime import datetime

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from activity_dedup.db.models import Activity, ActivityExercise, ActivityStream, Base, PlannedSession, SessionLink
from activity_dedup.dedup.memory_repository import InMemoryActivityRepository
from activity_dedup.dedup.repository import SqlActivityRepository
from activity_dedup.dedup.types import ActivityRecord


# Enable foreign key constraints for SQLite
@event.listens_for(Engine, "connect")
def _set_sqlite_pragma(dbapi_connection, connection_record):
    """Enable foreign key constraints in SQLite connections."""
    if type(dbapi_connection).__module__.startswith("sqlite3"):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


@pytest.fixture
def test_user_id() -> str:
    """Stable user ID used across tests."""
    return "user-1"


@pytest.fixture
def db_engine(monkeypatch):
    """In-memory SQLite engine patched into activity_dedup.db.session.

    StaticPool keeps a single connection so every session sees the same
    in-memory database.
    """
    engine = create_engine(
        "sqlite://",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)

    monkeypatch.setattr("activity_dedup.db.session._engine", engine)
    monkeypatch.setattr(
        "activity_dedup.db.session._SessionLocal",
        sessionmaker(autocommit=False, autoflush=False, bind=engine),
    )

    yield engine
    engine.dispose()


@pytest.fixture
def db_session(db_engine):
    """Session bound to the in-memory database."""
    session = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def sql_repository(db_session) -> SqlActivityRepository:
    return SqlActivityRepository(db_session)


@pytest.fixture
def make_record(test_user_id):
    """Factory for ActivityRecord snapshots (engine-level tests)."""

    def _make(
        activity_id: str,
        start_time: datetime | None,
        duration_seconds: int | None,
        *,
        type: str | None = None,
        title: str | None = None,
        source: str = "strava",
        user_id: str | None = None,
        created_at: datetime | None = None,
        **kwargs,
    ) -> ActivityRecord:
        return ActivityRecord(
            id=activity_id,
            user_id=user_id or test_user_id,
            source=source,
            start_time=start_time,
            duration_seconds=duration_seconds,
            type=type,
            title=title,
            created_at=created_at or datetime(2024, 1, 1, 0, 0),
            **kwargs,
        )

    return _make


@pytest.fixture
def memory_repository():
    """Factory for in-memory repositories seeded with records."""

    def _make(records: list[ActivityRecord]) -> InMemoryActivityRepository:
        return InMemoryActivityRepository(records)

    return _make


@pytest.fixture
def store_activity(db_session, test_user_id):
    """Insert an Activity row with optional child data and return it."""

    def _store(
        activity_id: str,
        start_time: datetime | None,
        duration_seconds: int | None,
        *,
        type: str | None = None,
        title: str | None = None,
        source: str = "strava",
        user_id: str | None = None,
        created_at: datetime | None = None,
        with_stream: bool = False,
        exercises: list[str] | None = None,
        planned_session: bool = False,
        is_duplicate: bool = False,
        duplicate_of: str | None = None,
    ) -> Activity:
        owner = user_id or test_user_id
        activity = Activity(
            id=activity_id,
            user_id=owner,
            source=source,
            external_id=f"{source}-{activity_id}",
            start_time=start_time,
            duration_seconds=duration_seconds,
            type=type,
            title=title,
            created_at=created_at or datetime(2024, 1, 1, 0, 0),
            is_duplicate=is_duplicate,
            duplicate_of=duplicate_of,
        )
        db_session.add(activity)
        db_session.flush()

        if with_stream:
            db_session.add(ActivityStream(id=f"stream-{activity_id}", activity_id=activity_id, data={"heartrate": [120, 130]}))
        for position, name in enumerate(exercises or []):
            db_session.add(
                ActivityExercise(id=f"ex-{activity_id}-{position}", activity_id=activity_id, position=position, name=name)
            )
        if planned_session:
            planned = PlannedSession(
                id=f"plan-{activity_id}",
                user_id=owner,
                starts_at=start_time or datetime(2024, 1, 1),
                type=type or "Run",
                title=title or "Planned",
            )
            db_session.add(planned)
            db_session.flush()
            db_session.add(SessionLink(user_id=owner, planned_session_id=planned.id, activity_id=activity_id))

        db_session.commit()
        return activity

    return _store
