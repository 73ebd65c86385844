from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import JSON, Boolean, DateTime, Float, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all database models."""


class Activity(Base):
    """Workout records ingested from third-party providers.

    Several providers can deliver the same real-world workout, so one event may
    exist as several rows. Deduplication keeps all rows and flags the redundant
    ones instead of deleting them.

    Schema:
    - id: UUID primary key
    - user_id: Owning user
    - source: Provider that delivered the record (garmin, strava, manual, ...)
    - external_id: Provider's own identifier (nullable for manual entries)
    - start_time: Activity start timestamp (UTC, indexed)
    - duration_seconds: Elapsed duration
    - type: Activity category (Run, Ride, VirtualRide, Hike, Gym, ...)
    - title / description: Free text from the provider
    - distance_meters, elevation_gain_meters, average_heartrate, average_power: Optional metrics
    - is_duplicate: True once merged into a canonical record
    - duplicate_of: Canonical activity id when is_duplicate is set
    - created_at: Ingestion timestamp

    Constraints:
    - Unique constraint: (user_id, source, external_id) prevents re-ingesting the same provider record
    - duplicate_of always references a non-duplicate activity
    """

    __tablename__ = "activities"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()), index=True)
    user_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    source: Mapped[str] = mapped_column(String, nullable=False, default="manual")
    external_id: Mapped[str | None] = mapped_column(String, nullable=True)
    start_time: Mapped[datetime | None] = mapped_column(DateTime, nullable=True, index=True)
    duration_seconds: Mapped[int | None] = mapped_column(Integer, nullable=True)
    type: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    title: Mapped[str | None] = mapped_column(String, nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    distance_meters: Mapped[float | None] = mapped_column(Float, nullable=True)
    elevation_gain_meters: Mapped[float | None] = mapped_column(Float, nullable=True)
    average_heartrate: Mapped[float | None] = mapped_column(Float, nullable=True)
    average_power: Mapped[float | None] = mapped_column(Float, nullable=True)
    is_duplicate: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    duplicate_of: Mapped[str | None] = mapped_column(
        String,
        ForeignKey("activities.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=lambda: datetime.now(timezone.utc))
    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        UniqueConstraint("user_id", "source", "external_id", name="uq_activity_user_source_external_id"),
        Index("idx_activities_user_start_time", "user_id", "start_time"),  # Candidate loading by date
        Index("idx_activities_user_duplicate", "user_id", "is_duplicate"),
    )


class ActivityStream(Base):
    """Sensor stream payload (heart rate, power, cadence, GPS) for an activity.

    At most one stream per activity.
    """

    __tablename__ = "activity_streams"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()), index=True)
    activity_id: Mapped[str] = mapped_column(
        String,
        ForeignKey("activities.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
        index=True,
    )
    data: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=lambda: datetime.now(timezone.utc))


class ActivityExercise(Base):
    """One exercise of a strength session breakdown."""

    __tablename__ = "activity_exercises"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()), index=True)
    activity_id: Mapped[str] = mapped_column(
        String,
        ForeignKey("activities.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    name: Mapped[str] = mapped_column(String, nullable=False)
    sets: Mapped[int | None] = mapped_column(Integer, nullable=True)
    reps: Mapped[int | None] = mapped_column(Integer, nullable=True)
    weight_kg: Mapped[float | None] = mapped_column(Float, nullable=True)


class PlannedSession(Base):
    """Planned training sessions that completed activities can be linked to."""

    __tablename__ = "planned_sessions"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()), index=True)
    user_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    starts_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)
    type: Mapped[str] = mapped_column(String, nullable=False)  # Run, Bike, Swim, etc.
    title: Mapped[str] = mapped_column(String, nullable=False)
    duration_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    status: Mapped[str] = mapped_column(String, nullable=False, default="planned")  # planned, completed, skipped, cancelled
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=lambda: datetime.now(timezone.utc))


class SessionLink(Base):
    """One-to-one link between a planned session and the activity that completed it.

    - One planned_session links to at most one activity (UNIQUE planned_session_id)
    - One activity links to at most one planned_session (UNIQUE activity_id)
    """

    __tablename__ = "session_links"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()), index=True)
    user_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    planned_session_id: Mapped[str] = mapped_column(
        String,
        ForeignKey("planned_sessions.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    activity_id: Mapped[str] = mapped_column(
        String,
        ForeignKey("activities.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=lambda: datetime.now(timezone.utc))
    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )
