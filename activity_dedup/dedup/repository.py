"""Persistence boundary of the deduplication pipeline.

The engine only talks to an ActivityRepository. SqlActivityRepository is the
production implementation over a SQLAlchemy session; every query is scoped by
user_id.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import AbstractContextManager, contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Protocol

from loguru import logger
from sqlalchemy import delete, select, update
from sqlalchemy.orm import Session

from activity_dedup.db.models import Activity, ActivityExercise, ActivityStream, SessionLink
from activity_dedup.dedup.errors import NotFoundError
from activity_dedup.dedup.types import ActivityRecord, ChildKind
from activity_dedup.utils.timezone import to_naive_utc


@dataclass(frozen=True)
class CandidateOptions:
    """Options for loading candidate activities.

    Attributes:
        include_duplicates: Also load activities already flagged as duplicates
        order_by: "start_time" (ascending) or "-start_time" (descending)
        include_child_refs: Attach stream/exercise/plan-link ids
        since: Optional inclusive lower bound on start time
        until: Optional exclusive upper bound on start time
    """

    include_duplicates: bool = True
    order_by: str = "start_time"
    include_child_refs: bool = True
    since: datetime | None = None
    until: datetime | None = None


class ActivityRepository(Protocol):
    """Operations the deduplication pipeline needs from storage."""

    def list_candidates(self, user_id: str, options: CandidateOptions | None = None) -> list[ActivityRecord]: ...

    def get_activity(self, user_id: str, activity_id: str) -> ActivityRecord | None: ...

    def list_duplicates(self, user_id: str) -> list[ActivityRecord]: ...

    def mark_duplicate(self, user_id: str, activity_id: str, canonical_id: str) -> None: ...

    def clear_duplicate(self, user_id: str, activity_id: str) -> None: ...

    def reparent_children(
        self,
        user_id: str,
        from_id: str,
        to_id: str,
        kinds: set[ChildKind],
    ) -> dict[str, int]: ...

    def repoint_duplicates(self, user_id: str, from_id: str, to_id: str) -> int: ...

    def delete_activity(self, user_id: str, activity_id: str) -> None: ...

    def transaction(self) -> AbstractContextManager[None]: ...


class SqlActivityRepository:
    """ActivityRepository backed by a SQLAlchemy session.

    transaction() commits on success and rolls back on any exception, so one
    session can carry several independent group transactions.
    """

    def __init__(self, session: Session) -> None:
        self.session = session

    @contextmanager
    def transaction(self) -> Iterator[None]:
        try:
            yield
            self.session.commit()
        except Exception:
            logger.debug("[DEDUP_REPO] Rolling back transaction")
            self.session.rollback()
            raise

    def _child_refs(
        self,
        activity_ids: list[str],
    ) -> tuple[dict[str, str], dict[str, list[str]], dict[str, str]]:
        if not activity_ids:
            return {}, {}, {}

        streams: dict[str, str] = {}
        for stream_id, activity_id in self.session.execute(
            select(ActivityStream.id, ActivityStream.activity_id).where(ActivityStream.activity_id.in_(activity_ids))
        ):
            streams[activity_id] = stream_id

        exercises: dict[str, list[str]] = {}
        for exercise_id, activity_id in self.session.execute(
            select(ActivityExercise.id, ActivityExercise.activity_id)
            .where(ActivityExercise.activity_id.in_(activity_ids))
            .order_by(ActivityExercise.position, ActivityExercise.id)
        ):
            exercises.setdefault(activity_id, []).append(exercise_id)

        links: dict[str, str] = {}
        for planned_session_id, activity_id in self.session.execute(
            select(SessionLink.planned_session_id, SessionLink.activity_id).where(SessionLink.activity_id.in_(activity_ids))
        ):
            links[activity_id] = planned_session_id

        return streams, exercises, links

    def _to_records(self, rows: list[Activity], include_child_refs: bool = True) -> list[ActivityRecord]:
        streams: dict[str, str] = {}
        exercises: dict[str, list[str]] = {}
        links: dict[str, str] = {}
        if include_child_refs:
            streams, exercises, links = self._child_refs([row.id for row in rows])

        return [
            ActivityRecord(
                id=row.id,
                user_id=row.user_id,
                source=row.source,
                start_time=row.start_time,
                duration_seconds=row.duration_seconds,
                type=row.type,
                title=row.title,
                description=row.description,
                distance_meters=row.distance_meters,
                average_heartrate=row.average_heartrate,
                average_power=row.average_power,
                is_duplicate=row.is_duplicate,
                duplicate_of=row.duplicate_of,
                created_at=row.created_at,
                stream_id=streams.get(row.id),
                exercise_ids=tuple(exercises.get(row.id, [])),
                planned_session_id=links.get(row.id),
            )
            for row in rows
        ]

    def list_candidates(self, user_id: str, options: CandidateOptions | None = None) -> list[ActivityRecord]:
        """Load candidate activities for one user.

        Args:
            user_id: User ID
            options: Loading options (defaults if None)

        Returns:
            Activity records in the requested order
        """
        if options is None:
            options = CandidateOptions()

        query = select(Activity).where(Activity.user_id == user_id)
        if not options.include_duplicates:
            query = query.where(Activity.is_duplicate.is_(False))
        if options.since is not None:
            query = query.where(Activity.start_time >= to_naive_utc(options.since))
        if options.until is not None:
            query = query.where(Activity.start_time < to_naive_utc(options.until))

        if options.order_by == "-start_time":
            query = query.order_by(Activity.start_time.desc(), Activity.id)
        else:
            query = query.order_by(Activity.start_time, Activity.id)

        rows = list(self.session.scalars(query).all())
        logger.debug(f"[DEDUP_REPO] Loaded {len(rows)} candidate activities for user_id={user_id}")
        return self._to_records(rows, include_child_refs=options.include_child_refs)

    def get_activity(self, user_id: str, activity_id: str) -> ActivityRecord | None:
        row = self.session.execute(
            select(Activity).where(Activity.user_id == user_id, Activity.id == activity_id)
        ).scalar_one_or_none()
        if row is None:
            return None
        return self._to_records([row])[0]

    def list_duplicates(self, user_id: str) -> list[ActivityRecord]:
        rows = list(
            self.session.scalars(
                select(Activity)
                .where(Activity.user_id == user_id, Activity.is_duplicate.is_(True))
                .order_by(Activity.start_time, Activity.id)
            ).all()
        )
        return self._to_records(rows)

    def mark_duplicate(self, user_id: str, activity_id: str, canonical_id: str) -> None:
        result = self.session.execute(
            update(Activity)
            .where(Activity.user_id == user_id, Activity.id == activity_id)
            .values(is_duplicate=True, duplicate_of=canonical_id)
        )
        if result.rowcount == 0:
            raise NotFoundError(activity_id)

    def clear_duplicate(self, user_id: str, activity_id: str) -> None:
        result = self.session.execute(
            update(Activity)
            .where(Activity.user_id == user_id, Activity.id == activity_id)
            .values(is_duplicate=False, duplicate_of=None)
        )
        if result.rowcount == 0:
            raise NotFoundError(activity_id)

    def reparent_children(
        self,
        user_id: str,
        from_id: str,
        to_id: str,
        kinds: set[ChildKind],
    ) -> dict[str, int]:
        """Move child data of the given kinds from one activity to another.

        Args:
            user_id: User ID (both activities must belong to this user)
            from_id: Activity currently owning the children
            to_id: Activity receiving the children
            kinds: Child kinds to move

        Returns:
            Number of rows moved per child kind
        """
        owned = self.session.scalars(
            select(Activity.id).where(Activity.user_id == user_id, Activity.id.in_([from_id, to_id]))
        ).all()
        for activity_id in (from_id, to_id):
            if activity_id not in owned:
                raise NotFoundError(activity_id)

        moved: dict[str, int] = {}
        if ChildKind.STREAM in kinds:
            result = self.session.execute(
                update(ActivityStream).where(ActivityStream.activity_id == from_id).values(activity_id=to_id)
            )
            moved[ChildKind.STREAM.value] = result.rowcount
        if ChildKind.EXERCISES in kinds:
            result = self.session.execute(
                update(ActivityExercise).where(ActivityExercise.activity_id == from_id).values(activity_id=to_id)
            )
            moved[ChildKind.EXERCISES.value] = result.rowcount
        if ChildKind.PLAN_LINK in kinds:
            result = self.session.execute(
                update(SessionLink)
                .where(SessionLink.user_id == user_id, SessionLink.activity_id == from_id)
                .values(activity_id=to_id)
            )
            moved[ChildKind.PLAN_LINK.value] = result.rowcount
        return moved

    def repoint_duplicates(self, user_id: str, from_id: str, to_id: str) -> int:
        result = self.session.execute(
            update(Activity)
            .where(Activity.user_id == user_id, Activity.duplicate_of == from_id, Activity.id != to_id)
            .values(duplicate_of=to_id, is_duplicate=True)
        )
        return result.rowcount

    def delete_activity(self, user_id: str, activity_id: str) -> None:
        """Hard-delete an activity with its child rows and plan link."""
        exists = self.session.execute(
            select(Activity.id).where(Activity.user_id == user_id, Activity.id == activity_id)
        ).scalar_one_or_none()
        if exists is None:
            raise NotFoundError(activity_id)

        self.session.execute(delete(SessionLink).where(SessionLink.activity_id == activity_id))
        self.session.execute(delete(ActivityExercise).where(ActivityExercise.activity_id == activity_id))
        self.session.execute(delete(ActivityStream).where(ActivityStream.activity_id == activity_id))
        self.session.execute(
            update(Activity)
            .where(Activity.user_id == user_id, Activity.duplicate_of == activity_id)
            .values(duplicate_of=None)
        )
        self.session.execute(delete(Activity).where(Activity.user_id == user_id, Activity.id == activity_id))
