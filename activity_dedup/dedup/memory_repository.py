"""In-memory ActivityRepository.

Used to plan deduplication over exported activity files without a database,
and as a deterministic stand-in for storage in tests. Transactions snapshot
the whole store and restore it on failure.
"""

from __future__ import annotations

import copy
import json
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from activity_dedup.dedup.errors import NotFoundError
from activity_dedup.dedup.repository import CandidateOptions
from activity_dedup.dedup.types import ActivityRecord, ChildKind
from activity_dedup.utils.timezone import ensure_utc

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


@dataclass
class _Store:
    activities: dict[str, ActivityRecord] = field(default_factory=dict)
    streams: dict[str, str] = field(default_factory=dict)  # activity_id -> stream_id
    exercises: dict[str, list[str]] = field(default_factory=dict)  # activity_id -> exercise ids
    links: dict[str, str] = field(default_factory=dict)  # activity_id -> planned_session_id


class InMemoryActivityRepository:
    """ActivityRepository keeping activities and child ownership in dictionaries."""

    def __init__(self, activities: list[ActivityRecord] | None = None) -> None:
        self._store = _Store()
        self.mutations: list[tuple[str, ...]] = []
        for activity in activities or []:
            self.add(activity)

    def add(self, activity: ActivityRecord) -> None:
        """Insert an activity, taking child ownership from its child refs."""
        self._store.activities[activity.id] = replace(
            activity,
            stream_id=None,
            exercise_ids=(),
            planned_session_id=None,
        )
        if activity.stream_id:
            self._store.streams[activity.id] = activity.stream_id
        if activity.exercise_ids:
            self._store.exercises[activity.id] = list(activity.exercise_ids)
        if activity.planned_session_id:
            self._store.links[activity.id] = activity.planned_session_id

    @classmethod
    def from_json_file(cls, path: Path) -> InMemoryActivityRepository:
        """Load activities from a JSON export (a list of activity objects)."""
        with path.open(encoding="utf-8") as f:
            payload = json.load(f)
        if isinstance(payload, dict):
            payload = payload.get("activities", [])
        return cls([record_from_dict(item) for item in payload])

    @contextmanager
    def transaction(self) -> Iterator[None]:
        snapshot = copy.deepcopy(self._store)
        mutation_count = len(self.mutations)
        try:
            yield
        except Exception:
            self._store = snapshot
            del self.mutations[mutation_count:]
            raise

    def _record(self, activity_id: str) -> ActivityRecord:
        base = self._store.activities[activity_id]
        return replace(
            base,
            stream_id=self._store.streams.get(activity_id),
            exercise_ids=tuple(self._store.exercises.get(activity_id, [])),
            planned_session_id=self._store.links.get(activity_id),
        )

    def _require(self, user_id: str, activity_id: str) -> ActivityRecord:
        activity = self._store.activities.get(activity_id)
        if activity is None or activity.user_id != user_id:
            raise NotFoundError(activity_id)
        return activity

    def list_candidates(self, user_id: str, options: CandidateOptions | None = None) -> list[ActivityRecord]:
        if options is None:
            options = CandidateOptions()
        since = ensure_utc(options.since)
        until = ensure_utc(options.until)

        records: list[ActivityRecord] = []
        for activity_id, activity in self._store.activities.items():
            if activity.user_id != user_id:
                continue
            if activity.is_duplicate and not options.include_duplicates:
                continue
            start = ensure_utc(activity.start_time)
            if since is not None and (start is None or start < since):
                continue
            if until is not None and (start is None or start >= until):
                continue
            record = self._record(activity_id)
            if not options.include_child_refs:
                record = replace(record, stream_id=None, exercise_ids=(), planned_session_id=None)
            records.append(record)

        records.sort(key=lambda a: (ensure_utc(a.start_time) or _EPOCH, a.id))
        if options.order_by == "-start_time":
            records.reverse()
        return records

    def get_activity(self, user_id: str, activity_id: str) -> ActivityRecord | None:
        activity = self._store.activities.get(activity_id)
        if activity is None or activity.user_id != user_id:
            return None
        return self._record(activity_id)

    def list_duplicates(self, user_id: str) -> list[ActivityRecord]:
        return [
            self._record(activity_id)
            for activity_id, activity in self._store.activities.items()
            if activity.user_id == user_id and activity.is_duplicate
        ]

    def mark_duplicate(self, user_id: str, activity_id: str, canonical_id: str) -> None:
        activity = self._require(user_id, activity_id)
        self._store.activities[activity_id] = replace(activity, is_duplicate=True, duplicate_of=canonical_id)
        self.mutations.append(("mark_duplicate", activity_id, canonical_id))

    def clear_duplicate(self, user_id: str, activity_id: str) -> None:
        activity = self._require(user_id, activity_id)
        self._store.activities[activity_id] = replace(activity, is_duplicate=False, duplicate_of=None)
        self.mutations.append(("clear_duplicate", activity_id))

    def reparent_children(
        self,
        user_id: str,
        from_id: str,
        to_id: str,
        kinds: set[ChildKind],
    ) -> dict[str, int]:
        self._require(user_id, from_id)
        self._require(user_id, to_id)

        moved: dict[str, int] = {}
        if ChildKind.STREAM in kinds:
            stream_id = self._store.streams.pop(from_id, None)
            if stream_id is not None:
                self._store.streams[to_id] = stream_id
            moved[ChildKind.STREAM.value] = 1 if stream_id is not None else 0
        if ChildKind.EXERCISES in kinds:
            exercise_ids = self._store.exercises.pop(from_id, [])
            if exercise_ids:
                self._store.exercises.setdefault(to_id, []).extend(exercise_ids)
            moved[ChildKind.EXERCISES.value] = len(exercise_ids)
        if ChildKind.PLAN_LINK in kinds:
            planned_session_id = self._store.links.pop(from_id, None)
            if planned_session_id is not None:
                self._store.links[to_id] = planned_session_id
            moved[ChildKind.PLAN_LINK.value] = 1 if planned_session_id is not None else 0

        self.mutations.append(("reparent_children", from_id, to_id, ",".join(sorted(moved))))
        return moved

    def repoint_duplicates(self, user_id: str, from_id: str, to_id: str) -> int:
        count = 0
        for activity_id, activity in list(self._store.activities.items()):
            if activity.user_id == user_id and activity.duplicate_of == from_id and activity_id != to_id:
                self._store.activities[activity_id] = replace(activity, is_duplicate=True, duplicate_of=to_id)
                count += 1
        if count:
            self.mutations.append(("repoint_duplicates", from_id, to_id))
        return count

    def delete_activity(self, user_id: str, activity_id: str) -> None:
        self._require(user_id, activity_id)
        del self._store.activities[activity_id]
        self._store.streams.pop(activity_id, None)
        self._store.exercises.pop(activity_id, None)
        self._store.links.pop(activity_id, None)
        for other_id, other in list(self._store.activities.items()):
            if other.duplicate_of == activity_id:
                self._store.activities[other_id] = replace(other, duplicate_of=None)
        self.mutations.append(("delete_activity", activity_id))


def _parse_datetime(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


def record_from_dict(data: dict[str, Any]) -> ActivityRecord:
    """Build an ActivityRecord from an exported JSON object.

    Accepts snake_case keys plus the camelCase spellings common in provider
    exports (userId, durationSec, startTime/date, isDuplicate, duplicateOf).
    """

    def pick(*keys: str) -> Any:
        for key in keys:
            if key in data and data[key] is not None:
                return data[key]
        return None

    duration = pick("duration_seconds", "durationSec", "duration")
    exercise_ids = pick("exercise_ids", "exerciseIds") or ()
    return ActivityRecord(
        id=str(pick("id")),
        user_id=str(pick("user_id", "userId")),
        source=str(pick("source") or "manual"),
        start_time=_parse_datetime(pick("start_time", "startTime", "date")),
        duration_seconds=int(duration) if duration is not None else None,
        type=pick("type"),
        title=pick("title"),
        description=pick("description"),
        distance_meters=pick("distance_meters", "distance"),
        average_heartrate=pick("average_heartrate", "averageHr"),
        average_power=pick("average_power", "averageWatts"),
        is_duplicate=bool(pick("is_duplicate", "isDuplicate") or False),
        duplicate_of=pick("duplicate_of", "duplicateOf"),
        created_at=_parse_datetime(pick("created_at", "createdAt")),
        stream_id=pick("stream_id", "streamId"),
        exercise_ids=tuple(str(e) for e in exercise_ids),
        planned_session_id=pick("planned_session_id", "plannedWorkoutId"),
    )
