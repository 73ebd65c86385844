"""Typed records flowing through the deduplication pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any


class ChildKind(StrEnum):
    """Kinds of child data an activity can own."""

    STREAM = "stream"
    EXERCISES = "exercises"
    PLAN_LINK = "plan_link"


class GroupStatus(StrEnum):
    """Outcome of processing one duplicate group."""

    MERGED = "merged"
    PLANNED = "planned"  # dry run
    ALREADY_RESOLVED = "already_resolved"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(frozen=True)
class ActivityRecord:
    """Snapshot of one activity plus the ids of the child data it owns."""

    id: str
    user_id: str
    source: str
    start_time: datetime | None
    duration_seconds: int | None
    type: str | None = None
    title: str | None = None
    description: str | None = None
    distance_meters: float | None = None
    average_heartrate: float | None = None
    average_power: float | None = None
    is_duplicate: bool = False
    duplicate_of: str | None = None
    created_at: datetime | None = None
    stream_id: str | None = None
    exercise_ids: tuple[str, ...] = ()
    planned_session_id: str | None = None

    @property
    def has_stream(self) -> bool:
        return self.stream_id is not None

    @property
    def has_exercises(self) -> bool:
        return len(self.exercise_ids) > 0

    @property
    def has_plan_link(self) -> bool:
        return self.planned_session_id is not None

    @property
    def child_kinds(self) -> frozenset[ChildKind]:
        """Child kinds this activity owns."""
        kinds: set[ChildKind] = set()
        if self.has_stream:
            kinds.add(ChildKind.STREAM)
        if self.has_exercises:
            kinds.add(ChildKind.EXERCISES)
        if self.has_plan_link:
            kinds.add(ChildKind.PLAN_LINK)
        return frozenset(kinds)

    @property
    def child_richness(self) -> int:
        """Rank of child data for canonical selection: stream (2) > exercises (1) > neither (0)."""
        if self.has_stream:
            return 2
        if self.has_exercises:
            return 1
        return 0


@dataclass(frozen=True)
class ComparisonResult:
    """Outcome of comparing two activities, with the reasoning behind it."""

    is_duplicate: bool
    time_ok: bool
    duration_ok: bool
    similarity_ok: bool
    timezone_shift: bool
    reasoning: tuple[str, ...]


@dataclass
class DuplicateGroup:
    """Activities believed to represent one real-world event.

    Members keep the order in which they were claimed; the first member is the
    seed used for comparisons.
    """

    members: list[ActivityRecord]
    canonical_id: str | None = None

    @property
    def seed(self) -> ActivityRecord:
        return self.members[0]

    @property
    def member_ids(self) -> list[str]:
        return [m.id for m in self.members]

    @property
    def canonical(self) -> ActivityRecord | None:
        if self.canonical_id is None:
            return None
        return next((m for m in self.members if m.id == self.canonical_id), None)

    @property
    def duplicate_ids(self) -> list[str]:
        return [m.id for m in self.members if m.id != self.canonical_id]

    def __len__(self) -> int:
        return len(self.members)


@dataclass
class ClusteringResult:
    """Groups found in one run plus the activities excluded from clustering."""

    groups: list[DuplicateGroup]
    excluded_ids: list[str] = field(default_factory=list)
    comparisons: int = 0


@dataclass
class MergeResult:
    """Counts produced by merging one group."""

    kept_count: int = 1
    merged_count: int = 0
    already_merged_count: int = 0
    reparented: dict[str, int] = field(default_factory=dict)
    repointed_count: int = 0

    @property
    def mutated(self) -> bool:
        return self.merged_count > 0 or self.repointed_count > 0 or any(self.reparented.values())


@dataclass
class GroupOutcome:
    """Per-group entry of a deduplication report."""

    canonical_id: str
    duplicate_ids: list[str]
    status: GroupStatus
    error: str | None = None
    merge: MergeResult | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "canonical_id": self.canonical_id,
            "duplicate_ids": list(self.duplicate_ids),
            "status": str(self.status),
        }
        if self.error:
            data["error"] = self.error
        if self.merge is not None:
            data["kept_count"] = self.merge.kept_count
            data["merged_count"] = self.merge.merged_count
            data["reparented"] = dict(self.merge.reparented)
        return data


@dataclass
class DedupReport:
    """Summary of one deduplication invocation."""

    user_id: str
    dry_run: bool
    cluster_mode: str
    candidates_loaded: int = 0
    groups_found: int = 0
    total_duplicates: int = 0
    per_group: list[GroupOutcome] = field(default_factory=list)
    merged_count: int = 0
    kept_count: int = 0
    failed_count: int = 0
    skipped_count: int = 0
    already_resolved_count: int = 0
    excluded_activity_ids: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    errors_truncated: int = 0

    @property
    def has_failures(self) -> bool:
        return self.failed_count > 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "dry_run": self.dry_run,
            "cluster_mode": self.cluster_mode,
            "candidates_loaded": self.candidates_loaded,
            "groups_found": self.groups_found,
            "total_duplicates": self.total_duplicates,
            "merged_count": self.merged_count,
            "kept_count": self.kept_count,
            "failed_count": self.failed_count,
            "skipped_count": self.skipped_count,
            "already_resolved_count": self.already_resolved_count,
            "excluded_activity_ids": list(self.excluded_activity_ids),
            "errors": list(self.errors),
            "errors_truncated": self.errors_truncated,
            "per_group": [g.to_dict() for g in self.per_group],
        }
