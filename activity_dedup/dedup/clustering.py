"""Cluster builder: turns pairwise duplicate judgments into duplicate groups.

Two strategies:

- single_seed: every unclaimed activity seeds a group and absorbs later
  unclaimed activities that match the seed. Chains where A~B and B~C but not
  A~C end up split across groups.
- transitive: union-find over every matching pair, so chains collapse into
  one group.

Both consume activities in a stable order (start time, then id) so identical
inputs always produce identical groups.
"""

from __future__ import annotations

from datetime import datetime, timezone

from loguru import logger

from activity_dedup.dedup.comparator import compare_activities, start_time_gap_seconds, validate_for_comparison
from activity_dedup.dedup.config import ClusterMode, DedupConfig
from activity_dedup.dedup.errors import ComparatorError
from activity_dedup.dedup.types import ActivityRecord, ClusteringResult, DuplicateGroup
from activity_dedup.utils.timezone import to_utc

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def stable_order(activities: list[ActivityRecord]) -> list[ActivityRecord]:
    """Sort activities by start time ascending, then id."""
    return sorted(
        activities,
        key=lambda a: (to_utc(a.start_time) if a.start_time else _EPOCH, a.id),
    )


def _split_comparable(activities: list[ActivityRecord]) -> tuple[list[ActivityRecord], list[str]]:
    comparable: list[ActivityRecord] = []
    excluded: list[str] = []
    for activity in activities:
        try:
            validate_for_comparison(activity)
        except ComparatorError as e:
            logger.warning(f"[DEDUP] Excluding activity from clustering: {e}")
            excluded.append(activity.id)
            continue
        comparable.append(activity)
    return comparable, excluded


def _beyond_horizon(seed: ActivityRecord, candidate: ActivityRecord, config: DedupConfig) -> bool:
    # Sorted input: once a candidate is past the horizon, every later one is too
    return start_time_gap_seconds(seed, candidate) > config.comparison_horizon_seconds


def _build_single_seed(ordered: list[ActivityRecord], config: DedupConfig) -> tuple[list[DuplicateGroup], int]:
    groups: list[DuplicateGroup] = []
    claimed: set[str] = set()
    comparisons = 0

    for i, seed in enumerate(ordered):
        if seed.id in claimed:
            continue
        claimed.add(seed.id)
        members = [seed]

        for candidate in ordered[i + 1 :]:
            if candidate.id in claimed:
                continue
            if _beyond_horizon(seed, candidate, config):
                break
            comparisons += 1
            if compare_activities(seed, candidate, config).is_duplicate:
                members.append(candidate)
                claimed.add(candidate.id)

        if len(members) > 1:
            groups.append(DuplicateGroup(members=members))

    return groups, comparisons


class _UnionFind:
    """Disjoint-set forest keyed by position in the ordered input."""

    def __init__(self, size: int) -> None:
        self.parent = list(range(size))

    def find(self, index: int) -> int:
        root = index
        while self.parent[root] != root:
            root = self.parent[root]
        while self.parent[index] != root:
            self.parent[index], index = root, self.parent[index]
        return root

    def union(self, left: int, right: int) -> None:
        root_left = self.find(left)
        root_right = self.find(right)
        if root_left == root_right:
            return
        # Lowest index stays root so the seed is the earliest member
        if root_left < root_right:
            self.parent[root_right] = root_left
        else:
            self.parent[root_left] = root_right


def _build_transitive(ordered: list[ActivityRecord], config: DedupConfig) -> tuple[list[DuplicateGroup], int]:
    forest = _UnionFind(len(ordered))
    comparisons = 0

    for i, left in enumerate(ordered):
        for j in range(i + 1, len(ordered)):
            right = ordered[j]
            if _beyond_horizon(left, right, config):
                break
            comparisons += 1
            if compare_activities(left, right, config).is_duplicate:
                forest.union(i, j)

    components: dict[int, list[ActivityRecord]] = {}
    for index, activity in enumerate(ordered):
        components.setdefault(forest.find(index), []).append(activity)

    groups = [DuplicateGroup(members=members) for root, members in sorted(components.items()) if len(members) > 1]
    return groups, comparisons


def build_groups(
    activities: list[ActivityRecord],
    config: DedupConfig | None = None,
    mode: ClusterMode | str | None = None,
) -> ClusteringResult:
    """Group activities into duplicate sets.

    Args:
        activities: Candidate activities of one user (any order)
        config: Optional configuration (uses defaults if None)
        mode: Clustering strategy; falls back to config.cluster_mode

    Returns:
        ClusteringResult with groups of size > 1 and the ids of activities
        excluded for missing start time or duration
    """
    if config is None:
        config = DedupConfig()
    cluster_mode = ClusterMode(mode) if mode is not None else config.cluster_mode

    comparable, excluded = _split_comparable(activities)
    ordered = stable_order(comparable)

    if cluster_mode == ClusterMode.TRANSITIVE:
        groups, comparisons = _build_transitive(ordered, config)
    else:
        groups, comparisons = _build_single_seed(ordered, config)

    logger.info(
        f"[DEDUP] Clustering ({cluster_mode}) over {len(ordered)} activities: "
        f"{len(groups)} groups, {comparisons} comparisons, {len(excluded)} excluded"
    )
    return ClusteringResult(groups=groups, excluded_ids=excluded, comparisons=comparisons)
