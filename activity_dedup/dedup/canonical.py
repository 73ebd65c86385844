"""Canonical record selection for a duplicate group.

Ordered tie-break chain:
1. Source priority (manual and device platforms above aggregators)
2. Richer child data (stream > exercises > neither)
3. Earliest ingested, then lowest id

The sort key is total over member data, so input order never changes the result.
"""

from __future__ import annotations

from datetime import datetime, timezone

from loguru import logger

from activity_dedup.dedup.config import DedupConfig
from activity_dedup.dedup.types import ActivityRecord, DuplicateGroup
from activity_dedup.utils.timezone import to_utc

_FAR_FUTURE = datetime.max.replace(tzinfo=timezone.utc)


def canonical_sort_key(activity: ActivityRecord, config: DedupConfig) -> tuple[int, int, datetime, str]:
    """Sort key where the smallest value is the best canonical candidate."""
    created = to_utc(activity.created_at) if activity.created_at else _FAR_FUTURE
    return (
        -config.priority_for(activity.source),
        -activity.child_richness,
        created,
        activity.id,
    )


def choose_canonical(group: DuplicateGroup, config: DedupConfig | None = None) -> ActivityRecord:
    """Pick the canonical member of a group and record it on the group.

    Args:
        group: Duplicate group (at least one member)
        config: Optional configuration (uses defaults if None)

    Returns:
        The canonical activity record

    Raises:
        ValueError: If the group is empty
    """
    if not group.members:
        raise ValueError("Cannot choose a canonical record for an empty group")
    if config is None:
        config = DedupConfig()

    canonical = min(group.members, key=lambda a: canonical_sort_key(a, config))
    group.canonical_id = canonical.id

    logger.debug(
        f"[DEDUP] Canonical for group seeded by {group.seed.id}: {canonical.id} "
        f"(source={canonical.source}, richness={canonical.child_richness})"
    )
    return canonical
