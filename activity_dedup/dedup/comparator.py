"""Pairwise duplicate judgment for two activities of the same user.

Three checks, all of which must pass:

- Time: start times within 30 minutes, or a near-whole-hour offset between 1
  and 14 hours (a device recorded the event in the wrong timezone).
- Duration: within max(5 min, 10%), relaxed when both records started within
  10 minutes of each other, and relaxed further for pause-heavy sports.
- Similarity: overlapping titles, identical types, or types in the same coarse
  family. Missing text never counts as a match.

No database access. Deterministic and side-effect free.
"""

from __future__ import annotations

from loguru import logger

from activity_dedup.dedup.config import DedupConfig
from activity_dedup.dedup.errors import ComparatorError
from activity_dedup.dedup.types import ActivityRecord, ComparisonResult
from activity_dedup.utils.timezone import to_utc

_DEFAULT_CONFIG = DedupConfig()


def validate_for_comparison(activity: ActivityRecord) -> None:
    """Ensure an activity carries the fields the comparator needs.

    Args:
        activity: Activity to validate

    Raises:
        ComparatorError: If start time or duration is missing
    """
    missing: list[str] = []
    if activity.start_time is None:
        missing.append("start_time")
    if activity.duration_seconds is None or activity.duration_seconds < 0:
        missing.append("duration_seconds")
    if missing:
        raise ComparatorError(activity.id, missing)


def start_time_gap_seconds(a: ActivityRecord, b: ActivityRecord) -> float:
    """Absolute gap between two start times in seconds."""
    if a.start_time is None or b.start_time is None:
        raise ComparatorError(a.id if a.start_time is None else b.id, ["start_time"])
    return abs((to_utc(a.start_time) - to_utc(b.start_time)).total_seconds())


def is_timezone_shift(time_diff_seconds: float, config: DedupConfig = _DEFAULT_CONFIG) -> bool:
    """Check whether a start-time gap looks like a whole-hour timezone offset.

    Args:
        time_diff_seconds: Absolute start-time gap
        config: Tolerances

    Returns:
        True if the gap is between the configured hour bounds and within the
        remainder tolerance of a whole hour
    """
    diff_hours = time_diff_seconds / 3600
    remainder_hours = abs(diff_hours - round(diff_hours))
    return (
        config.timezone_shift_min_hours <= diff_hours <= config.timezone_shift_max_hours
        and remainder_hours < config.timezone_shift_remainder_seconds / 3600
    )


def is_pause_heavy(activity_type: str | None, config: DedupConfig = _DEFAULT_CONFIG) -> bool:
    """Check whether an activity type belongs to a sport with long pauses (ski, hike, ...)."""
    if not activity_type:
        return False
    lowered = activity_type.lower()
    return any(marker in lowered for marker in config.pause_heavy_markers)


def category_family(activity_type: str | None, config: DedupConfig = _DEFAULT_CONFIG) -> str | None:
    """Map an activity type to its coarse family name, if any.

    Args:
        activity_type: Activity type (may be None)
        config: Family table

    Returns:
        Family name (ride, run, strength) or None
    """
    if not activity_type:
        return None
    lowered = activity_type.lower().strip()
    for family, rules in config.category_families.items():
        if lowered in rules.get("equals", ()):
            return family
        if any(marker in lowered for marker in rules.get("contains", ())):
            return family
    return None


def duration_tolerance_seconds(
    a: ActivityRecord,
    b: ActivityRecord,
    time_diff_seconds: float,
    config: DedupConfig = _DEFAULT_CONFIG,
) -> float:
    """Maximum allowed duration difference for a pair.

    Args:
        a: First activity
        b: Second activity
        time_diff_seconds: Absolute start-time gap
        config: Tolerances

    Returns:
        Tolerance in seconds
    """
    longest = max(a.duration_seconds or 0, b.duration_seconds or 0)

    if time_diff_seconds < config.near_simultaneous_seconds:
        if is_pause_heavy(a.type, config) or is_pause_heavy(b.type, config):
            return max(config.pause_heavy_duration_floor_seconds, longest * config.pause_heavy_duration_ratio)
        return max(config.relaxed_duration_floor_seconds, longest * config.relaxed_duration_ratio)

    return max(config.duration_floor_seconds, longest * config.duration_ratio)


def titles_similar(a: ActivityRecord, b: ActivityRecord) -> bool:
    """Check whether one title contains the other (case-insensitive)."""
    if not a.title or not b.title:
        return False
    title_a = a.title.lower().strip()
    title_b = b.title.lower().strip()
    if not title_a or not title_b:
        return False
    return title_a in title_b or title_b in title_a


def types_similar(a: ActivityRecord, b: ActivityRecord, config: DedupConfig = _DEFAULT_CONFIG) -> bool:
    """Check whether two types are equal or share a coarse family."""
    if not a.type or not b.type:
        return False
    if a.type.lower().strip() == b.type.lower().strip():
        return True
    family_a = category_family(a.type, config)
    return family_a is not None and family_a == category_family(b.type, config)


def compare_activities(
    a: ActivityRecord,
    b: ActivityRecord,
    config: DedupConfig | None = None,
) -> ComparisonResult:
    """Judge whether two activities record the same real-world event.

    Args:
        a: First activity
        b: Second activity
        config: Optional configuration (uses defaults if None)

    Returns:
        ComparisonResult with every check outcome and a reasoning trail

    Raises:
        ComparatorError: If either activity lacks start time or duration
    """
    if config is None:
        config = _DEFAULT_CONFIG

    validate_for_comparison(a)
    validate_for_comparison(b)

    reasoning: list[str] = []

    if a.user_id != b.user_id:
        reasoning.append(f"Different users ({a.user_id} vs {b.user_id})")
        return ComparisonResult(
            is_duplicate=False,
            time_ok=False,
            duration_ok=False,
            similarity_ok=False,
            timezone_shift=False,
            reasoning=tuple(reasoning),
        )

    # Time
    time_diff = start_time_gap_seconds(a, b)
    max_time_diff = config.max_time_diff_seconds
    timezone_shift = is_timezone_shift(time_diff, config)
    if timezone_shift:
        max_time_diff = time_diff + config.timezone_shift_slack_seconds
        reasoning.append(f"Timezone shift detected ({time_diff / 3600:.2f}h apart)")
    time_ok = time_diff <= max_time_diff
    reasoning.append(f"Time diff {time_diff:.0f}s (max {max_time_diff:.0f}s): {'ok' if time_ok else 'too large'}")

    # Duration
    duration_diff = abs((a.duration_seconds or 0) - (b.duration_seconds or 0))
    max_duration_diff = duration_tolerance_seconds(a, b, time_diff, config)
    duration_ok = time_ok and duration_diff <= max_duration_diff
    if time_ok:
        reasoning.append(
            f"Duration diff {duration_diff}s (max {max_duration_diff:.0f}s): {'ok' if duration_ok else 'too large'}"
        )

    # Similarity
    title_match = titles_similar(a, b)
    type_match = types_similar(a, b, config)
    similarity_ok = title_match or type_match
    reasoning.append(f"Title similar: {title_match} ('{a.title}' vs '{b.title}')")
    reasoning.append(f"Type similar: {type_match} ('{a.type}' vs '{b.type}')")

    is_duplicate = time_ok and duration_ok and similarity_ok
    reasoning.append(f"Is duplicate: {is_duplicate}")

    return ComparisonResult(
        is_duplicate=is_duplicate,
        time_ok=time_ok,
        duration_ok=duration_ok,
        similarity_ok=similarity_ok,
        timezone_shift=timezone_shift,
        reasoning=tuple(reasoning),
    )


def is_duplicate(
    a: ActivityRecord,
    b: ActivityRecord,
    config: DedupConfig | None = None,
) -> tuple[bool, list[str]]:
    """Return the duplicate verdict and its reasoning for two activities."""
    result = compare_activities(a, b, config)
    if result.is_duplicate:
        logger.debug(f"[DEDUP] {a.id} ~ {b.id}: {' | '.join(result.reasoning)}")
    return result.is_duplicate, list(result.reasoning)
