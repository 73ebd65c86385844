"""Heuristic constants for duplicate detection.

All thresholds live on one frozen dataclass so that comparator, clustering and
canonical selection read from the same place. Units are in the field names:
``*_seconds`` are seconds, ``*_hours`` hours, ``*_ratio`` a fraction of the
longer of the two durations.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from types import MappingProxyType

from activity_dedup.config.settings import Settings


class ClusterMode(StrEnum):
    """Grouping strategy used by the cluster builder."""

    SINGLE_SEED = "single_seed"
    TRANSITIVE = "transitive"


# Higher wins. Manual entries are user-authored; device platforms record the
# raw sensor file; aggregators re-publish what they received.
DEFAULT_SOURCE_PRIORITY: dict[str, int] = {
    "manual": 100,
    "garmin": 90,
    "wahoo": 85,
    "coros": 85,
    "hammerhead": 85,
    "polar": 80,
    "suunto": 80,
    "upload": 75,
    "fit_file": 75,
    "zwift": 70,
    "trainerroad": 70,
    "whoop": 60,
    "oura": 55,
    "strava": 50,
    "intervals": 40,
    "apple_health": 30,
    "google_fit": 30,
    "health_connect": 30,
}

# Substring markers, matched case-insensitively against the activity type.
DEFAULT_PAUSE_HEAVY_MARKERS: tuple[str, ...] = ("ski", "snowboard", "hike")

# Coarse families. A type belongs to a family when it contains one of the
# ``contains`` markers or equals one of the ``equals`` names (lowercased).
DEFAULT_CATEGORY_FAMILIES: dict[str, dict[str, tuple[str, ...]]] = {
    "ride": {"contains": ("ride",), "equals": ()},
    "run": {"contains": ("run",), "equals": ()},
    "strength": {"contains": ("weight",), "equals": ("gym",)},
}


@dataclass(frozen=True)
class DedupConfig:
    """Tolerances and tables used by the deduplication pipeline."""

    # Time check
    max_time_diff_seconds: float = 30 * 60
    timezone_shift_min_hours: float = 1.0
    timezone_shift_max_hours: float = 14.0
    timezone_shift_remainder_seconds: float = 5 * 60
    timezone_shift_slack_seconds: float = 1.0

    # Duration check
    duration_floor_seconds: float = 5 * 60
    duration_ratio: float = 0.10
    near_simultaneous_seconds: float = 10 * 60
    relaxed_duration_floor_seconds: float = 30 * 60
    relaxed_duration_ratio: float = 0.50
    pause_heavy_duration_floor_seconds: float = 60 * 60
    pause_heavy_duration_ratio: float = 0.90

    pause_heavy_markers: tuple[str, ...] = DEFAULT_PAUSE_HEAVY_MARKERS
    category_families: MappingProxyType = field(
        default_factory=lambda: MappingProxyType(DEFAULT_CATEGORY_FAMILIES),
    )
    source_priority: MappingProxyType = field(
        default_factory=lambda: MappingProxyType(DEFAULT_SOURCE_PRIORITY),
    )
    unknown_source_priority: int = 0

    cluster_mode: ClusterMode = ClusterMode.SINGLE_SEED
    max_error_details: int = 10

    @property
    def comparison_horizon_seconds(self) -> float:
        """Largest start-time gap that can still produce a duplicate."""
        return max(
            self.max_time_diff_seconds,
            self.timezone_shift_max_hours * 3600 + self.timezone_shift_remainder_seconds,
        )

    def priority_for(self, source: str | None) -> int:
        """Return the configured priority for a provider name."""
        if not source:
            return self.unknown_source_priority
        return self.source_priority.get(source.lower().strip(), self.unknown_source_priority)

    @classmethod
    def from_settings(cls, app_settings: Settings) -> DedupConfig:
        """Build a config, overriding the tunables exposed through environment settings."""
        return cls(
            max_time_diff_seconds=app_settings.dedup_time_tolerance_minutes * 60,
            duration_floor_seconds=app_settings.dedup_duration_tolerance_minutes * 60,
            cluster_mode=ClusterMode(app_settings.dedup_cluster_mode),
            max_error_details=app_settings.dedup_max_error_details,
        )
