"""Unit tests for the cluster builder.

Tests cover:
- Single-seed grouping and singleton discard
- Input order independence
- Exclusion of activities missing required fields
- Chains split by single-seed and joined by transitive mode
"""

from datetime import datetime, timedelta

from activity_dedup.dedup.clustering import build_groups, stable_order
from activity_dedup.dedup.config import ClusterMode, DedupConfig


def _chain(make_record):
    """A~B and B~C but not A~C (titles only overlap pairwise)."""
    base = datetime(2024, 6, 1, 7, 0)
    a = make_record("a", base, 3600, title="Morning")
    b = make_record("b", base + timedelta(minutes=20), 3600, title="Morning Long Run")
    c = make_record("c", base + timedelta(minutes=40), 3600, title="Long Run")
    return a, b, c


class TestSingleSeedClustering:
    """Default grouping strategy."""

    def test_groups_duplicates_and_discards_singletons(self, make_record):
        base = datetime(2024, 6, 1, 7, 0)
        activities = [
            make_record("garmin-1", base, 3600, type="Ride", title="Morning Ride", source="garmin"),
            make_record("strava-1", base + timedelta(minutes=1), 3610, type="Ride", title="Morning Ride"),
            make_record("solo", base + timedelta(hours=5, minutes=30), 1800, type="Swim", title="Pool"),
        ]

        result = build_groups(activities)

        assert len(result.groups) == 1
        assert result.groups[0].member_ids == ["garmin-1", "strava-1"]
        assert result.groups[0].seed.id == "garmin-1"
        assert result.excluded_ids == []

    def test_each_activity_claimed_once(self, make_record):
        base = datetime(2024, 6, 1, 7, 0)
        activities = [
            make_record(f"ride-{i}", base + timedelta(minutes=i), 3600, type="Ride", title="Ride") for i in range(4)
        ]

        result = build_groups(activities)

        assert len(result.groups) == 1
        member_ids = [m for g in result.groups for m in g.member_ids]
        assert len(member_ids) == len(set(member_ids)) == 4

    def test_order_independent(self, make_record):
        base = datetime(2024, 6, 1, 7, 0)
        activities = [
            make_record("x", base, 3600, type="Run", title="Run"),
            make_record("y", base + timedelta(minutes=3), 3500, type="Run", title="Run"),
            make_record("z", base + timedelta(days=1), 3600, type="Run", title="Run"),
            make_record("w", base + timedelta(days=1, minutes=2), 3650, type="TrailRun", title="Hills"),
        ]

        forward = build_groups(activities)
        backward = build_groups(list(reversed(activities)))

        assert [g.member_ids for g in forward.groups] == [g.member_ids for g in backward.groups]
        assert [g.member_ids for g in forward.groups] == [["x", "y"], ["z", "w"]]

    def test_excludes_activities_missing_fields(self, make_record):
        base = datetime(2024, 6, 1, 7, 0)
        activities = [
            make_record("no-start", None, 3600, type="Run"),
            make_record("no-duration", base, None, type="Run"),
            make_record("ok-1", base, 3600, type="Run"),
            make_record("ok-2", base + timedelta(minutes=2), 3600, type="Run"),
        ]

        result = build_groups(activities)

        assert sorted(result.excluded_ids) == ["no-duration", "no-start"]
        assert [g.member_ids for g in result.groups] == [["ok-1", "ok-2"]]

    def test_single_seed_splits_chain(self, make_record):
        a, b, c = _chain(make_record)

        result = build_groups([a, b, c], mode=ClusterMode.SINGLE_SEED)

        assert [g.member_ids for g in result.groups] == [["a", "b"]]

    def test_timezone_shifted_copy_is_grouped(self, make_record):
        base = datetime(2024, 6, 1, 7, 0)
        activities = [
            make_record("local", base, 3600, type="Ride", title="Commute"),
            make_record("shifted", base + timedelta(hours=2), 3600, type="Ride", title="Commute"),
        ]

        result = build_groups(activities)

        assert [g.member_ids for g in result.groups] == [["local", "shifted"]]


class TestTransitiveClustering:
    """Union-find grouping strategy."""

    def test_transitive_joins_chain(self, make_record):
        a, b, c = _chain(make_record)

        result = build_groups([c, a, b], mode=ClusterMode.TRANSITIVE)

        assert [g.member_ids for g in result.groups] == [["a", "b", "c"]]
        assert result.groups[0].seed.id == "a"

    def test_mode_from_config(self, make_record):
        a, b, c = _chain(make_record)

        result = build_groups([a, b, c], config=DedupConfig(cluster_mode=ClusterMode.TRANSITIVE))

        assert len(result.groups) == 1
        assert len(result.groups[0]) == 3

    def test_mode_accepts_string(self, make_record):
        a, b, c = _chain(make_record)

        assert len(build_groups([a, b, c], mode="transitive").groups[0]) == 3

    def test_disjoint_components(self, make_record):
        base = datetime(2024, 6, 1, 7, 0)
        activities = [
            make_record("r1", base, 3600, type="Ride"),
            make_record("r2", base + timedelta(minutes=2), 3600, type="Ride"),
            make_record("s1", base + timedelta(days=2), 1800, type="Swim"),
            make_record("s2", base + timedelta(days=2, minutes=1), 1800, type="Swim"),
        ]

        result = build_groups(activities, mode=ClusterMode.TRANSITIVE)

        assert [g.member_ids for g in result.groups] == [["r1", "r2"], ["s1", "s2"]]


def test_stable_order_sorts_by_start_then_id(make_record):
    base = datetime(2024, 6, 1, 7, 0)
    records = [
        make_record("b", base, 60),
        make_record("a", base, 60),
        make_record("c", base - timedelta(minutes=1), 60),
    ]

    assert [r.id for r in stable_order(records)] == ["c", "a", "b"]
