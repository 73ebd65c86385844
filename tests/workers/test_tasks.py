"""Tests for the deduplication Celery task and the per-user Redis lock."""

from contextlib import contextmanager
from datetime import datetime, timedelta

from activity_dedup.dedup.types import DedupReport
from activity_dedup.workers.locks import RedisLockManager, dedup_lock_key
from activity_dedup.workers.tasks import deduplicate_user_activities


class _FakeRedis:
    """Minimal stand-in for SET NX and the compare-and-delete release script."""

    def __init__(self):
        self.store: dict[str, str] = {}

    def set(self, key, value, nx=False, ex=None):
        if nx and key in self.store:
            return None
        self.store[key] = value
        return True

    def eval(self, script, numkeys, key, token):
        if self.store.get(key) == token:
            del self.store[key]
            return 1
        return 0


class _FakeLockManager:
    def __init__(self, available: bool):
        self.available = available

    @contextmanager
    def acquire(self, key):
        yield self.available


def test_lock_key_format():
    assert dedup_lock_key("abc") == "lock:dedup:user:abc"


def test_lock_is_exclusive_and_released():
    manager = RedisLockManager(redis_url="redis://localhost:6379/15", ttl_seconds=30)
    manager.redis = _FakeRedis()
    key = dedup_lock_key("user-1")

    with manager.acquire(key) as first:
        with manager.acquire(key) as second:
            assert first is True
            assert second is False
        assert key in manager.redis.store

    assert key not in manager.redis.store


def test_lock_not_released_when_token_changed():
    manager = RedisLockManager(redis_url="redis://localhost:6379/15", ttl_seconds=30)
    manager.redis = _FakeRedis()
    key = dedup_lock_key("user-1")

    with manager.acquire(key):
        # Expired and taken over by another worker
        manager.redis.store[key] = "other-token"

    assert manager.redis.store[key] == "other-token"


def test_task_skips_when_locked(monkeypatch):
    def fail_if_called(*args, **kwargs):
        raise AssertionError("deduplication must not run while locked")

    monkeypatch.setattr("activity_dedup.workers.tasks.lock_manager", _FakeLockManager(available=False))
    monkeypatch.setattr("activity_dedup.workers.tasks.deduplicate_user", fail_if_called)

    result = deduplicate_user_activities("user-1")

    assert result == {"user_id": "user-1", "skipped": True, "reason": "locked"}


def test_task_runs_pipeline(monkeypatch):
    calls = []

    def fake_deduplicate_user(user_id, dry_run=False, mode=None):
        calls.append((user_id, dry_run, mode))
        return DedupReport(user_id=user_id, dry_run=dry_run, cluster_mode="single_seed", groups_found=2, merged_count=3)

    monkeypatch.setattr("activity_dedup.workers.tasks.lock_manager", _FakeLockManager(available=True))
    monkeypatch.setattr("activity_dedup.workers.tasks.deduplicate_user", fake_deduplicate_user)

    result = deduplicate_user_activities("user-1", True, "transitive")

    assert calls == [("user-1", True, "transitive")]
    assert result["groups_found"] == 2
    assert result["merged_count"] == 3
    assert result["dry_run"] is True


def test_task_end_to_end(db_engine, store_activity, monkeypatch, test_user_id):
    start = datetime(2024, 11, 2, 9, 0)
    store_activity("wahoo", start, 4000, type="Ride", title="Club Ride", source="wahoo")
    store_activity("strava", start + timedelta(minutes=3), 3950, type="Ride", title="Club Ride")
    monkeypatch.setattr("activity_dedup.workers.tasks.lock_manager", _FakeLockManager(available=True))

    result = deduplicate_user_activities(test_user_id)

    assert result["merged_count"] == 1
    assert result["per_group"][0]["canonical_id"] == "wahoo"
