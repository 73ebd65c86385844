"""Tests for the activity-dedup CLI."""

import json
from contextlib import contextmanager
from datetime import datetime, timedelta

from sqlalchemy import select
from typer.testing import CliRunner

from activity_dedup.db.models import Activity
from cli.cli import app

runner = CliRunner()

START = datetime(2024, 10, 3, 18, 0)


class _FakeLockManager:
    def __init__(self, available: bool):
        self.available = available
        self.keys: list[str] = []

    @contextmanager
    def acquire(self, key):
        self.keys.append(key)
        yield self.available


def _store_pair(store_activity):
    store_activity("garmin", START, 2700, type="Run", title="Intervals", source="garmin")
    store_activity("strava", START + timedelta(minutes=2), 2710, type="Run", title="Intervals", with_stream=True)


def test_deduplicate_without_lock(db_engine, store_activity, db_session, test_user_id):
    _store_pair(store_activity)

    result = runner.invoke(app, ["deduplicate", "--user-id", test_user_id, "--no-lock"])

    assert result.exit_code == 0, result.output
    assert "Groups found: 1" in result.output
    db_session.expire_all()
    assert db_session.get(Activity, "strava").is_duplicate is True


def test_deduplicate_dry_run_takes_lock(db_engine, store_activity, db_session, monkeypatch, test_user_id):
    _store_pair(store_activity)
    fake_lock = _FakeLockManager(available=True)
    monkeypatch.setattr("cli.cli.lock_manager", fake_lock)

    result = runner.invoke(app, ["deduplicate", "-u", test_user_id, "--dry-run"])

    assert result.exit_code == 0, result.output
    assert fake_lock.keys == [f"lock:dedup:user:{test_user_id}"]
    db_session.expire_all()
    assert db_session.scalars(select(Activity).where(Activity.is_duplicate.is_(True))).all() == []


def test_deduplicate_busy_lock(db_engine, monkeypatch, test_user_id):
    monkeypatch.setattr("cli.cli.lock_manager", _FakeLockManager(available=False))

    result = runner.invoke(app, ["deduplicate", "--user-id", test_user_id])

    assert result.exit_code == 2


def test_deduplicate_blank_user(db_engine):
    result = runner.invoke(app, ["deduplicate", "--user-id", "  ", "--no-lock"])

    assert result.exit_code == 1


def test_blank_user_rejected_before_locking(db_engine, monkeypatch):
    fake_lock = _FakeLockManager(available=True)
    monkeypatch.setattr("cli.cli.lock_manager", fake_lock)

    result = runner.invoke(app, ["deduplicate", "--user-id", "  "])

    assert result.exit_code == 1
    assert "Invalid user_id" in result.output
    assert fake_lock.keys == []


def test_deduplicate_invalid_mode(db_engine, test_user_id):
    result = runner.invoke(app, ["deduplicate", "--user-id", test_user_id, "--no-lock", "--mode", "greedy"])

    assert result.exit_code != 0


def test_compare_explains_verdict(db_engine, store_activity, test_user_id):
    _store_pair(store_activity)

    result = runner.invoke(app, ["compare", "garmin", "strava", "--user-id", test_user_id])

    assert result.exit_code == 0, result.output
    assert "DUPLICATE" in result.output


def test_compare_missing_activity(db_engine, store_activity, test_user_id):
    _store_pair(store_activity)

    result = runner.invoke(app, ["compare", "garmin", "ghost", "--user-id", test_user_id])

    assert result.exit_code == 1


def test_cleanup_dry_run(db_engine, store_activity, test_user_id):
    store_activity("canonical", START, 3600, type="Run", source="garmin")
    store_activity("dup", START, 3600, type="Run", is_duplicate=True, duplicate_of="canonical")

    result = runner.invoke(app, ["cleanup", "--user-id", test_user_id, "--dry-run", "--no-lock"])

    assert result.exit_code == 0, result.output
    assert "Would delete: 1" in result.output


def test_cleanup_takes_lock(db_engine, store_activity, db_session, monkeypatch, test_user_id):
    store_activity("canonical", START, 3600, type="Run", source="garmin")
    store_activity("dup", START, 3600, type="Run", is_duplicate=True, duplicate_of="canonical")
    fake_lock = _FakeLockManager(available=True)
    monkeypatch.setattr("cli.cli.lock_manager", fake_lock)

    result = runner.invoke(app, ["cleanup", "--user-id", test_user_id])

    assert result.exit_code == 0, result.output
    assert fake_lock.keys == [f"lock:dedup:user:{test_user_id}"]
    db_session.expire_all()
    assert db_session.get(Activity, "dup") is None


def test_cleanup_busy_lock(db_engine, store_activity, db_session, monkeypatch, test_user_id):
    store_activity("canonical", START, 3600, type="Run", source="garmin")
    store_activity("dup", START, 3600, type="Run", is_duplicate=True, duplicate_of="canonical")
    monkeypatch.setattr("cli.cli.lock_manager", _FakeLockManager(available=False))

    result = runner.invoke(app, ["cleanup", "--user-id", test_user_id])

    assert result.exit_code == 2
    db_session.expire_all()
    assert db_session.get(Activity, "dup") is not None


def test_plan_file(tmp_path):
    export = tmp_path / "export.json"
    export.write_text(
        json.dumps(
            [
                {
                    "id": "a",
                    "userId": "athlete",
                    "source": "garmin",
                    "startTime": "2024-10-03T18:00:00Z",
                    "durationSec": 2700,
                    "type": "Run",
                },
                {
                    "id": "b",
                    "userId": "athlete",
                    "source": "strava",
                    "startTime": "2024-10-03T18:03:00Z",
                    "durationSec": 2650,
                    "type": "Run",
                },
            ]
        ),
        encoding="utf-8",
    )

    result = runner.invoke(app, ["plan-file", str(export), "--user-id", "athlete", "--json"])

    assert result.exit_code == 0, result.output
    assert '"groups_found": 1' in result.output
    assert '"dry_run": true' in result.output
