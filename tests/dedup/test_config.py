"""Tests for deduplication configuration and environment settings."""

import pytest
from pydantic import ValidationError

from activity_dedup.config.settings import Settings
from activity_dedup.dedup.config import ClusterMode, DedupConfig


def test_defaults():
    config = DedupConfig()

    assert config.max_time_diff_seconds == 1800
    assert config.cluster_mode == ClusterMode.SINGLE_SEED
    assert config.comparison_horizon_seconds == 14 * 3600 + 300
    assert config.priority_for(" Garmin ") == 90
    assert config.priority_for(None) == 0


def test_from_settings(monkeypatch):
    monkeypatch.setenv("DEDUP_CLUSTER_MODE", "Transitive")
    monkeypatch.setenv("DEDUP_TIME_TOLERANCE_MINUTES", "20")
    monkeypatch.setenv("DEDUP_DURATION_TOLERANCE_MINUTES", "3")
    monkeypatch.setenv("DEDUP_MAX_ERROR_DETAILS", "4")

    config = DedupConfig.from_settings(Settings())

    assert config.cluster_mode == ClusterMode.TRANSITIVE
    assert config.max_time_diff_seconds == 1200
    assert config.duration_floor_seconds == 180
    assert config.max_error_details == 4


def test_invalid_cluster_mode_falls_back(monkeypatch):
    monkeypatch.setenv("DEDUP_CLUSTER_MODE", "greedy")

    assert Settings().dedup_cluster_mode == "single_seed"


def test_invalid_log_level_falls_back(monkeypatch):
    monkeypatch.setenv("LOG_LEVEL", "chatty")

    assert Settings().log_level == "INFO"


def test_non_positive_error_details_rejected(monkeypatch):
    monkeypatch.setenv("DEDUP_MAX_ERROR_DETAILS", "0")

    with pytest.raises(ValidationError):
        Settings()
