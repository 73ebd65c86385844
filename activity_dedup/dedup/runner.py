"""Database-backed entry points shared by the CLI, Celery task and API."""

from __future__ import annotations

from datetime import datetime

from loguru import logger

from activity_dedup.config.settings import settings
from activity_dedup.db.session import get_session
from activity_dedup.dedup.config import ClusterMode, DedupConfig
from activity_dedup.dedup.merge import CleanupResult, MergeExecutor
from activity_dedup.dedup.repository import CandidateOptions, SqlActivityRepository
from activity_dedup.dedup.service import run_deduplication, validate_user_id
from activity_dedup.dedup.types import DedupReport


def deduplicate_user(
    user_id: str,
    *,
    dry_run: bool = False,
    mode: ClusterMode | str | None = None,
    since: datetime | None = None,
    until: datetime | None = None,
) -> DedupReport:
    """Run the deduplication pipeline against the configured database.

    Args:
        user_id: User ID
        dry_run: Plan only, no mutations
        mode: Clustering strategy override (defaults to DEDUP_CLUSTER_MODE)
        since: Optional lower bound on activity start time
        until: Optional upper bound on activity start time

    Returns:
        DedupReport
    """
    user_id = validate_user_id(user_id)
    config = DedupConfig.from_settings(settings)
    options = CandidateOptions(since=since, until=until)

    with logger.contextualize(user_id=user_id), get_session() as session:
        repository = SqlActivityRepository(session)
        return run_deduplication(
            user_id,
            repository,
            dry_run=dry_run,
            config=config,
            mode=mode,
            options=options,
        )


def cleanup_user(user_id: str, *, dry_run: bool = False) -> CleanupResult:
    """Hard-delete fully redundant duplicate rows of one user."""
    user_id = validate_user_id(user_id)
    with logger.contextualize(user_id=user_id), get_session() as session:
        executor = MergeExecutor(SqlActivityRepository(session))
        return executor.cleanup_duplicates(user_id, dry_run=dry_run)
