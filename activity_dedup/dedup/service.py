"""Deduplication pipeline for one user.

Loader → comparator → cluster builder → canonical selector → merge executor.
Groups are merged one transaction at a time; a failing group is recorded and
the run moves on.
"""

from __future__ import annotations

import time

from loguru import logger

from activity_dedup.dedup.canonical import choose_canonical
from activity_dedup.dedup.clustering import build_groups
from activity_dedup.dedup.config import ClusterMode, DedupConfig
from activity_dedup.dedup.errors import InputError, NotFoundError, TransactionError
from activity_dedup.dedup.merge import MergeExecutor, is_group_resolved
from activity_dedup.dedup.repository import ActivityRepository, CandidateOptions
from activity_dedup.dedup.types import DedupReport, DuplicateGroup, GroupOutcome, GroupStatus


def validate_user_id(user_id: object) -> str:
    """Validate and normalize a user id.

    Raises:
        InputError: If the user id is missing, not a string, or blank
    """
    if not isinstance(user_id, str) or not user_id.strip():
        raise InputError(f"Invalid user_id: {user_id!r}")
    return user_id.strip()


def attach_referenced_canonicals(group: DuplicateGroup, repository: ActivityRepository, user_id: str) -> list[str]:
    """Pull canonical records that members are already flagged against into the group.

    A member flagged against a canonical outside the group belongs to that
    canonical's event, so selection has to run over the union. Targets that
    vanished or are themselves flagged are left out.

    Returns:
        IDs of the records added to the group
    """
    member_ids = set(group.member_ids)
    attached: list[str] = []

    for member in list(group.members):
        target_id = member.duplicate_of
        if not member.is_duplicate or target_id is None or target_id in member_ids:
            continue
        target = repository.get_activity(user_id, target_id)
        if target is None or target.is_duplicate:
            continue
        group.members.append(target)
        member_ids.add(target_id)
        attached.append(target_id)

    if attached:
        logger.info(f"[DEDUP] Group seeded by {group.seed.id} joined existing canonical(s) {attached}")
    return attached


def _record_error(report: DedupReport, message: str, config: DedupConfig) -> None:
    if len(report.errors) < config.max_error_details:
        report.errors.append(message)
    else:
        report.errors_truncated += 1


def run_deduplication(
    user_id: str,
    repository: ActivityRepository,
    *,
    dry_run: bool = False,
    config: DedupConfig | None = None,
    mode: ClusterMode | str | None = None,
    options: CandidateOptions | None = None,
) -> DedupReport:
    """Detect and merge duplicate activities for one user.

    Args:
        user_id: User whose activities are reconciled
        repository: Storage access (scoped by user_id on every call)
        dry_run: Load, cluster and select canonicals, but issue no mutations
        config: Optional configuration (uses defaults if None)
        mode: Clustering strategy override
        options: Candidate loading options

    Returns:
        DedupReport with per-group outcomes and aggregate counts

    Raises:
        InputError: If user_id is invalid
    """
    user_id = validate_user_id(user_id)
    if config is None:
        config = DedupConfig()
    cluster_mode = ClusterMode(mode) if mode is not None else config.cluster_mode
    if options is None:
        options = CandidateOptions()

    run_start = time.time()
    logger.info(f"[DEDUP] Run started for user_id={user_id} dry_run={dry_run} mode={cluster_mode}")

    report = DedupReport(user_id=user_id, dry_run=dry_run, cluster_mode=str(cluster_mode))

    candidates = repository.list_candidates(user_id, options)
    report.candidates_loaded = len(candidates)

    clustering = build_groups(candidates, config, cluster_mode)
    report.excluded_activity_ids = list(clustering.excluded_ids)

    executor = MergeExecutor(repository)

    for group in clustering.groups:
        attach_referenced_canonicals(group, repository, user_id)
        canonical = choose_canonical(group, config)

        if is_group_resolved(group):
            report.already_resolved_count += 1
            continue

        report.groups_found += 1
        report.total_duplicates += len(group.duplicate_ids)

        if dry_run:
            report.per_group.append(
                GroupOutcome(canonical_id=canonical.id, duplicate_ids=group.duplicate_ids, status=GroupStatus.PLANNED)
            )
            continue

        try:
            merge_result = executor.merge_group(group, canonical)
        except NotFoundError as e:
            logger.warning(f"[DEDUP] Skipping group canonical={canonical.id}: {e} (treated as resolved)")
            report.skipped_count += 1
            report.per_group.append(
                GroupOutcome(
                    canonical_id=canonical.id,
                    duplicate_ids=group.duplicate_ids,
                    status=GroupStatus.SKIPPED,
                    error=str(e),
                )
            )
            continue
        except TransactionError as e:
            logger.error(f"[DEDUP] Group canonical={canonical.id} failed and was rolled back: {e}")
            report.failed_count += 1
            _record_error(report, str(e), config)
            report.per_group.append(
                GroupOutcome(
                    canonical_id=canonical.id,
                    duplicate_ids=group.duplicate_ids,
                    status=GroupStatus.FAILED,
                    error=str(e),
                )
            )
            continue

        report.merged_count += merge_result.merged_count
        report.kept_count += merge_result.kept_count
        report.per_group.append(
            GroupOutcome(
                canonical_id=canonical.id,
                duplicate_ids=group.duplicate_ids,
                status=GroupStatus.MERGED,
                merge=merge_result,
            )
        )

    elapsed = time.time() - run_start
    logger.info(
        f"[DEDUP] Run finished for user_id={user_id} in {elapsed:.2f}s: "
        f"candidates={report.candidates_loaded}, groups={report.groups_found}, "
        f"duplicates={report.total_duplicates}, merged={report.merged_count}, "
        f"failed={report.failed_count}, skipped={report.skipped_count}, "
        f"already_resolved={report.already_resolved_count}"
    )
    return report
