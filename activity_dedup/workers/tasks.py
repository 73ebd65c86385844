import time

from loguru import logger
from sqlalchemy.exc import OperationalError

from activity_dedup.celery_app import celery_app
from activity_dedup.dedup.runner import deduplicate_user
from activity_dedup.workers.locks import dedup_lock_key, lock_manager


@celery_app.task(
    autoretry_for=(OperationalError,),
    retry_backoff=60,
    retry_kwargs={"max_retries": 3},
)
def deduplicate_user_activities(user_id: str, dry_run: bool = False, mode: str | None = None) -> dict:
    """Deduplicate one user's activities.

    The per-user Redis lock keeps two runs from processing the same candidate
    set at once; a busy lock returns without doing anything.
    """
    task_start = time.time()
    logger.info(f"[CELERY] Deduplication task STARTED for user_id={user_id} dry_run={dry_run}")

    with lock_manager.acquire(dedup_lock_key(user_id)) as acquired:
        if not acquired:
            logger.warning(f"[CELERY] Could not acquire deduplication lock: user_id={user_id}")
            return {"user_id": user_id, "skipped": True, "reason": "locked"}

        report = deduplicate_user(user_id, dry_run=dry_run, mode=mode)

    elapsed = time.time() - task_start
    logger.info(
        f"[CELERY] Deduplication task finished for user_id={user_id} in {elapsed:.2f}s: "
        f"groups={report.groups_found}, merged={report.merged_count}, failed={report.failed_count}"
    )
    return report.to_dict()
