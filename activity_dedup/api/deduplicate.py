from fastapi import APIRouter, HTTPException
from loguru import logger
from pydantic import BaseModel, Field

from activity_dedup.dedup.config import ClusterMode
from activity_dedup.dedup.errors import InputError
from activity_dedup.dedup.runner import cleanup_user, deduplicate_user
from activity_dedup.workers.locks import dedup_lock_key, lock_manager
from activity_dedup.workers.tasks import deduplicate_user_activities

router = APIRouter(prefix="/admin/activities", tags=["admin"])


class DeduplicateRequest(BaseModel):
    user_id: str = Field(..., description="User whose activities are reconciled")
    dry_run: bool = Field(default=False, description="Plan only, issue no mutations")
    background: bool = Field(default=False, description="Enqueue a Celery task instead of running inline")
    mode: str | None = Field(default=None, description="Clustering mode: single_seed or transitive")


class CleanupRequest(BaseModel):
    user_id: str
    dry_run: bool = False


def _require_user_id(user_id: str) -> str:
    if not user_id.strip():
        raise HTTPException(status_code=400, detail="user_id is required")
    return user_id.strip()


def _busy(user_id: str) -> HTTPException:
    logger.info(f"[DEDUP_API] Deduplication already running for user_id={user_id}")
    return HTTPException(status_code=409, detail=f"Deduplication already running for user {user_id}")


@router.post("/deduplicate")
def deduplicate_activities(request: DeduplicateRequest):
    """Trigger duplicate detection and merge for one user."""
    user_id = _require_user_id(request.user_id)
    if request.mode is not None:
        try:
            ClusterMode(request.mode)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=f"Invalid mode: {request.mode}") from e

    if request.background:
        try:
            handle = deduplicate_user_activities.delay(user_id, request.dry_run, request.mode)
        except Exception as e:
            logger.error(f"Error triggering activity deduplication: {e}")
            raise HTTPException(status_code=500, detail="Failed to trigger activity deduplication") from e
        return {"success": True, "task_id": handle.id}

    with lock_manager.acquire(dedup_lock_key(user_id)) as acquired:
        if not acquired:
            raise _busy(user_id)
        try:
            report = deduplicate_user(user_id, dry_run=request.dry_run, mode=request.mode)
        except InputError as e:
            raise HTTPException(status_code=400, detail=str(e)) from e
    return {"success": not report.has_failures, "report": report.to_dict()}


@router.post("/deduplicate/cleanup")
def cleanup_duplicate_activities(request: CleanupRequest):
    """Hard-delete duplicate activities that own no unique child data."""
    user_id = _require_user_id(request.user_id)
    with lock_manager.acquire(dedup_lock_key(user_id)) as acquired:
        if not acquired:
            raise _busy(user_id)
        try:
            result = cleanup_user(user_id, dry_run=request.dry_run)
        except InputError as e:
            raise HTTPException(status_code=400, detail=str(e)) from e
    return {
        "success": not result.failed,
        "dry_run": request.dry_run,
        "deleted_ids": result.deleted_ids,
        "retained_ids": result.retained_ids,
        "failed": result.failed,
    }
