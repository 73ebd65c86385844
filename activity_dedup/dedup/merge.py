"""Merge executor: applies one duplicate group's decisions to storage.

Per group, inside a single repository transaction:
1. Re-read every member (a vanished member aborts the group with NotFoundError)
2. Clear a stale duplicate flag on the canonical record
3. Move child data the canonical record lacks from duplicates onto it
4. Flag each duplicate and repoint anything that referenced it

Default policy is soft: rows stay, flagged. cleanup_duplicates() is the
separate, explicit hard-delete path.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from loguru import logger

from activity_dedup.dedup.errors import DeduplicationError, NotFoundError, TransactionError
from activity_dedup.dedup.repository import ActivityRepository
from activity_dedup.dedup.types import ActivityRecord, ChildKind, DuplicateGroup, MergeResult


@dataclass(frozen=True)
class MemberPlan:
    """What merging will do to one non-canonical member."""

    activity_id: str
    reparent: frozenset[ChildKind]
    needs_mark: bool

    @property
    def is_noop(self) -> bool:
        return not self.reparent and not self.needs_mark


@dataclass(frozen=True)
class MergePlan:
    """Planned mutations for one group."""

    canonical_id: str
    clear_canonical_flag: bool
    members: tuple[MemberPlan, ...]

    @property
    def is_noop(self) -> bool:
        return not self.clear_canonical_flag and all(m.is_noop for m in self.members)


@dataclass
class CleanupResult:
    """Outcome of the hard-delete cleanup path."""

    deleted_ids: list[str] = field(default_factory=list)
    retained_ids: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)


def plan_merge(canonical: ActivityRecord, others: list[ActivityRecord]) -> MergePlan:
    """Compute the mutations needed to fold ``others`` into ``canonical``.

    Single-valued child kinds go to the first member (in group order) that
    owns them; once the canonical record owns a kind, later owners keep theirs.

    Args:
        canonical: Canonical record (current state)
        others: Non-canonical members (current state), in group order

    Returns:
        MergePlan describing every mutation
    """
    owned: set[ChildKind] = set(canonical.child_kinds)
    member_plans: list[MemberPlan] = []

    for member in others:
        reparent = frozenset(member.child_kinds - owned)
        owned |= reparent
        needs_mark = not (member.is_duplicate and member.duplicate_of == canonical.id)
        member_plans.append(MemberPlan(activity_id=member.id, reparent=reparent, needs_mark=needs_mark))

    return MergePlan(
        canonical_id=canonical.id,
        clear_canonical_flag=canonical.is_duplicate or canonical.duplicate_of is not None,
        members=tuple(member_plans),
    )


def is_group_resolved(group: DuplicateGroup) -> bool:
    """Check whether a group with a chosen canonical needs no further mutation."""
    canonical = group.canonical
    if canonical is None:
        raise ValueError("Group has no canonical member; call choose_canonical first")
    others = [m for m in group.members if m.id != canonical.id]
    return plan_merge(canonical, others).is_noop


class MergeExecutor:
    """Applies merge plans through an ActivityRepository."""

    def __init__(self, repository: ActivityRepository) -> None:
        self.repository = repository

    def _reload(self, user_id: str, activity_id: str) -> ActivityRecord:
        record = self.repository.get_activity(user_id, activity_id)
        if record is None:
            raise NotFoundError(activity_id)
        return record

    def merge_group(self, group: DuplicateGroup, canonical: ActivityRecord | None = None) -> MergeResult:
        """Merge one group into its canonical record, atomically.

        Safe to call again on an already merged group: members already flagged
        against the canonical record with nothing left to move are no-ops.

        Args:
            group: Duplicate group
            canonical: Canonical record; defaults to group.canonical

        Returns:
            MergeResult with kept/merged counts

        Raises:
            NotFoundError: A member vanished since loading (nothing committed)
            TransactionError: Persistence failed (nothing committed)
        """
        if canonical is None:
            canonical = group.canonical
        if canonical is None:
            raise ValueError("Group has no canonical member; call choose_canonical first")

        user_id = canonical.user_id
        result = MergeResult(kept_count=1)

        try:
            with self.repository.transaction():
                current = self._reload(user_id, canonical.id)
                others = [self._reload(user_id, m.id) for m in group.members if m.id != canonical.id]
                plan = plan_merge(current, others)

                if plan.clear_canonical_flag:
                    logger.info(f"[DEDUP_MERGE] Clearing stale duplicate flag on canonical {current.id}")
                    self.repository.clear_duplicate(user_id, current.id)

                for member_plan in plan.members:
                    if member_plan.is_noop:
                        result.already_merged_count += 1
                        continue

                    if member_plan.reparent:
                        moved = self.repository.reparent_children(
                            user_id,
                            member_plan.activity_id,
                            current.id,
                            set(member_plan.reparent),
                        )
                        for kind, count in moved.items():
                            result.reparented[kind] = result.reparented.get(kind, 0) + count
                        logger.debug(f"[DEDUP_MERGE] Reparented {moved} from {member_plan.activity_id} to {current.id}")

                    self.repository.mark_duplicate(user_id, member_plan.activity_id, current.id)
                    result.repointed_count += self.repository.repoint_duplicates(
                        user_id,
                        member_plan.activity_id,
                        current.id,
                    )
                    result.merged_count += 1
        except DeduplicationError:
            raise
        except Exception as e:
            logger.exception(f"[DEDUP_MERGE] Merge failed for group canonical={canonical.id}: {e}")
            raise TransactionError(canonical.id, e) from e

        logger.info(
            f"[DEDUP_MERGE] Group canonical={canonical.id}: kept={result.kept_count}, "
            f"merged={result.merged_count}, already_merged={result.already_merged_count}, "
            f"reparented={result.reparented}"
        )
        return result

    def cleanup_duplicates(self, user_id: str, dry_run: bool = False) -> CleanupResult:
        """Hard-delete duplicate rows that own no reparentable data.

        A duplicate is deletable when every child kind it owns is already owned
        by its canonical record. Each deletion runs in its own transaction.

        Args:
            user_id: User ID
            dry_run: Report what would be deleted without deleting

        Returns:
            CleanupResult with deleted, retained and failed ids
        """
        result = CleanupResult()

        for duplicate in self.repository.list_duplicates(user_id):
            canonical = (
                self.repository.get_activity(user_id, duplicate.duplicate_of) if duplicate.duplicate_of else None
            )
            if canonical is None or canonical.is_duplicate:
                logger.warning(
                    f"[DEDUP_CLEANUP] Duplicate {duplicate.id} has no valid canonical "
                    f"(duplicate_of={duplicate.duplicate_of}); keeping it"
                )
                result.retained_ids.append(duplicate.id)
                continue

            if duplicate.child_kinds - canonical.child_kinds:
                logger.debug(f"[DEDUP_CLEANUP] Duplicate {duplicate.id} still owns unique child data; keeping it")
                result.retained_ids.append(duplicate.id)
                continue

            if dry_run:
                result.deleted_ids.append(duplicate.id)
                continue

            try:
                with self.repository.transaction():
                    self.repository.delete_activity(user_id, duplicate.id)
            except NotFoundError:
                logger.warning(f"[DEDUP_CLEANUP] Duplicate {duplicate.id} vanished before deletion")
                continue
            except Exception as e:
                logger.exception(f"[DEDUP_CLEANUP] Failed to delete duplicate {duplicate.id}: {e}")
                result.failed[duplicate.id] = str(e)
                continue
            result.deleted_ids.append(duplicate.id)

        logger.info(
            f"[DEDUP_CLEANUP] user_id={user_id} dry_run={dry_run}: deleted={len(result.deleted_ids)}, "
            f"retained={len(result.retained_ids)}, failed={len(result.failed)}"
        )
        return result
