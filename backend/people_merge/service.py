"""
People Merge - Service Layer

Folds an unclaimed placeholder person into a claimed person of the same
group. Phases run strictly in order:

1. Authorization  - caller must be a group admin
2. Validation     - both people exist, same group, right claim state
3. Reassignment   - tasks, recurring tasks, expenses repointed to target
4. Splits         - source splits moved or summed into target's
5. Settlements    - settlements repointed, self-transfers deleted
6. Archive/Audit  - source archived, one audit row written

Everything from the role lookup to the audit insert runs in one
transaction; a failure anywhere leaves the store as it was.
"""

import uuid
import logging
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Dict, Any, List

from .errors import (
    AuthorizationError,
    ValidationError,
    ValidationErrorKind,
    MergeError,
)
from .models import GroupRole, Person
from .reconcile import merge_split, rewrite_settlement
from .store import MergeStore, OWNER_COLUMNS

logger = logging.getLogger(__name__)


class MergeState(str, Enum):
    PENDING = "pending"
    AUTHORIZED = "authorized"
    VALIDATED = "validated"
    REASSIGNED = "reassigned"
    RECONCILED = "reconciled"
    ARCHIVED = "archived"


_NEXT_STATE = {
    MergeState.PENDING: MergeState.AUTHORIZED,
    MergeState.AUTHORIZED: MergeState.VALIDATED,
    MergeState.VALIDATED: MergeState.REASSIGNED,
    MergeState.REASSIGNED: MergeState.RECONCILED,
    MergeState.RECONCILED: MergeState.ARCHIVED,
}


@dataclass
class MergeCounts:
    """
    Row counts written to the audit entry.

    tasks/recurring_tasks/expenses/splits/settlements are the rows the source
    owned before conflict resolution; the rest are resolution outcomes.
    """
    tasks: int = 0
    recurring_tasks: int = 0
    expenses: int = 0
    splits: int = 0
    settlements: int = 0
    splits_merged: int = 0
    splits_moved: int = 0
    settlements_moved: int = 0
    settlements_removed: int = 0

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


@dataclass
class MergeRun:
    """Progress of one merge through the pipeline."""
    group_id: uuid.UUID
    source_person_id: uuid.UUID
    target_person_id: uuid.UUID
    caller_id: uuid.UUID
    state: MergeState = MergeState.PENDING
    counts: MergeCounts = field(default_factory=MergeCounts)

    def advance(self, state: MergeState) -> None:
        if _NEXT_STATE.get(self.state) != state:
            raise RuntimeError(f"Illegal merge transition {self.state.value} -> {state.value}")
        self.state = state


@dataclass
class MergeResult:
    audit_id: uuid.UUID
    group_id: uuid.UUID
    source_person_id: uuid.UUID
    target_person_id: uuid.UUID
    merged_by: uuid.UUID
    merged_at: datetime
    counts: MergeCounts
    state: MergeState = MergeState.ARCHIVED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "audit_id": str(self.audit_id),
            "group_id": str(self.group_id),
            "source_person_id": str(self.source_person_id),
            "target_person_id": str(self.target_person_id),
            "merged_by": str(self.merged_by),
            "merged_at": self.merged_at.isoformat(),
            "moved_counts": self.counts.to_dict(),
            "state": self.state.value,
        }


@dataclass
class MergeCandidates:
    """Active people of a group, split by which side of a merge they can be."""
    sources: List[Person]
    targets: List[Person]


def authorize_admin(role: Optional[GroupRole]) -> None:
    """Pass only for group admins; members and non-members are refused."""
    if role is not GroupRole.ADMIN:
        raise AuthorizationError()


def validate_merge_pair(
    group_id: uuid.UUID,
    source_person_id: uuid.UUID,
    target_person_id: uuid.UUID,
    people: List[Person],
) -> None:
    """
    Check the identity rules in order, raising on the first one broken.

    The same-identity rule is checked by the caller before fetching; it is
    repeated here so the function stands on its own.
    """
    if source_person_id == target_person_id:
        raise ValidationError(ValidationErrorKind.SAME_IDENTITY)

    by_id = {person.id: person for person in people}
    source = by_id.get(source_person_id)
    target = by_id.get(target_person_id)

    if source is None or target is None:
        raise ValidationError(ValidationErrorKind.PERSON_NOT_FOUND)
    if source.group_id != group_id or target.group_id != group_id:
        raise ValidationError(ValidationErrorKind.GROUP_MISMATCH)
    if source.is_archived:
        raise ValidationError(ValidationErrorKind.SOURCE_ALREADY_ARCHIVED)
    if source.is_claimed:
        raise ValidationError(ValidationErrorKind.SOURCE_MUST_BE_UNCLAIMED)
    if not target.is_claimed:
        raise ValidationError(ValidationErrorKind.TARGET_MUST_BE_CLAIMED)


class PeopleMergeService:
    """
    Merge engine plus the read endpoints that surface its results.
    """

    def __init__(self, store: MergeStore):
        self.store = store

    # ==================== MERGE ====================

    async def merge_people(
        self,
        group_id: uuid.UUID,
        source_person_id: uuid.UUID,
        target_person_id: uuid.UUID,
        caller_id: uuid.UUID,
        now: Optional[datetime] = None,
    ) -> MergeResult:
        """
        Merge source into target.

        Args:
            group_id: Group both people must belong to
            source_person_id: Unclaimed placeholder to fold away
            target_person_id: Claimed person receiving the records
            caller_id: Account performing the merge
            now: Archive/audit timestamp, defaults to current UTC time

        Returns:
            MergeResult with the audit id and counts

        Raises:
            AuthorizationError, ValidationError, ConfigurationError
        """
        run = MergeRun(
            group_id=group_id,
            source_person_id=source_person_id,
            target_person_id=target_person_id,
            caller_id=caller_id,
        )
        merged_at = now or datetime.now(timezone.utc)

        try:
            async with self.store.transaction():
                role = await self.store.get_role(group_id, caller_id)
                authorize_admin(role)
                run.advance(MergeState.AUTHORIZED)

                if source_person_id == target_person_id:
                    raise ValidationError(ValidationErrorKind.SAME_IDENTITY)
                people = await self.store.get_people([source_person_id, target_person_id], for_update=True)
                validate_merge_pair(group_id, source_person_id, target_person_id, people)
                run.advance(MergeState.VALIDATED)

                await self._reassign_ownership(run)
                run.advance(MergeState.REASSIGNED)

                await self._reconcile_splits(run)
                await self._reconcile_settlements(run)
                run.advance(MergeState.RECONCILED)

                audit_id = await self._archive_and_record(run, merged_at)
                run.advance(MergeState.ARCHIVED)
        except MergeError as e:
            logger.warning(
                f"Merge rejected: {source_person_id} -> {target_person_id} in group {group_id}: {e.message}",
                extra={"group_id": str(group_id), "stage": run.state.value, "error_type": type(e).__name__},
            )
            raise

        logger.info(
            f"Merged persons: {source_person_id} -> {target_person_id} in group {group_id}",
            extra={"group_id": str(group_id), "merged_by": str(caller_id), "moved_counts": run.counts.to_dict()},
        )

        return MergeResult(
            audit_id=audit_id,
            group_id=group_id,
            source_person_id=source_person_id,
            target_person_id=target_person_id,
            merged_by=caller_id,
            merged_at=merged_at,
            counts=run.counts,
            state=run.state,
        )

    async def _reassign_ownership(self, run: MergeRun) -> None:
        for kind in OWNER_COLUMNS:
            touched = await self.store.reassign_owner(kind, run.source_person_id, run.target_person_id)
            setattr(run.counts, kind, touched)

    async def _reconcile_splits(self, run: MergeRun) -> None:
        source_splits = await self.store.list_splits(run.source_person_id)
        target_splits = await self.store.list_splits(run.target_person_id)
        target_by_expense = {split.expense_id: split for split in target_splits}
        run.counts.splits = len(source_splits)

        for split in source_splits:
            outcome = merge_split(target_by_expense.get(split.expense_id), split, run.target_person_id)
            if outcome.delete_source:
                await self.store.set_split_amount(outcome.result.id, outcome.result.amount_owed_cents)
                await self.store.delete_split(split.id)
                run.counts.splits_merged += 1
            else:
                await self.store.move_split(split.id, run.target_person_id)
                run.counts.splits_moved += 1
            target_by_expense[split.expense_id] = outcome.result

    async def _reconcile_settlements(self, run: MergeRun) -> None:
        settlements = await self.store.list_settlements(run.group_id, run.source_person_id)
        run.counts.settlements = len(settlements)

        for settlement in settlements:
            rewritten = rewrite_settlement(settlement, run.source_person_id, run.target_person_id)
            if rewritten is None:
                await self.store.delete_settlement(settlement.id)
                run.counts.settlements_removed += 1
            else:
                await self.store.update_settlement(rewritten)
                run.counts.settlements_moved += 1

    async def _archive_and_record(self, run: MergeRun, merged_at: datetime) -> uuid.UUID:
        await self.store.archive_person(run.source_person_id, merged_at, run.caller_id)
        return await self.store.insert_merge_audit(
            group_id=run.group_id,
            source_person_id=run.source_person_id,
            target_person_id=run.target_person_id,
            merged_by=run.caller_id,
            merged_at=merged_at,
            moved_counts=run.counts.to_dict(),
        )

    # ==================== READ SIDE ====================

    async def list_merge_audit(self, group_id: uuid.UUID, caller_id: uuid.UUID) -> List[Dict[str, Any]]:
        """Merge history of a group. Any member may read it."""
        role = await self.store.get_role(group_id, caller_id)
        if role is None:
            raise AuthorizationError("Group membership required")
        return await self.store.list_merge_audit(group_id)

    async def list_merge_candidates(self, group_id: uuid.UUID, caller_id: uuid.UUID) -> MergeCandidates:
        """Unclaimed people that can be merged away and claimed people that can receive them."""
        authorize_admin(await self.store.get_role(group_id, caller_id))
        people = await self.store.list_active_people(group_id)
        return MergeCandidates(
            sources=[p for p in people if not p.is_claimed],
            targets=[p for p in people if p.is_claimed],
        )
