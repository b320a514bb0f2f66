"""
People Merge - Conflict Resolution

Pure functions deciding what happens to expense splits and settlements when
one person's records are folded into another's. No storage I/O here.
"""

import uuid
from dataclasses import dataclass, replace
from typing import Optional


@dataclass(frozen=True)
class SplitShare:
    """One expense_splits row."""
    id: uuid.UUID
    expense_id: uuid.UUID
    person_id: uuid.UUID
    amount_owed_cents: int


@dataclass(frozen=True)
class SplitMergeOutcome:
    """
    result: the row that must exist afterwards for the target on that expense.
    delete_source: True when the incoming row was folded into an existing one
    and must be deleted; False when the incoming row itself was repointed.
    """
    result: SplitShare
    delete_source: bool


@dataclass(frozen=True)
class SettlementLink:
    """The person references of one settlements row."""
    id: uuid.UUID
    from_person_id: uuid.UUID
    to_person_id: uuid.UUID

    @property
    def is_self_transfer(self) -> bool:
        return self.from_person_id == self.to_person_id


def merge_split(
    existing: Optional[SplitShare],
    incoming: SplitShare,
    target_person_id: uuid.UUID,
) -> SplitMergeOutcome:
    """
    Fold the source's split on an expense into the target's.

    Args:
        existing: Target's split on the same expense, if any
        incoming: Source's split
        target_person_id: Person the source is merged into

    Returns:
        SplitMergeOutcome. The amount owed on the expense is unchanged in
        both branches.
    """
    if existing is not None:
        if existing.expense_id != incoming.expense_id:
            raise ValueError("Cannot merge splits from different expenses")
        merged = replace(
            existing,
            amount_owed_cents=existing.amount_owed_cents + incoming.amount_owed_cents,
        )
        return SplitMergeOutcome(result=merged, delete_source=True)

    moved = replace(incoming, person_id=target_person_id)
    return SplitMergeOutcome(result=moved, delete_source=False)


def rewrite_settlement(
    settlement: SettlementLink,
    source_person_id: uuid.UUID,
    target_person_id: uuid.UUID,
) -> Optional[SettlementLink]:
    """
    Substitute the target for the source on both ends of a settlement.

    Returns None when the rewrite would turn the settlement into a transfer
    from a person to themselves; such a row must be deleted.
    """
    new_from = target_person_id if settlement.from_person_id == source_person_id else settlement.from_person_id
    new_to = target_person_id if settlement.to_person_id == source_person_id else settlement.to_person_id

    rewritten = SettlementLink(id=settlement.id, from_person_id=new_from, to_person_id=new_to)
    if rewritten.is_self_transfer:
        return None
    return rewritten
