"""
People Merge - Data Access

MergeStore wraps one AsyncSession and exposes the read/update/delete/insert
primitives the merge pipeline needs. All writes happen inside
MergeStore.transaction(), which commits once at the end or rolls everything
back.
"""

import uuid
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional, Dict, Any, List, Sequence

from sqlalchemy import select, update, delete, or_
from sqlalchemy.exc import OperationalError, InterfaceError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from .errors import ConfigurationError, NotFoundError
from .models import (
    GroupRole,
    Person,
    GroupMemberDB,
    GroupPersonDB,
    TaskDB,
    RecurringTaskDB,
    ExpenseDB,
    ExpenseSplitDB,
    SettlementDB,
    PeopleMergeAuditDB,
)
from .reconcile import SplitShare, SettlementLink

logger = logging.getLogger(__name__)

# Single-owner person references, keyed by the name used in moved_counts
OWNER_COLUMNS = {
    "tasks": TaskDB.assigned_to_person_id,
    "recurring_tasks": RecurringTaskDB.assigned_to_person_id,
    "expenses": ExpenseDB.paid_by_person_id,
}


class MergeStore:
    """
    SQLAlchemy-backed store for the merge engine.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    @asynccontextmanager
    async def transaction(self):
        """Commit on success, roll back on any exception."""
        try:
            yield self
            await self.db.commit()
        except (OperationalError, InterfaceError, OSError) as e:
            await self._rollback()
            logger.error(f"Database unavailable during merge: {e}")
            raise ConfigurationError("Database unavailable") from e
        except Exception:
            await self._rollback()
            raise

    async def _rollback(self) -> None:
        # A failed rollback must not replace the error that caused it
        try:
            await self.db.rollback()
        except Exception as e:
            logger.error(f"Rollback failed: {e}", exc_info=True)

    # ==================== LOOKUPS ====================

    async def get_role(self, group_id: uuid.UUID, user_id: uuid.UUID) -> Optional[GroupRole]:
        """Role of an account in a group, or None when not a member."""
        result = await self.db.execute(
            select(GroupMemberDB.role).where(
                GroupMemberDB.group_id == group_id,
                GroupMemberDB.user_id == user_id,
            )
        )
        role = result.scalar_one_or_none()
        if role is None:
            return None
        try:
            return GroupRole(role)
        except ValueError:
            logger.warning(f"Unknown role '{role}' for user {user_id} in group {group_id}")
            return None

    async def get_people(self, person_ids: Sequence[uuid.UUID], for_update: bool = False) -> List[Person]:
        """
        Batch fetch people by id.

        With for_update the rows stay locked until the transaction ends, so
        merges touching the same people run one after the other.
        """
        stmt = select(GroupPersonDB).where(GroupPersonDB.id.in_(list(person_ids)))
        if for_update:
            stmt = stmt.with_for_update()
        result = await self.db.execute(stmt)
        return [row.to_person() for row in result.scalars().all()]

    async def list_active_people(self, group_id: uuid.UUID) -> List[Person]:
        result = await self.db.execute(
            select(GroupPersonDB)
            .where(GroupPersonDB.group_id == group_id, GroupPersonDB.is_archived.is_(False))
            .order_by(GroupPersonDB.created_at.asc())
        )
        return [row.to_person() for row in result.scalars().all()]

    # ==================== OWNERSHIP ====================

    async def reassign_owner(self, kind: str, source_id: uuid.UUID, target_id: uuid.UUID) -> int:
        """Repoint every row of one table owned by source to target. Returns rows touched."""
        column = OWNER_COLUMNS[kind]
        result = await self.db.execute(
            update(column.class_)
            .where(column == source_id)
            .values({column: target_id})
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    # ==================== SPLITS ====================

    async def list_splits(self, person_id: uuid.UUID) -> List[SplitShare]:
        result = await self.db.execute(
            select(
                ExpenseSplitDB.id,
                ExpenseSplitDB.expense_id,
                ExpenseSplitDB.person_id,
                ExpenseSplitDB.amount_owed_cents,
            ).where(ExpenseSplitDB.person_id == person_id)
        )
        return [
            SplitShare(
                id=row.id,
                expense_id=row.expense_id,
                person_id=row.person_id,
                amount_owed_cents=row.amount_owed_cents,
            )
            for row in result.all()
        ]

    async def set_split_amount(self, split_id: uuid.UUID, amount_owed_cents: int) -> None:
        await self.db.execute(
            update(ExpenseSplitDB)
            .where(ExpenseSplitDB.id == split_id)
            .values(amount_owed_cents=amount_owed_cents)
            .execution_options(synchronize_session=False)
        )

    async def move_split(self, split_id: uuid.UUID, person_id: uuid.UUID) -> None:
        await self.db.execute(
            update(ExpenseSplitDB)
            .where(ExpenseSplitDB.id == split_id)
            .values(person_id=person_id)
            .execution_options(synchronize_session=False)
        )

    async def delete_split(self, split_id: uuid.UUID) -> None:
        await self.db.execute(
            delete(ExpenseSplitDB)
            .where(ExpenseSplitDB.id == split_id)
            .execution_options(synchronize_session=False)
        )

    # ==================== SETTLEMENTS ====================

    async def list_settlements(self, group_id: uuid.UUID, person_id: uuid.UUID) -> List[SettlementLink]:
        """Settlements of the group where the person is either party."""
        result = await self.db.execute(
            select(SettlementDB.id, SettlementDB.from_person_id, SettlementDB.to_person_id)
            .where(
                SettlementDB.group_id == group_id,
                or_(
                    SettlementDB.from_person_id == person_id,
                    SettlementDB.to_person_id == person_id,
                ),
            )
        )
        return [
            SettlementLink(id=row.id, from_person_id=row.from_person_id, to_person_id=row.to_person_id)
            for row in result.all()
        ]

    async def update_settlement(self, link: SettlementLink) -> None:
        await self.db.execute(
            update(SettlementDB)
            .where(SettlementDB.id == link.id)
            .values(from_person_id=link.from_person_id, to_person_id=link.to_person_id)
            .execution_options(synchronize_session=False)
        )

    async def delete_settlement(self, settlement_id: uuid.UUID) -> None:
        await self.db.execute(
            delete(SettlementDB)
            .where(SettlementDB.id == settlement_id)
            .execution_options(synchronize_session=False)
        )

    # ==================== ARCHIVE & AUDIT ====================

    async def archive_person(self, person_id: uuid.UUID, at: datetime, by: uuid.UUID) -> None:
        person = await self.db.get(GroupPersonDB, person_id)
        if person is None:
            raise NotFoundError("Person not found")
        person.archive(at, by)
        await self.db.flush()

    async def insert_merge_audit(
        self,
        group_id: uuid.UUID,
        source_person_id: uuid.UUID,
        target_person_id: uuid.UUID,
        merged_by: uuid.UUID,
        merged_at: datetime,
        moved_counts: Dict[str, int],
    ) -> uuid.UUID:
        entry = PeopleMergeAuditDB(
            id=uuid.uuid4(),
            group_id=group_id,
            source_person_id=source_person_id,
            target_person_id=target_person_id,
            merged_by=merged_by,
            merged_at=merged_at,
            moved_counts=dict(moved_counts),
        )
        self.db.add(entry)
        await self.db.flush()
        return entry.id

    async def list_merge_audit(self, group_id: uuid.UUID) -> List[Dict[str, Any]]:
        """Audit entries of a group, newest first, with both display names."""
        source = aliased(GroupPersonDB)
        target = aliased(GroupPersonDB)
        result = await self.db.execute(
            select(
                PeopleMergeAuditDB,
                source.display_name.label("source_name"),
                target.display_name.label("target_name"),
            )
            .outerjoin(source, source.id == PeopleMergeAuditDB.source_person_id)
            .outerjoin(target, target.id == PeopleMergeAuditDB.target_person_id)
            .where(PeopleMergeAuditDB.group_id == group_id)
            .order_by(PeopleMergeAuditDB.merged_at.desc())
        )

        entries = []
        for entry, source_name, target_name in result.all():
            data = entry.to_dict()
            data["source"] = {"display_name": source_name} if source_name is not None else None
            data["target"] = {"display_name": target_name} if target_name is not None else None
            entries.append(data)
        return entries
