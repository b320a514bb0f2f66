"""
People Merge - Database Models

SQLAlchemy models for the tables the merge engine reads and rewrites.
Rows are created by the household CRUD flows; the merge engine is the only
writer allowed to bulk-reassign their person references.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Dict, Any, Union
from enum import Enum

from sqlalchemy import (
    Column, String, Boolean, Integer, DateTime, ForeignKey,
    CheckConstraint, UniqueConstraint, Index
)
from sqlalchemy.dialects.postgresql import UUID, JSONB
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class GroupRole(str, Enum):
    """Closed set of roles a user can hold in a group"""
    ADMIN = "admin"
    MEMBER = "member"


# ==================== PERSON STATE ====================

@dataclass(frozen=True)
class Active:
    """Person is live and can own records."""


@dataclass(frozen=True)
class Archived:
    """Person was merged away; kept for history only."""
    at: datetime
    by: uuid.UUID


PersonState = Union[Active, Archived]


@dataclass(frozen=True)
class Person:
    """Read-only view of a group person used by the merge pipeline."""
    id: uuid.UUID
    group_id: uuid.UUID
    user_id: Optional[uuid.UUID]
    display_name: str
    state: PersonState
    email: Optional[str] = None
    created_at: Optional[datetime] = None

    @property
    def is_claimed(self) -> bool:
        return self.user_id is not None

    @property
    def is_archived(self) -> bool:
        return isinstance(self.state, Archived)


# ==================== TABLES ====================

class GroupMemberDB(Base):
    """
    Group membership of a real account. Source of the role lookup.
    """
    __tablename__ = "group_members"

    group_id = Column(UUID(as_uuid=True), primary_key=True)
    user_id = Column(UUID(as_uuid=True), primary_key=True)
    role = Column(String(20), nullable=False, default=GroupRole.MEMBER.value)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))


class GroupPersonDB(Base):
    """
    Group Person - a participant in a household group.

    user_id set means the person is claimed by a real account; unset means
    an unclaimed placeholder. Archived people are logically deleted.
    """
    __tablename__ = "group_people"
    __table_args__ = (
        CheckConstraint(
            "(is_archived AND archived_at IS NOT NULL AND archived_by IS NOT NULL)"
            " OR (NOT is_archived AND archived_at IS NULL AND archived_by IS NULL)",
            name="group_people_archive_state",
        ),
        Index("ix_group_people_group_id", "group_id"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    group_id = Column(UUID(as_uuid=True), nullable=False)
    user_id = Column(UUID(as_uuid=True))
    display_name = Column(String(255), nullable=False)
    email = Column(String(255))
    created_by = Column(UUID(as_uuid=True))
    is_archived = Column(Boolean, nullable=False, default=False)
    archived_at = Column(DateTime(timezone=True))
    archived_by = Column(UUID(as_uuid=True))
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    @property
    def state(self) -> PersonState:
        if self.is_archived:
            return Archived(at=self.archived_at, by=self.archived_by)
        return Active()

    def archive(self, at: datetime, by: uuid.UUID) -> None:
        """Move to the Archived state, setting all archive columns together."""
        self.is_archived = True
        self.archived_at = at
        self.archived_by = by

    def to_person(self) -> Person:
        return Person(
            id=self.id,
            group_id=self.group_id,
            user_id=self.user_id,
            display_name=self.display_name,
            state=self.state,
            email=self.email,
            created_at=self.created_at,
        )


class TaskDB(Base):
    __tablename__ = "tasks"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    group_id = Column(UUID(as_uuid=True), nullable=False)
    title = Column(String(255), nullable=False)
    assigned_to_person_id = Column(UUID(as_uuid=True), ForeignKey("group_people.id"), index=True)


class RecurringTaskDB(Base):
    __tablename__ = "recurring_tasks"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    group_id = Column(UUID(as_uuid=True), nullable=False)
    title = Column(String(255), nullable=False)
    assigned_to_person_id = Column(UUID(as_uuid=True), ForeignKey("group_people.id"), index=True)


class ExpenseDB(Base):
    __tablename__ = "expenses"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    group_id = Column(UUID(as_uuid=True), nullable=False)
    description = Column(String(255))
    amount_cents = Column(Integer, nullable=False)
    paid_by_person_id = Column(UUID(as_uuid=True), ForeignKey("group_people.id"), nullable=False, index=True)


class ExpenseSplitDB(Base):
    """
    Per-person share of one expense. One row per (expense, person).
    """
    __tablename__ = "expense_splits"
    __table_args__ = (
        UniqueConstraint("expense_id", "person_id", name="expense_splits_expense_person_key"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    expense_id = Column(UUID(as_uuid=True), ForeignKey("expenses.id", ondelete="CASCADE"), nullable=False)
    person_id = Column(UUID(as_uuid=True), ForeignKey("group_people.id"), nullable=False, index=True)
    amount_owed_cents = Column(Integer, nullable=False)


class SettlementDB(Base):
    """
    Directed transfer that settled a debt between two people.
    """
    __tablename__ = "settlements"
    __table_args__ = (
        CheckConstraint("from_person_id <> to_person_id", name="settlements_not_self"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    group_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    from_person_id = Column(UUID(as_uuid=True), ForeignKey("group_people.id"), nullable=False)
    to_person_id = Column(UUID(as_uuid=True), ForeignKey("group_people.id"), nullable=False)
    amount_cents = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))


class PeopleMergeAuditDB(Base):
    """
    Append-only record of one completed merge.
    """
    __tablename__ = "people_merge_audit"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    group_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    source_person_id = Column(UUID(as_uuid=True), ForeignKey("group_people.id"), nullable=False)
    target_person_id = Column(UUID(as_uuid=True), ForeignKey("group_people.id"), nullable=False)
    merged_by = Column(UUID(as_uuid=True), nullable=False)
    merged_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    moved_counts = Column(JSONB, nullable=False, default=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": str(self.id),
            "group_id": str(self.group_id),
            "source_person_id": str(self.source_person_id),
            "target_person_id": str(self.target_person_id),
            "merged_by": str(self.merged_by),
            "merged_at": self.merged_at.isoformat() if self.merged_at else None,
            "moved_counts": self.moved_counts or {},
        }
