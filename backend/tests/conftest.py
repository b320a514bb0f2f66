"""
Shared fixtures for the people merge tests.

InMemoryMergeStore mirrors MergeStore's interface over plain dicts so the
real PeopleMergeService can run whole merges without PostgreSQL. It enforces
the same table constraints (unique split per expense/person, no
self-settlements) and restores its snapshot when a transaction fails.
"""

import os
import copy
import uuid
from contextlib import asynccontextmanager
from dataclasses import replace
from datetime import datetime, timezone
from typing import Optional, Dict, Any, List

os.environ.setdefault("ENVIRONMENT", "development")
os.environ["JWT_SECRET_KEY"] = "test-secret-key-for-household-core-0123456789"
os.environ["JWT_AUDIENCE"] = "authenticated"

import pytest

from config import get_settings

get_settings.cache_clear()

from people_merge.models import GroupRole, Person, Active, Archived
from people_merge.reconcile import SplitShare, SettlementLink
from people_merge.store import OWNER_COLUMNS

OWNER_FIELDS = {kind: column.key for kind, column in OWNER_COLUMNS.items()}


class StoreFailure(RuntimeError):
    """Raised by InMemoryMergeStore when told to fail a primitive."""


class InMemoryMergeStore:

    def __init__(self):
        self.roles: Dict[tuple, GroupRole] = {}
        self.people: Dict[uuid.UUID, Dict[str, Any]] = {}
        self.owned: Dict[str, Dict[uuid.UUID, Dict[str, Any]]] = {kind: {} for kind in OWNER_FIELDS}
        self.splits: Dict[uuid.UUID, SplitShare] = {}
        self.settlements: Dict[uuid.UUID, Dict[str, Any]] = {}
        self.audit: List[Dict[str, Any]] = []
        self.calls: List[str] = []
        self.fail_on: Optional[str] = None
        self.commits = 0
        self.rollbacks = 0

    # ---- fixtures helpers ----

    def add_member(self, group_id, user_id, role: GroupRole):
        self.roles[(group_id, user_id)] = role

    def add_person(self, group_id, name, user_id=None, archived=False, created_at=None):
        person_id = uuid.uuid4()
        self.people[person_id] = {
            "id": person_id,
            "group_id": group_id,
            "user_id": user_id,
            "display_name": name,
            "email": None,
            "is_archived": archived,
            "archived_at": datetime(2026, 1, 1, tzinfo=timezone.utc) if archived else None,
            "archived_by": uuid.uuid4() if archived else None,
            "created_at": created_at or datetime.now(timezone.utc),
        }
        return person_id

    def add_owned(self, kind, person_id):
        row_id = uuid.uuid4()
        self.owned[kind][row_id] = {OWNER_FIELDS[kind]: person_id}
        return row_id

    def add_split(self, expense_id, person_id, amount):
        split = SplitShare(id=uuid.uuid4(), expense_id=expense_id, person_id=person_id, amount_owed_cents=amount)
        self.splits[split.id] = split
        return split.id

    def add_settlement(self, group_id, from_person_id, to_person_id, amount=1000):
        settlement_id = uuid.uuid4()
        self.settlements[settlement_id] = {
            "group_id": group_id,
            "from_person_id": from_person_id,
            "to_person_id": to_person_id,
            "amount_cents": amount,
        }
        return settlement_id

    def expense_total(self, expense_id):
        return sum(s.amount_owed_cents for s in self.splits.values() if s.expense_id == expense_id)

    def split_for(self, expense_id, person_id):
        matches = [s for s in self.splits.values() if s.expense_id == expense_id and s.person_id == person_id]
        assert len(matches) <= 1
        return matches[0] if matches else None

    def _record(self, name):
        self.calls.append(name)
        if self.fail_on == name:
            raise StoreFailure(f"{name} failed")

    def _state(self):
        return (self.people, self.owned, self.splits, self.settlements, self.audit)

    # ---- MergeStore interface ----

    @asynccontextmanager
    async def transaction(self):
        snapshot = copy.deepcopy(self._state())
        try:
            yield self
            self.commits += 1
        except Exception:
            self.people, self.owned, self.splits, self.settlements, self.audit = snapshot
            self.rollbacks += 1
            raise

    async def get_role(self, group_id, user_id):
        self._record("get_role")
        return self.roles.get((group_id, user_id))

    async def get_people(self, person_ids, for_update=False):
        self._record("get_people")
        return [self._to_person(self.people[pid]) for pid in person_ids if pid in self.people]

    async def list_active_people(self, group_id):
        rows = [p for p in self.people.values() if p["group_id"] == group_id and not p["is_archived"]]
        rows.sort(key=lambda p: p["created_at"])
        return [self._to_person(p) for p in rows]

    async def reassign_owner(self, kind, source_id, target_id):
        self._record(f"reassign_owner:{kind}")
        field = OWNER_FIELDS[kind]
        touched = 0
        for row in self.owned[kind].values():
            if row[field] == source_id:
                row[field] = target_id
                touched += 1
        return touched

    async def list_splits(self, person_id):
        self._record("list_splits")
        return [s for s in self.splits.values() if s.person_id == person_id]

    async def set_split_amount(self, split_id, amount_owed_cents):
        self._record("set_split_amount")
        self.splits[split_id] = replace(self.splits[split_id], amount_owed_cents=amount_owed_cents)

    async def move_split(self, split_id, person_id):
        self._record("move_split")
        split = self.splits[split_id]
        if self.split_for(split.expense_id, person_id) is not None:
            raise StoreFailure("duplicate key value violates unique constraint")
        self.splits[split_id] = replace(split, person_id=person_id)

    async def delete_split(self, split_id):
        self._record("delete_split")
        del self.splits[split_id]

    async def list_settlements(self, group_id, person_id):
        self._record("list_settlements")
        return [
            SettlementLink(id=sid, from_person_id=row["from_person_id"], to_person_id=row["to_person_id"])
            for sid, row in self.settlements.items()
            if row["group_id"] == group_id and person_id in (row["from_person_id"], row["to_person_id"])
        ]

    async def update_settlement(self, link):
        self._record("update_settlement")
        if link.from_person_id == link.to_person_id:
            raise StoreFailure("violates check constraint settlements_not_self")
        self.settlements[link.id]["from_person_id"] = link.from_person_id
        self.settlements[link.id]["to_person_id"] = link.to_person_id

    async def delete_settlement(self, settlement_id):
        self._record("delete_settlement")
        del self.settlements[settlement_id]

    async def archive_person(self, person_id, at, by):
        self._record("archive_person")
        self.people[person_id].update(is_archived=True, archived_at=at, archived_by=by)

    async def insert_merge_audit(self, group_id, source_person_id, target_person_id, merged_by, merged_at, moved_counts):
        self._record("insert_merge_audit")
        entry_id = uuid.uuid4()
        self.audit.append({
            "id": entry_id,
            "group_id": group_id,
            "source_person_id": source_person_id,
            "target_person_id": target_person_id,
            "merged_by": merged_by,
            "merged_at": merged_at,
            "moved_counts": dict(moved_counts),
        })
        return entry_id

    async def list_merge_audit(self, group_id):
        entries = [dict(e) for e in self.audit if e["group_id"] == group_id]
        entries.sort(key=lambda e: e["merged_at"], reverse=True)
        return entries

    @staticmethod
    def _to_person(row):
        state = Archived(at=row["archived_at"], by=row["archived_by"]) if row["is_archived"] else Active()
        return Person(
            id=row["id"],
            group_id=row["group_id"],
            user_id=row["user_id"],
            display_name=row["display_name"],
            state=state,
            email=row["email"],
            created_at=row["created_at"],
        )


class Household:
    """A group with an admin account, a claimed person and a placeholder."""

    def __init__(self, store: InMemoryMergeStore):
        self.store = store
        self.group_id = uuid.uuid4()
        self.admin_user_id = uuid.uuid4()
        self.member_user_id = uuid.uuid4()
        self.target_user_id = uuid.uuid4()

        store.add_member(self.group_id, self.admin_user_id, GroupRole.ADMIN)
        store.add_member(self.group_id, self.member_user_id, GroupRole.MEMBER)

        self.target_id = store.add_person(self.group_id, "Sam", user_id=self.target_user_id)
        self.source_id = store.add_person(self.group_id, "Sam (placeholder)")
        self.other_id = store.add_person(self.group_id, "Alex", user_id=uuid.uuid4())


@pytest.fixture
def store():
    return InMemoryMergeStore()


@pytest.fixture
def household(store):
    return Household(store)
