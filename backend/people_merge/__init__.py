"""
People Merge Module

Folds an unclaimed placeholder person into the claimed person it stands for,
moving every task, expense, split and settlement across and leaving an audit
trail.

Features:
- Group admin authorization
- Identity validation (same group, claim state, not archived)
- Ownership reassignment for tasks, recurring tasks, expenses
- Split and settlement reconciliation
- Soft archive of the source person
- Append-only merge audit
"""

from .errors import (
    MergeError,
    MissingFieldError,
    InvalidFieldError,
    AuthenticationError,
    AuthorizationError,
    ValidationError,
    ValidationErrorKind,
    NotFoundError,
    ConfigurationError,
)
from .models import (
    GroupRole,
    Person,
    Active,
    Archived,
    GroupMemberDB,
    GroupPersonDB,
    TaskDB,
    RecurringTaskDB,
    ExpenseDB,
    ExpenseSplitDB,
    SettlementDB,
    PeopleMergeAuditDB,
)
from .reconcile import SplitShare, SplitMergeOutcome, SettlementLink, merge_split, rewrite_settlement
from .store import MergeStore
from .service import PeopleMergeService, MergeCounts, MergeResult, MergeState

__all__ = [
    'MergeError',
    'MissingFieldError',
    'InvalidFieldError',
    'AuthenticationError',
    'AuthorizationError',
    'ValidationError',
    'ValidationErrorKind',
    'NotFoundError',
    'ConfigurationError',
    'GroupRole',
    'Person',
    'Active',
    'Archived',
    'GroupMemberDB',
    'GroupPersonDB',
    'TaskDB',
    'RecurringTaskDB',
    'ExpenseDB',
    'ExpenseSplitDB',
    'SettlementDB',
    'PeopleMergeAuditDB',
    'SplitShare',
    'SplitMergeOutcome',
    'SettlementLink',
    'merge_split',
    'rewrite_settlement',
    'MergeStore',
    'PeopleMergeService',
    'MergeCounts',
    'MergeResult',
    'MergeState',
]
