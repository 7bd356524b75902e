"""Soft-delete-aware persistence for MyExpenses.

Key components
--------------
BaseEntity              Id, soft-delete flag and audit columns for every table
PersistenceContext      Blocking session wrapper that stamps audit fields at commit
AsyncPersistenceContext Asyncio counterpart of PersistenceContext
Repository              Generic CRUD over one entity type with soft-delete filtering
UnitOfWork              Single commit boundary owning one persistence context
"""

from myexpenses.storage.context import (
    AsyncPersistenceContext,
    PendingChanges,
    PersistenceContext,
    stamp_audit_fields,
)
from myexpenses.storage.models import Base, BaseEntity, Category, Expense
from myexpenses.storage.repository import Repository, apply_soft_delete_filter
from myexpenses.storage.unit_of_work import UnitOfWork, unit_of_work

__all__ = [
    "AsyncPersistenceContext",
    "Base",
    "BaseEntity",
    "Category",
    "Expense",
    "PendingChanges",
    "PersistenceContext",
    "Repository",
    "UnitOfWork",
    "apply_soft_delete_filter",
    "stamp_audit_fields",
    "unit_of_work",
]
