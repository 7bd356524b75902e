"""Protocol interfaces for the data-access layer.

All module boundaries are defined here as Protocol classes.
Implementations can be swapped (SQLAlchemy, in-memory fakes) without
changing callers.
"""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING, Any, Callable, Protocol, Sequence, TypeVar, runtime_checkable

if TYPE_CHECKING:
    from sqlalchemy import ColumnElement, Select

    from myexpenses.storage.models import BaseEntity

TEntity = TypeVar("TEntity", bound="BaseEntity")

QueryTransform = Callable[["Select[Any]"], "Select[Any]"]


# ---------------------------------------------------------------------------
# Identity
# ---------------------------------------------------------------------------

@runtime_checkable
class IUserContext(Protocol):
    """Resolves the principal acting on behalf of the current operation."""

    def get_current_user_id(self) -> uuid.UUID | None: ...


# ---------------------------------------------------------------------------
# Repository capabilities
# ---------------------------------------------------------------------------

@runtime_checkable
class IReadRepository(Protocol[TEntity]):
    """Soft-delete-aware reads over one entity type."""

    async def get_by_id(
        self, entity_id: uuid.UUID, include_deleted: bool = False
    ) -> TEntity | None: ...

    async def get_by_predicate(
        self, predicate: ColumnElement[bool], include_deleted: bool = False
    ) -> TEntity | None: ...

    async def get_all(self, include_deleted: bool = False) -> list[TEntity]: ...

    async def get_with_query(
        self, transform: QueryTransform, include_deleted: bool = False
    ) -> list[TEntity]: ...


@runtime_checkable
class IWriteRepository(Protocol[TEntity]):
    """Change registration; nothing is written until the unit of work commits."""

    async def insert(self, entity: TEntity) -> TEntity: ...

    async def insert_many(self, entities: Sequence[TEntity]) -> list[TEntity]: ...

    async def update(self, entity: TEntity) -> TEntity: ...

    async def delete(self, entity: TEntity, soft: bool = True) -> None: ...

    async def delete_by_predicate(
        self,
        predicate: ColumnElement[bool],
        soft: bool = True,
        include_deleted: bool = True,
    ) -> None: ...


@runtime_checkable
class IRepository(IReadRepository[TEntity], IWriteRepository[TEntity], Protocol[TEntity]):
    """Full CRUD capability over one entity type."""


# ---------------------------------------------------------------------------
# Unit of work
# ---------------------------------------------------------------------------

@runtime_checkable
class IUnitOfWork(Protocol):
    """Single commit boundary shared by every repository it hands out."""

    def repository(self, entity_type: type[TEntity]) -> IRepository[TEntity]: ...

    async def save_changes(
        self, *, user_id: uuid.UUID | None = None, timeout: float | None = None
    ) -> int: ...

    async def close(self) -> None: ...
