"""Generic soft-delete-aware repository.

One :class:`Repository` implementation serves every entity type; the type
is a constructor argument, not a subclass.  Reads go through
:meth:`Repository.query`, which applies the soft-delete filter.  Writes
only register changes on the shared
:class:`~myexpenses.storage.context.AsyncPersistenceContext`; the unit of
work's ``save_changes()`` is what makes them durable.
"""

from __future__ import annotations

import uuid
from typing import Any, Generic, Sequence

from sqlalchemy import ColumnElement, Select, false, func, select
from sqlalchemy.exc import MultipleResultsFound

from myexpenses.core.errors import AmbiguousMatchError, InvalidArgumentError
from myexpenses.core.interfaces import QueryTransform, TEntity
from myexpenses.observability.logger import get_logger

from .context import AsyncPersistenceContext
from .models import BaseEntity

logger = get_logger(__name__)


def apply_soft_delete_filter(
    stmt: Select[Any],
    entity_type: type[BaseEntity],
    include_deleted: bool = False,
) -> Select[Any]:
    """Exclude soft-deleted rows unless *include_deleted* is set."""
    if include_deleted:
        return stmt
    return stmt.where(entity_type.is_deleted == false())


class Repository(Generic[TEntity]):
    """CRUD over one entity type.

    Usage::

        expenses = Repository(Expense, ctx)
        await expenses.insert(Expense(name="Coffee", amount=Decimal("4.50")))
        recent = await expenses.get_with_query(
            lambda q: q.order_by(Expense.spent_on.desc()).limit(10)
        )
    """

    def __init__(self, entity_type: type[TEntity], context: AsyncPersistenceContext) -> None:
        if not (isinstance(entity_type, type) and issubclass(entity_type, BaseEntity)):
            raise InvalidArgumentError(
                f"Repository entity type must subclass BaseEntity, got {entity_type!r}"
            )
        self._entity_type = entity_type
        self._context = context

    @property
    def entity_type(self) -> type[TEntity]:
        return self._entity_type

    @property
    def context(self) -> AsyncPersistenceContext:
        return self._context

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def query(self, include_deleted: bool = False) -> Select[tuple[TEntity]]:
        """Base ``SELECT`` for this entity type with the soft-delete filter applied."""
        return apply_soft_delete_filter(
            select(self._entity_type), self._entity_type, include_deleted
        )

    async def get_by_id(
        self, entity_id: uuid.UUID, include_deleted: bool = False
    ) -> TEntity | None:
        """Return the entity with *entity_id*, or ``None``.

        Raises:
            AmbiguousMatchError: If more than one row carries the id.
        """
        if entity_id is None:
            raise InvalidArgumentError("entity_id must not be None")
        return await self._single(
            self._entity_type.id == entity_id, include_deleted
        )

    async def get_by_predicate(
        self, predicate: ColumnElement[bool], include_deleted: bool = False
    ) -> TEntity | None:
        """Return the single entity matching *predicate*, or ``None``.

        Raises:
            AmbiguousMatchError: If more than one row matches.
        """
        self._require(predicate, "predicate")
        return await self._single(predicate, include_deleted)

    async def get_all(self, include_deleted: bool = False) -> list[TEntity]:
        result = await self._context.session.scalars(self.query(include_deleted))
        return list(result.all())

    async def get_with_query(
        self, transform: QueryTransform, include_deleted: bool = False
    ) -> list[TEntity]:
        """Run a caller-shaped query on top of the soft-delete filter.

        *transform* receives the filtered ``SELECT`` and returns a new one;
        use it to add criteria, ordering, limits or eager-loading options.
        """
        self._require(transform, "transform")
        stmt = transform(self.query(include_deleted))
        result = await self._context.session.scalars(stmt)
        return list(result.unique().all())

    async def count(self, include_deleted: bool = False) -> int:
        stmt = apply_soft_delete_filter(
            select(func.count()).select_from(self._entity_type),
            self._entity_type,
            include_deleted,
        )
        return (await self._context.session.scalar(stmt)) or 0

    async def exists(
        self, predicate: ColumnElement[bool], include_deleted: bool = False
    ) -> bool:
        self._require(predicate, "predicate")
        stmt = self.query(include_deleted).where(predicate).limit(1)
        return (await self._context.session.scalar(stmt)) is not None

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def insert(self, entity: TEntity) -> TEntity:
        """Register *entity* as a pending insert.

        The id is already assigned at construction; audit fields are
        stamped at commit.
        """
        self._require_entity(entity)
        self._context.add(entity)
        return entity

    async def insert_many(self, entities: Sequence[TEntity]) -> list[TEntity]:
        """Register every entity as a pending insert in one batch.

        An empty sequence is a no-op and returns ``[]``.
        """
        self._require(entities, "entities")
        batch = list(entities)
        if not batch:
            return []
        for entity in batch:
            self._require_entity(entity)
        self._context.add_all(batch)
        return batch

    async def update(self, entity: TEntity) -> TEntity:
        """Register *entity* as a pending update."""
        self._require_entity(entity)
        self._context.mark_modified(entity)
        return entity

    async def delete(self, entity: TEntity, soft: bool = True) -> None:
        """Soft-delete (default) or physically remove *entity*.

        A hard delete ignores the current ``is_deleted`` value.  A soft
        delete of an already soft-deleted entity does nothing.
        """
        self._require_entity(entity)

        if not soft:
            await self._context.remove(entity)
            logger.debug(
                "repository.hard_delete",
                entity=self._entity_type.__name__,
                entity_id=str(entity.id),
            )
            return

        if entity.is_deleted:
            return

        entity.is_deleted = True
        self._context.mark_modified(entity)
        logger.debug(
            "repository.soft_delete",
            entity=self._entity_type.__name__,
            entity_id=str(entity.id),
        )

    async def delete_by_predicate(
        self,
        predicate: ColumnElement[bool],
        soft: bool = True,
        include_deleted: bool = True,
    ) -> None:
        """Delete the single entity matching *predicate*, if any.

        The search covers soft-deleted rows by default so a hard delete can
        purge them; pass ``include_deleted=False`` to search live rows only.
        No match is a no-op.

        Raises:
            AmbiguousMatchError: If more than one row matches.
        """
        self._require(predicate, "predicate")
        entity = await self._single(predicate, include_deleted)
        if entity is None:
            return
        await self.delete(entity, soft=soft)

    async def restore(self, entity: TEntity) -> TEntity:
        """Undo a soft delete.  Restoring a live entity does nothing."""
        self._require_entity(entity)
        if entity.is_deleted:
            entity.is_deleted = False
            self._context.mark_modified(entity)
        return entity

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _single(
        self, predicate: ColumnElement[bool], include_deleted: bool
    ) -> TEntity | None:
        stmt = self.query(include_deleted).where(predicate)
        result = await self._context.session.scalars(stmt)
        try:
            return result.one_or_none()
        except MultipleResultsFound as exc:
            raise AmbiguousMatchError(self._entity_type.__name__, str(predicate)) from exc

    @staticmethod
    def _require(value: object, name: str) -> None:
        if value is None:
            raise InvalidArgumentError(f"{name} must not be None")

    def _require_entity(self, entity: object) -> None:
        if entity is None:
            raise InvalidArgumentError("entity must not be None")
        if not isinstance(entity, self._entity_type):
            raise InvalidArgumentError(
                f"Expected {self._entity_type.__name__}, got {type(entity).__name__}"
            )

    def __repr__(self) -> str:
        return f"Repository({self._entity_type.__name__})"
