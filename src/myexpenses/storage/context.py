"""Persistence contexts: tracked change sets with audit stamping at commit.

A persistence context owns one SQLAlchemy session.  Repositories queue
inserts, updates and removals on it; nothing reaches the database until
``commit()``, which first stamps the audit columns of every pending
:class:`~myexpenses.storage.models.BaseEntity`:

- pending insert (``session.new``): ``created_by/created_time`` and
  ``updated_by/updated_time`` all set to the acting principal and now;
- pending update (``session.dirty`` with a net change, or anything
  registered through ``mark_modified``): only ``updated_by/updated_time``;
- pending delete and untouched objects: left alone.

:class:`PersistenceContext` wraps a blocking :class:`~sqlalchemy.orm.Session`
and :class:`AsyncPersistenceContext` an :class:`~sqlalchemy.ext.asyncio.AsyncSession`.
Both run the same :func:`stamp_audit_fields` step before flushing.
"""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable

from sqlalchemy import inspect
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Session, make_transient_to_detached
from sqlalchemy.orm.attributes import flag_modified

from myexpenses.core.clock import IClock, WallClock
from myexpenses.core.errors import PrincipalUnresolvedError
from myexpenses.core.interfaces import IUserContext
from myexpenses.observability.logger import get_logger

from .models import BaseEntity

logger = get_logger(__name__)


@dataclass(frozen=True)
class PendingChanges:
    """Row changes a commit is about to flush."""

    inserted: int = 0
    modified: int = 0
    deleted: int = 0

    @property
    def total(self) -> int:
        return self.inserted + self.modified + self.deleted


def stamp_audit_fields(
    session: Session,
    user_id: uuid.UUID,
    now: datetime,
    marked: Iterable[object] = (),
) -> PendingChanges:
    """Stamp audit columns on every pending entity in *session*.

    Args:
        session: The (sync) session whose change set is about to flush.
            For an ``AsyncSession`` pass its ``sync_session``.
        user_id: Acting principal.
        now: Timezone-aware stamp time.
        marked: Objects explicitly registered as updated.  They count as
            modified even when no column changed or their state was
            expired, as long as the session still holds them and they are
            not pending insert or delete.

    Returns:
        Counts of pending inserts, net modifications and deletes across
        all tracked objects, audited or not.
    """
    if now.tzinfo is None:
        raise ValueError(f"Audit timestamps must be timezone-aware, got {now!r}")

    inserted = list(session.new)
    # Decide what is modified before stamping; stamping itself dirties.
    modified = [
        obj for obj in session.dirty
        if session.is_modified(obj, include_collections=False)
    ]
    for obj in marked:
        if (
            obj in session
            and obj not in session.new
            and obj not in session.deleted
            and all(obj is not seen for seen in modified)
        ):
            modified.append(obj)
    deleted = len(session.deleted)

    for obj in inserted:
        if isinstance(obj, BaseEntity):
            obj.created_by = user_id
            obj.created_time = now
            obj.updated_by = user_id
            obj.updated_time = now

    for obj in modified:
        if isinstance(obj, BaseEntity):
            obj.updated_by = user_id
            obj.updated_time = now

    return PendingChanges(
        inserted=len(inserted),
        modified=len(modified),
        deleted=deleted,
    )


def _flag_modified(entity: BaseEntity) -> None:
    # Forces an UPDATE even when no column value changed; the attribute
    # must be loaded for SQLAlchemy to accept the flag.
    if "is_deleted" in inspect(entity).dict:
        flag_modified(entity, "is_deleted")


def _detach_by_key(entity: BaseEntity) -> bool:
    """Treat an untracked entity as a stand-in for the row with its id.

    Returns ``True`` when *entity* was transient and is now detached.
    """
    if not inspect(entity).transient:
        return False
    make_transient_to_detached(entity)
    return True


def _flag_loaded_columns(entity: BaseEntity) -> None:
    # After make_transient_to_detached the assigned values look freshly
    # loaded; flag them so the UPDATE writes them.  Unassigned columns,
    # created_* included, stay expired and are left untouched.
    state = inspect(entity)
    for attr in state.mapper.column_attrs:
        if attr.key in state.dict and not any(c.primary_key for c in attr.columns):
            flag_modified(entity, attr.key)


class _AuditingContext:
    """Principal/clock resolution shared by the sync and async contexts."""

    def __init__(
        self,
        user_context: IUserContext | None = None,
        clock: IClock | None = None,
    ) -> None:
        self._user_context = user_context
        self._clock: IClock = clock or WallClock()
        self._marked: list[BaseEntity] = []

    def _register_update(self, session: Session, entity: BaseEntity) -> None:
        if _detach_by_key(entity):
            session.add(entity)
            _flag_loaded_columns(entity)
        else:
            if entity not in session:
                session.add(entity)
            _flag_modified(entity)
        if all(entity is not seen for seen in self._marked):
            self._marked.append(entity)

    def _register_delete(self, session: Session, entity: BaseEntity) -> bool:
        """Prepare *entity* for ``session.delete``.

        Returns ``False`` when the entity was only pending and has simply
        been untracked.
        """
        if inspect(entity).pending:
            session.expunge(entity)
            return False
        _detach_by_key(entity)
        return True

    @property
    def user_context(self) -> IUserContext | None:
        return self._user_context

    @property
    def clock(self) -> IClock:
        return self._clock

    def _resolve_principal(self, user_id: uuid.UUID | None) -> uuid.UUID:
        if user_id is not None:
            return user_id
        if self._user_context is None:
            raise PrincipalUnresolvedError(
                "No user_id given and no user context configured"
            )
        resolved = self._user_context.get_current_user_id()
        if resolved is None:
            raise PrincipalUnresolvedError(
                f"{type(self._user_context).__name__} did not resolve a principal"
            )
        return resolved

    def _stamp(self, session: Session, user_id: uuid.UUID | None) -> PendingChanges:
        principal = self._resolve_principal(user_id)
        changes = stamp_audit_fields(
            session, principal, self._clock.now(), marked=self._marked,
        )
        logger.debug(
            "persistence.stamped",
            principal=str(principal),
            inserted=changes.inserted,
            modified=changes.modified,
            deleted=changes.deleted,
        )
        return changes


class PersistenceContext(_AuditingContext):
    """Blocking persistence context over a :class:`Session`.

    Usage::

        with PersistenceContext(session_factory(), StaticUserContext(uid)) as ctx:
            ctx.add(Expense(name="Coffee", amount=Decimal("4.50")))
            ctx.commit()
    """

    def __init__(
        self,
        session: Session,
        user_context: IUserContext | None = None,
        clock: IClock | None = None,
    ) -> None:
        super().__init__(user_context, clock)
        self._session = session

    @property
    def session(self) -> Session:
        return self._session

    def add(self, entity: BaseEntity) -> None:
        self._session.add(entity)

    def add_all(self, entities: Iterable[BaseEntity]) -> None:
        self._session.add_all(entities)

    def mark_modified(self, entity: BaseEntity) -> None:
        self._register_update(self._session, entity)

    def remove(self, entity: BaseEntity) -> None:
        if self._register_delete(self._session, entity):
            self._session.delete(entity)

    def commit(self, *, user_id: uuid.UUID | None = None) -> int:
        """Stamp audit fields, flush and commit.

        Args:
            user_id: Principal to stamp with; defaults to the user context.

        Returns:
            Number of rows inserted, updated or deleted.

        Raises:
            PrincipalUnresolvedError: Before any stamping or I/O, when no
                principal can be resolved.
        """
        changes = self._stamp(self._session, user_id)
        self._session.commit()
        self._marked.clear()
        return changes.total

    def rollback(self) -> None:
        self._session.rollback()
        self._marked.clear()

    def close(self) -> None:
        self._session.close()
        self._marked.clear()

    def __enter__(self) -> PersistenceContext:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class AsyncPersistenceContext(_AuditingContext):
    """Asyncio persistence context over an :class:`AsyncSession`.

    Change registration is synchronous; only :meth:`commit`,
    :meth:`remove`, :meth:`rollback` and :meth:`close` may suspend.
    """

    def __init__(
        self,
        session: AsyncSession,
        user_context: IUserContext | None = None,
        clock: IClock | None = None,
    ) -> None:
        super().__init__(user_context, clock)
        self._session = session

    @property
    def session(self) -> AsyncSession:
        return self._session

    def add(self, entity: BaseEntity) -> None:
        self._session.add(entity)

    def add_all(self, entities: Iterable[BaseEntity]) -> None:
        self._session.add_all(entities)

    def mark_modified(self, entity: BaseEntity) -> None:
        self._register_update(self._session.sync_session, entity)

    async def remove(self, entity: BaseEntity) -> None:
        if self._register_delete(self._session.sync_session, entity):
            await self._session.delete(entity)

    async def commit(
        self,
        *,
        user_id: uuid.UUID | None = None,
        timeout: float | None = None,
    ) -> int:
        """Stamp audit fields, flush and commit.

        Cancellation is cooperative: cancelling the awaiting task, or
        exceeding *timeout*, aborts the flush.  Stamps already applied in
        memory stay applied.

        Args:
            user_id: Principal to stamp with; defaults to the user context.
            timeout: Seconds to wait for the flush before raising
                :class:`TimeoutError`.

        Returns:
            Number of rows inserted, updated or deleted.

        Raises:
            PrincipalUnresolvedError: Before any stamping or I/O, when no
                principal can be resolved.
        """
        changes = self._stamp(self._session.sync_session, user_id)
        if timeout is None:
            await self._session.commit()
        else:
            await asyncio.wait_for(self._session.commit(), timeout)
        self._marked.clear()
        return changes.total

    async def rollback(self) -> None:
        await self._session.rollback()
        self._marked.clear()

    async def close(self) -> None:
        await self._session.close()
        self._marked.clear()

    async def __aenter__(self) -> AsyncPersistenceContext:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()
