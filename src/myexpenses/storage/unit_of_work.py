"""Unit of work: one commit boundary over one persistence context.

Every repository handed out by a :class:`UnitOfWork` shares its single
:class:`~myexpenses.storage.context.AsyncPersistenceContext`, so a
``save_changes()`` call makes all of their queued changes durable
together.  Leaving the ``async with`` block releases the context exactly
once, whether the block returned, raised or was cancelled; anything not
yet saved is rolled back.

Usage::

    async with unit_of_work(ContextVarUserContext()) as uow:
        expenses = uow.repository(Expense)
        await expenses.insert(Expense(name="Coffee", amount=Decimal("4.50")))
        await uow.save_changes()
"""

from __future__ import annotations

import uuid
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from myexpenses.core.clock import IClock
from myexpenses.core.errors import UnitOfWorkClosedError
from myexpenses.core.interfaces import IUserContext, TEntity
from myexpenses.observability.logger import get_logger

from .connection import get_session_factory
from .context import AsyncPersistenceContext
from .repository import Repository

logger = get_logger(__name__)


class UnitOfWork:
    """Owns one persistence context for its lifetime.

    Not safe for concurrent use: one unit of work per logical operation.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        user_context: IUserContext | None = None,
        clock: IClock | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._user_context = user_context
        self._clock = clock
        self._context: AsyncPersistenceContext | None = None
        self._repositories: dict[type[Any], Repository[Any]] = {}
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def context(self) -> AsyncPersistenceContext:
        """The persistence context, opened on first access."""
        if self._closed:
            raise UnitOfWorkClosedError("Unit of work has already been closed")
        if self._context is None:
            self._context = AsyncPersistenceContext(
                self._session_factory(),
                user_context=self._user_context,
                clock=self._clock,
            )
        return self._context

    def repository(self, entity_type: type[TEntity]) -> Repository[TEntity]:
        """Return the repository for *entity_type*, creating it on first use."""
        context = self.context
        repo = self._repositories.get(entity_type)
        if repo is None:
            repo = Repository(entity_type, context)
            self._repositories[entity_type] = repo
        return repo

    async def save_changes(
        self,
        *,
        user_id: uuid.UUID | None = None,
        timeout: float | None = None,
    ) -> int:
        """Commit every pending change; return the number of affected rows.

        See :meth:`AsyncPersistenceContext.commit` for stamping,
        cancellation and error semantics.
        """
        return await self.context.commit(user_id=user_id, timeout=timeout)

    async def rollback(self) -> None:
        """Discard pending changes without releasing the context."""
        if self._closed:
            raise UnitOfWorkClosedError("Unit of work has already been closed")
        if self._context is not None:
            await self._context.rollback()

    async def close(self) -> None:
        """Discard anything unsaved and release the context.

        Closing the session rolls back its open transaction and detaches
        loaded entities without expiring them, so objects read through
        this unit of work stay usable afterwards.  Safe to call more than
        once; only the first call releases.
        """
        if self._closed:
            return
        self._closed = True
        context, self._context = self._context, None
        self._repositories.clear()
        if context is None:
            return
        await context.close()
        logger.debug("unit_of_work.closed")

    async def __aenter__(self) -> UnitOfWork:
        # Open eagerly so factory errors surface at entry.
        _ = self.context
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()


@asynccontextmanager
async def unit_of_work(
    user_context: IUserContext | None = None,
    clock: IClock | None = None,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
) -> AsyncIterator[UnitOfWork]:
    """Yield a :class:`UnitOfWork` scoped to the caller's block.

    Uses the module-level session factory from
    :func:`~myexpenses.storage.connection.init_engine` unless
    *session_factory* is given.  The unit of work never auto-commits.

    Raises:
        RuntimeError: If no factory is given and ``init_engine`` was not called.
    """
    uow = UnitOfWork(
        session_factory or get_session_factory(),
        user_context=user_context,
        clock=clock,
    )
    async with uow:
        yield uow
