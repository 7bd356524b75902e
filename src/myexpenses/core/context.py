"""Identity-context implementations.

The persistence context asks an :class:`~myexpenses.core.interfaces.IUserContext`
for the acting principal when it stamps audit fields.  Two implementations
ship here:

StaticUserContext       Fixed principal (scripts, imports, tests)
ContextVarUserContext   Per-request principal carried in a ContextVar
"""

from __future__ import annotations

import uuid
from contextlib import contextmanager
from contextvars import ContextVar, Token
from typing import Iterator

from .interfaces import IUserContext

# Context var for principal propagation across awaits
_current_user_id: ContextVar[uuid.UUID | None] = ContextVar(
    "current_user_id", default=None
)


def get_current_user_id() -> uuid.UUID | None:
    """Get the principal bound to the current context, if any."""
    return _current_user_id.get()


def set_current_user(user_id: uuid.UUID | None) -> Token[uuid.UUID | None]:
    """Bind *user_id* to the current context and return a reset token."""
    return _current_user_id.set(user_id)


def reset_current_user(token: Token[uuid.UUID | None]) -> None:
    """Restore the principal that was bound before :func:`set_current_user`."""
    _current_user_id.reset(token)


@contextmanager
def current_user(user_id: uuid.UUID) -> Iterator[uuid.UUID]:
    """Scope a principal to a block.

    Usage::

        with current_user(request.user_id):
            await uow.save_changes()
    """
    token = set_current_user(user_id)
    try:
        yield user_id
    finally:
        reset_current_user(token)


class StaticUserContext:
    """Always resolves to the same principal."""

    def __init__(self, user_id: uuid.UUID) -> None:
        self._user_id = user_id

    def get_current_user_id(self) -> uuid.UUID | None:
        return self._user_id

    def __repr__(self) -> str:
        return f"StaticUserContext(user_id={self._user_id!s})"


class ContextVarUserContext:
    """Resolves the principal bound with :func:`current_user`/:func:`set_current_user`."""

    def get_current_user_id(self) -> uuid.UUID | None:
        return get_current_user_id()


__all__ = [
    "ContextVarUserContext",
    "IUserContext",
    "StaticUserContext",
    "current_user",
    "get_current_user_id",
    "reset_current_user",
    "set_current_user",
]
