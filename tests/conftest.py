"""Shared fixtures for the MyExpenses test suite."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable

import pytest
import pytest_asyncio

from myexpenses.core.clock import SimClock
from myexpenses.core.context import StaticUserContext
from myexpenses.core.interfaces import IUserContext
from myexpenses.storage.connection import (
    create_all,
    create_engine,
    create_sync_engine,
    make_session_factory,
    make_sync_session_factory,
)
from myexpenses.storage.models import Base, Expense
from myexpenses.storage.unit_of_work import UnitOfWork


# ---------------------------------------------------------------------------
# Principals & time
# ---------------------------------------------------------------------------

@pytest.fixture
def user_u1() -> uuid.UUID:
    return uuid.UUID("00000000-0000-4000-8000-0000000000a1")


@pytest.fixture
def user_u2() -> uuid.UUID:
    return uuid.UUID("00000000-0000-4000-8000-0000000000a2")


@pytest.fixture
def sim_clock() -> SimClock:
    """Simulated clock starting 2025-03-01 09:00 UTC."""
    return SimClock(start=datetime(2025, 3, 1, 9, 0, tzinfo=timezone.utc))


class SwitchableUserContext:
    """User context whose principal tests can change between commits."""

    def __init__(self, user_id: uuid.UUID | None) -> None:
        self.user_id = user_id

    def get_current_user_id(self) -> uuid.UUID | None:
        return self.user_id


@pytest.fixture
def user_context(user_u1) -> SwitchableUserContext:
    return SwitchableUserContext(user_u1)


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def engine():
    """In-memory aiosqlite engine with the schema created."""
    eng = create_engine("sqlite+aiosqlite://")
    await create_all(eng)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture
def make_uow(session_factory, user_context, sim_clock) -> Callable[..., UnitOfWork]:
    """Build units of work bound to the shared test database."""

    def _make(
        context: IUserContext | None = user_context,
        clock: SimClock = sim_clock,
    ) -> UnitOfWork:
        return UnitOfWork(session_factory, user_context=context, clock=clock)

    return _make


@pytest_asyncio.fixture
async def uow(make_uow):
    unit = make_uow()
    yield unit
    await unit.close()


@pytest.fixture
def sync_engine():
    """In-memory pysqlite engine with the schema created."""
    eng = create_sync_engine("sqlite+pysqlite://")
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def sync_session_factory(sync_engine):
    return make_sync_session_factory(sync_engine)


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------

@pytest.fixture
def coffee() -> Expense:
    """Unpersisted 'Coffee' expense of 4.50."""
    return Expense(name="Coffee", amount=Decimal("4.50"))


@pytest.fixture
def static_context(user_u1) -> StaticUserContext:
    return StaticUserContext(user_u1)
