"""Test UnitOfWork commit boundary, audit scenarios and scoped release."""

from __future__ import annotations

import asyncio
from datetime import timedelta
from decimal import Decimal

import pytest

from myexpenses.core.context import ContextVarUserContext, current_user
from myexpenses.core.errors import PrincipalUnresolvedError, UnitOfWorkClosedError
from myexpenses.core.interfaces import IUnitOfWork
from myexpenses.storage import connection
from myexpenses.storage.context import AsyncPersistenceContext
from myexpenses.storage.models import Category, Expense
from myexpenses.storage.unit_of_work import UnitOfWork, unit_of_work


class TestRepositoryAccess:
    @pytest.mark.asyncio
    async def test_satisfies_protocol(self, uow):
        assert isinstance(uow, IUnitOfWork)

    @pytest.mark.asyncio
    async def test_repository_is_cached_per_type(self, uow):
        assert uow.repository(Expense) is uow.repository(Expense)
        assert uow.repository(Expense) is not uow.repository(Category)

    @pytest.mark.asyncio
    async def test_repositories_share_one_context(self, uow):
        assert uow.repository(Expense).context is uow.repository(Category).context
        assert isinstance(uow.context, AsyncPersistenceContext)

    @pytest.mark.asyncio
    async def test_one_commit_spans_all_repositories(self, make_uow):
        async with make_uow() as uow:
            food = Category(name="Food")
            await uow.repository(Category).insert(food)
            await uow.repository(Expense).insert(
                Expense(name="Coffee", amount=Decimal("4.50"), category_id=food.id)
            )
            assert await uow.save_changes() == 2


class TestAuditScenarios:
    @pytest.mark.asyncio
    async def test_insert_then_update_by_other_principal(
        self, make_uow, user_context, user_u1, user_u2, sim_clock
    ):
        t1 = sim_clock.now()
        async with make_uow() as uow:
            coffee = Expense(name="Coffee", amount=Decimal("4.50"))
            await uow.repository(Expense).insert(coffee)
            await uow.save_changes()

        assert (coffee.created_by, coffee.created_time) == (user_u1, t1)
        assert (coffee.updated_by, coffee.updated_time) == (user_u1, t1)

        sim_clock.advance(timedelta(hours=2))
        t2 = sim_clock.now()
        user_context.user_id = user_u2
        async with make_uow() as uow:
            repo = uow.repository(Expense)
            loaded = await repo.get_by_id(coffee.id)
            loaded.amount = Decimal("5.00")
            await repo.update(loaded)
            await uow.save_changes()

        assert (loaded.created_by, loaded.created_time) == (user_u1, t1)
        assert (loaded.updated_by, loaded.updated_time) == (user_u2, t2)

    @pytest.mark.asyncio
    async def test_updated_time_strictly_increases(self, make_uow, sim_clock):
        async with make_uow() as uow:
            repo = uow.repository(Expense)
            coffee = await repo.insert(Expense(name="Coffee", amount=Decimal("4.50")))
            await uow.save_changes()
            created = coffee.created_time

            previous = coffee.updated_time
            for amount in ("4.60", "4.70", "4.80"):
                sim_clock.advance_ms(1)
                coffee.amount = Decimal(amount)
                await repo.update(coffee)
                await uow.save_changes()
                assert coffee.updated_time > previous
                assert coffee.created_time == created
                previous = coffee.updated_time

    @pytest.mark.asyncio
    async def test_soft_delete_stamps_updated_fields(
        self, make_uow, user_context, user_u1, user_u2, sim_clock
    ):
        async with make_uow() as uow:
            repo = uow.repository(Expense)
            coffee = await repo.insert(Expense(name="Coffee", amount=Decimal("4.50")))
            await uow.save_changes()

            sim_clock.advance(timedelta(minutes=30))
            user_context.user_id = user_u2
            await repo.delete(coffee)
            await uow.save_changes()

        assert coffee.created_by == user_u1
        assert coffee.updated_by == user_u2
        assert coffee.updated_time == sim_clock.now()

    @pytest.mark.asyncio
    async def test_soft_deleted_visible_only_with_include_deleted(self, make_uow):
        async with make_uow() as uow:
            repo = uow.repository(Expense)
            a = await repo.insert(Expense(name="Coffee", amount=Decimal("4.50")))
            b = await repo.insert(Expense(name="Rent", amount=Decimal("1200.00")))
            await uow.save_changes()

            await repo.delete(a, soft=True)
            await uow.save_changes()

        async with make_uow() as uow:
            repo = uow.repository(Expense)
            live = await repo.get_all(include_deleted=False)
            everything = await repo.get_all(include_deleted=True)

        assert [e.id for e in live] == [b.id]
        deleted = {e.id: e for e in everything}[a.id]
        assert deleted.is_deleted is True

    @pytest.mark.asyncio
    async def test_principal_from_context_var(self, make_uow, user_u2):
        async with make_uow(context=ContextVarUserContext()) as uow:
            coffee = await uow.repository(Expense).insert(
                Expense(name="Coffee", amount=Decimal("4.50"))
            )
            with current_user(user_u2):
                await uow.save_changes()
        assert coffee.created_by == user_u2

    @pytest.mark.asyncio
    async def test_explicit_user_id_wins(self, make_uow, user_u2):
        async with make_uow() as uow:
            coffee = await uow.repository(Expense).insert(
                Expense(name="Coffee", amount=Decimal("4.50"))
            )
            await uow.save_changes(user_id=user_u2)
        assert coffee.created_by == user_u2

    @pytest.mark.asyncio
    async def test_unresolved_principal_fails_commit(self, make_uow):
        async with make_uow(context=ContextVarUserContext()) as uow:
            coffee = await uow.repository(Expense).insert(
                Expense(name="Coffee", amount=Decimal("4.50"))
            )
            with pytest.raises(PrincipalUnresolvedError):
                await uow.save_changes()
        assert coffee.created_time is None

        async with make_uow() as uow:
            assert await uow.repository(Expense).get_all() == []


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_exit_without_save_discards_changes(self, make_uow, coffee):
        async with make_uow() as uow:
            await uow.repository(Expense).insert(coffee)

        async with make_uow() as uow:
            assert await uow.repository(Expense).get_all() == []

    @pytest.mark.asyncio
    async def test_exit_on_error_releases_context(self, make_uow, coffee):
        unit = make_uow()
        with pytest.raises(RuntimeError, match="boom"):
            async with unit:
                await unit.repository(Expense).insert(coffee)
                raise RuntimeError("boom")
        assert unit.closed is True

        async with make_uow() as uow:
            assert await uow.repository(Expense).get_all() == []

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self, make_uow):
        unit = make_uow()
        _ = unit.context
        await unit.close()
        await unit.close()
        assert unit.closed is True

    @pytest.mark.asyncio
    async def test_close_without_opening(self, make_uow):
        unit = make_uow()
        await unit.close()
        assert unit.closed is True

    @pytest.mark.asyncio
    async def test_use_after_close_raises(self, make_uow):
        unit = make_uow()
        await unit.close()
        with pytest.raises(UnitOfWorkClosedError):
            unit.repository(Expense)
        with pytest.raises(UnitOfWorkClosedError):
            await unit.save_changes()
        with pytest.raises(UnitOfWorkClosedError):
            await unit.rollback()

    @pytest.mark.asyncio
    async def test_entities_usable_after_close(self, make_uow, coffee):
        async with make_uow() as uow:
            await uow.repository(Expense).insert(coffee)
            await uow.save_changes()

        async with make_uow() as uow:
            loaded = await uow.repository(Expense).get_by_id(coffee.id)
        assert loaded.name == "Coffee"

    @pytest.mark.asyncio
    async def test_rollback_discards_pending(self, make_uow, coffee):
        async with make_uow() as uow:
            await uow.repository(Expense).insert(coffee)
            await uow.rollback()
            assert await uow.save_changes() == 0

    @pytest.mark.asyncio
    async def test_cancelled_commit_keeps_stamps(self, make_uow, coffee, user_u1, monkeypatch):
        async with make_uow() as uow:
            await uow.repository(Expense).insert(coffee)

            async def slow_commit():
                await asyncio.sleep(10)

            monkeypatch.setattr(uow.context.session, "commit", slow_commit)
            with pytest.raises(TimeoutError):
                await uow.save_changes(timeout=0.01)

        assert coffee.created_by == user_u1
        async with make_uow() as uow:
            assert await uow.repository(Expense).get_all() == []

    @pytest.mark.asyncio
    async def test_task_cancellation_propagates(self, make_uow, coffee):
        started = asyncio.Event()

        async with make_uow() as uow:
            await uow.repository(Expense).insert(coffee)

            async def slow_commit():
                started.set()
                await asyncio.sleep(10)

            uow.context.session.commit = slow_commit
            task = asyncio.create_task(uow.save_changes())
            await started.wait()
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task


class TestScopedFactory:
    @pytest.mark.asyncio
    async def test_unit_of_work_uses_module_engine(self, static_context, user_u1, sim_clock):
        from myexpenses.core.config import DatabaseConfig

        await connection.init_engine(
            DatabaseConfig(url="sqlite+aiosqlite://", create_tables=True)
        )
        try:
            async with unit_of_work(static_context, sim_clock) as uow:
                assert isinstance(uow, UnitOfWork)
                coffee = await uow.repository(Expense).insert(
                    Expense(name="Coffee", amount=Decimal("4.50"))
                )
                assert await uow.save_changes() == 1
            assert uow.closed is True
            assert coffee.created_by == user_u1
        finally:
            await connection.dispose()

    @pytest.mark.asyncio
    async def test_unit_of_work_without_engine_raises(self):
        with pytest.raises(RuntimeError, match="init_engine"):
            async with unit_of_work():
                pass
