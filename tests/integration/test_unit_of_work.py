"""Integration tests for service wiring and transaction boundaries."""

from __future__ import annotations

import pytest

from recycleit.db.models import PointCategory
from recycleit.dependencies import unit_of_work
from recycleit.exceptions import NotFoundError


class TestUnitOfWork:
    """Test commit and rollback of a unit of work."""

    @pytest.mark.asyncio
    async def test_commits_on_success(self, db_session, clock):
        async with unit_of_work(clock=clock) as uow:
            user = await uow.users.create_user("uow@example.com")
            await uow.ledger.increment(user.id, PointCategory.RECYCLE, 3)

        async with unit_of_work(clock=clock) as uow:
            entry = await uow.ledger.get_most_recent_by_email("uow@example.com")
            assert entry.total_points == 3

    @pytest.mark.asyncio
    async def test_rolls_back_on_error(self, db_session, clock):
        with pytest.raises(RuntimeError):
            async with unit_of_work(clock=clock) as uow:
                await uow.users.create_user("gone@example.com")
                raise RuntimeError("boom")

        async with unit_of_work(clock=clock) as uow:
            with pytest.raises(NotFoundError):
                await uow.users.get_by_email("gone@example.com")

    @pytest.mark.asyncio
    async def test_services_share_one_session(self, db_session, clock):
        async with unit_of_work(clock=clock) as uow:
            assert uow.ledger.db is uow.db
            assert uow.goals.ledger is uow.ledger
            assert uow.engine.sessions is uow.sessions
