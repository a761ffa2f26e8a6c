"""Integration tests for the points ledger: atomic mutations and lookups."""

from __future__ import annotations

import json

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession

from recycleit.database import get_engine
from recycleit.db.models import PointCategory
from recycleit.dependencies import build_services
from recycleit.events import CHANNEL_POINTS_UPDATED
from recycleit.exceptions import NotFoundError, ValidationError
from recycleit.points.schemas import PointsRead
from tests.conftest import published


def _category_sum(entry) -> int:
    return entry.recycle_points + entry.reuse_points + entry.reduce_points + entry.knowledge_points


@pytest_asyncio.fixture
async def user(services):
    return await services.users.create_user("Ana@Example.com", display_name="Ana")


class TestLedgerMutations:
    """Test increment, decrement and edit."""

    @pytest.mark.asyncio
    async def test_increment_then_floor_scenario(self, services, user):
        ledger = services.ledger
        await ledger.edit(user.id, PointCategory.RECYCLE, 50)

        entry = await ledger.increment(user.id, "recycle", 25)
        assert entry.recycle_points == 75
        assert entry.total_points == 75

        entry = await ledger.decrement(user.id, PointCategory.RECYCLE, 100)
        assert entry.recycle_points == 0
        assert entry.total_points == 0

    @pytest.mark.asyncio
    async def test_total_tracks_every_category(self, services, user):
        ledger = services.ledger
        await ledger.increment(user.id, PointCategory.RECYCLE, 5)
        await ledger.increment(user.id, PointCategory.REUSE, 7)
        await ledger.increment(user.id, PointCategory.REDUCE, 11)
        entry = await ledger.increment(user.id, PointCategory.KNOWLEDGE, 13)
        assert entry.total_points == 36 == _category_sum(entry)

        entry = await ledger.decrement(user.id, PointCategory.REUSE, 3)
        assert entry.reuse_points == 4
        assert entry.total_points == 33 == _category_sum(entry)

        entry = await ledger.edit(user.id, PointCategory.REDUCE, 0)
        assert entry.total_points == 22 == _category_sum(entry)

    @pytest.mark.asyncio
    async def test_edit_negative_rejected_not_clamped(self, services, user):
        await services.ledger.increment(user.id, PointCategory.REUSE, 9)
        with pytest.raises(ValidationError):
            await services.ledger.edit(user.id, PointCategory.REUSE, -1)
        entry = await services.ledger.get_most_recent_by_user_id(user.id)
        assert entry.reuse_points == 9

    @pytest.mark.asyncio
    async def test_negative_amounts_rejected(self, services, user):
        with pytest.raises(ValidationError):
            await services.ledger.increment(user.id, PointCategory.RECYCLE, -5)
        with pytest.raises(ValidationError):
            await services.ledger.decrement(user.id, PointCategory.RECYCLE, -5)

    @pytest.mark.asyncio
    async def test_unknown_category_rejected(self, services, user):
        with pytest.raises(ValidationError):
            await services.ledger.increment(user.id, "compost", 1)

    @pytest.mark.asyncio
    async def test_mutations_stamp_last_updated(self, services, user, clock):
        entry = await services.ledger.increment(user.id, PointCategory.RECYCLE, 1)
        first = entry.last_updated
        clock.advance(minutes=5)
        entry = await services.ledger.increment(user.id, PointCategory.RECYCLE, 1)
        assert entry.last_updated > first
        assert entry.last_updated == clock()

    @pytest.mark.asyncio
    async def test_mutation_publishes_event(self, services, user, redis_mock):
        await services.ledger.increment(user.id, PointCategory.KNOWLEDGE, 4)
        payloads = [json.loads(p) for p in published(redis_mock, CHANNEL_POINTS_UPDATED)]
        assert payloads[-1]["category"] == "knowledge"
        assert payloads[-1]["total_points"] == 4

    @pytest.mark.asyncio
    async def test_redis_failure_does_not_fail_mutation(self, services, user, redis_mock):
        redis_mock.publish.side_effect = ConnectionError("redis down")
        entry = await services.ledger.increment(user.id, PointCategory.RECYCLE, 3)
        assert entry.total_points == 3


class TestLedgerLookup:
    """Test lookup by id and email."""

    @pytest.mark.asyncio
    async def test_by_email_is_case_insensitive(self, services, user):
        await services.ledger.increment_by_email("  ana@EXAMPLE.com ", PointCategory.REUSE, 3)
        entry = await services.ledger.get_most_recent_by_email("ana@example.com")
        assert entry.user_id == user.id
        assert entry.reuse_points == 3

    @pytest.mark.asyncio
    async def test_email_variants(self, services, user):
        await services.ledger.edit_by_email("ana@example.com", PointCategory.RECYCLE, 10)
        entry = await services.ledger.decrement_by_email("ana@example.com", PointCategory.RECYCLE, 4)
        assert entry.recycle_points == 6

    @pytest.mark.asyncio
    async def test_unknown_email_not_found(self, services):
        with pytest.raises(NotFoundError):
            await services.ledger.increment_by_email("ghost@example.com", PointCategory.RECYCLE, 1)

    @pytest.mark.asyncio
    async def test_unknown_user_not_found(self, services):
        with pytest.raises(NotFoundError):
            await services.ledger.increment(999, PointCategory.RECYCLE, 1)

    @pytest.mark.asyncio
    async def test_no_entry_yet(self, services, user):
        with pytest.raises(NotFoundError):
            await services.ledger.get_most_recent_by_user_id(user.id)

    @pytest.mark.asyncio
    async def test_most_recent_entry_wins(self, services, user, clock):
        older = await services.ledger.create(user.id)
        clock.advance(hours=1)
        newer = await services.ledger.create(user.id)

        entry = await services.ledger.increment(user.id, PointCategory.RECYCLE, 2)
        assert entry.id == newer.id
        assert [e.id for e in await services.ledger.list_by_user_id(user.id)] == [newer.id, older.id]

    @pytest.mark.asyncio
    async def test_delete(self, services, user):
        entry = await services.ledger.create(user.id)
        await services.ledger.delete(entry.id)
        with pytest.raises(NotFoundError):
            await services.ledger.get_by_id(entry.id)

    @pytest.mark.asyncio
    async def test_read_model(self, services, user):
        entry = await services.ledger.increment(user.id, PointCategory.REDUCE, 8)
        data = PointsRead.model_validate(entry)
        assert data.reduce_points == 8
        assert data.total_points == 8


class TestConcurrentIncrements:
    """Test that increments from separate sessions never overwrite each other."""

    @pytest.mark.asyncio
    async def test_stale_sessions_do_not_lose_increments(self, services, user, clock, settings):
        await services.ledger.create(user.id)
        await services.db.commit()

        writers = [AsyncSession(get_engine(), expire_on_commit=False) for _ in range(5)]
        try:
            ledgers = [build_services(db, clock=clock, settings=settings).ledger for db in writers]
            # Every session loads the entry before any of them writes
            for ledger in ledgers:
                assert (await ledger.get_or_create(user.id)).recycle_points == 0
            for amount, (ledger, db) in enumerate(zip(ledgers, writers), start=1):
                await ledger.increment(user.id, PointCategory.RECYCLE, amount)
                await ledger.increment(user.id, PointCategory.KNOWLEDGE, 2)
                await db.commit()
        finally:
            for db in writers:
                await db.close()

        services.db.expire_all()
        entry = await services.ledger.get_most_recent_by_user_id(user.id)
        assert entry.recycle_points == 1 + 2 + 3 + 4 + 5
        assert entry.knowledge_points == 10
        assert entry.total_points == 25 == _category_sum(entry)
        assert len(await services.ledger.list_by_user_id(user.id)) == 1
