"""Integration tests for leagues, sessions, enrollment and standings."""

from __future__ import annotations

from datetime import date

import pytest
import pytest_asyncio

from recycleit.db.models import PointCategory, SessionStatus
from recycleit.exceptions import ConflictError, NotFoundError, ValidationError
from recycleit.league.schemas import LeagueSessionRead

MARCH_1 = date(2026, 3, 1)
MARCH_8 = date(2026, 3, 8)
MARCH_15 = date(2026, 3, 15)


@pytest_asyncio.fixture
async def league(services):
    return await services.sessions.create_league("Bronze", tier=1, members_count=10, promoted_count=2)


@pytest_asyncio.fixture
async def users(services):
    return [await services.users.create_user(f"user{i}@example.com") for i in range(3)]


class TestLeagues:
    """Test league configuration rules."""

    @pytest.mark.asyncio
    async def test_duplicate_tier_conflicts(self, services, league):
        with pytest.raises(ConflictError):
            await services.sessions.create_league("Other Bronze", tier=1, members_count=5)

    @pytest.mark.asyncio
    async def test_invalid_configuration(self, services):
        with pytest.raises(ValidationError):
            await services.sessions.create_league("Zero", tier=0, members_count=5)
        with pytest.raises(ValidationError):
            await services.sessions.create_league("Crowded", tier=2, members_count=3, promoted_count=2, relegated_count=2)

    @pytest.mark.asyncio
    async def test_disabled_movement_not_counted(self, services):
        league = await services.sessions.create_league(
            "Top", tier=5, members_count=3, promoted_count=3, relegated_count=1, promotion_enabled=False,
        )
        assert league.tier == 5

    @pytest.mark.asyncio
    async def test_list_by_tier(self, services):
        await services.sessions.create_league("Silver", tier=2, members_count=5)
        await services.sessions.create_league("Bronze", tier=1, members_count=5)
        assert [lg.tier for lg in await services.sessions.list_leagues()] == [1, 2]
        assert await services.sessions.get_league_by_tier(3) is None


class TestSessions:
    """Test session windows."""

    @pytest.mark.asyncio
    async def test_create_open_session(self, services, league):
        session = await services.sessions.create_session(league.id, MARCH_1, MARCH_15)
        data = LeagueSessionRead.model_validate(session)
        assert data.status is SessionStatus.OPEN
        assert data.closed_at is None

    @pytest.mark.asyncio
    async def test_inverted_window_rejected(self, services, league):
        with pytest.raises(ValidationError):
            await services.sessions.create_session(league.id, MARCH_8, MARCH_1)
        with pytest.raises(ValidationError):
            await services.sessions.create_session(league.id, MARCH_8, MARCH_8)

    @pytest.mark.asyncio
    async def test_overlapping_open_session_rejected(self, services, league):
        await services.sessions.create_session(league.id, MARCH_1, MARCH_15)
        with pytest.raises(ConflictError):
            await services.sessions.create_session(league.id, MARCH_8, date(2026, 3, 22))

    @pytest.mark.asyncio
    async def test_adjacent_sessions_allowed(self, services, league):
        await services.sessions.create_session(league.id, MARCH_1, MARCH_8)
        second = await services.sessions.create_session(league.id, MARCH_8, MARCH_15)
        assert second.start_date == MARCH_8
        found = await services.sessions.find_session_covering(league.id, MARCH_8)
        assert found is not None and found.id == second.id

    @pytest.mark.asyncio
    async def test_edit_dates_of_running_session(self, services, league):
        session = await services.sessions.create_session(league.id, MARCH_1, MARCH_8)
        edited = await services.sessions.edit_session_dates(session.id, end_date=MARCH_15)
        assert edited.end_date == MARCH_15

    @pytest.mark.asyncio
    async def test_edit_ended_session_requires_admin(self, services, league, clock):
        session = await services.sessions.create_session(league.id, MARCH_1, MARCH_8)
        clock.set_date(date(2026, 3, 10))
        with pytest.raises(ConflictError):
            await services.sessions.edit_session_dates(session.id, end_date=MARCH_15)
        edited = await services.sessions.edit_session_dates(session.id, end_date=MARCH_15, admin=True)
        assert edited.end_date == MARCH_15

    @pytest.mark.asyncio
    async def test_edit_cannot_invert_window(self, services, league):
        session = await services.sessions.create_session(league.id, MARCH_1, MARCH_8)
        with pytest.raises(ValidationError):
            await services.sessions.edit_session_dates(session.id, start_date=MARCH_15)

    @pytest.mark.asyncio
    async def test_edit_cannot_overlap_member_elsewhere(self, services, league, users):
        silver = await services.sessions.create_league("Silver", tier=2, members_count=10)
        gold = await services.sessions.create_league("Gold", tier=3, members_count=10)
        first = await services.sessions.create_session(league.id, MARCH_1, MARCH_8)
        second = await services.sessions.create_session(silver.id, MARCH_8, MARCH_15)
        await services.sessions.enroll(users[0].id, first.id)
        await services.sessions.enroll(users[0].id, second.id)

        with pytest.raises(ConflictError):
            await services.sessions.edit_session_dates(first.id, end_date=date(2026, 3, 12))
        assert (await services.sessions.get_session(first.id)).end_date == MARCH_8

        # The user still holds one membership per window, so a clash is reported cleanly
        third = await services.sessions.create_session(gold.id, MARCH_1, MARCH_15)
        with pytest.raises(ConflictError):
            await services.sessions.enroll(users[0].id, third.id)

    @pytest.mark.asyncio
    async def test_edit_allowed_when_members_elsewhere_do_not_overlap(self, services, league, users):
        silver = await services.sessions.create_league("Silver", tier=2, members_count=10)
        first = await services.sessions.create_session(league.id, MARCH_1, MARCH_8)
        later = await services.sessions.create_session(silver.id, MARCH_15, date(2026, 3, 22))
        await services.sessions.enroll(users[0].id, first.id)
        await services.sessions.enroll(users[0].id, later.id)

        edited = await services.sessions.edit_session_dates(first.id, end_date=MARCH_15)
        assert edited.end_date == MARCH_15


class TestEnrollment:
    """Test membership rules."""

    @pytest.mark.asyncio
    async def test_enroll_snapshots_baseline(self, services, league, users):
        await services.ledger.increment(users[0].id, PointCategory.RECYCLE, 40)
        session = await services.sessions.create_session(league.id, MARCH_1, MARCH_15)

        membership = await services.sessions.enroll(users[0].id, session.id)
        assert membership.baseline_points == 40

        await services.ledger.increment(users[0].id, PointCategory.REUSE, 15)
        standings = await services.sessions.standings(session.id)
        assert standings[0].points == 15

    @pytest.mark.asyncio
    async def test_enroll_creates_ledger_entry(self, services, league, users):
        session = await services.sessions.create_session(league.id, MARCH_1, MARCH_15)
        membership = await services.sessions.enroll(users[1].id, session.id)
        entry = await services.ledger.get_most_recent_by_user_id(users[1].id)
        assert membership.points_punctuation_id == entry.id
        assert membership.baseline_points == 0

    @pytest.mark.asyncio
    async def test_double_enroll_conflicts(self, services, league, users):
        session = await services.sessions.create_session(league.id, MARCH_1, MARCH_15)
        await services.sessions.enroll(users[0].id, session.id)
        with pytest.raises(ConflictError):
            await services.sessions.enroll(users[0].id, session.id)

    @pytest.mark.asyncio
    async def test_one_active_membership_at_a_time(self, services, league, users):
        silver = await services.sessions.create_league("Silver", tier=2, members_count=10)
        bronze_session = await services.sessions.create_session(league.id, MARCH_1, MARCH_15)
        silver_session = await services.sessions.create_session(silver.id, MARCH_8, date(2026, 3, 22))

        await services.sessions.enroll(users[0].id, bronze_session.id)
        with pytest.raises(ConflictError):
            await services.sessions.enroll(users[0].id, silver_session.id)

    @pytest.mark.asyncio
    async def test_enroll_unknown_user(self, services, league):
        session = await services.sessions.create_session(league.id, MARCH_1, MARCH_15)
        with pytest.raises(NotFoundError):
            await services.sessions.enroll(404, session.id)

    @pytest.mark.asyncio
    async def test_active_session_lookup(self, services, league, users):
        session = await services.sessions.create_session(league.id, MARCH_1, MARCH_15)
        await services.sessions.enroll(users[0].id, session.id)

        active = await services.sessions.get_active_session_for(users[0].id)
        assert active.id == session.id
        by_email = await services.sessions.get_active_session_for_email("USER0@example.com")
        assert by_email.id == session.id
        membership = await services.sessions.get_active_membership_for(users[0].id)
        assert membership.session_id == session.id

        with pytest.raises(NotFoundError):
            await services.sessions.get_active_session_for(users[1].id)

    @pytest.mark.asyncio
    async def test_no_active_session_outside_window(self, services, league, users, clock):
        session = await services.sessions.create_session(league.id, MARCH_1, MARCH_8)
        await services.sessions.enroll(users[0].id, session.id)
        clock.set_date(MARCH_8)
        with pytest.raises(NotFoundError):
            await services.sessions.get_active_session_for(users[0].id)

    @pytest.mark.asyncio
    async def test_sessions_for_user(self, services, league, users):
        session = await services.sessions.create_session(league.id, MARCH_1, MARCH_15)
        await services.sessions.enroll(users[2].id, session.id)
        sessions = await services.sessions.list_sessions_for_user(users[2].id)
        assert [s.id for s in sessions] == [session.id]


class TestStandings:
    """Test session standings."""

    @pytest.mark.asyncio
    async def test_ordered_by_points_then_enrollment(self, services, league, users, clock):
        session = await services.sessions.create_session(league.id, MARCH_1, MARCH_15)
        for user in users:
            await services.sessions.enroll(user.id, session.id)
            clock.advance(minutes=1)

        await services.ledger.increment(users[2].id, PointCategory.RECYCLE, 10)
        await services.ledger.increment(users[1].id, PointCategory.KNOWLEDGE, 10)

        standings = await services.sessions.standings(session.id)
        # users[1] and users[2] tie at 10; users[1] enrolled first
        assert [s.user_id for s in standings] == [users[1].id, users[2].id, users[0].id]
        assert [s.rank for s in standings] == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_session_points_never_negative(self, services, league, users):
        await services.ledger.increment(users[0].id, PointCategory.RECYCLE, 30)
        session = await services.sessions.create_session(league.id, MARCH_1, MARCH_15)
        await services.sessions.enroll(users[0].id, session.id)
        await services.ledger.decrement(users[0].id, PointCategory.RECYCLE, 20)

        standings = await services.sessions.standings(session.id)
        assert standings[0].points == 0
