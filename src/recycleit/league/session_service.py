"""League session manager: leagues, sessions, enrollment and standings."""

from __future__ import annotations

import logging
from datetime import date
from typing import TYPE_CHECKING

from sqlalchemy import ColumnElement, select

from recycleit.clock import Clock, today, utcnow
from recycleit.db.models import (
    League,
    LeagueSession,
    PointsPunctuation,
    SessionStatus,
    UserPunctuation,
)
from recycleit.exceptions import ConflictError, NotFoundError, ValidationError
from recycleit.league.ranking import effective_counts, rank_members
from recycleit.league.schemas import StandingEntry

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from recycleit.points.ledger import PointsLedger
    from recycleit.users.service import UserDirectory

logger = logging.getLogger(__name__)


def validate_window(start_date: date, end_date: date) -> None:
    if start_date >= end_date:
        msg = f"Session start {start_date} must be before end {end_date}"
        raise ValidationError(msg)


class LeagueSessionManager:
    """Time-bounded league membership backed by the points ledger."""

    def __init__(
        self,
        db: AsyncSession,
        users: UserDirectory,
        ledger: PointsLedger,
        clock: Clock = utcnow,
    ) -> None:
        self.db = db
        self.users = users
        self.ledger = ledger
        self.clock = clock

    # ------------------------------------------------------------------
    # Leagues
    # ------------------------------------------------------------------

    async def create_league(
        self,
        name: str,
        tier: int,
        members_count: int,
        promoted_count: int = 0,
        relegated_count: int = 0,
        promotion_enabled: bool = True,
        relegation_enabled: bool = True,
    ) -> League:
        """Create a league tier. Tier numbers are unique; higher is more advanced."""
        if tier < 1:
            raise ValidationError(f"Tier must be positive, got {tier}")
        if min(members_count, promoted_count, relegated_count) < 0:
            raise ValidationError("League counts cannot be negative")

        league = League(
            name=name,
            tier=tier,
            members_count=members_count,
            promoted_count=promoted_count,
            relegated_count=relegated_count,
            promotion_enabled=promotion_enabled,
            relegation_enabled=relegation_enabled,
            created_at=self.clock(),
        )
        promoted, relegated = effective_counts(league)
        if promoted + relegated > members_count:
            raise ValidationError(
                f"promoted ({promoted}) + relegated ({relegated}) exceeds members_count ({members_count})"
            )
        if await self.get_league_by_tier(tier) is not None:
            raise ConflictError(f"A league with tier {tier} already exists")

        self.db.add(league)
        await self.db.flush()
        logger.info("League %s created at tier %d", name, tier)
        return league

    async def get_league(self, league_id: int) -> League:
        result = await self.db.execute(select(League).where(League.id == league_id))
        league = result.scalar_one_or_none()
        if league is None:
            raise NotFoundError("League", league_id)
        return league

    async def get_league_by_tier(self, tier: int) -> League | None:
        """League at ``tier`` or None."""
        result = await self.db.execute(select(League).where(League.tier == tier))
        return result.scalar_one_or_none()

    async def list_leagues(self) -> list[League]:
        result = await self.db.execute(select(League).order_by(League.tier))
        return list(result.scalars().all())

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    async def create_session(self, league_id: int, start_date: date, end_date: date) -> LeagueSession:
        """Open a session. The league may not have another open session overlapping the window."""
        validate_window(start_date, end_date)
        league = await self.get_league(league_id)

        overlapping = await self.db.execute(
            select(LeagueSession.id).where(
                LeagueSession.league_id == league.id,
                LeagueSession.status == SessionStatus.OPEN,
                LeagueSession.start_date < end_date,
                LeagueSession.end_date > start_date,
            )
        )
        if overlapping.first() is not None:
            raise ConflictError(
                f"League tier {league.tier} already has an open session overlapping {start_date}..{end_date}"
            )

        session = LeagueSession(
            league_id=league.id,
            start_date=start_date,
            end_date=end_date,
            status=SessionStatus.OPEN,
            created_at=self.clock(),
        )
        self.db.add(session)
        await self.db.flush()
        logger.info("Session %d opened for tier %d (%s..%s)", session.id, league.tier, start_date, end_date)
        return session

    async def get_session(self, session_id: int) -> LeagueSession:
        result = await self.db.execute(select(LeagueSession).where(LeagueSession.id == session_id))
        session = result.scalar_one_or_none()
        if session is None:
            raise NotFoundError("LeagueSession", session_id)
        return session

    async def find_session_covering(self, league_id: int, day: date) -> LeagueSession | None:
        """Open session of a league whose window contains ``day``."""
        result = await self.db.execute(
            select(LeagueSession)
            .where(
                LeagueSession.league_id == league_id,
                LeagueSession.status == SessionStatus.OPEN,
                LeagueSession.start_date <= day,
                LeagueSession.end_date > day,
            )
            .order_by(LeagueSession.start_date.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def list_sessions(self, league_id: int) -> list[LeagueSession]:
        result = await self.db.execute(
            select(LeagueSession)
            .where(LeagueSession.league_id == league_id)
            .order_by(LeagueSession.end_date.desc())
        )
        return list(result.scalars().all())

    async def list_sessions_for_user(self, user_id: int) -> list[LeagueSession]:
        """Every session the user has been enrolled in, latest first."""
        await self.users.ensure_exists(user_id)
        result = await self.db.execute(
            select(LeagueSession)
            .join(UserPunctuation, UserPunctuation.session_id == LeagueSession.id)
            .where(UserPunctuation.user_id == user_id)
            .order_by(LeagueSession.end_date.desc())
        )
        return list(result.scalars().all())

    async def edit_session_dates(
        self,
        session_id: int,
        start_date: date | None = None,
        end_date: date | None = None,
        admin: bool = False,
    ) -> LeagueSession:
        """Correct a session window.

        Closed sessions never change. Once end_date has passed only an
        administrative correction (``admin=True``) is accepted.
        """
        session = await self.get_session(session_id)
        if session.status is SessionStatus.CLOSED:
            raise ConflictError(f"Session {session_id} is closed")
        if session.end_date <= today(self.clock) and not admin:
            raise ConflictError(f"Session {session_id} has ended; administrative correction required")

        new_start = start_date or session.start_date
        new_end = end_date or session.end_date
        validate_window(new_start, new_end)

        overlapping = await self.db.execute(
            select(LeagueSession.id).where(
                LeagueSession.league_id == session.league_id,
                LeagueSession.id != session.id,
                LeagueSession.status == SessionStatus.OPEN,
                LeagueSession.start_date < new_end,
                LeagueSession.end_date > new_start,
            )
        )
        if overlapping.first() is not None:
            raise ConflictError(f"New window {new_start}..{new_end} overlaps another open session")

        members = select(UserPunctuation.user_id).where(UserPunctuation.session_id == session.id)
        clash = await self._open_membership_clash(
            UserPunctuation.user_id.in_(members), session.id, new_start, new_end,
        )
        if clash is not None:
            raise ConflictError(
                f"New window {new_start}..{new_end} overlaps session {clash} of an enrolled member"
            )

        session.start_date = new_start
        session.end_date = new_end
        await self.db.flush()
        return session

    # ------------------------------------------------------------------
    # Membership
    # ------------------------------------------------------------------

    async def get_membership(self, user_id: int, session_id: int) -> UserPunctuation | None:
        result = await self.db.execute(
            select(UserPunctuation).where(
                UserPunctuation.user_id == user_id,
                UserPunctuation.session_id == session_id,
            )
        )
        return result.scalar_one_or_none()

    async def list_memberships(self, session_id: int) -> list[UserPunctuation]:
        result = await self.db.execute(
            select(UserPunctuation)
            .where(UserPunctuation.session_id == session_id)
            .order_by(UserPunctuation.id)
        )
        return list(result.scalars().all())

    async def enroll(self, user_id: int, session_id: int) -> UserPunctuation:
        """Add a user to a session, snapshotting their ledger total as the baseline.

        Raises ConflictError when the session is closed, the user is already
        a member, or the user holds a membership in another open session
        whose window overlaps this one.
        """
        await self.users.ensure_exists(user_id)
        session = await self.get_session(session_id)
        if session.status is SessionStatus.CLOSED:
            raise ConflictError(f"Session {session_id} is closed")
        if await self.get_membership(user_id, session_id) is not None:
            raise ConflictError(f"User {user_id} is already enrolled in session {session_id}")

        other = await self._open_membership_clash(
            UserPunctuation.user_id == user_id, session.id, session.start_date, session.end_date,
        )
        if other is not None:
            raise ConflictError(f"User {user_id} already has an active membership in session {other}")

        ledger = await self.ledger.get_or_create(user_id)
        membership = UserPunctuation(
            user_id=user_id,
            session_id=session.id,
            points_punctuation_id=ledger.id,
            baseline_points=ledger.total_points,
            enrolled_at=self.clock(),
        )
        self.db.add(membership)
        await self.db.flush()
        logger.debug("User %d enrolled in session %d (baseline %d)", user_id, session.id, ledger.total_points)
        return membership

    async def _open_membership_clash(
        self,
        member_filter: ColumnElement[bool],
        session_id: int,
        start_date: date,
        end_date: date,
    ) -> int | None:
        """Id of another open session overlapping the window with a matching member, if any."""
        result = await self.db.execute(
            select(LeagueSession.id)
            .join(UserPunctuation, UserPunctuation.session_id == LeagueSession.id)
            .where(
                member_filter,
                LeagueSession.id != session_id,
                LeagueSession.status == SessionStatus.OPEN,
                LeagueSession.start_date < end_date,
                LeagueSession.end_date > start_date,
            )
            .order_by(LeagueSession.start_date, LeagueSession.id)
        )
        return result.scalars().first()

    async def get_active_session_for(self, user_id: int) -> LeagueSession:
        """The open session containing today that the user belongs to."""
        await self.users.ensure_exists(user_id)
        day = today(self.clock)
        result = await self.db.execute(
            select(LeagueSession)
            .join(UserPunctuation, UserPunctuation.session_id == LeagueSession.id)
            .where(
                UserPunctuation.user_id == user_id,
                LeagueSession.status == SessionStatus.OPEN,
                LeagueSession.start_date <= day,
                LeagueSession.end_date > day,
            )
            .order_by(LeagueSession.start_date.desc())
            .limit(1)
        )
        session = result.scalar_one_or_none()
        if session is None:
            raise NotFoundError("Active league session for user", user_id)
        return session

    async def get_active_session_for_email(self, email: str) -> LeagueSession:
        user = await self.users.get_by_email(email)
        return await self.get_active_session_for(user.id)

    async def get_active_membership_for(self, user_id: int) -> UserPunctuation:
        session = await self.get_active_session_for(user_id)
        membership = await self.get_membership(user_id, session.id)
        if membership is None:
            raise NotFoundError("Active league membership for user", user_id)
        return membership

    # ------------------------------------------------------------------
    # Standings
    # ------------------------------------------------------------------

    async def standings(self, session_id: int) -> list[StandingEntry]:
        """Members ordered by session points, ties by earliest enrollment.

        Open sessions read the live ledger total minus the enrollment
        baseline; closed sessions use the frozen final points.
        """
        session = await self.get_session(session_id)
        result = await self.db.execute(
            select(UserPunctuation, PointsPunctuation.total_points)
            .join(PointsPunctuation, PointsPunctuation.id == UserPunctuation.points_punctuation_id)
            .where(UserPunctuation.session_id == session.id)
        )

        entries = []
        for membership, ledger_total in result.all():
            if session.status is SessionStatus.CLOSED and membership.final_points is not None:
                points = membership.final_points
            else:
                points = max(0, ledger_total - membership.baseline_points)
            entries.append(StandingEntry(
                membership_id=membership.id,
                user_id=membership.user_id,
                points=points,
                enrolled_at=membership.enrolled_at,
            ))
        return rank_members(entries)
