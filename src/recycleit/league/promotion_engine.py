"""Promotion/relegation engine: closes a league session and reseats its members.

Closure of one session is all-or-nothing: the session row is locked and every
write happens inside a savepoint, so an error undoes the closure and leaves
pending work already on the caller's session untouched.
A second close of the same session returns the stored result.
"""

from __future__ import annotations

from datetime import date
from typing import TYPE_CHECKING

import structlog
from sqlalchemy import select

from recycleit.clock import Clock, today, utcnow
from recycleit.db.models import (
    League,
    LeagueSession,
    MembershipOutcome,
    SessionStatus,
    UserPunctuation,
)
from recycleit.events import CHANNEL_LEAGUE_MOVE, CHANNEL_SESSION_CLOSED, publish_event
from recycleit.exceptions import ConfigurationError, NotFoundError, ValidationError
from recycleit.league.ranking import assign_outcomes, check_capacity, effective_counts
from recycleit.league.schemas import MemberOutcome, SessionClosureReport

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from recycleit.league.session_service import LeagueSessionManager

logger = structlog.get_logger()


class PromotionEngine:
    """Entry point for the external scheduler: ``close_session(session_id)``."""

    def __init__(
        self,
        db: AsyncSession,
        sessions: LeagueSessionManager,
        clock: Clock = utcnow,
        redis: object | None = None,
    ) -> None:
        self.db = db
        self.sessions = sessions
        self.clock = clock
        self.redis = redis

    async def close_session(self, session_id: int) -> SessionClosureReport:
        """Rank, promote/relegate, re-enroll, and close a session.

        Commits on success. On error only the closure savepoint is rolled
        back before the exception propagates. Calling it again on a closed
        session is a no-op that returns the stored outcome with
        ``already_closed=True``.
        """
        async with self.db.begin_nested():
            report = await self._close(session_id)
        await self.db.commit()

        if report.already_closed:
            logger.info("session_already_closed", session_id=session_id)
            return report

        logger.info(
            "session_closed",
            session_id=report.session_id,
            tier=report.tier,
            members=len(report.members),
            promoted=len(report.promoted),
            relegated=len(report.relegated),
        )
        await publish_event(self.redis, CHANNEL_SESSION_CLOSED, {
            "session_id": report.session_id,
            "league_id": report.league_id,
            "tier": report.tier,
            "promoted": report.promoted,
            "relegated": report.relegated,
        })
        for member in report.members:
            if member.outcome is not MembershipOutcome.STAYED:
                await publish_event(self.redis, CHANNEL_LEAGUE_MOVE, {
                    "user_id": member.user_id,
                    "outcome": member.outcome.value,
                    "from_tier": member.from_tier,
                    "to_tier": member.to_tier,
                    "next_session_id": member.next_session_id,
                })
        return report

    async def close_due_sessions(self) -> list[SessionClosureReport]:
        """Close every open session whose end date has passed, lowest tier first.

        A session that fails to close is logged and skipped; the rest still close.
        """
        day = today(self.clock)
        result = await self.db.execute(
            select(LeagueSession.id)
            .join(League, League.id == LeagueSession.league_id)
            .where(
                LeagueSession.status == SessionStatus.OPEN,
                LeagueSession.end_date <= day,
            )
            .order_by(LeagueSession.end_date, League.tier, LeagueSession.id)
        )
        due = list(result.scalars().all())

        reports = []
        for session_id in due:
            try:
                reports.append(await self.close_session(session_id))
            except Exception:
                logger.exception("session_close_failed", session_id=session_id)
        return reports

    # ------------------------------------------------------------------

    async def _lock_session(self, session_id: int) -> LeagueSession:
        result = await self.db.execute(
            select(LeagueSession)
            .where(LeagueSession.id == session_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        session = result.scalar_one_or_none()
        if session is None:
            raise NotFoundError("LeagueSession", session_id)
        return session

    async def _close(self, session_id: int) -> SessionClosureReport:
        session = await self._lock_session(session_id)
        league = await self.sessions.get_league(session.league_id)

        if session.status is SessionStatus.CLOSED:
            return await self._stored_report(session, league)

        if today(self.clock) < session.end_date:
            raise ValidationError(f"Session {session.id} runs until {session.end_date}")

        standings = await self.sessions.standings(session.id)
        check_capacity(league, len(standings))

        promoted, relegated = effective_counts(league)
        upper = await self.sessions.get_league_by_tier(league.tier + 1)
        lower = await self.sessions.get_league_by_tier(league.tier - 1) if league.tier > 1 else None
        outcomes = assign_outcomes(
            len(standings),
            promoted if upper is not None else 0,
            relegated if lower is not None else 0,
        )
        targets = {
            MembershipOutcome.PROMOTED: upper,
            MembershipOutcome.RELEGATED: lower,
            MembershipOutcome.STAYED: league,
        }

        # Close first so the source session no longer counts as an open membership
        now = self.clock()
        session.status = SessionStatus.CLOSED
        session.closed_at = now
        await self.db.flush()

        memberships = {m.id: m for m in await self.sessions.list_memberships(session.id)}
        next_sessions: dict[int, LeagueSession] = {}
        members = []
        for entry, outcome in zip(standings, outcomes):
            target = targets[outcome]
            if target is None:
                raise ConfigurationError(f"No tier to move {outcome.value} members of tier {league.tier}")
            next_session = next_sessions.get(target.id)
            if next_session is None:
                next_session = await self._next_session_for(target, session)
                next_sessions[target.id] = next_session

            if await self.sessions.get_membership(entry.user_id, next_session.id) is None:
                await self.sessions.enroll(entry.user_id, next_session.id)

            membership = memberships[entry.membership_id]
            membership.final_points = entry.points
            membership.final_rank = entry.rank
            membership.outcome = outcome
            membership.next_session_id = next_session.id

            members.append(MemberOutcome(
                user_id=entry.user_id,
                rank=entry.rank,
                points=entry.points,
                outcome=outcome,
                from_tier=league.tier,
                to_tier=target.tier,
                next_session_id=next_session.id,
            ))

        await self.db.flush()
        return SessionClosureReport(
            session_id=session.id,
            league_id=league.id,
            tier=league.tier,
            closed_at=now,
            members=members,
        )

    async def _next_session_for(self, league: League, previous: LeagueSession) -> LeagueSession:
        """Open session of ``league`` covering the period after ``previous``, created if missing."""
        next_start: date = previous.end_date
        existing = await self.sessions.find_session_covering(league.id, next_start)
        if existing is not None:
            return existing
        duration = previous.end_date - previous.start_date
        return await self.sessions.create_session(league.id, next_start, next_start + duration)

    async def _stored_report(self, session: LeagueSession, league: League) -> SessionClosureReport:
        result = await self.db.execute(
            select(UserPunctuation, League.tier)
            .outerjoin(LeagueSession, LeagueSession.id == UserPunctuation.next_session_id)
            .outerjoin(League, League.id == LeagueSession.league_id)
            .where(UserPunctuation.session_id == session.id)
            .order_by(UserPunctuation.final_rank, UserPunctuation.id)
        )
        members = [
            MemberOutcome(
                user_id=membership.user_id,
                rank=membership.final_rank or 0,
                points=membership.final_points or 0,
                outcome=membership.outcome or MembershipOutcome.STAYED,
                from_tier=league.tier,
                to_tier=next_tier if next_tier is not None else league.tier,
                next_session_id=membership.next_session_id,
            )
            for membership, next_tier in result.all()
        ]
        return SessionClosureReport(
            session_id=session.id,
            league_id=league.id,
            tier=league.tier,
            already_closed=True,
            closed_at=session.closed_at,
            members=members,
        )
