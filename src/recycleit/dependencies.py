"""Service wiring for one unit of work."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession

from recycleit.clock import Clock, utcnow
from recycleit.config import Settings, get_settings
from recycleit.database import get_engine, get_session as _get_session
from recycleit.goals.tracker import GoalTracker
from recycleit.league.promotion_engine import PromotionEngine
from recycleit.league.session_service import LeagueSessionManager
from recycleit.points.ledger import PointsLedger
from recycleit.redis_client import get_redis as _get_redis
from recycleit.users.service import UserDirectory

get_db = _get_session


@dataclass
class Services:
    """Services sharing one AsyncSession."""

    db: AsyncSession
    users: UserDirectory
    ledger: PointsLedger
    sessions: LeagueSessionManager
    engine: PromotionEngine
    goals: GoalTracker


def build_services(
    db: AsyncSession,
    redis: object | None = None,
    clock: Clock = utcnow,
    settings: Settings | None = None,
) -> Services:
    settings = settings or get_settings()
    users = UserDirectory(db, clock=clock)
    ledger = PointsLedger(db, users, clock=clock, redis=redis)
    sessions = LeagueSessionManager(db, users, ledger, clock=clock)
    return Services(
        db=db,
        users=users,
        ledger=ledger,
        sessions=sessions,
        engine=PromotionEngine(db, sessions, clock=clock, redis=redis),
        goals=GoalTracker(db, ledger, clock=clock, settings=settings, redis=redis),
    )


@asynccontextmanager
async def unit_of_work(clock: Clock = utcnow) -> AsyncGenerator[Services, None]:
    """Open a session, yield wired services, commit on success and roll back on error."""
    try:
        redis: object | None = _get_redis()
    except RuntimeError:
        redis = None

    async with AsyncSession(get_engine(), expire_on_commit=False) as db:
        services = build_services(db, redis=redis, clock=clock)
        try:
            yield services
        except Exception:
            await db.rollback()
            raise
        await db.commit()
