"""Pydantic result models for league sessions and closures."""

from __future__ import annotations

from datetime import date, datetime

from pydantic import BaseModel, ConfigDict

from recycleit.db.models import MembershipOutcome, SessionStatus


class LeagueSessionRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    league_id: int
    start_date: date
    end_date: date
    status: SessionStatus
    closed_at: datetime | None = None


class StandingEntry(BaseModel):
    """One row of a session table. ``rank`` is 1-indexed."""

    membership_id: int
    user_id: int
    points: int
    enrolled_at: datetime
    rank: int = 0


class MemberOutcome(BaseModel):
    user_id: int
    rank: int
    points: int
    outcome: MembershipOutcome
    from_tier: int
    to_tier: int
    next_session_id: int | None


class SessionClosureReport(BaseModel):
    session_id: int
    league_id: int
    tier: int
    already_closed: bool = False
    closed_at: datetime | None = None
    members: list[MemberOutcome] = []

    @property
    def promoted(self) -> list[int]:
        return [m.user_id for m in self.members if m.outcome is MembershipOutcome.PROMOTED]

    @property
    def relegated(self) -> list[int]:
        return [m.user_id for m in self.members if m.outcome is MembershipOutcome.RELEGATED]
