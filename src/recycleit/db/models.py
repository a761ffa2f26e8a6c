"""ORM models for users, points, leagues and goals."""

from __future__ import annotations

import enum
from datetime import date, datetime

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    Date,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from recycleit.db.base import Base, BigIntPK, UTCDateTime, enum_column


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class PointCategory(str, enum.Enum):
    RECYCLE = "recycle"
    REUSE = "reuse"
    REDUCE = "reduce"
    KNOWLEDGE = "knowledge"


class SessionStatus(str, enum.Enum):
    OPEN = "open"
    CLOSED = "closed"


class MembershipOutcome(str, enum.Enum):
    PROMOTED = "promoted"
    RELEGATED = "relegated"
    STAYED = "stayed"


class GoalDifficulty(str, enum.Enum):
    EASY = "EASY"
    NORMAL = "NORMAL"
    DIFFICULT = "DIFFICULT"


class GoalFrequency(str, enum.Enum):
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"


class GoalStatus(str, enum.Enum):
    ACTUAL = "ACTUAL"
    NEXT = "NEXT"
    INACTIVE = "INACTIVE"


class Material(str, enum.Enum):
    PLASTIC = "plastic"
    GLASS = "glass"
    PAPER = "paper"
    METAL = "metal"
    TEXTILE = "textile"


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class User(Base):
    """Directory record; credentials live outside this service."""

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(String(320), unique=True, nullable=False)
    display_name: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)


# ---------------------------------------------------------------------------
# Points ledger
# ---------------------------------------------------------------------------


class PointsPunctuation(Base):
    """Per-user point accumulators. total_points is kept equal to the category sum."""

    __tablename__ = "points_punctuations"
    __table_args__ = (
        CheckConstraint("recycle_points >= 0", name="recycle_non_negative"),
        CheckConstraint("reuse_points >= 0", name="reuse_non_negative"),
        CheckConstraint("reduce_points >= 0", name="reduce_non_negative"),
        CheckConstraint("knowledge_points >= 0", name="knowledge_non_negative"),
        Index("ix_points_punctuations_user_recent", "user_id", "last_updated"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    recycle_points: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0, server_default="0")
    reuse_points: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0, server_default="0")
    reduce_points: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0, server_default="0")
    knowledge_points: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0, server_default="0")
    total_points: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0, server_default="0")
    last_updated: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)


# ---------------------------------------------------------------------------
# Leagues
# ---------------------------------------------------------------------------


class League(Base):
    """League tier. Higher tier number is the more advanced league."""

    __tablename__ = "leagues"
    __table_args__ = (
        CheckConstraint("tier > 0", name="tier_positive"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    tier: Mapped[int] = mapped_column(Integer, unique=True, nullable=False)
    members_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    promoted_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    relegated_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    promotion_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    relegation_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)


class LeagueSession(Base):
    """One season of a league over the half-open window [start_date, end_date)."""

    __tablename__ = "league_sessions"
    __table_args__ = (
        CheckConstraint("start_date < end_date", name="window_ordered"),
        Index("ix_league_sessions_league_status", "league_id", "status"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    league_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("leagues.id", ondelete="CASCADE"), nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[SessionStatus] = mapped_column(
        enum_column(SessionStatus), nullable=False, default=SessionStatus.OPEN,
    )
    closed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)


class UserPunctuation(Base):
    """A user's standing inside one league session."""

    __tablename__ = "user_punctuations"
    __table_args__ = (
        UniqueConstraint("user_id", "session_id", name="user_punctuations_user_session_key"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    session_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("league_sessions.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    points_punctuation_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("points_punctuations.id", ondelete="CASCADE"), nullable=False,
    )
    baseline_points: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    enrolled_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)

    # Frozen when the session closes
    final_points: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    final_rank: Mapped[int | None] = mapped_column(Integer, nullable=True)
    outcome: Mapped[MembershipOutcome | None] = mapped_column(enum_column(MembershipOutcome), nullable=True)
    next_session_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("league_sessions.id", ondelete="SET NULL"), nullable=True,
    )


# ---------------------------------------------------------------------------
# Goals
# ---------------------------------------------------------------------------


class Goal(Base):
    """Recurring user goal. Single table, discriminated by ``kind``."""

    __tablename__ = "goals"
    __table_args__ = (
        CheckConstraint("progress >= 0 AND progress <= 100", name="progress_range"),
        CheckConstraint("multiplier >= 0", name="multiplier_non_negative"),
        Index("ix_goals_user_status", "user_id", "status"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    kind: Mapped[str] = mapped_column(String(16), nullable=False)
    progress: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    difficulty: Mapped[GoalDifficulty] = mapped_column(enum_column(GoalDifficulty), nullable=False)
    frequency: Mapped[GoalFrequency] = mapped_column(enum_column(GoalFrequency), nullable=False)
    next_check: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[GoalStatus] = mapped_column(enum_column(GoalStatus), nullable=False)
    completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    multiplier: Mapped[float] = mapped_column(Float, nullable=False, default=1.0)
    previous_goal_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("goals.id", ondelete="SET NULL"), nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)

    __mapper_args__ = {"polymorphic_on": "kind"}  # noqa: RUF012


class RecycleGoal(Goal):
    """Goal advanced by finishing recycling projects."""

    finished_projects: Mapped[int | None] = mapped_column(Integer, nullable=True, default=0)

    __mapper_args__ = {"polymorphic_identity": "recycle", "polymorphic_load": "inline"}  # noqa: RUF012


class ReduceGoal(Goal):
    """Goal with per-material reduction targets and skip days."""

    skip_days_left: Mapped[int | None] = mapped_column(Integer, nullable=True, default=0)
    skip_days_total: Mapped[int | None] = mapped_column(Integer, nullable=True, default=0)

    __mapper_args__ = {"polymorphic_identity": "reduce", "polymorphic_load": "inline"}  # noqa: RUF012


class ReduceItem(Base):
    """Per-material target of a reduce goal."""

    __tablename__ = "reduce_items"
    __table_args__ = (
        UniqueConstraint("goal_id", "material", name="reduce_items_goal_material_key"),
        CheckConstraint("target_quantity > 0", name="target_positive"),
        CheckConstraint("actual_quantity >= 0", name="actual_non_negative"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    goal_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("goals.id", ondelete="CASCADE"), nullable=False)
    material: Mapped[Material] = mapped_column(enum_column(Material), nullable=False)
    target_quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    actual_quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class FinishedProject(Base):
    """A recycling project finished by a user; credited at most once."""

    __tablename__ = "finished_projects"
    __table_args__ = (
        UniqueConstraint("user_id", "project_id", name="finished_projects_user_project_key"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    project_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    goal_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("goals.id", ondelete="SET NULL"), nullable=True,
    )
    points_awarded: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    finished_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
