"""Recycling core: users, points ledger, leagues, sessions and goals.

Creates users, points_punctuations, leagues, league_sessions,
user_punctuations, goals, reduce_items and finished_projects.

Revision ID: 001_recycling_core
Revises:
Create Date: 2026-03-01
"""

from collections.abc import Sequence

from alembic import op

revision: str = "001_recycling_core"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # --- Users ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS users (
            id BIGSERIAL PRIMARY KEY,
            email VARCHAR(320) NOT NULL,
            display_name VARCHAR(64),
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT users_email_key UNIQUE (email)
        )
    """)

    # --- Points ledger ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS points_punctuations (
            id BIGSERIAL PRIMARY KEY,
            user_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            recycle_points BIGINT NOT NULL DEFAULT 0,
            reuse_points BIGINT NOT NULL DEFAULT 0,
            reduce_points BIGINT NOT NULL DEFAULT 0,
            knowledge_points BIGINT NOT NULL DEFAULT 0,
            total_points BIGINT NOT NULL DEFAULT 0,
            last_updated TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT points_punctuations_recycle_non_negative_check CHECK (recycle_points >= 0),
            CONSTRAINT points_punctuations_reuse_non_negative_check CHECK (reuse_points >= 0),
            CONSTRAINT points_punctuations_reduce_non_negative_check CHECK (reduce_points >= 0),
            CONSTRAINT points_punctuations_knowledge_non_negative_check CHECK (knowledge_points >= 0)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_points_punctuations_user_recent
        ON points_punctuations(user_id, last_updated)
    """)

    # --- Leagues ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS leagues (
            id BIGSERIAL PRIMARY KEY,
            name VARCHAR(128) NOT NULL,
            tier INTEGER NOT NULL,
            members_count INTEGER NOT NULL DEFAULT 0,
            promoted_count INTEGER NOT NULL DEFAULT 0,
            relegated_count INTEGER NOT NULL DEFAULT 0,
            promotion_enabled BOOLEAN NOT NULL DEFAULT true,
            relegation_enabled BOOLEAN NOT NULL DEFAULT true,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT leagues_tier_key UNIQUE (tier),
            CONSTRAINT leagues_tier_positive_check CHECK (tier > 0)
        )
    """)

    # --- League sessions ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS league_sessions (
            id BIGSERIAL PRIMARY KEY,
            league_id BIGINT NOT NULL REFERENCES leagues(id) ON DELETE CASCADE,
            start_date DATE NOT NULL,
            end_date DATE NOT NULL,
            status VARCHAR(16) NOT NULL DEFAULT 'open',
            closed_at TIMESTAMPTZ,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT league_sessions_window_ordered_check CHECK (start_date < end_date)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_league_sessions_league_status
        ON league_sessions(league_id, status)
    """)

    # --- Session memberships ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS user_punctuations (
            id BIGSERIAL PRIMARY KEY,
            user_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            session_id BIGINT NOT NULL REFERENCES league_sessions(id) ON DELETE CASCADE,
            points_punctuation_id BIGINT NOT NULL REFERENCES points_punctuations(id) ON DELETE CASCADE,
            baseline_points BIGINT NOT NULL DEFAULT 0,
            enrolled_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            final_points BIGINT,
            final_rank INTEGER,
            outcome VARCHAR(16),
            next_session_id BIGINT REFERENCES league_sessions(id) ON DELETE SET NULL,
            CONSTRAINT user_punctuations_user_session_key UNIQUE (user_id, session_id)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_user_punctuations_session_id
        ON user_punctuations(session_id)
    """)

    # --- Goals (single table, discriminated by kind) ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS goals (
            id BIGSERIAL PRIMARY KEY,
            user_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            kind VARCHAR(16) NOT NULL,
            progress DOUBLE PRECISION NOT NULL DEFAULT 0,
            difficulty VARCHAR(16) NOT NULL,
            frequency VARCHAR(16) NOT NULL,
            next_check DATE NOT NULL,
            status VARCHAR(16) NOT NULL,
            completed BOOLEAN NOT NULL DEFAULT false,
            completed_at TIMESTAMPTZ,
            multiplier DOUBLE PRECISION NOT NULL DEFAULT 1.0,
            previous_goal_id BIGINT REFERENCES goals(id) ON DELETE SET NULL,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            finished_projects INTEGER DEFAULT 0,
            skip_days_left INTEGER DEFAULT 0,
            skip_days_total INTEGER DEFAULT 0,
            CONSTRAINT goals_progress_range_check CHECK (progress >= 0 AND progress <= 100),
            CONSTRAINT goals_multiplier_non_negative_check CHECK (multiplier >= 0)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_goals_user_status
        ON goals(user_id, status)
    """)

    # --- Reduce goal items ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS reduce_items (
            id BIGSERIAL PRIMARY KEY,
            goal_id BIGINT NOT NULL REFERENCES goals(id) ON DELETE CASCADE,
            material VARCHAR(16) NOT NULL,
            target_quantity INTEGER NOT NULL,
            actual_quantity INTEGER NOT NULL DEFAULT 0,
            CONSTRAINT reduce_items_goal_material_key UNIQUE (goal_id, material),
            CONSTRAINT reduce_items_target_positive_check CHECK (target_quantity > 0),
            CONSTRAINT reduce_items_actual_non_negative_check CHECK (actual_quantity >= 0)
        )
    """)

    # --- Finished projects ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS finished_projects (
            id BIGSERIAL PRIMARY KEY,
            user_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            project_id BIGINT NOT NULL,
            goal_id BIGINT REFERENCES goals(id) ON DELETE SET NULL,
            points_awarded INTEGER NOT NULL DEFAULT 0,
            finished_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT finished_projects_user_project_key UNIQUE (user_id, project_id)
        )
    """)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS finished_projects CASCADE")
    op.execute("DROP TABLE IF EXISTS reduce_items CASCADE")
    op.execute("DROP TABLE IF EXISTS goals CASCADE")
    op.execute("DROP TABLE IF EXISTS user_punctuations CASCADE")
    op.execute("DROP TABLE IF EXISTS league_sessions CASCADE")
    op.execute("DROP TABLE IF EXISTS leagues CASCADE")
    op.execute("DROP TABLE IF EXISTS points_punctuations CASCADE")
    op.execute("DROP TABLE IF EXISTS users CASCADE")
