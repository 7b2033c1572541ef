"""
PostgreSQL schema for the gamification tables

The host application owns users, tasks, location_visits and
planning_events; the columns listed here are the ones the gamification
core reads or writes. Every statement is idempotent so create_schema()
can run on each deploy.
"""
import logging

from taskquest.db.connection import Database, db

logger = logging.getLogger(__name__)

SCHEMA_STATEMENTS = [
    """
    CREATE TABLE IF NOT EXISTS users (
        id UUID PRIMARY KEY,
        total_xp INTEGER NOT NULL DEFAULT 0 CHECK (total_xp >= 0),
        current_level INTEGER NOT NULL DEFAULT 1 CHECK (current_level >= 1),
        last_xp_event_at TIMESTAMPTZ,
        tasks_completed_count INTEGER NOT NULL DEFAULT 0,
        tasks_created_count INTEGER NOT NULL DEFAULT 0,
        emails_processed INTEGER NOT NULL DEFAULT 0,
        meetings_processed INTEGER NOT NULL DEFAULT 0,
        focus_hours_total NUMERIC NOT NULL DEFAULT 0,
        updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS points_log (
        id BIGSERIAL PRIMARY KEY,
        user_id UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
        points INTEGER NOT NULL,
        reason TEXT NOT NULL,
        source TEXT NOT NULL DEFAULT 'gamification',
        metadata JSONB NOT NULL DEFAULT '{}'::jsonb,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    "CREATE INDEX IF NOT EXISTS ix_points_log_user_created ON points_log (user_id, created_at DESC)",
    """
    CREATE TABLE IF NOT EXISTS streaks (
        id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        user_id UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
        streak_type TEXT NOT NULL CHECK (streak_type IN ('daily_tasks', 'capture', 'location_visits')),
        current_count INTEGER NOT NULL DEFAULT 0 CHECK (current_count >= 0),
        longest_count INTEGER NOT NULL DEFAULT 0 CHECK (longest_count >= current_count),
        last_maintained TIMESTAMPTZ NOT NULL,
        UNIQUE (user_id, streak_type)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS user_quests (
        id UUID PRIMARY KEY,
        user_id UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
        quest_id TEXT NOT NULL,
        quest_type TEXT NOT NULL CHECK (quest_type IN ('daily', 'weekly')),
        quest_type_detail TEXT NOT NULL,
        title TEXT NOT NULL,
        description TEXT NOT NULL,
        target_count INTEGER NOT NULL CHECK (target_count > 0),
        progress_current INTEGER NOT NULL DEFAULT 0
            CHECK (progress_current >= 0 AND progress_current <= target_count),
        xp_reward INTEGER NOT NULL CHECK (xp_reward > 0),
        status TEXT NOT NULL DEFAULT 'active' CHECK (status IN ('active', 'completed')),
        expires_at TIMESTAMPTZ NOT NULL,
        icon TEXT,
        period_key TEXT NOT NULL,
        slot INTEGER NOT NULL DEFAULT 0,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        completed_at TIMESTAMPTZ,
        UNIQUE (user_id, period_key, quest_id),
        UNIQUE (user_id, period_key, slot)
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS ix_user_quests_progress
        ON user_quests (user_id, quest_type, quest_type_detail, status)
    """,
    """
    CREATE TABLE IF NOT EXISTS user_achievements (
        id BIGSERIAL PRIMARY KEY,
        user_id UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
        achievement_id TEXT NOT NULL,
        earned_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        UNIQUE (user_id, achievement_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS notifications (
        id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        user_id UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
        type TEXT NOT NULL,
        title TEXT NOT NULL,
        message TEXT,
        data JSONB NOT NULL DEFAULT '{}'::jsonb,
        read_at TIMESTAMPTZ,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS tasks (
        id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        user_id UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
        status TEXT NOT NULL DEFAULT 'pending',
        estimated_minutes INTEGER,
        actual_minutes INTEGER,
        completed_at TIMESTAMPTZ
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS location_visits (
        id BIGSERIAL PRIMARY KEY,
        user_id UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
        location_id TEXT NOT NULL,
        visited_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS planning_events (
        id BIGSERIAL PRIMARY KEY,
        user_id UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
        planned_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
]


async def create_schema(database: Database = db) -> None:
    """Create gamification tables and constraints if they do not exist"""
    async with database.transaction() as conn:
        async with conn.cursor() as cur:
            for statement in SCHEMA_STATEMENTS:
                await cur.execute(statement)
    logger.info(f"Applied {len(SCHEMA_STATEMENTS)} schema statements")
