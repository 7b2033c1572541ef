"""PostgreSQL gamification repository"""
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncGenerator, Callable, Optional

import psycopg
from psycopg.types.json import Jsonb

from taskquest.db.connection import Database, db
from taskquest.db.repository import GamificationRepository
from taskquest.exceptions import AuthorizationError, UserNotFoundError, wrap_external_exception
from taskquest.models.achievement import AchievementGrant, UserStats
from taskquest.models.progress import PointsLogEntry, UserProgress, XPTotals
from taskquest.models.quest import QuestInstance, QuestScope, QuestStatus
from taskquest.models.streak import Streak, StreakType

logger = logging.getLogger(__name__)

QUEST_COLUMNS = """
    id, user_id, quest_id, quest_type, quest_type_detail, title, description,
    target_count, progress_current, xp_reward, status, expires_at, icon,
    period_key, slot, created_at, completed_at
"""

STREAK_COLUMNS = "id, user_id, streak_type, current_count, longest_count, last_maintained"


# ==========================================
# Row mapping
# ==========================================

def _quest_from_row(row: dict) -> QuestInstance:
    return QuestInstance(
        id=str(row['id']),
        user_id=str(row['user_id']),
        quest_catalog_id=row['quest_id'],
        quest_type=row['quest_type'],
        progress_type_detail=row['quest_type_detail'],
        title=row['title'],
        description=row['description'],
        target_count=row['target_count'],
        progress_current=row['progress_current'],
        xp_reward=row['xp_reward'],
        status=row['status'],
        expires_at=row['expires_at'],
        icon=row['icon'] or "📝",
        period_key=row['period_key'],
        slot=row['slot'],
        created_at=row['created_at'],
        completed_at=row['completed_at'],
    )


def _streak_from_row(row: dict) -> Streak:
    return Streak(
        id=str(row['id']),
        user_id=str(row['user_id']),
        streak_type=row['streak_type'],
        current_count=row['current_count'],
        longest_count=row['longest_count'],
        last_maintained_at=row['last_maintained'],
    )


class PostgresRepository(GamificationRepository):
    """
    Service-scope repository

    Sees every user's rows. Use only from trusted server code; request
    handlers acting for a signed-in user should go through
    UserScopedPostgresRepository (see repository_for()).
    """

    def __init__(self, database: Database = db):
        self.database = database

    @asynccontextmanager
    async def _transaction(
        self,
        operation: str,
        user_id: Optional[str] = None,
    ) -> AsyncGenerator[psycopg.AsyncConnection, None]:
        """Open a transaction and translate psycopg errors into QueryError"""
        try:
            async with self.database.transaction() as conn:
                await self._prepare(conn, user_id)
                yield conn
        except psycopg.Error as e:
            raise wrap_external_exception(e, operation=operation, user_id=user_id)

    async def _prepare(self, conn: psycopg.AsyncConnection, user_id: Optional[str]) -> None:
        """Hook run at the start of every transaction"""

    # ==========================================
    # XP
    # ==========================================

    async def get_user_progress(self, user_id: str) -> Optional[UserProgress]:
        async with self._transaction("get_user_progress", user_id) as conn:
            async with conn.cursor() as cur:
                await cur.execute(
                    """
                    SELECT id, total_xp, current_level, last_xp_event_at
                    FROM users
                    WHERE id = %s
                    """,
                    (user_id,)
                )
                row = await cur.fetchone()

        if not row:
            return None
        return UserProgress(
            user_id=str(row['id']),
            total_xp=row['total_xp'],
            current_level=row['current_level'],
            last_xp_event_at=row['last_xp_event_at'],
        )

    async def record_xp_award(
        self,
        entry: PointsLogEntry,
        level_for: Callable[[int], int],
    ) -> XPTotals:
        async with self._transaction("record_xp_award", entry.user_id) as conn:
            async with conn.cursor() as cur:
                return await self._write_xp_award(cur, entry, level_for)

    async def _write_xp_award(
        self,
        cur: psycopg.AsyncCursor,
        entry: PointsLogEntry,
        level_for: Callable[[int], int],
    ) -> XPTotals:
        """Increment the total and log the award on the caller's transaction"""
        # Row lock held until commit; concurrent awards serialize here
        await cur.execute(
            """
            UPDATE users
            SET total_xp = total_xp + %s,
                last_xp_event_at = %s,
                updated_at = now()
            WHERE id = %s
            RETURNING total_xp, current_level
            """,
            (entry.points, entry.created_at, entry.user_id)
        )
        row = await cur.fetchone()
        if not row:
            raise UserNotFoundError(entry.user_id, operation="record_xp_award")

        new_total = row['total_xp']
        previous_total = new_total - entry.points
        previous_level = row['current_level']
        new_level = max(previous_level, level_for(new_total))

        if new_level != previous_level:
            await cur.execute(
                "UPDATE users SET current_level = GREATEST(current_level, %s) WHERE id = %s",
                (new_level, entry.user_id)
            )

        metadata = {**entry.metadata, "previous_xp": previous_total, "new_xp": new_total}
        await cur.execute(
            """
            INSERT INTO points_log (user_id, points, reason, source, metadata, created_at)
            VALUES (%s, %s, %s, %s, %s, %s)
            """,
            (entry.user_id, entry.points, entry.reason_key, entry.source, Jsonb(metadata), entry.created_at)
        )

        return XPTotals(
            previous_total=previous_total,
            new_total=new_total,
            previous_level=previous_level,
            new_level=new_level,
        )

    async def get_points_log(
        self,
        user_id: str,
        since: Optional[datetime] = None,
        limit: int = 50,
    ) -> list[PointsLogEntry]:
        query = """
            SELECT user_id, points, reason, source, metadata, created_at
            FROM points_log
            WHERE user_id = %s
        """
        params: list = [user_id]
        if since is not None:
            query += " AND created_at >= %s"
            params.append(since)
        query += " ORDER BY created_at DESC LIMIT %s"
        params.append(limit)

        async with self._transaction("get_points_log", user_id) as conn:
            async with conn.cursor() as cur:
                await cur.execute(query, params)
                rows = await cur.fetchall()

        return [
            PointsLogEntry(
                user_id=str(row['user_id']),
                points=row['points'],
                reason_key=row['reason'],
                source=row['source'],
                metadata=row['metadata'] or {},
                created_at=row['created_at'],
            )
            for row in rows
        ]

    # ==========================================
    # Streaks
    # ==========================================

    async def get_streak(self, user_id: str, streak_type: StreakType) -> Optional[Streak]:
        async with self._transaction("get_streak", user_id) as conn:
            async with conn.cursor() as cur:
                await cur.execute(
                    f"SELECT {STREAK_COLUMNS} FROM streaks WHERE user_id = %s AND streak_type = %s",
                    (user_id, StreakType(streak_type).value)
                )
                row = await cur.fetchone()
        return _streak_from_row(row) if row else None

    async def get_streaks(self, user_id: str) -> list[Streak]:
        async with self._transaction("get_streaks", user_id) as conn:
            async with conn.cursor() as cur:
                await cur.execute(
                    f"SELECT {STREAK_COLUMNS} FROM streaks WHERE user_id = %s",
                    (user_id,)
                )
                rows = await cur.fetchall()
        return [_streak_from_row(row) for row in rows]

    async def create_streak(self, streak: Streak) -> Optional[Streak]:
        async with self._transaction("create_streak", streak.user_id) as conn:
            async with conn.cursor() as cur:
                await cur.execute(
                    f"""
                    INSERT INTO streaks (user_id, streak_type, current_count, longest_count, last_maintained)
                    VALUES (%s, %s, %s, %s, %s)
                    ON CONFLICT (user_id, streak_type) DO NOTHING
                    RETURNING {STREAK_COLUMNS}
                    """,
                    (
                        streak.user_id,
                        streak.streak_type.value,
                        streak.current_count,
                        streak.longest_count,
                        streak.last_maintained_at,
                    )
                )
                row = await cur.fetchone()
        return _streak_from_row(row) if row else None

    async def update_streak(
        self,
        streak: Streak,
        expected_last_maintained_at: datetime,
        reward: Optional[PointsLogEntry] = None,
        level_for: Optional[Callable[[int], int]] = None,
    ) -> tuple[bool, Optional[XPTotals]]:
        async with self._transaction("update_streak", streak.user_id) as conn:
            async with conn.cursor() as cur:
                await cur.execute(
                    """
                    UPDATE streaks
                    SET current_count = %s,
                        longest_count = %s,
                        last_maintained = %s
                    WHERE user_id = %s AND streak_type = %s AND last_maintained = %s
                    """,
                    (
                        streak.current_count,
                        streak.longest_count,
                        streak.last_maintained_at,
                        streak.user_id,
                        streak.streak_type.value,
                        expected_last_maintained_at,
                    )
                )
                if cur.rowcount != 1:
                    return False, None
                if reward is None:
                    return True, None
                return True, await self._write_xp_award(cur, reward, level_for)

    # ==========================================
    # Quests
    # ==========================================

    async def find_quests(
        self,
        user_id: str,
        quest_type: Optional[QuestScope] = None,
        period_key: Optional[str] = None,
        progress_type_detail: Optional[str] = None,
        status: Optional[QuestStatus] = None,
    ) -> list[QuestInstance]:
        conditions = ["user_id = %s"]
        params: list = [user_id]
        if quest_type is not None:
            conditions.append("quest_type = %s")
            params.append(QuestScope(quest_type).value)
        if period_key is not None:
            conditions.append("period_key = %s")
            params.append(period_key)
        if progress_type_detail is not None:
            conditions.append("quest_type_detail = %s")
            params.append(progress_type_detail)
        if status is not None:
            conditions.append("status = %s")
            params.append(QuestStatus(status).value)

        async with self._transaction("find_quests", user_id) as conn:
            async with conn.cursor() as cur:
                await cur.execute(
                    f"""
                    SELECT {QUEST_COLUMNS}
                    FROM user_quests
                    WHERE {' AND '.join(conditions)}
                    ORDER BY created_at, slot
                    """,
                    params
                )
                rows = await cur.fetchall()
        return [_quest_from_row(row) for row in rows]

    async def get_quest(self, quest_id: str) -> Optional[QuestInstance]:
        async with self._transaction("get_quest") as conn:
            async with conn.cursor() as cur:
                await cur.execute(
                    f"SELECT {QUEST_COLUMNS} FROM user_quests WHERE id = %s",
                    (quest_id,)
                )
                row = await cur.fetchone()
        return _quest_from_row(row) if row else None

    async def insert_quest(self, quest: QuestInstance) -> Optional[QuestInstance]:
        async with self._transaction("insert_quest", quest.user_id) as conn:
            async with conn.cursor() as cur:
                # Conflicts on either (user, period, quest) or (user, period, slot)
                await cur.execute(
                    f"""
                    INSERT INTO user_quests ({QUEST_COLUMNS})
                    VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                    ON CONFLICT DO NOTHING
                    RETURNING {QUEST_COLUMNS}
                    """,
                    (
                        quest.id,
                        quest.user_id,
                        quest.quest_catalog_id,
                        quest.quest_type.value,
                        quest.progress_type_detail,
                        quest.title,
                        quest.description,
                        quest.target_count,
                        quest.progress_current,
                        quest.xp_reward,
                        quest.status.value,
                        quest.expires_at,
                        quest.icon,
                        quest.period_key,
                        quest.slot,
                        quest.created_at,
                        quest.completed_at,
                    )
                )
                row = await cur.fetchone()
        return _quest_from_row(row) if row else None

    async def advance_quest(
        self,
        quest_id: str,
        increment: int,
        now: datetime,
        reward: Optional[PointsLogEntry] = None,
        level_for: Optional[Callable[[int], int]] = None,
    ) -> tuple[Optional[QuestInstance], Optional[XPTotals]]:
        async with self._transaction("advance_quest") as conn:
            async with conn.cursor() as cur:
                await cur.execute(
                    f"""
                    UPDATE user_quests
                    SET progress_current = LEAST(progress_current + %(inc)s, target_count),
                        status = CASE
                            WHEN progress_current + %(inc)s >= target_count THEN 'completed'
                            ELSE status
                        END,
                        completed_at = CASE
                            WHEN progress_current + %(inc)s >= target_count THEN %(now)s
                            ELSE completed_at
                        END
                    WHERE id = %(id)s AND status = 'active'
                    RETURNING {QUEST_COLUMNS}
                    """,
                    {"inc": increment, "now": now, "id": quest_id}
                )
                row = await cur.fetchone()
                if not row:
                    return None, None
                quest = _quest_from_row(row)
                totals = None
                if quest.is_completed and reward is not None:
                    totals = await self._write_xp_award(cur, reward, level_for)
        return quest, totals

    # ==========================================
    # Achievements
    # ==========================================

    async def get_achievement_grants(self, user_id: str) -> list[AchievementGrant]:
        async with self._transaction("get_achievement_grants", user_id) as conn:
            async with conn.cursor() as cur:
                await cur.execute(
                    """
                    SELECT user_id, achievement_id, earned_at
                    FROM user_achievements
                    WHERE user_id = %s
                    ORDER BY earned_at
                    """,
                    (user_id,)
                )
                rows = await cur.fetchall()
        return [
            AchievementGrant(user_id=str(row['user_id']), achievement_id=row['achievement_id'], earned_at=row['earned_at'])
            for row in rows
        ]

    async def insert_achievement_grant(
        self,
        grant: AchievementGrant,
        reward: Optional[PointsLogEntry] = None,
        level_for: Optional[Callable[[int], int]] = None,
    ) -> tuple[bool, Optional[XPTotals]]:
        async with self._transaction("insert_achievement_grant", grant.user_id) as conn:
            async with conn.cursor() as cur:
                await cur.execute(
                    """
                    INSERT INTO user_achievements (user_id, achievement_id, earned_at)
                    VALUES (%s, %s, %s)
                    ON CONFLICT (user_id, achievement_id) DO NOTHING
                    RETURNING id
                    """,
                    (grant.user_id, grant.achievement_id, grant.earned_at)
                )
                row = await cur.fetchone()
                if not row:
                    return False, None
                if reward is None:
                    return True, None
                return True, await self._write_xp_award(cur, reward, level_for)

    async def get_user_stats(self, user_id: str, timezone: str = "UTC") -> UserStats:
        async with self._transaction("get_user_stats", user_id) as conn:
            async with conn.cursor() as cur:
                await cur.execute(
                    """
                    SELECT total_xp, current_level, tasks_completed_count, tasks_created_count,
                           emails_processed, meetings_processed, focus_hours_total
                    FROM users
                    WHERE id = %s
                    """,
                    (user_id,)
                )
                user = await cur.fetchone()
                if not user:
                    raise UserNotFoundError(user_id, operation="get_user_stats")

                await cur.execute(
                    """
                    SELECT COALESCE(MAX(longest_count), 0) AS longest_streak,
                           COALESCE(MAX(longest_count) FILTER (WHERE streak_type = 'capture'), 0)
                               AS longest_capture_streak
                    FROM streaks
                    WHERE user_id = %s
                    """,
                    (user_id,)
                )
                streaks = await cur.fetchone()

                await cur.execute(
                    "SELECT COUNT(DISTINCT location_id) AS visited FROM location_visits WHERE user_id = %s",
                    (user_id,)
                )
                locations = await cur.fetchone()

                await cur.execute(
                    """
                    SELECT
                        COUNT(*) FILTER (
                            WHERE EXTRACT(HOUR FROM completed_at AT TIME ZONE %s) < 12
                        ) AS before_noon,
                        COUNT(*) FILTER (
                            WHERE estimated_minutes IS NOT NULL
                              AND actual_minutes IS NOT NULL
                              AND actual_minutes <= estimated_minutes
                        ) AS within_estimate
                    FROM tasks
                    WHERE user_id = %s AND status = 'completed' AND completed_at IS NOT NULL
                    """,
                    (timezone, user_id)
                )
                tasks = await cur.fetchone()

                # Longest run of consecutive local days with a planning event
                await cur.execute(
                    """
                    WITH days AS (
                        SELECT DISTINCT (planned_at AT TIME ZONE %s)::date AS day
                        FROM planning_events
                        WHERE user_id = %s
                    ),
                    runs AS (
                        SELECT day - (ROW_NUMBER() OVER (ORDER BY day))::int AS run_id
                        FROM days
                    )
                    SELECT COALESCE(MAX(run_length), 0) AS longest_run
                    FROM (SELECT COUNT(*) AS run_length FROM runs GROUP BY run_id) r
                    """,
                    (timezone, user_id)
                )
                planning = await cur.fetchone()

        return UserStats(
            user_id=user_id,
            tasks_completed=user['tasks_completed_count'],
            tasks_created=user['tasks_created_count'],
            emails_processed=user['emails_processed'],
            unique_locations_visited=locations['visited'],
            longest_streak=streaks['longest_streak'],
            meetings_processed=user['meetings_processed'],
            total_xp=user['total_xp'],
            current_level=user['current_level'],
            focus_hours_total=float(user['focus_hours_total']),
            completed_before_noon=tasks['before_noon'],
            longest_capture_streak=streaks['longest_capture_streak'],
            tasks_within_estimate=tasks['within_estimate'],
            longest_planning_run=planning['longest_run'],
        )


class UserScopedPostgresRepository(PostgresRepository):
    """
    Repository bound to one signed-in user

    Every transaction sets the row-level-security claim to the acting user,
    and any call that names a different user raises AuthorizationError
    before touching the database.
    """

    def __init__(self, acting_user_id: str, database: Database = db):
        super().__init__(database)
        self.acting_user_id = acting_user_id

    def _check_user(self, user_id: Optional[str], resource: str) -> None:
        if user_id is not None and user_id != self.acting_user_id:
            raise AuthorizationError(
                message=f"User {self.acting_user_id} attempted to access {resource} of user {user_id}",
                resource=resource,
                user_id=self.acting_user_id,
            )

    @asynccontextmanager
    async def _transaction(
        self,
        operation: str,
        user_id: Optional[str] = None,
    ) -> AsyncGenerator[psycopg.AsyncConnection, None]:
        self._check_user(user_id, operation)
        async with super()._transaction(operation, user_id) as conn:
            yield conn

    async def _prepare(self, conn: psycopg.AsyncConnection, user_id: Optional[str]) -> None:
        async with conn.cursor() as cur:
            await cur.execute(
                "SELECT set_config('request.jwt.claim.sub', %s, true)",
                (self.acting_user_id,)
            )

    async def get_quest(self, quest_id: str) -> Optional[QuestInstance]:
        quest = await super().get_quest(quest_id)
        if quest is not None:
            self._check_user(quest.user_id, "quest")
        return quest

    async def advance_quest(
        self,
        quest_id: str,
        increment: int,
        now: datetime,
        reward: Optional[PointsLogEntry] = None,
        level_for: Optional[Callable[[int], int]] = None,
    ) -> tuple[Optional[QuestInstance], Optional[XPTotals]]:
        if await self.get_quest(quest_id) is None:
            return None, None
        return await super().advance_quest(quest_id, increment, now, reward, level_for)


def repository_for(
    database: Database = db,
    acting_user_id: Optional[str] = None,
) -> PostgresRepository:
    """
    Select the repository for a caller

    Request handlers pass the signed-in user's id and get a user-scoped
    repository; background and admin code passes nothing and gets the
    service-scope one.
    """
    if acting_user_id is None:
        return PostgresRepository(database)
    return UserScopedPostgresRepository(acting_user_id, database)
