"""
In-memory gamification store

Implements GamificationRepository with the same uniqueness and atomicity
guarantees as the PostgreSQL repository, using a per-user asyncio.Lock in
place of row locks. Used by the test-suite and for local development;
nothing here is persisted.
"""

import asyncio
import logging
from collections import defaultdict
from datetime import datetime
from typing import Callable, Optional

from taskquest.db.repository import GamificationRepository
from taskquest.exceptions import UserNotFoundError
from taskquest.models.achievement import AchievementGrant, UserStats
from taskquest.models.progress import PointsLogEntry, UserProgress, XPTotals
from taskquest.models.quest import QuestInstance, QuestScope, QuestStatus
from taskquest.models.streak import Streak, StreakType

logger = logging.getLogger(__name__)

# Activity counters that live on the user record in PostgreSQL
ACTIVITY_COUNTERS = (
    "tasks_completed",
    "tasks_created",
    "emails_processed",
    "unique_locations_visited",
    "meetings_processed",
    "focus_hours_total",
    "completed_before_noon",
    "tasks_within_estimate",
    "longest_planning_run",
)


class InMemoryRepository(GamificationRepository):
    """Process-local store for users, points log, streaks, quests and grants"""

    def __init__(self):
        self._users: dict[str, UserProgress] = {}
        self._points_log: list[PointsLogEntry] = []
        self._streaks: dict[tuple[str, StreakType], Streak] = {}
        self._quests: dict[str, QuestInstance] = {}
        self._grants: dict[tuple[str, str], AchievementGrant] = {}
        self._counters: dict[str, dict[str, float]] = defaultdict(dict)
        self._locks: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        logger.debug("InMemoryRepository initialized")

    # ==========================================
    # Seeding helpers
    # ==========================================

    def add_user(
        self,
        user_id: str,
        total_xp: int = 0,
        current_level: int = 1,
        last_xp_event_at: Optional[datetime] = None,
    ) -> UserProgress:
        progress = UserProgress(
            user_id=user_id,
            total_xp=total_xp,
            current_level=current_level,
            last_xp_event_at=last_xp_event_at,
        )
        self._users[user_id] = progress
        return progress

    def set_activity(self, user_id: str, **counters) -> None:
        """Set activity counters (tasks_completed=12, focus_hours_total=3.5, ...)"""
        for name, value in counters.items():
            if name not in ACTIVITY_COUNTERS:
                raise KeyError(f"Unknown activity counter '{name}'")
            self._counters[user_id][name] = value

    def increment_activity(self, user_id: str, name: str, amount: float = 1) -> None:
        if name not in ACTIVITY_COUNTERS:
            raise KeyError(f"Unknown activity counter '{name}'")
        self._counters[user_id][name] = self._counters[user_id].get(name, 0) + amount

    # ==========================================
    # XP
    # ==========================================

    async def get_user_progress(self, user_id: str) -> Optional[UserProgress]:
        progress = self._users.get(user_id)
        return progress.model_copy() if progress else None

    async def record_xp_award(
        self,
        entry: PointsLogEntry,
        level_for: Callable[[int], int],
    ) -> XPTotals:
        async with self._locks[entry.user_id]:
            return self._apply_xp_award(entry, level_for)

    def _apply_xp_award(self, entry: PointsLogEntry, level_for: Callable[[int], int]) -> XPTotals:
        """Add the award to the user row and the log; caller holds the user's lock"""
        progress = self._users.get(entry.user_id)
        if progress is None:
            raise UserNotFoundError(entry.user_id, operation="record_xp_award")

        previous_total = progress.total_xp
        previous_level = progress.current_level
        new_total = previous_total + entry.points
        new_level = max(previous_level, level_for(new_total))

        entry = entry.model_copy(
            update={"metadata": {**entry.metadata, "previous_xp": previous_total, "new_xp": new_total}}
        )
        self._users[entry.user_id] = progress.model_copy(
            update={
                "total_xp": new_total,
                "current_level": new_level,
                "last_xp_event_at": entry.created_at,
            }
        )
        self._points_log.append(entry)

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
        entries = [
            e for e in self._points_log
            if e.user_id == user_id and (since is None or e.created_at >= since)
        ]
        entries.sort(key=lambda e: e.created_at, reverse=True)
        return entries[:limit]

    # ==========================================
    # Streaks
    # ==========================================

    async def get_streak(self, user_id: str, streak_type: StreakType) -> Optional[Streak]:
        streak = self._streaks.get((user_id, StreakType(streak_type)))
        return streak.model_copy() if streak else None

    async def get_streaks(self, user_id: str) -> list[Streak]:
        return [s.model_copy() for (uid, _), s in self._streaks.items() if uid == user_id]

    async def create_streak(self, streak: Streak) -> Optional[Streak]:
        async with self._locks[streak.user_id]:
            key = (streak.user_id, streak.streak_type)
            if key in self._streaks:
                return None
            self._streaks[key] = streak.model_copy(update={"id": f"{streak.user_id}:{streak.streak_type.value}"})
            return self._streaks[key].model_copy()

    async def update_streak(
        self,
        streak: Streak,
        expected_last_maintained_at: datetime,
        reward: Optional[PointsLogEntry] = None,
        level_for: Optional[Callable[[int], int]] = None,
    ) -> tuple[bool, Optional[XPTotals]]:
        async with self._locks[streak.user_id]:
            key = (streak.user_id, streak.streak_type)
            stored = self._streaks.get(key)
            if stored is None or stored.last_maintained_at != expected_last_maintained_at:
                return False, None
            # Award first: if it raises, the streak row is untouched
            totals = self._apply_xp_award(reward, level_for) if reward is not None else None
            self._streaks[key] = streak.model_copy(update={"id": stored.id})
            return True, totals

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
        quests = [
            q for q in self._quests.values()
            if q.user_id == user_id
            and (quest_type is None or q.quest_type == quest_type)
            and (period_key is None or q.period_key == period_key)
            and (progress_type_detail is None or q.progress_type_detail == progress_type_detail)
            and (status is None or q.status == status)
        ]
        quests.sort(key=lambda q: (q.created_at, q.slot))
        return [q.model_copy() for q in quests]

    async def get_quest(self, quest_id: str) -> Optional[QuestInstance]:
        quest = self._quests.get(quest_id)
        return quest.model_copy() if quest else None

    async def insert_quest(self, quest: QuestInstance) -> Optional[QuestInstance]:
        async with self._locks[quest.user_id]:
            for existing in self._quests.values():
                if existing.user_id != quest.user_id or existing.period_key != quest.period_key:
                    continue
                if existing.quest_catalog_id == quest.quest_catalog_id or existing.slot == quest.slot:
                    return None
            self._quests[quest.id] = quest.model_copy()
            return quest.model_copy()

    async def advance_quest(
        self,
        quest_id: str,
        increment: int,
        now: datetime,
        reward: Optional[PointsLogEntry] = None,
        level_for: Optional[Callable[[int], int]] = None,
    ) -> tuple[Optional[QuestInstance], Optional[XPTotals]]:
        quest = self._quests.get(quest_id)
        if quest is None:
            return None, None
        async with self._locks[quest.user_id]:
            quest = self._quests[quest_id]
            if quest.status != QuestStatus.ACTIVE:
                return None, None
            progress = min(quest.progress_current + increment, quest.target_count)
            update = {"progress_current": progress}
            totals = None
            if progress >= quest.target_count:
                update.update({"status": QuestStatus.COMPLETED, "completed_at": now})
                if reward is not None:
                    totals = self._apply_xp_award(reward, level_for)
            self._quests[quest_id] = quest.model_copy(update=update)
            return self._quests[quest_id].model_copy(), totals

    # ==========================================
    # Achievements
    # ==========================================

    async def get_achievement_grants(self, user_id: str) -> list[AchievementGrant]:
        return [g.model_copy() for (uid, _), g in self._grants.items() if uid == user_id]

    async def insert_achievement_grant(
        self,
        grant: AchievementGrant,
        reward: Optional[PointsLogEntry] = None,
        level_for: Optional[Callable[[int], int]] = None,
    ) -> tuple[bool, Optional[XPTotals]]:
        async with self._locks[grant.user_id]:
            key = (grant.user_id, grant.achievement_id)
            if key in self._grants:
                return False, None
            totals = self._apply_xp_award(reward, level_for) if reward is not None else None
            self._grants[key] = grant.model_copy()
            return True, totals

    async def get_user_stats(self, user_id: str, timezone: str = "UTC") -> UserStats:
        progress = self._users.get(user_id)
        if progress is None:
            raise UserNotFoundError(user_id, operation="get_user_stats")

        streaks = await self.get_streaks(user_id)
        capture = [s.longest_count for s in streaks if s.streak_type == StreakType.CAPTURE]

        return UserStats(
            user_id=user_id,
            total_xp=progress.total_xp,
            current_level=progress.current_level,
            longest_streak=max((s.longest_count for s in streaks), default=0),
            longest_capture_streak=max(capture, default=0),
            **self._counters.get(user_id, {}),
        )
