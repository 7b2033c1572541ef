"""
Repository interface for gamification persistence

Every component talks to storage only through GamificationRepository.
Implementations must honour these guarantees:

- record_xp_award() increments the running total atomically (no lost
  updates under concurrent awards) and writes the points-log row in the
  same unit of work
- create_streak(), insert_quest() and insert_achievement_grant() are
  insert-if-absent: a duplicate returns None/False instead of a second row
- update_streak() and advance_quest() are conditional writes that only
  apply when the row is still in the state the caller read
- update_streak(), advance_quest() and insert_achievement_grant() accept
  the XP award their state change earns; both are committed together or
  not at all
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Callable, Optional

from taskquest.models.achievement import AchievementGrant, UserStats
from taskquest.models.progress import PointsLogEntry, UserProgress, XPTotals
from taskquest.models.quest import QuestInstance, QuestScope, QuestStatus
from taskquest.models.streak import Streak, StreakType


class GamificationRepository(ABC):
    """Storage operations used by the XP, streak, quest and achievement components"""

    # ==========================================
    # XP
    # ==========================================

    @abstractmethod
    async def get_user_progress(self, user_id: str) -> Optional[UserProgress]:
        """Return the user's XP progress, or None if the user does not exist"""

    @abstractmethod
    async def record_xp_award(
        self,
        entry: PointsLogEntry,
        level_for: Callable[[int], int],
    ) -> XPTotals:
        """
        Atomically add entry.points to the user's total and log the award

        The stored level becomes max(current_level, level_for(new_total)),
        last_xp_event_at is set to entry.created_at, and entry.metadata gains
        'previous_xp' and 'new_xp' before the log row is written.

        Raises:
            UserNotFoundError: if the user does not exist (nothing is written)
        """

    @abstractmethod
    async def get_points_log(
        self,
        user_id: str,
        since: Optional[datetime] = None,
        limit: int = 50,
    ) -> list[PointsLogEntry]:
        """Recent points-log rows, newest first"""

    # ==========================================
    # Streaks
    # ==========================================

    @abstractmethod
    async def get_streak(self, user_id: str, streak_type: StreakType) -> Optional[Streak]:
        pass

    @abstractmethod
    async def get_streaks(self, user_id: str) -> list[Streak]:
        pass

    @abstractmethod
    async def create_streak(self, streak: Streak) -> Optional[Streak]:
        """Insert a streak row; None if one already exists for (user, type)"""

    @abstractmethod
    async def update_streak(
        self,
        streak: Streak,
        expected_last_maintained_at: datetime,
        reward: Optional[PointsLogEntry] = None,
        level_for: Optional[Callable[[int], int]] = None,
    ) -> tuple[bool, Optional[XPTotals]]:
        """
        Write counts and timestamp only if last_maintained_at still equals the expected value

        When the write applies and ``reward`` is given, the award is recorded
        as by record_xp_award() in the same unit of work.

        Returns:
            (applied, totals): totals is None unless a reward was recorded
        """

    # ==========================================
    # Quests
    # ==========================================

    @abstractmethod
    async def find_quests(
        self,
        user_id: str,
        quest_type: Optional[QuestScope] = None,
        period_key: Optional[str] = None,
        progress_type_detail: Optional[str] = None,
        status: Optional[QuestStatus] = None,
    ) -> list[QuestInstance]:
        """Quest instances matching every given filter, oldest first"""

    @abstractmethod
    async def get_quest(self, quest_id: str) -> Optional[QuestInstance]:
        pass

    @abstractmethod
    async def insert_quest(self, quest: QuestInstance) -> Optional[QuestInstance]:
        """Insert a quest; None if (user, period_key, catalog id) or (user, period_key, slot) is taken"""

    @abstractmethod
    async def advance_quest(
        self,
        quest_id: str,
        increment: int,
        now: datetime,
        reward: Optional[PointsLogEntry] = None,
        level_for: Optional[Callable[[int], int]] = None,
    ) -> tuple[Optional[QuestInstance], Optional[XPTotals]]:
        """
        Add progress to an active quest, clamped to its target

        Reaching the target flips status to completed and stamps completed_at.
        The updated row is None if the quest is missing or no longer active.
        A returned row with status completed means this call completed it,
        and only then is ``reward`` recorded, in the same unit of work.

        Returns:
            (quest, totals): totals is None unless a reward was recorded
        """

    # ==========================================
    # Achievements
    # ==========================================

    @abstractmethod
    async def get_achievement_grants(self, user_id: str) -> list[AchievementGrant]:
        pass

    @abstractmethod
    async def insert_achievement_grant(
        self,
        grant: AchievementGrant,
        reward: Optional[PointsLogEntry] = None,
        level_for: Optional[Callable[[int], int]] = None,
    ) -> tuple[bool, Optional[XPTotals]]:
        """
        Grant an achievement once, recording ``reward`` with a new grant

        Returns:
            (granted, totals): granted is False if the pair was already
            granted; totals is None unless a reward was recorded
        """

    @abstractmethod
    async def get_user_stats(self, user_id: str, timezone: str = "UTC") -> UserStats:
        """
        Aggregate statistics for achievement criteria

        ``timezone`` is the IANA zone used for the before-noon and
        consecutive-day planning computations.
        """
