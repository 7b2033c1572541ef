"""
GamificationService - Gamification Business Logic

One entry point per user action. Each call awards XP, maintains the
relevant streaks and routes progress to daily quests and the weekly
challenge. Achievement evaluation is an explicit scan, offered after each
action through ``evaluate_achievements=True``.

Activity counters (tasks completed, emails processed, focus hours, ...)
belong to the host application's own rows; this service only reads them
through the repository when evaluating achievements.
"""

import logging
import random
from typing import Any, Dict, List, Optional

from taskquest.db.repository import GamificationRepository
from taskquest.gamification.achievement_system import AchievementEvaluator
from taskquest.gamification.dashboards import get_gamification_stats
from taskquest.gamification.quests import QuestTracker
from taskquest.gamification.rewards import RewardKey
from taskquest.gamification.streak_system import StreakTracker
from taskquest.gamification.xp_system import XPAwarder, XPAwardResult, XPContext
from taskquest.models.quest import QuestScope, QuestUpdateResult
from taskquest.models.streak import Streak, StreakType
from taskquest.services.notifications import NotificationEmitter
from taskquest.utils.clock import Clock

logger = logging.getLogger(__name__)


class GamificationService:
    """
    Service for gamification features.

    Responsibilities:
    - XP awarding for user actions
    - Streak maintenance
    - Daily quest and weekly challenge progress
    - Achievement evaluation
    - Dashboard stats
    """

    def __init__(
        self,
        repository: GamificationRepository,
        notifier: NotificationEmitter,
        clock: Clock,
        rng: Optional[random.Random] = None,
    ):
        """
        Initialize GamificationService.

        Args:
            repository: Storage backend (PostgreSQL or in-memory)
            notifier: Notification emitter
            clock: Source of "now" and the reference timezone
            rng: Random source for variable rewards and quest selection
        """
        self.repository = repository
        self.clock = clock
        self.rng = rng or random.Random()

        self.xp = XPAwarder(repository, notifier, clock, self.rng)
        self.streaks = StreakTracker(repository, self.xp, notifier, clock)
        self.quests = QuestTracker(repository, self.xp, notifier, clock, self.rng)
        self.achievements = AchievementEvaluator(repository, self.xp, notifier, clock)
        logger.debug("GamificationService initialized")

    # ==========================================
    # User actions
    # ==========================================

    async def process_task_completed(
        self,
        user_id: str,
        task_id: Optional[str] = None,
        high_priority: bool = False,
        on_time: bool = False,
        early: bool = False,
        context: Optional[XPContext] = None,
        evaluate_achievements: bool = False,
    ) -> Dict[str, Any]:
        """
        Process gamification for a completed task.

        Args:
            user_id: User UUID
            task_id: Completed task (stored on the points-log row)
            high_priority: Task priority was high or urgent
            on_time: Completed by its due time
            early: Completed ahead of its due time
            context: Energy match / focus session conditions
            evaluate_achievements: Run an achievement scan afterwards

        Returns:
            {
                'xp_awarded': int,
                'level_up': bool,
                'new_level': int,
                'new_total': int,
                'streak': StreakResult,
                'quests': [QuestUpdateResult],
                'achievements_unlocked': [str]
            }
        """
        metadata = {"task_id": task_id} if task_id else {}
        key = RewardKey.TASK_COMPLETE_HIGH_PRIORITY if high_priority else RewardKey.TASK_COMPLETE
        awards = [await self.xp.award(user_id, key, context=context, metadata=metadata)]
        if on_time:
            awards.append(await self.xp.award(user_id, RewardKey.TASK_ON_TIME, metadata=metadata))
        if early:
            awards.append(await self.xp.award(user_id, RewardKey.TASK_EARLY, metadata=metadata))

        streak = await self.streaks.maintain(user_id, StreakType.DAILY_TASKS)

        quests = [
            await self.quests.apply_progress(user_id, "complete_tasks"),
            await self.quests.apply_progress(user_id, "complete_tasks", scope=QuestScope.WEEKLY),
        ]
        if self.clock.now().hour < 12:
            quests.append(await self.quests.apply_progress(user_id, "tasks_before_noon"))
        if high_priority:
            quests.append(await self.quests.apply_progress(user_id, "high_priority_task"))

        return await self._summarize(user_id, awards, quests, streak=streak, evaluate=evaluate_achievements)

    async def process_task_captured(
        self,
        user_id: str,
        with_estimate: bool = False,
        evaluate_achievements: bool = False,
    ) -> Dict[str, Any]:
        """Process gamification for a newly captured task"""
        key = RewardKey.TASK_CAPTURE_WITH_ESTIMATE if with_estimate else RewardKey.TASK_CAPTURE
        awards = [await self.xp.award(user_id, key)]
        streak = await self.streaks.maintain(user_id, StreakType.CAPTURE)
        quests = [await self.quests.apply_progress(user_id, "capture_tasks")]
        return await self._summarize(user_id, awards, quests, streak=streak, evaluate=evaluate_achievements)

    async def process_email_processed(
        self,
        user_id: str,
        evaluate_achievements: bool = False,
    ) -> Dict[str, Any]:
        """Process gamification for an email turned into tasks"""
        awards = [await self.xp.award(user_id, RewardKey.EMAIL_PROCESSED)]
        quests = [
            await self.quests.apply_progress(user_id, "process_emails"),
            await self.quests.apply_progress(user_id, "process_emails", scope=QuestScope.WEEKLY),
        ]
        return await self._summarize(user_id, awards, quests, evaluate=evaluate_achievements)

    async def process_meeting_processed(
        self,
        user_id: str,
        meeting_id: Optional[str] = None,
        evaluate_achievements: bool = False,
    ) -> Dict[str, Any]:
        """Process gamification for a meeting whose action items were extracted"""
        metadata = {"meeting_id": meeting_id} if meeting_id else {}
        awards = [await self.xp.award(user_id, RewardKey.MEETING_PROCESSED, metadata=metadata)]
        return await self._summarize(user_id, awards, [], evaluate=evaluate_achievements)

    async def process_focus_session_completed(
        self,
        user_id: str,
        hours: float,
        extended: bool = False,
        evaluate_achievements: bool = False,
    ) -> Dict[str, Any]:
        """
        Process gamification for a finished focus session.

        The weekly focus_streak challenge counts days, so only the first
        session of the local day advances it. deep_work counts whole hours.
        """
        since = self.clock.day_start()
        earlier_today = await self.repository.get_points_log(user_id, since=since, limit=1000)
        first_today = not any(e.reason_key == RewardKey.FOCUS_SESSION_COMPLETE.value for e in earlier_today)

        context = XPContext(in_focus_session=True)
        awards = [await self.xp.award(user_id, RewardKey.FOCUS_SESSION_COMPLETE, context=context)]
        if extended:
            awards.append(await self.xp.award(user_id, RewardKey.FOCUS_SESSION_EXTENDED, context=context))

        quests = [await self.quests.apply_progress(user_id, "focus_session")]
        if first_today:
            quests.append(await self.quests.apply_progress(user_id, "focus_streak", scope=QuestScope.WEEKLY))
        if int(hours) >= 1:
            quests.append(await self.quests.apply_progress(user_id, "deep_work", int(hours), scope=QuestScope.WEEKLY))

        return await self._summarize(user_id, awards, quests, evaluate=evaluate_achievements)

    async def process_energy_logged(self, user_id: str, evaluate_achievements: bool = False) -> Dict[str, Any]:
        awards = [await self.xp.award(user_id, RewardKey.ENERGY_LOGGED)]
        quests = [await self.quests.apply_progress(user_id, "log_energy")]
        return await self._summarize(user_id, awards, quests, evaluate=evaluate_achievements)

    async def process_ai_planner_used(self, user_id: str, evaluate_achievements: bool = False) -> Dict[str, Any]:
        awards = [await self.xp.award(user_id, RewardKey.AI_SUGGESTION_USED)]
        quests = [await self.quests.apply_progress(user_id, "use_ai_planner", scope=QuestScope.WEEKLY)]
        return await self._summarize(user_id, awards, quests, evaluate=evaluate_achievements)

    async def process_location_visited(self, user_id: str, evaluate_achievements: bool = False) -> Dict[str, Any]:
        """Location visits earn no XP of their own; they feed the streak and weekly challenge"""
        streak = await self.streaks.maintain(user_id, StreakType.LOCATION_VISITS)
        quests = [await self.quests.apply_progress(user_id, "visit_locations", scope=QuestScope.WEEKLY)]
        return await self._summarize(user_id, [], quests, streak=streak, evaluate=evaluate_achievements)

    async def _summarize(
        self,
        user_id: str,
        awards: List[XPAwardResult],
        quests: List[QuestUpdateResult],
        streak=None,
        evaluate: bool = False,
    ) -> Dict[str, Any]:
        unlocked = await self.achievements.evaluate(user_id) if evaluate else []
        last = awards[-1] if awards else None
        return {
            'xp_awarded': sum(a.xp_awarded for a in awards),
            'level_up': any(a.leveled_up for a in awards),
            'new_level': last.new_level if last else None,
            'new_total': last.new_total if last else None,
            'streak': streak,
            'quests': [q for q in quests if q.updated],
            'achievements_unlocked': unlocked,
        }

    # ==========================================
    # Reads
    # ==========================================

    async def get_quests(self, user_id: str) -> Dict[str, Any]:
        """
        Today's quests and this week's challenge, generating them lazily

        Returns:
            {'daily': [QuestInstance], 'weekly': QuestInstance | None}
        """
        daily = await self.quests.generate_daily_quests(user_id)
        weekly = await self.quests.generate_weekly_challenge(user_id)
        return {'daily': daily, 'weekly': weekly}

    async def complete_quest(self, user_id: str, quest_id: str) -> QuestUpdateResult:
        return await self.quests.complete_quest(user_id, quest_id)

    async def evaluate_achievements(self, user_id: str) -> List[str]:
        return await self.achievements.evaluate(user_id)

    async def get_achievements(self, user_id: str, include_locked: bool = True) -> Dict[str, List[Dict]]:
        return await self.achievements.get_user_achievements(user_id, include_locked=include_locked)

    async def get_streaks(self, user_id: str) -> List[Streak]:
        return await self.streaks.get_user_streaks(user_id)

    async def check_streaks_at_risk(self, user_id: str) -> List[Streak]:
        return await self.streaks.check_streaks_at_risk(user_id)

    async def get_stats(self, user_id: str) -> Dict[str, Any]:
        return await get_gamification_stats(self.repository, self.clock, user_id)
