"""
Achievement System

Scans a user's aggregate statistics against the achievement catalog and
grants whatever is newly satisfied.

Evaluation is a pure function of current stats and existing grants, so it
can be re-run at any time: the grant set only grows, and the unique
(user, achievement) insert decides which concurrent evaluation pays the
XP reward.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import ValidationError as PydanticValidationError

from taskquest.db.repository import GamificationRepository
from taskquest.exceptions import InvalidCriteriaError
from taskquest.gamification.level_curve import level_number
from taskquest.gamification.rewards import RewardKey
from taskquest.gamification.xp_system import XPAwarder, XPContext
from taskquest.models.achievement import Achievement, AchievementGrant, CriteriaType, UserStats
from taskquest.observability.metrics import achievement_criteria_errors_total, achievements_unlocked_total
from taskquest.services.notifications import NotificationEmitter, NotificationType, safe_emit
from taskquest.utils.clock import Clock

logger = logging.getLogger(__name__)


# Which UserStats field each criteria type compares against
CRITERIA_STATS: Dict[CriteriaType, str] = {
    CriteriaType.TASK_CAPTURE: "tasks_created",
    CriteriaType.TASK_COMPLETE: "tasks_completed",
    CriteriaType.EMAIL_PROCESS: "emails_processed",
    CriteriaType.LOCATION_VISIT: "unique_locations_visited",
    CriteriaType.STREAK_MAINTAIN: "longest_streak",
    CriteriaType.MEETING_ACTIONS: "meetings_processed",
    CriteriaType.XP_EARN: "total_xp",
    CriteriaType.LEVEL_REACH: "current_level",
    CriteriaType.FOCUS_TIME: "focus_hours_total",
    CriteriaType.EARLY_COMPLETION: "completed_before_noon",
    CriteriaType.CAPTURE_STREAK: "longest_capture_streak",
    CriteriaType.DAILY_PLANNING: "longest_planning_run",
    CriteriaType.ON_TIME_COMPLETION: "tasks_within_estimate",
}


ACHIEVEMENT_DEFINITIONS: List[Dict[str, Any]] = [
    {
        "id": "first_capture",
        "name": "First Capture",
        "description": "Capture your first task",
        "icon": "🎯",
        "criteria": {"type": "task_capture", "threshold": 1},
        "xp_reward": 10,
    },
    {
        "id": "task_master",
        "name": "Task Master",
        "description": "Complete 50 tasks",
        "icon": "✅",
        "criteria": {"type": "task_complete", "threshold": 50},
        "xp_reward": 100,
    },
    {
        "id": "task_warrior",
        "name": "Task Warrior",
        "description": "Complete 100 tasks",
        "icon": "💯",
        "criteria": {"type": "task_complete", "threshold": 100},
        "xp_reward": 200,
    },
    {
        "id": "email_ninja",
        "name": "Email Ninja",
        "description": "Process 20 emails into tasks",
        "icon": "📧",
        "criteria": {"type": "email_process", "threshold": 20},
        "xp_reward": 50,
    },
    {
        "id": "location_explorer",
        "name": "Location Explorer",
        "description": "Visit all 5 work locations",
        "icon": "📍",
        "criteria": {"type": "location_visit", "threshold": 5},
        "xp_reward": 100,
    },
    {
        "id": "streak_starter",
        "name": "Streak Starter",
        "description": "Maintain a 3-day streak",
        "icon": "🔥",
        "criteria": {"type": "streak_maintain", "threshold": 3},
        "xp_reward": 25,
    },
    {
        "id": "streak_champion",
        "name": "Streak Champion",
        "description": "Maintain a 14-day streak",
        "icon": "👑",
        "criteria": {"type": "streak_maintain", "threshold": 14},
        "xp_reward": 150,
    },
    {
        "id": "streak_legend",
        "name": "Streak Legend",
        "description": "Maintain a 30-day streak",
        "icon": "🏆",
        "criteria": {"type": "streak_maintain", "threshold": 30},
        "xp_reward": 300,
    },
    {
        "id": "capture_habit",
        "name": "Capture Habit",
        "description": "Capture tasks 7 days in a row",
        "icon": "📝",
        "criteria": {"type": "capture_streak", "threshold": 7},
        "xp_reward": 75,
    },
    {
        "id": "meeting_hero",
        "name": "Meeting Hero",
        "description": "Extract actions from 10 meetings",
        "icon": "🎤",
        "criteria": {"type": "meeting_actions", "threshold": 10},
        "xp_reward": 100,
    },
    {
        "id": "meeting_master",
        "name": "Meeting Master",
        "description": "Extract actions from 50 meetings",
        "icon": "🎙️",
        "criteria": {"type": "meeting_actions", "threshold": 50},
        "xp_reward": 250,
    },
    {
        "id": "xp_collector",
        "name": "XP Collector",
        "description": "Earn 1000 XP",
        "icon": "⚡",
        "criteria": {"type": "xp_earn", "threshold": 1000},
        "xp_reward": 50,
    },
    {
        "id": "xp_millionaire",
        "name": "XP Millionaire",
        "description": "Earn 5000 XP",
        "icon": "💎",
        "criteria": {"type": "xp_earn", "threshold": 5000},
        "xp_reward": 200,
    },
    {
        "id": "level_5",
        "name": "Rising Star",
        "description": "Reach level 5",
        "icon": "⭐",
        "criteria": {"type": "level_reach", "threshold": 5},
        "xp_reward": 100,
    },
    {
        "id": "level_10",
        "name": "Champion",
        "description": "Reach level 10",
        "icon": "🏅",
        "criteria": {"type": "level_reach", "threshold": 10},
        "xp_reward": 500,
    },
    {
        "id": "focus_master",
        "name": "Focus Master",
        "description": "Complete 50 hours in focus mode",
        "icon": "🧘",
        "criteria": {"type": "focus_time", "threshold": 50},
        "xp_reward": 200,
    },
    {
        "id": "early_bird",
        "name": "Early Bird",
        "description": "Complete 10 tasks before noon",
        "icon": "🌅",
        "criteria": {"type": "early_completion", "threshold": 10},
        "xp_reward": 50,
    },
    {
        "id": "planner",
        "name": "Planner",
        "description": "Plan 3 days in a row",
        "icon": "📅",
        "criteria": {"type": "daily_planning", "threshold": 3},
        "xp_reward": 30,
    },
    {
        "id": "time_estimator",
        "name": "Time Estimator",
        "description": "Complete 10 tasks within estimated time",
        "icon": "⏱️",
        "criteria": {"type": "on_time_completion", "threshold": 10},
        "xp_reward": 75,
    },
]


def _validate_definition(definition: Dict[str, Any], seen: set) -> Achievement:
    achievement_id = definition.get("id")
    try:
        achievement = Achievement.model_validate(definition)
    except PydanticValidationError as e:
        criteria = definition.get("criteria")
        raise InvalidCriteriaError(
            f"Invalid achievement definition '{achievement_id}': {e.error_count()} error(s)",
            achievement_id=str(achievement_id),
            criteria_type=str(criteria.get("type")) if isinstance(criteria, dict) else None,
            cause=e,
        )
    if achievement.id in seen:
        raise InvalidCriteriaError(
            f"Duplicate achievement id '{achievement.id}'",
            achievement_id=achievement.id,
            criteria_type=achievement.criteria.type.value,
        )
    return achievement


def load_achievement_catalog(definitions: List[Dict[str, Any]]) -> List[Achievement]:
    """
    Validate raw achievement definitions

    A malformed entry, one naming an unknown criteria type, or a repeated id
    is counted and left out; the rest of the catalog still loads.
    """
    catalog = []
    seen = set()
    for definition in definitions:
        try:
            achievement = _validate_definition(definition, seen)
        except InvalidCriteriaError as e:
            # Already logged on construction
            achievement_criteria_errors_total.labels(achievement_id=e.achievement_id).inc()
            continue
        seen.add(achievement.id)
        catalog.append(achievement)
    return catalog


ACHIEVEMENTS: List[Achievement] = load_achievement_catalog(ACHIEVEMENT_DEFINITIONS)


def resolve_statistic(achievement: Achievement, stats: UserStats) -> float:
    """
    Current value of the statistic an achievement is judged on

    Raises:
        InvalidCriteriaError: the criteria type has no statistic
    """
    field = CRITERIA_STATS.get(achievement.criteria.type)
    if field is None:
        raise InvalidCriteriaError(
            f"Achievement '{achievement.id}' has unresolvable criteria type '{achievement.criteria.type}'",
            achievement_id=achievement.id,
            criteria_type=str(achievement.criteria.type),
        )
    return getattr(stats, field)


class AchievementEvaluator:
    """Grants achievements whose criteria the user's stats now satisfy"""

    def __init__(
        self,
        repository: GamificationRepository,
        awarder: XPAwarder,
        notifier: NotificationEmitter,
        clock: Clock,
        catalog: Optional[List[Achievement]] = None,
    ):
        self.repository = repository
        self.awarder = awarder
        self.notifier = notifier
        self.clock = clock
        self.catalog = catalog if catalog is not None else ACHIEVEMENTS

    async def evaluate(self, user_id: str) -> List[str]:
        """
        Grant every newly satisfied achievement

        Returns:
            IDs granted by this call (empty when nothing new)

        Raises:
            UserNotFoundError: user does not exist
        """
        stats = await self.repository.get_user_stats(user_id, timezone=self.clock.timezone.key)
        granted = {g.achievement_id for g in await self.repository.get_achievement_grants(user_id)}

        newly_granted = []
        for achievement in self.catalog:
            if achievement.id in granted:
                continue

            try:
                value = resolve_statistic(achievement, stats)
            except InvalidCriteriaError:
                # Already logged on construction; keep evaluating the rest
                achievement_criteria_errors_total.labels(achievement_id=achievement.id).inc()
                continue

            if value < achievement.criteria.threshold:
                continue

            pending = None
            if achievement.xp_reward > 0:
                pending = await self.awarder.prepare(
                    user_id,
                    RewardKey.ACHIEVEMENT_UNLOCKED,
                    context=XPContext(check_back_to_back=False, allow_variable_reward=False),
                    metadata={"achievement_id": achievement.id, "achievement_name": achievement.name},
                    base_xp=achievement.xp_reward,
                )

            # Grant and reward commit together; a failed award leaves it ungranted
            won, totals = await self.repository.insert_achievement_grant(
                AchievementGrant(user_id=user_id, achievement_id=achievement.id, earned_at=self.clock.now()),
                reward=pending.entry if pending else None,
                level_for=level_number,
            )
            if not won:
                continue
            if pending is not None:
                await self.awarder.settle(pending, totals)

            achievements_unlocked_total.labels(achievement_id=achievement.id).inc()
            logger.info(f"User {user_id} unlocked achievement: {achievement.id}")
            await safe_emit(
                self.notifier,
                NotificationType.ACHIEVEMENT_UNLOCKED,
                user_id,
                {
                    "achievement_id": achievement.id,
                    "name": achievement.name,
                    "description": achievement.description,
                    "icon": achievement.icon,
                    "xp_reward": achievement.xp_reward,
                },
            )
            newly_granted.append(achievement.id)

        return newly_granted

    async def get_user_achievements(self, user_id: str, include_locked: bool = False) -> Dict[str, List[Dict]]:
        """
        Get user's achievements

        Returns:
            {
                'unlocked': [{'id', 'name', 'description', 'icon', 'xp_reward', 'earned_at'}],
                'locked': [{..., 'progress', 'threshold', 'percent'}]  # only with include_locked
            }
        """
        grants = {g.achievement_id: g.earned_at for g in await self.repository.get_achievement_grants(user_id)}

        unlocked = []
        locked = []
        stats: Optional[UserStats] = None
        for achievement in self.catalog:
            entry = {
                "id": achievement.id,
                "name": achievement.name,
                "description": achievement.description,
                "icon": achievement.icon,
                "xp_reward": achievement.xp_reward,
            }
            earned_at: Optional[datetime] = grants.get(achievement.id)
            if earned_at is not None:
                entry["earned_at"] = earned_at
                unlocked.append(entry)
                continue
            if not include_locked:
                continue

            if stats is None:
                stats = await self.repository.get_user_stats(user_id, timezone=self.clock.timezone.key)
            try:
                progress = resolve_statistic(achievement, stats)
            except InvalidCriteriaError:
                continue
            threshold = achievement.criteria.threshold
            entry.update({
                "progress": progress,
                "threshold": threshold,
                "percent": round(min(100.0, progress / threshold * 100), 1),
            })
            locked.append(entry)

        result = {"unlocked": unlocked}
        if include_locked:
            result["locked"] = locked
        return result


def get_achievement(achievement_id: str) -> Optional[Achievement]:
    for achievement in ACHIEVEMENTS:
        if achievement.id == achievement_id:
            return achievement
    return None
