"""
Gamification core

XP awards with multipliers, the level curve, day-granularity streaks,
daily quests and weekly challenges, and achievement evaluation.
"""

from taskquest.gamification.level_curve import (
    LEVEL_THRESHOLDS,
    level_of,
    level_title,
    progress_percent,
)
from taskquest.gamification.rewards import RewardKey, XP_REWARDS
from taskquest.gamification.xp_system import (
    XPAwarder,
    XPAwardResult,
    XPCalculation,
    XPContext,
    XPMultipliers,
    calculate_xp_with_multipliers,
)
from taskquest.gamification.streak_system import StreakTracker, STREAK_MILESTONES
from taskquest.gamification.quests import QuestTracker, DAILY_QUESTS, WEEKLY_CHALLENGES
from taskquest.gamification.achievement_system import (
    ACHIEVEMENTS,
    AchievementEvaluator,
    load_achievement_catalog,
)
from taskquest.gamification.dashboards import get_gamification_stats

__all__ = [
    # Level curve
    'LEVEL_THRESHOLDS',
    'level_of',
    'level_title',
    'progress_percent',
    # XP
    'RewardKey',
    'XP_REWARDS',
    'XPAwarder',
    'XPAwardResult',
    'XPCalculation',
    'XPContext',
    'XPMultipliers',
    'calculate_xp_with_multipliers',
    # Streaks
    'StreakTracker',
    'STREAK_MILESTONES',
    # Quests
    'QuestTracker',
    'DAILY_QUESTS',
    'WEEKLY_CHALLENGES',
    # Achievements
    'ACHIEVEMENTS',
    'AchievementEvaluator',
    'load_achievement_catalog',
    # Dashboards
    'get_gamification_stats',
]
