"""Base XP table for every rewardable action"""
from enum import Enum

from taskquest.exceptions import ValidationError


class RewardKey(str, Enum):
    TASK_COMPLETE = "TASK_COMPLETE"
    TASK_COMPLETE_HIGH_PRIORITY = "TASK_COMPLETE_HIGH_PRIORITY"
    TASK_ON_TIME = "TASK_ON_TIME"
    TASK_EARLY = "TASK_EARLY"
    TASK_CAPTURE = "TASK_CAPTURE"
    TASK_CAPTURE_WITH_ESTIMATE = "TASK_CAPTURE_WITH_ESTIMATE"
    EMAIL_PROCESSED = "EMAIL_PROCESSED"
    DAILY_LOGIN = "DAILY_LOGIN"
    STREAK_3_DAY = "STREAK_3_DAY"
    STREAK_7_DAY = "STREAK_7_DAY"
    STREAK_30_DAY = "STREAK_30_DAY"
    FOCUS_SESSION_START = "FOCUS_SESSION_START"
    FOCUS_SESSION_COMPLETE = "FOCUS_SESSION_COMPLETE"
    FOCUS_SESSION_EXTENDED = "FOCUS_SESSION_EXTENDED"
    SUBTASK_BREAKDOWN = "SUBTASK_BREAKDOWN"
    AI_SUGGESTION_USED = "AI_SUGGESTION_USED"
    ENERGY_LOGGED = "ENERGY_LOGGED"
    MORNING_PLANNING = "MORNING_PLANNING"
    MEETING_PROCESSED = "MEETING_PROCESSED"
    QUEST_COMPLETE = "QUEST_COMPLETE"
    WEEKLY_CHALLENGE_COMPLETE = "WEEKLY_CHALLENGE_COMPLETE"
    ACHIEVEMENT_UNLOCKED = "ACHIEVEMENT_UNLOCKED"


XP_REWARDS: dict[RewardKey, int] = {
    RewardKey.TASK_COMPLETE: 10,
    RewardKey.TASK_COMPLETE_HIGH_PRIORITY: 20,
    RewardKey.TASK_ON_TIME: 5,
    RewardKey.TASK_EARLY: 5,
    RewardKey.TASK_CAPTURE: 2,
    RewardKey.TASK_CAPTURE_WITH_ESTIMATE: 5,
    RewardKey.EMAIL_PROCESSED: 5,
    RewardKey.DAILY_LOGIN: 5,
    RewardKey.STREAK_3_DAY: 25,
    RewardKey.STREAK_7_DAY: 100,
    RewardKey.STREAK_30_DAY: 200,
    RewardKey.FOCUS_SESSION_START: 3,
    RewardKey.FOCUS_SESSION_COMPLETE: 15,
    RewardKey.FOCUS_SESSION_EXTENDED: 5,
    RewardKey.SUBTASK_BREAKDOWN: 3,
    RewardKey.AI_SUGGESTION_USED: 2,
    RewardKey.ENERGY_LOGGED: 1,
    RewardKey.MORNING_PLANNING: 5,
    RewardKey.MEETING_PROCESSED: 10,
    RewardKey.QUEST_COMPLETE: 50,
    RewardKey.WEEKLY_CHALLENGE_COMPLETE: 200,
    RewardKey.ACHIEVEMENT_UNLOCKED: 0,  # amount comes from the achievement
}


def parse_reward_key(reason_key) -> RewardKey:
    """Resolve a reason key, raising ValidationError for anything outside the table"""
    try:
        return RewardKey(reason_key)
    except ValueError:
        raise ValidationError(
            f"Unknown reward key '{reason_key}'",
            field="reason_key",
            value=str(reason_key),
        )

