"""Achievement models for gamification"""
from enum import Enum
from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime


class CriteriaType(str, Enum):
    """Statistic an achievement threshold is compared against"""
    TASK_CAPTURE = "task_capture"
    TASK_COMPLETE = "task_complete"
    EMAIL_PROCESS = "email_process"
    LOCATION_VISIT = "location_visit"
    STREAK_MAINTAIN = "streak_maintain"
    MEETING_ACTIONS = "meeting_actions"
    XP_EARN = "xp_earn"
    LEVEL_REACH = "level_reach"
    FOCUS_TIME = "focus_time"
    EARLY_COMPLETION = "early_completion"
    CAPTURE_STREAK = "capture_streak"
    DAILY_PLANNING = "daily_planning"
    ON_TIME_COMPLETION = "on_time_completion"


class AchievementCriteria(BaseModel):
    type: CriteriaType
    threshold: float = Field(gt=0)


class Achievement(BaseModel):
    """Achievement definition"""
    id: str
    name: str
    description: str
    icon: str
    criteria: AchievementCriteria
    xp_reward: int = Field(default=0, ge=0)


class AchievementGrant(BaseModel):
    """User's unlocked achievement (at most one per user and achievement)"""
    user_id: str
    achievement_id: str
    earned_at: datetime


class UserStats(BaseModel):
    """Aggregate statistics the achievement criteria are evaluated against"""
    user_id: str
    tasks_completed: int = 0
    tasks_created: int = 0
    emails_processed: int = 0
    unique_locations_visited: int = 0
    longest_streak: int = 0
    meetings_processed: int = 0
    total_xp: int = 0
    current_level: int = 1
    focus_hours_total: float = 0.0
    completed_before_noon: int = 0
    longest_capture_streak: int = 0
    tasks_within_estimate: int = 0
    longest_planning_run: int = 0
    computed_at: Optional[datetime] = None
