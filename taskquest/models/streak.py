"""Streak models"""
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, model_validator


class StreakType(str, Enum):
    """Activities that keep a day-granularity streak alive"""
    DAILY_TASKS = "daily_tasks"
    CAPTURE = "capture"
    LOCATION_VISITS = "location_visits"


class Streak(BaseModel):
    """One streak row per (user, streak_type)"""
    id: Optional[str] = None
    user_id: str
    streak_type: StreakType
    current_count: int = Field(default=0, ge=0)
    longest_count: int = Field(default=0, ge=0)
    last_maintained_at: datetime

    @model_validator(mode="after")
    def longest_covers_current(self) -> "Streak":
        if self.longest_count < self.current_count:
            raise ValueError("longest_count must be >= current_count")
        return self


class StreakResult(BaseModel):
    """Outcome of a maintain() call"""
    streak_type: StreakType
    current_count: int
    longest_count: int
    is_new_streak: bool = False
    was_broken: bool = False
    bonus_awarded: Optional[int] = None
