"""XP progress and points-log models"""
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field


class UserProgress(BaseModel):
    """Running XP total for a user; current_level is always derived from total_xp"""
    user_id: str
    total_xp: int = Field(default=0, ge=0)
    current_level: int = Field(default=1, ge=1)
    last_xp_event_at: Optional[datetime] = None


class PointsLogEntry(BaseModel):
    """Append-only audit row written once per XP award"""
    user_id: str
    points: int
    reason_key: str
    source: str = "gamification"
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime


class XPTotals(BaseModel):
    """Result of an atomic XP increment"""
    previous_total: int
    new_total: int
    previous_level: int
    new_level: int


class LevelInfo(BaseModel):
    """Level curve lookup result"""
    level: int
    title: str
    xp_to_next: int
