"""Quest and weekly challenge models"""
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class QuestScope(str, Enum):
    """Period a quest instance belongs to"""
    DAILY = "daily"
    WEEKLY = "weekly"


class QuestStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"


class QuestTemplate(BaseModel):
    """Catalog entry a quest instance is generated from"""
    id: str
    title: str
    description: str
    progress_type_detail: str  # routes progress events to this quest
    target: int = Field(gt=0)
    reward: int = Field(gt=0)
    icon: str


class QuestInstance(BaseModel):
    """Per-user quest row for one day (daily) or one week (weekly)"""
    id: str
    user_id: str
    quest_catalog_id: str
    quest_type: QuestScope
    progress_type_detail: str
    title: str
    description: str
    target_count: int = Field(gt=0)
    progress_current: int = Field(default=0, ge=0)
    xp_reward: int = Field(gt=0)
    status: QuestStatus = QuestStatus.ACTIVE
    expires_at: datetime
    icon: str = "📝"
    period_key: str
    slot: int = Field(default=0, ge=0)
    created_at: datetime
    completed_at: Optional[datetime] = None

    @property
    def is_completed(self) -> bool:
        return self.status == QuestStatus.COMPLETED

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at


class QuestProgressResult(BaseModel):
    """Progress applied to one quest instance"""
    quest_id: str
    title: str
    progress: int
    target: int
    completed: bool
    reward: Optional[int] = None


class QuestUpdateResult(BaseModel):
    """Outcome of apply_progress() or complete_quest()"""
    success: bool = True
    updated: bool = False
    reason: Optional[str] = None
    already_completed: bool = False
    results: list[QuestProgressResult] = Field(default_factory=list)

    @property
    def completed(self) -> bool:
        return any(r.completed for r in self.results)
