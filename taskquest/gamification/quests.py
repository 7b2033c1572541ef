"""
Daily Quests and Weekly Challenges

Two period-scoped lifecycles that share one table and one set of mechanics:

- Daily: 3 distinct quests per local calendar day, expiring 23:59:59.999
- Weekly: 1 challenge per week (Sunday 00:00 local), expiring 7 days later

Generation is lazy and idempotent per period; instances are unique per
(user, period, catalog id) and per (user, period, slot). Progress is routed
by progress_type_detail, clamped to the target, and a completion pays the
instance's xp_reward exactly once.
"""

import logging
import random
import uuid
from datetime import datetime, timedelta
from typing import List, Optional, Tuple

from taskquest.config import DAILY_QUEST_COUNT
from taskquest.db.repository import GamificationRepository
from taskquest.exceptions import QuestNotFoundError, UserNotFoundError, ValidationError
from taskquest.gamification.level_curve import level_number
from taskquest.gamification.rewards import RewardKey
from taskquest.gamification.xp_system import XPAwarder, XPContext
from taskquest.models.quest import (
    QuestInstance,
    QuestProgressResult,
    QuestScope,
    QuestStatus,
    QuestTemplate,
    QuestUpdateResult,
)
from taskquest.observability.metrics import quests_completed_total, quests_generated_total
from taskquest.services.notifications import NotificationEmitter, NotificationType, safe_emit
from taskquest.utils.clock import Clock

logger = logging.getLogger(__name__)


DAILY_QUESTS: List[QuestTemplate] = [
    QuestTemplate(
        id="complete_3_morning",
        title="Early Bird",
        description="Complete 3 tasks before noon",
        progress_type_detail="tasks_before_noon",
        target=3,
        reward=50,
        icon="🌅",
    ),
    QuestTemplate(
        id="focus_session",
        title="Focus Time",
        description="Complete one focus session",
        progress_type_detail="focus_session",
        target=1,
        reward=30,
        icon="🧘",
    ),
    QuestTemplate(
        id="log_energy",
        title="Energy Check",
        description="Log your energy level today",
        progress_type_detail="log_energy",
        target=1,
        reward=15,
        icon="🔋",
    ),
    QuestTemplate(
        id="capture_5_tasks",
        title="Task Collector",
        description="Capture 5 tasks today",
        progress_type_detail="capture_tasks",
        target=5,
        reward=25,
        icon="📝",
    ),
    QuestTemplate(
        id="complete_high_priority",
        title="Priority Crusher",
        description="Complete a high-priority task",
        progress_type_detail="high_priority_task",
        target=1,
        reward=40,
        icon="⚡",
    ),
    QuestTemplate(
        id="complete_5_tasks",
        title="Task Finisher",
        description="Complete 5 tasks today",
        progress_type_detail="complete_tasks",
        target=5,
        reward=45,
        icon="✅",
    ),
    QuestTemplate(
        id="process_3_emails",
        title="Inbox Hero",
        description="Process 3 emails into tasks",
        progress_type_detail="process_emails",
        target=3,
        reward=35,
        icon="📧",
    ),
]

WEEKLY_CHALLENGES: List[QuestTemplate] = [
    QuestTemplate(
        id="complete_20_week",
        title="Weekly Warrior",
        description="Complete 20 tasks this week",
        progress_type_detail="complete_tasks",
        target=20,
        reward=200,
        icon="⚔️",
    ),
    QuestTemplate(
        id="focus_5_days",
        title="Focus Streak",
        description="Complete a focus session 5 days this week",
        progress_type_detail="focus_streak",
        target=5,
        reward=150,
        icon="🔥",
    ),
    QuestTemplate(
        id="ai_planner_3",
        title="AI Assistant",
        description="Use the AI planner 3 times",
        progress_type_detail="use_ai_planner",
        target=3,
        reward=100,
        icon="🤖",
    ),
    QuestTemplate(
        id="visit_all_locations",
        title="Location Explorer",
        description="Visit all 5 work locations",
        progress_type_detail="visit_locations",
        target=5,
        reward=175,
        icon="📍",
    ),
    QuestTemplate(
        id="process_10_emails",
        title="Email Zero",
        description="Process 10 emails into tasks",
        progress_type_detail="process_emails",
        target=10,
        reward=125,
        icon="📨",
    ),
    QuestTemplate(
        id="deep_work_3_hours",
        title="Deep Work",
        description="Accumulate 3 hours of focus time",
        progress_type_detail="deep_work",
        target=3,
        reward=180,
        icon="🎯",
    ),
]


def daily_period_key(day) -> str:
    return f"daily:{day.isoformat()}"


def weekly_period_key(week_start) -> str:
    return f"weekly:{week_start.date().isoformat()}"


class QuestTracker:
    """Generates quest instances and applies progress events to them"""

    def __init__(
        self,
        repository: GamificationRepository,
        awarder: XPAwarder,
        notifier: NotificationEmitter,
        clock: Clock,
        rng: Optional[random.Random] = None,
        daily_count: int = DAILY_QUEST_COUNT,
    ):
        self.repository = repository
        self.awarder = awarder
        self.notifier = notifier
        self.clock = clock
        self.rng = rng or random.Random()
        self.daily_count = min(daily_count, len(DAILY_QUESTS))

    # ==========================================
    # Generation
    # ==========================================

    async def generate_daily_quests(self, user_id: str) -> List[QuestInstance]:
        """
        Today's quests, creating them on the first call of the local day

        Raises:
            UserNotFoundError: user does not exist
        """
        await self._require_user(user_id, "generate_daily_quests")
        now = self.clock.now()
        today = self.clock.local_date(now)
        return await self._generate(
            user_id,
            scope=QuestScope.DAILY,
            catalog=DAILY_QUESTS,
            count=self.daily_count,
            period_key=daily_period_key(today),
            expires_at=self.clock.day_end(today),
        )

    async def generate_weekly_challenge(self, user_id: str) -> Optional[QuestInstance]:
        """
        This week's challenge, creating it on the first call of the week

        Raises:
            UserNotFoundError: user does not exist
        """
        await self._require_user(user_id, "generate_weekly_challenge")
        week_start = self.clock.week_start(self.clock.today())
        challenges = await self._generate(
            user_id,
            scope=QuestScope.WEEKLY,
            catalog=WEEKLY_CHALLENGES,
            count=1,
            period_key=weekly_period_key(week_start),
            expires_at=week_start + timedelta(days=7),
        )
        return challenges[0] if challenges else None

    async def _generate(
        self,
        user_id: str,
        scope: QuestScope,
        catalog: List[QuestTemplate],
        count: int,
        period_key: str,
        expires_at,
    ) -> List[QuestInstance]:
        existing = await self.repository.find_quests(user_id, quest_type=scope, period_key=period_key)
        if len(existing) >= count:
            return existing

        # Fill only the slots a concurrent generator has not taken yet
        taken_ids = {q.quest_catalog_id for q in existing}
        taken_slots = {q.slot for q in existing}
        free_slots = [slot for slot in range(count) if slot not in taken_slots]
        candidates = [t for t in catalog if t.id not in taken_ids]
        picks = self.rng.sample(candidates, k=min(len(free_slots), len(candidates)))

        now = self.clock.now()
        created = 0
        for slot, template in zip(free_slots, picks):
            inserted = await self.repository.insert_quest(
                QuestInstance(
                    id=str(uuid.uuid4()),
                    user_id=user_id,
                    quest_catalog_id=template.id,
                    quest_type=scope,
                    progress_type_detail=template.progress_type_detail,
                    title=template.title,
                    description=template.description,
                    target_count=template.target,
                    xp_reward=template.reward,
                    expires_at=expires_at,
                    icon=template.icon,
                    period_key=period_key,
                    slot=slot,
                    created_at=now,
                )
            )
            if inserted is not None:
                created += 1

        if created:
            quests_generated_total.labels(quest_type=scope.value).inc(created)
            logger.info(f"Generated {created} {scope.value} quest(s) for user {user_id} ({period_key})")

        # Re-read so a losing concurrent generator returns the winner's rows
        return await self.repository.find_quests(user_id, quest_type=scope, period_key=period_key)

    # ==========================================
    # Progress
    # ==========================================

    async def apply_progress(
        self,
        user_id: str,
        progress_type_detail: str,
        increment: int = 1,
        scope: QuestScope = QuestScope.DAILY,
    ) -> QuestUpdateResult:
        """
        Add progress to the user's active, unexpired quests of a type

        No matching quest is a successful no-op. A quest that reaches its
        target is completed and rewarded once, even if progress events race.

        Raises:
            ValidationError: increment is not positive or scope is unknown
            UserNotFoundError: user does not exist
        """
        if increment <= 0:
            raise ValidationError("Quest progress increment must be positive", field="increment", value=increment)
        try:
            scope = QuestScope(scope)
        except ValueError:
            raise ValidationError(f"Unknown quest scope '{scope}'", field="scope", value=str(scope))
        await self._require_user(user_id, "apply_quest_progress")

        now = self.clock.now()
        quests = [
            q for q in await self.repository.find_quests(
                user_id,
                quest_type=scope,
                progress_type_detail=progress_type_detail,
                status=QuestStatus.ACTIVE,
            )
            if not q.is_expired(now)
        ]
        if not quests:
            return QuestUpdateResult(reason="no_active_quest")

        results = []
        for quest in quests:
            updated, reward = await self._advance(quest, increment, now)
            if updated is None:
                continue
            results.append(
                QuestProgressResult(
                    quest_id=updated.id,
                    title=updated.title,
                    progress=updated.progress_current,
                    target=updated.target_count,
                    completed=updated.is_completed,
                    reward=reward,
                )
            )

        return QuestUpdateResult(updated=bool(results), results=results)

    async def complete_quest(self, user_id: str, quest_id: str) -> QuestUpdateResult:
        """
        Force a quest to its target and complete it

        Idempotent: an already-completed quest returns already_completed=True
        without a second award.

        Raises:
            QuestNotFoundError: no such quest for this user
        """
        quest = await self.repository.get_quest(quest_id)
        if quest is None or quest.user_id != user_id:
            raise QuestNotFoundError(quest_id, user_id=user_id, operation="complete_quest")

        if quest.is_completed:
            return QuestUpdateResult(already_completed=True)

        now = self.clock.now()
        if quest.is_expired(now):
            return QuestUpdateResult(success=False, reason="expired")

        updated, reward = await self._advance(quest, quest.target_count, now)
        if updated is None:
            # Lost a race with another completion
            return QuestUpdateResult(already_completed=True)

        return QuestUpdateResult(
            updated=True,
            results=[
                QuestProgressResult(
                    quest_id=updated.id,
                    title=updated.title,
                    progress=updated.progress_current,
                    target=updated.target_count,
                    completed=True,
                    reward=reward,
                )
            ],
        )

    async def _advance(
        self,
        quest: QuestInstance,
        increment: int,
        now: datetime,
    ) -> Tuple[Optional[QuestInstance], Optional[int]]:
        """
        Add progress and, if that completes the quest, pay it in the same write

        The quest's face-value reward is prepared up front; the repository
        records it only for the call that flips the quest to completed.
        Returns the updated quest (None if it was no longer active) and the
        XP paid (None unless this call completed it).
        """
        weekly = quest.quest_type == QuestScope.WEEKLY
        pending = await self.awarder.prepare(
            quest.user_id,
            RewardKey.WEEKLY_CHALLENGE_COMPLETE if weekly else RewardKey.QUEST_COMPLETE,
            context=XPContext(check_back_to_back=False, allow_variable_reward=False),
            metadata={"quest_id": quest.id, "quest_catalog_id": quest.quest_catalog_id},
            base_xp=quest.xp_reward,
        )
        updated, totals = await self.repository.advance_quest(
            quest.id, increment, now, reward=pending.entry, level_for=level_number
        )
        if updated is None or not updated.is_completed:
            return updated, None

        award = await self.awarder.settle(pending, totals)
        await self._announce(updated)
        return updated, award.xp_awarded

    async def _announce(self, quest: QuestInstance) -> None:
        weekly = quest.quest_type == QuestScope.WEEKLY
        quests_completed_total.labels(quest_type=quest.quest_type.value).inc()
        logger.info(f"User {quest.user_id} completed {quest.quest_type.value} quest '{quest.title}'")

        await safe_emit(
            self.notifier,
            NotificationType.WEEKLY_CHALLENGE_COMPLETED if weekly else NotificationType.QUEST_COMPLETED,
            quest.user_id,
            {"quest_id": quest.id, "title": quest.title, "xp_reward": quest.xp_reward},
        )

    # ==========================================
    # Queries
    # ==========================================

    async def get_active_quests(self, user_id: str) -> List[QuestInstance]:
        """Unexpired daily quests and weekly challenge for display (active or completed)"""
        now = self.clock.now()
        daily = await self.repository.find_quests(
            user_id,
            quest_type=QuestScope.DAILY,
            period_key=daily_period_key(self.clock.local_date(now)),
        )
        weekly = await self.repository.find_quests(
            user_id,
            quest_type=QuestScope.WEEKLY,
            period_key=weekly_period_key(self.clock.week_start(self.clock.local_date(now))),
        )
        return [q for q in daily + weekly if not q.is_expired(now)]

    async def _require_user(self, user_id: str, operation: str) -> None:
        if await self.repository.get_user_progress(user_id) is None:
            raise UserNotFoundError(user_id, operation=operation)
