"""
Streak Tracking System

Tracks consecutive-day activity per (user, streak type).

Streak Rules:
- Days are calendar dates in the clock's reference timezone; elapsed hours
  never matter (30 hours apart across one midnight is consecutive)
- Maintained already today: no change
- Maintained yesterday: +1, longest = max(longest, current)
- Older: broken, restarts at 1 (today counts as day one)
- Milestones at 3, 7 and 30 days award streak bonus XP once per crossing
"""

import logging
from typing import List, Optional

from taskquest.config import STREAK_RISK_HOURS
from taskquest.db.repository import GamificationRepository
from taskquest.exceptions import UserNotFoundError, ValidationError
from taskquest.gamification.level_curve import level_number
from taskquest.gamification.rewards import RewardKey
from taskquest.gamification.xp_system import XPAwarder
from taskquest.models.streak import Streak, StreakResult, StreakType
from taskquest.observability.metrics import streak_milestones_total, streak_transitions_total
from taskquest.services.notifications import NotificationEmitter, NotificationType, safe_emit
from taskquest.utils.clock import Clock

logger = logging.getLogger(__name__)

STREAK_MILESTONES = {
    3: RewardKey.STREAK_3_DAY,
    7: RewardKey.STREAK_7_DAY,
    30: RewardKey.STREAK_30_DAY,
}


def parse_streak_type(streak_type) -> StreakType:
    try:
        return StreakType(streak_type)
    except ValueError:
        raise ValidationError(
            f"Unknown streak type '{streak_type}'",
            field="streak_type",
            value=str(streak_type),
        )


class StreakTracker:
    """Maintains streak rows and pays milestone bonuses through the XP awarder"""

    def __init__(
        self,
        repository: GamificationRepository,
        awarder: XPAwarder,
        notifier: NotificationEmitter,
        clock: Clock,
    ):
        self.repository = repository
        self.awarder = awarder
        self.notifier = notifier
        self.clock = clock

    async def maintain(self, user_id: str, streak_type: StreakType) -> StreakResult:
        """
        Record today's activity for a streak

        Safe to call on every qualifying action; only the first call of a
        local day changes anything.

        Raises:
            ValidationError: unknown streak type
            UserNotFoundError: user does not exist
        """
        streak_type = parse_streak_type(streak_type)
        if await self.repository.get_user_progress(user_id) is None:
            raise UserNotFoundError(user_id, operation="maintain_streak")

        now = self.clock.now()
        today = self.clock.local_date(now)

        existing = await self.repository.get_streak(user_id, streak_type)
        if existing is None:
            created = await self.repository.create_streak(
                Streak(
                    user_id=user_id,
                    streak_type=streak_type,
                    current_count=1,
                    longest_count=1,
                    last_maintained_at=now,
                )
            )
            if created is not None:
                streak_transitions_total.labels(streak_type=streak_type.value, outcome="created").inc()
                logger.info(f"Started {streak_type.value} streak for user {user_id}")
                return StreakResult(
                    streak_type=streak_type,
                    current_count=1,
                    longest_count=1,
                    is_new_streak=True,
                )
            # Another request created it first; treat this call as same-day
            existing = await self.repository.get_streak(user_id, streak_type)
            return self._unchanged(existing)

        last_day = self.clock.local_date(existing.last_maintained_at)
        if last_day >= today:
            streak_transitions_total.labels(streak_type=streak_type.value, outcome="same_day").inc()
            return self._unchanged(existing)

        was_broken = False
        if (today - last_day).days == 1:
            new_count = existing.current_count + 1
            outcome = "continued"
        else:
            new_count = 1
            was_broken = True
            outcome = "broken"

        updated = existing.model_copy(
            update={
                "current_count": new_count,
                "longest_count": max(existing.longest_count, new_count),
                "last_maintained_at": now,
            }
        )
        pending = None
        milestone_key = STREAK_MILESTONES.get(new_count)
        if milestone_key is not None:
            pending = await self.awarder.prepare(
                user_id,
                milestone_key,
                metadata={"streak_type": streak_type.value, "streak_count": new_count},
            )

        # The milestone bonus commits with the streak row or not at all
        applied, totals = await self.repository.update_streak(
            updated,
            existing.last_maintained_at,
            reward=pending.entry if pending else None,
            level_for=level_number,
        )
        if not applied:
            # Concurrent maintain already moved it today
            current = await self.repository.get_streak(user_id, streak_type)
            return self._unchanged(current)

        streak_transitions_total.labels(streak_type=streak_type.value, outcome=outcome).inc()
        if was_broken:
            logger.info(
                f"User {user_id} {streak_type.value} streak broken after {existing.current_count} days "
                f"(last maintained {last_day})"
            )

        bonus_awarded = None
        if pending is not None:
            award = await self.awarder.settle(pending, totals)
            bonus_awarded = award.xp_awarded
            streak_milestones_total.labels(milestone=str(new_count)).inc()
            logger.info(f"User {user_id} reached {new_count}-day {streak_type.value} streak (+{bonus_awarded} XP)")

        return StreakResult(
            streak_type=streak_type,
            current_count=updated.current_count,
            longest_count=updated.longest_count,
            was_broken=was_broken,
            bonus_awarded=bonus_awarded,
        )

    def _unchanged(self, streak: Optional[Streak]) -> StreakResult:
        return StreakResult(
            streak_type=streak.streak_type,
            current_count=streak.current_count,
            longest_count=streak.longest_count,
        )

    async def get_user_streaks(self, user_id: str) -> List[Streak]:
        """All streaks for user, longest-running first"""
        streaks = await self.repository.get_streaks(user_id)
        return sorted(streaks, key=lambda s: (s.current_count, s.longest_count), reverse=True)

    async def check_streaks_at_risk(self, user_id: str) -> List[Streak]:
        """
        Warn about streaks that end at midnight unless extended today

        A streak is at risk when it was last maintained yesterday and no more
        than STREAK_RISK_HOURS remain in the local day. Emits one
        streak_at_risk notification per streak and returns them.
        """
        hours_remaining = self.clock.hours_until_midnight()
        if hours_remaining > STREAK_RISK_HOURS:
            return []

        yesterday = self.clock.yesterday()
        at_risk = [
            streak for streak in await self.repository.get_streaks(user_id)
            if streak.current_count > 0 and self.clock.local_date(streak.last_maintained_at) == yesterday
        ]

        for streak in at_risk:
            await safe_emit(
                self.notifier,
                NotificationType.STREAK_AT_RISK,
                user_id,
                {
                    "streak_type": streak.streak_type.value,
                    "current_count": streak.current_count,
                    "hours_remaining": round(hours_remaining, 1),
                },
            )

        if at_risk:
            logger.info(f"{len(at_risk)} streak(s) at risk for user {user_id}")
        return at_risk
