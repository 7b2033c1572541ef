"""
XP Award Calculator

Turns a reward key plus context into an XP award, records it atomically,
and announces level-ups.

Award rules:
- Base XP comes from the reward table (see rewards.XP_REWARDS) unless the
  caller passes base_xp (quest and achievement rewards)
- Multiplier starts at 1.0 and adds:
    +0.5 task energy matches the user's current energy
    +0.2 performed during an active focus session
    +0.3 previous XP event for this user within 30 minutes (back-to-back)
- floor(base * multiplier)
- Variable reward: 20% chance of an extra 1-10 XP, rolled after the multiplier
"""

import logging
import math
import random
from datetime import timedelta
from typing import Any, Dict, List, Optional

from pydantic import BaseModel

from taskquest.config import BACK_TO_BACK_WINDOW_MINUTES, VARIABLE_REWARD_CHANCE, VARIABLE_REWARD_MAX
from taskquest.db.repository import GamificationRepository
from taskquest.exceptions import UserNotFoundError, ValidationError
from taskquest.gamification.level_curve import level_number, level_of, progress_percent
from taskquest.gamification.rewards import RewardKey, XP_REWARDS, parse_reward_key
from taskquest.models.progress import PointsLogEntry, XPTotals
from taskquest.observability.metrics import (
    level_ups_total,
    variable_rewards_total,
    xp_awarded_points_total,
    xp_awards_total,
)
from taskquest.services.notifications import NotificationEmitter, NotificationType, safe_emit
from taskquest.utils.clock import Clock

logger = logging.getLogger(__name__)

ENERGY_MATCH_BONUS = 0.5
FOCUS_SESSION_BONUS = 0.2
BACK_TO_BACK_BONUS = 0.3


class XPContext(BaseModel):
    """Conditions of the rewarded action"""
    task_energy_level: Optional[str] = None
    user_energy_level: Optional[str] = None
    in_focus_session: bool = False
    # Fixed-value rewards (quests, achievements) turn these off
    check_back_to_back: bool = True
    allow_variable_reward: bool = True

    @property
    def energy_matches(self) -> bool:
        return self.task_energy_level is not None and self.task_energy_level == self.user_energy_level


class XPMultipliers(BaseModel):
    energy_match: bool = False
    focus_session: bool = False
    back_to_back: bool = False


class XPCalculation(BaseModel):
    """Breakdown of a single award"""
    base_xp: int
    multiplier: float
    multiplied_xp: int
    bonus_xp: int
    total_xp: int
    energy_match: bool
    focus_session: bool
    back_to_back: bool


class PendingAward(BaseModel):
    """An award computed against the user's current progress but not yet written"""
    entry: PointsLogEntry
    calculation: XPCalculation


class XPAwardResult(BaseModel):
    xp_awarded: int
    new_total: int
    new_level: int
    leveled_up: bool
    previous_total: int
    previous_level: int
    calculation: XPCalculation


def calculate_xp_with_multipliers(
    base_xp: int,
    multipliers: Optional[XPMultipliers] = None,
    rng: Optional[random.Random] = None,
    allow_variable_reward: bool = True,
    variable_chance: float = VARIABLE_REWARD_CHANCE,
    variable_max: int = VARIABLE_REWARD_MAX,
) -> XPCalculation:
    """
    Apply multipliers and the variable reward to a base amount

    Pure apart from the rng draws. Pass a seeded or stubbed random.Random
    for deterministic results.

    Example:
        >>> calculate_xp_with_multipliers(
        ...     20, XPMultipliers(energy_match=True, back_to_back=True), allow_variable_reward=False
        ... ).total_xp
        36
    """
    multipliers = multipliers or XPMultipliers()
    rng = rng or random.Random()

    multiplier = 1.0
    if multipliers.energy_match:
        multiplier += ENERGY_MATCH_BONUS
    if multipliers.focus_session:
        multiplier += FOCUS_SESSION_BONUS
    if multipliers.back_to_back:
        multiplier += BACK_TO_BACK_BONUS

    # round() first so 20 * 1.8 floors to 36, not 35
    multiplied_xp = math.floor(round(base_xp * multiplier, 6))

    bonus_xp = 0
    if allow_variable_reward and rng.random() < variable_chance:
        bonus_xp = rng.randint(1, variable_max)

    return XPCalculation(
        base_xp=base_xp,
        multiplier=round(multiplier, 2),
        multiplied_xp=multiplied_xp,
        bonus_xp=bonus_xp,
        total_xp=multiplied_xp + bonus_xp,
        energy_match=multipliers.energy_match,
        focus_session=multipliers.focus_session,
        back_to_back=multipliers.back_to_back,
    )


class XPAwarder:
    """
    Single funnel for every XP change

    Plain actions go through award(). Streak milestones, quest completions
    and achievement unlocks prepare() the award, hand the entry to the
    repository write that earns it, and settle() the committed totals, so
    the state change and its XP land in one transaction.
    """

    def __init__(
        self,
        repository: GamificationRepository,
        notifier: NotificationEmitter,
        clock: Clock,
        rng: Optional[random.Random] = None,
    ):
        self.repository = repository
        self.notifier = notifier
        self.clock = clock
        self.rng = rng or random.Random()

    async def award(
        self,
        user_id: str,
        reason_key: RewardKey,
        context: Optional[XPContext] = None,
        metadata: Optional[Dict[str, Any]] = None,
        base_xp: Optional[int] = None,
    ) -> XPAwardResult:
        """
        Award XP for an action

        Raises:
            ValidationError: unknown reason_key or negative base_xp (nothing written)
            UserNotFoundError: user does not exist (nothing written)
        """
        pending = await self.prepare(user_id, reason_key, context, metadata, base_xp)
        totals = await self.repository.record_xp_award(pending.entry, level_number)
        return await self.settle(pending, totals)

    async def prepare(
        self,
        user_id: str,
        reason_key: RewardKey,
        context: Optional[XPContext] = None,
        metadata: Optional[Dict[str, Any]] = None,
        base_xp: Optional[int] = None,
    ) -> PendingAward:
        """
        Compute an award without writing it

        Args:
            user_id: User UUID
            reason_key: Entry of the reward table
            context: Multiplier conditions (defaults to none active)
            metadata: Extra fields stored on the points-log row
            base_xp: Override for the table amount

        Raises:
            ValidationError: unknown reason_key or negative base_xp (nothing written)
            UserNotFoundError: user does not exist (nothing written)
        """
        key = parse_reward_key(reason_key)
        context = context or XPContext()
        if base_xp is None:
            base_xp = XP_REWARDS[key]
        elif base_xp < 0:
            raise ValidationError("base_xp must not be negative", field="base_xp", value=base_xp)

        progress = await self.repository.get_user_progress(user_id)
        if progress is None:
            raise UserNotFoundError(user_id, operation="award_xp")

        now = self.clock.now()
        back_to_back = False
        if context.check_back_to_back and progress.last_xp_event_at is not None:
            elapsed = now - progress.last_xp_event_at
            back_to_back = timedelta(0) <= elapsed <= timedelta(minutes=BACK_TO_BACK_WINDOW_MINUTES)

        calculation = calculate_xp_with_multipliers(
            base_xp,
            XPMultipliers(
                energy_match=context.energy_matches,
                focus_session=context.in_focus_session,
                back_to_back=back_to_back,
            ),
            rng=self.rng,
            allow_variable_reward=context.allow_variable_reward,
        )

        entry = PointsLogEntry(
            user_id=user_id,
            points=calculation.total_xp,
            reason_key=key.value,
            metadata={
                **(metadata or {}),
                "base_xp": calculation.base_xp,
                "multiplier": calculation.multiplier,
                "bonus_xp": calculation.bonus_xp,
                "energy_match": calculation.energy_match,
                "focus_session": calculation.focus_session,
                "back_to_back": calculation.back_to_back,
            },
            created_at=now,
        )
        return PendingAward(entry=entry, calculation=calculation)

    async def settle(self, pending: PendingAward, totals: XPTotals) -> XPAwardResult:
        """Count, log and announce an award the repository has committed"""
        calculation = pending.calculation
        user_id = pending.entry.user_id
        key = RewardKey(pending.entry.reason_key)

        xp_awards_total.labels(reason_key=key.value).inc()
        xp_awarded_points_total.labels(reason_key=key.value).inc(calculation.total_xp)
        if calculation.bonus_xp:
            variable_rewards_total.inc()

        leveled_up = totals.new_level > totals.previous_level
        logger.info(
            f"Awarded {calculation.total_xp} XP to user {user_id} for {key.value} "
            f"(base {calculation.base_xp}, x{calculation.multiplier}, bonus {calculation.bonus_xp}), "
            f"total {totals.previous_total} -> {totals.new_total}"
        )

        if leveled_up:
            level_info = level_of(totals.new_total)
            level_ups_total.labels(new_level=str(totals.new_level)).inc()
            logger.info(f"User {user_id} leveled up: {totals.previous_level} -> {totals.new_level}")
            await safe_emit(
                self.notifier,
                NotificationType.LEVEL_UP,
                user_id,
                {
                    "level": totals.new_level,
                    "title": level_info.title,
                    "previous_level": totals.previous_level,
                    "total_xp": totals.new_total,
                },
            )

        return XPAwardResult(
            xp_awarded=calculation.total_xp,
            new_total=totals.new_total,
            new_level=totals.new_level,
            leveled_up=leveled_up,
            previous_total=totals.previous_total,
            previous_level=totals.previous_level,
            calculation=calculation,
        )

    async def get_user_xp(self, user_id: str) -> Dict[str, Any]:
        """
        Get user's XP and level info

        Returns:
            {
                'user_id': str,
                'total_xp': int,
                'level': int,
                'title': str,
                'xp_to_next_level': int,
                'progress_percent': float
            }
        """
        progress = await self.repository.get_user_progress(user_id)
        if progress is None:
            raise UserNotFoundError(user_id, operation="get_user_xp")

        level_info = level_of(progress.total_xp)
        return {
            "user_id": user_id,
            "total_xp": progress.total_xp,
            "level": progress.current_level,
            "title": level_info.title,
            "xp_to_next_level": level_info.xp_to_next,
            "progress_percent": round(progress_percent(progress.total_xp), 1),
        }

    async def get_xp_history(self, user_id: str, days: int = 7, limit: int = 50) -> List[PointsLogEntry]:
        """Points-log entries from the last ``days`` days, newest first"""
        since = self.clock.now() - timedelta(days=days)
        return await self.repository.get_points_log(user_id, since=since, limit=limit)
