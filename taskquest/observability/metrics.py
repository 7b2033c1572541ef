"""
Prometheus metrics definitions for the gamification core.

Metrics are organized by category:
- XP metrics: Awards, amounts, level-ups
- Streak metrics: Continuations, breaks, milestones
- Quest metrics: Generated instances, completions
- Achievement metrics: Unlocks, skipped catalog entries
- Notification metrics: Emitted and swallowed notifications

The host application exposes these through its own /metrics endpoint.
"""

import logging
from prometheus_client import Counter

logger = logging.getLogger(__name__)

# =============================================================================
# XP Metrics
# =============================================================================

xp_awards_total = Counter(
    "taskquest_xp_awards_total",
    "Total XP awards recorded",
    ["reason_key"],
)

xp_awarded_points_total = Counter(
    "taskquest_xp_awarded_points_total",
    "Total XP points awarded",
    ["reason_key"],
)

variable_rewards_total = Counter(
    "taskquest_variable_rewards_total",
    "Awards that received a random bonus",
)

level_ups_total = Counter(
    "taskquest_level_ups_total",
    "Total level-ups",
    ["new_level"],
)

# =============================================================================
# Streak Metrics
# =============================================================================

streak_transitions_total = Counter(
    "taskquest_streak_transitions_total",
    "Streak maintain() outcomes",
    ["streak_type", "outcome"],  # outcome: created/continued/broken/same_day
)

streak_milestones_total = Counter(
    "taskquest_streak_milestones_total",
    "Streak milestone bonuses awarded",
    ["milestone"],
)

# =============================================================================
# Quest Metrics
# =============================================================================

quests_generated_total = Counter(
    "taskquest_quests_generated_total",
    "Quest instances created",
    ["quest_type"],  # daily/weekly
)

quests_completed_total = Counter(
    "taskquest_quests_completed_total",
    "Quest instances completed",
    ["quest_type"],
)

# =============================================================================
# Achievement Metrics
# =============================================================================

achievements_unlocked_total = Counter(
    "taskquest_achievements_unlocked_total",
    "Achievements granted",
    ["achievement_id"],
)

achievement_criteria_errors_total = Counter(
    "taskquest_achievement_criteria_errors_total",
    "Catalog entries skipped because their criteria could not be resolved",
    ["achievement_id"],
)

# =============================================================================
# Notification Metrics
# =============================================================================

notifications_emitted_total = Counter(
    "taskquest_notifications_emitted_total",
    "Notifications handed to the emitter",
    ["notification_type"],
)

notification_failures_total = Counter(
    "taskquest_notification_failures_total",
    "Notification failures swallowed by safe_emit",
    ["notification_type"],
)
