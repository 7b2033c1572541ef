"""
Notification emitters

The gamification core hands user-facing events (level-ups, unlocked
achievements, completed quests, streaks at risk) to a NotificationEmitter.
Delivery is fire-and-forget: callers go through safe_emit(), which logs
and counts failures instead of raising them, so a broken notification
channel never rolls back the XP, streak or quest change that caused it.
"""

import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Dict

from psycopg.types.json import Jsonb

from taskquest.db.connection import Database, db
from taskquest.exceptions import NotificationError
from taskquest.observability.metrics import notification_failures_total, notifications_emitted_total

logger = logging.getLogger(__name__)


class NotificationType(str, Enum):
    LEVEL_UP = "level_up"
    ACHIEVEMENT_UNLOCKED = "achievement_unlocked"
    QUEST_COMPLETED = "quest_completed"
    WEEKLY_CHALLENGE_COMPLETED = "weekly_challenge_completed"
    STREAK_AT_RISK = "streak_at_risk"


def render_notification(notification_type: NotificationType, payload: Dict[str, Any]) -> tuple[str, str]:
    """
    Title and message text for a notification

    Payload keys by type:
    - level_up: level, title
    - achievement_unlocked: name, xp_reward
    - quest_completed / weekly_challenge_completed: title, xp_reward
    - streak_at_risk: streak_type, current_count, hours_remaining
    """
    notification_type = NotificationType(notification_type)

    if notification_type == NotificationType.LEVEL_UP:
        return (
            "🎉 Level Up!",
            f"Congratulations! You've reached Level {payload['level']} - {payload['title']}!",
        )
    if notification_type == NotificationType.ACHIEVEMENT_UNLOCKED:
        return (
            "🏆 Achievement Unlocked!",
            f"You earned \"{payload['name']}\"! +{payload.get('xp_reward', 0)} XP",
        )
    if notification_type == NotificationType.QUEST_COMPLETED:
        return (
            "✅ Quest Complete!",
            f"\"{payload['title']}\" completed! +{payload['xp_reward']} XP",
        )
    if notification_type == NotificationType.WEEKLY_CHALLENGE_COMPLETED:
        return (
            "🏅 Weekly Challenge Complete!",
            f"\"{payload['title']}\" completed! +{payload['xp_reward']} XP",
        )
    hours = payload.get('hours_remaining', 0)
    return (
        "🔥 Streak at Risk!",
        f"Your {payload['current_count']}-day {payload['streak_type']} streak ends in {hours:.0f} hours. Keep it going!",
    )


class NotificationEmitter(ABC):
    """Delivers notifications; implementations may raise on failure"""

    @abstractmethod
    async def emit(self, notification_type: NotificationType, user_id: str, payload: Dict[str, Any]) -> None:
        pass


class LoggingNotifier(NotificationEmitter):
    """Writes notifications to the log only"""

    async def emit(self, notification_type: NotificationType, user_id: str, payload: Dict[str, Any]) -> None:
        title, message = render_notification(notification_type, payload)
        logger.info(f"[NOTIFY] {user_id} {NotificationType(notification_type).value}: {title} {message}")


class PostgresNotifier(NotificationEmitter):
    """Inserts notifications into the notifications table for the dashboard to display"""

    def __init__(self, database: Database = db):
        self.database = database

    async def emit(self, notification_type: NotificationType, user_id: str, payload: Dict[str, Any]) -> None:
        notification_type = NotificationType(notification_type)
        title, message = render_notification(notification_type, payload)

        async with self.database.transaction() as conn:
            async with conn.cursor() as cur:
                await cur.execute(
                    """
                    INSERT INTO notifications (user_id, type, title, message, data)
                    VALUES (%s, %s, %s, %s, %s)
                    """,
                    (user_id, notification_type.value, title, message, Jsonb(payload))
                )


async def safe_emit(
    emitter: NotificationEmitter,
    notification_type: NotificationType,
    user_id: str,
    payload: Dict[str, Any],
) -> bool:
    """
    Emit a notification without ever raising

    Returns True if the emitter accepted it, False if it failed (the failure
    is logged as a NotificationError and counted).
    """
    notification_type = NotificationType(notification_type)
    try:
        await emitter.emit(notification_type, user_id, payload)
    except Exception as e:
        notification_failures_total.labels(notification_type=notification_type.value).inc()
        # Constructing the error logs it
        NotificationError(
            f"Failed to emit {notification_type.value} notification: {e}",
            notification_type=notification_type.value,
            user_id=user_id,
            operation="emit",
            cause=e,
        )
        return False

    notifications_emitted_total.labels(notification_type=notification_type.value).inc()
    return True


def create_notifier(backend: str, database: Database = db) -> NotificationEmitter:
    """Build the emitter named by NOTIFICATIONS_BACKEND"""
    if backend == "database":
        return PostgresNotifier(database)
    if backend == "log":
        return LoggingNotifier()
    raise ValueError(f"Unknown notifications backend '{backend}'")
