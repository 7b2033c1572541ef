"""Unit tests for notification emitters (taskquest/services/notifications.py)"""
import logging

import pytest
from prometheus_client import REGISTRY
from psycopg.types.json import Jsonb

from taskquest.services.notifications import (
    LoggingNotifier,
    NotificationType,
    PostgresNotifier,
    create_notifier,
    render_notification,
    safe_emit,
)


def failures(notification_type: str) -> float:
    value = REGISTRY.get_sample_value(
        "taskquest_notification_failures_total", {"notification_type": notification_type}
    )
    return value or 0.0


# ============================================================================
# Rendering
# ============================================================================

def test_render_level_up():
    title, message = render_notification(NotificationType.LEVEL_UP, {"level": 5, "title": "Master"})
    assert title == "🎉 Level Up!"
    assert message == "Congratulations! You've reached Level 5 - Master!"


def test_render_quest_completed():
    title, message = render_notification("quest_completed", {"title": "Focus Time", "xp_reward": 30})
    assert title == "✅ Quest Complete!"
    assert message == "\"Focus Time\" completed! +30 XP"


def test_render_streak_at_risk():
    title, message = render_notification(
        NotificationType.STREAK_AT_RISK,
        {"streak_type": "daily_tasks", "current_count": 6, "hours_remaining": 2.5},
    )
    assert title == "🔥 Streak at Risk!"
    assert "6-day daily_tasks streak" in message


def test_render_unknown_type():
    with pytest.raises(ValueError):
        render_notification("confetti", {})


# ============================================================================
# safe_emit
# ============================================================================

@pytest.mark.asyncio
async def test_safe_emit_delivers(notifier, test_user_id):
    ok = await safe_emit(notifier, NotificationType.LEVEL_UP, test_user_id, {"level": 2, "title": "Organized"})

    assert ok is True
    assert notifier.events == [("level_up", test_user_id, {"level": 2, "title": "Organized"})]


@pytest.mark.asyncio
async def test_safe_emit_swallows_failures(failing_notifier, test_user_id, caplog):
    before = failures("achievement_unlocked")

    with caplog.at_level(logging.ERROR):
        ok = await safe_emit(
            failing_notifier,
            NotificationType.ACHIEVEMENT_UNLOCKED,
            test_user_id,
            {"name": "First Capture", "xp_reward": 10},
        )

    assert ok is False
    assert failures("achievement_unlocked") == before + 1
    assert "NotificationError" in caplog.text


# ============================================================================
# Emitters
# ============================================================================

@pytest.mark.asyncio
async def test_logging_notifier(test_user_id, caplog):
    with caplog.at_level(logging.INFO, logger="taskquest.services.notifications"):
        await LoggingNotifier().emit(NotificationType.QUEST_COMPLETED, test_user_id, {"title": "Inbox Hero", "xp_reward": 35})

    assert "[NOTIFY]" in caplog.text
    assert "Inbox Hero" in caplog.text


@pytest.mark.asyncio
async def test_postgres_notifier_inserts_row(mock_database, mock_db_cursor, test_user_id):
    payload = {"level": 3, "title": "Focused"}

    await PostgresNotifier(mock_database).emit(NotificationType.LEVEL_UP, test_user_id, payload)

    assert mock_database.transactions == 1
    sql, params = mock_db_cursor.execute.call_args[0]
    assert "INSERT INTO notifications" in sql
    assert params[0] == test_user_id
    assert params[1] == "level_up"
    assert params[2] == "🎉 Level Up!"
    assert isinstance(params[4], Jsonb)
    assert params[4].obj == payload


def test_create_notifier(mock_database):
    assert isinstance(create_notifier("log"), LoggingNotifier)
    assert isinstance(create_notifier("database", mock_database), PostgresNotifier)
    with pytest.raises(ValueError):
        create_notifier("carrier_pigeon")
