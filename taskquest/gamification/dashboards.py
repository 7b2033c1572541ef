"""
Gamification dashboard stats

Read-side aggregation of level, XP, streaks, quests and achievements for the
dashboard header and profile page. Nothing here writes.
"""

import logging
from typing import Any, Dict

from taskquest.db.repository import GamificationRepository
from taskquest.exceptions import UserNotFoundError
from taskquest.gamification.level_curve import level_of, progress_percent
from taskquest.gamification.quests import daily_period_key, weekly_period_key
from taskquest.models.quest import QuestScope
from taskquest.utils.clock import Clock

logger = logging.getLogger(__name__)


async def get_gamification_stats(
    repository: GamificationRepository,
    clock: Clock,
    user_id: str,
) -> Dict[str, Any]:
    """
    Collect the numbers the dashboard shows

    Returns:
        {
            'total_xp': int,
            'level': int,
            'title': str,
            'xp_to_next_level': int,
            'xp_progress': float,      # percent toward next level
            'xp_today': int,
            'streaks': {streak_type: {'current': int, 'longest': int}},
            'daily_quests_completed': int,
            'daily_quests_total': int,
            'weekly_challenge': dict | None,
            'achievements_unlocked': int
        }
    """
    progress = await repository.get_user_progress(user_id)
    if progress is None:
        raise UserNotFoundError(user_id, operation="get_gamification_stats")

    now = clock.now()
    today = clock.local_date(now)
    level_info = level_of(progress.total_xp)

    today_entries = await repository.get_points_log(user_id, since=clock.day_start(today), limit=1000)
    streaks = await repository.get_streaks(user_id)

    daily = [
        q for q in await repository.find_quests(
            user_id, quest_type=QuestScope.DAILY, period_key=daily_period_key(today)
        )
        if not q.is_expired(now)
    ]
    weekly = [
        q for q in await repository.find_quests(
            user_id, quest_type=QuestScope.WEEKLY, period_key=weekly_period_key(clock.week_start(today))
        )
        if not q.is_expired(now)
    ]
    grants = await repository.get_achievement_grants(user_id)

    weekly_challenge = None
    if weekly:
        challenge = weekly[0]
        weekly_challenge = {
            "title": challenge.title,
            "progress": challenge.progress_current,
            "target": challenge.target_count,
            "completed": challenge.is_completed,
            "expires_at": challenge.expires_at,
        }

    return {
        "total_xp": progress.total_xp,
        "level": progress.current_level,
        "title": level_info.title,
        "xp_to_next_level": level_info.xp_to_next,
        "xp_progress": round(progress_percent(progress.total_xp), 1),
        "xp_today": sum(e.points for e in today_entries),
        "streaks": {
            s.streak_type.value: {"current": s.current_count, "longest": s.longest_count}
            for s in streaks
        },
        "daily_quests_completed": sum(1 for q in daily if q.is_completed),
        "daily_quests_total": len(daily),
        "weekly_challenge": weekly_challenge,
        "achievements_unlocked": len(grants),
    }


def format_stats_display(stats: Dict[str, Any]) -> str:
    """
    Plain-text summary of get_gamification_stats() output

    Example:
        Level 3 Focused - 420 XP (180 to next, 40.0%)
        Today: +35 XP | Quests 1/3
        🔥 daily_tasks: 4 days (best 9)
    """
    if stats['xp_to_next_level']:
        next_part = f"{stats['xp_to_next_level']} to next, {stats['xp_progress']}%"
    else:
        next_part = "max level"

    lines = [
        f"Level {stats['level']} {stats['title']} - {stats['total_xp']} XP ({next_part})",
        f"Today: +{stats['xp_today']} XP | Quests {stats['daily_quests_completed']}/{stats['daily_quests_total']}",
    ]

    for streak_type, counts in sorted(stats['streaks'].items(), key=lambda kv: -kv[1]['current']):
        if counts['current'] > 0:
            lines.append(f"🔥 {streak_type}: {counts['current']} days (best {counts['longest']})")

    challenge = stats.get('weekly_challenge')
    if challenge:
        status = "✅" if challenge['completed'] else f"{challenge['progress']}/{challenge['target']}"
        lines.append(f"🏅 {challenge['title']}: {status}")

    return "\n".join(lines)
