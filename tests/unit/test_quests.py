"""Unit tests for daily quests and weekly challenges (taskquest/gamification/quests.py)"""
import asyncio
import uuid
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest

from taskquest.exceptions import QueryError, QuestNotFoundError, UserNotFoundError, ValidationError
from taskquest.gamification.quests import DAILY_QUESTS, WEEKLY_CHALLENGES, QuestTracker
from taskquest.gamification.xp_system import XPAwarder
from taskquest.models.quest import QuestInstance, QuestScope, QuestStatus


def make_quest(user_id, clock, **overrides) -> QuestInstance:
    """Daily 'Early Bird' instance for today, overridable per test"""
    now = clock.now()
    fields = dict(
        id=str(uuid.uuid4()),
        user_id=user_id,
        quest_catalog_id="complete_3_morning",
        quest_type=QuestScope.DAILY,
        progress_type_detail="tasks_before_noon",
        title="Early Bird",
        description="Complete 3 tasks before noon",
        target_count=3,
        xp_reward=50,
        expires_at=clock.day_end(),
        icon="🌅",
        period_key=f"daily:{now.date().isoformat()}",
        slot=0,
        created_at=now,
    )
    fields.update(overrides)
    return QuestInstance(**fields)


# ============================================================================
# Daily Generation
# ============================================================================

@pytest.mark.asyncio
async def test_generate_three_distinct_daily_quests(quest_tracker, test_user_id):
    quests = await quest_tracker.generate_daily_quests(test_user_id)

    assert len(quests) == 3
    assert len({q.quest_catalog_id for q in quests}) == 3
    assert sorted(q.slot for q in quests) == [0, 1, 2]

    catalog_ids = {t.id for t in DAILY_QUESTS}
    for quest in quests:
        assert quest.quest_catalog_id in catalog_ids
        assert quest.quest_type == QuestScope.DAILY
        assert quest.status == QuestStatus.ACTIVE
        assert quest.progress_current == 0
        assert quest.period_key == "daily:2025-06-11"
        assert quest.expires_at == datetime(2025, 6, 11, 23, 59, 59, 999000, tzinfo=timezone.utc)


@pytest.mark.asyncio
async def test_generate_daily_is_idempotent(quest_tracker, clock, test_user_id):
    first = await quest_tracker.generate_daily_quests(test_user_id)
    clock.advance(hours=5)
    second = await quest_tracker.generate_daily_quests(test_user_id)

    assert [q.id for q in first] == [q.id for q in second]


@pytest.mark.asyncio
async def test_new_day_gets_new_quests(quest_tracker, clock, repo, test_user_id):
    first = await quest_tracker.generate_daily_quests(test_user_id)
    clock.advance(days=1)
    second = await quest_tracker.generate_daily_quests(test_user_id)

    assert {q.id for q in first}.isdisjoint({q.id for q in second})
    assert all(q.period_key == "daily:2025-06-12" for q in second)
    assert len(await repo.find_quests(test_user_id, quest_type=QuestScope.DAILY)) == 6


@pytest.mark.asyncio
async def test_concurrent_generation_never_exceeds_count(quest_tracker, repo, test_user_id):
    results = await asyncio.gather(*[quest_tracker.generate_daily_quests(test_user_id) for _ in range(5)])

    stored = await repo.find_quests(test_user_id, period_key="daily:2025-06-11")
    assert 1 <= len(stored) <= 3
    assert len({q.quest_catalog_id for q in stored}) == len(stored)
    assert len({q.slot for q in stored}) == len(stored)
    for result in results:
        assert {q.id for q in result} <= {q.id for q in stored}


@pytest.mark.asyncio
async def test_generation_fills_only_free_slots(quest_tracker, repo, clock, test_user_id):
    seeded = make_quest(test_user_id, clock, slot=1)
    await repo.insert_quest(seeded)

    quests = await quest_tracker.generate_daily_quests(test_user_id)

    assert len(quests) == 3
    assert seeded.id in {q.id for q in quests}
    assert sorted(q.slot for q in quests) == [0, 1, 2]
    assert [q.quest_catalog_id for q in quests].count("complete_3_morning") == 1


@pytest.mark.asyncio
async def test_generation_respects_daily_count(repo, awarder, notifier, clock, no_bonus_rng, test_user_id):
    tracker = QuestTracker(repo, awarder, notifier, clock, no_bonus_rng, daily_count=2)
    assert len(await tracker.generate_daily_quests(test_user_id)) == 2


@pytest.mark.asyncio
async def test_generate_for_missing_user(quest_tracker):
    with pytest.raises(UserNotFoundError):
        await quest_tracker.generate_daily_quests("ghost")


# ============================================================================
# Weekly Generation
# ============================================================================

@pytest.mark.asyncio
async def test_generate_weekly_challenge(quest_tracker, test_user_id):
    challenge = await quest_tracker.generate_weekly_challenge(test_user_id)

    assert challenge.quest_type == QuestScope.WEEKLY
    assert challenge.quest_catalog_id in {t.id for t in WEEKLY_CHALLENGES}
    assert challenge.period_key == "weekly:2025-06-08"
    assert challenge.expires_at == datetime(2025, 6, 15, tzinfo=timezone.utc)


@pytest.mark.asyncio
async def test_weekly_challenge_stable_within_week(quest_tracker, clock, test_user_id):
    first = await quest_tracker.generate_weekly_challenge(test_user_id)
    clock.set(datetime(2025, 6, 14, 23, 0, tzinfo=timezone.utc))  # Saturday
    same = await quest_tracker.generate_weekly_challenge(test_user_id)
    clock.set(datetime(2025, 6, 15, 0, 30, tzinfo=timezone.utc))  # Sunday
    next_week = await quest_tracker.generate_weekly_challenge(test_user_id)

    assert same.id == first.id
    assert next_week.id != first.id
    assert next_week.period_key == "weekly:2025-06-15"


# ============================================================================
# Progress
# ============================================================================

@pytest.mark.asyncio
async def test_progress_without_matching_quest_is_noop(quest_tracker, repo, test_user_id):
    result = await quest_tracker.apply_progress(test_user_id, "log_energy")

    assert result.success is True
    assert result.updated is False
    assert result.reason == "no_active_quest"
    assert await repo.get_points_log(test_user_id) == []


@pytest.mark.asyncio
async def test_progress_increments(quest_tracker, repo, clock, test_user_id):
    quest = make_quest(test_user_id, clock)
    await repo.insert_quest(quest)

    result = await quest_tracker.apply_progress(test_user_id, "tasks_before_noon")

    assert result.updated is True
    assert result.completed is False
    assert result.results[0].progress == 1
    assert (await repo.get_quest(quest.id)).progress_current == 1


@pytest.mark.asyncio
async def test_progress_clamps_and_completes(quest_tracker, repo, clock, notifier, test_user_id):
    quest = make_quest(test_user_id, clock, progress_current=2)
    await repo.insert_quest(quest)

    result = await quest_tracker.apply_progress(test_user_id, "tasks_before_noon", increment=5)

    [progress] = result.results
    assert progress.progress == 3
    assert progress.completed is True
    assert progress.reward == 50

    stored = await repo.get_quest(quest.id)
    assert stored.status == QuestStatus.COMPLETED
    assert stored.progress_current == 3
    assert stored.completed_at == clock.now()

    [entry] = await repo.get_points_log(test_user_id)
    assert entry.reason_key == "QUEST_COMPLETE"
    assert entry.points == 50
    assert entry.metadata["quest_id"] == quest.id

    [(_, _, payload)] = notifier.of_type("quest_completed")
    assert payload["title"] == "Early Bird"
    assert payload["xp_reward"] == 50


@pytest.mark.asyncio
async def test_quest_reward_paid_at_face_value(repo, notifier, clock, bonus_rng, test_user_id):
    """Quest rewards skip back-to-back and variable bonuses"""
    repo.add_user(test_user_id, last_xp_event_at=clock.now() - timedelta(minutes=5))
    awarder = XPAwarder(repo, notifier, clock, bonus_rng)
    tracker = QuestTracker(repo, awarder, notifier, clock, bonus_rng)
    await repo.insert_quest(make_quest(test_user_id, clock, xp_reward=30, target_count=1))

    result = await tracker.apply_progress(test_user_id, "tasks_before_noon")

    assert result.results[0].reward == 30
    assert (await repo.get_user_progress(test_user_id)).total_xp == 30


@pytest.mark.asyncio
async def test_completed_quest_not_rewarded_again(quest_tracker, repo, clock, test_user_id):
    await repo.insert_quest(make_quest(test_user_id, clock, target_count=1))

    await quest_tracker.apply_progress(test_user_id, "tasks_before_noon")
    again = await quest_tracker.apply_progress(test_user_id, "tasks_before_noon")

    assert again.updated is False
    assert len(await repo.get_points_log(test_user_id)) == 1


@pytest.mark.asyncio
async def test_expired_quest_ignored(quest_tracker, repo, clock, test_user_id):
    quest = make_quest(test_user_id, clock, expires_at=clock.now() - timedelta(minutes=1))
    await repo.insert_quest(quest)

    result = await quest_tracker.apply_progress(test_user_id, "tasks_before_noon")

    assert result.reason == "no_active_quest"
    assert (await repo.get_quest(quest.id)).progress_current == 0


@pytest.mark.asyncio
async def test_progress_only_touches_matching_type(quest_tracker, repo, clock, test_user_id):
    morning = make_quest(test_user_id, clock)
    energy = make_quest(
        test_user_id,
        clock,
        quest_catalog_id="log_energy",
        progress_type_detail="log_energy",
        target_count=1,
        xp_reward=15,
        slot=1,
    )
    await repo.insert_quest(morning)
    await repo.insert_quest(energy)

    await quest_tracker.apply_progress(test_user_id, "log_energy")

    assert (await repo.get_quest(morning.id)).progress_current == 0
    assert (await repo.get_quest(energy.id)).is_completed


@pytest.mark.asyncio
async def test_progress_scope_separates_daily_and_weekly(quest_tracker, repo, clock, test_user_id):
    weekly = make_quest(
        test_user_id,
        clock,
        quest_catalog_id="complete_20_week",
        quest_type=QuestScope.WEEKLY,
        progress_type_detail="complete_tasks",
        target_count=20,
        xp_reward=200,
        period_key="weekly:2025-06-08",
        expires_at=datetime(2025, 6, 15, tzinfo=timezone.utc),
    )
    await repo.insert_quest(weekly)

    daily_result = await quest_tracker.apply_progress(test_user_id, "complete_tasks")
    weekly_result = await quest_tracker.apply_progress(test_user_id, "complete_tasks", scope=QuestScope.WEEKLY)

    assert daily_result.updated is False
    assert weekly_result.results[0].progress == 1


@pytest.mark.asyncio
@pytest.mark.parametrize("increment", [0, -2])
async def test_non_positive_increment_rejected(quest_tracker, test_user_id, increment):
    with pytest.raises(ValidationError) as exc_info:
        await quest_tracker.apply_progress(test_user_id, "tasks_before_noon", increment=increment)
    assert exc_info.value.field == "increment"


@pytest.mark.asyncio
async def test_weekly_completion_reason_and_notification(quest_tracker, repo, clock, notifier, test_user_id):
    weekly = make_quest(
        test_user_id,
        clock,
        quest_catalog_id="ai_planner_3",
        quest_type=QuestScope.WEEKLY,
        progress_type_detail="use_ai_planner",
        target_count=3,
        xp_reward=100,
        progress_current=2,
        period_key="weekly:2025-06-08",
        expires_at=datetime(2025, 6, 15, tzinfo=timezone.utc),
    )
    await repo.insert_quest(weekly)

    result = await quest_tracker.apply_progress(test_user_id, "use_ai_planner", scope=QuestScope.WEEKLY)

    assert result.completed is True
    [entry] = await repo.get_points_log(test_user_id)
    assert entry.reason_key == "WEEKLY_CHALLENGE_COMPLETE"
    assert entry.points == 100
    assert len(notifier.of_type("weekly_challenge_completed")) == 1
    assert notifier.of_type("quest_completed") == []


@pytest.mark.asyncio
async def test_concurrent_progress_rewards_once(quest_tracker, repo, clock, test_user_id):
    quest = make_quest(test_user_id, clock, progress_current=2)
    await repo.insert_quest(quest)

    await asyncio.gather(*[quest_tracker.apply_progress(test_user_id, "tasks_before_noon") for _ in range(10)])

    stored = await repo.get_quest(quest.id)
    assert stored.progress_current == 3
    assert len(await repo.get_points_log(test_user_id)) == 1


# ============================================================================
# Manual Completion
# ============================================================================

@pytest.mark.asyncio
async def test_complete_quest(quest_tracker, repo, clock, test_user_id):
    quest = make_quest(test_user_id, clock)
    await repo.insert_quest(quest)

    result = await quest_tracker.complete_quest(test_user_id, quest.id)

    assert result.updated is True
    assert result.results[0].progress == 3
    assert result.results[0].reward == 50
    assert (await repo.get_user_progress(test_user_id)).total_xp == 50


@pytest.mark.asyncio
async def test_complete_quest_idempotent(quest_tracker, repo, clock, test_user_id):
    quest = make_quest(test_user_id, clock)
    await repo.insert_quest(quest)

    await quest_tracker.complete_quest(test_user_id, quest.id)
    again = await quest_tracker.complete_quest(test_user_id, quest.id)

    assert again.already_completed is True
    assert again.updated is False
    assert len(await repo.get_points_log(test_user_id)) == 1


@pytest.mark.asyncio
async def test_concurrent_completion_rewards_once(quest_tracker, repo, clock, test_user_id):
    quest = make_quest(test_user_id, clock)
    await repo.insert_quest(quest)

    results = await asyncio.gather(*[quest_tracker.complete_quest(test_user_id, quest.id) for _ in range(4)])

    assert sum(1 for r in results if r.updated) == 1
    assert len(await repo.get_points_log(test_user_id)) == 1


@pytest.mark.asyncio
async def test_complete_expired_quest(quest_tracker, repo, clock, test_user_id):
    quest = make_quest(test_user_id, clock, expires_at=clock.now() - timedelta(seconds=1))
    await repo.insert_quest(quest)

    result = await quest_tracker.complete_quest(test_user_id, quest.id)

    assert result.success is False
    assert result.reason == "expired"
    assert not (await repo.get_quest(quest.id)).is_completed


@pytest.mark.asyncio
async def test_complete_unknown_quest(quest_tracker, test_user_id):
    with pytest.raises(QuestNotFoundError):
        await quest_tracker.complete_quest(test_user_id, str(uuid.uuid4()))


@pytest.mark.asyncio
async def test_complete_other_users_quest(quest_tracker, repo, clock, test_user_id, other_user_id):
    repo.add_user(other_user_id)
    quest = make_quest(other_user_id, clock)
    await repo.insert_quest(quest)

    with pytest.raises(QuestNotFoundError):
        await quest_tracker.complete_quest(test_user_id, quest.id)
    assert (await repo.get_quest(quest.id)).status == QuestStatus.ACTIVE


@pytest.mark.asyncio
async def test_progress_for_missing_user(quest_tracker):
    with pytest.raises(UserNotFoundError):
        await quest_tracker.apply_progress("no-such-user", "tasks_before_noon")


# ============================================================================
# Failed Awards
# ============================================================================

@pytest.mark.asyncio
async def test_failed_award_leaves_quest_completable(quest_tracker, repo, clock, test_user_id):
    quest = make_quest(test_user_id, clock)
    await repo.insert_quest(quest)

    with patch.object(repo, "_apply_xp_award", side_effect=QueryError("points_log insert failed")):
        with pytest.raises(QueryError):
            await quest_tracker.complete_quest(test_user_id, quest.id)

    stored = await repo.get_quest(quest.id)
    assert stored.status == QuestStatus.ACTIVE
    assert stored.progress_current == 0
    assert (await repo.get_user_progress(test_user_id)).total_xp == 0

    retry = await quest_tracker.complete_quest(test_user_id, quest.id)

    assert retry.updated is True
    assert retry.already_completed is False
    assert retry.results[0].reward == 50
    assert (await repo.get_user_progress(test_user_id)).total_xp == 50


@pytest.mark.asyncio
async def test_failed_award_discards_completing_progress(quest_tracker, repo, clock, test_user_id):
    quest = make_quest(test_user_id, clock, progress_current=2)
    await repo.insert_quest(quest)

    with patch.object(repo, "_apply_xp_award", side_effect=QueryError("points_log insert failed")):
        with pytest.raises(QueryError):
            await quest_tracker.apply_progress(test_user_id, "tasks_before_noon")

    assert (await repo.get_quest(quest.id)).progress_current == 2

    result = await quest_tracker.apply_progress(test_user_id, "tasks_before_noon")

    assert result.results[0].completed is True
    assert result.results[0].reward == 50
    log = await repo.get_points_log(test_user_id)
    assert [e.reason_key for e in log] == ["QUEST_COMPLETE"]


# ============================================================================
# Queries
# ============================================================================

@pytest.mark.asyncio
async def test_get_active_quests(quest_tracker, clock, test_user_id):
    await quest_tracker.generate_daily_quests(test_user_id)
    await quest_tracker.generate_weekly_challenge(test_user_id)

    active = await quest_tracker.get_active_quests(test_user_id)
    assert len(active) == 4
    assert sum(1 for q in active if q.quest_type == QuestScope.WEEKLY) == 1

    clock.advance(days=1)
    tomorrow = await quest_tracker.get_active_quests(test_user_id)
    assert [q.quest_type for q in tomorrow] == [QuestScope.WEEKLY]
