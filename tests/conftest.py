"""Global test fixtures and utilities for taskquest tests"""
import random
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from taskquest.db.memory import InMemoryRepository
from taskquest.gamification.achievement_system import AchievementEvaluator
from taskquest.gamification.quests import QuestTracker
from taskquest.gamification.streak_system import StreakTracker
from taskquest.gamification.xp_system import XPAwarder
from taskquest.services.notifications import NotificationEmitter
from taskquest.utils.clock import FrozenClock


# ============================================================================
# Random Sources
# ============================================================================

class StubRandom(random.Random):
    """
    random.Random with a pinned random() value

    random() drives the variable-reward roll; randint() returns bonus when
    given. sample() keeps the seeded behaviour of random.Random.
    """

    def __init__(self, roll: float = 0.99, bonus=None, seed: int = 42):
        super().__init__(seed)
        self.roll = roll
        self.bonus = bonus

    def random(self):
        return self.roll

    def getrandbits(self, k):
        # keeps sample()/randint() on the seeded bit stream instead of random()
        return super().getrandbits(k)

    def randint(self, a, b):
        if self.bonus is not None:
            return self.bonus
        return super().randint(a, b)


@pytest.fixture
def make_rng():
    """Factory for StubRandom instances"""
    return StubRandom


@pytest.fixture
def no_bonus_rng():
    """Variable reward never fires"""
    return StubRandom(roll=0.99)


@pytest.fixture
def bonus_rng():
    """Variable reward always fires with the maximum bonus"""
    return StubRandom(roll=0.0, bonus=10)


# ============================================================================
# Notification Fixtures
# ============================================================================

class RecordingNotifier(NotificationEmitter):
    """Collects emitted notifications as (type, user_id, payload)"""

    def __init__(self):
        self.events = []

    async def emit(self, notification_type, user_id, payload):
        self.events.append((notification_type.value, user_id, payload))

    def of_type(self, notification_type: str):
        return [e for e in self.events if e[0] == notification_type]


class FailingNotifier(NotificationEmitter):
    """Every emit raises"""

    async def emit(self, notification_type, user_id, payload):
        raise RuntimeError("push service unavailable")


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def failing_notifier():
    return FailingNotifier()


# ============================================================================
# Clock & Storage Fixtures
# ============================================================================

@pytest.fixture
def test_user_id():
    """Standard test user ID"""
    return "8d1c2f4e-5b6a-4c3d-9e8f-0a1b2c3d4e5f"


@pytest.fixture
def other_user_id():
    return "1f2e3d4c-5b6a-4798-8a7b-6c5d4e3f2a1b"


@pytest.fixture
def clock():
    """Wednesday 2025-06-11 10:00 UTC"""
    return FrozenClock(datetime(2025, 6, 11, 10, 0, tzinfo=timezone.utc), timezone="UTC")


@pytest.fixture
def repo(test_user_id):
    """In-memory repository with one user at 0 XP"""
    repository = InMemoryRepository()
    repository.add_user(test_user_id)
    return repository


# ============================================================================
# Component Fixtures
# ============================================================================

@pytest.fixture
def awarder(repo, notifier, clock, no_bonus_rng):
    return XPAwarder(repo, notifier, clock, no_bonus_rng)


@pytest.fixture
def streak_tracker(repo, awarder, notifier, clock):
    return StreakTracker(repo, awarder, notifier, clock)


@pytest.fixture
def quest_tracker(repo, awarder, notifier, clock, no_bonus_rng):
    return QuestTracker(repo, awarder, notifier, clock, no_bonus_rng)


@pytest.fixture
def evaluator(repo, awarder, notifier, clock):
    return AchievementEvaluator(repo, awarder, notifier, clock)


# ============================================================================
# Database Mocks
# ============================================================================

@pytest.fixture
def mock_db_cursor():
    """Mock psycopg cursor with standard query results"""
    cursor = AsyncMock()
    cursor.fetchone = AsyncMock(return_value=None)
    cursor.fetchall = AsyncMock(return_value=[])
    cursor.execute = AsyncMock()
    cursor.rowcount = 0
    return cursor


@pytest.fixture
def mock_db_connection(mock_db_cursor):
    """Mock connection whose cursor() context manager yields mock_db_cursor"""
    conn = MagicMock()
    conn.cursor.return_value.__aenter__.return_value = mock_db_cursor
    conn.cursor.return_value.__aexit__.return_value = False
    return conn


@pytest.fixture
def mock_database(mock_db_connection):
    """Stand-in for taskquest.db.connection.Database"""

    class MockDatabase:
        def __init__(self, conn):
            self.conn = conn
            self.transactions = 0

        @asynccontextmanager
        async def transaction(self):
            self.transactions += 1
            yield self.conn

        @asynccontextmanager
        async def connection(self):
            yield self.conn

    return MockDatabase(mock_db_connection)
