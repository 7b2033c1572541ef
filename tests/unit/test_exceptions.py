"""Unit tests for custom exception hierarchy"""
import logging
from datetime import datetime

import psycopg
import pytest

from taskquest.exceptions import (
    TaskQuestError,
    ValidationError,
    DatabaseError,
    DatabaseConnectionError,
    QueryError,
    RecordNotFoundError,
    UserNotFoundError,
    QuestNotFoundError,
    AuthorizationError,
    ConfigurationError,
    InvalidCriteriaError,
    NotificationError,
    wrap_external_exception
)


class TestTaskQuestError:
    """Test base exception class"""

    def test_basic_exception(self):
        error = TaskQuestError("Test error")
        assert error.message == "Test error"
        assert error.user_message == "An error occurred. Please try again."
        assert error.request_id is not None
        assert isinstance(error.timestamp, datetime)

    def test_exception_with_context(self):
        error = TaskQuestError(
            message="Failed to award XP",
            user_id="8d1c",
            operation="award_xp",
            context={"reason_key": "TASK_COMPLETE"},
            user_message="Could not record your XP"
        )
        assert error.user_id == "8d1c"
        assert error.operation == "award_xp"
        assert error.context["reason_key"] == "TASK_COMPLETE"
        assert error.user_message == "Could not record your XP"

    def test_exception_with_cause(self):
        original_error = ValueError("Invalid value")
        error = TaskQuestError(message="Validation failed", cause=original_error)
        assert error.cause == original_error

    def test_logged_on_creation(self, caplog):
        with caplog.at_level(logging.ERROR, logger="taskquest.exceptions"):
            TaskQuestError("Streak update failed", operation="maintain_streak")
        assert "TaskQuestError: Streak update failed" in caplog.text

    def test_to_dict(self):
        error = TaskQuestError(message="Test error", user_id="8d1c")
        error_dict = error.to_dict()
        assert error_dict["error"] == "TaskQuestError"
        assert error_dict["message"] == "Test error"
        assert error_dict["user_message"] == "An error occurred. Please try again."
        assert "request_id" in error_dict
        assert "timestamp" in error_dict


class TestValidationError:
    """Test validation error"""

    def test_validation_error(self):
        error = ValidationError(
            message="Must be positive",
            field="increment",
            value=0
        )
        assert error.field == "increment"
        assert error.value == 0
        assert "Invalid increment" in error.user_message


class TestDatabaseErrors:
    """Test database-related errors"""

    def test_connection_error(self):
        error = DatabaseConnectionError()
        assert "connection" in error.message.lower()
        assert "database" in error.user_message.lower()

    def test_query_error(self):
        error = QueryError(message="Query failed", query="SELECT * FROM users")
        assert error.query == "SELECT * FROM users"

    def test_record_not_found(self):
        error = RecordNotFoundError(message="Streak not found", record_type="Streak", record_id="123")
        assert error.record_type == "Streak"
        assert error.record_id == "123"
        assert "Streak not found" in error.user_message

    def test_user_not_found(self):
        error = UserNotFoundError("8d1c", operation="award_xp")
        assert error.user_id == "8d1c"
        assert error.record_type == "User"
        assert error.operation == "award_xp"

    def test_quest_not_found(self):
        error = QuestNotFoundError("q-1", user_id="8d1c")
        assert error.record_id == "q-1"
        assert error.user_id == "8d1c"
        assert "Quest not found" in error.user_message


class TestAuthorizationError:
    """Test authorization errors"""

    def test_authorization_error(self):
        error = AuthorizationError(resource="points_log")
        assert error.resource == "points_log"
        assert "permission" in error.user_message.lower()


class TestConfigurationErrors:
    """Test configuration errors"""

    def test_configuration_error(self):
        error = ConfigurationError(message="Missing database URL", config_key="DATABASE_URL")
        assert error.config_key == "DATABASE_URL"
        assert "configured" in error.user_message.lower()

    def test_invalid_criteria_error(self):
        error = InvalidCriteriaError(
            "Unknown criteria type",
            achievement_id="night_owl",
            criteria_type="night_completion"
        )
        assert error.config_key == "achievements.night_owl.criteria"
        assert error.context["criteria_type"] == "night_completion"
        assert isinstance(error, ConfigurationError)


class TestNotificationError:
    """Test notification errors"""

    def test_notification_error(self):
        error = NotificationError("Push failed", notification_type="level_up")
        assert error.notification_type == "level_up"
        assert "notification" in error.user_message.lower()


class TestWrapExternalException:
    """Test exception wrapping helper"""

    def test_wrap_generic_exception(self):
        original = ValueError("Invalid input")
        wrapped = wrap_external_exception(original, operation="award_xp", user_id="8d1c")
        assert isinstance(wrapped, TaskQuestError)
        assert wrapped.cause == original
        assert wrapped.operation == "award_xp"
        assert wrapped.user_id == "8d1c"

    def test_wrap_passes_through_own_errors(self):
        original = UserNotFoundError("8d1c")
        assert wrap_external_exception(original, operation="award_xp") is original

    def test_wrap_psycopg_operational_error(self):
        original = psycopg.OperationalError("Connection refused")
        wrapped = wrap_external_exception(original, operation="connect_db")
        assert isinstance(wrapped, DatabaseConnectionError)
        assert wrapped.cause == original

    def test_wrap_psycopg_error(self):
        original = psycopg.Error("Query failed")
        wrapped = wrap_external_exception(
            original,
            operation="record_xp_award",
            context={"reason_key": "TASK_COMPLETE"}
        )
        assert isinstance(wrapped, QueryError)
        assert wrapped.cause == original
        assert wrapped.context["reason_key"] == "TASK_COMPLETE"


class TestInheritance:
    """Test exception hierarchy"""

    def test_all_inherit_from_base(self):
        exceptions = [
            ValidationError("test"),
            DatabaseError("test"),
            DatabaseConnectionError(),
            QueryError("test"),
            RecordNotFoundError("test"),
            UserNotFoundError("8d1c"),
            QuestNotFoundError("q-1"),
            AuthorizationError(),
            ConfigurationError("test"),
            InvalidCriteriaError("test"),
            NotificationError("test"),
        ]
        for exc in exceptions:
            assert isinstance(exc, TaskQuestError)
            assert isinstance(exc, Exception)

    def test_database_hierarchy(self):
        assert isinstance(DatabaseConnectionError(), DatabaseError)
        assert isinstance(QueryError("test"), DatabaseError)
        assert isinstance(UserNotFoundError("8d1c"), RecordNotFoundError)
        assert isinstance(QuestNotFoundError("q-1"), RecordNotFoundError)
