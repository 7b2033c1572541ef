"""
Standardized exception hierarchy for taskquest
Provides rich context, consistent logging, and user-friendly error messages
"""

from datetime import datetime, timezone
from typing import Optional, Dict, Any
from uuid import uuid4
import logging

logger = logging.getLogger(__name__)


class TaskQuestError(Exception):
    """
    Base exception for all taskquest errors

    Provides:
    - Automatic timestamping
    - Request ID for tracing
    - User-friendly messages
    - Structured context
    - Automatic logging

    Example:
        raise TaskQuestError(
            message="Failed to award XP",
            user_id="8d1c...",
            operation="award_xp",
            context={"reason_key": "TASK_COMPLETE"}
        )
    """

    def __init__(
        self,
        message: str,
        user_id: Optional[str] = None,
        request_id: Optional[str] = None,
        operation: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
        user_message: Optional[str] = None
    ):
        super().__init__(message)
        self.message = message
        self.user_id = user_id
        self.request_id = request_id or str(uuid4())
        self.operation = operation
        self.context = context or {}
        self.cause = cause
        self.user_message = user_message or "An error occurred. Please try again."
        self.timestamp = datetime.now(timezone.utc)

        # Auto-log on creation
        self._log_error()

    def _log_error(self) -> None:
        """Log error with full context"""
        log_data = {
            "error_type": self.__class__.__name__,
            "error_message": self.message,  # 'message' is reserved by logging
            "request_id": self.request_id,
            "user_id": self.user_id,
            "operation": self.operation,
            "error_context": self.context,
            "timestamp": self.timestamp.isoformat()
        }

        if self.cause:
            log_data["cause"] = str(self.cause)
            logger.error(f"{self.__class__.__name__}: {self.message}", extra=log_data, exc_info=self.cause)
        else:
            logger.error(f"{self.__class__.__name__}: {self.message}", extra=log_data)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize exception for API responses"""
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "user_message": self.user_message,
            "request_id": self.request_id,
            "timestamp": self.timestamp.isoformat()
        }


# ==========================================
# Validation Errors (Caller Input)
# ==========================================

class ValidationError(TaskQuestError):
    """
    Raised when caller input fails validation

    Examples:
    - Unknown reward key
    - Unknown streak type
    - Non-positive quest progress increment
    """

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        **kwargs
    ):
        self.field = field
        self.value = value
        super().__init__(
            message=message,
            user_message=f"Invalid {field}: {message}" if field else message,
            context={"field": field, "value": value},
            **kwargs
        )


# ==========================================
# Database Errors
# ==========================================

class DatabaseError(TaskQuestError):
    """
    Base class for database-related errors
    """
    pass


class DatabaseConnectionError(DatabaseError):
    """Database connection failed"""

    def __init__(self, message: str = "Database connection failed", **kwargs):
        super().__init__(
            message=message,
            user_message="We're having trouble connecting to the database. Please try again in a moment.",
            **kwargs
        )


class QueryError(DatabaseError):
    """Database query execution failed"""

    def __init__(
        self,
        message: str,
        query: Optional[str] = None,
        **kwargs
    ):
        self.query = query
        super().__init__(
            message=message,
            user_message="We encountered an issue saving your progress. Please try again.",
            context={"query": query},
            **kwargs
        )


class RecordNotFoundError(DatabaseError):
    """Requested database record does not exist"""

    def __init__(
        self,
        message: str,
        record_type: Optional[str] = None,
        record_id: Optional[str] = None,
        **kwargs
    ):
        self.record_type = record_type
        self.record_id = record_id
        super().__init__(
            message=message,
            user_message=f"{record_type or 'Record'} not found.",
            context={"record_type": record_type, "record_id": record_id},
            **kwargs
        )


class UserNotFoundError(RecordNotFoundError):
    """Award, streak or quest operation referenced a user that does not exist"""

    def __init__(self, user_id: str, **kwargs):
        super().__init__(
            message=f"User {user_id} not found",
            record_type="User",
            record_id=user_id,
            user_id=user_id,
            **kwargs
        )


class QuestNotFoundError(RecordNotFoundError):
    """Manual completion targeted a quest instance that does not exist for the user"""

    def __init__(self, quest_id: str, **kwargs):
        super().__init__(
            message=f"Quest {quest_id} not found",
            record_type="Quest",
            record_id=quest_id,
            **kwargs
        )


# ==========================================
# Authorization
# ==========================================

class AuthorizationError(TaskQuestError):
    """Caller lacks permission for requested operation"""

    def __init__(
        self,
        message: str = "Insufficient permissions",
        resource: Optional[str] = None,
        **kwargs
    ):
        self.resource = resource
        super().__init__(
            message=message,
            user_message=f"You don't have permission to access {resource or 'this resource'}.",
            context={"resource": resource},
            **kwargs
        )


# ==========================================
# Configuration Errors
# ==========================================

class ConfigurationError(TaskQuestError):
    """System configuration is invalid or missing"""

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        **kwargs
    ):
        self.config_key = config_key
        super().__init__(
            message=message,
            user_message="The system is not properly configured. Please contact support.",
            context={"config_key": config_key},
            **kwargs
        )


class InvalidCriteriaError(ConfigurationError):
    """Achievement catalog entry has a criteria type the evaluator cannot resolve"""

    def __init__(
        self,
        message: str,
        achievement_id: Optional[str] = None,
        criteria_type: Optional[str] = None,
        **kwargs
    ):
        self.achievement_id = achievement_id
        self.criteria_type = criteria_type
        super().__init__(message=message, config_key=f"achievements.{achievement_id}.criteria", **kwargs)
        self.context.update({"achievement_id": achievement_id, "criteria_type": criteria_type})


# ==========================================
# Notification Errors
# ==========================================

class NotificationError(TaskQuestError):
    """Notification delivery failed"""

    def __init__(
        self,
        message: str,
        notification_type: Optional[str] = None,
        **kwargs
    ):
        self.notification_type = notification_type
        super().__init__(
            message=message,
            user_message="We couldn't deliver a notification.",
            context={"notification_type": notification_type},
            **kwargs
        )


# ==========================================
# Helper Functions
# ==========================================

def wrap_external_exception(
    error: Exception,
    operation: str,
    user_id: Optional[str] = None,
    context: Optional[Dict[str, Any]] = None
) -> TaskQuestError:
    """
    Wrap external exceptions (psycopg, etc.) into our exception hierarchy

    Args:
        error: Original exception
        operation: What operation was being performed
        user_id: User ID if applicable
        context: Additional context

    Returns:
        Appropriate TaskQuestError subclass

    Example:
        try:
            await cur.execute(query)
        except psycopg.Error as e:
            raise wrap_external_exception(e, operation="record_xp_award", user_id=user_id)
    """
    import psycopg

    if isinstance(error, TaskQuestError):
        return error

    # Database errors
    if isinstance(error, psycopg.OperationalError):
        return DatabaseConnectionError(
            message=f"Database connection failed: {str(error)}",
            user_id=user_id,
            operation=operation,
            cause=error
        )
    elif isinstance(error, psycopg.Error):
        wrapped = QueryError(
            message=f"Database query failed: {str(error)}",
            user_id=user_id,
            operation=operation,
            cause=error
        )
        wrapped.context.update(context or {})
        return wrapped

    # Generic fallback
    return TaskQuestError(
        message=f"{operation} failed: {str(error)}",
        user_id=user_id,
        operation=operation,
        context=context,
        cause=error
    )
