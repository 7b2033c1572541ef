"""
Service Container - Dependency Injection Container

Builds the gamification service and its collaborators from configuration.
Uses lazy loading to only instantiate services when first accessed.
"""

from dataclasses import dataclass, field
from typing import Optional
import logging
import random

from taskquest.config import NOTIFICATIONS_BACKEND
from taskquest.db.connection import Database
from taskquest.utils.clock import Clock, SystemClock

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    """
    Simple dependency injection container for services.

    Services are lazy-loaded on first access via properties.
    The database is injected; clock, rng and notifier default from config.
    """

    # Infrastructure dependencies (injected)
    db: Database
    clock: Clock = field(default_factory=SystemClock)
    rng: random.Random = field(default_factory=random.Random)
    notifications_backend: str = NOTIFICATIONS_BACKEND

    # Services (lazy-loaded via properties)
    _repository: Optional[object] = field(default=None, init=False, repr=False)
    _notifier: Optional[object] = field(default=None, init=False, repr=False)
    _gamification_service: Optional[object] = field(default=None, init=False, repr=False)

    @property
    def repository(self):
        """Service-scope PostgresRepository (lazy-loaded)"""
        if self._repository is None:
            from taskquest.db.postgres import repository_for
            self._repository = repository_for(self.db)
            logger.debug("PostgresRepository instantiated")
        return self._repository

    @property
    def notifier(self):
        """NotificationEmitter for the configured backend (lazy-loaded)"""
        if self._notifier is None:
            from taskquest.services.notifications import create_notifier
            self._notifier = create_notifier(self.notifications_backend, self.db)
            logger.debug(f"Notifier instantiated ({self.notifications_backend})")
        return self._notifier

    @property
    def gamification_service(self):
        """Get service-scope GamificationService instance (lazy-loaded)"""
        if self._gamification_service is None:
            from taskquest.services.gamification_service import GamificationService
            self._gamification_service = GamificationService(
                self.repository, self.notifier, self.clock, self.rng
            )
            logger.debug("GamificationService instantiated")
        return self._gamification_service

    def gamification_service_for(self, user_id: str):
        """
        GamificationService bound to one signed-in user

        Built per request; its repository rejects other users' rows.
        """
        from taskquest.db.postgres import repository_for
        from taskquest.services.gamification_service import GamificationService
        return GamificationService(
            repository_for(self.db, acting_user_id=user_id),
            self.notifier,
            self.clock,
            self.rng,
        )


# Global container instance (initialized by the host application)
_container: Optional[ServiceContainer] = None


def get_container() -> ServiceContainer:
    """
    Get the global service container.

    Raises:
        RuntimeError: If container not initialized (call init_container first)
    """
    if _container is None:
        raise RuntimeError(
            "Service container not initialized. "
            "Call init_container() during application startup before using services."
        )
    return _container


def init_container(db: Database, clock: Optional[Clock] = None) -> ServiceContainer:
    """
    Initialize the global service container.

    Args:
        db: Database instance with an initialized pool
        clock: Optional clock override (defaults to SystemClock)

    Returns:
        ServiceContainer: The initialized container
    """
    global _container

    _container = ServiceContainer(db=db, clock=clock or SystemClock())
    logger.info("Service container initialized")
    return _container
