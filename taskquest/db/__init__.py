"""Persistence layer: repository interface, PostgreSQL and in-memory implementations"""
from taskquest.db.repository import GamificationRepository
from taskquest.db.memory import InMemoryRepository

__all__ = ['GamificationRepository', 'InMemoryRepository']
