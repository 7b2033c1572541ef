"""Pydantic models for gamification rows and read models"""
