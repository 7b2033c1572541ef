"""Service layer: gamification service, notifications and the service container"""
