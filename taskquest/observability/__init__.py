"""
Observability module for taskquest.

Provides Prometheus counters for XP awards, level-ups, streak transitions,
quest completions, achievement unlocks and dropped notifications.
"""
