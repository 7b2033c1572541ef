"""taskquest - XP, streak, quest and achievement engine for a productivity dashboard"""

__version__ = "0.1.0"
