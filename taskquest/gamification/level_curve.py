"""
Level Curve

Maps lifetime XP to a level and title.

Level table (threshold = minimum total XP):
- 1 Novice: 0
- 2 Organized: 100
- 3 Focused: 300
- 4 Productive: 600
- 5 Master: 1000
- 6-8 Guru I-III: 1500 / 2000 / 2500
- 9 Elite: 3000
- 10 Champion: 4000 (max level)
"""

from typing import NamedTuple

from taskquest.models.progress import LevelInfo


class LevelThreshold(NamedTuple):
    level: int
    min_xp: int
    title: str


LEVEL_THRESHOLDS: tuple[LevelThreshold, ...] = (
    LevelThreshold(1, 0, "Novice"),
    LevelThreshold(2, 100, "Organized"),
    LevelThreshold(3, 300, "Focused"),
    LevelThreshold(4, 600, "Productive"),
    LevelThreshold(5, 1000, "Master"),
    LevelThreshold(6, 1500, "Guru I"),
    LevelThreshold(7, 2000, "Guru II"),
    LevelThreshold(8, 2500, "Guru III"),
    LevelThreshold(9, 3000, "Elite"),
    LevelThreshold(10, 4000, "Champion"),
)

MAX_LEVEL = LEVEL_THRESHOLDS[-1].level


def _index_for(xp: int) -> int:
    index = 0
    for i, threshold in enumerate(LEVEL_THRESHOLDS):
        if xp >= threshold.min_xp:
            index = i
        else:
            break
    return index


def level_of(xp: int) -> LevelInfo:
    """
    Level for a lifetime XP total

    Negative XP maps to level 1. xp_to_next is 0 at the max level.

    Example:
        >>> level_of(250)
        LevelInfo(level=2, title='Organized', xp_to_next=50)
    """
    index = _index_for(xp)
    current = LEVEL_THRESHOLDS[index]

    if index + 1 < len(LEVEL_THRESHOLDS):
        xp_to_next = LEVEL_THRESHOLDS[index + 1].min_xp - max(xp, 0)
    else:
        xp_to_next = 0

    return LevelInfo(level=current.level, title=current.title, xp_to_next=xp_to_next)


def level_number(xp: int) -> int:
    """Level number only; passed to the repository as the level function"""
    return LEVEL_THRESHOLDS[_index_for(xp)].level


def level_title(level: int) -> str:
    for threshold in LEVEL_THRESHOLDS:
        if threshold.level == level:
            return threshold.title
    raise ValueError(f"Unknown level {level}")


def progress_percent(xp: int) -> float:
    """Percent of the way from the current level's threshold to the next (0 at max level)"""
    index = _index_for(xp)
    if index + 1 >= len(LEVEL_THRESHOLDS):
        return 0.0

    floor_xp = LEVEL_THRESHOLDS[index].min_xp
    span = LEVEL_THRESHOLDS[index + 1].min_xp - floor_xp
    earned = max(xp, 0) - floor_xp
    return min(100.0, max(0.0, earned / span * 100))
