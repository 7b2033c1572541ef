"""Unit tests for the level curve (taskquest/gamification/level_curve.py)"""
import pytest

from taskquest.gamification.level_curve import (
    LEVEL_THRESHOLDS,
    MAX_LEVEL,
    level_number,
    level_of,
    level_title,
    progress_percent,
)


# ============================================================================
# level_of
# ============================================================================

@pytest.mark.parametrize("xp,level,title,xp_to_next", [
    (0, 1, "Novice", 100),
    (99, 1, "Novice", 1),
    (100, 2, "Organized", 200),
    (250, 2, "Organized", 50),
    (999, 4, "Productive", 1),
    (1000, 5, "Master", 500),
    (2500, 8, "Guru III", 500),
    (3999, 9, "Elite", 1),
])
def test_level_of_thresholds(xp, level, title, xp_to_next):
    """Highest entry with threshold <= xp wins"""
    info = level_of(xp)

    assert info.level == level
    assert info.title == title
    assert info.xp_to_next == xp_to_next


def test_level_of_max_level_has_no_next():
    info = level_of(4000)
    assert info.level == MAX_LEVEL == 10
    assert info.title == "Champion"
    assert info.xp_to_next == 0

    assert level_of(1_000_000).xp_to_next == 0


def test_level_of_negative_xp_is_level_one():
    assert level_of(-50).level == 1
    assert level_of(-50).title == "Novice"


def test_level_of_is_monotonic():
    previous = 0
    for xp in range(-10, 4500, 7):
        level = level_of(xp).level
        assert level >= previous
        previous = level


def test_level_number_matches_level_of():
    for xp in (0, 150, 1499, 1500, 4000):
        assert level_number(xp) == level_of(xp).level


def test_thresholds_ascending_from_novice():
    assert LEVEL_THRESHOLDS[0] == (1, 0, "Novice")
    mins = [t.min_xp for t in LEVEL_THRESHOLDS]
    assert mins == sorted(mins)


# ============================================================================
# progress_percent / level_title
# ============================================================================

def test_progress_percent_interpolates():
    assert progress_percent(0) == 0.0
    assert progress_percent(50) == 50.0
    # 300 -> 600 band
    assert progress_percent(450) == 50.0


def test_progress_percent_zero_at_max_level():
    assert progress_percent(4000) == 0.0
    assert progress_percent(9999) == 0.0


def test_progress_percent_bounds():
    for xp in range(-100, 4200, 13):
        assert 0.0 <= progress_percent(xp) <= 100.0


def test_level_title():
    assert level_title(6) == "Guru I"
    with pytest.raises(ValueError):
        level_title(11)
