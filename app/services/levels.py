"""Level staircase.

Level is a pure function of total XP so it can never drift from the
ledger.  Level 1 starts at 0 XP; past the last threshold every further
5000 XP is one more level.
"""

from __future__ import annotations

from bisect import bisect_right

LEVEL_THRESHOLDS = (0, 100, 250, 500, 1000, 2000, 3500, 5500, 8000, 11000, 15000)
XP_PER_LEVEL_AFTER_TABLE = 5000


def level_for_xp(total_xp: int) -> int:
    if total_xp < 0:
        return 1
    top = LEVEL_THRESHOLDS[-1]
    if total_xp >= top:
        return len(LEVEL_THRESHOLDS) + (total_xp - top) // XP_PER_LEVEL_AFTER_TABLE
    return bisect_right(LEVEL_THRESHOLDS, total_xp)


def xp_for_level(level: int) -> int:
    """Minimum total XP needed to be at ``level``."""
    if level <= 1:
        return 0
    if level <= len(LEVEL_THRESHOLDS):
        return LEVEL_THRESHOLDS[level - 1]
    extra = level - len(LEVEL_THRESHOLDS)
    return LEVEL_THRESHOLDS[-1] + extra * XP_PER_LEVEL_AFTER_TABLE


def xp_to_next_level(total_xp: int) -> int:
    return xp_for_level(level_for_xp(total_xp) + 1) - max(total_xp, 0)
