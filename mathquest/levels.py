"""Level and XP progression logic for MathQuest.

This module provides the pure leveling engine: how total accumulated XP maps
to a level, how much XP each level requires, and how far a player sits inside
their current level. Every function is deterministic and side-effect free.
"""

import math
from dataclasses import dataclass


BASE_XP = 100
GROWTH = 1.5
MIN_LEVEL = 1
MAX_LEVEL = 100

# Returned as the requirement at the level cap: no further leveling possible.
# Must exceed every finite requirement; the last one, at level 99, is ~1.8e19.
INFINITE_XP = 2 ** 128


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves away from zero.

    Args:
        value: The value to round

    Returns:
        Rounded integer (337.5 -> 338, -2.5 -> -3)
    """
    if value < 0:
        return -math.floor(-value + 0.5)
    return math.floor(value + 0.5)


def xp_for_next_level(level: int) -> int:
    """Calculate the XP required to advance from ``level`` to ``level + 1``.

    The requirement grows by 1.5x per level. Only the raw exponential term is
    rounded, so rounding error never compounds between levels.

    Args:
        level: The level the player is currently at

    Returns:
        XP needed for the next level: BASE_XP below MIN_LEVEL,
        INFINITE_XP at or beyond MAX_LEVEL

    Example:
        >>> [xp_for_next_level(n) for n in (1, 2, 3, 4)]
        [100, 150, 225, 338]
    """
    if level < MIN_LEVEL:
        return BASE_XP

    if level >= MAX_LEVEL:
        return INFINITE_XP

    return round_half_up(BASE_XP * GROWTH ** (level - 1))


def total_xp_for_level(level: int) -> int:
    """Calculate the cumulative XP at which a player enters ``level``.

    Args:
        level: Target level (values above MAX_LEVEL are clamped)

    Returns:
        Total XP required to reach the level, 0 for level 1 and below
    """
    if level <= MIN_LEVEL:
        return 0

    level = min(level, MAX_LEVEL)

    return sum(xp_for_next_level(i) for i in range(MIN_LEVEL, level))


def calculate_level(total_xp: int) -> int:
    """Calculate the level implied by a total XP amount.

    Consumes level thresholds greedily starting at level 1. The loop is
    bounded by MAX_LEVEL, so arbitrarily large inputs terminate.

    Args:
        total_xp: Total experience points

    Returns:
        Level in [MIN_LEVEL, MAX_LEVEL]

    Example:
        >>> calculate_level(99), calculate_level(100), calculate_level(250)
        (1, 2, 3)
    """
    if total_xp < 0:
        return MIN_LEVEL

    level = MIN_LEVEL
    consumed = 0
    required = xp_for_next_level(level)

    while consumed + required <= total_xp and level < MAX_LEVEL:
        consumed += required
        level += 1
        required = xp_for_next_level(level)

    return level


def calculate_xp_progress(total_xp: int, level: int) -> int:
    """XP earned since entering ``level``."""
    return total_xp - total_xp_for_level(level)


def calculate_progress_percentage(total_xp: int, level: int) -> float:
    """Fraction of the current level's bracket completed, in [0.0, 1.0].

    Always 1.0 at the level cap so the progress bar shows full.
    """
    xp_needed = xp_for_next_level(level)

    if xp_needed == 0 or xp_needed == INFINITE_XP:
        return 1.0

    progress = calculate_xp_progress(total_xp, level) / xp_needed
    return min(1.0, max(0.0, progress))


def calculate_xp_to_next_level(total_xp: int, level: int) -> int:
    """XP still missing before the next level-up (never negative)."""
    xp_needed = xp_for_next_level(level)
    return max(0, xp_needed - calculate_xp_progress(total_xp, level))


def is_max_level(level: int) -> bool:
    return level >= MAX_LEVEL


@dataclass(frozen=True)
class LevelProgress:
    """Snapshot of where a total XP amount sits on the level curve."""

    total_xp: int
    level: int
    xp_progress: int
    xp_needed: int
    percentage: float
    xp_to_next_level: int
    is_max_level: bool


def progress_snapshot(total_xp: int) -> LevelProgress:
    """Derive level and in-level progress for a total XP amount.

    Negative totals are treated as 0, matching how the HUD displays XP.

    Args:
        total_xp: Total experience points

    Returns:
        LevelProgress for the clamped total
    """
    total_xp = max(0, total_xp)
    level = calculate_level(total_xp)

    return LevelProgress(
        total_xp=total_xp,
        level=level,
        xp_progress=calculate_xp_progress(total_xp, level),
        xp_needed=xp_for_next_level(level),
        percentage=calculate_progress_percentage(total_xp, level),
        xp_to_next_level=calculate_xp_to_next_level(total_xp, level),
        is_max_level=is_max_level(level),
    )


def format_level_label(level: int) -> str:
    return f"Level {level}"


def format_xp_label(progress: LevelProgress) -> str:
    """Format the XP bar caption, e.g. ``"50/150 XP"`` or ``"1200 XP (MAX)"``."""
    if progress.xp_needed == INFINITE_XP:
        return f"{progress.xp_progress} XP (MAX)"
    return f"{progress.xp_progress}/{progress.xp_needed} XP"
