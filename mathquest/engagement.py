"""Login streak and behaviour classification for MathQuest.

This module provides the engagement rules teachers see on the dashboard:
how a daily login changes a student's streak, and which behaviour flag
(on-track, needs-support, at-risk) a student's activity earns.
"""

from datetime import date, datetime, timedelta, UTC
from typing import Any

from mathquest.ledger import StudentProfile


BEHAVIOUR_ON_TRACK = "on-track"
BEHAVIOUR_NEEDS_SUPPORT = "needs-support"
BEHAVIOUR_AT_RISK = "at-risk"

INACTIVE_DAYS_THRESHOLD = 7
MIN_XP_PER_DAY = 50
MIN_STREAK_FOR_ON_TRACK = 3

# Assumed inactivity when last_active is missing or unreadable
UNKNOWN_INACTIVE_DAYS = 100


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO 8601 date or timestamp into an aware UTC datetime.

    Args:
        value: ``datetime``, ``date``, ISO string (``Z`` suffix allowed) or None

    Returns:
        Aware datetime, or None if the value is empty or unparsable.
        Naive values are taken to be UTC.
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    elif isinstance(value, str) and value.strip():
        try:
            parsed = datetime.fromisoformat(value.strip())
        except ValueError:
            return None
    else:
        return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def calculate_new_streak(current_streak: int, last_login_date: Any, today: Any) -> int:
    """Calculate the login streak after logging in on ``today``.

    Args:
        current_streak: Streak stored before this login
        last_login_date: Date of the previous login (date or ISO string)
        today: Date of this login (date or ISO string)

    Returns:
        1 for a first login or after a gap of more than one day,
        current_streak + 1 on the next consecutive day,
        current_streak when logging in again on the same day

    Example:
        >>> calculate_new_streak(4, "2024-03-01", "2024-03-02")
        5
        >>> calculate_new_streak(4, "2024-02-20", "2024-03-02")
        1
    """
    last = parse_timestamp(last_login_date)
    if last is None:
        return 1

    now = parse_timestamp(today)
    if now is None:
        return current_streak

    days_since = (now.date() - last.date()).days

    if days_since == 1:
        return current_streak + 1
    if days_since > 1:
        return 1
    return current_streak


def classify_behaviour(
    last_active: Any,
    streak_days: int,
    total_xp: int,
    created_at: Any = None,
    now: datetime | None = None,
    inactive_days_threshold: int = INACTIVE_DAYS_THRESHOLD,
    min_xp_per_day: int = MIN_XP_PER_DAY,
    min_streak_for_on_track: int = MIN_STREAK_FOR_ON_TRACK,
) -> str:
    """Classify a student's engagement for the teacher dashboard.

    Rules, first match wins:
        - inactive for more than ``inactive_days_threshold`` days, or no
          streak at all: at-risk
        - streak shorter than ``min_streak_for_on_track``: needs-support
        - known account age and average XP per day below half of
          ``min_xp_per_day``: needs-support
        - otherwise: on-track

    Args:
        last_active: Last activity timestamp (unreadable counts as long ago)
        streak_days: Current login streak
        total_xp: Student's total XP
        created_at: Account creation timestamp, optional
        now: Reference time (defaults to the current UTC time)

    Returns:
        One of BEHAVIOUR_ON_TRACK, BEHAVIOUR_NEEDS_SUPPORT, BEHAVIOUR_AT_RISK
    """
    now = parse_timestamp(now) or datetime.now(UTC)

    last = parse_timestamp(last_active)
    if last is None:
        last = now - timedelta(days=UNKNOWN_INACTIVE_DAYS)

    days_inactive = (now - last).total_seconds() / 86400

    if days_inactive > inactive_days_threshold or streak_days == 0:
        return BEHAVIOUR_AT_RISK

    if streak_days < min_streak_for_on_track:
        return BEHAVIOUR_NEEDS_SUPPORT

    created = parse_timestamp(created_at)
    if created is not None:
        days_since_creation = max(1.0, (now - created).total_seconds() / 86400)
        if total_xp / days_since_creation < min_xp_per_day * 0.5:
            return BEHAVIOUR_NEEDS_SUPPORT

    return BEHAVIOUR_ON_TRACK


def build_login_update(student: StudentProfile, now: datetime | None = None) -> dict:
    """Build the student row update for a login at ``now``.

    The stored ``last_active`` stands in for the previous login date.

    Returns:
        Dict with streak_days, last_active (ISO 8601, ``Z`` suffix) and the
        behaviour recomputed from the updated streak
    """
    now = parse_timestamp(now) or datetime.now(UTC)

    streak_days = calculate_new_streak(student.streak_days, student.last_active, now)
    last_active = now.astimezone(UTC).isoformat().replace('+00:00', 'Z')

    return {
        "streak_days": streak_days,
        "last_active": last_active,
        "behaviour": classify_behaviour(last_active, streak_days, student.xp, student.created_at, now=now),
    }
