"""Calendar helpers: period buckets, period tags, and assessment windows."""

from __future__ import annotations

from datetime import date, datetime, timedelta
from typing import Optional, Tuple, cast
from zoneinfo import ZoneInfo

from .events import utc
from .exceptions import InvalidPeriod
from .learner_profile import LearningProfile, get_stage
from .progress_snapshot import Period

PERIODS: Tuple[Period, ...] = ("daily", "weekly", "monthly")


def validate_period(value: str) -> Period:
    normalized = (value or "").strip().lower()
    if normalized not in PERIODS:
        raise InvalidPeriod(value)
    return cast(Period, normalized)


def local_date(moment: datetime, tz: ZoneInfo) -> date:
    return utc(moment).astimezone(tz).date()


def period_start(day: date, period: Period) -> date:
    """Truncate ``day`` to the first day of its bucket (weeks start on Monday)."""
    if period == "daily":
        return day
    if period == "weekly":
        return day - timedelta(days=day.weekday())
    if period == "monthly":
        return day.replace(day=1)
    raise InvalidPeriod(period)


def week_tag(day: date, profile: Optional[LearningProfile] = None) -> str:
    """``week-NN`` counted from the profile start date, or the ISO week without a profile."""
    if profile is not None:
        number = profile.week_number(day)
    else:
        number = day.isocalendar()[1]
    return f"week-{number:02d}"


def week_window(day: date, profile: Optional[LearningProfile] = None) -> Tuple[date, date]:
    """Half-open ``[start, end)`` window of the learning week containing ``day``."""
    if profile is not None:
        start = profile.start_date + timedelta(days=7 * (profile.week_number(day) - 1))
    else:
        start = period_start(day, "weekly")
    return start, start + timedelta(days=7)


def stage_tag(stage: int) -> str:
    return f"stage-{get_stage(stage).number}"


__all__ = [
    "PERIODS",
    "local_date",
    "period_start",
    "stage_tag",
    "validate_period",
    "week_tag",
    "week_window",
]
