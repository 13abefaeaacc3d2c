"""Relative time windows used to scope level reports.

Buckets are checked in precedence order and the first match wins:

    today   [start_of_day(now), end_of_day(now)]   (both ends inclusive)
    week    [now - 7 days, start_of_day(now))
    month   [start_of_month(now), now - 7 days)
    year    [start_of_year(now), start_of_month(now))
    allTime anything else

``allTime`` is also the running-total window: :func:`in_window` treats every
timestamp as inside it. ``custom`` is not a bucket; it selects an explicit
:class:`DateRange` supplied by the caller.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Tuple

from .errors import ValidationError

TODAY = "today"
WEEK = "week"
MONTH = "month"
YEAR = "year"
ALL_TIME = "allTime"
CUSTOM = "custom"

WINDOWS: Tuple[str, ...] = (TODAY, WEEK, MONTH, YEAR, ALL_TIME)
REPORT_WINDOWS: Tuple[str, ...] = WINDOWS + (CUSTOM,)

_ALIASES = {
    "today": TODAY,
    "week": WEEK,
    "month": MONTH,
    "year": YEAR,
    "alltime": ALL_TIME,
    "all": ALL_TIME,
    "all-time": ALL_TIME,
    "all_time": ALL_TIME,
    "custom": CUSTOM,
}


@dataclass(frozen=True)
class DateRange:
    """Closed interval ``[start, end]``."""

    start: datetime
    end: datetime

    def __post_init__(self) -> None:
        if self.start > self.end:
            message = "startDate cannot be after endDate."
            raise ValidationError(message, {"startDate": message})

    def contains(self, timestamp: datetime) -> bool:
        return self.start <= timestamp <= self.end


def start_of_day(moment: datetime) -> datetime:
    return moment.replace(hour=0, minute=0, second=0, microsecond=0)


def end_of_day(moment: datetime) -> datetime:
    return moment.replace(hour=23, minute=59, second=59, microsecond=999999)


def start_of_month(moment: datetime) -> datetime:
    return start_of_day(moment).replace(day=1)


def start_of_year(moment: datetime) -> datetime:
    return start_of_day(moment).replace(month=1, day=1)


def week_start(now: datetime) -> datetime:
    return now - timedelta(days=7)


def classify(timestamp: datetime, now: datetime) -> str:
    """Return the bucket ``timestamp`` falls into relative to ``now``."""

    day_start = start_of_day(now)
    if day_start <= timestamp <= end_of_day(now):
        return TODAY

    trailing_week = week_start(now)
    if trailing_week <= timestamp < day_start:
        return WEEK

    month_start = start_of_month(now)
    if month_start <= timestamp < trailing_week:
        return MONTH

    if start_of_year(now) <= timestamp < month_start:
        return YEAR

    return ALL_TIME


def _require_range(date_range: DateRange | None) -> DateRange:
    if date_range is None:
        message = "A custom window needs startDate and endDate."
        raise ValidationError(message, {"window": message})
    return date_range


def in_window(
    timestamp: datetime, window: str, now: datetime, date_range: DateRange | None = None
) -> bool:
    if window == ALL_TIME:
        return True
    if window == CUSTOM:
        return _require_range(date_range).contains(timestamp)
    return classify(timestamp, now) == window


def window_floor(
    window: str, now: datetime, date_range: DateRange | None = None
) -> datetime | None:
    """Earliest instant ``window`` can contain, or None when unbounded.

    Only a pre-filter for store queries; :func:`in_window` decides membership.
    """

    if window == TODAY:
        return start_of_day(now)
    if window == WEEK:
        return week_start(now)
    if window == MONTH:
        return start_of_month(now)
    if window == YEAR:
        return start_of_year(now)
    if window == CUSTOM:
        return _require_range(date_range).start
    return None


def window_ceiling(
    window: str, now: datetime, date_range: DateRange | None = None
) -> datetime | None:
    """Latest instant a custom window can contain; None for relative windows."""

    if window == CUSTOM:
        return _require_range(date_range).end
    return None


def parse_window(value: str | None, *, default: str = ALL_TIME) -> str:
    """Map a query-string value onto one of :data:`REPORT_WINDOWS`."""

    cleaned = str(value).strip() if value is not None else ""
    if not cleaned:
        return default

    window = _ALIASES.get(cleaned.lower())
    if window is None:
        message = "window must be one of: " + ", ".join(REPORT_WINDOWS) + "."
        raise ValidationError(message, {"window": message})
    return window


__all__ = [
    "ALL_TIME",
    "CUSTOM",
    "DateRange",
    "MONTH",
    "REPORT_WINDOWS",
    "TODAY",
    "WEEK",
    "WINDOWS",
    "YEAR",
    "classify",
    "end_of_day",
    "in_window",
    "parse_window",
    "start_of_day",
    "start_of_month",
    "start_of_year",
    "week_start",
    "window_ceiling",
    "window_floor",
]
