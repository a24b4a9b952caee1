"""Time window boundaries for day, ISO week, month and year.

All windows are inclusive ``[start, end]`` pairs at whole-day resolution:
start is 00:00:00.000 and end is 23:59:59.999 of the first and last day.
When a datetime is passed in, its tzinfo (or lack of one, meaning local
wall-clock time) is carried onto both boundaries.
"""

from __future__ import annotations

import calendar
from datetime import date, datetime, time, timedelta, tzinfo
from typing import NamedTuple

from guildmark.achievements.domain import Period

END_OF_DAY = time(23, 59, 59, 999000)


class TimeWindow(NamedTuple):
    start: datetime
    end: datetime

    def contains(self, moment: datetime) -> bool:
        return self.start <= _align(moment, self.start.tzinfo) <= self.end


def _align(moment: datetime, tz: tzinfo | None) -> datetime:
    """Bring ``moment`` onto the same naive/aware footing as a window boundary."""
    if tz is None and moment.tzinfo is not None:
        return moment.astimezone().replace(tzinfo=None)
    if tz is not None and moment.tzinfo is None:
        return moment.replace(tzinfo=tz)
    return moment


def _as_date(value: datetime | date) -> date:
    return value.date() if isinstance(value, datetime) else value


def _tz(value: datetime | date) -> tzinfo | None:
    return value.tzinfo if isinstance(value, datetime) else None


def _span(first: date, last: date, tz: tzinfo | None) -> TimeWindow:
    return TimeWindow(
        datetime.combine(first, time.min, tzinfo=tz),
        datetime.combine(last, END_OF_DAY, tzinfo=tz),
    )


def day_bounds(value: datetime | date) -> TimeWindow:
    d = _as_date(value)
    return _span(d, d, _tz(value))


def week_bounds(value: datetime | date) -> TimeWindow:
    """Monday through Sunday of the ISO week containing ``value``."""
    d = _as_date(value)
    monday = d - timedelta(days=d.weekday())
    return _span(monday, monday + timedelta(days=6), _tz(value))


def month_bounds(year: int, month: int, tz: tzinfo | None = None) -> TimeWindow:
    last_day = calendar.monthrange(year, month)[1]
    return _span(date(year, month, 1), date(year, month, last_day), tz)


def year_bounds(year: int, tz: tzinfo | None = None) -> TimeWindow:
    return _span(date(year, 1, 1), date(year, 12, 31), tz)


def period_bounds(period: Period, value: datetime | date) -> TimeWindow:
    """Window of the given period containing ``value``."""
    if period is Period.DAY:
        return day_bounds(value)
    if period is Period.WEEK:
        return week_bounds(value)
    if period is Period.MONTH:
        return month_bounds(value.year, value.month, _tz(value))
    return year_bounds(value.year, _tz(value))


def week_number(value: datetime | date) -> int:
    """ISO 8601 week number (week 1 contains the year's first Thursday)."""
    return _as_date(value).isocalendar()[1]


def week_iso(value: datetime | date) -> str:
    """ISO week string e.g. '2026-W09'. Uses %G-W%V (ISO year + ISO week)."""
    return _as_date(value).strftime("%G-W%V")


def year_for_week(base_year: int, month: int, week: int) -> int:
    """Resolve which calendar year week ``week`` belongs to when seen from ``month`` of ``base_year``.

    December can show weeks 1-5 of the next ISO year and January can show
    weeks 48-53 of the previous one.
    """
    if month == 12 and week <= 5:
        return base_year + 1
    if month == 1 and week >= 48:
        return base_year - 1
    return base_year


def iso_week_start(year: int, week: int) -> date:
    """Monday of ISO week ``week`` of ``year``."""
    return date.fromisocalendar(year, week, 1)


def week_range(year: int, week: int, tz: tzinfo | None = None) -> TimeWindow:
    monday = iso_week_start(year, week)
    return _span(monday, monday + timedelta(days=6), tz)


def weeks_in_month(year: int, month: int) -> list[int]:
    """ISO week numbers touching a calendar month, in chronological order.

    Around New Year a month can contain both high (>=48) and low (<=5) week
    numbers; the high ones come first in that case.
    """
    last_day = calendar.monthrange(year, month)[1]
    weeks = {week_number(date(year, month, day)) for day in range(1, last_day + 1)}
    crosses_year = any(w >= 48 for w in weeks) and any(w <= 5 for w in weeks)

    def sort_key(week: int) -> tuple[int, int]:
        if crosses_year and month == 1 and week >= 48:
            return (0, week)
        if crosses_year and month == 12 and week <= 5:
            return (2, week)
        return (1, week)

    return sorted(weeks, key=sort_key)
