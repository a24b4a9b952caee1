"""Hour quota validation for new and edited activity entries."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import date, datetime

from pydantic import BaseModel

from guildmark.achievements.aggregator import sum_hours
from guildmark.achievements.domain import ActivityEntry, ActivityKind, HourLimits, Period, finite_or_zero
from guildmark.achievements.exceptions import QuotaExceeded
from guildmark.achievements.time_windows import period_bounds
from guildmark.config import Settings

logger = logging.getLogger(__name__)

CHECK_ORDER = (Period.DAY, Period.WEEK, Period.MONTH, Period.YEAR)


class QuotaViolation(BaseModel):
    period: Period
    category: ActivityKind
    limit: float
    current: float
    delta: float


def default_limits(settings: Settings) -> HourLimits:
    """Built-in global limits used when the store has no global row."""
    return HourLimits(
        max_work_per_day=settings.max_work_hours_day,
        max_study_per_day=settings.max_study_hours_day,
        max_work_per_week=settings.max_work_hours_week,
        max_study_per_week=settings.max_study_hours_week,
        max_work_per_month=settings.max_work_hours_month,
        max_study_per_month=settings.max_study_hours_month,
        max_work_per_year=settings.max_work_hours_year,
        max_study_per_year=settings.max_study_hours_year,
    )


def resolve_limits(
    user_limits: HourLimits | None,
    global_limits: HourLimits | None,
    settings: Settings,
) -> HourLimits:
    """Per-user override wins outright; the two records are never merged field by field."""
    if user_limits is not None:
        return user_limits
    if global_limits is not None:
        return global_limits
    return default_limits(settings)


def check_quota(
    category: ActivityKind,
    proposed_hours: float,
    previous_hours: float,
    reference_date: datetime | date,
    limits: HourLimits,
    entries: Iterable[ActivityEntry],
    mentor_id: int | None = None,
) -> QuotaViolation | None:
    """Return the first violated period (day, week, month, year), or None if the entry fits.

    Edits are judged on the marginal change ``proposed - previous``. ``entries``
    must already include the entry being edited, so its previous hours are part
    of each period's current sum. Sums are scoped to ``mentor_id`` the same way
    the entry being written is.
    """
    delta = finite_or_zero(proposed_hours) - finite_or_zero(previous_hours)
    entries = list(entries)
    for period in CHECK_ORDER:
        window = period_bounds(period, reference_date)
        current = sum_hours(entries, category, window, mentor_id)
        limit = limits.limit_for(period, category)
        if current + delta > limit:
            return QuotaViolation(
                period=period,
                category=category,
                limit=limit,
                current=current,
                delta=delta,
            )
    return None


def enforce_quota(
    category: ActivityKind,
    proposed_hours: float,
    previous_hours: float,
    reference_date: datetime | date,
    limits: HourLimits,
    entries: Iterable[ActivityEntry],
    mentor_id: int | None = None,
) -> None:
    """Raise QuotaExceeded when ``check_quota`` reports a violation."""
    violation = check_quota(
        category, proposed_hours, previous_hours, reference_date, limits, entries, mentor_id
    )
    if violation is not None:
        logger.info(
            "Quota exceeded: %s %s limit %.1fh (current %.1fh, delta %.1fh)",
            violation.category.value,
            violation.period.value,
            violation.limit,
            violation.current,
            violation.delta,
        )
        raise QuotaExceeded(violation)
