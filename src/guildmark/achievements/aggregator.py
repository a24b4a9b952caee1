"""Activity aggregation: raw entries and projects into a statistics snapshot."""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime

from guildmark.achievements.domain import (
    ActivityEntry,
    ActivityKind,
    Project,
    StatisticsSnapshot,
    finite_or_zero,
)
from guildmark.achievements.time_windows import TimeWindow


def _in_window(moment: datetime | None, window: TimeWindow | None) -> bool:
    if window is None:
        return True
    if moment is None:
        return False
    return window.contains(moment)


def _in_scope(mentor_id: int | None, mentor_filter: int | None) -> bool:
    # An active filter excludes entries with no mentor.
    return mentor_filter is None or mentor_id == mentor_filter


def sum_hours(
    entries: Iterable[ActivityEntry],
    kind: ActivityKind,
    window: TimeWindow | None = None,
    mentor_filter: int | None = None,
) -> float:
    """Total hours of one category inside ``window`` (``None`` = all time)."""
    return sum(
        (
            finite_or_zero(e.hours)
            for e in entries
            if e.kind is kind
            and _in_window(e.occurred_at, window)
            and _in_scope(e.attributed_mentor_id, mentor_filter)
        ),
        0.0,
    )


def count_projects(
    projects: Iterable[Project],
    window: TimeWindow | None = None,
    mentor_filter: int | None = None,
) -> int:
    return sum(
        1
        for p in projects
        if _in_window(p.created_at, window) and _in_scope(p.attributed_mentor_id, mentor_filter)
    )


def aggregate(
    entries: Iterable[ActivityEntry],
    window: TimeWindow | None = None,
    mentor_filter: int | None = None,
    projects: Iterable[Project] = (),
) -> StatisticsSnapshot:
    """Reduce entries (and projects) to scalar totals.

    ``window`` None aggregates over all time. With ``mentor_filter`` set, only
    rows attributed to that mentor are counted.
    """
    entries = list(entries)
    work = sum_hours(entries, ActivityKind.WORK, window, mentor_filter)
    study = sum_hours(entries, ActivityKind.STUDY, window, mentor_filter)
    return StatisticsSnapshot(
        work_hours=work,
        study_hours=study,
        total_hours=work + study,
        project_count=count_projects(projects, window, mentor_filter),
    )
