"""Unit tests for hour quota validation."""

from datetime import datetime

import pytest

from guildmark.achievements.domain import ActivityEntry, ActivityKind, HourLimits, Period
from guildmark.achievements.exceptions import QuotaExceeded
from guildmark.achievements.quota import (
    check_quota,
    default_limits,
    enforce_quota,
    resolve_limits,
)
from guildmark.config import Settings

DAY = datetime(2026, 3, 4, 12, 0)  # Wednesday


def _limits(**overrides) -> HourLimits:
    base = default_limits(Settings()).model_dump()
    base.update(overrides)
    return HourLimits(**base)


def _work(hours, when=DAY, mentor=None, entry_id=None):
    return ActivityEntry(
        id=entry_id,
        owner_id=1,
        kind=ActivityKind.WORK,
        hours=hours,
        occurred_at=when,
        attributed_mentor_id=mentor,
    )


class TestEditScenario:
    """Edits are judged on the marginal change."""

    def setup_method(self):
        # Same-day work sums to 6, including the 2h entry being edited.
        self.entries = [_work(4), _work(2, entry_id=7)]
        self.limits = _limits(max_work_per_day=8)

    def test_edit_two_to_three_passes(self):
        assert check_quota(ActivityKind.WORK, 3, 2, DAY, self.limits, self.entries) is None

    def test_edit_two_to_five_violates_day(self):
        violation = check_quota(ActivityKind.WORK, 5, 2, DAY, self.limits, self.entries)
        assert violation is not None
        assert violation.period is Period.DAY
        assert violation.limit == 8

    def test_new_entry_exactly_at_limit_passes(self):
        assert check_quota(ActivityKind.WORK, 2, 0, DAY, self.limits, self.entries) is None


class TestPeriodOrder:
    """Day is checked first, then week, month and year."""

    def test_day_reported_before_week(self):
        limits = _limits(max_work_per_day=8, max_work_per_week=8)
        violation = check_quota(ActivityKind.WORK, 9, 0, DAY, limits, [])
        assert violation.period is Period.DAY

    def test_week_violation_when_day_fits(self):
        entries = [_work(8, datetime(2026, 3, 2, 9)), _work(8, datetime(2026, 3, 3, 9))]
        limits = _limits(max_work_per_day=8, max_work_per_week=20)
        violation = check_quota(ActivityKind.WORK, 5, 0, DAY, limits, entries)
        assert violation.period is Period.WEEK
        assert violation.current == 16

    def test_year_violation(self):
        entries = [_work(100, datetime(2026, 1, 15))]
        limits = _limits(max_work_per_day=24, max_work_per_year=104)
        assert check_quota(ActivityKind.WORK, 5, 0, DAY, limits, entries).period is Period.YEAR

    def test_other_category_is_ignored(self):
        study = ActivityEntry(owner_id=1, kind=ActivityKind.STUDY, hours=4, occurred_at=DAY)
        assert check_quota(ActivityKind.WORK, 8, 0, DAY, _limits(), [study]) is None


class TestMonotonicity:

    @pytest.mark.parametrize("delta", [5, 6, 10, 40])
    def test_larger_delta_never_more_permissive(self, delta):
        entries = [_work(8, datetime(2026, 3, 2, 9)), _work(8, datetime(2026, 3, 3, 9))]
        limits = _limits(max_work_per_day=100, max_work_per_week=20)
        assert check_quota(ActivityKind.WORK, 5, 0, DAY, limits, entries).period is Period.WEEK
        assert check_quota(ActivityKind.WORK, delta, 0, DAY, limits, entries) is not None

    def test_shrinking_edit_still_over_lowered_limit_violates(self):
        # Limits were lowered after the entry was logged: 10 + (-1) = 9 > 4.
        entries = [_work(10, entry_id=1)]
        violation = check_quota(ActivityKind.WORK, 9, 10, DAY, _limits(max_work_per_day=4), entries)
        assert violation is not None
        assert violation.period is Period.DAY
        assert violation.limit == 4
        assert violation.delta == -1

    def test_shrinking_edit_back_under_limit_passes(self):
        entries = [_work(10, entry_id=1)]
        assert check_quota(ActivityKind.WORK, 3, 10, DAY, _limits(max_work_per_day=4), entries) is None


class TestMentorScope:

    def test_sums_only_same_mentor(self):
        entries = [_work(6, mentor=10), _work(6, mentor=20)]
        limits = _limits(max_work_per_day=8)
        assert check_quota(ActivityKind.WORK, 2, 0, DAY, limits, entries, mentor_id=10) is None
        assert check_quota(ActivityKind.WORK, 3, 0, DAY, limits, entries, mentor_id=10) is not None


class TestLimitResolution:

    def test_user_override_wins_without_merging(self):
        user = HourLimits(user_id=1, max_work_per_day=2)
        shared = _limits(max_work_per_day=10)
        resolved = resolve_limits(user, shared, Settings())
        assert resolved is user
        assert resolved.max_study_per_day == 0

    def test_global_when_no_override(self):
        shared = _limits(max_work_per_day=10)
        assert resolve_limits(None, shared, Settings()) is shared

    def test_builtin_defaults(self):
        resolved = resolve_limits(None, None, Settings())
        assert resolved.max_work_per_day == 8
        assert resolved.max_study_per_day == 4
        assert resolved.max_work_per_year == 1920


class TestEnforce:

    def test_raises_with_violation(self):
        with pytest.raises(QuotaExceeded) as excinfo:
            enforce_quota(ActivityKind.WORK, 9, 0, DAY, _limits(), [])
        assert excinfo.value.violation.period is Period.DAY
        assert str(excinfo.value) == "Day limit of 8h for work exceeded"

    def test_passes_silently(self):
        enforce_quota(ActivityKind.WORK, 1, 0, DAY, _limits(), [])
