"""Hour entry and limit service tests against the in-memory store."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from guildmark.achievements import service
from guildmark.achievements.domain import ActivityEntry, ActivityKind, HourLimits
from guildmark.achievements.exceptions import QuotaExceeded
from guildmark.achievements.schemas import HourEntryRequest

APPRENTICE = 1
EASTERN = timezone(timedelta(hours=-5))


class TestEffectiveLimits:

    @pytest.mark.asyncio
    async def test_user_override(self, store, settings):
        override = HourLimits(user_id=APPRENTICE, max_work_per_day=2)
        await store.put_hour_limits(override)
        await store.put_hour_limits(HourLimits(max_work_per_day=6))
        limits, source = await service.effective_limits(store, APPRENTICE, settings)
        assert source == "user"
        assert limits.max_work_per_day == 2
        assert limits.max_study_per_day == 0

    @pytest.mark.asyncio
    async def test_global_row(self, store, settings):
        await store.put_hour_limits(HourLimits(max_work_per_day=6))
        limits, source = await service.effective_limits(store, APPRENTICE, settings)
        assert source == "global"
        assert limits.max_work_per_day == 6

    @pytest.mark.asyncio
    async def test_builtin_defaults(self, store, settings):
        limits, source = await service.effective_limits(store, APPRENTICE, settings)
        assert source == "default"
        assert limits.max_work_per_day == settings.max_work_hours_day

    @pytest.mark.asyncio
    async def test_global_limits_ignore_overrides(self, store, settings):
        await store.put_hour_limits(HourLimits(user_id=APPRENTICE, max_work_per_day=2))
        limits, source = await service.global_limits(store, settings)
        assert source == "default"
        assert limits.max_work_per_day == settings.max_work_hours_day


class TestEditBucket:
    """An edit stays in its bucket only when the stored time falls on the request's local day."""

    def _existing(self, when: datetime) -> ActivityEntry:
        return ActivityEntry(id=1, owner_id=APPRENTICE, kind=ActivityKind.WORK, hours=6, occurred_at=when)

    def _request(self, when: datetime) -> HourEntryRequest:
        return HourEntryRequest(kind=ActivityKind.WORK, hours=7, occurred_at=when)

    def test_same_local_day_across_utc_midnight(self):
        existing = self._existing(datetime(2026, 3, 5, 0, 30, tzinfo=timezone.utc))
        assert service._same_bucket(existing, self._request(datetime(2026, 3, 4, 20, tzinfo=EASTERN)))

    def test_same_utc_date_but_previous_local_day(self):
        existing = self._existing(datetime(2026, 3, 4, 3, 0, tzinfo=timezone.utc))
        assert not service._same_bucket(existing, self._request(datetime(2026, 3, 4, 20, tzinfo=EASTERN)))

    def test_other_kind_is_a_move(self):
        when = datetime(2026, 3, 4, 12, tzinfo=timezone.utc)
        request = HourEntryRequest(kind=ActivityKind.STUDY, hours=1, occurred_at=when)
        assert not service._same_bucket(self._existing(when), request)


class TestUpdateHours:

    @pytest.mark.asyncio
    async def test_entry_from_previous_local_day_counts_as_moved(self, store, engine, settings):
        # 22:00 on March 3rd in the request's zone, but March 4th in UTC.
        moved = store.log(APPRENTICE, ActivityKind.WORK, 6, datetime(2026, 3, 4, 3, 0, tzinfo=timezone.utc))
        store.log(APPRENTICE, ActivityKind.WORK, 2, datetime(2026, 3, 4, 12, tzinfo=EASTERN))
        request = HourEntryRequest(kind=ActivityKind.WORK, hours=7, occurred_at=datetime(2026, 3, 4, 20, tzinfo=EASTERN))

        with pytest.raises(QuotaExceeded) as excinfo:
            await service.update_hours(store, engine, APPRENTICE, moved.id, request, settings)
        assert excinfo.value.violation.current == 2
        assert excinfo.value.violation.delta == 7
        assert store.entries[moved.id].hours == 6
