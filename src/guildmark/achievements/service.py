"""Hour entry, statistics and limit operations used by the HTTP layer."""

from __future__ import annotations

import asyncio
import logging
from datetime import date, datetime

from guildmark.achievements.aggregator import aggregate
from guildmark.achievements.domain import ActivityEntry, ActivityKind, HourLimits, Period, StatisticsSnapshot
from guildmark.achievements.exceptions import NotFound
from guildmark.achievements.quota import QuotaViolation, check_quota, enforce_quota, resolve_limits
from guildmark.achievements.reconciliation import ReconciliationEngine, read_or_degrade
from guildmark.achievements.schemas import HourEntryRequest, StatsPeriod
from guildmark.achievements.store import AchievementStore
from guildmark.achievements.time_windows import TimeWindow, period_bounds
from guildmark.config import Settings

logger = logging.getLogger(__name__)


async def effective_limits(
    store: AchievementStore,
    user_id: int,
    settings: Settings,
) -> tuple[HourLimits, str]:
    """Limits that apply to ``user_id`` and where they came from ("user", "global" or "default")."""
    user_limits, shared = await asyncio.gather(
        store.get_hour_limits(user_id),
        store.get_hour_limits(None),
    )
    limits = resolve_limits(user_limits, shared, settings)
    if limits is user_limits:
        return limits, "user"
    if limits is shared:
        return limits, "global"
    return limits, "default"


async def global_limits(store: AchievementStore, settings: Settings) -> tuple[HourLimits, str]:
    shared = await store.get_hour_limits(None)
    limits = resolve_limits(None, shared, settings)
    return limits, "global" if limits is shared else "default"


def _same_bucket(existing: ActivityEntry, request: HourEntryRequest) -> bool:
    """True when an edit keeps the entry in the same category, mentor scope and day."""
    return (
        existing.kind is request.kind
        and existing.attributed_mentor_id == request.mentor_id
        and existing.occurred_at is not None
        and period_bounds(Period.DAY, request.occurred_at).contains(existing.occurred_at)
    )


async def preview_quota(
    store: AchievementStore,
    owner_id: int,
    kind: ActivityKind,
    hours: float,
    previous_hours: float,
    occurred_at: datetime,
    mentor_id: int | None,
    settings: Settings,
) -> QuotaViolation | None:
    """Quota check without writing anything."""
    limits, _ = await effective_limits(store, owner_id, settings)
    entries = await store.list_activity(owner_id)
    return check_quota(kind, hours, previous_hours, occurred_at, limits, entries, mentor_id)


async def log_hours(
    store: AchievementStore,
    engine: ReconciliationEngine,
    owner_id: int,
    request: HourEntryRequest,
    settings: Settings,
) -> ActivityEntry:
    """Validate and store a new entry, then reconcile the owner's achievements."""
    limits, _ = await effective_limits(store, owner_id, settings)
    entries = await store.list_activity(owner_id)
    enforce_quota(request.kind, request.hours, 0.0, request.occurred_at, limits, entries, request.mentor_id)

    saved = await store.add_activity(ActivityEntry(
        owner_id=owner_id,
        kind=request.kind,
        hours=request.hours,
        occurred_at=request.occurred_at,
        attributed_mentor_id=request.mentor_id,
        note=request.note,
    ))
    await store.commit()
    logger.info("Logged %.1fh %s for user %s", saved.hours, request.kind.value, owner_id)

    await engine.sync(owner_id)
    return saved


async def update_hours(
    store: AchievementStore,
    engine: ReconciliationEngine,
    owner_id: int,
    entry_id: int,
    request: HourEntryRequest,
    settings: Settings,
) -> ActivityEntry:
    """Edit an entry, judging the quota on the marginal change only."""
    existing = await store.get_activity_entry(entry_id)
    if existing is None or existing.owner_id != owner_id:
        msg = f"Hour entry {entry_id} not found"
        raise NotFound(msg)

    limits, _ = await effective_limits(store, owner_id, settings)
    entries = await store.list_activity(owner_id)
    if _same_bucket(existing, request):
        previous = existing.hours
    else:
        # Moving the entry elsewhere: it no longer counts where it used to.
        entries = [e for e in entries if e.id != entry_id]
        previous = 0.0
    enforce_quota(request.kind, request.hours, previous, request.occurred_at, limits, entries, request.mentor_id)

    saved = await store.update_activity(existing.model_copy(update={
        "kind": request.kind,
        "hours": request.hours,
        "occurred_at": request.occurred_at,
        "attributed_mentor_id": request.mentor_id,
        "note": request.note,
    }))
    await store.commit()
    logger.info("Updated entry %s for user %s: %.1fh -> %.1fh", entry_id, owner_id, existing.hours, saved.hours)

    await engine.sync(owner_id)
    return saved


async def statistics(
    store: AchievementStore,
    user_id: int,
    period: StatsPeriod,
    on: date,
    mentor_id: int | None,
    settings: Settings,
) -> tuple[TimeWindow | None, StatisticsSnapshot]:
    """Snapshot for one period (or all time); zeroed when the store cannot be read."""
    window = None if period is StatsPeriod.ALL else period_bounds(Period(period.value), on)
    loaded = await read_or_degrade(
        f"statistics of {user_id}",
        settings.store_read_timeout_seconds,
        store.list_activity(user_id),
        store.list_projects(user_id),
    )
    if loaded is None:
        return window, StatisticsSnapshot.zero()
    entries, projects = loaded
    return window, aggregate(entries, window, mentor_id, projects)
