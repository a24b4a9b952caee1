"""Achievement, statistics, hour entry and limit endpoints."""

from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status

from guildmark.achievements import service
from guildmark.achievements.display import summarize
from guildmark.achievements.domain import ActivityEntry, HourLimits, Role
from guildmark.achievements.exceptions import NotFound
from guildmark.achievements.reconciliation import ReconciliationEngine, SyncIntent
from guildmark.achievements.schemas import (
    AchievementListResponse,
    GrantRequest,
    HourEntryRequest,
    HourEntryResponse,
    HourLimitsPayload,
    HourLimitsResponse,
    QuotaCheckRequest,
    QuotaCheckResponse,
    StatsPeriod,
    StatsResponse,
    SyncResultResponse,
)
from guildmark.achievements.store import AchievementStore
from guildmark.config import Settings, get_settings
from guildmark.dependencies import get_engine, get_store

router = APIRouter(prefix="/api/v1", tags=["Achievements"])


def _entry_response(entry: ActivityEntry) -> HourEntryResponse:
    return HourEntryResponse(
        id=entry.id,
        owner_id=entry.owner_id,
        kind=entry.kind,
        hours=entry.hours,
        occurred_at=entry.occurred_at,
        mentor_id=entry.attributed_mentor_id,
        note=entry.note,
    )


def _limits_response(limits: HourLimits, source: str) -> HourLimitsResponse:
    return HourLimitsResponse(**limits.model_dump(), source=source)


def _sync_response(intent: SyncIntent) -> SyncResultResponse:
    return SyncResultResponse(
        action=intent.action.value,
        template_id=intent.template_id,
        user_id=intent.user_id,
        mentor_id=intent.mentor_id,
    )


# ── Achievements ──


@router.get("/users/{user_id}/achievements", response_model=AchievementListResponse)
async def list_achievements(
    user_id: int,
    role: Role = Query(Role.APPRENTICE),
    viewer_id: int | None = Query(None),
    mentor_id: int | None = Query(None),
    template_id: int | None = Query(None),
    engine: ReconciliationEngine = Depends(get_engine),
):
    """Reconciled achievements of one user as seen by the given viewer."""
    if role is Role.MENTOR and viewer_id is None:
        raise HTTPException(status_code=422, detail="viewer_id is required for the mentor role")
    items = await engine.reconcile(
        user_id, role, viewer_id=viewer_id, mentor_id=mentor_id, template_id=template_id
    )
    return AchievementListResponse(items=items, summary=summarize(items))


@router.get("/mentors/{mentor_id}/achievements", response_model=AchievementListResponse)
async def list_mentor_achievements(
    mentor_id: int,
    engine: ReconciliationEngine = Depends(get_engine),
):
    """Aggregate over every apprentice connected to the mentor."""
    items = await engine.reconcile_mentor(mentor_id)
    return AchievementListResponse(items=items, summary=summarize(items))


@router.post("/users/{user_id}/achievements/{template_id}/grant", response_model=SyncResultResponse)
async def grant_achievement(
    user_id: int,
    template_id: int,
    body: GrantRequest,
    engine: ReconciliationEngine = Depends(get_engine),
):
    intent = await engine.grant(user_id, template_id, body.mentor_id)
    return _sync_response(intent)


@router.post("/users/{user_id}/achievements/{template_id}/revoke", response_model=SyncResultResponse)
async def revoke_achievement(
    user_id: int,
    template_id: int,
    body: GrantRequest,
    engine: ReconciliationEngine = Depends(get_engine),
):
    intent = await engine.revoke(user_id, template_id, body.mentor_id)
    return _sync_response(intent)


# ── Statistics ──


@router.get("/users/{user_id}/stats", response_model=StatsResponse)
async def get_stats(
    user_id: int,
    period: StatsPeriod = Query(StatsPeriod.ALL),
    on: date | None = Query(None, alias="date"),
    mentor_id: int | None = Query(None),
    store: AchievementStore = Depends(get_store),
    settings: Settings = Depends(get_settings),
):
    """Totals for the period containing ``date`` (today by default)."""
    window, snapshot = await service.statistics(
        store, user_id, period, on or date.today(), mentor_id, settings
    )
    return StatsResponse(
        period=period,
        start=window.start if window else None,
        end=window.end if window else None,
        mentor_id=mentor_id,
        **snapshot.model_dump(),
    )


# ── Hours ──


@router.post("/users/{user_id}/hours", response_model=HourEntryResponse, status_code=status.HTTP_201_CREATED)
async def create_hours(
    user_id: int,
    body: HourEntryRequest,
    store: AchievementStore = Depends(get_store),
    engine: ReconciliationEngine = Depends(get_engine),
    settings: Settings = Depends(get_settings),
):
    entry = await service.log_hours(store, engine, user_id, body, settings)
    return _entry_response(entry)


@router.put("/users/{user_id}/hours/{entry_id}", response_model=HourEntryResponse)
async def edit_hours(
    user_id: int,
    entry_id: int,
    body: HourEntryRequest,
    store: AchievementStore = Depends(get_store),
    engine: ReconciliationEngine = Depends(get_engine),
    settings: Settings = Depends(get_settings),
):
    entry = await service.update_hours(store, engine, user_id, entry_id, body, settings)
    return _entry_response(entry)


@router.post("/users/{user_id}/hours/check", response_model=QuotaCheckResponse)
async def check_hours(
    user_id: int,
    body: QuotaCheckRequest,
    store: AchievementStore = Depends(get_store),
    settings: Settings = Depends(get_settings),
):
    """Validate a proposed entry without saving it."""
    violation = await service.preview_quota(
        store, user_id, body.kind, body.hours, body.previous_hours, body.occurred_at, body.mentor_id, settings
    )
    if violation is None:
        return QuotaCheckResponse(ok=True)
    return QuotaCheckResponse(ok=False, period=violation.period, limit=violation.limit)


# ── Limits ──


@router.get("/limits", response_model=HourLimitsResponse)
async def get_global_limits(
    store: AchievementStore = Depends(get_store),
    settings: Settings = Depends(get_settings),
):
    limits, source = await service.global_limits(store, settings)
    return _limits_response(limits, source)


@router.put("/limits", response_model=HourLimitsResponse)
async def put_global_limits(body: HourLimitsPayload, store: AchievementStore = Depends(get_store)):
    saved = await store.put_hour_limits(HourLimits(**body.model_dump()))
    await store.commit()
    return _limits_response(saved, "global")


@router.delete("/limits", status_code=status.HTTP_204_NO_CONTENT)
async def delete_global_limits(store: AchievementStore = Depends(get_store)):
    """Drop the global row; the built-in defaults apply afterwards."""
    if not await store.delete_hour_limits(None):
        raise NotFound("No global hour limits are configured")
    await store.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/users/{user_id}/limits", response_model=HourLimitsResponse)
async def get_user_limits(
    user_id: int,
    store: AchievementStore = Depends(get_store),
    settings: Settings = Depends(get_settings),
):
    """Limits in effect for the user, with their source."""
    limits, source = await service.effective_limits(store, user_id, settings)
    return _limits_response(limits, source)


@router.put("/users/{user_id}/limits", response_model=HourLimitsResponse)
async def put_user_limits(
    user_id: int,
    body: HourLimitsPayload,
    store: AchievementStore = Depends(get_store),
):
    saved = await store.put_hour_limits(HourLimits(user_id=user_id, **body.model_dump()))
    await store.commit()
    return _limits_response(saved, "user")


@router.delete("/users/{user_id}/limits", status_code=status.HTTP_204_NO_CONTENT)
async def delete_user_limits(user_id: int, store: AchievementStore = Depends(get_store)):
    if not await store.delete_hour_limits(user_id):
        raise NotFound(f"User {user_id} has no hour limit override")
    await store.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)
