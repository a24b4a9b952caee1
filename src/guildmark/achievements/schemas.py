"""Pydantic request/response models for achievement and hour endpoints."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

from guildmark.achievements.domain import ActivityKind, Period, TemplateKind


# --- Achievements ---


class ViewAction(str, Enum):
    NONE = "none"
    GRANT = "grant"
    REVOKE = "revoke"


class AchievementView(BaseModel):
    template_id: int
    title: str
    category: TemplateKind
    points: int
    is_locked: bool
    attribution_initials: list[str] = []
    attribution_names: list[str] = []
    requirement_text: str
    action: ViewAction = ViewAction.NONE


class AchievementSummary(BaseModel):
    unlocked: int
    total: int
    points: int


class AchievementListResponse(BaseModel):
    items: list[AchievementView]
    summary: AchievementSummary


class GrantRequest(BaseModel):
    mentor_id: int


class SyncResultResponse(BaseModel):
    action: str
    template_id: int
    user_id: int
    mentor_id: int | None = None


# --- Statistics ---


class StatsPeriod(str, Enum):
    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    YEAR = "year"
    ALL = "all"


class StatsResponse(BaseModel):
    period: StatsPeriod
    start: datetime | None = None
    end: datetime | None = None
    mentor_id: int | None = None
    work_hours: float
    study_hours: float
    total_hours: float
    project_count: int


# --- Hours ---


class HourEntryRequest(BaseModel):
    kind: ActivityKind
    hours: float = Field(ge=0, le=24, multiple_of=0.5)
    occurred_at: datetime
    mentor_id: int | None = None
    note: str = ""


class HourEntryResponse(BaseModel):
    id: int
    owner_id: int
    kind: ActivityKind | None = None
    hours: float
    occurred_at: datetime
    mentor_id: int | None = None
    note: str = ""


class QuotaCheckRequest(BaseModel):
    kind: ActivityKind
    hours: float = Field(ge=0)
    previous_hours: float = Field(default=0, ge=0)
    occurred_at: datetime
    mentor_id: int | None = None


class QuotaCheckResponse(BaseModel):
    ok: bool
    period: Period | None = None
    limit: float | None = None


# --- Limits ---


class HourLimitsPayload(BaseModel):
    max_work_per_day: float = Field(ge=0)
    max_study_per_day: float = Field(ge=0)
    max_work_per_week: float = Field(ge=0)
    max_study_per_week: float = Field(ge=0)
    max_work_per_month: float = Field(ge=0)
    max_study_per_month: float = Field(ge=0)
    max_work_per_year: float = Field(ge=0)
    max_study_per_year: float = Field(ge=0)


class HourLimitsResponse(HourLimitsPayload):
    user_id: int | None = None
    source: str  # "user", "global" or "default"
