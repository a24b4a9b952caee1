"""Domain types shared by the aggregation, quota and achievement pipeline.

Upstream rows are not schema-enforced, so every numeric field is sanitized on
construction: non-numeric, NaN, infinite or negative values become zero and
unparseable timestamps become ``None``. Nothing downstream ever sees NaN.
"""

from __future__ import annotations

import math
from datetime import date, datetime, time
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator


class ActivityKind(str, Enum):
    """Category of a logged activity entry."""

    WORK = "work"
    STUDY = "study"

    @classmethod
    def from_note(cls, note: str | None) -> ActivityKind | None:
        """Classify a legacy entry from its free-text note."""
        text = (note or "").lower()
        if "work" in text or "práce" in text:
            return cls.WORK
        if "study" in text or "studium" in text:
            return cls.STUDY
        return None

    @classmethod
    def parse(cls, value: Any, note: str | None = None) -> ActivityKind | None:
        """Classify a raw ``kind`` column: exact value, free-text label, then the note."""
        if isinstance(value, cls):
            return value
        text = _normalized(value)
        if text:
            try:
                return cls(text)
            except ValueError:
                return cls.from_note(text)
        return cls.from_note(note)


class Period(str, Enum):
    """Quota periods, in the order they are checked."""

    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    YEAR = "year"


class TemplateKind(str, Enum):
    BADGE = "badge"
    CERTIFICATE = "certificate"


class TemplateScope(str, Enum):
    """Global: one unlock state per apprentice. Per-mentor: one per apprentice-mentor pair."""

    GLOBAL = "global"
    PER_MENTOR = "per_mentor"


class RuleCombinator(str, Enum):
    AND = "and"
    OR = "or"


class RuleType(str, Enum):
    """Closed set of unlock condition types."""

    MANUAL = "manual"
    WORK_HOURS = "work_hours"
    STUDY_HOURS = "study_hours"
    TOTAL_HOURS = "total_hours"
    PROJECT_COUNT = "project_count"


# Condition names used by older rule rows.
_LEGACY_RULE_TYPES = {
    "projects": RuleType.PROJECT_COUNT,
    "none": RuleType.MANUAL,
}


class Role(str, Enum):
    """Viewer roles with distinct read paths."""

    APPRENTICE = "apprentice"
    MENTOR = "mentor"
    HOST = "host"


def _normalized(value: Any) -> str:
    """Raw enum text as stored upstream: trimmed, lower-cased, spaces and dashes as underscores."""
    if value is None:
        return ""
    if isinstance(value, Enum):
        value = value.value
    return str(value).strip().lower().replace("-", "_").replace(" ", "_")


def enum_or_default(enum: type[Enum], value: Any, default: Enum) -> Enum:
    """Map a raw column to ``enum``, falling back to ``default`` for unknown values."""
    try:
        return enum(_normalized(value))
    except ValueError:
        return default


def finite_or_zero(value: Any) -> float:
    """Coerce a raw numeric field to a finite, non-negative float."""
    if isinstance(value, bool):
        return 0.0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(number) or math.isinf(number) or number < 0:
        return 0.0
    return number


def coerce_timestamp(value: Any) -> datetime | None:
    """Parse a raw timestamp (datetime, date, epoch milliseconds or ISO string)."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime.combine(value, time.min)
    if isinstance(value, (int, float)):
        if math.isnan(value) or math.isinf(value):
            return None
        try:
            return datetime.fromtimestamp(value / 1000)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value)
        except ValueError:
            return None
    return None


class ActivityEntry(BaseModel):
    """One logged block of work or study hours."""

    id: int | None = None
    owner_id: int
    kind: ActivityKind | None = None
    hours: float = 0.0
    occurred_at: datetime | None = None
    attributed_mentor_id: int | None = None
    note: str = ""

    @model_validator(mode="before")
    @classmethod
    def _classify_legacy_rows(cls, data: Any) -> Any:
        if isinstance(data, dict):
            data = {**data, "kind": ActivityKind.parse(data.get("kind"), data.get("note"))}
        return data

    @field_validator("hours", mode="before")
    @classmethod
    def _sanitize_hours(cls, value: Any) -> float:
        return finite_or_zero(value)

    @field_validator("occurred_at", mode="before")
    @classmethod
    def _sanitize_timestamp(cls, value: Any) -> datetime | None:
        return coerce_timestamp(value)

    @field_validator("note", mode="before")
    @classmethod
    def _sanitize_note(cls, value: Any) -> str:
        return "" if value is None else str(value)


class Project(BaseModel):
    id: int | None = None
    owner_id: int
    attributed_mentor_id: int | None = None
    title: str = ""
    created_at: datetime | None = None

    @field_validator("created_at", mode="before")
    @classmethod
    def _sanitize_timestamp(cls, value: Any) -> datetime | None:
        return coerce_timestamp(value)


class HourLimits(BaseModel):
    """Per-category caps for each period. ``user_id`` None marks the global defaults."""

    user_id: int | None = None
    max_work_per_day: float = 0.0
    max_study_per_day: float = 0.0
    max_work_per_week: float = 0.0
    max_study_per_week: float = 0.0
    max_work_per_month: float = 0.0
    max_study_per_month: float = 0.0
    max_work_per_year: float = 0.0
    max_study_per_year: float = 0.0

    @field_validator(
        "max_work_per_day",
        "max_study_per_day",
        "max_work_per_week",
        "max_study_per_week",
        "max_work_per_month",
        "max_study_per_month",
        "max_work_per_year",
        "max_study_per_year",
        mode="before",
    )
    @classmethod
    def _sanitize_limit(cls, value: Any) -> float:
        return finite_or_zero(value)

    @property
    def is_global(self) -> bool:
        return self.user_id is None

    def limit_for(self, period: Period, kind: ActivityKind) -> float:
        return getattr(self, f"max_{kind.value}_per_{period.value}")


class AchievementTemplate(BaseModel):
    id: int
    title: str
    kind: TemplateKind = TemplateKind.BADGE
    scope: TemplateScope = TemplateScope.GLOBAL
    points: int = 0
    rule_combinator: RuleCombinator = RuleCombinator.AND
    is_visible: bool = True

    @field_validator("kind", mode="before")
    @classmethod
    def _sanitize_kind(cls, value: Any) -> TemplateKind:
        return enum_or_default(TemplateKind, value, TemplateKind.BADGE)

    @field_validator("scope", mode="before")
    @classmethod
    def _sanitize_scope(cls, value: Any) -> TemplateScope:
        return enum_or_default(TemplateScope, value, TemplateScope.GLOBAL)

    @field_validator("rule_combinator", mode="before")
    @classmethod
    def _sanitize_combinator(cls, value: Any) -> RuleCombinator:
        return enum_or_default(RuleCombinator, value, RuleCombinator.AND)

    @field_validator("points", mode="before")
    @classmethod
    def _sanitize_points(cls, value: Any) -> int:
        return int(finite_or_zero(value))


class UnlockRule(BaseModel):
    id: int | None = None
    template_id: int
    type: RuleType
    threshold: float | None = None

    @field_validator("type", mode="before")
    @classmethod
    def _accept_legacy_names(cls, value: Any) -> Any:
        if isinstance(value, str):
            lowered = _normalized(value)
            return _LEGACY_RULE_TYPES.get(lowered, lowered)
        return value

    @field_validator("threshold", mode="before")
    @classmethod
    def _sanitize_threshold(cls, value: Any) -> float | None:
        if value is None:
            return None
        return finite_or_zero(value)

    @model_validator(mode="after")
    def _manual_has_no_threshold(self) -> UnlockRule:
        if self.type is RuleType.MANUAL:
            self.threshold = None
        return self

    @property
    def is_manual(self) -> bool:
        return self.type is RuleType.MANUAL


class RuleSet(BaseModel):
    combinator: RuleCombinator = RuleCombinator.AND
    rules: list[UnlockRule] = Field(default_factory=list)

    @classmethod
    def for_template(cls, template: AchievementTemplate, rules: list[UnlockRule]) -> RuleSet:
        return cls(
            combinator=template.rule_combinator,
            rules=[r for r in rules if r.template_id == template.id],
        )


class AchievementRecord(BaseModel):
    """Persisted unlock state. ``mentor_id`` is set only for per-mentor templates."""

    id: int | None = None
    user_id: int
    template_id: int
    mentor_id: int | None = None
    locked: bool = True
    earned_at: datetime | None = None
    granted_by: int | None = None

    @property
    def key(self) -> tuple[int, int, int | None]:
        return (self.user_id, self.template_id, self.mentor_id)

    @property
    def unlocked_automatically(self) -> bool:
        return not self.locked and self.granted_by is None


class UnlockHistoryEntry(BaseModel):
    """Latest unlock attribution for a (user, template) pair. ``unlocked_by`` None means the system."""

    user_id: int
    template_id: int
    unlocked_by: int | None = None
    rule_id: int | None = None


class StatisticsSnapshot(BaseModel):
    work_hours: float = 0.0
    study_hours: float = 0.0
    total_hours: float = 0.0
    project_count: int = 0

    @classmethod
    def zero(cls) -> StatisticsSnapshot:
        return cls()


class Attribution(BaseModel):
    """Who an unlock is credited to. ``user_id`` None is the statistics-based system unlock."""

    user_id: int | None = None

    @property
    def is_system(self) -> bool:
        return self.user_id is None


class ResolvedAchievement(BaseModel):
    """Reconciled state of one template as seen from one viewer context."""

    template: AchievementTemplate
    rules: list[UnlockRule] = Field(default_factory=list)
    is_locked: bool = True
    manual_only: bool = False
    attributions: list[Attribution] = Field(default_factory=list)
