"""External record store boundary.

``AchievementStore`` is the contract the engine and the hour service depend
on. ``SqlAchievementStore`` implements it over one SQLAlchemy ``AsyncSession``
and maps ORM rows onto the sanitizing domain models, so malformed columns are
coerced on the way in. Every database or connection error leaves this module
as ``StoreUnavailable``.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Iterable
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from typing import Protocol

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from guildmark.achievements.domain import (
    AchievementRecord,
    AchievementTemplate,
    ActivityEntry,
    HourLimits,
    Project,
    UnlockHistoryEntry,
    UnlockRule,
)
from guildmark.achievements.exceptions import StoreUnavailable
from guildmark.db import models

logger = logging.getLogger(__name__)

LIMIT_FIELDS = (
    "max_work_per_day",
    "max_study_per_day",
    "max_work_per_week",
    "max_study_per_week",
    "max_work_per_month",
    "max_study_per_month",
    "max_work_per_year",
    "max_study_per_year",
)


class AchievementStore(Protocol):
    """Reads and writes the engine needs from the external store."""

    # --- reads ---

    async def list_activity(self, user_id: int) -> list[ActivityEntry]: ...

    async def get_activity_entry(self, entry_id: int) -> ActivityEntry | None: ...

    async def list_projects(self, user_id: int) -> list[Project]: ...

    async def list_templates(self, visible_only: bool = True) -> list[AchievementTemplate]: ...

    async def get_template(self, template_id: int) -> AchievementTemplate | None: ...

    async def list_rules(self, template_id: int | None = None) -> list[UnlockRule]: ...

    async def list_records(self, user_id: int) -> list[AchievementRecord]: ...

    async def list_history(self, user_id: int) -> list[UnlockHistoryEntry]: ...

    async def list_mentors(self, apprentice_id: int) -> list[int]: ...

    async def list_apprentices(self, mentor_id: int) -> list[int]: ...

    async def get_hour_limits(self, user_id: int | None) -> HourLimits | None: ...

    async def get_user_names(self, user_ids: Iterable[int]) -> dict[int, str]: ...

    # --- writes ---

    async def save_record(self, record: AchievementRecord) -> AchievementRecord: ...

    async def replace_history(self, entry: UnlockHistoryEntry) -> None: ...

    async def clear_history(self, user_id: int, template_id: int) -> None: ...

    async def put_hour_limits(self, limits: HourLimits) -> HourLimits: ...

    async def delete_hour_limits(self, user_id: int | None) -> bool: ...

    async def add_activity(self, entry: ActivityEntry) -> ActivityEntry: ...

    async def update_activity(self, entry: ActivityEntry) -> ActivityEntry: ...

    # --- transactions ---

    def savepoint(self) -> AbstractAsyncContextManager[None]: ...

    async def commit(self) -> None: ...


# ---------------------------------------------------------------------------
# Row mapping
# ---------------------------------------------------------------------------


def _entry(row: models.ActivityEntry) -> ActivityEntry:
    return ActivityEntry.model_validate({
        "id": row.id,
        "owner_id": row.owner_id,
        "kind": row.kind,
        "hours": row.hours,
        "occurred_at": row.occurred_at,
        "attributed_mentor_id": row.mentor_id,
        "note": row.note,
    })


def _project(row: models.Project) -> Project:
    return Project(
        id=row.id,
        owner_id=row.owner_id,
        attributed_mentor_id=row.mentor_id,
        title=row.title,
        created_at=row.created_at,
    )


def _template(row: models.AchievementTemplate) -> AchievementTemplate:
    return AchievementTemplate(
        id=row.id,
        title=row.title,
        kind=row.kind,
        scope=row.scope,
        points=row.points,
        rule_combinator=row.rule_combinator,
        is_visible=row.is_visible,
    )


def _rule(row: models.UnlockRule) -> UnlockRule:
    return UnlockRule(id=row.id, template_id=row.template_id, type=row.rule_type, threshold=row.threshold)


def _record(row: models.AchievementRecord) -> AchievementRecord:
    return AchievementRecord(
        id=row.id,
        user_id=row.user_id,
        template_id=row.template_id,
        mentor_id=row.mentor_id,
        locked=row.locked,
        earned_at=row.earned_at,
        granted_by=row.granted_by,
    )


def _limits(row: models.HourLimit) -> HourLimits:
    return HourLimits(user_id=row.user_id, **{f: getattr(row, f) for f in LIMIT_FIELDS})


def _is(column, value):  # noqa: ANN001, ANN202
    """Equality that also matches SQL NULL."""
    return column.is_(None) if value is None else column == value


class SqlAchievementStore:
    """AchievementStore over a single AsyncSession.

    An AsyncSession cannot run two statements at once, so concurrent reads
    issued by the engine are serialized on an internal lock.
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session
        self._lock = asyncio.Lock()

    @asynccontextmanager
    async def _io(self) -> AsyncIterator[AsyncSession]:
        async with self._lock:
            try:
                yield self.session
            except (SQLAlchemyError, OSError) as exc:
                raise StoreUnavailable(str(exc)) from exc

    # --- reads ---

    async def list_activity(self, user_id: int) -> list[ActivityEntry]:
        async with self._io() as db:
            result = await db.execute(
                select(models.ActivityEntry)
                .where(models.ActivityEntry.owner_id == user_id)
                .order_by(models.ActivityEntry.occurred_at)
            )
            return [_entry(r) for r in result.scalars()]

    async def get_activity_entry(self, entry_id: int) -> ActivityEntry | None:
        async with self._io() as db:
            row = await db.get(models.ActivityEntry, entry_id)
            return _entry(row) if row else None

    async def list_projects(self, user_id: int) -> list[Project]:
        async with self._io() as db:
            result = await db.execute(select(models.Project).where(models.Project.owner_id == user_id))
            return [_project(r) for r in result.scalars()]

    async def list_templates(self, visible_only: bool = True) -> list[AchievementTemplate]:
        query = select(models.AchievementTemplate).order_by(
            models.AchievementTemplate.sort_order, models.AchievementTemplate.id
        )
        if visible_only:
            query = query.where(models.AchievementTemplate.is_visible.is_(True))
        async with self._io() as db:
            result = await db.execute(query)
            return [_template(r) for r in result.scalars()]

    async def get_template(self, template_id: int) -> AchievementTemplate | None:
        async with self._io() as db:
            row = await db.get(models.AchievementTemplate, template_id)
            return _template(row) if row else None

    async def list_rules(self, template_id: int | None = None) -> list[UnlockRule]:
        query = select(models.UnlockRule).order_by(models.UnlockRule.id)
        if template_id is not None:
            query = query.where(models.UnlockRule.template_id == template_id)
        async with self._io() as db:
            result = await db.execute(query)
            rules: list[UnlockRule] = []
            for row in result.scalars():
                try:
                    rules.append(_rule(row))
                except ValueError:
                    logger.warning("Skipping unlock rule %s with unknown type %r", row.id, row.rule_type)
            return rules

    async def list_records(self, user_id: int) -> list[AchievementRecord]:
        async with self._io() as db:
            result = await db.execute(
                select(models.AchievementRecord).where(models.AchievementRecord.user_id == user_id)
            )
            return [_record(r) for r in result.scalars()]

    async def list_history(self, user_id: int) -> list[UnlockHistoryEntry]:
        async with self._io() as db:
            result = await db.execute(
                select(models.UnlockHistory).where(models.UnlockHistory.user_id == user_id)
            )
            return [
                UnlockHistoryEntry(
                    user_id=r.user_id,
                    template_id=r.template_id,
                    unlocked_by=r.unlocked_by,
                    rule_id=r.rule_id,
                )
                for r in result.scalars()
            ]

    async def list_mentors(self, apprentice_id: int) -> list[int]:
        async with self._io() as db:
            result = await db.execute(
                select(models.MentorApprentice.mentor_id)
                .where(models.MentorApprentice.apprentice_id == apprentice_id)
                .order_by(models.MentorApprentice.mentor_id)
            )
            return list(result.scalars())

    async def list_apprentices(self, mentor_id: int) -> list[int]:
        async with self._io() as db:
            result = await db.execute(
                select(models.MentorApprentice.apprentice_id)
                .where(models.MentorApprentice.mentor_id == mentor_id)
                .order_by(models.MentorApprentice.apprentice_id)
            )
            return list(result.scalars())

    async def get_hour_limits(self, user_id: int | None) -> HourLimits | None:
        async with self._io() as db:
            result = await db.execute(
                select(models.HourLimit).where(_is(models.HourLimit.user_id, user_id))
            )
            row = result.scalar_one_or_none()
            return _limits(row) if row else None

    async def get_user_names(self, user_ids: Iterable[int]) -> dict[int, str]:
        ids = set(user_ids)
        if not ids:
            return {}
        async with self._io() as db:
            result = await db.execute(select(models.User.id, models.User.name).where(models.User.id.in_(ids)))
            return {row.id: row.name for row in result}

    # --- writes ---

    async def _find_record(self, db: AsyncSession, record: AchievementRecord) -> models.AchievementRecord | None:
        if record.id is not None:
            return await db.get(models.AchievementRecord, record.id)
        result = await db.execute(
            select(models.AchievementRecord).where(
                models.AchievementRecord.user_id == record.user_id,
                models.AchievementRecord.template_id == record.template_id,
                _is(models.AchievementRecord.mentor_id, record.mentor_id),
            )
        )
        return result.scalar_one_or_none()

    async def save_record(self, record: AchievementRecord) -> AchievementRecord:
        """Insert or update the record for its (user, template, mentor) key."""
        async with self._io() as db:
            row = await self._find_record(db, record)
            if row is None:
                row = models.AchievementRecord(
                    user_id=record.user_id,
                    template_id=record.template_id,
                    mentor_id=record.mentor_id,
                )
                db.add(row)
            row.locked = record.locked
            row.earned_at = record.earned_at
            row.granted_by = record.granted_by
            await db.flush()
            return _record(row)

    async def replace_history(self, entry: UnlockHistoryEntry) -> None:
        """Overwrite the single history row for (user, template)."""
        async with self._io() as db:
            await db.execute(
                delete(models.UnlockHistory).where(
                    models.UnlockHistory.user_id == entry.user_id,
                    models.UnlockHistory.template_id == entry.template_id,
                )
            )
            db.add(models.UnlockHistory(
                user_id=entry.user_id,
                template_id=entry.template_id,
                unlocked_by=entry.unlocked_by,
                rule_id=entry.rule_id,
            ))
            await db.flush()

    async def clear_history(self, user_id: int, template_id: int) -> None:
        async with self._io() as db:
            await db.execute(
                delete(models.UnlockHistory).where(
                    models.UnlockHistory.user_id == user_id,
                    models.UnlockHistory.template_id == template_id,
                )
            )

    async def put_hour_limits(self, limits: HourLimits) -> HourLimits:
        async with self._io() as db:
            result = await db.execute(
                select(models.HourLimit).where(_is(models.HourLimit.user_id, limits.user_id))
            )
            row = result.scalar_one_or_none()
            if row is None:
                row = models.HourLimit(user_id=limits.user_id)
                db.add(row)
            for field in LIMIT_FIELDS:
                setattr(row, field, getattr(limits, field))
            await db.flush()
            return _limits(row)

    async def delete_hour_limits(self, user_id: int | None) -> bool:
        async with self._io() as db:
            result = await db.execute(delete(models.HourLimit).where(_is(models.HourLimit.user_id, user_id)))
            return bool(result.rowcount)

    async def add_activity(self, entry: ActivityEntry) -> ActivityEntry:
        async with self._io() as db:
            row = models.ActivityEntry(
                owner_id=entry.owner_id,
                kind=entry.kind.value if entry.kind else None,
                hours=entry.hours,
                occurred_at=entry.occurred_at,
                mentor_id=entry.attributed_mentor_id,
                note=entry.note,
            )
            db.add(row)
            await db.flush()
            return _entry(row)

    async def update_activity(self, entry: ActivityEntry) -> ActivityEntry:
        async with self._io() as db:
            row = await db.get(models.ActivityEntry, entry.id)
            if row is None:
                msg = f"Activity entry {entry.id} does not exist"
                raise StoreUnavailable(msg)
            row.kind = entry.kind.value if entry.kind else None
            row.hours = entry.hours
            row.occurred_at = entry.occurred_at
            row.mentor_id = entry.attributed_mentor_id
            row.note = entry.note
            await db.flush()
            return _entry(row)

    # --- transactions ---

    @asynccontextmanager
    async def savepoint(self) -> AsyncIterator[None]:
        """Nested transaction around one sync intent; rolled back if any write fails."""
        try:
            async with self.session.begin_nested():
                yield
        except (SQLAlchemyError, OSError) as exc:
            raise StoreUnavailable(str(exc)) from exc

    async def commit(self) -> None:
        async with self._io() as db:
            await db.commit()
