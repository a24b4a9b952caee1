"""Shared test fixtures."""

from __future__ import annotations

import asyncio
import itertools
from collections.abc import AsyncGenerator, AsyncIterator, Iterable
from contextlib import asynccontextmanager
from datetime import datetime

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from guildmark.achievements.domain import (
    AchievementRecord,
    AchievementTemplate,
    ActivityEntry,
    ActivityKind,
    HourLimits,
    Project,
    RuleType,
    UnlockHistoryEntry,
    UnlockRule,
)
from guildmark.achievements.exceptions import StoreUnavailable
from guildmark.achievements.reconciliation import ReconciliationEngine
from guildmark.config import Settings
from guildmark.dependencies import get_redis_dep, get_store
from guildmark.main import create_app


class InMemoryStore:
    """AchievementStore double with switchable read/write failures."""

    def __init__(self) -> None:
        self.users: dict[int, str] = {}
        self.links: set[tuple[int, int]] = set()  # (mentor_id, apprentice_id)
        self.entries: dict[int, ActivityEntry] = {}
        self.projects: list[Project] = []
        self.templates: dict[int, AchievementTemplate] = {}
        self.rules: list[UnlockRule] = []
        self.records: dict[tuple[int, int, int | None], AchievementRecord] = {}
        self.history: dict[tuple[int, int], UnlockHistoryEntry] = {}
        self.limits: dict[int | None, HourLimits] = {}
        self.fail_reads = False
        self.fail_writes = False
        self.read_delay = 0.0
        self.commits = 0
        self._ids = itertools.count(1)

    # --- seeding helpers ---

    def add_user(self, user_id: int, name: str) -> int:
        self.users[user_id] = name
        return user_id

    def connect(self, mentor_id: int, apprentice_id: int) -> None:
        self.links.add((mentor_id, apprentice_id))

    def add_template(
        self,
        template_id: int,
        title: str,
        rules: Iterable[tuple[RuleType, float | None]] = (),
        **fields: object,
    ) -> AchievementTemplate:
        template = AchievementTemplate(id=template_id, title=title, **fields)
        self.templates[template_id] = template
        for rule_type, threshold in rules:
            self.rules.append(UnlockRule(
                id=next(self._ids), template_id=template_id, type=rule_type, threshold=threshold
            ))
        return template

    def log(
        self,
        owner_id: int,
        kind: ActivityKind,
        hours: float,
        occurred_at: datetime,
        mentor_id: int | None = None,
    ) -> ActivityEntry:
        entry = ActivityEntry(
            id=next(self._ids),
            owner_id=owner_id,
            kind=kind,
            hours=hours,
            occurred_at=occurred_at,
            attributed_mentor_id=mentor_id,
        )
        self.entries[entry.id] = entry
        return entry

    def record(self, user_id: int, template_id: int, mentor_id: int | None = None) -> AchievementRecord | None:
        return self.records.get((user_id, template_id, mentor_id))

    # --- failure injection ---

    async def _read(self) -> None:
        if self.read_delay:
            await asyncio.sleep(self.read_delay)
        if self.fail_reads:
            raise StoreUnavailable("injected read failure")

    def _write(self) -> None:
        if self.fail_writes:
            raise StoreUnavailable("injected write failure")

    # --- reads ---

    async def list_activity(self, user_id: int) -> list[ActivityEntry]:
        await self._read()
        return [e for e in self.entries.values() if e.owner_id == user_id]

    async def get_activity_entry(self, entry_id: int) -> ActivityEntry | None:
        await self._read()
        return self.entries.get(entry_id)

    async def list_projects(self, user_id: int) -> list[Project]:
        await self._read()
        return [p for p in self.projects if p.owner_id == user_id]

    async def list_templates(self, visible_only: bool = True) -> list[AchievementTemplate]:
        await self._read()
        return [t for t in self.templates.values() if t.is_visible or not visible_only]

    async def get_template(self, template_id: int) -> AchievementTemplate | None:
        await self._read()
        return self.templates.get(template_id)

    async def list_rules(self, template_id: int | None = None) -> list[UnlockRule]:
        await self._read()
        return [r for r in self.rules if template_id is None or r.template_id == template_id]

    async def list_records(self, user_id: int) -> list[AchievementRecord]:
        await self._read()
        return [r for r in self.records.values() if r.user_id == user_id]

    async def list_history(self, user_id: int) -> list[UnlockHistoryEntry]:
        await self._read()
        return [h for h in self.history.values() if h.user_id == user_id]

    async def list_mentors(self, apprentice_id: int) -> list[int]:
        await self._read()
        return sorted(m for m, a in self.links if a == apprentice_id)

    async def list_apprentices(self, mentor_id: int) -> list[int]:
        await self._read()
        return sorted(a for m, a in self.links if m == mentor_id)

    async def get_hour_limits(self, user_id: int | None) -> HourLimits | None:
        await self._read()
        return self.limits.get(user_id)

    async def get_user_names(self, user_ids: Iterable[int]) -> dict[int, str]:
        await self._read()
        return {i: self.users[i] for i in user_ids if i in self.users}

    # --- writes ---

    async def save_record(self, record: AchievementRecord) -> AchievementRecord:
        self._write()
        existing = self.records.get(record.key)
        saved = record.model_copy(update={"id": existing.id if existing else next(self._ids)})
        self.records[saved.key] = saved
        return saved

    async def replace_history(self, entry: UnlockHistoryEntry) -> None:
        self._write()
        self.history[(entry.user_id, entry.template_id)] = entry

    async def clear_history(self, user_id: int, template_id: int) -> None:
        self._write()
        self.history.pop((user_id, template_id), None)

    async def put_hour_limits(self, limits: HourLimits) -> HourLimits:
        self._write()
        self.limits[limits.user_id] = limits
        return limits

    async def delete_hour_limits(self, user_id: int | None) -> bool:
        self._write()
        return self.limits.pop(user_id, None) is not None

    async def add_activity(self, entry: ActivityEntry) -> ActivityEntry:
        self._write()
        saved = entry.model_copy(update={"id": next(self._ids)})
        self.entries[saved.id] = saved
        return saved

    async def update_activity(self, entry: ActivityEntry) -> ActivityEntry:
        self._write()
        self.entries[entry.id] = entry
        return entry

    # --- transactions ---

    @asynccontextmanager
    async def savepoint(self) -> AsyncIterator[None]:
        records, history = dict(self.records), dict(self.history)
        try:
            yield
        except Exception:
            self.records, self.history = records, history
            raise

    async def commit(self) -> None:
        self._write()
        self.commits += 1


APPRENTICE = 1
MENTOR_A = 10
MENTOR_B = 20


@pytest.fixture
def settings() -> Settings:
    return Settings(store_read_timeout_seconds=0.5, redis_url="")


@pytest.fixture
def store() -> InMemoryStore:
    """Store with one apprentice connected to two mentors."""
    s = InMemoryStore()
    s.add_user(APPRENTICE, "Jan Novak")
    s.add_user(MENTOR_A, "Anna Bila")
    s.add_user(MENTOR_B, "Petr Cerny")
    s.connect(MENTOR_A, APPRENTICE)
    s.connect(MENTOR_B, APPRENTICE)
    return s


@pytest.fixture
def engine(store: InMemoryStore, settings: Settings) -> ReconciliationEngine:
    return ReconciliationEngine(store, None, settings)


@pytest.fixture
def app(store: InMemoryStore) -> FastAPI:
    """Application with the in-memory store swapped in for the SQL store."""
    app = create_app()

    async def _store() -> InMemoryStore:
        return store

    async def _redis() -> AsyncGenerator[None, None]:
        yield None

    app.dependency_overrides[get_store] = _store
    app.dependency_overrides[get_redis_dep] = _redis
    return app


@pytest_asyncio.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
