"""Achievement reconciliation engine.

Computes the locked/unlocked state of every template for a user, writes the
difference back to the store as sync intents, and builds role-aware views.

Per (user, template[, mentor]) record there are two states, locked and
unlocked. Automatic transitions follow the Rule Evaluator for templates that
are not manual-only; manual grants and revokes are explicit calls that only
apply to manual-only templates. An automatic pass never locks a record that a
mentor unlocked by hand.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Awaitable, Iterable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from guildmark.achievements.aggregator import aggregate
from guildmark.achievements.display import project
from guildmark.achievements.domain import (
    AchievementRecord,
    AchievementTemplate,
    ActivityEntry,
    Attribution,
    Project,
    ResolvedAchievement,
    Role,
    RuleSet,
    StatisticsSnapshot,
    TemplateScope,
    UnlockHistoryEntry,
    UnlockRule,
)
from guildmark.achievements.exceptions import InvalidGrant, NotFound, StoreUnavailable, SyncWriteFailure
from guildmark.achievements.rules import evaluate
from guildmark.achievements.schemas import AchievementView
from guildmark.achievements.store import AchievementStore
from guildmark.config import Settings, get_settings

logger = logging.getLogger(__name__)

UNLOCK_CHANNEL = "pubsub:achievement_unlocked"


class SyncAction(str, Enum):
    UNLOCK = "unlock"
    LOCK = "lock"
    NOOP = "noop"


@dataclass(frozen=True)
class SyncIntent:
    """One state change to write back. ``attributed_to`` None is the system."""

    action: SyncAction
    user_id: int
    template_id: int
    mentor_id: int | None = None
    attributed_to: int | None = None
    rule_id: int | None = None

    @property
    def key(self) -> tuple[int, int, int | None]:
        return (self.user_id, self.template_id, self.mentor_id)


def record_scope(template: AchievementTemplate, mentor_id: int | None) -> int | None:
    """Mentor id stored on the record: only per-mentor templates carry one."""
    return mentor_id if template.scope is TemplateScope.PER_MENTOR else None


def _intent(action: SyncAction, record: AchievementRecord, **extra: Any) -> SyncIntent:
    return SyncIntent(
        action=action,
        user_id=record.user_id,
        template_id=record.template_id,
        mentor_id=record.mentor_id,
        **extra,
    )


# ---------------------------------------------------------------------------
# Pure decisions
# ---------------------------------------------------------------------------


def decide(
    template: AchievementTemplate,
    rules: list[UnlockRule],
    record: AchievementRecord,
    snapshot: StatisticsSnapshot,
) -> SyncIntent:
    """Automatic transition for one record given the snapshot for its scope."""
    verdict = evaluate(RuleSet.for_template(template, rules), snapshot)
    if verdict.manual_only:
        return _intent(SyncAction.NOOP, record)
    if verdict.satisfied and record.locked:
        return _intent(SyncAction.UNLOCK, record, rule_id=verdict.first_satisfied_rule_id)
    if not verdict.satisfied and record.unlocked_automatically:
        return _intent(SyncAction.LOCK, record)
    return _intent(SyncAction.NOOP, record)


def _require_manual(template: AchievementTemplate, rules: list[UnlockRule]) -> None:
    if not any(r.is_manual and r.template_id == template.id for r in rules):
        msg = f"Achievement {template.id} is unlocked automatically and cannot be granted or revoked"
        raise InvalidGrant(msg)


def decide_grant(
    template: AchievementTemplate,
    rules: list[UnlockRule],
    record: AchievementRecord,
    mentor_id: int,
) -> SyncIntent:
    """Manual unlock credited to ``mentor_id``; re-granting by the same mentor is a no-op."""
    _require_manual(template, rules)
    if not record.locked and record.granted_by == mentor_id:
        return _intent(SyncAction.NOOP, record)
    return _intent(SyncAction.UNLOCK, record, attributed_to=mentor_id)


def decide_revoke(
    template: AchievementTemplate,
    rules: list[UnlockRule],
    record: AchievementRecord,
) -> SyncIntent:
    _require_manual(template, rules)
    if record.locked:
        return _intent(SyncAction.NOOP, record)
    return _intent(SyncAction.LOCK, record)


# ---------------------------------------------------------------------------
# Guarded reads
# ---------------------------------------------------------------------------


async def read_or_degrade(what: str, timeout: float, *reads: Awaitable[Any]) -> list[Any] | None:
    """Run independent store reads concurrently.

    Returns None instead of raising when the store is unavailable or slower
    than ``timeout`` seconds; callers fall back to empty data.
    """
    try:
        results = await asyncio.wait_for(asyncio.gather(*reads, return_exceptions=True), timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning("Store read timed out after %.1fs (%s), degrading", timeout, what)
        return None
    for result in results:
        if isinstance(result, StoreUnavailable):
            logger.warning("Store read failed (%s), degrading: %s", what, result)
            return None
        if isinstance(result, BaseException):
            raise result
    return list(results)


@dataclass
class _Catalog:
    templates: list[AchievementTemplate] = field(default_factory=list)
    rules: list[UnlockRule] = field(default_factory=list)

    def rules_for(self, template_id: int) -> list[UnlockRule]:
        return [r for r in self.rules if r.template_id == template_id]

    def select(self, template_id: int | None) -> list[AchievementTemplate]:
        if template_id is None:
            return self.templates
        return [t for t in self.templates if t.id == template_id]


@dataclass
class _UserContext:
    """Everything read for one user in one pass. Degraded contexts hold no user data."""

    user_id: int
    entries: list[ActivityEntry] = field(default_factory=list)
    projects: list[Project] = field(default_factory=list)
    records: dict[tuple[int, int, int | None], AchievementRecord] = field(default_factory=dict)
    history: dict[int, UnlockHistoryEntry] = field(default_factory=dict)
    mentors: list[int] = field(default_factory=list)
    degraded: bool = False
    dirty: bool = False

    def snapshot(self, mentor_filter: int | None = None) -> StatisticsSnapshot:
        if self.degraded:
            return StatisticsSnapshot.zero()
        return aggregate(self.entries, None, mentor_filter, self.projects)

    def scopes(self, template: AchievementTemplate) -> list[int | None]:
        if template.scope is TemplateScope.PER_MENTOR:
            return list(self.mentors)
        return [None]

    def record(self, template: AchievementTemplate, mentor_id: int | None) -> AchievementRecord:
        """Persisted record for the scope, or an unsaved locked placeholder."""
        key = (self.user_id, template.id, mentor_id)
        existing = self.records.get(key)
        if existing is not None:
            return existing
        return AchievementRecord(user_id=self.user_id, template_id=template.id, mentor_id=mentor_id)

    def records_for(self, template_id: int) -> list[AchievementRecord]:
        return [r for r in self.records.values() if r.template_id == template_id]


def _unique(attributions: Iterable[Attribution]) -> list[Attribution]:
    seen: set[int | None] = set()
    result = []
    for attribution in attributions:
        if attribution.user_id not in seen:
            seen.add(attribution.user_id)
            result.append(attribution)
    return result


class ReconciliationEngine:
    """Evaluates achievements for users and keeps the store in sync."""

    def __init__(
        self,
        store: AchievementStore,
        redis: object | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.store = store
        self.redis = redis
        self.settings = settings or get_settings()
        self._catalog: _Catalog | None = None

    # --- loading ---

    async def _read(self, what: str, *reads: Awaitable[Any]) -> list[Any] | None:
        return await read_or_degrade(what, self.settings.store_read_timeout_seconds, *reads)

    async def _load_catalog(self) -> _Catalog:
        """Load and cache visible templates with their rules."""
        if self._catalog is not None:
            return self._catalog
        loaded = await self._read("templates", self.store.list_templates(True), self.store.list_rules())
        if loaded is None:
            return _Catalog()
        self._catalog = _Catalog(templates=loaded[0], rules=loaded[1])
        return self._catalog

    async def _load_user(self, user_id: int) -> _UserContext:
        loaded = await self._read(
            f"user {user_id}",
            self.store.list_activity(user_id),
            self.store.list_projects(user_id),
            self.store.list_records(user_id),
            self.store.list_history(user_id),
            self.store.list_mentors(user_id),
        )
        if loaded is None:
            return _UserContext(user_id=user_id, degraded=True)
        entries, projects, records, history, mentors = loaded
        return _UserContext(
            user_id=user_id,
            entries=entries,
            projects=projects,
            records={r.key: r for r in records},
            history={h.template_id: h for h in history},
            mentors=mentors,
        )

    async def _names(self, user_ids: Iterable[int | None]) -> dict[int, str]:
        ids = {i for i in user_ids if i is not None}
        if not ids:
            return {}
        loaded = await self._read("user names", self.store.get_user_names(ids))
        return loaded[0] if loaded else {}

    # --- writes ---

    async def _ensure(self, ctx: _UserContext, catalog: _Catalog) -> int:
        created = 0
        for template in catalog.templates:
            for mentor_id in ctx.scopes(template):
                key = (ctx.user_id, template.id, mentor_id)
                if key in ctx.records:
                    continue
                try:
                    async with self.store.savepoint():
                        saved = await self.store.save_record(ctx.record(template, mentor_id))
                except StoreUnavailable as exc:
                    logger.warning(
                        "Could not create record user=%s template=%s mentor=%s: %s",
                        ctx.user_id, template.id, mentor_id, exc,
                    )
                    continue
                ctx.records[key] = saved
                ctx.dirty = True
                created += 1
        return created

    async def _apply(self, intent: SyncIntent, ctx: _UserContext) -> AchievementRecord:
        """Write one intent (record + history) inside a savepoint."""
        current = ctx.records.get(intent.key) or AchievementRecord(
            user_id=intent.user_id, template_id=intent.template_id, mentor_id=intent.mentor_id
        )
        replacement: UnlockHistoryEntry | None = None
        clear = False

        if intent.action is SyncAction.UNLOCK:
            updated = current.model_copy(update={
                "locked": False,
                "earned_at": datetime.now(timezone.utc),
                "granted_by": intent.attributed_to,
            })
            replacement = UnlockHistoryEntry(
                user_id=intent.user_id,
                template_id=intent.template_id,
                unlocked_by=intent.attributed_to,
                rule_id=intent.rule_id,
            )
        else:
            updated = current.model_copy(update={"locked": True, "earned_at": None, "granted_by": None})
            still_unlocked = [
                r for r in ctx.records_for(intent.template_id) if r.key != intent.key and not r.locked
            ]
            history = ctx.history.get(intent.template_id)
            if not still_unlocked:
                clear = True
            elif history is not None and history.unlocked_by == current.granted_by:
                # Another scope still holds the unlock; credit it instead.
                replacement = UnlockHistoryEntry(
                    user_id=intent.user_id,
                    template_id=intent.template_id,
                    unlocked_by=still_unlocked[0].granted_by,
                )

        try:
            async with self.store.savepoint():
                saved = await self.store.save_record(updated)
                if replacement is not None:
                    await self.store.replace_history(replacement)
                elif clear:
                    await self.store.clear_history(intent.user_id, intent.template_id)
        except StoreUnavailable as exc:
            raise SyncWriteFailure(
                f"{intent.action.value} failed for user={intent.user_id} "
                f"template={intent.template_id} mentor={intent.mentor_id}: {exc}"
            ) from exc

        ctx.records[saved.key] = saved
        if replacement is not None:
            ctx.history[intent.template_id] = replacement
        elif clear:
            ctx.history.pop(intent.template_id, None)
        ctx.dirty = True

        logger.info(
            "Applied %s: user=%s template=%s mentor=%s by=%s",
            intent.action.value, intent.user_id, intent.template_id, intent.mentor_id,
            intent.attributed_to if intent.attributed_to is not None else "system",
        )
        if intent.action is SyncAction.UNLOCK:
            await self._publish_unlock(intent)
        return saved

    async def _publish_unlock(self, intent: SyncIntent) -> None:
        if self.redis is None:
            return
        try:
            await self.redis.publish(  # type: ignore[attr-defined]
                UNLOCK_CHANNEL,
                json.dumps({
                    "user_id": intent.user_id,
                    "template_id": intent.template_id,
                    "mentor_id": intent.mentor_id,
                    "unlocked_by": intent.attributed_to,
                    "rule_id": intent.rule_id,
                }),
            )
        except Exception:
            logger.warning("Failed to publish achievement_unlocked notification", exc_info=True)

    async def _commit(self, ctx: _UserContext) -> None:
        if not ctx.dirty:
            return
        try:
            await self.store.commit()
        except StoreUnavailable as exc:
            logger.warning("Commit failed for user=%s, retrying on next pass: %s", ctx.user_id, exc)
        ctx.dirty = False

    async def _synchronize(
        self,
        ctx: _UserContext,
        catalog: _Catalog,
        template_id: int | None = None,
    ) -> list[SyncIntent]:
        """Decide and apply automatic transitions. Skipped entirely on degraded reads."""
        if ctx.degraded:
            return []
        await self._ensure(ctx, catalog)

        applied: list[SyncIntent] = []
        for template in catalog.select(template_id):
            rules = catalog.rules_for(template.id)
            for mentor_id in ctx.scopes(template):
                # Decisions always use the record's own scope, never the viewer's.
                intent = decide(template, rules, ctx.record(template, mentor_id), ctx.snapshot(mentor_id))
                if intent.action is SyncAction.NOOP:
                    continue
                try:
                    await self._apply(intent, ctx)
                except SyncWriteFailure as exc:
                    logger.warning("Sync write failed, will retry on next pass: %s", exc)
                    continue
                applied.append(intent)

        await self._commit(ctx)
        return applied

    # --- views ---

    @staticmethod
    def _view_mentor(role: Role, viewer_id: int | None, mentor_id: int | None) -> int | None:
        if role is Role.MENTOR:
            return viewer_id
        if role is Role.APPRENTICE:
            return mentor_id
        return None

    def _resolve(
        self,
        ctx: _UserContext,
        catalog: _Catalog,
        role: Role,
        view_mentor: int | None,
        template_id: int | None = None,
    ) -> list[ResolvedAchievement]:
        resolved = []
        for template in catalog.select(template_id):
            rules = catalog.rules_for(template.id)
            rule_set = RuleSet.for_template(template, rules)
            manual_only = any(r.is_manual for r in rules)
            records = ctx.records_for(template.id)
            if template.scope is TemplateScope.PER_MENTOR and view_mentor is not None:
                records = [r for r in records if r.mentor_id == view_mentor]

            if role is Role.HOST or manual_only:
                # Persisted truth: only records actually synced count.
                attributions = _unique(Attribution(user_id=r.granted_by) for r in records if not r.locked)
                if role is Role.HOST and not attributions:
                    continue
            elif template.scope is TemplateScope.PER_MENTOR and view_mentor is None:
                satisfied = any(evaluate(rule_set, ctx.snapshot(m)).satisfied for m in ctx.mentors)
                attributions = [Attribution()] if satisfied else []
            else:
                satisfied = evaluate(rule_set, ctx.snapshot(view_mentor)).satisfied
                attributions = [Attribution()] if satisfied else []

            resolved.append(ResolvedAchievement(
                template=template,
                rules=rules,
                is_locked=not attributions,
                manual_only=manual_only,
                attributions=attributions,
            ))
        return resolved

    # --- entry points ---

    async def sync(self, user_id: int, template_id: int | None = None) -> list[SyncIntent]:
        """Run one reconciliation pass for ``user_id`` without building views."""
        catalog = await self._load_catalog()
        ctx = await self._load_user(user_id)
        return await self._synchronize(ctx, catalog, template_id)

    async def ensure_records(self, user_id: int) -> int:
        """Create missing locked records for every visible template; returns how many."""
        catalog = await self._load_catalog()
        ctx = await self._load_user(user_id)
        if ctx.degraded:
            return 0
        created = await self._ensure(ctx, catalog)
        await self._commit(ctx)
        return created

    async def reconcile(
        self,
        user_id: int,
        role: Role,
        viewer_id: int | None = None,
        mentor_id: int | None = None,
        template_id: int | None = None,
    ) -> list[AchievementView]:
        """Sync ``user_id`` and return the view for the given viewer context.

        Apprentices see their unfiltered statistics, or the statistics logged
        under ``mentor_id`` when they selected one. Mentors (``viewer_id``)
        always see statistics filtered to themselves. Hosts see only what has
        been persisted as unlocked.
        """
        catalog = await self._load_catalog()
        ctx = await self._load_user(user_id)
        await self._synchronize(ctx, catalog, template_id)

        view_mentor = self._view_mentor(role, viewer_id, mentor_id)
        resolved = self._resolve(ctx, catalog, role, view_mentor, template_id)
        names = await self._names(a.user_id for item in resolved for a in item.attributions)
        return [project(item, role, names) for item in resolved]

    async def reconcile_mentor(self, mentor_id: int) -> list[AchievementView]:
        """Union of every connected apprentice's mentor view, attributed to the apprentices."""
        catalog = await self._load_catalog()
        loaded = await self._read(f"apprentices of {mentor_id}", self.store.list_apprentices(mentor_id))
        apprentices: list[int] = loaded[0] if loaded else []

        earned: dict[int, list[int]] = {t.id: [] for t in catalog.templates}
        for apprentice_id in apprentices:
            ctx = await self._load_user(apprentice_id)
            await self._synchronize(ctx, catalog)
            for item in self._resolve(ctx, catalog, Role.MENTOR, mentor_id):
                if not item.is_locked:
                    earned[item.template.id].append(apprentice_id)

        resolved = []
        for template in catalog.templates:
            rules = catalog.rules_for(template.id)
            resolved.append(ResolvedAchievement(
                template=template,
                rules=rules,
                is_locked=not earned[template.id],
                manual_only=any(r.is_manual for r in rules),
                attributions=[Attribution(user_id=a) for a in earned[template.id]],
            ))
        names = await self._names(apprentices)
        return [project(item, Role.MENTOR, names, actionable=False) for item in resolved]

    async def _manual_target(
        self, user_id: int, template_id: int, mentor_id: int
    ) -> tuple[AchievementTemplate, list[UnlockRule], _UserContext]:
        """Reads for an explicit grant/revoke. Store failures propagate to the caller."""
        template = await self.store.get_template(template_id)
        if template is None:
            msg = f"Achievement template {template_id} not found"
            raise NotFound(msg)
        mentors = await self.store.list_mentors(user_id)
        if mentor_id not in mentors:
            msg = f"Mentor {mentor_id} is not connected to apprentice {user_id}"
            raise InvalidGrant(msg)
        rules = await self.store.list_rules(template_id)
        records = await self.store.list_records(user_id)
        history = await self.store.list_history(user_id)
        ctx = _UserContext(
            user_id=user_id,
            records={r.key: r for r in records},
            history={h.template_id: h for h in history},
            mentors=mentors,
        )
        return template, rules, ctx

    async def _execute(self, intent: SyncIntent, ctx: _UserContext) -> SyncIntent:
        if intent.action is SyncAction.NOOP:
            return intent
        await self._apply(intent, ctx)
        await self.store.commit()
        return intent

    async def grant(self, user_id: int, template_id: int, mentor_id: int) -> SyncIntent:
        """Manually unlock a manual-only achievement for an apprentice."""
        template, rules, ctx = await self._manual_target(user_id, template_id, mentor_id)
        record = ctx.record(template, record_scope(template, mentor_id))
        return await self._execute(decide_grant(template, rules, record, mentor_id), ctx)

    async def revoke(self, user_id: int, template_id: int, mentor_id: int) -> SyncIntent:
        template, rules, ctx = await self._manual_target(user_id, template_id, mentor_id)
        record = ctx.record(template, record_scope(template, mentor_id))
        return await self._execute(decide_revoke(template, rules, record), ctx)
