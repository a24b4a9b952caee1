"""Role-aware view models for reconciled achievements. Read-only; decides nothing."""

from __future__ import annotations

from collections.abc import Iterable, Mapping

from guildmark.achievements.domain import (
    Attribution,
    ResolvedAchievement,
    Role,
    RuleType,
    UnlockRule,
)
from guildmark.achievements.schemas import AchievementSummary, AchievementView, ViewAction

SYSTEM_INITIALS = "+"
SYSTEM_NAME = "System"
UNKNOWN_NAME = "Unknown"
MANUAL_PHRASE = "Unlocked by mentor"
NO_CRITERIA_PHRASE = "No criteria"
SEPARATOR = " • "

RULE_PHRASES: dict[RuleType, str] = {
    RuleType.WORK_HOURS: "Log {value} work hours",
    RuleType.STUDY_HOURS: "Log {value} study hours",
    RuleType.TOTAL_HOURS: "Log {value} hours in total",
    RuleType.PROJECT_COUNT: "Complete {value} projects",
}


def get_initials(name: str | None) -> str:
    """First letters of up to two name parts, upper-cased."""
    parts = (name or "").split()
    if not parts:
        return "??"
    return "".join(part[0] for part in parts).upper()[:2]


def rule_phrase(rule: UnlockRule) -> str:
    if rule.type is RuleType.MANUAL:
        return MANUAL_PHRASE
    return RULE_PHRASES[rule.type].format(value=f"{rule.threshold or 0:g}")


def requirement_text(rules: Iterable[UnlockRule]) -> str:
    rules = list(rules)
    phrases = [rule_phrase(r) for r in rules if not r.is_manual]
    if any(r.is_manual for r in rules):
        phrases.insert(0, MANUAL_PHRASE)
    return SEPARATOR.join(phrases) if phrases else NO_CRITERIA_PHRASE


def _resolve(attributions: Iterable[Attribution], names: Mapping[int, str]) -> tuple[list[str], list[str]]:
    initials: list[str] = []
    labels: list[str] = []
    for attribution in attributions:
        if attribution.is_system:
            initials.append(SYSTEM_INITIALS)
            labels.append(SYSTEM_NAME)
            continue
        name = names.get(attribution.user_id)  # type: ignore[arg-type]
        initials.append(get_initials(name) if name else "?")
        labels.append(name or UNKNOWN_NAME)
    return initials, labels


def project(
    achievement: ResolvedAchievement,
    role: Role,
    names: Mapping[int, str],
    actionable: bool = True,
) -> AchievementView:
    """Map one reconciled achievement to its view model.

    ``actionable`` False suppresses the grant/revoke hint, e.g. for the
    mentor's aggregate view where no single apprentice is selected.
    """
    template = achievement.template
    initials, labels = ([], []) if achievement.is_locked else _resolve(achievement.attributions, names)

    action = ViewAction.NONE
    if actionable and role is Role.MENTOR and achievement.manual_only:
        action = ViewAction.GRANT if achievement.is_locked else ViewAction.REVOKE

    return AchievementView(
        template_id=template.id,
        title=template.title,
        category=template.kind,
        points=template.points,
        is_locked=achievement.is_locked,
        attribution_initials=initials,
        attribution_names=labels,
        requirement_text=requirement_text(achievement.rules),
        action=action,
    )


def summarize(views: Iterable[AchievementView]) -> AchievementSummary:
    views = list(views)
    unlocked = [v for v in views if not v.is_locked]
    return AchievementSummary(
        unlocked=len(unlocked),
        total=len(views),
        points=sum(v.points for v in unlocked),
    )
