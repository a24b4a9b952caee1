"""Rule evaluation: does a statistics snapshot satisfy a template's rule set?"""

from __future__ import annotations

from collections.abc import Callable

from pydantic import BaseModel, Field

from guildmark.achievements.domain import (
    RuleCombinator,
    RuleSet,
    RuleType,
    StatisticsSnapshot,
    UnlockRule,
)

# Every automatic rule type maps to the snapshot metric it is compared against.
METRICS: dict[RuleType, Callable[[StatisticsSnapshot], float]] = {
    RuleType.WORK_HOURS: lambda s: s.work_hours,
    RuleType.STUDY_HOURS: lambda s: s.study_hours,
    RuleType.TOTAL_HOURS: lambda s: s.total_hours,
    RuleType.PROJECT_COUNT: lambda s: s.project_count,
}


class RuleVerdict(BaseModel):
    """Outcome of evaluating one rule set.

    ``satisfied_rules`` lists the automatic rules that currently hold, whether
    or not the combinator as a whole is satisfied.
    """

    satisfied: bool = False
    manual_only: bool = False
    satisfied_rules: list[UnlockRule] = Field(default_factory=list)

    @property
    def first_satisfied_rule_id(self) -> int | None:
        return self.satisfied_rules[0].id if self.satisfied_rules else None


def rule_holds(rule: UnlockRule, snapshot: StatisticsSnapshot) -> bool:
    """Inclusive threshold check for a single automatic rule. Manual rules never hold."""
    if rule.type is RuleType.MANUAL:
        return False
    return METRICS[rule.type](snapshot) >= (rule.threshold or 0.0)


def evaluate(rule_set: RuleSet, snapshot: StatisticsSnapshot) -> RuleVerdict:
    """Evaluate the automatic part of ``rule_set`` against ``snapshot``.

    A rule set containing any manual rule is manual-only: it is unlocked by an
    explicit grant, never by statistics. Empty rule sets and rule sets without
    automatic rules are never satisfied.
    """
    automatic = [r for r in rule_set.rules if not r.is_manual]
    manual_only = len(automatic) != len(rule_set.rules)
    holding = [r for r in automatic if rule_holds(r, snapshot)]

    if not automatic:
        satisfied = False
    elif rule_set.combinator is RuleCombinator.OR:
        satisfied = bool(holding)
    else:
        satisfied = len(holding) == len(automatic)

    return RuleVerdict(satisfied=satisfied, manual_only=manual_only, satisfied_rules=holding)
