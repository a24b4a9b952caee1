"""Unit tests for unlock rule evaluation."""

import pytest

from guildmark.achievements.domain import (
    RuleCombinator,
    RuleSet,
    RuleType,
    StatisticsSnapshot,
    UnlockRule,
)
from guildmark.achievements.rules import evaluate, rule_holds


def _rule(rule_type, threshold=None, rule_id=None):
    return UnlockRule(id=rule_id, template_id=1, type=rule_type, threshold=threshold)


WORK_AND_PROJECTS = [_rule(RuleType.WORK_HOURS, 10, 1), _rule(RuleType.PROJECT_COUNT, 2, 2)]


class TestAndCombinator:

    def test_one_condition_missing(self):
        snap = StatisticsSnapshot(work_hours=10, study_hours=0, total_hours=10, project_count=1)
        verdict = evaluate(RuleSet(combinator=RuleCombinator.AND, rules=WORK_AND_PROJECTS), snap)
        assert verdict.satisfied is False
        assert verdict.manual_only is False

    def test_all_conditions_met(self):
        snap = StatisticsSnapshot(work_hours=10, total_hours=10, project_count=2)
        verdict = evaluate(RuleSet(combinator=RuleCombinator.AND, rules=WORK_AND_PROJECTS), snap)
        assert verdict.satisfied is True
        assert verdict.first_satisfied_rule_id == 1


class TestOrCombinator:

    def test_any_condition_suffices(self):
        snap = StatisticsSnapshot(work_hours=10, project_count=0)
        verdict = evaluate(RuleSet(combinator=RuleCombinator.OR, rules=WORK_AND_PROJECTS), snap)
        assert verdict.satisfied is True

    def test_none_met(self):
        snap = StatisticsSnapshot(work_hours=9.5, project_count=1)
        assert evaluate(RuleSet(combinator=RuleCombinator.OR, rules=WORK_AND_PROJECTS), snap).satisfied is False


class TestEdgeCases:

    @pytest.mark.parametrize("combinator", [RuleCombinator.AND, RuleCombinator.OR])
    def test_empty_rule_set_never_satisfied(self, combinator):
        snap = StatisticsSnapshot(work_hours=1e6, study_hours=1e6, total_hours=2e6, project_count=1000)
        assert evaluate(RuleSet(combinator=combinator, rules=[]), snap).satisfied is False

    def test_manual_only_rule_set(self):
        verdict = evaluate(RuleSet(rules=[_rule(RuleType.MANUAL)]), StatisticsSnapshot(work_hours=100))
        assert verdict.manual_only is True
        assert verdict.satisfied is False

    def test_manual_rule_not_counted_toward_and(self):
        rules = [_rule(RuleType.MANUAL), _rule(RuleType.WORK_HOURS, 5)]
        verdict = evaluate(RuleSet(rules=rules), StatisticsSnapshot(work_hours=5))
        assert verdict.manual_only is True
        assert verdict.satisfied is True

    def test_threshold_is_inclusive(self):
        assert rule_holds(_rule(RuleType.STUDY_HOURS, 4), StatisticsSnapshot(study_hours=4))
        assert not rule_holds(_rule(RuleType.STUDY_HOURS, 4), StatisticsSnapshot(study_hours=3.5))

    def test_total_hours_rule(self):
        assert rule_holds(_rule(RuleType.TOTAL_HOURS, 12), StatisticsSnapshot(total_hours=12))

    def test_manual_rule_never_holds(self):
        assert rule_holds(_rule(RuleType.MANUAL), StatisticsSnapshot(work_hours=100)) is False


class TestRuleParsing:
    """Legacy condition names map onto the closed rule types."""

    def test_legacy_names(self):
        assert UnlockRule(template_id=1, type="projects", threshold=3).type is RuleType.PROJECT_COUNT
        assert UnlockRule(template_id=1, type="none").type is RuleType.MANUAL
        assert UnlockRule(template_id=1, type="WORK_HOURS", threshold=1).type is RuleType.WORK_HOURS

    def test_unknown_type_is_rejected(self):
        with pytest.raises(ValueError):
            UnlockRule(template_id=1, type="karma", threshold=1)

    def test_manual_drops_threshold(self):
        assert UnlockRule(template_id=1, type=RuleType.MANUAL, threshold=5).threshold is None

    def test_nan_threshold_is_zero(self):
        assert UnlockRule(template_id=1, type=RuleType.WORK_HOURS, threshold=float("nan")).threshold == 0
