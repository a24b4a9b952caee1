"""Unit tests for the view projection."""

from guildmark.achievements.display import (
    get_initials,
    project,
    requirement_text,
    summarize,
)
from guildmark.achievements.domain import (
    AchievementTemplate,
    Attribution,
    ResolvedAchievement,
    Role,
    RuleType,
    TemplateKind,
    UnlockRule,
)
from guildmark.achievements.schemas import ViewAction


def _rule(rule_type, threshold=None):
    return UnlockRule(template_id=1, type=rule_type, threshold=threshold)


def _resolved(rules, locked=True, attributions=(), manual_only=False, points=10):
    return ResolvedAchievement(
        template=AchievementTemplate(id=1, title="Steady Hands", kind=TemplateKind.CERTIFICATE, points=points),
        rules=rules,
        is_locked=locked,
        manual_only=manual_only,
        attributions=list(attributions),
    )


class TestInitials:

    def test_two_parts(self):
        assert get_initials("anna bila") == "AB"

    def test_only_first_two_parts(self):
        assert get_initials("Jan Amos Komensky") == "JA"

    def test_single_name(self):
        assert get_initials("Cher") == "C"

    def test_blank(self):
        assert get_initials("   ") == "??"
        assert get_initials(None) == "??"


class TestRequirementText:

    def test_joins_automatic_rules(self):
        rules = [_rule(RuleType.WORK_HOURS, 40), _rule(RuleType.PROJECT_COUNT, 2)]
        assert requirement_text(rules) == "Log 40 work hours • Complete 2 projects"

    def test_manual_prefix(self):
        rules = [_rule(RuleType.STUDY_HOURS, 12.5), _rule(RuleType.MANUAL)]
        assert requirement_text(rules) == "Unlocked by mentor • Log 12.5 study hours"

    def test_no_rules(self):
        assert requirement_text([]) == "No criteria"


class TestProject:

    def test_locked_has_no_attribution(self):
        view = project(_resolved([_rule(RuleType.TOTAL_HOURS, 5)]), Role.APPRENTICE, {})
        assert view.is_locked is True
        assert view.attribution_initials == []
        assert view.category is TemplateKind.CERTIFICATE
        assert view.requirement_text == "Log 5 hours in total"

    def test_system_and_named_attributions(self):
        view = project(
            _resolved([], locked=False, attributions=[Attribution(), Attribution(user_id=7), Attribution(user_id=8)]),
            Role.HOST,
            {7: "Eva Mala"},
        )
        assert view.attribution_initials == ["+", "EM", "?"]
        assert view.attribution_names == ["System", "Eva Mala", "Unknown"]

    def test_action_only_for_mentor_on_manual(self):
        manual = _resolved([_rule(RuleType.MANUAL)], manual_only=True)
        assert project(manual, Role.MENTOR, {}).action is ViewAction.GRANT
        assert project(manual, Role.APPRENTICE, {}).action is ViewAction.NONE
        assert project(manual, Role.MENTOR, {}, actionable=False).action is ViewAction.NONE

        granted = _resolved([_rule(RuleType.MANUAL)], locked=False, manual_only=True,
                            attributions=[Attribution(user_id=7)])
        assert project(granted, Role.MENTOR, {7: "Eva Mala"}).action is ViewAction.REVOKE


class TestSummary:

    def test_counts_and_points(self):
        views = [
            project(_resolved([], locked=False, attributions=[Attribution()], points=10), Role.APPRENTICE, {}),
            project(_resolved([], locked=False, attributions=[Attribution()], points=15), Role.APPRENTICE, {}),
            project(_resolved([], points=100), Role.APPRENTICE, {}),
        ]
        summary = summarize(views)
        assert summary.unlocked == 2
        assert summary.total == 3
        assert summary.points == 25
