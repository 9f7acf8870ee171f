"""Targeting rule matcher tests."""

from __future__ import annotations

from src.lastword.interview.rules import evaluate_condition, match_rules, rule_matches
from src.lastword.interview.schemas import Condition, Rule, RuleLogic, UserContext


def _cond(variable: str, operator: str, value) -> Condition:
    return Condition.model_validate({"variable": variable, "operator": operator, "value": value})


# ── Conditions ────────────────────────────────────────────────────────────────


class TestEvaluateCondition:
    """Operator semantics for a single condition."""

    def test_numeric_gte_with_string_value(self):
        ctx = UserContext(mrr=750)
        assert evaluate_condition(_cond("mrr", ">=", "500"), ctx) is True
        assert evaluate_condition(_cond("mrr", ">=", 751), ctx) is False

    def test_all_numeric_operators(self):
        ctx = UserContext(seats=10)
        assert evaluate_condition(_cond("seats", "==", 10), ctx)
        assert evaluate_condition(_cond("seats", "!=", 11), ctx)
        assert evaluate_condition(_cond("seats", ">", 9), ctx)
        assert evaluate_condition(_cond("seats", "<", 11), ctx)
        assert evaluate_condition(_cond("seats", "<=", 10), ctx)
        assert not evaluate_condition(_cond("seats", "<", 10), ctx)

    def test_contains_is_case_insensitive(self):
        ctx = UserContext(email="Jane@BigCorp.com")
        assert evaluate_condition(_cond("email", "contains", "bigcorp"), ctx) is True
        assert evaluate_condition(_cond("email", "contains", "smallco"), ctx) is False

    def test_string_equality_ignores_case(self):
        ctx = UserContext(plan="Pro")
        assert evaluate_condition(_cond("plan", "==", "pro"), ctx) is True
        assert evaluate_condition(_cond("plan", "!=", "pro"), ctx) is False

    def test_ordering_on_non_numeric_is_false(self):
        ctx = UserContext(plan="Pro")
        assert evaluate_condition(_cond("plan", ">", "Basic"), ctx) is False

    def test_absent_attribute_never_satisfies(self):
        ctx = UserContext(plan="Pro")
        for operator in ("==", "!=", ">", "<", ">=", "<=", "contains"):
            assert evaluate_condition(_cond("mrr", operator, 0), ctx) is False

    def test_no_context_never_satisfies(self):
        assert evaluate_condition(_cond("plan", "!=", "x"), None) is False


# ── Rules ─────────────────────────────────────────────────────────────────────


class TestRuleMatches:
    """AND/OR combination and empty-condition behavior."""

    def test_and_requires_every_condition(self):
        rule = Rule(
            logic=RuleLogic.AND,
            conditions=[_cond("mrr", ">=", 500), _cond("plan", "==", "enterprise")],
        )
        assert rule_matches(rule, UserContext(mrr=750, plan="Enterprise")) is True
        assert rule_matches(rule, UserContext(mrr=750, plan="Pro")) is False

    def test_or_requires_any_condition(self):
        rule = Rule(
            logic=RuleLogic.OR,
            conditions=[_cond("mrr", ">=", 500), _cond("plan", "==", "enterprise")],
        )
        assert rule_matches(rule, UserContext(mrr=10, plan="enterprise")) is True
        assert rule_matches(rule, UserContext(mrr=10, plan="pro")) is False

    def test_empty_conditions_never_match(self):
        assert rule_matches(Rule(conditions=[]), UserContext(mrr=1000)) is False


class TestMatchRules:
    """First matching rule by ascending priority wins."""

    def test_high_mrr_rule_injects_text(self):
        rule = Rule(
            name="High value",
            conditions=[_cond("mrr", ">=", 500)],
            prompt_addition="  Ask about their account manager.  ",
        )
        assert match_rules([rule], UserContext(mrr=750)) == "Ask about their account manager."

    def test_lower_priority_value_wins(self):
        late = Rule(priority=10, conditions=[_cond("seats", ">", 1)], prompt_addition="late")
        early = Rule(priority=1, conditions=[_cond("seats", ">", 1)], prompt_addition="early")
        assert match_rules([late, early], UserContext(seats=5)) == "early"

    def test_no_match_returns_none(self):
        rule = Rule(conditions=[_cond("mrr", ">=", 500)], prompt_addition="x")
        assert match_rules([rule], UserContext(mrr=100)) is None
        assert match_rules([rule], None) is None
