"""Deterministic targeting-rule evaluation.

Rules are evaluated in ascending priority order against the optional
UserContext. The first rule whose conditions hold contributes its
``prompt_addition``; later rules are not consulted.

Condition semantics:
    ==, !=, >, <, >=, <=  numeric comparison when both sides coerce to float,
                          otherwise case-insensitive string (in)equality for
                          == / != and False for ordering operators
    contains              case-insensitive substring
    absent attribute      the condition is False, whatever the operator

An empty condition list never matches.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any

import structlog

from src.lastword.interview.schemas import (
    Condition,
    ConditionOperator,
    Rule,
    RuleLogic,
    UserContext,
)

logger = structlog.get_logger(__name__)


def _as_number(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return None
    return None


def evaluate_condition(condition: Condition, context: UserContext | None) -> bool:
    """Evaluate one condition. Missing context or attribute is always False."""
    if context is None:
        return False
    actual = getattr(context, condition.variable.value, None)
    if actual is None or actual == "":
        return False

    expected = condition.value
    op = condition.operator

    if op is ConditionOperator.CONTAINS:
        return str(expected).lower() in str(actual).lower()

    left = _as_number(actual)
    right = _as_number(expected)
    if left is not None and right is not None:
        if op is ConditionOperator.EQ:
            return left == right
        if op is ConditionOperator.NE:
            return left != right
        if op is ConditionOperator.GT:
            return left > right
        if op is ConditionOperator.LT:
            return left < right
        if op is ConditionOperator.GE:
            return left >= right
        return left <= right

    # Non-numeric operands: only equality makes sense
    if op is ConditionOperator.EQ:
        return str(actual).strip().lower() == str(expected).strip().lower()
    if op is ConditionOperator.NE:
        return str(actual).strip().lower() != str(expected).strip().lower()
    return False


def rule_matches(rule: Rule, context: UserContext | None) -> bool:
    """Combine a rule's condition results with its AND/OR logic."""
    if not rule.conditions:
        return False
    results = (evaluate_condition(c, context) for c in rule.conditions)
    if rule.logic is RuleLogic.OR:
        return any(results)
    return all(results)


def match_rules(rules: Iterable[Rule], context: UserContext | None) -> str | None:
    """Return the prompt addition of the first matching rule, or None.

    Rules are sorted by priority here (stable, so equal priorities keep the
    order the caller supplied) rather than trusting the caller's ordering.
    """
    for rule in sorted(rules, key=lambda r: r.priority):
        if rule_matches(rule, context):
            logger.info("rules.matched", rule_id=rule.id, rule_name=rule.name, priority=rule.priority)
            text = rule.prompt_addition.strip()
            return text or None
    return None
