"""Pure threshold comparison for rules.

``evaluate(operator, metric_value, threshold)`` answers "is this value a
breach?" for the five supported operators. Operator codes are matched
case-insensitively. An unknown code is never a breach: it evaluates to
``False`` instead of raising, so a misconfigured rule cannot fire.
"""

from __future__ import annotations

import operator as _op
from decimal import Decimal
from enum import Enum
from typing import Any, Callable

from signal_engine.core.enums import RuleOperator

_COMPARATORS: dict[str, Callable[[Decimal, Decimal], bool]] = {
    RuleOperator.GT.value: _op.gt,
    RuleOperator.GTE.value: _op.ge,
    RuleOperator.LT.value: _op.lt,
    RuleOperator.LTE.value: _op.le,
    RuleOperator.EQ.value: _op.eq,
}

_DESCRIPTIONS: dict[str, str] = {
    RuleOperator.GT.value: "exceeded",
    RuleOperator.GTE.value: "met or exceeded",
    RuleOperator.LT.value: "fell below",
    RuleOperator.LTE.value: "met or fell below",
    RuleOperator.EQ.value: "equaled",
}


def normalize_code(code: Any) -> str:
    """Upper-case, stripped form of an enum member or string code.

    Used for operators, severities, evaluation frequencies and channels.
    """
    if code is None:
        return ""
    if isinstance(code, Enum):
        code = code.value
    return str(code).strip().upper()


def evaluate(operator: Any, metric_value: Decimal, threshold: Decimal) -> bool:
    """Return True when ``metric_value`` breaches ``threshold`` under ``operator``.

    Args:
        operator: One of GT, GTE, LT, LTE, EQ (any case) or a RuleOperator.
        metric_value: Latest metric value.
        threshold: Rule threshold.

    Returns:
        The comparison result; ``False`` for unknown operators. EQ is exact
        decimal equality with no tolerance.
    """
    comparator = _COMPARATORS.get(normalize_code(operator))
    if comparator is None:
        return False
    return comparator(metric_value, threshold)


def describe_operator(operator: Any) -> str:
    """Human-readable verb phrase for signal descriptions."""
    return _DESCRIPTIONS.get(normalize_code(operator), "breached")
