"""Rule evaluation engine."""

from .cycle import EvaluationCycle, EvaluationResult, RuleOutcome

__all__ = ["EvaluationCycle", "EvaluationResult", "RuleOutcome"]
