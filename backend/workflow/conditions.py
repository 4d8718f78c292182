"""Condition evaluation against accumulated step outputs.

A condition is one of:

- a boolean literal, returned as is;
- a string, placeholder-resolved then read as ``true``/``false`` or
  evaluated as a restricted expression;
- a structured triple ``{"operator": ..., "left": ..., "right": ...}``.

Evaluation never raises: anything that cannot be evaluated is False.
"""

import math
from typing import Any, Callable, Mapping

import structlog

from core.exceptions import EvaluationError
from workflow.expressions import ExpressionEvaluator
from workflow.placeholders import resolve_placeholders

logger = structlog.get_logger(__name__)


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _as_number(value: Any) -> float:
    if isinstance(value, bool):
        return float(value)
    if isinstance(value, (int, float)):
        return float(value)
    if value is None:
        return math.nan
    text = str(value).strip()
    if not text:
        return 0.0
    try:
        return float(text)
    except ValueError:
        return math.nan


def _equals(left: Any, right: Any) -> bool:
    return _as_text(left) == _as_text(right)


def _greater_than(left: Any, right: Any) -> bool:
    return _as_number(left) > _as_number(right)


def _less_than(left: Any, right: Any) -> bool:
    return _as_number(left) < _as_number(right)


def _contains(left: Any, right: Any) -> bool:
    return _as_text(right) in _as_text(left)


def _not_empty(left: Any, right: Any) -> bool:
    return left is not None and left != ""


OPERATORS: dict[str, Callable[[Any, Any], bool]] = {
    "equals": _equals,
    "not_equals": lambda left, right: not _equals(left, right),
    "greater_than": _greater_than,
    "less_than": _less_than,
    "contains": _contains,
    "not_empty": _not_empty,
}


def _evaluate_string(condition: str, outputs: Mapping[str, Any]) -> bool:
    resolved = resolve_placeholders(condition, outputs).strip()
    lowered = resolved.lower()
    if lowered == "true":
        return True
    if lowered == "false":
        return False
    try:
        return ExpressionEvaluator.evaluate_bool(resolved)
    except EvaluationError as e:
        logger.debug("Condition expression not evaluable", expression=resolved, error=str(e))
        return False


def _evaluate_structured(condition: Mapping[str, Any], outputs: Mapping[str, Any]) -> bool:
    operator = condition.get("operator")
    handler = OPERATORS.get(operator) if isinstance(operator, str) else None
    if handler is None:
        logger.debug("Unknown condition operator", operator=operator)
        return False
    left = resolve_placeholders(condition.get("left"), outputs)
    right = resolve_placeholders(condition.get("right"), outputs)
    return handler(left, right)


def evaluate_condition(condition: Any, outputs: Mapping[str, Any]) -> bool:
    """Evaluate ``condition`` to a boolean; never raises."""
    if isinstance(condition, bool):
        return condition
    if isinstance(condition, str):
        return _evaluate_string(condition, outputs)
    if isinstance(condition, Mapping):
        return _evaluate_structured(condition, outputs)
    return False
