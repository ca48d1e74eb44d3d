"""
Module: bizflow_engines.conditions
Responsibility:
    Evaluate a CONDITION node against a document field snapshot.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - No context => True.  Callers that want a closed default must supply
      a context.
    - Numeric comparison casts both sides to a number; missing and
      non-numeric values count as 0.
    - Unknown operators, unknown field types and unparseable dates
      evaluate to True.

Failure modes:
    None -- this module never raises for malformed graph data.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any

from bizflow_kernel.domain.workflow import ConditionFieldType, ConditionNode

_ZERO = Decimal("0")


def to_number(value: Any) -> Decimal:
    """Numeric cast used by condition nodes.  Never raises."""
    if value is None:
        return _ZERO
    if isinstance(value, bool):
        return Decimal(int(value))
    if isinstance(value, Decimal):
        number = value
    else:
        text = str(value).strip()
        if not text:
            return _ZERO
        try:
            number = Decimal(text)
        except (InvalidOperation, ValueError):
            return _ZERO
    return number if number.is_finite() else _ZERO


def to_date(value: Any) -> date | None:
    """Parse an ISO date or datetime prefix; None when unparseable."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if value is None:
        return None
    text = str(value).strip()
    if len(text) < 10:
        return None
    try:
        return date.fromisoformat(text[:10])
    except ValueError:
        return None


def _to_text(value: Any) -> str:
    return "" if value is None else str(value)


def _value_list(value: Any) -> list[str]:
    if isinstance(value, (list, tuple, set, frozenset)):
        return [str(v).strip() for v in value]
    return [part.strip() for part in _to_text(value).split(",")]


def _eval_number(op: str, actual: Any, value: Any, value2: Any) -> bool:
    left = to_number(actual)
    right = to_number(value)
    if op == "gt":
        return left > right
    if op == "gte":
        return left >= right
    if op == "lt":
        return left < right
    if op == "lte":
        return left <= right
    if op == "eq":
        return left == right
    if op == "neq":
        return left != right
    if op == "between":
        if value2 is None:
            return True
        upper = to_number(value2)
        low, high = min(right, upper), max(right, upper)
        return low <= left <= high
    return True


def _eval_date(op: str, actual: Any, value: Any, value2: Any) -> bool:
    left = to_date(actual)
    right = to_date(value)
    if left is None or right is None:
        return True
    if op == "before":
        return left < right
    if op == "after":
        return left > right
    if op == "on":
        return left == right
    if op == "between":
        upper = to_date(value2)
        if upper is None:
            return True
        low, high = min(right, upper), max(right, upper)
        return low <= left <= high
    return True


def _eval_text(op: str, actual: Any, value: Any) -> bool:
    left = _to_text(actual)
    right = _to_text(value)
    if op == "eq":
        return left == right
    if op == "neq":
        return left != right
    if op == "contains":
        return right in left
    if op == "not_contains":
        return right not in left
    if op == "starts_with":
        return left.startswith(right)
    return True


def _eval_enum(op: str, actual: Any, value: Any) -> bool:
    left = _to_text(actual)
    if op == "eq":
        return left == _to_text(value)
    if op == "neq":
        return left != _to_text(value)
    if op == "in":
        return left in _value_list(value)
    return True


def evaluate_condition(
    node: ConditionNode,
    context: Mapping[str, Any] | None,
) -> bool:
    """Evaluate ``node`` against ``context``.

    Args:
        node: The CONDITION node being processed.
        context: Document field snapshot keyed by condition-field name,
            or None when the caller has no document data.

    Returns:
        True to follow the CONDITION_TRUE branch, False for CONDITION_FALSE.
    """
    if context is None:
        return True

    op = _to_text(node.condition_op)
    actual = context.get(node.condition_field) if node.condition_field else None
    field_type = node.condition_field_type or ConditionFieldType.NUMBER.value

    if field_type == ConditionFieldType.NUMBER.value:
        return _eval_number(op, actual, node.condition_value, node.condition_value2)
    if field_type == ConditionFieldType.DATE.value:
        return _eval_date(op, actual, node.condition_value, node.condition_value2)
    if field_type == ConditionFieldType.TEXT.value:
        return _eval_text(op, actual, node.condition_value)
    if field_type == ConditionFieldType.ENUM.value:
        return _eval_enum(op, actual, node.condition_value)
    return True
