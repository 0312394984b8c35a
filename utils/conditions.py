"""
Document filter evaluator — used by the document store backends.

Evaluates Mongo-style filter dicts against stored documents.
Supports nested dot-notation field access and a small operator set.

    {"status": "SENT"}
    {"current_group": {"$eq": "g1"}}
    {"reactions": {"$elemMatch": {"user_id": "u1", "emoji": "🔥"}}}
    {"reactions": {"$not": {"$elemMatch": {"user_id": "u1"}}}}
"""
from __future__ import annotations

from typing import Any, Optional


def _elem_match(value: Any, condition: Any) -> bool:
    if not isinstance(value, list):
        return False
    return any(isinstance(item, dict) and matches(item, condition) for item in value)


def _in(value: Any, candidates: Any) -> bool:
    # An array field matches when any of its elements is a candidate
    if isinstance(value, list):
        return any(item in candidates for item in value)
    return value in candidates


def _not(value: Any, operators: Any) -> bool:
    return not _apply_operators(value, operators)


OPERATORS: dict[str, Any] = {
    "$eq": lambda a, b: a == b,
    "$ne": lambda a, b: a != b,
    "$in": _in,
    "$nin": lambda a, b: not _in(a, b),
    "$exists": lambda a, b: (a is not None) == bool(b),
    "$elemMatch": _elem_match,
    "$not": _not,
}


def get_nested_value(data: dict, field: str) -> Any:
    """Get a value from nested dict using dot notation. e.g. 'location.latitude'"""
    current = data
    for part in field.split("."):
        if isinstance(current, dict):
            current = current.get(part)
        else:
            return None
    return current


def _is_operator_dict(expected: Any) -> bool:
    return isinstance(expected, dict) and bool(expected) and all(k.startswith("$") for k in expected)


def _apply_operators(val: Any, operators: dict[str, Any]) -> bool:
    for op_name, operand in operators.items():
        fn = OPERATORS.get(op_name)
        if fn is None:
            raise ValueError(f"Unsupported filter operator: {op_name}")
        try:
            if not fn(val, operand):
                return False
        except TypeError:
            return False
    return True


def evaluate_condition(field: str, expected: Any, data: dict[str, Any]) -> bool:
    """Evaluate a single field condition against a document."""
    val = get_nested_value(data, field)
    if _is_operator_dict(expected):
        return _apply_operators(val, expected)
    return val == expected


def matches(data: dict[str, Any], condition: Optional[dict[str, Any]]) -> bool:
    """Evaluate all field conditions (AND logic). Returns True if all pass."""
    if not condition:
        return True
    return all(evaluate_condition(f, v, data) for f, v in condition.items())
