"""Comparison operators shared by the key/value style rule types."""

from __future__ import annotations

from enum import StrEnum
from typing import Any


class Op(StrEnum):
    EQ = "="
    GE = ">="
    LE = "<="
    IN = "IN"
    UNSET = "unset"
    RESET = "reset"


COMPARISONS = frozenset({Op.EQ, Op.GE, Op.LE, Op.IN})


def is_number(value: Any) -> bool:
    return isinstance(value, int | float) and not isinstance(value, bool)


def is_scalar(value: Any) -> bool:
    return isinstance(value, str) or is_number(value)


def to_float(text: str) -> float | None:
    try:
        return float(text)
    except (TypeError, ValueError):
        return None


def format_value(value: Any) -> str:
    """Render a rule value for a config file: 22.0 is written 22."""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def equals(current: str, target: Any) -> bool:
    """Numeric equality when the target is a number, string equality otherwise."""
    if is_number(target):
        number = to_float(current)
        return number is not None and number == float(target)
    return current == str(target)


def compare(current: str, op: str, target: Any) -> bool:
    """Test one current value against a target through op."""
    if op == Op.EQ:
        return equals(current, target)
    if op == Op.IN:
        return any(equals(current, item) for item in target)
    number = to_float(current)
    if number is None or not is_number(target):
        return False
    if op == Op.GE:
        return number >= float(target)
    if op == Op.LE:
        return number <= float(target)
    raise ValueError(f"unsupported operator {op}")


def any_match(values: list[str], op: str, target: Any) -> bool:
    return any(compare(value, op, target) for value in values)


def describe(op: str) -> str:
    return {
        Op.EQ: "equal to",
        Op.GE: "greater than or equal to",
        Op.LE: "less than or equal to",
        Op.IN: "in",
    }.get(op, op)
