"""Subscription filter conditions.

A stored filter is a flat JSON map ``field -> condition`` where a condition is
either a literal (equality) or an operator object such as
``{"$in": ["A1", "A2"]}``. Stored maps are parsed into the tagged variants
below and evaluated against a caller-supplied context. Anything that cannot be
understood becomes :class:`Unsupported`, which never matches.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Union


@dataclass(frozen=True)
class Eq:
    value: Any


@dataclass(frozen=True)
class Ne:
    value: Any


@dataclass(frozen=True)
class In:
    values: tuple[Any, ...]


@dataclass(frozen=True)
class NotIn:
    values: tuple[Any, ...]


@dataclass(frozen=True)
class LiteralEq:
    """Bare value in the filter map, compared by equality."""

    value: Any


@dataclass(frozen=True)
class Unsupported:
    reason: str


Condition = Union[Eq, Ne, In, NotIn, LiteralEq, Unsupported]

_MISSING = object()


def _parse_operator(operator: str, operand: Any) -> Condition:
    if operator == "$eq":
        return Eq(operand)
    if operator == "$ne":
        return Ne(operand)
    if operator in ("$in", "$nin"):
        if not isinstance(operand, (list, tuple)):
            return Unsupported(f"{operator} expects a list")
        return In(tuple(operand)) if operator == "$in" else NotIn(tuple(operand))
    return Unsupported(f"unknown operator {operator}")


def parse_condition(raw: Any) -> tuple[Condition, ...]:
    """Parse one filter value into the conditions that must all hold."""
    if isinstance(raw, Mapping) and raw and all(
        isinstance(key, str) and key.startswith("$") for key in raw
    ):
        return tuple(_parse_operator(op, operand) for op, operand in raw.items())
    if isinstance(raw, Mapping) and any(isinstance(key, str) and key.startswith("$") for key in raw):
        return (Unsupported("operators mixed with plain keys"),)
    return (LiteralEq(raw),)


def parse_filter(raw: Mapping[str, Any] | None) -> dict[str, tuple[Condition, ...]]:
    if not raw:
        return {}
    return {field: parse_condition(value) for field, value in raw.items()}


def _same(left: Any, right: Any) -> bool:
    # bool is an int subclass; True must not equal 1 here
    if isinstance(left, bool) or isinstance(right, bool):
        return type(left) is type(right) and left == right
    return left == right


def _contains(values: tuple[Any, ...], value: Any) -> bool:
    return any(_same(item, value) for item in values)


def evaluate(condition: Condition, value: Any) -> bool:
    if isinstance(condition, (Eq, LiteralEq)):
        return _same(condition.value, value)
    if isinstance(condition, Ne):
        return not _same(condition.value, value)
    if isinstance(condition, In):
        return _contains(condition.values, value)
    if isinstance(condition, NotIn):
        return not _contains(condition.values, value)
    return False


def matches_filter(raw_filter: Mapping[str, Any] | None, context: Mapping[str, Any] | None) -> bool:
    """True when every filter field is present in ``context`` and satisfied.

    An empty or missing filter matches everything.
    """
    parsed = parse_filter(raw_filter)
    if not parsed:
        return True
    context = context or {}
    for field, conditions in parsed.items():
        value = context.get(field, _MISSING)
        if value is _MISSING:
            return False
        if not all(evaluate(condition, value) for condition in conditions):
            return False
    return True
