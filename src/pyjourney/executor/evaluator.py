"""Condition evaluation for conditional journey nodes.

Resolves a field path against a run context and applies a comparison
operator to the resolved value.

Supported operators:
- ``>``, ``<``, ``>=``, ``<=``: ordering; False when the field is absent
- ``=`` and its alias ``==``: coercive equality
- ``!=``: negation of ``=``

Any other operator raises UnsupportedOperator.

Coercive equality
-----------------
``=`` compares loosely: a number equals a numeric string (``45 == "45"``),
booleans compare as 0/1, and ``None`` equals only ``None`` or an absent
field. Journeys authored against stored contexts depend on this, so it is
kept as is. It is also a likely source of surprising matches: a condition
``zip = 2110`` matches the string ``"02110"``.
"""

from __future__ import annotations

import logging
import math
import operator as _op
from collections.abc import Callable, Mapping
from typing import Any

from pyjourney.errors import UnsupportedOperator

logger = logging.getLogger(__name__)

__all__ = [
    "ABSENT",
    "SUPPORTED_OPERATORS",
    "evaluate",
    "resolve_field",
    "loose_equals",
]


class _Absent:
    """Marker for a field path that does not resolve (distinct from None)."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "ABSENT"

    def __bool__(self) -> bool:
        return False


ABSENT = _Absent()

_ORDERINGS: dict[str, Callable[[Any, Any], bool]] = {
    ">": _op.gt,
    "<": _op.lt,
    ">=": _op.ge,
    "<=": _op.le,
}

SUPPORTED_OPERATORS: frozenset[str] = frozenset({*_ORDERINGS, "=", "==", "!="})


def resolve_field(context: Mapping[str, Any], field: str) -> Any:
    """Resolve a field path against a context.

    A path containing ``.`` is walked through nested mappings key by key;
    anything else is a direct key lookup.

    Args:
        context: Run context
        field: Field path, e.g. ``"age"`` or ``"patient.age"``

    Returns:
        The resolved value, or ABSENT if any key along the path is missing

    Examples:
        >>> resolve_field({"patient": {"age": 70}}, "patient.age")
        70
        >>> resolve_field({"patient": {}}, "patient.age")
        ABSENT
    """
    if "." not in field:
        return context.get(field, ABSENT) if isinstance(context, Mapping) else ABSENT

    current: Any = context
    for key in field.split("."):
        if not isinstance(current, Mapping) or key not in current:
            return ABSENT
        current = current[key]
    return current


def _to_number(value: Any) -> float | None:
    """Numeric coercion used by loose comparison, None when not numeric."""
    if isinstance(value, bool):
        return float(value)
    if isinstance(value, int | float):
        return float(value)
    if isinstance(value, str):
        text = value.strip()
        if text == "":
            return 0.0
        try:
            return float(text)
        except ValueError:
            return None
    return None


def loose_equals(left: Any, right: Any) -> bool:
    """Coercive equality between a resolved field value and a literal.

    - ABSENT and None equal each other and nothing else
    - values of the same kind compare natively
    - a number, numeric string, or boolean is compared numerically
      against another of those kinds
    """
    left_missing = left is ABSENT or left is None
    right_missing = right is ABSENT or right is None
    if left_missing or right_missing:
        return left_missing and right_missing

    if type(left) is type(right):
        return left == right

    scalar = (str, int, float, bool)
    if isinstance(left, scalar) and isinstance(right, scalar):
        if isinstance(left, str) and isinstance(right, str):
            return left == right
        left_num = _to_number(left)
        right_num = _to_number(right)
        if left_num is None or right_num is None:
            return False
        if math.isnan(left_num) or math.isnan(right_num):
            return False
        return left_num == right_num

    return left == right


def _ordered(compare: Callable[[Any, Any], bool], left: Any, right: Any) -> bool:
    if left is ABSENT or left is None or right is None:
        return False
    try:
        return bool(compare(left, right))
    except TypeError:
        # Mixed types Python refuses to order: fall back to numeric coercion
        left_num = _to_number(left)
        right_num = _to_number(right)
        if left_num is None or right_num is None:
            return False
        return bool(compare(left_num, right_num))


def evaluate(context: Mapping[str, Any], field: str, operator: str, value: Any) -> bool:
    """Evaluate ``<field> <operator> <value>`` against a run context.

    Args:
        context: Run context
        field: Field path into the context
        operator: One of SUPPORTED_OPERATORS
        value: Literal to compare against

    Returns:
        Comparison result

    Raises:
        UnsupportedOperator: If the operator is not supported

    Example:
        ```python
        evaluate({"age": 70}, "age", ">", 65)        # True
        evaluate({"age": 45}, "age", "=", "45")      # True (coercive)
        evaluate({}, "patient.age", ">", 10)         # False (absent)
        ```
    """
    if operator not in SUPPORTED_OPERATORS:
        raise UnsupportedOperator(operator)

    actual = resolve_field(context, field)

    if operator in ("=", "=="):
        result = loose_equals(actual, value)
    elif operator == "!=":
        result = not loose_equals(actual, value)
    else:
        result = _ordered(_ORDERINGS[operator], actual, value)

    logger.debug(f"Condition {field} {operator} {value!r}: actual={actual!r} result={result}")
    return result
