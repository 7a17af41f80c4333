"""PostgREST horizontal filter helpers.

Each helper returns a ``(column, "op.value")`` pair that can be passed as a
query parameter. A list of pairs keeps repeated columns intact, which is
needed for range filters such as ``gte`` + ``lte`` on the same column.
"""

from collections.abc import Iterable
from datetime import date, datetime
from typing import Any

Filter = tuple[str, str]


def format_value(value: Any) -> str:
    """Render a Python value the way PostgREST expects it in a filter."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, datetime | date):
        return value.isoformat()
    return str(value)


def eq(column: str, value: Any) -> Filter:
    return column, f"eq.{format_value(value)}"


def neq(column: str, value: Any) -> Filter:
    return column, f"neq.{format_value(value)}"


def gte(column: str, value: Any) -> Filter:
    return column, f"gte.{format_value(value)}"


def lte(column: str, value: Any) -> Filter:
    return column, f"lte.{format_value(value)}"


def is_(column: str, value: bool | None) -> Filter:
    return column, f"is.{format_value(value)}"


def in_(column: str, values: Iterable[Any]) -> Filter:
    joined = ",".join(format_value(v) for v in values)
    return column, f"in.({joined})"


def parse_filter(expression: str) -> Filter:
    """Parse a realtime-style filter ``column=eq.value`` into a pair.

    Raises:
        ValueError: If the expression is not of the form ``column=op.value``
    """
    column, sep, condition = expression.partition("=")
    if not sep or not column or "." not in condition:
        raise ValueError(f"Invalid filter expression: {expression!r}")
    return column.strip(), condition.strip()


def matches(row: dict[str, Any], flt: Filter) -> bool:
    """Evaluate a single ``eq``/``neq``/``is``/``in`` filter against a row."""
    column, condition = flt
    op, _, raw = condition.partition(".")
    actual = format_value(row.get(column))
    if op == "eq" or op == "is":
        return actual == raw
    if op == "neq":
        return actual != raw
    if op == "in":
        return actual in raw.strip("()").split(",")
    raise ValueError(f"Unsupported filter operator for local matching: {op}")


__all__ = [
    "Filter",
    "eq",
    "format_value",
    "gte",
    "in_",
    "is_",
    "lte",
    "matches",
    "neq",
    "parse_filter",
]
