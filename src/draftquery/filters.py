"""Predicate expression types and where-mapping parsing."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field as dc_field
from typing import Any

from draftquery.errors import InvalidQueryError

NULL_EQ_ERROR = "Use .is_null() instead of == None in draftquery predicates."
NULL_NE_ERROR = "Use .is_not_null() instead of != None in draftquery predicates."
TRUE_EQ_ERROR = "Use .is_true() instead of == True in draftquery predicates."
FALSE_EQ_ERROR = "Use == 0 or a negated .is_true() instead of == False in draftquery predicates."

COMPARISON_OPS = frozenset(
    {"==", "!=", ">", ">=", "<", "<=", "LIKE", "IN", "NOT_IN", "IS_NULL", "IS_NOT_NULL"}
)
LOGICAL_OPS = frozenset({"AND", "OR", "NOT"})


class FilterExpression:
    """Base class for filter expressions."""

    def __and__(self, other: FilterExpression) -> LogicalExpression:
        return LogicalExpression(op="AND", children=[self, other])

    def __or__(self, other: FilterExpression) -> LogicalExpression:
        return LogicalExpression(op="OR", children=[self, other])

    def __invert__(self) -> LogicalExpression:
        return LogicalExpression(op="NOT", children=[self])


@dataclass
class ComparisonExpression(FilterExpression):
    """A comparison between a field path and a value.

    field_path is a dotted key as the caller sees it ("title", "updatedAt")
    or as stored in a version record ("version.title").
    """

    field_path: str
    op: str  # "==", "!=", ">", ">=", "<", "<=", "LIKE", "IN", "NOT_IN", "IS_NULL", "IS_NOT_NULL"
    value: Any = None

    def __hash__(self) -> int:
        v = self.value
        if isinstance(v, list):
            v = tuple(v)
        return hash((self.field_path, self.op, v))

    def __eq__(self, other: object) -> bool:  # type: ignore[override]
        if not isinstance(other, ComparisonExpression):
            return NotImplemented
        return (
            self.field_path == other.field_path
            and self.op == other.op
            and self.value == other.value
        )


@dataclass
class LogicalExpression(FilterExpression):
    """A logical combination of filter expressions."""

    op: str  # "AND", "OR", "NOT"
    children: list[FilterExpression] = dc_field(default_factory=list)


class FieldProxy:
    """Proxy that generates FilterExpression from field operations.

    Usage: field("status") == "published"
    """

    def __init__(self, field_path: str) -> None:
        self._field_path = field_path

    def __eq__(self, other: object) -> ComparisonExpression:  # type: ignore[override]
        if other is None:
            raise TypeError(NULL_EQ_ERROR)
        if other is True:
            raise TypeError(TRUE_EQ_ERROR)
        if other is False:
            raise TypeError(FALSE_EQ_ERROR)
        return ComparisonExpression(self._field_path, "==", other)

    def __ne__(self, other: object) -> ComparisonExpression:  # type: ignore[override]
        if other is None:
            raise TypeError(NULL_NE_ERROR)
        return ComparisonExpression(self._field_path, "!=", other)

    def __gt__(self, other: Any) -> ComparisonExpression:
        return ComparisonExpression(self._field_path, ">", other)

    def __ge__(self, other: Any) -> ComparisonExpression:
        return ComparisonExpression(self._field_path, ">=", other)

    def __lt__(self, other: Any) -> ComparisonExpression:
        return ComparisonExpression(self._field_path, "<", other)

    def __le__(self, other: Any) -> ComparisonExpression:
        return ComparisonExpression(self._field_path, "<=", other)

    def is_null(self) -> ComparisonExpression:
        return ComparisonExpression(self._field_path, "IS_NULL")

    def is_not_null(self) -> ComparisonExpression:
        return ComparisonExpression(self._field_path, "IS_NOT_NULL")

    def is_true(self) -> ComparisonExpression:
        return ComparisonExpression(self._field_path, "==", True)


def field(name: str) -> FieldProxy:
    """Create a proxy for building comparisons against ``name``."""
    return FieldProxy(name)


# --- Where-mapping dialect ---

_WHERE_OPS: dict[str, str] = {
    "equals": "==",
    "not_equals": "!=",
    "greater_than": ">",
    "greater_than_equal": ">=",
    "less_than": "<",
    "less_than_equal": "<=",
    "in": "IN",
    "like": "LIKE",
    "contains": "LIKE",
}


def _parse_condition(path: str, condition: Any) -> FilterExpression:
    if not isinstance(condition, Mapping):
        raise InvalidQueryError(f"Condition for '{path}' must be a mapping of operators")

    exprs: list[FilterExpression] = []
    for op_token, value in condition.items():
        if op_token == "exists":
            exprs.append(ComparisonExpression(path, "IS_NOT_NULL" if value else "IS_NULL"))
        elif op_token == "not_in":
            exprs.append(ComparisonExpression(path, "NOT_IN", list(value)))
        elif op_token in ("like", "contains"):
            exprs.append(ComparisonExpression(path, "LIKE", f"%{value}%"))
        elif op_token in _WHERE_OPS:
            op = _WHERE_OPS[op_token]
            if op == "IN":
                value = list(value)
            exprs.append(ComparisonExpression(path, op, value))
        else:
            raise InvalidQueryError(
                f"Unknown where operator '{op_token}' on '{path}'. "
                f"Valid operators: {', '.join(sorted([*_WHERE_OPS, 'exists', 'not_in']))}"
            )

    if len(exprs) == 1:
        return exprs[0]
    return LogicalExpression(op="AND", children=exprs)


def parse_where(where: Mapping[str, Any] | None) -> FilterExpression | None:
    """Parse a where-mapping into a FilterExpression.

    Top-level keys are AND-combined. ``and``/``or`` keys hold lists of nested
    where-mappings. An empty mapping parses to None.
    """
    if not where:
        return None

    exprs: list[FilterExpression] = []
    for key, condition in where.items():
        if key in ("and", "or"):
            children = [c for c in (parse_where(w) for w in condition) if c is not None]
            if not children:
                continue
            if len(children) == 1:
                exprs.append(children[0])
            else:
                exprs.append(LogicalExpression(op=key.upper(), children=children))
        else:
            exprs.append(_parse_condition(key, condition))

    if not exprs:
        return None
    if len(exprs) == 1:
        return exprs[0]
    return LogicalExpression(op="AND", children=exprs)


def as_filter(where: FilterExpression | Mapping[str, Any] | None) -> FilterExpression | None:
    """Coerce a caller-supplied predicate to a FilterExpression (or None)."""
    if where is None or isinstance(where, FilterExpression):
        return where
    if isinstance(where, Mapping):
        return parse_where(where)
    raise InvalidQueryError(f"Unsupported predicate type: {type(where).__name__}")
