"""Conjunction of two optional predicates."""

from __future__ import annotations

from draftquery.filters import FilterExpression, LogicalExpression


def is_empty(expr: FilterExpression | None) -> bool:
    """True for a missing predicate or a logical node with no children."""
    if expr is None:
        return True
    return isinstance(expr, LogicalExpression) and not expr.children


def combine_queries(
    first: FilterExpression | None, second: FilterExpression | None
) -> FilterExpression | None:
    """AND two predicates together; an absent side is the identity."""
    if is_empty(first):
        return second
    if is_empty(second):
        return first
    return LogicalExpression(op="AND", children=[first, second])  # type: ignore[list-item]
