"""Rewriting of caller field keys onto the version-record layout.

A version record keeps entity metadata at the top level and the entity's own
fields nested under ``version``. Callers address entity fields by their bare
names, so every key that is not metadata is moved under that namespace before
it reaches the store.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from draftquery.filters import ComparisonExpression, FilterExpression, LogicalExpression

VERSION_FIELD = "version"
METADATA_KEYS = frozenset({"id", "createdAt", "updatedAt"})

_ASCENDING_TOKENS = frozenset({"asc", "ascending", "1", 1})


def rewrite_key(key: str) -> str:
    """Map a caller key to its location in a version record."""
    if key in METADATA_KEYS:
        return key
    return f"{VERSION_FIELD}.{key}"


def rewrite_where(expr: FilterExpression | None) -> FilterExpression | None:
    """Return a copy of ``expr`` with every field reference rewritten."""
    if expr is None:
        return None
    if isinstance(expr, ComparisonExpression):
        value = list(expr.value) if isinstance(expr.value, list) else expr.value
        return ComparisonExpression(rewrite_key(expr.field_path), expr.op, value)
    if isinstance(expr, LogicalExpression):
        return LogicalExpression(
            op=expr.op,
            children=[rewrite_where(c) for c in expr.children],  # type: ignore[misc]
        )
    raise ValueError(f"Unknown filter expression type: {type(expr)}")


def sort_direction(order: Any) -> int:
    """Normalize an order token to 1 (ascending) or -1 (descending)."""
    if isinstance(order, str):
        order = order.lower()
    return 1 if order in _ASCENDING_TOKENS else -1


def rewrite_sort(sort: Mapping[str, Any] | None) -> dict[str, int]:
    """Rewrite sort keys and normalize their directions, preserving key order."""
    if not sort:
        return {}
    return {rewrite_key(key): sort_direction(order) for key, order in sort.items()}
