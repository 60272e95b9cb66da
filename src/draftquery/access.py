"""Access-control results as seen by the resolution engine."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Union

from draftquery.filters import FilterExpression

# True (unrestricted), False (denied) or a predicate over entity fields.
AccessResult = Union[bool, FilterExpression, Mapping[str, Any]]


def has_where_access_result(result: AccessResult | None) -> bool:
    """True when access control returned a predicate rather than allow/deny."""
    return isinstance(result, (FilterExpression, Mapping))


@dataclass(frozen=True)
class CallerContext:
    """Identity of the caller, passed through to the query builder."""

    user_id: str | None = None
    roles: frozenset[str] = field(default_factory=frozenset)
    locale: str | None = None
