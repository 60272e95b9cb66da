"""Aggregation pipeline stages for deriving the latest version per entity."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Union

from draftquery.filters import FilterExpression


@dataclass(frozen=True)
class SortStage:
    """Order records by ``keys`` (field -> 1 or -1) before later stages."""

    keys: dict[str, int]


@dataclass(frozen=True)
class GroupStage:
    """Collapse records sharing ``by``, keeping the first value of each field in ``first``.

    The grouped row carries the group key under ``_id``.
    """

    by: str
    first: tuple[str, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class MatchStage:
    """Keep only rows matching ``predicate``."""

    predicate: FilterExpression | None


Stage = Union[SortStage, GroupStage, MatchStage]


def latest_version_pipeline(version_query: FilterExpression | None) -> list[Stage]:
    """Sort newest first, keep the first record per parent, then filter.

    The match runs after grouping so it sees only each entity's resolved
    latest version, never an older one.
    """
    return [
        SortStage({"updatedAt": -1}),
        GroupStage(by="parent", first=("version", "updatedAt", "createdAt")),
        MatchStage(version_query),
    ]
