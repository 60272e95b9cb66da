"""Pagination options and the paginated result shape."""

from __future__ import annotations

import math
from dataclasses import dataclass, field, replace
from typing import Any

from draftquery.errors import InvalidQueryError


@dataclass
class PaginationOptions:
    """Page request: size, position and ordering.

    ``sort`` maps field names to "asc"/"desc" in priority order. ``offset``
    takes precedence over ``page`` when both are given. With
    ``pagination=False`` every matching doc is returned as a single page.
    """

    limit: int | None = None
    page: int = 1
    offset: int | None = None
    sort: dict[str, Any] = field(default_factory=dict)
    pagination: bool = True

    def __post_init__(self) -> None:
        if self.limit is not None and self.limit < 1:
            raise InvalidQueryError(f"limit must be >= 1, got {self.limit}")
        if self.page < 1:
            raise InvalidQueryError(f"page must be >= 1, got {self.page}")
        if self.offset is not None and self.offset < 0:
            raise InvalidQueryError(f"offset must be >= 0, got {self.offset}")

    @property
    def skip(self) -> int:
        if self.offset is not None:
            return self.offset
        return (self.page - 1) * (self.limit or 0)

    def resolved(self, default_limit: int, max_limit: int) -> PaginationOptions:
        """Return a copy with the limit defaulted and capped at ``max_limit``."""
        limit = default_limit if self.limit is None else self.limit
        return replace(self, limit=min(limit, max_limit))


def parse_sort(sort: str | None) -> dict[str, str]:
    """Parse "-updatedAt,title" into {"updatedAt": "desc", "title": "asc"}."""
    if not sort:
        return {}
    result: dict[str, str] = {}
    for token in sort.split(","):
        token = token.strip()
        if not token:
            continue
        if token.startswith("-"):
            result[token[1:]] = "desc"
        else:
            result[token] = "asc"
    return result


@dataclass
class PaginatedDocs:
    """One page of results plus the counters describing the whole set."""

    docs: list[Any]
    total_docs: int
    limit: int
    total_pages: int
    page: int
    paging_counter: int
    has_prev_page: bool
    has_next_page: bool
    prev_page: int | None = None
    next_page: int | None = None

    @classmethod
    def build(cls, docs: list[Any], total_docs: int, limit: int, skip: int) -> PaginatedDocs:
        if limit > 0:
            page = skip // limit + 1
            total_pages = math.ceil(total_docs / limit) if total_docs else 1
        else:
            page = 1
            total_pages = 1
        has_prev_page = page > 1
        has_next_page = skip + len(docs) < total_docs
        return cls(
            docs=docs,
            total_docs=total_docs,
            limit=limit,
            total_pages=total_pages,
            page=page,
            paging_counter=skip + 1,
            has_prev_page=has_prev_page,
            has_next_page=has_next_page,
            prev_page=page - 1 if has_prev_page else None,
            next_page=page + 1 if has_next_page else None,
        )

    @classmethod
    def single_page(cls, docs: list[Any]) -> PaginatedDocs:
        """Wrap an unpaginated result set as one page holding every doc."""
        return cls.build(docs, total_docs=len(docs), limit=len(docs), skip=0)

    def with_docs(self, docs: list[Any]) -> PaginatedDocs:
        return replace(self, docs=docs)
