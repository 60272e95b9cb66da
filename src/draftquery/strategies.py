"""Latest-version resolution: aggregation and flag strategies behind one entry point."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, replace
from typing import Any, Protocol

from draftquery.access import AccessResult, CallerContext, has_where_access_result
from draftquery.combine import combine_queries
from draftquery.config import DraftQueryConfig
from draftquery.filters import FilterExpression, as_filter, field
from draftquery.keys import rewrite_sort, rewrite_where
from draftquery.normalize import normalize_flagged, normalize_grouped
from draftquery.pagination import PaginatedDocs, PaginationOptions
from draftquery.pipeline import latest_version_pipeline
from draftquery.store import VersionStoreProtocol

logger = logging.getLogger(__name__)


@dataclass
class QueryDraftsArgs:
    """Inputs shared by both resolution strategies.

    ``access_result`` must already be evaluated; a False result is rejected by
    the store's query builder unless ``override_access`` is set.
    """

    access_result: AccessResult
    versions: VersionStoreProtocol
    where: FilterExpression | Mapping[str, Any] | None = None
    pagination: PaginationOptions | None = None
    caller: CallerContext | None = None
    override_access: bool = False


class ResolutionStrategy(Protocol):
    def resolve(self, args: QueryDraftsArgs) -> PaginatedDocs: ...


def _sorted_options(options: PaginationOptions, config: DraftQueryConfig) -> PaginationOptions:
    resolved = options.resolved(config.default_limit, config.max_limit)
    return replace(resolved, sort=rewrite_sort(options.sort))


class AggregationStrategy:
    """Derive the latest version per entity at query time.

    History is sorted newest first and grouped by parent before the combined
    caller/access predicate is applied, so filters only ever see resolved
    latest versions.
    """

    def __init__(self, config: DraftQueryConfig) -> None:
        self._config = config

    def resolve(self, args: QueryDraftsArgs) -> PaginatedDocs:
        versions = args.versions
        where = rewrite_where(as_filter(args.where))

        access: AccessResult | None = args.access_result
        if has_where_access_result(access):
            access = rewrite_where(as_filter(access))  # type: ignore[arg-type]

        version_query = versions.build_query(
            where,
            access,
            caller=args.caller,
            override_access=args.override_access,
        )
        pipeline = latest_version_pipeline(version_query)

        if args.pagination is not None:
            options = _sorted_options(args.pagination, self._config)
            result = versions.aggregate_paginate(pipeline, options)
        else:
            result = PaginatedDocs.single_page(versions.aggregate(pipeline))

        return result.with_docs([normalize_grouped(doc) for doc in result.docs])


class FlagStrategy:
    """Trust the persisted ``latest`` marker and query records directly.

    Exactly one record per parent is expected to carry the marker; a parent
    with none is absent from results and one with several appears repeatedly.
    """

    def __init__(self, config: DraftQueryConfig) -> None:
        self._config = config

    def resolve(self, args: QueryDraftsArgs) -> PaginatedDocs:
        versions = args.versions
        combined = combine_queries(field("latest").is_true(), as_filter(args.where))

        versions_query = versions.build_query(
            combined,
            args.access_result,
            caller=args.caller,
            override_access=args.override_access,
        )

        if args.pagination is not None:
            options = _sorted_options(args.pagination, self._config)
            result = versions.paginate(versions_query, options, lean=True)
        else:
            result = PaginatedDocs.single_page(versions.find(versions_query))

        return result.with_docs([normalize_flagged(doc) for doc in result.docs])


def select_strategy(config: DraftQueryConfig) -> ResolutionStrategy:
    if config.uses_flag_strategy:
        return FlagStrategy(config)
    return AggregationStrategy(config)


def query_drafts(config: DraftQueryConfig, args: QueryDraftsArgs) -> PaginatedDocs:
    """Resolve, filter and paginate the current version of each entity."""
    strategy = select_strategy(config)
    logger.debug(
        "Resolving drafts of %s with %s", args.versions.collection, type(strategy).__name__
    )
    return strategy.resolve(args)
