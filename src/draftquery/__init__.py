"""draftquery: latest-version resolution and querying over versioned documents."""

__version__ = "0.1.0"

from draftquery.access import AccessResult, CallerContext, has_where_access_result
from draftquery.combine import combine_queries
from draftquery.config import DraftQueryConfig
from draftquery.errors import (
    AccessDeniedError,
    DraftQueryError,
    InvalidQueryError,
    StorageBackendError,
)
from draftquery.filters import field, parse_where
from draftquery.keys import METADATA_KEYS, rewrite_key, rewrite_sort, rewrite_where
from draftquery.pagination import PaginatedDocs, PaginationOptions, parse_sort
from draftquery.store import VersionCollection, VersionRepository, VersionStoreProtocol
from draftquery.strategies import (
    AggregationStrategy,
    FlagStrategy,
    QueryDraftsArgs,
    query_drafts,
    select_strategy,
)
from draftquery.types import VersionRecord

__all__ = [
    "__version__",
    "AccessResult",
    "CallerContext",
    "has_where_access_result",
    "combine_queries",
    "DraftQueryConfig",
    "DraftQueryError",
    "AccessDeniedError",
    "InvalidQueryError",
    "StorageBackendError",
    "field",
    "parse_where",
    "METADATA_KEYS",
    "rewrite_key",
    "rewrite_where",
    "rewrite_sort",
    "PaginatedDocs",
    "PaginationOptions",
    "parse_sort",
    "VersionCollection",
    "VersionRepository",
    "VersionStoreProtocol",
    "AggregationStrategy",
    "FlagStrategy",
    "QueryDraftsArgs",
    "query_drafts",
    "select_strategy",
    "VersionRecord",
]
