"""SQLite-backed version store: query building, aggregation and pagination."""

from __future__ import annotations

import json
import logging
import re
import sqlite3
from collections.abc import Mapping
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Protocol, runtime_checkable

from draftquery.access import AccessResult, CallerContext, has_where_access_result
from draftquery.combine import combine_queries
from draftquery.config import DraftQueryConfig
from draftquery.errors import AccessDeniedError, InvalidQueryError, StorageBackendError
from draftquery.filters import (
    COMPARISON_OPS,
    ComparisonExpression,
    FilterExpression,
    LogicalExpression,
    as_filter,
)
from draftquery.keys import VERSION_FIELD
from draftquery.pagination import PaginatedDocs, PaginationOptions
from draftquery.pipeline import GroupStage, MatchStage, SortStage, Stage
from draftquery.types import VersionRecord

logger = logging.getLogger(__name__)

_SEGMENT_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

# Field name -> column, for raw version records and for grouped rows.
# "id" always addresses the owning entity, never the record itself.
_RAW_COLUMNS = {
    "id": "parent",
    "parent": "parent",
    "createdAt": "created_at",
    "updatedAt": "updated_at",
    "latest": "latest",
}
_GROUPED_COLUMNS = {
    "id": "_id",
    "_id": "_id",
    "createdAt": "created_at",
    "updatedAt": "updated_at",
}
_GROUPABLE = {VERSION_FIELD: "version_json", "createdAt": "created_at", "updatedAt": "updated_at"}

_SQL_OPS = {"==": "=", "!=": "!=", ">": ">", ">=": ">=", "<": "<", "<=": "<="}


def _to_iso(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _sql_value(value: Any) -> Any:
    if isinstance(value, datetime):
        return _to_iso(value)
    if isinstance(value, (dict, list)):
        return json.dumps(value)
    return value


def _check_path(path: str) -> None:
    for segment in path.split("."):
        if not _SEGMENT_RE.match(segment):
            raise InvalidQueryError(
                f"Invalid path segment '{segment}' in '{path}': must match [A-Za-z_][A-Za-z0-9_]*"
            )


def _json_path(path: str) -> str:
    _check_path(path)
    return f"$.{path}"


def _column_expr(field_path: str, columns: Mapping[str, str], alias: str) -> str:
    """Resolve a field path to a SQL expression against ``alias``."""
    if field_path in columns:
        return f"{alias}.{columns[field_path]}"
    sub_path = field_path
    if field_path.startswith(f"{VERSION_FIELD}."):
        sub_path = field_path[len(VERSION_FIELD) + 1 :]
    return f"json_extract({alias}.version_json, '{_json_path(sub_path)}')"


def _compile_filter(
    expr: FilterExpression,
    params: list[Any],
    *,
    columns: Mapping[str, str],
    alias: str,
) -> str:
    """Compile a FilterExpression tree into a SQL WHERE clause fragment."""
    if isinstance(expr, ComparisonExpression):
        return _compile_comparison(expr, params, columns=columns, alias=alias)
    elif isinstance(expr, LogicalExpression):
        if expr.op == "NOT":
            child_sql = _compile_filter(expr.children[0], params, columns=columns, alias=alias)
            return f"NOT ({child_sql})"
        elif expr.op in ("AND", "OR"):
            if not expr.children:
                return "1" if expr.op == "AND" else "0"
            parts = [
                _compile_filter(c, params, columns=columns, alias=alias) for c in expr.children
            ]
            joiner = f" {expr.op} "
            return f"({joiner.join(parts)})"
    raise InvalidQueryError(f"Unknown filter expression: {expr!r}")


def _compile_comparison(
    expr: ComparisonExpression,
    params: list[Any],
    *,
    columns: Mapping[str, str],
    alias: str,
) -> str:
    """Compile a single comparison expression to SQL."""
    col = _column_expr(expr.field_path, columns, alias)

    op = expr.op
    if op == "IS_NULL":
        return f"{col} IS NULL"
    elif op == "IS_NOT_NULL":
        return f"{col} IS NOT NULL"
    elif op == "IN":
        placeholders = ", ".join("?" for _ in expr.value)
        params.extend(_sql_value(v) for v in expr.value)
        return f"{col} IN ({placeholders})"
    elif op == "NOT_IN":
        placeholders = ", ".join("?" for _ in expr.value)
        params.extend(_sql_value(v) for v in expr.value)
        return f"({col} IS NULL OR {col} NOT IN ({placeholders}))"
    elif op == "LIKE":
        params.append(expr.value)
        return f"{col} LIKE ?"
    elif op == "!=":
        # A missing field counts as unequal.
        params.append(_sql_value(expr.value))
        return f"({col} IS NULL OR {col} != ?)"
    else:
        params.append(_sql_value(expr.value))
        return f"{col} {_SQL_OPS[op]} ?"


def _compile_order(
    keys: Mapping[str, int], columns: Mapping[str, str], alias: str
) -> list[str]:
    return [
        f"{_column_expr(k, columns, alias)} {'ASC' if direction == 1 else 'DESC'}"
        for k, direction in keys.items()
    ]


def _validate(expr: FilterExpression | None) -> None:
    if expr is None:
        return
    if isinstance(expr, ComparisonExpression):
        if not isinstance(expr.field_path, str) or not expr.field_path:
            raise InvalidQueryError(f"Comparison has no field path: {expr!r}")
        if expr.op not in COMPARISON_OPS:
            raise InvalidQueryError(f"Unknown comparison operator '{expr.op}'")
        if expr.op in ("IN", "NOT_IN") and not isinstance(expr.value, (list, tuple)):
            raise InvalidQueryError(f"{expr.op} on '{expr.field_path}' requires a list value")
        if expr.op == "LIKE" and not isinstance(expr.value, str):
            raise InvalidQueryError(f"LIKE on '{expr.field_path}' requires a string pattern")
        _check_path(expr.field_path)
        return
    if isinstance(expr, LogicalExpression):
        if expr.op not in ("AND", "OR", "NOT"):
            raise InvalidQueryError(f"Unknown logical operator '{expr.op}'")
        if expr.op == "NOT" and len(expr.children) != 1:
            raise InvalidQueryError("NOT takes exactly one child expression")
        for child in expr.children:
            _validate(child)
        return
    raise InvalidQueryError(f"Unknown filter expression type: {type(expr).__name__}")


def _decode_row(names: list[str], row: tuple[Any, ...]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for name, value in zip(names, row):
        if name == "version_json":
            out[VERSION_FIELD] = json.loads(value) if value is not None else {}
        elif name == "created_at":
            out["createdAt"] = datetime.fromisoformat(value) if value is not None else None
        elif name == "updated_at":
            out["updatedAt"] = datetime.fromisoformat(value) if value is not None else None
        elif name == "latest":
            out["latest"] = bool(value)
        else:
            out[name] = value
    return out


@runtime_checkable
class VersionStoreProtocol(Protocol):
    """Query-building and execution operations of one collection's version store."""

    collection: str

    def build_query(
        self,
        where: FilterExpression | Mapping[str, Any] | None,
        access: AccessResult | None = True,
        *,
        caller: CallerContext | None = None,
        override_access: bool = False,
    ) -> FilterExpression | None: ...

    def aggregate(self, pipeline: list[Stage]) -> list[dict[str, Any]]: ...

    def aggregate_paginate(
        self, pipeline: list[Stage], options: PaginationOptions
    ) -> PaginatedDocs: ...

    def find(
        self, query: FilterExpression | None, *, lean: bool = False
    ) -> list[Any]: ...

    def paginate(
        self, query: FilterExpression | None, options: PaginationOptions, *, lean: bool = False
    ) -> PaginatedDocs: ...


class VersionCollection:
    """Version store bound to a single collection."""

    def __init__(self, conn: sqlite3.Connection, collection: str) -> None:
        self._conn = conn
        self.collection = collection

    # --- Query building ---

    def build_query(
        self,
        where: FilterExpression | Mapping[str, Any] | None,
        access: AccessResult | None = True,
        *,
        caller: CallerContext | None = None,
        override_access: bool = False,
    ) -> FilterExpression | None:
        """Merge the caller predicate with access control into one executable predicate.

        Access is enforced here: a False access result raises unless
        ``override_access`` is set, in which case access is ignored entirely.
        """
        query = as_filter(where)
        if not override_access:
            if access is False:
                raise AccessDeniedError(self.collection)
            if has_where_access_result(access):
                query = combine_queries(query, as_filter(access))  # type: ignore[arg-type]
        _validate(query)
        logger.debug(
            "Built version query for %s (user=%s, override_access=%s): %r",
            self.collection,
            caller.user_id if caller else None,
            override_access,
            query,
        )
        return query

    # --- Execution ---

    def _execute(self, operation: str, sql: str, params: list[Any]) -> sqlite3.Cursor:
        logger.debug("%s on %s: %s %r", operation, self.collection, sql, params)
        try:
            return self._conn.execute(sql, params)
        except sqlite3.Error as e:
            raise StorageBackendError(operation, str(e)) from e

    def _base_source(self, params: list[Any]) -> str:
        params.append(self.collection)
        return (
            "SELECT id, parent, version_json, created_at, updated_at, latest "
            "FROM version_records WHERE collection = ?"
        )

    def _compile_pipeline(
        self, pipeline: list[Stage], params: list[Any]
    ) -> tuple[str, Mapping[str, str], str]:
        """Compile pipeline stages into a SELECT; returns (sql, columns, tiebreak column)."""
        source = self._base_source(params)
        columns: Mapping[str, str] = _RAW_COLUMNS
        tiebreak = "id"
        pending_sort: dict[str, int] = {}

        for stage in pipeline:
            if isinstance(stage, SortStage):
                pending_sort = dict(stage.keys)
            elif isinstance(stage, GroupStage):
                if stage.by not in columns:
                    raise InvalidQueryError(f"Cannot group by '{stage.by}'")
                unknown = set(stage.first) - set(_GROUPABLE)
                if unknown:
                    raise InvalidQueryError(f"Cannot group fields {sorted(unknown)}")
                # First record per group in sort order; ties go to the newest record id.
                order = _compile_order(pending_sort, columns, "s")
                order.append("s.id DESC" if pending_sort else "s.id ASC")
                selected = ", ".join(
                    f"s.{col} AS {col}" if name in stage.first else f"NULL AS {col}"
                    for name, col in _GROUPABLE.items()
                )
                source = (
                    f"SELECT g._id, g.version_json, g.created_at, g.updated_at FROM ("
                    f"SELECT s.{columns[stage.by]} AS _id, {selected}, "
                    f"ROW_NUMBER() OVER (PARTITION BY s.{columns[stage.by]} "
                    f"ORDER BY {', '.join(order)}) AS rn "
                    f"FROM ({source}) AS s) AS g WHERE g.rn = 1"
                )
                columns = _GROUPED_COLUMNS
                tiebreak = "_id"
                pending_sort = {}
            elif isinstance(stage, MatchStage):
                if stage.predicate is None:
                    continue
                where_sql = _compile_filter(stage.predicate, params, columns=columns, alias="m")
                source = f"SELECT * FROM ({source}) AS m WHERE {where_sql}"
            else:
                raise InvalidQueryError(f"Unknown pipeline stage: {stage!r}")

        order = _compile_order(pending_sort, columns, "o")
        order.append(f"o.{tiebreak} ASC")
        source = f"SELECT * FROM ({source}) AS o ORDER BY {', '.join(order)}"
        return source, columns, tiebreak

    def _page(
        self,
        operation: str,
        source: str,
        params: list[Any],
        columns: Mapping[str, str],
        tiebreak: str,
        options: PaginationOptions,
    ) -> tuple[list[dict[str, Any]], int]:
        total = self._execute(
            f"{operation}.count", f"SELECT COUNT(*) FROM ({source}) AS c", list(params)
        ).fetchone()[0]

        order = _compile_order(options.sort, columns, "p")
        order.append(f"p.{tiebreak} ASC")
        sql = f"SELECT * FROM ({source}) AS p ORDER BY {', '.join(order)}"
        page_params = list(params)
        if options.pagination:
            sql += " LIMIT ? OFFSET ?"
            page_params.extend([options.limit, options.skip])

        cursor = self._execute(operation, sql, page_params)
        names = [d[0] for d in cursor.description]
        return [_decode_row(names, r) for r in cursor.fetchall()], total

    def aggregate(self, pipeline: list[Stage]) -> list[dict[str, Any]]:
        params: list[Any] = []
        source, _, _ = self._compile_pipeline(pipeline, params)
        cursor = self._execute("aggregate", source, params)
        names = [d[0] for d in cursor.description]
        return [_decode_row(names, r) for r in cursor.fetchall()]

    def aggregate_paginate(
        self, pipeline: list[Stage], options: PaginationOptions
    ) -> PaginatedDocs:
        if options.limit is None:
            options = replace(options, limit=DraftQueryConfig.default_limit)
        params: list[Any] = []
        source, columns, tiebreak = self._compile_pipeline(pipeline, params)
        docs, total = self._page(
            "aggregate_paginate", source, params, columns, tiebreak, options
        )
        if not options.pagination:
            return PaginatedDocs.single_page(docs)
        return PaginatedDocs.build(docs, total, options.limit, options.skip)

    def find(self, query: FilterExpression | None, *, lean: bool = False) -> list[Any]:
        """Return raw version records matching ``query`` in insertion order."""
        params: list[Any] = []
        sql = self._base_source(params)
        if query is not None:
            sql += " AND " + _compile_filter(
                query, params, columns=_RAW_COLUMNS, alias="version_records"
            )
        sql += " ORDER BY id ASC"
        cursor = self._execute("find", sql, params)
        names = [d[0] for d in cursor.description]
        rows = [_decode_row(names, r) for r in cursor.fetchall()]
        if lean:
            return rows
        return [VersionRecord.model_validate(r) for r in rows]

    def paginate(
        self, query: FilterExpression | None, options: PaginationOptions, *, lean: bool = False
    ) -> PaginatedDocs:
        if options.limit is None:
            options = replace(options, limit=DraftQueryConfig.default_limit)
        params: list[Any] = []
        source = self._base_source(params)
        if query is not None:
            source += " AND " + _compile_filter(
                query, params, columns=_RAW_COLUMNS, alias="version_records"
            )
        docs, total = self._page("paginate", source, params, _RAW_COLUMNS, "id", options)
        if not lean:
            docs = [VersionRecord.model_validate(r) for r in docs]
        if not options.pagination:
            return PaginatedDocs.single_page(docs)
        return PaginatedDocs.build(docs, total, options.limit, options.skip)


class VersionRepository:
    """SQLite database holding the version history of every collection."""

    def __init__(self, db_path: str) -> None:
        self.db_path = db_path
        self._conn = sqlite3.connect(db_path)
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._create_tables()

    def _create_tables(self) -> None:
        self._conn.executescript("""
            CREATE TABLE IF NOT EXISTS version_records (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                collection TEXT NOT NULL,
                parent TEXT NOT NULL,
                version_json TEXT NOT NULL,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                latest INTEGER NOT NULL DEFAULT 0
            );

            CREATE INDEX IF NOT EXISTS idx_version_records_parent
                ON version_records(collection, parent, updated_at DESC);

            CREATE INDEX IF NOT EXISTS idx_version_records_latest
                ON version_records(collection, latest);
        """)
        self._conn.commit()

    def close(self) -> None:
        self._conn.close()

    def versions(self, collection: str) -> VersionCollection:
        """Return the version store handle for ``collection``."""
        return VersionCollection(self._conn, collection)

    def insert_version(
        self, collection: str, record: VersionRecord | Mapping[str, Any]
    ) -> VersionRecord:
        """Store a version record exactly as given.

        The ``latest`` marker is written verbatim; keeping exactly one latest
        record per parent is the writer's job.
        """
        if not isinstance(record, VersionRecord):
            record = VersionRecord.model_validate(record)
        try:
            cursor = self._conn.execute(
                "INSERT INTO version_records "
                "(collection, parent, version_json, created_at, updated_at, latest) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                (
                    collection,
                    record.parent,
                    json.dumps(record.version),
                    _to_iso(record.created_at),
                    _to_iso(record.updated_at),
                    int(record.latest),
                ),
            )
        except sqlite3.Error as e:
            raise StorageBackendError("insert_version", str(e)) from e
        return record.model_copy(update={"id": cursor.lastrowid})

    def commit_transaction(self) -> None:
        self._conn.commit()
