"""Tests for the SQLite version store: query building, aggregation, pagination."""

from __future__ import annotations

import pytest

from draftquery.access import CallerContext
from draftquery.errors import AccessDeniedError, InvalidQueryError, StorageBackendError
from draftquery.filters import ComparisonExpression, LogicalExpression, field
from draftquery.pagination import PaginationOptions
from draftquery.pipeline import GroupStage, MatchStage, SortStage, latest_version_pipeline
from draftquery.store import VersionCollection, VersionStoreProtocol
from draftquery.types import VersionRecord
from tests.conftest import add_version, ts


class TestInsertVersion:
    def test_assigns_record_id(self, repo):
        first = add_version(repo, "X", 10)
        second = add_version(repo, "X", 20)
        assert first.id == 1
        assert second.id == 2

    def test_latest_written_verbatim(self, repo, posts):
        add_version(repo, "X", 10, latest=True)
        add_version(repo, "X", 20, latest=True)
        records = posts.find(None)
        assert [r.latest for r in records] == [True, True]

    def test_naive_timestamps_are_utc(self, repo, posts):
        from datetime import datetime

        repo.insert_version(
            "posts",
            VersionRecord(
                parent="X",
                createdAt=datetime(2024, 1, 1),
                updatedAt=datetime(2024, 1, 1),
            ),
        )
        assert posts.find(None)[0].updated_at == ts(0)

    def test_collections_are_isolated(self, repo):
        add_version(repo, "X", 10, collection="posts")
        add_version(repo, "Z", 10, collection="pages")
        assert [r.parent for r in repo.versions("pages").find(None)] == ["Z"]

    def test_handle_satisfies_protocol(self, posts):
        assert isinstance(posts, VersionCollection)
        assert isinstance(posts, VersionStoreProtocol)


class TestBuildQuery:
    def test_unrestricted(self, posts):
        where = field("title") == "a"
        assert posts.build_query(where, True) == where

    def test_no_predicates(self, posts):
        assert posts.build_query(None, True) is None

    def test_access_predicate_is_anded(self, posts):
        where = field("title") == "a"
        access = field("owner") == "u1"
        query = posts.build_query(where, access, caller=CallerContext(user_id="u1"))
        assert isinstance(query, LogicalExpression)
        assert query.children == [where, access]

    def test_access_mapping(self, posts):
        query = posts.build_query(None, {"owner": {"equals": "u1"}})
        assert query == ComparisonExpression("owner", "==", "u1")

    def test_denied(self, posts):
        with pytest.raises(AccessDeniedError, match="posts"):
            posts.build_query(field("title") == "a", False)

    def test_override_ignores_access(self, posts):
        where = field("title") == "a"
        assert posts.build_query(where, False, override_access=True) == where
        assert posts.build_query(where, field("owner") == "u1", override_access=True) == where

    def test_where_mapping(self, posts):
        assert posts.build_query({"title": {"equals": "a"}}) == ComparisonExpression(
            "title", "==", "a"
        )

    @pytest.mark.parametrize(
        "where",
        [
            ComparisonExpression("title", "~=", "a"),
            ComparisonExpression("", "==", "a"),
            ComparisonExpression("title", "IN", "a"),
            ComparisonExpression("title", "NOT_IN", "a"),
            ComparisonExpression("title", "LIKE", 3),
            ComparisonExpression("title'); DROP TABLE x; --", "==", "a"),
            LogicalExpression(op="XOR", children=[]),
            LogicalExpression(op="NOT", children=[]),
        ],
    )
    def test_malformed_predicates_rejected(self, posts, where):
        with pytest.raises(InvalidQueryError):
            posts.build_query(where)


class TestFind:
    def test_models_by_default(self, scenario):
        records = scenario.versions("posts").find(None)
        assert all(isinstance(r, VersionRecord) for r in records)
        assert [r.version["title"] for r in records] == ["x-old", "x-new", "y-only"]

    def test_lean_rows(self, scenario):
        rows = scenario.versions("posts").find(field("latest").is_true(), lean=True)
        assert rows == [
            {
                "id": 3,
                "parent": "Y",
                "version": {"title": "y-only"},
                "createdAt": ts(0),
                "updatedAt": ts(15),
                "latest": True,
            }
        ]

    def test_id_addresses_parent(self, scenario):
        rows = scenario.versions("posts").find(field("id") == "X", lean=True)
        assert [r["id"] for r in rows] == [1, 2]

    def test_bare_and_prefixed_payload_keys(self, scenario):
        posts = scenario.versions("posts")
        bare = posts.find(field("title") == "x-new", lean=True)
        prefixed = posts.find(field("version.title") == "x-new", lean=True)
        assert bare == prefixed
        assert len(bare) == 1

    def test_not_equal_matches_missing_field(self, repo, posts):
        add_version(repo, "A", 10, {"title": "a"})
        add_version(repo, "B", 10, {"status": "published"})
        add_version(repo, "C", 10, {"status": "draft"})
        rows = posts.find(field("status") != "published", lean=True)
        assert [r["parent"] for r in rows] == ["A", "C"]

    def test_not_in_matches_missing_field(self, repo, posts):
        add_version(repo, "A", 10, {"title": "a"})
        add_version(repo, "B", 10, {"status": "published"})
        rows = posts.find(ComparisonExpression("status", "NOT_IN", ["published"]), lean=True)
        assert [r["parent"] for r in rows] == ["A"]

    def test_timestamp_comparison(self, scenario):
        rows = scenario.versions("posts").find(field("updatedAt") >= ts(15), lean=True)
        assert [r["updatedAt"] for r in rows] == [ts(20), ts(15)]


class TestPaginate:
    def test_pages(self, repo, posts):
        for i in range(5):
            add_version(repo, f"p{i}", i, {"n": i}, latest=True)
        page = posts.paginate(None, PaginationOptions(limit=2, page=2, sort={"version.n": -1}))
        assert [d.version["n"] for d in page.docs] == [2, 1]
        assert page.total_docs == 5
        assert page.has_next_page
        assert page.has_prev_page

    def test_default_limit(self, repo, posts):
        for i in range(12):
            add_version(repo, f"p{i}", i)
        page = posts.paginate(None, PaginationOptions(), lean=True)
        assert len(page.docs) == 10
        assert page.total_pages == 2

    def test_pagination_disabled(self, repo, posts):
        for i in range(3):
            add_version(repo, f"p{i}", i)
        page = posts.paginate(None, PaginationOptions(limit=1, pagination=False), lean=True)
        assert len(page.docs) == 3
        assert not page.has_next_page


class TestAggregate:
    def test_latest_per_parent(self, scenario):
        rows = scenario.versions("posts").aggregate(latest_version_pipeline(None))
        by_parent = {r["_id"]: r for r in rows}
        assert set(by_parent) == {"X", "Y"}
        assert by_parent["X"]["version"] == {"title": "x-new"}
        assert by_parent["X"]["updatedAt"] == ts(20)
        assert by_parent["Y"]["version"] == {"title": "y-only"}

    def test_grouped_row_shape(self, scenario):
        rows = scenario.versions("posts").aggregate(latest_version_pipeline(None))
        assert set(rows[0]) == {"_id", "version", "createdAt", "updatedAt"}

    def test_match_after_group_sees_only_latest(self, repo, posts):
        add_version(repo, "A", 10, {"status": "published"})
        add_version(repo, "A", 20, {"status": "draft"})
        pipeline = latest_version_pipeline(field("version.status") == "published")
        assert posts.aggregate(pipeline) == []

    def test_match_before_group_resolves_wrong_version(self, repo, posts):
        add_version(repo, "A", 10, {"status": "published"})
        add_version(repo, "A", 20, {"status": "draft"})
        pipeline = [
            MatchStage(field("version.status") == "published"),
            SortStage({"updatedAt": -1}),
            GroupStage(by="parent", first=("version", "updatedAt", "createdAt")),
        ]
        rows = posts.aggregate(pipeline)
        assert [r["updatedAt"] for r in rows] == [ts(10)]

    def test_equal_updated_at_resolves_to_newest_record(self, repo, posts):
        add_version(repo, "A", 10, {"rev": 1})
        add_version(repo, "A", 10, {"rev": 2})
        add_version(repo, "A", 10, {"rev": 3})
        rows = posts.aggregate(latest_version_pipeline(None))
        assert rows[0]["version"] == {"rev": 3}

    def test_group_without_sort_takes_first_inserted(self, repo, posts):
        add_version(repo, "A", 20, {"rev": 1})
        add_version(repo, "A", 10, {"rev": 2})
        rows = posts.aggregate([GroupStage(by="parent", first=("version",))])
        assert rows[0]["version"] == {"rev": 1}
        assert rows[0]["updatedAt"] is None

    def test_trailing_sort(self, repo, posts):
        add_version(repo, "A", 10, {"n": 2})
        add_version(repo, "B", 10, {"n": 1})
        pipeline = [*latest_version_pipeline(None), SortStage({"version.n": 1})]
        assert [r["_id"] for r in posts.aggregate(pipeline)] == ["B", "A"]

    def test_match_on_entity_id(self, scenario):
        pipeline = latest_version_pipeline(field("id") == "Y")
        rows = scenario.versions("posts").aggregate(pipeline)
        assert [r["_id"] for r in rows] == ["Y"]

    def test_aggregate_paginate(self, repo, posts):
        for parent in "abcde":
            add_version(repo, parent, 1, {"name": parent})
            add_version(repo, parent, 2, {"name": parent.upper()})
        options = PaginationOptions(limit=2, page=1, sort={"version.name": -1})
        page = posts.aggregate_paginate(latest_version_pipeline(None), options)
        assert [d["version"]["name"] for d in page.docs] == ["E", "D"]
        assert page.total_docs == 5
        assert page.total_pages == 3

    def test_unknown_group_field(self, posts):
        with pytest.raises(InvalidQueryError):
            posts.aggregate([GroupStage(by="parent", first=("latest",))])

    def test_unknown_group_key(self, posts):
        with pytest.raises(InvalidQueryError):
            posts.aggregate([GroupStage(by="version.title")])


class TestFailures:
    def test_closed_connection_raises_backend_error(self, tmp_db):
        from draftquery.store import VersionRepository

        repo = VersionRepository(tmp_db)
        posts = repo.versions("posts")
        repo.close()
        with pytest.raises(StorageBackendError) as exc_info:
            posts.find(None)
        assert exc_info.value.operation == "find"

    def test_invalid_sort_path(self, posts):
        with pytest.raises(InvalidQueryError):
            posts.paginate(None, PaginationOptions(sort={"version.a-b": 1}))
