"""Shared test fixtures for draftquery tests."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from draftquery.store import VersionRepository

EPOCH = datetime(2024, 1, 1, tzinfo=timezone.utc)


def ts(seconds: int) -> datetime:
    """A UTC timestamp ``seconds`` after a fixed epoch."""
    return EPOCH + timedelta(seconds=seconds)


def add_version(
    repo: VersionRepository,
    parent: str,
    updated: int,
    version: dict | None = None,
    *,
    created: int = 0,
    latest: bool = False,
    collection: str = "posts",
):
    return repo.insert_version(
        collection,
        {
            "parent": parent,
            "version": version or {},
            "createdAt": ts(created),
            "updatedAt": ts(updated),
            "latest": latest,
        },
    )


# --- Fixtures ---


@pytest.fixture
def tmp_db(tmp_path):
    """Create a temporary SQLite database path."""
    return str(tmp_path / "test.db")


@pytest.fixture
def repo(tmp_db):
    """Create a VersionRepository instance with a temporary database."""
    r = VersionRepository(tmp_db)
    yield r
    r.close()


@pytest.fixture
def posts(repo):
    """Version store handle for the "posts" collection."""
    return repo.versions("posts")


@pytest.fixture
def scenario(repo):
    """X has two unmarked versions, Y one version marked latest."""
    add_version(repo, "X", 10, {"title": "x-old"})
    add_version(repo, "X", 20, {"title": "x-new"})
    add_version(repo, "Y", 15, {"title": "y-only"}, latest=True)
    repo.commit_transaction()
    return repo
