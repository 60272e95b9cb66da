"""Reshape version-wrapper rows into flat entity documents."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel

from draftquery.keys import VERSION_FIELD


def _as_mapping(row: Any) -> Mapping[str, Any]:
    if isinstance(row, BaseModel):
        return row.model_dump(by_alias=True)
    return row


def _flatten(entity_id: Any, row: Mapping[str, Any]) -> dict[str, Any]:
    # Metadata is assigned after the payload so same-named payload fields never win.
    doc: dict[str, Any] = {}
    for key, value in (row.get(VERSION_FIELD) or {}).items():
        doc[key] = value
    doc["id"] = entity_id
    doc["updatedAt"] = row.get("updatedAt")
    doc["createdAt"] = row.get("createdAt")
    return doc


def normalize_grouped(row: Any) -> dict[str, Any]:
    """Flatten a row produced by grouping on parent (the group key is ``_id``)."""
    row = _as_mapping(row)
    return _flatten(row["_id"], row)


def normalize_flagged(row: Any) -> dict[str, Any]:
    """Flatten a raw version record; the entity id is the record's parent."""
    row = _as_mapping(row)
    return _flatten(row["parent"], row)
