"""Version record model."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class VersionRecord(BaseModel):
    """One historical snapshot of an entity plus its metadata.

    ``version`` holds the entity's own fields. ``latest`` is maintained by the
    write path; this package only reads it.
    """

    model_config = ConfigDict(populate_by_name=True)

    id: int | None = None
    parent: str
    version: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(alias="createdAt")
    updated_at: datetime = Field(alias="updatedAt")
    latest: bool = False

    @field_validator("created_at", "updated_at")
    @classmethod
    def _ensure_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def to_row(self) -> dict[str, Any]:
        """Dump to the plain wire shape used by lean queries."""
        return self.model_dump(by_alias=True)
