"""Configuration for draftquery resolution."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class DraftQueryConfig:
    """Configuration for latest-version resolution."""

    query_drafts_v2: bool = False
    default_limit: int = 10
    max_limit: int = 1000

    @property
    def uses_flag_strategy(self) -> bool:
        """True when resolution trusts the persisted ``latest`` marker."""
        return self.query_drafts_v2
