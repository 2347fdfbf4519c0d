"""Persisted translation state records."""

from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, Field

DEFAULT_TRANSLATOR_VERSION = "1.0"


class StateEntry(BaseModel):
    """Last successful translation of one path.

    Attributes:
        path: Repository-relative path; the key of the persisted mapping.
        source_hash: Upstream content hash the translation was produced from.
        last_translated_at: When the translation was committed.
        translator_version: Version tag of the tool that wrote the entry.
    """

    path: str = Field(exclude=True)
    source_hash: str
    last_translated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    translator_version: str = DEFAULT_TRANSLATOR_VERSION


__all__ = ["DEFAULT_TRANSLATOR_VERSION", "StateEntry"]
