"""Data models for the memory subsystem.

Includes:
- MemoryRecord: one remembered fact with its embedding (persisted)
- StoreSnapshot: on-disk layout of the whole store
- MemoryStats: aggregate view for admin/debug output
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import Literal

from pydantic import BaseModel, Field, field_validator

MemoryCategory = Literal["fact", "preference", "decision", "todo", "lesson"]

SNAPSHOT_VERSION = 1


def _utcnow() -> datetime:
    return datetime.now(UTC)


def clamp_importance(value: int) -> int:
    return min(max(int(value), 1), 10)


class MemoryRecord(BaseModel):
    """A single long-term memory.

    Records are treated as immutable values by the store: updates produce a
    new instance via ``model_copy`` so concurrent readers never observe a
    half-applied change.
    """

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    text: str
    embedding: list[float]
    category: MemoryCategory = "fact"
    importance: int = 5
    keywords: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @field_validator("importance")
    @classmethod
    def _clamp_importance(cls, v: int) -> int:
        return clamp_importance(v)

    @field_validator("embedding")
    @classmethod
    def _non_empty_embedding(cls, v: list[float]) -> list[float]:
        if not v:
            raise ValueError("embedding must not be empty")
        return v


class StoreSnapshot(BaseModel):
    """Whole-store snapshot file layout."""

    version: int = SNAPSHOT_VERSION
    dimension: int | None = None
    records: list[MemoryRecord] = Field(default_factory=list)


class MemoryStats(BaseModel):
    total_count: int = 0
    by_category: dict[str, int] = Field(default_factory=dict)
    average_importance: float = 0.0
    oldest: datetime | None = None
    newest: datetime | None = None
