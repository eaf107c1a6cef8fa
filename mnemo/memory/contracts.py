"""Memory-side shared contract types.

Memory layer owns these DTOs. Zero dependency on mnemo.agent.*.
The saver parses model output into MemoryOperation at the boundary.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

from pydantic import BaseModel, Field, field_validator, model_validator

from mnemo.memory.models import MemoryCategory, MemoryRecord, clamp_importance


@dataclass(frozen=True)
class RetrievalResult:
    """Transient search hit: record reference + relevance score."""

    record: MemoryRecord
    score: float


@dataclass(frozen=True)
class SaveOutcome:
    """What the dedup policy did with a candidate fact."""

    action: Literal["added", "merged"]
    record_id: str
    similarity: float | None = None


class MemoryOperation(BaseModel):
    """One operation emitted by the saver's extraction call.

    add    → text required, id ignored
    update → id and text required
    delete → id required
    """

    operation: Literal["add", "update", "delete"]
    id: str | None = None
    text: str | None = None
    category: MemoryCategory = "fact"
    importance: int = 5
    keywords: list[str] = Field(default_factory=list)

    @field_validator("importance")
    @classmethod
    def _clamp_importance(cls, v: int) -> int:
        return clamp_importance(v)

    @model_validator(mode="after")
    def _check_fields(self) -> MemoryOperation:
        if self.operation in ("add", "update") and not (self.text and self.text.strip()):
            raise ValueError(f"'{self.operation}' operation requires non-empty text")
        if self.operation in ("update", "delete") and not self.id:
            raise ValueError(f"'{self.operation}' operation requires an id")
        return self


class OperationBatch(BaseModel):
    operations: list[MemoryOperation] = Field(default_factory=list)
