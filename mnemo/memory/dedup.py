"""Dedup/merge policy: insert a candidate fact or merge it into its nearest twin.

Rule (single global threshold, no per-category tuning):
- best cosine match >= dedup_threshold → merge into that record
- otherwise → insert a new record

Merge is "replace": the newer text wins, importance is the max of both,
keywords are unioned case-insensitively, category follows the newer fact.
id and created_at of the existing record are preserved.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from mnemo.infra.errors import MemoryNotFoundError
from mnemo.memory.contracts import SaveOutcome
from mnemo.memory.models import MemoryCategory

if TYPE_CHECKING:
    from mnemo.config.settings import MemorySettings
    from mnemo.memory.embedding import EmbeddingPort
    from mnemo.memory.store import MemoryStore

logger = structlog.get_logger()


def merge_keywords(existing: list[str], incoming: list[str]) -> list[str]:
    """Union preserving order, existing first, case-insensitive."""
    seen: set[str] = set()
    merged: list[str] = []
    for kw in [*existing, *incoming]:
        key = kw.strip().lower()
        if not key or key in seen:
            continue
        seen.add(key)
        merged.append(kw.strip())
    return merged


class DedupMergePolicy:
    def __init__(
        self,
        store: MemoryStore,
        embedder: EmbeddingPort,
        settings: MemorySettings,
    ) -> None:
        self._store = store
        self._embedder = embedder
        self._threshold = settings.dedup_threshold

    async def save(
        self,
        text: str,
        *,
        category: MemoryCategory = "fact",
        importance: int = 5,
        keywords: list[str] | None = None,
    ) -> SaveOutcome:
        """Insert or merge ``text``. Raises EmbeddingUnavailable if it cannot be embedded."""
        keywords = keywords or []
        vector = await self._embedder.embed(text)
        matches = self._store.search(vector, 1)

        if matches and matches[0].score >= self._threshold:
            best = matches[0]
            existing = best.record
            try:
                await self._store.update(
                    existing.id,
                    text,
                    category=category,
                    importance=max(existing.importance, importance),
                    keywords=merge_keywords(existing.keywords, keywords),
                    embedding=vector,
                )
            except MemoryNotFoundError:
                # Deleted by another writer between search and update
                logger.warning("memory_merge_target_vanished", record_id=existing.id)
            else:
                logger.info(
                    "memory_merged",
                    record_id=existing.id,
                    similarity=round(best.score, 4),
                    threshold=self._threshold,
                )
                return SaveOutcome(
                    action="merged", record_id=existing.id, similarity=best.score
                )

        record_id = await self._store.add(
            text,
            category=category,
            importance=importance,
            keywords=keywords,
            embedding=vector,
        )
        return SaveOutcome(
            action="added",
            record_id=record_id,
            similarity=matches[0].score if matches else None,
        )
