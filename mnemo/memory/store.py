"""Vector memory store: durable collection of MemoryRecords with exact cosine search.

Responsibilities:
- CRUD over records, embedding text through the EmbeddingPort on every text change
- Exact cosine-similarity scan (numpy), ties broken by most recent updated_at
- Whole-store JSON snapshot, committed atomically (temp file + os.replace)
- Persist first, then swap the in-memory index: a failed write leaves
  both the file and the in-memory view unchanged
- Corrupt snapshot on load → empty store + loud log, never a crash
"""

from __future__ import annotations

import asyncio
import json
from collections import Counter
from datetime import UTC, datetime
from pathlib import Path

import numpy as np
import structlog
from pydantic import ValidationError

from mnemo.infra.atomic import atomic_write_json
from mnemo.infra.errors import DimensionMismatchError, MemoryNotFoundError
from mnemo.memory.contracts import RetrievalResult
from mnemo.memory.embedding import EmbeddingPort
from mnemo.memory.models import (
    MemoryCategory,
    MemoryRecord,
    MemoryStats,
    StoreSnapshot,
    clamp_importance,
)

logger = structlog.get_logger()


class MemoryStore:
    """Single-writer vector store.

    Writers are serialized by an asyncio.Lock. Readers (search/get/recent)
    never await, so they always see one consistent ``dict`` of records:
    mutations build a new dict, persist it, and only then replace the
    reference.
    """

    def __init__(self, path: Path, embedder: EmbeddingPort) -> None:
        self._path = path
        self._embedder = embedder
        self._records: dict[str, MemoryRecord] = {}
        self._dimension: int | None = None
        self._lock = asyncio.Lock()

    @property
    def path(self) -> Path:
        return self._path

    @property
    def dimension(self) -> int | None:
        return self._dimension

    # -- Durability ----------------------------------------------------------

    def load(self) -> None:
        """Load the snapshot file. Missing → empty; unreadable → empty + error log."""
        self._records = {}
        self._dimension = None

        if not self._path.exists():
            logger.info("memory_store_new", path=str(self._path))
            return

        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
            snapshot = StoreSnapshot.model_validate(raw)
            dimension = snapshot.dimension
            for record in snapshot.records:
                if dimension is None:
                    dimension = len(record.embedding)
                if len(record.embedding) != dimension:
                    raise DimensionMismatchError(dimension, len(record.embedding))
        except (OSError, json.JSONDecodeError, ValidationError, DimensionMismatchError) as e:
            logger.error(
                "memory_store_corrupt",
                path=str(self._path),
                error=str(e),
                msg="Snapshot unreadable; starting with an empty store",
            )
            return

        self._records = {r.id: r for r in snapshot.records}
        self._dimension = dimension
        logger.info(
            "memory_store_loaded",
            path=str(self._path),
            records=len(self._records),
            dimension=self._dimension,
        )

    async def save(self) -> None:
        """Atomically write the current state to disk."""
        async with self._lock:
            await self._persist(self._records, self._dimension)

    async def _persist(
        self, records: dict[str, MemoryRecord], dimension: int | None
    ) -> None:
        snapshot = StoreSnapshot(dimension=dimension, records=list(records.values()))
        payload = snapshot.model_dump(mode="json")
        await asyncio.to_thread(atomic_write_json, self._path, payload)

    # -- Write ---------------------------------------------------------------

    async def add(
        self,
        text: str,
        *,
        category: MemoryCategory = "fact",
        importance: int = 5,
        keywords: list[str] | None = None,
        embedding: list[float] | None = None,
    ) -> str:
        """Embed and persist a new record. Returns the new id.

        Raises EmbeddingUnavailable (nothing is written) or DimensionMismatchError.
        """
        async with self._lock:
            vector = embedding if embedding is not None else await self._embedder.embed(text)
            dimension = self._check_dimension(vector)

            now = datetime.now(UTC)
            record = MemoryRecord(
                text=text,
                embedding=list(vector),
                category=category,
                importance=clamp_importance(importance),
                keywords=list(keywords or []),
                created_at=now,
                updated_at=now,
            )
            records = {**self._records, record.id: record}
            await self._persist(records, dimension)
            self._records = records
            self._dimension = dimension

        logger.info(
            "memory_added",
            record_id=record.id,
            category=category,
            text=text[:80],
        )
        return record.id

    async def update(
        self,
        record_id: str,
        text: str,
        *,
        category: MemoryCategory | None = None,
        importance: int | None = None,
        keywords: list[str] | None = None,
        embedding: list[float] | None = None,
    ) -> MemoryRecord:
        """Replace a record's text (re-embedding it) and bump updated_at.

        Raises MemoryNotFoundError before any embedding call if the id is absent.
        """
        async with self._lock:
            existing = self._records.get(record_id)
            if existing is None:
                raise MemoryNotFoundError(record_id)

            if embedding is not None:
                vector = embedding
            elif text == existing.text:
                vector = existing.embedding
            else:
                vector = await self._embedder.embed(text)
            dimension = self._check_dimension(vector)

            changes: dict = {
                "text": text,
                "embedding": list(vector),
                "updated_at": datetime.now(UTC),
            }
            if category is not None:
                changes["category"] = category
            if importance is not None:
                changes["importance"] = clamp_importance(importance)
            if keywords is not None:
                changes["keywords"] = list(keywords)
            updated = existing.model_copy(update=changes)

            records = {**self._records, record_id: updated}
            await self._persist(records, dimension)
            self._records = records
            self._dimension = dimension

        logger.info("memory_updated", record_id=record_id, text=text[:80])
        return updated

    async def delete(self, record_id: str) -> None:
        """Remove a record. Raises MemoryNotFoundError if absent."""
        async with self._lock:
            if record_id not in self._records:
                raise MemoryNotFoundError(record_id)
            records = {k: v for k, v in self._records.items() if k != record_id}
            await self._persist(records, self._dimension)
            self._records = records

        logger.info("memory_deleted", record_id=record_id)

    def _check_dimension(self, vector: list[float]) -> int:
        if self._dimension is not None and len(vector) != self._dimension:
            raise DimensionMismatchError(self._dimension, len(vector))
        return len(vector)

    # -- Read ----------------------------------------------------------------

    def get(self, record_id: str) -> MemoryRecord:
        record = self._records.get(record_id)
        if record is None:
            raise MemoryNotFoundError(record_id)
        return record

    def count(self) -> int:
        return len(self._records)

    def recent(self, n: int) -> list[MemoryRecord]:
        """Most recently updated records first."""
        if n <= 0:
            return []
        records = sorted(
            self._records.values(), key=lambda r: r.updated_at, reverse=True
        )
        return records[:n]

    def search(self, query_embedding: list[float], k: int) -> list[RetrievalResult]:
        """Exact cosine scan over all records.

        Sorted by descending similarity; ties go to the most recently updated
        record. Empty store or k <= 0 → [].
        """
        records = list(self._records.values())
        if not records or k <= 0:
            return []
        if self._dimension is not None and len(query_embedding) != self._dimension:
            raise DimensionMismatchError(self._dimension, len(query_embedding))

        matrix = np.asarray([r.embedding for r in records], dtype=np.float64)
        query = np.asarray(query_embedding, dtype=np.float64)
        norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(query)
        dots = matrix @ query
        scores = np.divide(dots, norms, out=np.zeros_like(dots), where=norms > 0)

        ranked = sorted(
            zip(records, scores.tolist(), strict=True),
            key=lambda pair: (-pair[1], -pair[0].updated_at.timestamp(), pair[0].id),
        )
        return [RetrievalResult(record=r, score=s) for r, s in ranked[:k]]

    def stats(self) -> MemoryStats:
        records = list(self._records.values())
        if not records:
            return MemoryStats()
        by_category = Counter(r.category for r in records)
        return MemoryStats(
            total_count=len(records),
            by_category=dict(by_category),
            average_importance=sum(r.importance for r in records) / len(records),
            oldest=min(r.created_at for r in records),
            newest=max(r.created_at for r in records),
        )
