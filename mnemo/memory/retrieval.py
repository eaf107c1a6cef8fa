"""Retrieval engine: two-stage search over the memory store.

Stage 1 (recall): embed the query, over-fetch k * multiplier candidates by cosine.
Stage 2 (rerank, optional): reorder candidates with the rerank port and keep k.
Rerank failure falls back to stage-1 order; it never aborts retrieval.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from mnemo.memory.contracts import RetrievalResult

if TYPE_CHECKING:
    from mnemo.config.settings import MemorySettings
    from mnemo.memory.embedding import EmbeddingPort
    from mnemo.memory.rerank import RerankPort, RerankResult
    from mnemo.memory.store import MemoryStore

logger = structlog.get_logger()


class RetrievalEngine:
    def __init__(
        self,
        store: MemoryStore,
        embedder: EmbeddingPort,
        settings: MemorySettings,
        reranker: RerankPort | None = None,
    ) -> None:
        self._store = store
        self._embedder = embedder
        self._settings = settings
        self._reranker = reranker

    async def retrieve(self, query: str, k: int | None = None) -> list[RetrievalResult]:
        """Return up to k results for ``query``, best first.

        Raises EmbeddingUnavailable if the query cannot be embedded; callers
        decide the fallback.
        """
        k = k if k is not None else self._settings.recall_max_results
        if k <= 0 or not query or not query.strip():
            return []
        if self._store.count() == 0:
            return []

        query_vector = await self._embedder.embed(query)
        k1 = k * self._settings.rerank_candidate_multiplier
        candidates = self._store.search(query_vector, k1)
        if not candidates:
            return []

        if self._reranker is None:
            return candidates[:k]

        try:
            reranked = await self._reranker.rerank(
                query, [c.record.text for c in candidates], top_n=k
            )
        except Exception as e:
            logger.warning(
                "rerank_failed_fallback_to_cosine",
                error=str(e),
                candidates=len(candidates),
            )
            return candidates[:k]

        results = self._apply_rerank(candidates, reranked)
        if not results:
            logger.warning("rerank_empty_fallback_to_cosine", candidates=len(candidates))
            return candidates[:k]

        logger.info(
            "memory_retrieved",
            query=query[:50],
            candidates=len(candidates),
            results=min(len(results), k),
            reranked=True,
        )
        return results[:k]

    @staticmethod
    def _apply_rerank(
        candidates: list[RetrievalResult], reranked: list[RerankResult]
    ) -> list[RetrievalResult]:
        """Order candidates by rerank score; equal scores keep stage-1 order."""
        seen: set[int] = set()
        scored: list[tuple[float, int]] = []
        for item in reranked:
            if not (0 <= item.index < len(candidates)) or item.index in seen:
                continue
            seen.add(item.index)
            scored.append((item.relevance_score, item.index))
        scored.sort(key=lambda pair: (-pair[0], pair[1]))
        return [
            RetrievalResult(record=candidates[idx].record, score=score)
            for score, idx in scored
        ]
