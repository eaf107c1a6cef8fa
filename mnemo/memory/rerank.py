"""Rerank port: reorder candidate documents by relevance to a query.

Optional. Absence or failure never aborts retrieval.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass

import httpx
import structlog

from mnemo.infra.errors import RerankUnavailable

logger = structlog.get_logger()


@dataclass(frozen=True)
class RerankResult:
    """Original candidate index + relevance score."""

    index: int
    relevance_score: float


class RerankPort(ABC):
    @abstractmethod
    async def rerank(
        self, query: str, documents: list[str], top_n: int
    ) -> list[RerankResult]: ...


class HttpRerankClient(RerankPort):
    """Client for DashScope-compatible ``/reranks`` endpoints.

    Request: ``{model, query, documents, top_n}``
    Response: ``{"results": [{"index": int, "relevance_score": float}, ...]}``
    """

    def __init__(
        self,
        api_key: str,
        *,
        model: str = "gte-rerank-v2",
        endpoint: str = "https://dashscope.aliyuncs.com/compatible-api/v1/reranks",
        timeout_s: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._api_key = api_key
        self._model = model
        self._endpoint = endpoint
        self._timeout_s = timeout_s
        self._transport = transport

    async def rerank(
        self, query: str, documents: list[str], top_n: int
    ) -> list[RerankResult]:
        payload = {
            "model": self._model,
            "query": query,
            "documents": documents,
            "top_n": top_n,
        }
        headers = {"Authorization": f"Bearer {self._api_key}"}
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout_s, transport=self._transport
            ) as client:
                resp = await client.post(self._endpoint, json=payload, headers=headers)
            resp.raise_for_status()
            data = resp.json()
        except httpx.HTTPError as exc:
            raise RerankUnavailable(f"Rerank request failed: {exc}") from exc
        except ValueError as exc:
            raise RerankUnavailable(f"Rerank response is not JSON: {exc}") from exc

        try:
            results = [
                RerankResult(
                    index=int(item["index"]),
                    relevance_score=float(item["relevance_score"]),
                )
                for item in data.get("results") or []
            ]
        except (KeyError, TypeError, ValueError, AttributeError) as exc:
            raise RerankUnavailable(f"Malformed rerank response: {exc}") from exc

        logger.debug("rerank_complete", candidates=len(documents), results=len(results))
        return results
