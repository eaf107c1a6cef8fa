"""Embedding port: text → fixed-dimension vector."""

from __future__ import annotations

from abc import ABC, abstractmethod

import structlog
from openai import AsyncOpenAI

from mnemo.infra.errors import EmbeddingUnavailable
from mnemo.infra.retry import retry_call

logger = structlog.get_logger()


class EmbeddingPort(ABC):
    """Turns text into a vector. Raises EmbeddingUnavailable on failure."""

    @abstractmethod
    async def embed(self, text: str) -> list[float]: ...


class OpenAIEmbeddingClient(EmbeddingPort):
    """Embedding port backed by the OpenAI embeddings API (or a compatible endpoint)."""

    def __init__(
        self,
        api_key: str,
        model: str,
        *,
        base_url: str | None = None,
        dimensions: int | None = None,
        max_retries: int = 3,
        base_delay: float = 1.0,
    ) -> None:
        self._client = AsyncOpenAI(api_key=api_key, base_url=base_url)
        self._model = model
        self._dimensions = dimensions
        self._max_retries = max_retries
        self._base_delay = base_delay

    async def embed(self, text: str) -> list[float]:
        extra = {"dimensions": self._dimensions} if self._dimensions else {}
        try:
            response = await retry_call(
                lambda: self._client.embeddings.create(
                    model=self._model, input=text, **extra
                ),
                max_retries=self._max_retries,
                base_delay=self._base_delay,
                error_cls=EmbeddingUnavailable,
                context="embed",
            )
        except EmbeddingUnavailable:
            raise
        except Exception as e:
            # Auth/config errors surface as SDK exceptions outside the retry set
            raise EmbeddingUnavailable(f"Embedding request failed: {e}") from e

        if not response.data:
            raise EmbeddingUnavailable("Empty embedding response")
        vector = list(response.data[0].embedding)
        logger.debug("embedding_created", model=self._model, dimension=len(vector))
        return vector
