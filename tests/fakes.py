"""In-process fakes for the external ports.

Every external capability (embedding, rerank, chat model) is replaced by an
in-process fake so tests never touch the network.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from typing import Any

from mnemo.agent.model_client import ModelClient
from mnemo.config.settings import MemorySettings, WindowSettings
from mnemo.infra.errors import EmbeddingUnavailable
from mnemo.memory.embedding import EmbeddingPort
from mnemo.memory.rerank import RerankPort, RerankResult

DEFAULT_VECTOR = [0.0, 0.0, 0.0, 1.0]


class FakeEmbedder(EmbeddingPort):
    """Looks vectors up by exact text; unknown text gets ``default``."""

    def __init__(
        self,
        vectors: dict[str, list[float]] | None = None,
        default: list[float] | None = None,
    ) -> None:
        self.vectors = dict(vectors or {})
        self.default = list(default or DEFAULT_VECTOR)
        self.calls: list[str] = []
        self.fail = False

    async def embed(self, text: str) -> list[float]:
        self.calls.append(text)
        if self.fail:
            raise EmbeddingUnavailable("embedding service down")
        return list(self.vectors.get(text, self.default))


class FakeReranker(RerankPort):
    def __init__(
        self,
        results: list[RerankResult] | None = None,
        error: Exception | None = None,
    ) -> None:
        self.results = results or []
        self.error = error
        self.calls: list[tuple[str, list[str], int]] = []

    async def rerank(self, query: str, documents: list[str], top_n: int) -> list[RerankResult]:
        self.calls.append((query, list(documents), top_n))
        if self.error is not None:
            raise self.error
        return list(self.results)


class FakeModelClient(ModelClient):
    """Scripted chat model.

    ``chat`` pops from ``chat_replies`` (an Exception entry is raised) and
    falls back to ``default_reply``; summarizer calls get ``summary_reply``
    when it is set. With ``chat_gate`` set, ``chat`` waits for it first.
    ``chat_stream`` yields ``stream_chunks``; with ``hold`` set it pauses
    after the first chunk until released.
    """

    def __init__(
        self,
        *,
        chat_replies: list[str | Exception] | None = None,
        default_reply: str = '{"operations": []}',
        summary_reply: str | None = None,
        stream_chunks: list[str] | None = None,
        stream_error: Exception | None = None,
    ) -> None:
        self.chat_replies = list(chat_replies or [])
        self.default_reply = default_reply
        self.summary_reply = summary_reply
        self.stream_chunks = stream_chunks if stream_chunks is not None else ["Hello", "!"]
        self.stream_error = stream_error
        self.chat_calls: list[list[dict[str, Any]]] = []
        self.stream_calls: list[list[dict[str, Any]]] = []
        self.chat_gate: asyncio.Event | None = None
        self.hold: asyncio.Event | None = None
        self.stream_closed = False

    async def chat(
        self,
        messages: list[dict[str, Any]],
        model: str,
        temperature: float | None = None,
    ) -> str:
        self.chat_calls.append(messages)
        if self.chat_gate is not None:
            await self.chat_gate.wait()
        if self.summary_reply is not None and "summarizer" in messages[0]["content"]:
            return self.summary_reply
        if self.chat_replies:
            reply = self.chat_replies.pop(0)
            if isinstance(reply, Exception):
                raise reply
            return reply
        return self.default_reply

    async def chat_stream(
        self,
        messages: list[dict[str, Any]],
        model: str,
        *,
        temperature: float | None = None,
    ) -> AsyncIterator[str]:
        self.stream_calls.append(list(messages))
        try:
            if self.stream_error is not None:
                raise self.stream_error
            for i, chunk in enumerate(self.stream_chunks):
                yield chunk
                if i == 0 and self.hold is not None:
                    await self.hold.wait()
        finally:
            self.stream_closed = True


def saver_calls(client: FakeModelClient) -> list[list[dict[str, Any]]]:
    return [c for c in client.chat_calls if "memory manager" in c[0]["content"]]


def summary_calls(client: FakeModelClient) -> list[list[dict[str, Any]]]:
    return [c for c in client.chat_calls if "summarizer" in c[0]["content"]]


def make_memory_settings(**overrides) -> MemorySettings:
    defaults: dict[str, Any] = {"store_path": "unused.json"}
    defaults.update(overrides)
    return MemorySettings(**defaults)


def make_window_settings(**overrides) -> WindowSettings:
    defaults: dict[str, Any] = {
        "window_size": 10,
        "buffer_size": 2,
        "summary_timeout_s": 1.0,
        "archive_dir": None,
    }
    defaults.update(overrides)
    return WindowSettings(**defaults)


