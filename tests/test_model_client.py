"""Tests for OpenAICompatModelClient.

Covers: chat() raises LLMError on empty choices, chat_stream() skips empty
        chunk choices, transient errors are retried, mid-stream provider
        errors surface as LLMError.
"""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
from openai import APIConnectionError

from mnemo.agent.model_client import OpenAICompatModelClient
from mnemo.infra.errors import LLMError


@pytest.fixture()
def client():
    return OpenAICompatModelClient(api_key="test-key", max_retries=0)


def _make_response(*, choices=None):
    """Build a mock completion response."""
    resp = MagicMock()
    resp.choices = choices if choices is not None else []
    return resp


def _make_choice(content="hello"):
    choice = MagicMock()
    choice.message.content = content
    return choice


def _connection_error():
    return APIConnectionError(request=httpx.Request("POST", "https://api.test/v1"))


def _stream_chunk(content):
    chunk = MagicMock()
    chunk.choices = [MagicMock()]
    chunk.choices[0].delta.content = content
    return chunk


class TestChat:
    @pytest.mark.asyncio()
    async def test_empty_choices_raises_llm_error(self, client):
        client._client = MagicMock()
        client._client.chat.completions.create = AsyncMock(
            return_value=_make_response(choices=[])
        )
        with pytest.raises(LLMError, match="Empty choices"):
            await client.chat([{"role": "user", "content": "hi"}], "test-model")

    @pytest.mark.asyncio()
    async def test_normal_choices_returns_content(self, client):
        client._client = MagicMock()
        client._client.chat.completions.create = AsyncMock(
            return_value=_make_response(choices=[_make_choice("world")])
        )
        result = await client.chat([{"role": "user", "content": "hi"}], "test-model")
        assert result == "world"

    @pytest.mark.asyncio()
    async def test_none_content_becomes_empty_string(self, client):
        client._client = MagicMock()
        client._client.chat.completions.create = AsyncMock(
            return_value=_make_response(choices=[_make_choice(None)])
        )
        assert await client.chat([{"role": "user", "content": "hi"}], "m") == ""

    @pytest.mark.asyncio()
    async def test_temperature_only_sent_when_set(self, client):
        create = AsyncMock(return_value=_make_response(choices=[_make_choice("x")]))
        client._client = MagicMock()
        client._client.chat.completions.create = create

        await client.chat([{"role": "user", "content": "hi"}], "m")
        await client.chat([{"role": "user", "content": "hi"}], "m", temperature=0.1)

        assert "temperature" not in create.await_args_list[0].kwargs
        assert create.await_args_list[1].kwargs["temperature"] == 0.1

    @pytest.mark.asyncio()
    async def test_transient_error_retried(self):
        client = OpenAICompatModelClient(api_key="k", max_retries=1, base_delay=0.0)
        client._client = MagicMock()
        client._client.chat.completions.create = AsyncMock(
            side_effect=[_connection_error(), _make_response(choices=[_make_choice("ok")])]
        )
        assert await client.chat([{"role": "user", "content": "hi"}], "m") == "ok"

    @pytest.mark.asyncio()
    async def test_retries_exhausted_raises_llm_error(self, client):
        client._client = MagicMock()
        client._client.chat.completions.create = AsyncMock(side_effect=_connection_error())
        with pytest.raises(LLMError, match="failed after 1 attempts"):
            await client.chat([{"role": "user", "content": "hi"}], "m")


class TestChatStream:
    @pytest.mark.asyncio()
    async def test_empty_chunk_choices_skipped(self, client):
        """Stream chunks with empty choices should be silently skipped."""
        empty_chunk = MagicMock()
        empty_chunk.choices = []

        async def mock_stream():
            yield empty_chunk
            yield _stream_chunk("token")
            yield _stream_chunk(None)

        client._client = MagicMock()
        client._client.chat.completions.create = AsyncMock(return_value=mock_stream())

        tokens = []
        async for t in client.chat_stream(
            [{"role": "user", "content": "hi"}], "test-model"
        ):
            tokens.append(t)

        assert tokens == ["token"]

    @pytest.mark.asyncio()
    async def test_mid_stream_error_raises_llm_error(self, client):
        async def mock_stream():
            yield _stream_chunk("par")
            raise _connection_error()

        client._client = MagicMock()
        client._client.chat.completions.create = AsyncMock(return_value=mock_stream())

        tokens = []
        with pytest.raises(LLMError, match="Stream interrupted"):
            async for t in client.chat_stream([{"role": "user", "content": "hi"}], "m"):
                tokens.append(t)
        assert tokens == ["par"]

    @pytest.mark.asyncio()
    async def test_open_failure_raises_llm_error(self, client):
        client._client = MagicMock()
        client._client.chat.completions.create = AsyncMock(side_effect=_connection_error())

        with pytest.raises(LLMError):
            async for _ in client.chat_stream([{"role": "user", "content": "hi"}], "m"):
                pass
