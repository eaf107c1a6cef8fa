"""Tests for MemoryRecaller and relative age formatting."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest
from fakes import make_memory_settings

from mnemo.agent.recaller import RECALL_HEADER, MemoryRecaller, format_age
from mnemo.memory.retrieval import RetrievalEngine
from mnemo.session.conversation import ConversationState

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


class TestFormatAge:
    @pytest.mark.parametrize(
        ("delta", "expected"),
        [
            (timedelta(seconds=5), "just now"),
            (timedelta(minutes=1), "1 minute ago"),
            (timedelta(minutes=5, seconds=59), "5 minutes ago"),
            (timedelta(hours=3), "3 hours ago"),
            (timedelta(days=1), "1 day ago"),
            (timedelta(days=2, hours=23), "2 days ago"),
        ],
    )
    def test_buckets(self, delta, expected):
        assert format_age(NOW - delta, NOW) == expected

    def test_future_timestamp_is_just_now(self):
        assert format_age(NOW + timedelta(minutes=3), NOW) == "just now"


def _recaller(store, embedder) -> MemoryRecaller:
    return MemoryRecaller(RetrievalEngine(store, embedder, make_memory_settings()))


@pytest.mark.asyncio
class TestMemoryRecaller:
    async def test_injects_recall_block(self, store, embedder):
        await store.add("User's favorite color is blue", category="preference", importance=6)
        state = ConversationState("s1")
        state.append("user", "what is my favorite color?")

        block = await _recaller(store, embedder).recall(state, "what is my favorite color?")

        assert block is not None
        assert block.injected is True
        assert block.kind == "recall"
        assert block.role == "system"
        assert block.content.startswith(RECALL_HEADER)
        assert "[preference] (importance 6, just now) User's favorite color is blue" in block.content
        assert state.messages[-1] == block

    async def test_previous_recall_replaced(self, store, embedder):
        await store.add("fact one")
        state = ConversationState("s1")
        recaller = _recaller(store, embedder)

        state.append("user", "first")
        await recaller.recall(state, "first")
        state.append("assistant", "reply")
        state.append("user", "second")
        await recaller.recall(state, "second")

        recalls = state.injected("recall")
        assert len(recalls) == 1
        assert recalls[0].seq > state.window_messages()[-1].seq

    async def test_empty_results_remove_old_block(self, store, embedder):
        await store.add("fact")
        state = ConversationState("s1")
        recaller = _recaller(store, embedder)
        state.append("user", "hi")
        await recaller.recall(state, "hi")

        assert await recaller.recall(state, "   ") is None
        assert state.injected("recall") == []

    async def test_embedding_outage_injects_nothing(self, store, embedder):
        await store.add("fact")
        state = ConversationState("s1")
        recaller = _recaller(store, embedder)
        state.append("user", "hi")
        await recaller.recall(state, "hi")

        embedder.fail = True
        block = await recaller.recall(state, "hi again")

        assert block is None
        assert state.injected("recall") == []
