"""Tests for the dedup/merge policy, including the save → merge → recall flow."""

from __future__ import annotations

import pytest
from fakes import make_memory_settings

from mnemo.memory.dedup import DedupMergePolicy, merge_keywords
from mnemo.memory.retrieval import RetrievalEngine

BLUE = "user's favorite color is blue"
GREEN = "user's favorite color is actually green"
QUERY = "what color does the user like"


class TestMergeKeywords:
    def test_union_is_case_insensitive_and_ordered(self):
        assert merge_keywords(["Color", "blue"], ["color", "green", " Blue "]) == [
            "Color",
            "blue",
            "green",
        ]

    def test_blank_keywords_dropped(self):
        assert merge_keywords(["", "a"], ["  "]) == ["a"]


@pytest.mark.asyncio
class TestDedupMergePolicy:
    async def test_similar_fact_merges_into_one_record(self, store, embedder):
        embedder.vectors[BLUE] = [1.0, 0.1, 0.0, 0.0]
        embedder.vectors[GREEN] = [1.0, 0.2, 0.0, 0.0]
        policy = DedupMergePolicy(store, embedder, make_memory_settings())

        first = await policy.save(BLUE, category="preference", importance=6, keywords=["color"])
        second = await policy.save(GREEN, category="preference", importance=4, keywords=["green"])

        assert first.action == "added"
        assert second.action == "merged"
        assert second.record_id == first.record_id
        assert second.similarity is not None and second.similarity >= 0.85

        assert store.count() == 1
        record = store.get(first.record_id)
        assert record.text == GREEN
        assert record.importance == 6
        assert record.keywords == ["color", "green"]
        assert record.embedding == [1.0, 0.2, 0.0, 0.0]

    async def test_dissimilar_fact_is_added(self, store, embedder):
        embedder.vectors["likes tea"] = [1.0, 0.0, 0.0, 0.0]
        embedder.vectors["lives in Oslo"] = [0.0, 1.0, 0.0, 0.0]
        policy = DedupMergePolicy(store, embedder, make_memory_settings())

        await policy.save("likes tea")
        outcome = await policy.save("lives in Oslo")

        assert outcome.action == "added"
        assert outcome.similarity == pytest.approx(0.0)
        assert store.count() == 2

    async def test_threshold_is_inclusive(self, store, embedder):
        embedder.vectors["a"] = [1.0, 0.0, 0.0, 0.0]
        embedder.vectors["b"] = [1.0, 0.0, 0.0, 0.0]
        policy = DedupMergePolicy(store, embedder, make_memory_settings(dedup_threshold=1.0))

        await policy.save("a")
        outcome = await policy.save("b")
        assert outcome.action == "merged"

    async def test_candidate_embedded_once(self, store, embedder):
        policy = DedupMergePolicy(store, embedder, make_memory_settings())
        await policy.save("something")
        assert embedder.calls == ["something"]

    async def test_merged_fact_is_top_recall_result(self, store, embedder):
        embedder.vectors[BLUE] = [1.0, 0.1, 0.0, 0.0]
        embedder.vectors[GREEN] = [1.0, 0.2, 0.0, 0.0]
        embedder.vectors["user works as a nurse"] = [0.0, 1.0, 0.0, 0.0]
        embedder.vectors[QUERY] = [1.0, 0.15, 0.0, 0.0]
        settings = make_memory_settings()
        policy = DedupMergePolicy(store, embedder, settings)

        await policy.save(BLUE)
        await policy.save("user works as a nurse")
        await policy.save(GREEN)

        assert store.count() == 2
        results = await RetrievalEngine(store, embedder, settings).retrieve(QUERY)
        assert "green" in results[0].record.text
