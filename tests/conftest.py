"""Shared pytest fixtures for mnemo tests."""

from __future__ import annotations

import pytest
from fakes import FakeEmbedder

from mnemo.memory.store import MemoryStore


@pytest.fixture()
def embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture()
def store(tmp_path, embedder) -> MemoryStore:
    """Empty store backed by a file under tmp_path."""
    s = MemoryStore(tmp_path / "memory_store.json", embedder)
    s.load()
    return s
