"""Memory module: persistent vector store, two-stage retrieval, and dedup/merge."""

from mnemo.memory.contracts import (
    MemoryOperation,
    OperationBatch,
    RetrievalResult,
    SaveOutcome,
)
from mnemo.memory.dedup import DedupMergePolicy
from mnemo.memory.embedding import EmbeddingPort, OpenAIEmbeddingClient
from mnemo.memory.models import MemoryRecord, MemoryStats, StoreSnapshot
from mnemo.memory.rerank import HttpRerankClient, RerankPort, RerankResult
from mnemo.memory.retrieval import RetrievalEngine
from mnemo.memory.store import MemoryStore

__all__ = [
    "DedupMergePolicy",
    "EmbeddingPort",
    "HttpRerankClient",
    "MemoryOperation",
    "MemoryRecord",
    "MemoryStats",
    "MemoryStore",
    "OpenAIEmbeddingClient",
    "OperationBatch",
    "RerankPort",
    "RerankResult",
    "RetrievalEngine",
    "RetrievalResult",
    "SaveOutcome",
    "StoreSnapshot",
]
