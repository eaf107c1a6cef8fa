"""Custom exception hierarchy for mnemo.

All application-specific exceptions inherit from MnemoError,
which carries an error code for log and front-end mapping.
"""

from __future__ import annotations


class MnemoError(Exception):
    """Base exception for all mnemo errors."""

    def __init__(self, message: str, *, code: str = "INTERNAL_ERROR") -> None:
        super().__init__(message)
        self.code = code


class PortUnavailable(MnemoError):
    """An external capability (embedding, rerank, model) could not be reached.

    Always recovered locally by the memory pipeline with a documented fallback.
    """

    def __init__(self, message: str, *, code: str = "PORT_UNAVAILABLE") -> None:
        super().__init__(message, code=code)


class EmbeddingUnavailable(PortUnavailable):
    """Embedding port failed (network, auth, malformed response)."""

    def __init__(self, message: str, *, code: str = "EMBEDDING_UNAVAILABLE") -> None:
        super().__init__(message, code=code)


class RerankUnavailable(PortUnavailable):
    """Rerank port failed. Retrieval falls back to cosine order."""

    def __init__(self, message: str, *, code: str = "RERANK_UNAVAILABLE") -> None:
        super().__init__(message, code=code)


class LLMError(PortUnavailable):
    """Errors from LLM API calls (timeouts, rate limits, failures)."""

    def __init__(self, message: str, *, code: str = "LLM_ERROR") -> None:
        super().__init__(message, code=code)


class MemoryStoreError(MnemoError):
    """Errors in the memory store."""

    def __init__(self, message: str, *, code: str = "MEMORY_STORE_ERROR") -> None:
        super().__init__(message, code=code)


class MemoryNotFoundError(MemoryStoreError):
    """Store operation referenced an id that does not exist."""

    def __init__(self, record_id: str) -> None:
        super().__init__(f"Memory record not found: {record_id}", code="NOT_FOUND")
        self.record_id = record_id


class DimensionMismatchError(MemoryStoreError):
    """Embedding dimension differs from the store's fixed dimension."""

    def __init__(self, expected: int, actual: int) -> None:
        super().__init__(
            f"Embedding dimension mismatch: store uses {expected}, got {actual}",
            code="DIMENSION_MISMATCH",
        )
        self.expected = expected
        self.actual = actual


class ExtractionParseError(MnemoError):
    """Model output did not satisfy the memory operation contract."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="EXTRACTION_PARSE_ERROR")


class SessionError(MnemoError):
    """Errors in conversation session handling."""

    def __init__(self, message: str, *, code: str = "SESSION_ERROR") -> None:
        super().__init__(message, code=code)
