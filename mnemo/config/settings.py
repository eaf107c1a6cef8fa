from __future__ import annotations

from pathlib import Path
from typing import Self

from dotenv import load_dotenv
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load .env once at module import; every BaseSettings subclass sees the env vars
load_dotenv()

DEFAULT_SYSTEM_PROMPT = """\
You are an AI assistant with long-term memory.

- Relevant memories are injected into the conversation automatically; refer to
  them naturally when they help.
- Earlier parts of a long conversation may be replaced by a summary.
- You never need to save memories yourself; that happens after each turn.
"""


class OpenAISettings(BaseSettings):
    """OpenAI API settings. Env vars prefixed with OPENAI_."""

    model_config = SettingsConfigDict(env_prefix="OPENAI_")

    api_key: str  # required, fail fast if missing
    model: str = "gpt-4o-mini"
    base_url: str | None = None


class EmbeddingSettings(BaseSettings):
    """Embedding port settings. Env vars prefixed with EMBEDDING_.

    api_key / base_url fall back to the OpenAI settings when empty.
    """

    model_config = SettingsConfigDict(env_prefix="EMBEDDING_")

    model: str = "text-embedding-3-small"
    dimensions: int | None = None
    api_key: str = ""
    base_url: str | None = None

    @field_validator("dimensions")
    @classmethod
    def _validate_dimensions(cls, v: int | None) -> int | None:
        if v is not None and v <= 0:
            raise ValueError(f"EMBEDDING_DIMENSIONS must be > 0 (got {v})")
        return v


class RerankSettings(BaseSettings):
    """Rerank port settings. Env vars prefixed with RERANK_."""

    model_config = SettingsConfigDict(env_prefix="RERANK_")

    api_key: str = ""  # empty = rerank disabled
    model: str = "gte-rerank-v2"
    endpoint: str = "https://dashscope.aliyuncs.com/compatible-api/v1/reranks"
    timeout_s: float = 10.0

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)


class MemorySettings(BaseSettings):
    """Memory store, retrieval and saver settings. Env vars prefixed with MEMORY_."""

    model_config = SettingsConfigDict(env_prefix="MEMORY_")

    store_path: Path = Path("workspace/memory_store.json")
    # Cosine similarity at or above which a new fact merges into an existing one
    dedup_threshold: float = 0.85
    # Recall
    recall_max_results: int = 5
    rerank_candidate_multiplier: int = 3
    # Saver
    saver_recent_messages: int = 12
    saver_max_operations: int = 3
    saver_temperature: float = 0.1
    saver_model: str | None = None  # None = use the chat model

    @model_validator(mode="after")
    def _validate(self) -> Self:
        if not (0.0 <= self.dedup_threshold <= 1.0):
            raise ValueError(
                f"dedup_threshold must be in [0.0, 1.0], got {self.dedup_threshold}"
            )
        if self.recall_max_results < 1:
            raise ValueError(
                f"recall_max_results must be >= 1, got {self.recall_max_results}"
            )
        if self.rerank_candidate_multiplier < 1:
            raise ValueError(
                "rerank_candidate_multiplier must be >= 1, "
                f"got {self.rerank_candidate_multiplier}"
            )
        if self.saver_recent_messages < 1:
            raise ValueError(
                f"saver_recent_messages must be >= 1, got {self.saver_recent_messages}"
            )
        if self.saver_max_operations < 1:
            raise ValueError(
                f"saver_max_operations must be >= 1, got {self.saver_max_operations}"
            )
        return self


class WindowSettings(BaseSettings):
    """Sliding window and summarization settings. Env vars prefixed with WINDOW_."""

    model_config = SettingsConfigDict(env_prefix="WINDOW_")

    window_size: int = 20
    buffer_size: int = 5
    summary_timeout_s: float = 30.0
    summary_temperature: float = 0.1
    # Evicted spans are archived here as Markdown; empty = no archive
    archive_dir: Path | None = Path("workspace/history")

    @field_validator("archive_dir", mode="before")
    @classmethod
    def _empty_archive_dir_disables(cls, v: object) -> object:
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @model_validator(mode="after")
    def _validate(self) -> Self:
        if self.window_size < 1:
            raise ValueError(f"window_size must be >= 1, got {self.window_size}")
        if self.buffer_size < 0:
            raise ValueError(f"buffer_size must be >= 0, got {self.buffer_size}")
        if self.summary_timeout_s <= 0:
            raise ValueError(
                f"summary_timeout_s must be > 0, got {self.summary_timeout_s}"
            )
        if not (0.0 <= self.summary_temperature <= 1.0):
            raise ValueError(
                f"summary_temperature must be in [0.0, 1.0], got {self.summary_temperature}"
            )
        return self


class SessionSettings(BaseSettings):
    """Conversation session settings. Env vars prefixed with SESSION_."""

    model_config = SettingsConfigDict(env_prefix="SESSION_")

    snapshot_dir: Path = Path("workspace/sessions")
    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    default_session_id: str = "main"

    @field_validator("default_session_id")
    @classmethod
    def _validate_session_id(cls, v: str) -> str:
        if not v or "/" in v or "\\" in v or v.startswith("."):
            raise ValueError(
                f"SESSION_DEFAULT_SESSION_ID must be a plain file-safe name (got '{v}')"
            )
        return v


class Settings(BaseSettings):
    """Root settings composing all sub-configurations."""

    model_config = SettingsConfigDict(extra="ignore")

    openai: OpenAISettings = Field(default_factory=OpenAISettings)
    embedding: EmbeddingSettings = Field(default_factory=EmbeddingSettings)
    rerank: RerankSettings = Field(default_factory=RerankSettings)
    memory: MemorySettings = Field(default_factory=MemorySettings)
    window: WindowSettings = Field(default_factory=WindowSettings)
    session: SessionSettings = Field(default_factory=SessionSettings)
    log_level: str = "INFO"


def get_settings() -> Settings:
    """Load and validate settings. Raises ValidationError on missing required fields."""
    return Settings()
