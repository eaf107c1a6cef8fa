"""Console entry point: ``mnemo`` / ``python -m mnemo``."""

from __future__ import annotations

import argparse
import asyncio
import sys

import structlog
from pydantic import ValidationError

from mnemo.agent.model_client import OpenAICompatModelClient
from mnemo.agent.pipeline import PipelineOrchestrator
from mnemo.agent.recaller import MemoryRecaller
from mnemo.agent.reducer import SlidingWindowReducer
from mnemo.agent.runner import ChatRunner
from mnemo.agent.saver import MemorySaver
from mnemo.agent.summarizer import ConversationSummarizer
from mnemo.channels.console import ConsoleChatIO
from mnemo.config.settings import Settings, get_settings
from mnemo.infra.logging import setup_logging
from mnemo.memory.dedup import DedupMergePolicy
from mnemo.memory.embedding import OpenAIEmbeddingClient
from mnemo.memory.rerank import HttpRerankClient
from mnemo.memory.retrieval import RetrievalEngine
from mnemo.memory.store import MemoryStore
from mnemo.session.manager import SessionManager

logger = structlog.get_logger()


def build_runner(settings: Settings, io: ConsoleChatIO, session_id: str) -> ChatRunner:
    """Wire ports, memory, pipeline and front end together."""
    model = settings.openai.model
    model_client = OpenAICompatModelClient(
        api_key=settings.openai.api_key, base_url=settings.openai.base_url
    )
    embedder = OpenAIEmbeddingClient(
        api_key=settings.embedding.api_key or settings.openai.api_key,
        model=settings.embedding.model,
        base_url=settings.embedding.base_url or settings.openai.base_url,
        dimensions=settings.embedding.dimensions,
    )
    reranker = None
    if settings.rerank.enabled:
        reranker = HttpRerankClient(
            settings.rerank.api_key,
            model=settings.rerank.model,
            endpoint=settings.rerank.endpoint,
            timeout_s=settings.rerank.timeout_s,
        )
    else:
        logger.info("rerank_disabled", msg="RERANK_API_KEY empty; cosine order only")

    store = MemoryStore(settings.memory.store_path, embedder)
    store.load()
    retrieval = RetrievalEngine(store, embedder, settings.memory, reranker=reranker)
    policy = DedupMergePolicy(store, embedder, settings.memory)
    saver = MemorySaver(
        model_client, store, policy, settings.memory, model, retrieval=retrieval
    )
    summarizer = ConversationSummarizer(model_client, settings.window, model)
    reducer = SlidingWindowReducer(summarizer, settings.window)
    sessions = SessionManager(settings.session.snapshot_dir, settings.session.system_prompt)

    orchestrator = PipelineOrchestrator(
        model_client,
        sessions,
        MemoryRecaller(retrieval),
        saver,
        reducer,
        model,
        notifier=io,
    )
    return ChatRunner(io, orchestrator, session_id)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="mnemo", description="Chat with long-term memory.")
    parser.add_argument("--session", help="Session id (default: SESSION_DEFAULT_SESSION_ID)")
    parser.add_argument("--json-logs", action="store_true", help="Emit JSON logs on stderr")
    args = parser.parse_args(argv)

    try:
        settings = get_settings()
    except ValidationError as e:
        print(f"Configuration error:\n{e}", file=sys.stderr)
        return 2

    setup_logging(json_output=args.json_logs, log_level=settings.log_level, file=sys.stderr)
    session_id = args.session or settings.session.default_session_id

    runner = build_runner(settings, ConsoleChatIO(), session_id)
    try:
        asyncio.run(runner.run())
    except KeyboardInterrupt:
        pass
    return 0


if __name__ == "__main__":
    sys.exit(main())
