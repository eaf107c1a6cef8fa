"""Per-turn recall: inject the memories relevant to the current user message."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING

import structlog

from mnemo.infra.errors import PortUnavailable

if TYPE_CHECKING:
    from mnemo.memory.contracts import RetrievalResult
    from mnemo.memory.retrieval import RetrievalEngine
    from mnemo.session.conversation import ConversationMessage, ConversationState

logger = structlog.get_logger()

RECALL_HEADER = (
    "[Long-term memory] Relevant information retrieved automatically from "
    "memory. Refer to it naturally when replying:"
)


def _plural(n: int, unit: str) -> str:
    return f"{n} {unit}{'' if n == 1 else 's'} ago"


def format_age(moment: datetime, now: datetime | None = None) -> str:
    """Human relative age: just now / N minutes / N hours / N days ago."""
    now = now or datetime.now(UTC)
    seconds = max((now - moment).total_seconds(), 0.0)
    if seconds < 60:
        return "just now"
    if seconds < 3600:
        return _plural(int(seconds // 60), "minute")
    if seconds < 86400:
        return _plural(int(seconds // 3600), "hour")
    return _plural(int(seconds // 86400), "day")


def format_recall_block(results: list[RetrievalResult], now: datetime | None = None) -> str:
    lines = [RECALL_HEADER, ""]
    for r in results:
        rec = r.record
        lines.append(
            f"- [{rec.category}] (importance {rec.importance}, "
            f"{format_age(rec.updated_at, now)}) {rec.text}"
        )
    return "\n".join(lines)


class MemoryRecaller:
    """Replaces the conversation's recall block each turn.

    At most one recall block is live: the previous one is always removed,
    including when retrieval fails, so stale memories never linger.
    """

    def __init__(self, retrieval: RetrievalEngine) -> None:
        self._retrieval = retrieval

    async def recall(
        self, conversation: ConversationState, query: str
    ) -> ConversationMessage | None:
        previous = conversation.injected("recall")
        if previous:
            conversation.remove({m.seq for m in previous})

        try:
            results = await self._retrieval.retrieve(query)
        except PortUnavailable as e:
            logger.warning(
                "memory_recall_unavailable",
                session_id=conversation.session_id,
                error=str(e),
                code=e.code,
            )
            return None

        if not results:
            logger.debug("memory_recall_empty", session_id=conversation.session_id)
            return None

        block = conversation.append(
            "system",
            format_recall_block(results),
            injected=True,
            kind="recall",
        )
        logger.info(
            "memory_recalled",
            session_id=conversation.session_id,
            count=len(results),
            record_ids=[r.record.id for r in results],
        )
        return block
