"""Sliding-window reducer: bound the conversation by evicting its oldest span.

Window messages are the non-pinned, non-injected user/assistant messages.
Once they exceed window_size + buffer_size the reducer goes OVER_BUFFER and:
1. strips stale injected blocks (every recall except the latest)
2. evicts the oldest window messages down to window_size
3. replaces the evicted span with one rolling summary, inserted where the
   span began; previous summaries are folded into it
4. returns to NORMAL

If summarization fails the span is dropped and the previous summary stays.
When archive_dir is set, every evicted span is also written verbatim to a
Markdown history file; a failed write is logged and never blocks reduction.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from pathlib import Path
from typing import TYPE_CHECKING

import structlog

from mnemo.infra.atomic import atomic_write_text
from mnemo.session.conversation import ConversationMessage

if TYPE_CHECKING:
    from mnemo.agent.summarizer import ConversationSummarizer
    from mnemo.config.settings import WindowSettings
    from mnemo.session.conversation import ConversationState

logger = structlog.get_logger()

SUMMARY_HEADER = "[Summary of earlier conversation]\n"


class WindowState(StrEnum):
    NORMAL = "normal"
    OVER_BUFFER = "over_buffer"


@dataclass
class ReductionResult:
    """What one reduce() call removed and inserted."""

    evicted: list[ConversationMessage] = field(default_factory=list)
    summary: ConversationMessage | None = None
    stripped: list[ConversationMessage] = field(default_factory=list)
    archived: Path | None = None

    @property
    def reduced(self) -> bool:
        return bool(self.evicted or self.stripped)


def summary_text(message: ConversationMessage) -> str:
    """Summary body without the injected header."""
    return message.content.removeprefix(SUMMARY_HEADER)


def render_history(
    session_id: str, messages: list[ConversationMessage], moment: datetime
) -> str:
    """Markdown transcript of an evicted span."""
    lines = [f"# Conversation history: {session_id} ({moment:%Y-%m-%d %H:%M:%S} UTC)", ""]
    for m in messages:
        if not m.content.strip():
            continue
        lines += [f"### {m.role}", m.content.strip(), ""]
    return "\n".join(lines)


class SlidingWindowReducer:
    def __init__(self, summarizer: ConversationSummarizer, settings: WindowSettings) -> None:
        self._summarizer = summarizer
        self._window_size = settings.window_size
        self._buffer_size = settings.buffer_size
        self._archive_dir = settings.archive_dir

    @property
    def threshold(self) -> int:
        return self._window_size + self._buffer_size

    def state(self, conversation: ConversationState) -> WindowState:
        if len(conversation.window_messages()) > self.threshold:
            return WindowState.OVER_BUFFER
        return WindowState.NORMAL

    async def reduce(self, conversation: ConversationState) -> ReductionResult:
        """Run one reduction if the window is over buffer; no-op otherwise."""
        if self.state(conversation) is WindowState.NORMAL:
            return ReductionResult()

        window = conversation.window_messages()
        # Span is captured before any mutation
        evicted = window[: len(window) - self._window_size]

        latest_recall = conversation.latest_recall()
        previous_summaries = conversation.injected("summary")
        stale = [
            m for m in conversation.injected()
            if m.kind != "summary" and (latest_recall is None or m.seq != latest_recall.seq)
        ]

        stripped = conversation.remove({m.seq for m in stale})
        conversation.remove({m.seq for m in evicted})
        archived = await self._archive(conversation.session_id, evicted)

        latest_summary = conversation.latest_summary()
        previous = summary_text(latest_summary) if latest_summary else None
        text = await self._summarizer.summarize(evicted, previous_summary=previous)

        summary: ConversationMessage | None = None
        if text is not None:
            stripped.extend(conversation.remove({m.seq for m in previous_summaries}))
            summary = ConversationMessage(
                seq=evicted[0].seq,
                role="system",
                content=SUMMARY_HEADER + text,
                created_at=datetime.now(UTC),
                injected=True,
                kind="summary",
            )
            conversation.insert(summary)

        logger.info(
            "window_reduced",
            session_id=conversation.session_id,
            evicted=len(evicted),
            stripped=len(stripped),
            summarized=summary is not None,
            archived=str(archived) if archived else None,
            window=len(conversation.window_messages()),
        )
        return ReductionResult(
            evicted=evicted, summary=summary, stripped=stripped, archived=archived
        )

    async def _archive(
        self, session_id: str, evicted: list[ConversationMessage]
    ) -> Path | None:
        if self._archive_dir is None:
            return None
        now = datetime.now(UTC)
        path = self._archive_dir / f"{session_id}_{now:%Y-%m-%d_%H-%M-%S}_{evicted[0].seq}.md"
        try:
            await asyncio.to_thread(
                atomic_write_text, path, render_history(session_id, evicted, now)
            )
        except OSError as e:
            logger.warning(
                "history_archive_failed",
                session_id=session_id,
                path=str(path),
                error=str(e),
            )
            return None
        logger.info("history_archived", session_id=session_id, path=str(path), messages=len(evicted))
        return path
