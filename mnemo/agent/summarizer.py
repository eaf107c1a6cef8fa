"""Rolling summary of the conversation span evicted by the sliding window."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from mnemo.agent.model_client import ModelClient
    from mnemo.config.settings import WindowSettings
    from mnemo.session.conversation import ConversationMessage

logger = structlog.get_logger()

_SUMMARY_PROMPT = """\
You are a conversation compactor. The oldest part of a conversation is about to \
be dropped from context; write the summary that will replace it.

Previous summary (if any):
{previous_summary}

Conversation to compress:
{conversation}

Rules:
- Write a concise bullet list covering confirmed facts, decisions made, \
user preferences and unfinished items.
- Merge the previous summary in; drop anything the new conversation supersedes.
- Each bullet should be one sentence.
- Do NOT include casual greetings or acknowledgments.
- Output ONLY the bullet list.
"""


def render_span(messages: list[ConversationMessage]) -> str:
    """Render messages as ``[role]: content`` lines."""
    return "\n".join(f"[{m.role}]: {m.content}" for m in messages if m.content)


class ConversationSummarizer:
    """Summarize an evicted span, folding in the previous rolling summary.

    Never raises: model failure, timeout or empty output all return None
    and the caller drops the span without a summary.
    """

    def __init__(
        self,
        model_client: ModelClient,
        settings: WindowSettings,
        model: str,
    ) -> None:
        self._model_client = model_client
        self._settings = settings
        self._model = model

    async def summarize(
        self,
        evicted: list[ConversationMessage],
        previous_summary: str | None = None,
    ) -> str | None:
        conversation_text = render_span(evicted)
        if not conversation_text:
            return None

        prompt = _SUMMARY_PROMPT.format(
            previous_summary=previous_summary or "(none)",
            conversation=conversation_text,
        )
        messages = [
            {"role": "system", "content": "You are a precise conversation summarizer."},
            {"role": "user", "content": prompt},
        ]

        try:
            response = await asyncio.wait_for(
                self._model_client.chat(
                    messages, self._model, temperature=self._settings.summary_temperature
                ),
                timeout=self._settings.summary_timeout_s,
            )
        except Exception as e:
            logger.warning(
                "summary_failed",
                error=str(e) or type(e).__name__,
                evicted=len(evicted),
            )
            return None

        summary = (response or "").strip()
        if not summary:
            logger.warning("summary_empty", evicted=len(evicted))
            return None

        logger.info("summary_generated", evicted=len(evicted), chars=len(summary))
        return summary
