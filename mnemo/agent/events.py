from __future__ import annotations

from dataclasses import dataclass


@dataclass
class TextChunk:
    """A chunk of text content from the LLM response."""

    content: str


@dataclass
class TurnCancelled:
    """The user stopped generation; ``partial`` is what had been streamed."""

    partial: str


AgentEvent = TextChunk | TurnCancelled
