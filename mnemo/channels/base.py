"""Front-end boundary. The core only ever talks to a ChatIO."""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from enum import StrEnum


class CommandResult(StrEnum):
    NOT_A_COMMAND = "not_a_command"
    HANDLED = "handled"
    EXIT = "exit"


class ChatState(StrEnum):
    IDLE = "idle"
    RUNNING = "running"
    CANCELLED = "cancelled"


class ChatIO(ABC):
    """I/O between the engine and one front end (console, web socket, bot...)."""

    @abstractmethod
    async def wait_ready(self) -> None:
        """Block until the front end can accept output."""

    @abstractmethod
    async def read_input(self) -> str | None:
        """Next user message, or None when the front end has closed."""

    async def handle_command(self, text: str) -> CommandResult:
        """Front-end specific commands (/help, /exit...). Default: none."""
        return CommandResult.NOT_A_COMMAND

    @abstractmethod
    async def emit_chunk(self, text: str) -> None:
        """Append a streamed fragment of the response."""

    @abstractmethod
    async def emit_state(self, state: ChatState) -> None: ...

    @abstractmethod
    def cancel_event(self) -> asyncio.Event:
        """Event the front end sets to stop the current response."""
