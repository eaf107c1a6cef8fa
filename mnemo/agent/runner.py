from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from mnemo.agent.events import TextChunk, TurnCancelled
from mnemo.channels.base import ChatState, CommandResult

if TYPE_CHECKING:
    from mnemo.agent.pipeline import PipelineOrchestrator
    from mnemo.channels.base import ChatIO

logger = structlog.get_logger()


class ChatRunner:
    """Read-eval loop between one ChatIO front end and the orchestrator."""

    def __init__(
        self,
        io: ChatIO,
        orchestrator: PipelineOrchestrator,
        session_id: str,
    ) -> None:
        self._io = io
        self._orchestrator = orchestrator
        self._session_id = session_id

    async def run(self) -> None:
        """Run until the front end closes or asks to exit, then drain and save."""
        await self._io.wait_ready()
        logger.info("chat_runner_started", session_id=self._session_id)
        try:
            while True:
                text = await self._io.read_input()
                if text is None:
                    break
                if not text.strip():
                    continue

                command = await self._io.handle_command(text)
                if command is CommandResult.EXIT:
                    break
                if command is CommandResult.HANDLED:
                    continue

                await self.run_turn(text)
        finally:
            await self._orchestrator.close()
            logger.info("chat_runner_stopped", session_id=self._session_id)

    async def run_turn(self, text: str) -> None:
        cancel = self._io.cancel_event()
        await self._io.emit_state(ChatState.RUNNING)
        final_state = ChatState.IDLE
        try:
            async for event in self._orchestrator.handle_message(
                self._session_id, text, cancel=cancel
            ):
                if isinstance(event, TextChunk):
                    await self._io.emit_chunk(event.content)
                elif isinstance(event, TurnCancelled):
                    final_state = ChatState.CANCELLED
        finally:
            await self._io.emit_state(final_state)
