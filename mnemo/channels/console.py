"""Console channel: stdin/stdout chat for local use.

Ctrl-C while a response is streaming stops that response; Ctrl-D or /exit
quits.
"""

from __future__ import annotations

import asyncio
import signal
import sys
from typing import TextIO

import structlog

from mnemo.agent.notifier import StatusNotifier
from mnemo.channels.base import ChatIO, ChatState, CommandResult

logger = structlog.get_logger()

_HELP = """\
Commands:
  /help   show this help
  /exit   quit (Ctrl-D also works)
Press Ctrl-C while a response is streaming to stop it.
"""


class ConsoleChatIO(ChatIO, StatusNotifier):
    def __init__(self, stdin: TextIO | None = None, stdout: TextIO | None = None) -> None:
        self._stdin = stdin or sys.stdin
        self._stdout = stdout or sys.stdout
        self._cancel = asyncio.Event()
        self._sigint_installed = False

    async def wait_ready(self) -> None:
        self._write("mnemo ready. Type /help for commands.\n")

    async def read_input(self) -> str | None:
        self._write("\n> ")
        line = await asyncio.to_thread(self._stdin.readline)
        if not line:
            return None
        return line.rstrip("\n")

    async def handle_command(self, text: str) -> CommandResult:
        command = text.strip().lower()
        if command in ("/exit", "/quit"):
            return CommandResult.EXIT
        if command == "/help":
            self._write(_HELP)
            return CommandResult.HANDLED
        return CommandResult.NOT_A_COMMAND

    async def emit_chunk(self, text: str) -> None:
        self._write(text)

    async def emit_state(self, state: ChatState) -> None:
        if state is ChatState.RUNNING:
            self._install_sigint()
        else:
            self._remove_sigint()
        if state is ChatState.CANCELLED:
            self._write("\n[stopped]")

    def cancel_event(self) -> asyncio.Event:
        self._cancel = asyncio.Event()
        return self._cancel

    def status(self, session_id: str, text: str) -> None:
        if text:
            logger.debug("pipeline_status", session_id=session_id, status=text)

    def _write(self, text: str) -> None:
        self._stdout.write(text)
        self._stdout.flush()

    def _install_sigint(self) -> None:
        if self._sigint_installed:
            return
        try:
            asyncio.get_running_loop().add_signal_handler(signal.SIGINT, self._cancel.set)
        except (NotImplementedError, RuntimeError):
            # No signal handlers on this platform/loop; Ctrl-C falls back to default
            return
        self._sigint_installed = True

    def _remove_sigint(self) -> None:
        if not self._sigint_installed:
            return
        asyncio.get_running_loop().remove_signal_handler(signal.SIGINT)
        self._sigint_installed = False
