"""Per-turn orchestration of the memory pipeline.

Flow: wait for previous post-processing → append user message → recall →
      stream model response → append response → schedule post-processing

Post-processing (snapshot, saver, reducer, snapshot) runs in the background
on a single-flight queue per session, so the user gets the response as soon
as it is generated and the next turn's recall still sees a settled store
and a reduced window.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import TYPE_CHECKING

import structlog

from mnemo.agent.events import AgentEvent, TextChunk, TurnCancelled
from mnemo.agent.notifier import NullNotifier, StatusNotifier
from mnemo.agent.reducer import WindowState
from mnemo.infra.errors import LLMError

if TYPE_CHECKING:
    from mnemo.agent.model_client import ModelClient
    from mnemo.agent.recaller import MemoryRecaller
    from mnemo.agent.reducer import SlidingWindowReducer
    from mnemo.agent.saver import MemorySaver
    from mnemo.session.conversation import ConversationState
    from mnemo.session.manager import SessionManager

logger = structlog.get_logger()

APOLOGY_TEXT = "Sorry, I couldn't generate a response just now. Please try again."


class SessionQueue:
    """Single-flight background work, keyed by session.

    Jobs for one key run strictly one after another; different keys are
    independent. Each key holds at most one tail task.
    """

    def __init__(self) -> None:
        self._tails: dict[str, asyncio.Task[None]] = {}

    def busy(self, key: str) -> bool:
        task = self._tails.get(key)
        return task is not None and not task.done()

    def submit(self, key: str, job: Callable[[], Awaitable[None]]) -> asyncio.Task[None]:
        """Chain ``job`` after whatever is already queued for ``key``."""
        previous = self._tails.get(key)

        async def _run() -> None:
            if previous is not None and not previous.done():
                await asyncio.wait({previous})
            await job()

        task = asyncio.create_task(_run(), name=f"post-process:{key}")
        self._tails[key] = task
        task.add_done_callback(lambda t: self._forget(key, t))
        return task

    def _forget(self, key: str, task: asyncio.Task[None]) -> None:
        if self._tails.get(key) is task:
            del self._tails[key]
        if not task.cancelled() and task.exception() is not None:
            logger.error(
                "post_process_task_failed",
                session_id=key,
                error=str(task.exception()),
            )

    async def wait_idle(self, key: str) -> None:
        """Wait for queued work on ``key``.

        Shielded: cancelling the waiter does not cancel the queued work.
        """
        task = self._tails.get(key)
        if task is None or task.done():
            return
        await asyncio.shield(asyncio.wait({task}))

    async def drain(self, key: str | None = None) -> None:
        if key is not None:
            await self.wait_idle(key)
            return
        while self._tails:
            await asyncio.wait(set(self._tails.values()))


_END = object()


async def _next_chunk(iterator: AsyncIterator[str]) -> object:
    try:
        return await anext(iterator)
    except StopAsyncIteration:
        return _END


async def _until_cancelled(
    stream: AsyncIterator[str], cancel: asyncio.Event | None
) -> AsyncIterator[str]:
    """Relay ``stream`` until it ends or ``cancel`` is set.

    The cancel event is raced against each pending chunk, so stopping takes
    effect without waiting for the provider's next token.
    """
    iterator = aiter(stream)
    if cancel is None:
        async for chunk in iterator:
            yield chunk
        return

    cancel_wait = asyncio.create_task(cancel.wait())
    pending: asyncio.Task[object] | None = None
    try:
        while not cancel.is_set():
            pending = asyncio.create_task(_next_chunk(iterator))
            await asyncio.wait({pending, cancel_wait}, return_when=asyncio.FIRST_COMPLETED)
            if not pending.done():
                break
            chunk = pending.result()
            pending = None
            if chunk is _END:
                break
            yield chunk  # type: ignore[misc]
    finally:
        cancel_wait.cancel()
        if pending is not None and not pending.done():
            # The stream must be idle before anyone closes it
            pending.cancel()
            await asyncio.wait({pending})


class PipelineOrchestrator:
    """Drives one conversation turn through recall, generation and memory upkeep.

    Memory failures are logged and absorbed here; only the model's own
    failure is visible to the user, as an apology chunk.
    """

    def __init__(
        self,
        model_client: ModelClient,
        sessions: SessionManager,
        recaller: MemoryRecaller,
        saver: MemorySaver,
        reducer: SlidingWindowReducer,
        model: str,
        *,
        notifier: StatusNotifier | None = None,
        temperature: float | None = None,
    ) -> None:
        self._model_client = model_client
        self._sessions = sessions
        self._recaller = recaller
        self._saver = saver
        self._reducer = reducer
        self._model = model
        self._notifier = notifier or NullNotifier()
        self._temperature = temperature
        self._queue = SessionQueue()

    async def handle_message(
        self,
        session_id: str,
        content: str,
        *,
        cancel: asyncio.Event | None = None,
    ) -> AsyncIterator[AgentEvent]:
        """Handle one user message and yield response events.

        Yields TextChunk as the response streams, then TurnCancelled if the
        cancel event stopped it. Partial output of a stopped turn is kept
        and post-processed like a complete one.
        """
        # 0. Previous turn's memory upkeep must settle before this recall
        await self._queue.wait_idle(session_id)

        conversation = self._sessions.get_or_create(session_id)

        # 1. Append user message
        conversation.append("user", content)

        # 2. Recall
        try:
            await self._recaller.recall(conversation, content)
        except Exception:
            logger.exception("memory_recall_failed", session_id=session_id)

        # 3. Stream the model response
        collected: list[str] = []
        stream = self._model_client.chat_stream(
            conversation.to_model_messages(), self._model, temperature=self._temperature
        )
        relay = _until_cancelled(stream, cancel)
        try:
            async for chunk in relay:
                collected.append(chunk)
                yield TextChunk(content=chunk)
        except LLMError as e:
            logger.error(
                "response_failed",
                session_id=session_id,
                error=str(e),
                partial_chars=sum(len(c) for c in collected),
            )
            self._schedule(session_id, conversation, run_saver=False)
            yield TextChunk(content=APOLOGY_TEXT)
            return
        except (asyncio.CancelledError, GeneratorExit):
            # Consumer went away mid-stream
            self._finish_turn(session_id, conversation, "".join(collected), cancelled=True)
            raise
        finally:
            await relay.aclose()
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                await aclose()

        cancelled = cancel is not None and cancel.is_set()
        text = "".join(collected)
        # 4-6. Append response, schedule upkeep and snapshot
        self._finish_turn(session_id, conversation, text, cancelled=cancelled)
        if cancelled:
            yield TurnCancelled(partial=text)

    def _finish_turn(
        self,
        session_id: str,
        conversation: ConversationState,
        text: str,
        *,
        cancelled: bool,
    ) -> None:
        if text:
            conversation.append("assistant", text)
        logger.info(
            "response_complete",
            session_id=session_id,
            chars=len(text),
            cancelled=cancelled,
        )
        self._schedule(session_id, conversation, run_saver=bool(text))

    def _schedule(
        self, session_id: str, conversation: ConversationState, *, run_saver: bool
    ) -> None:
        self._queue.submit(
            session_id,
            lambda: self._post_process(session_id, conversation, run_saver=run_saver),
        )

    async def _post_process(
        self, session_id: str, conversation: ConversationState, *, run_saver: bool
    ) -> None:
        await self._save_snapshot(session_id)
        notified = False

        # Nothing new to learn from a turn without a response
        if run_saver:
            self._notifier.status(session_id, "Saving memories...")
            notified = True
            try:
                await self._saver.save(conversation.window_messages(), session_id=session_id)
            except Exception:
                logger.exception("memory_saver_crashed", session_id=session_id)

        # The user message was appended either way, so the window may be over
        if self._reducer.state(conversation) is WindowState.OVER_BUFFER:
            self._notifier.status(session_id, "Summarizing earlier conversation...")
            notified = True
            try:
                result = await self._reducer.reduce(conversation)
            except Exception:
                logger.exception("window_reduce_failed", session_id=session_id)
            else:
                if result.reduced:
                    await self._save_snapshot(session_id)

        if notified:
            self._notifier.status(session_id, "")

    async def _save_snapshot(self, session_id: str) -> None:
        try:
            await self._sessions.save(session_id)
        except OSError:
            logger.exception("session_snapshot_failed", session_id=session_id)

    async def drain(self, session_id: str | None = None) -> None:
        """Wait for outstanding post-processing (one session, or all)."""
        await self._queue.drain(session_id)

    async def close(self) -> None:
        await self.drain()
        await self._sessions.save_all()
        logger.info("pipeline_closed")
