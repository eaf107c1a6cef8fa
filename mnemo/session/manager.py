from __future__ import annotations

import asyncio
import json
import re
from pathlib import Path

import structlog

from mnemo.infra.atomic import atomic_write_json
from mnemo.infra.errors import SessionError
from mnemo.session.conversation import ConversationState

logger = structlog.get_logger()

_SESSION_ID_RE = re.compile(r"^[A-Za-z0-9_\-:.]+$")


class SessionManager:
    """Conversation states with in-memory cache and JSON snapshot persistence.

    Snapshots are for crash recovery: one file per session under
    ``snapshot_dir``, rewritten atomically after each turn and each reduction.
    """

    def __init__(self, snapshot_dir: Path, system_prompt: str | None = None) -> None:
        self._snapshot_dir = snapshot_dir
        self._system_prompt = system_prompt
        self._sessions: dict[str, ConversationState] = {}

    def snapshot_path(self, session_id: str) -> Path:
        if not _SESSION_ID_RE.match(session_id) or session_id.startswith("."):
            raise SessionError(f"Invalid session id: {session_id!r}", code="INVALID_SESSION_ID")
        return self._snapshot_dir / f"{session_id}.json"

    def get_or_create(self, session_id: str) -> ConversationState:
        """Get a cached state, else resume from snapshot, else start fresh."""
        state = self._sessions.get(session_id)
        if state is None:
            state = self._load(session_id)
            if self._system_prompt:
                state.ensure_system_prompt(self._system_prompt)
            self._sessions[session_id] = state
        return state

    def _load(self, session_id: str) -> ConversationState:
        path = self.snapshot_path(session_id)
        if not path.exists():
            logger.info("session_created", session_id=session_id)
            return ConversationState(session_id)

        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            state = ConversationState.from_dict(data)
        except (OSError, json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            logger.error(
                "session_snapshot_corrupt",
                session_id=session_id,
                path=str(path),
                error=str(e),
                msg="Snapshot unreadable; starting an empty conversation",
            )
            return ConversationState(session_id)

        if state.session_id != session_id:
            logger.error(
                "session_snapshot_mismatch",
                session_id=session_id,
                snapshot_session_id=state.session_id,
            )
            return ConversationState(session_id)

        logger.info("session_resumed", session_id=session_id, messages=len(state))
        return state

    async def save(self, session_id: str) -> None:
        """Atomically persist the session snapshot.

        The payload is captured synchronously so a concurrent mutation cannot
        tear the written snapshot.
        """
        state = self._sessions.get(session_id)
        if state is None:
            return
        payload = state.to_dict()
        await asyncio.to_thread(atomic_write_json, self.snapshot_path(session_id), payload)
        logger.debug("session_saved", session_id=session_id, messages=len(payload["messages"]))

    async def save_all(self) -> None:
        for session_id in list(self._sessions):
            await self.save(session_id)
