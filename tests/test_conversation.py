"""Tests for ConversationState and SessionManager snapshots."""

from __future__ import annotations

import json

import pytest

from mnemo.infra.errors import SessionError
from mnemo.session.conversation import ConversationMessage, ConversationState
from mnemo.session.manager import SessionManager


class TestConversationState:
    def test_append_assigns_increasing_seq(self):
        state = ConversationState("s1")
        a = state.append("user", "a")
        b = state.append("assistant", "b")
        assert (a.seq, b.seq) == (0, 1)
        assert state.next_seq == 2

    def test_system_prompt_pinned_once_at_front(self):
        state = ConversationState("s1")
        state.append("user", "hi")
        state.ensure_system_prompt("prompt")
        state.ensure_system_prompt("prompt")

        assert len(state) == 2
        assert state.messages[0].pinned is True
        assert state.messages[0].role == "system"

    def test_window_excludes_pinned_and_injected(self):
        state = ConversationState("s1")
        state.ensure_system_prompt("prompt")
        state.append("user", "hi")
        state.append("system", "memories", injected=True, kind="recall")
        state.append("assistant", "hello")

        assert [m.content for m in state.window_messages()] == ["hi", "hello"]
        assert state.latest_recall().content == "memories"
        assert state.latest_summary() is None

    def test_insert_keeps_seq_order(self):
        state = ConversationState("s1")
        state.append("user", "a")
        state.append("user", "b")
        state.append("user", "c")
        state.remove({0, 1})
        state.insert(ConversationMessage(seq=0, role="system", content="summary", injected=True, kind="summary"))

        assert [m.content for m in state.messages] == ["summary", "c"]

    def test_model_messages_render_injected_as_system(self):
        state = ConversationState("s1")
        state.append("user", "hi")
        state.append("user", "memory block", injected=True, kind="recall")

        assert state.to_model_messages() == [
            {"role": "user", "content": "hi"},
            {"role": "system", "content": "memory block"},
        ]

    def test_round_trip_preserves_flags_and_seq(self):
        state = ConversationState("s1")
        state.ensure_system_prompt("prompt")
        state.append("user", "hi")
        state.append("system", "summary", injected=True, kind="summary")

        restored = ConversationState.from_dict(json.loads(json.dumps(state.to_dict())))

        assert restored.messages == state.messages
        assert restored.next_seq == state.next_seq

    def test_invalid_role_rejected(self):
        with pytest.raises(ValueError, match="Invalid message role"):
            ConversationMessage.from_dict(
                {"seq": 0, "role": "tool", "content": "x", "created_at": "2026-01-01T00:00:00+00:00"}
            )


@pytest.mark.asyncio
class TestSessionManager:
    async def test_new_session_gets_system_prompt(self, tmp_path):
        manager = SessionManager(tmp_path, "You are helpful.")
        state = manager.get_or_create("main")

        assert state.messages[0].content == "You are helpful."
        assert manager.get_or_create("main") is state

    async def test_save_and_resume(self, tmp_path):
        manager = SessionManager(tmp_path, "prompt")
        state = manager.get_or_create("main")
        state.append("user", "remember me")
        await manager.save("main")

        resumed = SessionManager(tmp_path, "prompt").get_or_create("main")

        assert [m.content for m in resumed.messages] == ["prompt", "remember me"]
        assert resumed.next_seq == state.next_seq

    async def test_corrupt_snapshot_starts_empty(self, tmp_path):
        (tmp_path / "main.json").write_text("{broken", encoding="utf-8")

        state = SessionManager(tmp_path, "prompt").get_or_create("main")

        assert [m.content for m in state.messages] == ["prompt"]

    async def test_snapshot_for_other_session_ignored(self, tmp_path):
        other = ConversationState("other")
        other.append("user", "not yours")
        (tmp_path / "main.json").write_text(json.dumps(other.to_dict()), encoding="utf-8")

        state = SessionManager(tmp_path).get_or_create("main")

        assert len(state) == 0

    async def test_invalid_session_id_rejected(self, tmp_path):
        manager = SessionManager(tmp_path)
        with pytest.raises(SessionError):
            manager.get_or_create("../escape")
