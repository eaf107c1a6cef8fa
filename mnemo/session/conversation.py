from __future__ import annotations

import bisect
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Literal

Role = Literal["user", "assistant", "system"]
InjectedKind = Literal["recall", "summary"]


@dataclass(frozen=True)
class ConversationMessage:
    """One message in a session.

    ``seq`` is the ordering key (monotonic per session). ``injected`` marks
    pipeline-authored content (recall blocks, summaries) that may be stripped;
    ``pinned`` marks messages that are never evicted.
    """

    seq: int
    role: Role
    content: str
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    injected: bool = False
    pinned: bool = False
    kind: InjectedKind | None = None

    @property
    def is_window_message(self) -> bool:
        """Counted by the sliding window: authored by user/model and evictable."""
        return not self.pinned and not self.injected

    def to_dict(self) -> dict[str, Any]:
        return {
            "seq": self.seq,
            "role": self.role,
            "content": self.content,
            "created_at": self.created_at.isoformat(),
            "injected": self.injected,
            "pinned": self.pinned,
            "kind": self.kind,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ConversationMessage:
        role = data["role"]
        if role not in ("user", "assistant", "system"):
            raise ValueError(f"Invalid message role: {role!r}")
        kind = data.get("kind")
        if kind not in (None, "recall", "summary"):
            raise ValueError(f"Invalid injected kind: {kind!r}")
        return cls(
            seq=int(data["seq"]),
            role=role,
            content=str(data["content"]),
            created_at=datetime.fromisoformat(data["created_at"]),
            injected=bool(data.get("injected", False)),
            pinned=bool(data.get("pinned", False)),
            kind=kind,
        )


class ConversationState:
    """Ordered message list for one session.

    Owned by a single session. Messages are kept sorted by ``seq``; new
    messages always get a seq greater than any previously issued.
    """

    def __init__(self, session_id: str) -> None:
        self.session_id = session_id
        self._messages: list[ConversationMessage] = []
        self._next_seq = 0

    @property
    def messages(self) -> list[ConversationMessage]:
        return list(self._messages)

    @property
    def next_seq(self) -> int:
        return self._next_seq

    def __len__(self) -> int:
        return len(self._messages)

    # -- Append --------------------------------------------------------------

    def append(
        self,
        role: Role,
        content: str,
        *,
        injected: bool = False,
        pinned: bool = False,
        kind: InjectedKind | None = None,
    ) -> ConversationMessage:
        msg = ConversationMessage(
            seq=self._next_seq,
            role=role,
            content=content,
            injected=injected,
            pinned=pinned,
            kind=kind,
        )
        self._next_seq += 1
        self._messages.append(msg)
        return msg

    def ensure_system_prompt(self, prompt: str) -> None:
        """Pin the system prompt as the first message of a fresh session."""
        if not any(m.pinned and m.role == "system" for m in self._messages):
            msg = ConversationMessage(seq=-1, role="system", content=prompt, pinned=True)
            self._messages.insert(0, msg)

    # -- Structural edits (reducer / recaller) -------------------------------

    def insert(self, message: ConversationMessage) -> None:
        """Insert keeping seq order (used to place a summary where a span began)."""
        seqs = [m.seq for m in self._messages]
        self._messages.insert(bisect.bisect_left(seqs, message.seq), message)

    def remove(self, seqs: set[int]) -> list[ConversationMessage]:
        """Remove messages by seq, returning the removed ones in order."""
        removed = [m for m in self._messages if m.seq in seqs]
        self._messages = [m for m in self._messages if m.seq not in seqs]
        return removed

    # -- Queries -------------------------------------------------------------

    def window_messages(self) -> list[ConversationMessage]:
        return [m for m in self._messages if m.is_window_message]

    def injected(self, kind: InjectedKind | None = None) -> list[ConversationMessage]:
        return [
            m for m in self._messages
            if m.injected and (kind is None or m.kind == kind)
        ]

    def latest_recall(self) -> ConversationMessage | None:
        recalls = self.injected("recall")
        return recalls[-1] if recalls else None

    def latest_summary(self) -> ConversationMessage | None:
        summaries = self.injected("summary")
        return summaries[-1] if summaries else None

    def to_model_messages(self) -> list[dict[str, Any]]:
        """Render for the chat model; injected blocks are sent as system messages."""
        return [
            {"role": "system" if m.injected else m.role, "content": m.content}
            for m in self._messages
        ]

    # -- Snapshot ------------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": 1,
            "session_id": self.session_id,
            "next_seq": self._next_seq,
            "messages": [m.to_dict() for m in self._messages],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ConversationState:
        state = cls(session_id=str(data["session_id"]))
        messages = sorted(
            (ConversationMessage.from_dict(m) for m in data.get("messages", [])),
            key=lambda m: m.seq,
        )
        highest = max((m.seq for m in messages), default=-1)
        state._messages = messages
        state._next_seq = max(int(data.get("next_seq", 0)), highest + 1)
        return state
