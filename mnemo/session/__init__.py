"""Conversation sessions: message model, per-session state, crash-recovery snapshots."""

from mnemo.session.conversation import ConversationMessage, ConversationState
from mnemo.session.manager import SessionManager

__all__ = ["ConversationMessage", "ConversationState", "SessionManager"]
