"""Conversation history and revert records."""

from .history import ConversationHistory, HistoryStore
from .schema import RevertRecord, Turn

__all__ = ["ConversationHistory", "HistoryStore", "RevertRecord", "Turn"]
