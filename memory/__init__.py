"""Conversation persistence and memory."""

from .models import (
    ActionInvocation,
    Conversation,
    ConversationMessage,
    ConversationStatus,
    InvocationStatus,
    MemoryItem,
    MemoryObject,
)
from .sqlite_store import SQLiteConversationStore
from .context_manager import ConversationContextManager

__all__ = [
    "ActionInvocation",
    "Conversation",
    "ConversationMessage",
    "ConversationStatus",
    "InvocationStatus",
    "MemoryItem",
    "MemoryObject",
    "SQLiteConversationStore",
    "ConversationContextManager",
]
