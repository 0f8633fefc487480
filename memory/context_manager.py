"""Conversation context: the recent message window and periodic re-indexing."""

import logging
from typing import List, Optional

from .sqlite_store import SQLiteConversationStore
from llm.base_client import Message
from retrieval.vector_store import BaseVectorStore, VectorRecord, chat_collection_name

logger = logging.getLogger(__name__)


class ConversationContextManager:
    """Builds the minimal history sent with every model call."""

    def __init__(
        self,
        store: SQLiteConversationStore,
        vector_store: Optional[BaseVectorStore] = None,
        window_size: int = 6,
        reindex_every: int = 10
    ):
        """
        Initialize context manager.

        Args:
            store: Conversation store
            vector_store: Where conversation history is indexed; re-indexing is skipped without one
            window_size: Number of recent messages in the window
            reindex_every: Re-index when the message count is a multiple of this
        """
        self.store = store
        self.vector_store = vector_store
        self.window_size = window_size
        self.reindex_every = reindex_every

    async def get_recent_window(self, conversation_id: str, exclude_message_id: Optional[int] = None) -> List[Message]:
        """
        Get the last N messages as chat history, oldest first.

        Args:
            conversation_id: Conversation ID
            exclude_message_id: Message to leave out (the current user message,
                which is sent separately as the prompt)
        """
        rows = await self.store.get_recent_messages(conversation_id, limit=self.window_size + 1)
        rows = [m for m in rows if m.message_id != exclude_message_id][-self.window_size:]
        return [Message(role=m.role, content=m.text) for m in rows]

    def should_reindex(self, message_count: int) -> bool:
        return (
            self.vector_store is not None
            and self.reindex_every > 0
            and message_count > 0
            and message_count % self.reindex_every == 0
        )

    async def reindex_conversation(self, conversation_id: str) -> int:
        """
        Upsert every message of the conversation into its chat collection.

        Returns:
            Number of documents written
        """
        if self.vector_store is None:
            return 0

        messages = await self.store.get_messages(conversation_id, with_invocations=False)
        records = [
            VectorRecord(
                id=f"msg-{m.message_id}",
                text=m.text,
                metadata={
                    "messageId": m.message_id,
                    "role": m.role,
                    "timestamp": m.created_at.isoformat(),
                },
            )
            for m in messages
            if m.text
        ]
        collection = chat_collection_name(conversation_id)
        await self.vector_store.get_or_create_collection(collection, {"conversation_id": conversation_id})
        written = await self.vector_store.upsert_many(collection, records)
        logger.info(f"Re-indexed {written} messages of conversation {conversation_id}")
        return written
