"""Tests for the recent message window and conversation re-indexing."""

import asyncio
import shutil
import tempfile
from pathlib import Path

from config.settings import Settings
from memory.context_manager import ConversationContextManager
from memory.sqlite_store import SQLiteConversationStore
from orchestrator import ConversationOrchestrator
from retrieval.token_catalog import TokenCatalog, TokenRecord
from retrieval.vector_store import LocalVectorStore, chat_collection_name
from tests.fakes import SOL_ADDRESS, FakeEmbedder, FakeLLMClient, FakeMarketData, RoutedLLM, text_response


class TestConversationContextManager:
    """Window selection and chat collection upserts."""

    def setup_method(self):
        """Set up test fixtures."""
        self.tmpdir = tempfile.mkdtemp()
        self.store = SQLiteConversationStore(db_path=str(Path(self.tmpdir) / "ctx.db"))
        self.vectors = LocalVectorStore(FakeEmbedder())
        self.manager = ConversationContextManager(self.store, self.vectors, window_size=3, reindex_every=4)
        self.conversation_id = asyncio.run(self.store.create_conversation("user-1")).conversation_id

    def teardown_method(self):
        shutil.rmtree(self.tmpdir, ignore_errors=True)

    def _add(self, role, text):
        return asyncio.run(self.store.add_message(self.conversation_id, role, text, token_estimate=1))

    def test_window_is_last_n_oldest_first(self):
        for i in range(5):
            self._add("user" if i % 2 == 0 else "assistant", f"message {i}")
        window = asyncio.run(self.manager.get_recent_window(self.conversation_id))
        assert [m.content for m in window] == ["message 2", "message 3", "message 4"]
        assert [m.role for m in window] == ["user", "assistant", "user"]

    def test_window_excludes_current_message(self):
        for i in range(4):
            self._add("user", f"message {i}")
        current = self._add("user", "current")
        window = asyncio.run(self.manager.get_recent_window(self.conversation_id, exclude_message_id=current.message_id))
        assert [m.content for m in window] == ["message 1", "message 2", "message 3"]

    def test_should_reindex(self):
        assert not self.manager.should_reindex(0)
        assert not self.manager.should_reindex(3)
        assert self.manager.should_reindex(4)
        assert self.manager.should_reindex(8)
        assert not ConversationContextManager(self.store, None, reindex_every=4).should_reindex(4)

    def test_reindex_conversation(self):
        first = self._add("user", "I hold a lot of BONK")
        self._add("assistant", "Noted, BONK is a meme token")

        written = asyncio.run(self.manager.reindex_conversation(self.conversation_id))
        # a second pass replaces rather than duplicates
        asyncio.run(self.manager.reindex_conversation(self.conversation_id))

        collection = chat_collection_name(self.conversation_id)
        assert written == 2
        hits = asyncio.run(self.vectors.query(collection, "BONK holdings", k=5))
        assert len(hits) == 2
        ids = {hit.id for hit in hits}
        assert f"msg-{first.message_id}" in ids
        assert {hit.metadata["role"] for hit in hits} == {"user", "assistant"}


class TestPeriodicReindex:

    def setup_method(self):
        """Set up test fixtures."""
        self.tmpdir = tempfile.mkdtemp()
        self.settings = Settings(db_path=str(Path(self.tmpdir) / "chat.db"), reindex_every=2)
        self.vectors = LocalVectorStore(FakeEmbedder())
        self.orchestrator = ConversationOrchestrator(
            settings=self.settings,
            llm_client=FakeLLMClient(responder=RoutedLLM(main=text_response("Noted."))),
            store=SQLiteConversationStore(db_path=self.settings.db_path),
            vector_store=self.vectors,
            market_data=FakeMarketData(),
            token_catalog=TokenCatalog([TokenRecord(address=SOL_ADDRESS, name="Wrapped SOL", symbol="SOL")]),
        )

    def teardown_method(self):
        shutil.rmtree(self.tmpdir, ignore_errors=True)

    def test_turn_triggers_background_reindex(self):
        async def run():
            result = await self.orchestrator.handle_message("user-1", "conv-r", "Remember that I like SOL")
            await self.orchestrator.aclose()
            return result

        result = asyncio.run(run())

        assert result.conversation.message_count == 2
        assert chat_collection_name("conv-r") in asyncio.run(self.vectors.list_collections())

    def test_reindex_failure_does_not_affect_turn(self):
        self.vectors.embedder.fail = True

        async def run():
            result = await self.orchestrator.handle_message("user-1", "conv-f", "hello")
            await self.orchestrator.aclose()
            return result

        result = asyncio.run(run())
        assert result.assistant_message.text == "Noted."
