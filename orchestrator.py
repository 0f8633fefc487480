"""Main orchestrator for the Solana token chat assistant."""

import asyncio
import contextlib
import inspect
import logging
from typing import Any, Callable, Dict, List, Optional, Set

from config.settings import Settings
from schemas.results import ActionResult, TurnResult

# LLM components
from llm.factory import create_llm_client, LLMProvider
from llm.base_client import BaseLLMClient, ChatRequest, LLMResponse, Message
from llm.context_window import estimate_text_tokens

# Memory components
from memory.models import Conversation, ConversationMessage, ConversationStatus
from memory.sqlite_store import SQLiteConversationStore
from memory.context_manager import ConversationContextManager

# Retrieval and domain data
from retrieval.embeddings import EmbeddingClient
from retrieval.vector_store import BaseVectorStore, LocalVectorStore
from retrieval.market_data import MarketDataClient
from retrieval.token_catalog import TokenCatalog

# Actions
from actions.catalog import build_default_registry
from actions.context import ActionContext
from actions.executor import ActionExecutor
from actions.registry import ToolRegistry
from actions.scope import TurnScope

# Phase agents
from agents.memory_resolver import MemoryResolver
from agents.entity_resolver import EntityResolver
from agents.context_builder import ContextBuilder
from agents.synthesizer import Synthesizer

from utils.errors import APOLOGY_MESSAGE, PersistenceError, TurnFailedError
from utils.retry import RetryPolicy

logger = logging.getLogger(__name__)

NO_RESPONSE_REPLY = "I'm sorry, I couldn't generate a response for that."
TITLE_CHARS = 50

ProgressCallback = Callable[[str, str], Any]


class ConversationOrchestrator:
    """
    Runs one user message through the assistant's phases.

    1. Resolve or create the conversation and save the user message
    2. Load the recent message window
    3. Memory resolution (degrades to empty)
    4. Token resolution (degrades to empty)
    5. Build the system prompt
    6. Main consultation, then action execution and synthesis if tools were requested
    7. Persist the reply with its invocations and refresh conversation stats
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        llm_client: Optional[BaseLLMClient] = None,
        store: Optional[SQLiteConversationStore] = None,
        vector_store: Optional[BaseVectorStore] = None,
        market_data: Optional[MarketDataClient] = None,
        token_catalog: Optional[TokenCatalog] = None,
        registry: Optional[ToolRegistry] = None
    ):
        """
        Initialize orchestrator.

        Any service not passed in is built from settings.

        Args:
            settings: Application settings
            llm_client: Language model client
            store: Conversation store
            vector_store: Vector store for token resolution and history search
            market_data: Domain-data API client
            token_catalog: Local token catalog used when vector search is unavailable
            registry: Tool registry (default: the full action catalog)
        """
        self.settings = settings or Settings()
        self.retry_policy = RetryPolicy(
            max_attempts=self.settings.retry_max_attempts,
            base_delay=self.settings.retry_base_delay,
        )

        self.llm_client = llm_client or self._init_llm_client()
        self.store = store or SQLiteConversationStore(db_path=self.settings.db_path)
        self.vector_store = vector_store if vector_store is not None else self._init_vector_store()
        self.market_data = market_data or MarketDataClient(
            base_url=self.settings.market_data_base_url,
            api_key=self.settings.market_data_api_key,
            timeout=self.settings.market_data_timeout,
            retry_policy=self.retry_policy,
        )
        self.token_catalog = token_catalog or TokenCatalog.from_csv(self.settings.token_catalog_path)

        self.context_manager = ConversationContextManager(
            store=self.store,
            vector_store=self.vector_store,
            window_size=self.settings.recent_window_size,
            reindex_every=self.settings.reindex_every,
        )

        self.registry = registry or build_default_registry()
        self.executor = ActionExecutor(self.registry)
        self._init_agents()

        self._locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = {}
        self._background_tasks: Set[asyncio.Task] = set()

    def _init_llm_client(self) -> BaseLLMClient:
        """Initialize LLM client based on settings."""
        api_key = self.settings.get_llm_api_key()
        if not api_key:
            raise ValueError(
                f"No API key for {self.settings.llm_provider}. "
                "Set OPENAI_API_KEY or ANTHROPIC_API_KEY."
            )

        provider = LLMProvider(self.settings.llm_provider)
        client = create_llm_client(
            provider=provider,
            api_key=api_key,
            model=self.settings.llm_model,
            retry_policy=self.retry_policy,
            context_window=self.settings.context_window_tokens,
            trim_floor=self.settings.trim_floor_chars,
            safety_margin=self.settings.trim_safety_margin,
        )
        logger.info(f"LLM client initialized: {self.settings.llm_provider} ({client.get_model_name()})")
        return client

    def _init_vector_store(self) -> Optional[BaseVectorStore]:
        """Initialize the local vector store; disabled without an OpenAI key for embeddings."""
        if not self.settings.openai_api_key:
            logger.warning("No OpenAI API key for embeddings; vector search disabled")
            return None
        embedder = EmbeddingClient(
            openai_api_key=self.settings.openai_api_key,
            model=self.settings.embedding_model,
            retry_policy=self.retry_policy,
        )
        logger.info(f"Vector store initialized: {self.settings.vector_store_path}")
        return LocalVectorStore(embedder, persist_path=self.settings.vector_store_path)

    def _init_agents(self):
        """Initialize phase agents."""
        self.memory_resolver = MemoryResolver(self.llm_client, self.registry, self.executor)
        self.entity_resolver = EntityResolver(self.llm_client, self.registry, self.executor)
        self.context_builder = ContextBuilder()
        self.synthesizer = Synthesizer(self.llm_client)

    @contextlib.asynccontextmanager
    async def _conversation_lock(self, conversation_id: str):
        """Serialize turns per conversation; the lock is dropped once no turn holds or awaits it."""
        lock = self._locks.get(conversation_id)
        if lock is None:
            lock = self._locks[conversation_id] = asyncio.Lock()
        self._lock_users[conversation_id] = self._lock_users.get(conversation_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[conversation_id] -= 1
            if self._lock_users[conversation_id] == 0:
                del self._lock_users[conversation_id]
                del self._locks[conversation_id]

    async def handle_message(
        self,
        user_id: str,
        conversation_id: Optional[str],
        text: str,
        channel_session_id: Optional[str] = None,
        progress_callback: Optional[ProgressCallback] = None
    ) -> TurnResult:
        """
        Process one user message.

        Args:
            user_id: Owner of the conversation
            conversation_id: Existing conversation, or None to start one
            text: The user's message
            channel_session_id: Messaging channel session (e.g. a Telegram chat)
            progress_callback: Optional `callback(stage, detail)`, sync or async

        Returns:
            TurnResult with both messages, executed actions and a memory snapshot

        Raises:
            TurnFailedError: If the conversation could not be resolved, a store
                write failed, or the turn exceeded its deadline
        """
        try:
            return await asyncio.wait_for(
                self._handle_message(user_id, conversation_id, text, channel_session_id, progress_callback),
                timeout=self.settings.turn_timeout,
            )
        except asyncio.TimeoutError as e:
            logger.error(f"Turn exceeded {self.settings.turn_timeout}s deadline")
            raise TurnFailedError("timeout", e) from e

    async def _handle_message(
        self,
        user_id: str,
        conversation_id: Optional[str],
        text: str,
        channel_session_id: Optional[str],
        progress_callback: Optional[ProgressCallback]
    ) -> TurnResult:
        await self._report(progress_callback, "setup", "Preparing conversation")
        conversation = await self._resolve_conversation(user_id, conversation_id, text, channel_session_id)

        async with self._conversation_lock(conversation.conversation_id):
            try:
                return await self._run_turn(conversation, user_id, text, progress_callback)
            except PersistenceError as e:
                logger.error(f"Persistence failed for conversation {conversation.conversation_id}: {e}")
                raise TurnFailedError("persistence", e) from e

    async def _resolve_conversation(
        self,
        user_id: str,
        conversation_id: Optional[str],
        text: str,
        channel_session_id: Optional[str]
    ) -> Conversation:
        """Reuse an active conversation owned by the user, or create one."""
        try:
            if conversation_id:
                conversation = await self.store.get_conversation(conversation_id, user_id=user_id)
                if conversation and conversation.status == ConversationStatus.ACTIVE:
                    return conversation
                if conversation is None and await self.store.get_conversation(conversation_id) is None:
                    # Unknown id: adopt it for the new conversation
                    return await self._create_conversation(user_id, text, channel_session_id, conversation_id)
                logger.info(f"Conversation {conversation_id} not usable for {user_id}; starting a new one")
            return await self._create_conversation(user_id, text, channel_session_id)
        except Exception as e:
            logger.error(f"Failed to resolve conversation: {e}")
            raise TurnFailedError("conversation", e) from e

    async def _create_conversation(
        self,
        user_id: str,
        text: str,
        channel_session_id: Optional[str],
        conversation_id: Optional[str] = None
    ) -> Conversation:
        conversation = await self.store.create_conversation(
            user_id=user_id,
            platform="telegram" if channel_session_id else "web",
            title=text.strip()[:TITLE_CHARS] or "New conversation",
            conversation_id=conversation_id,
        )
        logger.info(f"Created conversation {conversation.conversation_id} for user {user_id}")
        return conversation

    async def _run_turn(
        self,
        conversation: Conversation,
        user_id: str,
        text: str,
        progress_callback: Optional[ProgressCallback]
    ) -> TurnResult:
        conversation_id = conversation.conversation_id
        user_message = await self.store.add_message(
            conversation_id, "user", text, token_estimate=estimate_text_tokens(text)
        )
        window = await self.context_manager.get_recent_window(
            conversation_id, exclude_message_id=user_message.message_id
        )
        context = ActionContext(
            conversation_id=conversation_id,
            user_id=user_id,
            settings=self.settings,
            store=self.store,
            llm_client=self.llm_client,
            vector_store=self.vector_store,
            market_data=self.market_data,
            token_catalog=self.token_catalog,
        )

        await self._report(progress_callback, "memory_consultation", "Checking saved information")
        memory = await self.memory_resolver.resolve(text, window, context)

        await self._report(progress_callback, "token_resolution", "Identifying tokens")
        entities = await self.entity_resolver.resolve(text, window, context)

        system_prompt = self.context_builder.build(memory, entities)
        reply, structured_data, invocations = await self._consult(
            text, system_prompt, window, context, progress_callback
        )

        await self._report(progress_callback, "finalizing", "Saving response")
        assistant_message = await self.store.save_assistant_turn(
            conversation_id,
            reply,
            token_estimate=estimate_text_tokens(reply),
            structured_data=structured_data,
            invocations=invocations,
        )
        conversation = await self.store.refresh_conversation_stats(conversation_id)
        self._maybe_schedule_reindex(conversation)

        items = await self.store.get_memory_items(conversation_id)
        objects = await self.store.get_memory_objects(conversation_id)

        logger.info(
            f"Turn complete for {conversation_id}: {len(invocations)} invocations, "
            f"{conversation.message_count} messages"
        )
        return TurnResult(
            conversation=conversation,
            user_message=user_message,
            assistant_message=assistant_message,
            executed_actions=assistant_message.invocations,
            structured_data=structured_data,
            memory_items={item.key: item.value for item in items},
            memory_objects=[obj.model_dump(mode="json") for obj in objects],
        )

    async def _consult(
        self,
        text: str,
        system_prompt: str,
        window: List[Message],
        context: ActionContext,
        progress_callback: Optional[ProgressCallback]
    ):
        """
        Main consultation plus, when tools are requested, execution and synthesis.

        Returns:
            (reply, structured_data, invocations)
        """
        main_tools = self.registry.main()
        try:
            response: LLMResponse = await self.llm_client.chat(ChatRequest(
                system_prompt=system_prompt,
                user_prompt=text,
                history=window,
                temperature=0.7,
                tools=self.registry.definitions(main_tools),
                tool_choice="auto",
            ))
        except Exception as e:
            logger.error(f"Main consultation failed: {e}")
            return APOLOGY_MESSAGE, None, []

        if not response.has_tool_calls:
            logger.info("Main consultation answered without actions")
            return response.content or NO_RESPONSE_REPLY, None, []

        names = [tc.name for tc in response.tool_calls]
        logger.info(f"Main consultation requested {len(names)} actions: {names}")
        await self._report(progress_callback, "executing_tools", ", ".join(names))

        scope = TurnScope(context.conversation_id, phase="main")
        try:
            results: List[ActionResult] = await self.executor.execute_tool_calls(
                response.tool_calls, context, scope, allowed={t.name for t in main_tools}
            )
        finally:
            invocations = scope.close()

        await self._report(progress_callback, "synthesis", "Preparing final answer")
        synthesis = await self.synthesizer.synthesize(text, results, initial_content=response.content or None)
        return synthesis.reply, synthesis.action_data, invocations

    def _maybe_schedule_reindex(self, conversation: Conversation):
        if not self.context_manager.should_reindex(conversation.message_count):
            return
        task = asyncio.create_task(self._reindex(conversation.conversation_id))
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)

    async def _reindex(self, conversation_id: str):
        try:
            await self.context_manager.reindex_conversation(conversation_id)
        except Exception as e:
            logger.warning(f"Background re-index of {conversation_id} failed: {e}")

    @staticmethod
    async def _report(callback: Optional[ProgressCallback], stage: str, detail: str):
        if callback is None:
            return
        try:
            outcome = callback(stage, detail)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception as e:
            logger.warning(f"Progress callback failed at {stage}: {e}")

    async def get_conversation_history(self, conversation_id: str, user_id: str) -> List[ConversationMessage]:
        """Chronological messages of a conversation owned by the user, with their invocations."""
        conversation = await self.store.get_conversation(conversation_id, user_id=user_id)
        if conversation is None:
            return []
        return await self.store.get_messages(conversation_id, with_invocations=True)

    async def list_conversations(
        self,
        user_id: str,
        status: Optional[ConversationStatus] = ConversationStatus.ACTIVE,
        limit: int = 10
    ) -> List[Conversation]:
        return await self.store.list_conversations(user_id, status=status, limit=limit)

    async def archive_conversation(self, conversation_id: str) -> bool:
        """Flip a conversation to archived. Conversations are never deleted."""
        archived = await self.store.set_conversation_status(conversation_id, ConversationStatus.ARCHIVED)
        if archived:
            logger.info(f"Archived conversation {conversation_id}")
        return archived

    async def aclose(self):
        """Wait for pending background re-indexing."""
        if self._background_tasks:
            await asyncio.gather(*self._background_tasks, return_exceptions=True)
