"""Memory resolver: a short sub-session restricted to memory lookup tools."""

import logging
from typing import List

from actions.context import ActionContext
from actions.executor import ActionExecutor
from actions.registry import ToolRegistry
from actions.scope import TurnScope
from llm.base_client import BaseLLMClient, ChatRequest, Message
from schemas.results import ActionResult, MemoryResolution

logger = logging.getLogger(__name__)


class MemoryResolver:
    """Decides whether the message needs stored memory and, if so, fetches it."""

    SYSTEM_PROMPT = """You are an AI assistant specialized in memory recall.
Your task is to determine if the user is asking about:
1. Specific information previously stored about them (preferences, settings, etc.)
2. Previously created strategies, watchlists or other saved objects
3. Information from past conversations

ONLY use the provided memory tools if you're CERTAIN the user is requesting memory-related information.
If you're unsure or the user is asking about blockchain/token data, DO NOT call any tools.

You have access to these memory tools:
- retrieve_memory_items: Get specific memory items like user preferences
- retrieve_memory_objects: Get stored objects like trading strategies
- semantic_query: Search previous conversations semantically

Choose the most appropriate tool(s) for the user's request."""

    def __init__(self, llm_client: BaseLLMClient, registry: ToolRegistry, executor: ActionExecutor):
        self.llm_client = llm_client
        self.registry = registry
        self.executor = executor

    async def resolve(self, user_text: str, window: List[Message], context: ActionContext) -> MemoryResolution:
        """
        Run the memory sub-session.

        Returns:
            MemoryResolution; empty (with `error` set) on any failure
        """
        try:
            return await self._resolve(user_text, window, context)
        except Exception as e:
            logger.error(f"Memory resolution failed, continuing without memory: {e}")
            return MemoryResolution(error=str(e))

    async def _resolve(self, user_text: str, window: List[Message], context: ActionContext) -> MemoryResolution:
        tools = self.registry.memory_only()
        response = await self.llm_client.chat(ChatRequest(
            system_prompt=self.SYSTEM_PROMPT,
            user_prompt=user_text,
            history=window,
            temperature=0.4,
            tools=self.registry.definitions(tools),
            tool_choice="auto",
        ))

        if not response.has_tool_calls:
            logger.info("Memory resolver requested no tools")
            return MemoryResolution()

        logger.info(f"Memory resolver requested: {[tc.name for tc in response.tool_calls]}")
        allowed = {t.name for t in tools}
        calls = [tc for tc in response.tool_calls if tc.name in allowed]

        # transient scope; these invocations never reach storage
        scope = TurnScope(context.conversation_id, phase="memory")
        results = await self.executor.execute_tool_calls(calls, context, scope)
        scope.close()
        return self._collect(results)

    @staticmethod
    def _collect(results: List[ActionResult]) -> MemoryResolution:
        resolution = MemoryResolution()
        for result in results:
            if not result.success or not isinstance(result.data, dict):
                continue
            if result.action_name == "retrieve_memory_items":
                resolution.items.extend(result.data.get("items", []))
            elif result.action_name == "retrieve_memory_objects":
                resolution.objects.extend(result.data.get("objects", []))
            elif result.action_name == "semantic_query":
                hits = result.data.get("results", [])
                resolution.semantic_hits = (resolution.semantic_hits or []) + hits
        logger.info(
            f"Memory resolution: {len(resolution.items)} items, {len(resolution.objects)} objects, "
            f"{len(resolution.semantic_hits or [])} semantic hits"
        )
        return resolution
