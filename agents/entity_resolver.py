"""Entity resolver: maps token mentions in the message to mint addresses."""

import logging
from typing import List

from actions.context import ActionContext
from actions.executor import ActionExecutor
from actions.registry import ToolRegistry
from actions.scope import TurnScope
from llm.base_client import BaseLLMClient, ChatRequest, Message
from schemas.results import ActionResult, EntityResolution, TokenCandidate

logger = logging.getLogger(__name__)


class EntityResolver:
    """Runs a sub-session whose only tool is resolve_token_addresses."""

    SYSTEM_PROMPT = """You are an AI assistant specialized in identifying cryptocurrency tokens.
Your task is to identify any token symbols or names mentioned in the user's message.

Only use the resolve_token_addresses tool if you detect:
1. Specific token symbols (like SOL, BTC, ETH, JUP, BONK)
2. Token names (like Solana, Bitcoin, Ethereum)
3. References to tokens that need to be resolved to addresses

Examples when to use the tool:
- "What's the price of SOL today?"
- "Tell me about Jupiter token"
- "Compare BONK and JUP performance"

DO NOT use the tool if:
- The message contains no token references
- The user is asking about general topics or the platform itself

This step is crucial for the main assistant to use correct token addresses."""

    def __init__(self, llm_client: BaseLLMClient, registry: ToolRegistry, executor: ActionExecutor):
        self.llm_client = llm_client
        self.registry = registry
        self.executor = executor

    async def resolve(self, user_text: str, window: List[Message], context: ActionContext) -> EntityResolution:
        """
        Run the token identification sub-session.

        Returns:
            EntityResolution with ranked candidates; empty (with `error`) on failure
        """
        try:
            return await self._resolve(user_text, window, context)
        except Exception as e:
            logger.error(f"Entity resolution failed, continuing without tokens: {e}")
            return EntityResolution(error=str(e))

    async def _resolve(self, user_text: str, window: List[Message], context: ActionContext) -> EntityResolution:
        tools = self.registry.resolution_only()
        response = await self.llm_client.chat(ChatRequest(
            system_prompt=self.SYSTEM_PROMPT,
            user_prompt=user_text,
            history=window,
            temperature=0.4,
            tools=self.registry.definitions(tools),
            tool_choice="auto",
        ))

        if not response.has_tool_calls:
            logger.info("No token references detected")
            return EntityResolution()

        allowed = {t.name for t in tools}
        calls = [tc for tc in response.tool_calls if tc.name in allowed]
        scope = TurnScope(context.conversation_id, phase="entities")
        results = await self.executor.execute_tool_calls(calls, context, scope)
        scope.close()
        return self._collect(results)

    @staticmethod
    def _collect(results: List[ActionResult]) -> EntityResolution:
        candidates: List[TokenCandidate] = []
        seen = set()
        query = None
        errors = []

        for result in results:
            if not result.success or not isinstance(result.data, dict):
                errors.append(result.error or "resolution returned no data")
                continue
            query = query or result.data.get("semantic_query") or result.data.get("query")
            # vector matches rank ahead of substring matches
            for token in result.data.get("resolvedTokens", []) + result.data.get("potentialTokens", []):
                key = token.get("token_address") or (token.get("token_symbol"), token.get("token_name"))
                if key in seen:
                    continue
                seen.add(key)
                candidates.append(TokenCandidate(
                    token_name=token.get("token_name") or "Unknown",
                    token_symbol=token.get("token_symbol") or "Unknown",
                    token_address=token.get("token_address"),
                ))

        logger.info(f"Entity resolution found {len(candidates)} candidates")
        return EntityResolution(
            candidates=candidates,
            query=query,
            error="; ".join(errors) if errors and not candidates else None,
        )
