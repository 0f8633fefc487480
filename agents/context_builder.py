"""Builds the main system prompt from recalled memory and resolved tokens."""

import json
import logging
from typing import Any, Dict, List

from schemas.results import EntityResolution, MemoryResolution

logger = logging.getLogger(__name__)

SNIPPET_CHARS = 150


class ContextBuilder:
    """
    Deterministic prompt assembly.

    Sections are added only when they have content, so an empty memory or
    token resolution leaves no header behind.
    """

    BASE_PROMPT = """You are an assistant expert in finance, blockchain and cryptocurrencies on the Solana network.
Your goal is to provide clear, useful information based on real market data.

IMPORTANT GUIDELINES:
1. BE PROACTIVE: When the user asks for recommendations or analysis, fetch real data first instead of asking for more details.
2. PRIORITIZE REAL DATA: Use fetch_top_tokens to discover relevant tokens and analyze_token_trend to study their behaviour.
3. BASE YOUR RECOMMENDATIONS ON DATA: Explain your reasoning with the figures you obtained.
4. EXECUTE MULTIPLE ACTIONS: Combine several actions when needed to give a complete answer.
5. COMPLEMENT WITH QUESTIONS: After giving a useful answer, ask follow-up questions to refine it.

AVAILABLE ACTIONS:
- Use fetch_token_data, fetch_token_price_history and fetch_token_holders_data for token information.
- Use fetch_wallet_data and fetch_wallet_pnl for wallet information.
- Use compare_tokens to compare several tokens side by side.
- Use remember_info and the store_* actions when the user shares preferences.
- Use the upsert_* actions to save strategies, watchlists, portfolio plans, trade setups and analyses.
- Use semantic_query to look up previous conversations."""

    def build(self, memory: MemoryResolution, entities: EntityResolution) -> str:
        """
        Compose the system prompt for the main consultation.

        Args:
            memory: Output of the memory resolver
            entities: Output of the entity resolver

        Returns:
            The full system prompt text
        """
        sections = [self.BASE_PROMPT]

        if memory.items:
            sections.append(self._items_section(memory.items))
        if memory.objects:
            sections.append(self._objects_section(memory.objects))
        if memory.semantic_hits:
            sections.append(self._history_section(memory.semantic_hits))
        if not entities.is_empty:
            sections.append(self._tokens_section(entities))

        logger.debug(f"Built system prompt with {len(sections) - 1} context sections")
        return "\n\n".join(sections)

    @staticmethod
    def _items_section(items: List[Dict[str, Any]]) -> str:
        lines = ["RECENTLY RETRIEVED MEMORY ITEMS:"]
        for item in items:
            value = item.get("value")
            if isinstance(value, (dict, list)):
                value = json.dumps(value, ensure_ascii=False)
            lines.append(f"- {item.get('key')}: {value}")
        return "\n".join(lines)

    @staticmethod
    def _objects_section(objects: List[Dict[str, Any]]) -> str:
        lines = ["RECENTLY RETRIEVED USER OBJECTS:"]
        for i, obj in enumerate(objects, 1):
            lines.append(f"{i}. Type: {obj.get('object_type')}, Name: {obj.get('name')}")
            data = obj.get("data") or {}
            if obj.get("object_type") == "strategy":
                if data.get("description"):
                    lines.append(f"   Description: {data['description']}")
                if data.get("tokens"):
                    lines.append(f"   Tokens: {', '.join(str(t) for t in data['tokens'])}")
                if data.get("timeframe"):
                    lines.append(f"   Timeframe: {data['timeframe']}")
            elif data:
                lines.append(f"   Data: {json.dumps(data, ensure_ascii=False, default=str)}")
        return "\n".join(lines)

    @staticmethod
    def _history_section(hits: List[Dict[str, Any]]) -> str:
        lines = ["RELEVANT CONVERSATION HISTORY:"]
        for i, hit in enumerate(hits, 1):
            text = hit.get("document") or hit.get("text") or ""
            snippet = text[:SNIPPET_CHARS] + ("..." if len(text) > SNIPPET_CHARS else "")
            lines.append(f"{i}. {snippet}")
        return "\n".join(lines)

    @staticmethod
    def _tokens_section(entities: EntityResolution) -> str:
        lines = ["IDENTIFIED TOKENS:"]
        for candidate in entities.candidates:
            lines.append(
                f"- {candidate.token_symbol} ({candidate.token_name}): "
                f"{candidate.token_address or 'address unknown'}"
            )
        first = entities.candidates[0]
        lines.append("")
        lines.append(
            "IMPORTANT: When calling actions that need a token address, ALWAYS use these exact "
            "token addresses instead of made-up ones. "
            f"The first option ({first.token_symbol}) with address {first.token_address} should be tried first."
        )
        return "\n".join(lines)
