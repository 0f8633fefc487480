"""Semantic search over vector collections and query-intent evaluation."""

import logging
from typing import Any, Dict, List, Optional

from llm.base_client import ChatRequest
from llm.json_output import decode_json_object
from retrieval.vector_store import chat_collection_name
from utils.errors import ExternalServiceError
from .context import ActionContext
from .registry import ToolDefinition

logger = logging.getLogger(__name__)

OPTIMIZER_SYSTEM = "You are a search query generator for a cryptocurrency vector database. Return only valid JSON."

OPTIMIZER_PROMPT = """Rephrase the following user query so it is optimal for vector similarity search over
cryptocurrency token information and conversation history. Keep key entities, symbols and technical terms.

Respond ONLY with a JSON object with a single key "query" whose value is the optimized query string.

User Query: "{query}"
"""

INTENT_SYSTEM = "You're an AI that assesses if queries need semantic search. Return only valid JSON."

INTENT_PROMPT = """Decide whether answering the user's query requires searching stored documents by meaning
(earlier conversation, token data or wallet data) rather than live data or general knowledge.

USER QUERY: "{user_query}"
{history}
AVAILABLE COLLECTIONS:
{collections}

Respond with a JSON object with exactly these keys:
- "needs_semantic_search": boolean
- "optimized_query": the query rewritten for similarity search
- "recommended_collection": one of the available collection names, or "" if unsure
- "reasoning": one short sentence
"""


async def optimize_search_query(ctx: ActionContext, query: str) -> str:
    """Ask the model for a search phrase as {"query": ...}; fall back to the raw text."""
    if ctx.llm_client is None:
        return query
    try:
        response = await ctx.llm_client.chat(ChatRequest(
            system_prompt=OPTIMIZER_SYSTEM,
            user_prompt=OPTIMIZER_PROMPT.format(query=query),
            temperature=0.2,
            response_format="json_object",
        ))
    except ExternalServiceError as e:
        logger.warning(f"Query optimization failed, using original query: {e}")
        return query

    decoded = decode_json_object(response.content, required_keys=("query",))
    if not decoded.ok or not isinstance(decoded.value["query"], str) or not decoded.value["query"].strip():
        logger.warning(f"Query optimization returned unusable output ({decoded.error}); using original query")
        return query
    return decoded.value["query"].strip()


async def semantic_query(ctx: ActionContext, args: Dict[str, Any]) -> Dict[str, Any]:
    if ctx.vector_store is None:
        raise ExternalServiceError("vector_store", "no vector store configured")

    query = str(args["query"])
    collection = args.get("collection") or ctx.settings.token_collection
    try:
        limit = int(args.get("limit", 5))
    except (TypeError, ValueError):
        limit = 5
    limit = limit if limit > 0 else 5

    optimized = await optimize_search_query(ctx, query)
    logger.info(f"Semantic query in '{collection}' (limit {limit})")
    hits = await ctx.vector_store.query(collection, optimized, k=limit)
    return {
        "originalQuery": query,
        "optimizedQuery": optimized,
        "collection": collection,
        "results": [hit.model_dump() for hit in hits],
    }


def _group_collections(collections: List[str], conversation_id: str) -> Dict[str, List[str]]:
    own_chat = chat_collection_name(conversation_id)
    chat = [c for c in collections if c == own_chat]
    return {
        "chat": chat,
        "token": [c for c in collections if c.startswith("token_data_")],
        "wallet": [c for c in collections if c.startswith("wallet_data_")],
    }


def infer_collection(user_query: str, groups: Dict[str, List[str]], collections: List[str]) -> str:
    """Pick a collection from query keywords when the model did not name one."""
    lowered = user_query.lower()
    if groups["chat"] and any(w in lowered for w in ("remember", "said", "told you")):
        return groups["chat"][0]
    if groups["token"] and any(w in lowered for w in ("token", "coin", "price")):
        return groups["token"][0]
    if groups["wallet"] and any(w in lowered for w in ("wallet", "address")):
        return groups["wallet"][0]
    if groups["chat"]:
        return groups["chat"][0]
    return collections[0] if collections else ""


def _no_search(user_query: str, reasoning: str) -> Dict[str, Any]:
    return {
        "needs_semantic_search": False,
        "optimized_query": user_query,
        "recommended_collection": "",
        "reasoning": reasoning,
    }


async def evaluate_query_intent(ctx: ActionContext, args: Dict[str, Any]) -> Dict[str, Any]:
    user_query = str(args["user_query"])
    if ctx.llm_client is None:
        return _no_search(user_query, "No language model available")

    collections: List[str] = []
    if ctx.vector_store is not None:
        try:
            collections = await ctx.vector_store.list_collections()
        except ExternalServiceError as e:
            logger.warning(f"Failed to list collections, evaluating without them: {e}")
    groups = _group_collections(collections, ctx.conversation_id)

    lines = [
        f"- Chat collections: {', '.join(groups['chat'])}" if groups["chat"] else "- No chat collections available",
        f"- Token collections: {', '.join(groups['token'])}" if groups["token"] else "- No token collections available",
        f"- Wallet collections: {', '.join(groups['wallet'])}" if groups["wallet"] else "- No wallet collections available",
    ]
    summary = args.get("chat_history_summary")
    history = f"CHAT HISTORY SUMMARY: {summary}\n" if summary else ""

    response = await ctx.llm_client.chat(ChatRequest(
        system_prompt=INTENT_SYSTEM,
        user_prompt=INTENT_PROMPT.format(user_query=user_query, history=history, collections="\n".join(lines)),
        temperature=0.3,
        response_format="json_object",
    ))

    decoded = decode_json_object(response.content, required_keys=("needs_semantic_search",))
    if not decoded.ok:
        logger.error(f"Failed to parse query intent evaluation: {decoded.error}")
        return _no_search(user_query, "Failed to parse AI JSON response")

    result = decoded.value
    evaluation = {
        "needs_semantic_search": bool(result.get("needs_semantic_search")),
        "optimized_query": result.get("optimized_query") or user_query,
        "recommended_collection": result.get("recommended_collection") or "",
        "reasoning": result.get("reasoning") or "",
    }

    if evaluation["needs_semantic_search"] and not evaluation["recommended_collection"] and collections:
        evaluation["recommended_collection"] = infer_collection(user_query, groups, collections)
        logger.info(f"Inferred collection {evaluation['recommended_collection']}")
    elif evaluation["recommended_collection"] and evaluation["recommended_collection"] not in collections:
        logger.warning(f"Recommended collection '{evaluation['recommended_collection']}' does not exist")

    return evaluation


TOOLS = [
    ToolDefinition(
        name="semantic_query",
        description=(
            "Search a vector collection by meaning: token information (default) or this "
            "conversation's history (collection \"chat-<conversation id>\")."
        ),
        parameters={
            "type": "object",
            "properties": {
                "query": {"type": "string", "description": "What to search for"},
                "collection": {"type": "string", "description": "Collection name (default: token collection)"},
                "limit": {"type": "integer", "description": "Number of results (default: 5)", "default": 5},
            },
            "required": ["query"],
        },
        handler=semantic_query,
        category="memory",
    ),
    ToolDefinition(
        name="evaluate_query_intent",
        description=(
            "Decide whether the user's question needs a semantic search over stored history or "
            "documents. If it does, the search is run automatically."
        ),
        parameters={
            "type": "object",
            "properties": {
                "user_query": {"type": "string"},
                "chat_history_summary": {"type": "string", "description": "Optional short summary of the chat"},
            },
            "required": ["user_query"],
        },
        handler=evaluate_query_intent,
        category="semantic",
    ),
]
