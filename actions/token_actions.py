"""Token identity resolution: vector search with a substring fallback."""

import logging
from typing import Any, Dict

from retrieval.token_catalog import parse_token_document
from utils.errors import ExternalServiceError
from .context import ActionContext
from .registry import ToolDefinition
from .semantic_actions import optimize_search_query

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 3
FALLBACK_LIMIT = 5


def _substring_fallback(ctx: ActionContext, query: str) -> Dict[str, Any]:
    matches = ctx.token_catalog.find_mentioned(query, FALLBACK_LIMIT) if ctx.token_catalog else []
    logger.info(f"Substring fallback found {len(matches)} tokens")
    return {
        "query": query,
        "semantic_query": query,
        "resolvedTokens": [],
        "potentialTokens": [t.to_candidate() for t in matches],
        "fallback": True,
    }


async def resolve_token_addresses(ctx: ActionContext, args: Dict[str, Any]) -> Dict[str, Any]:
    query = str(args["query"])
    try:
        limit = int(args.get("limit", DEFAULT_LIMIT))
    except (TypeError, ValueError):
        limit = DEFAULT_LIMIT
    limit = limit if limit > 0 else DEFAULT_LIMIT

    if ctx.vector_store is None:
        return _substring_fallback(ctx, query)

    collection = ctx.settings.token_collection
    try:
        if collection not in await ctx.vector_store.list_collections():
            logger.warning(f"Token collection '{collection}' missing; using substring fallback")
            return _substring_fallback(ctx, query)
    except ExternalServiceError as e:
        logger.warning(f"Vector store unreachable ({e}); using substring fallback")
        return _substring_fallback(ctx, query)

    semantic = await optimize_search_query(ctx, query)
    try:
        hits = await ctx.vector_store.query(collection, semantic, k=limit)
    except ExternalServiceError as e:
        logger.warning(f"Token search failed ({e}); using substring fallback")
        return _substring_fallback(ctx, query)

    resolved = []
    for hit in hits:
        parsed = parse_token_document(hit.document)
        resolved.append({
            "token_name": parsed["name"],
            "token_symbol": parsed["symbol"],
            "token_address": parsed["address"],
        })

    found = {r["token_address"] for r in resolved}
    potential = []
    if ctx.token_catalog is not None:
        potential = [t.to_candidate() for t in ctx.token_catalog.find_mentioned(query, FALLBACK_LIMIT, found)]

    return {
        "query": query,
        "semantic_query": semantic,
        "resolvedTokens": resolved,
        "potentialTokens": potential,
    }


TOOLS = [
    ToolDefinition(
        name="resolve_token_addresses",
        description=(
            "Identify the Solana tokens mentioned in the user's text and return their mint "
            "addresses. The first result is the best match."
        ),
        parameters={
            "type": "object",
            "properties": {
                "query": {"type": "string", "description": "Text mentioning token names or symbols"},
                "limit": {"type": "integer", "description": "Maximum tokens to return (default: 3)", "default": 3},
            },
            "required": ["query"],
        },
        handler=resolve_token_addresses,
        category="resolution",
    ),
]
