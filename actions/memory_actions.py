"""Memory actions: recall and storage of memory items and memory objects."""

import json
import logging
from typing import Any, Dict, List

from utils.errors import ActionValidationError
from .context import ActionContext
from .registry import ToolDefinition

logger = logging.getLogger(__name__)

STRATEGY_TIMEFRAMES = ("short-term", "medium-term", "long-term", "ongoing")
RISK_LEVELS = ("low", "medium", "high")


def parse_token_list(tokens: Any) -> List[str]:
    """Accept a JSON array string, a comma-separated string, or a list."""
    if tokens is None:
        return []
    if isinstance(tokens, list):
        return [str(t).strip() for t in tokens if str(t).strip()]
    text = str(tokens).strip()
    if text.startswith("[") and text.endswith("]"):
        try:
            parsed = json.loads(text)
            if isinstance(parsed, list):
                return [str(t).strip() for t in parsed if str(t).strip()]
        except json.JSONDecodeError:
            logger.warning(f"Token list looked like JSON but did not parse: {text}")
        text = text[1:-1]
    return [t.strip().strip('"\'') for t in text.split(",") if t.strip().strip('"\'')]


def _require_choice(value: Any, choices, field: str) -> str:
    normalized = str(value or "").strip().lower()
    if normalized not in choices:
        raise ActionValidationError(f"{field} must be one of {', '.join(choices)}, got '{value}'")
    return normalized


def _object_payload(obj) -> Dict[str, Any]:
    return {
        "id": obj.object_id,
        "type": obj.object_type,
        "name": obj.name,
        "data": obj.data,
        "created": obj.created_at.isoformat(),
        "updated": obj.updated_at.isoformat(),
    }


# ----------------------------------------------------------------------
# Recall

async def retrieve_memory_items(ctx: ActionContext, args: Dict[str, Any]) -> Dict[str, Any]:
    query = args.get("query") or "*"
    exact_match = bool(args.get("exact_match", False))
    items = await ctx.store.get_memory_items(ctx.conversation_id, query, exact_match)
    return {
        "query": query,
        "exact_match": exact_match,
        "count": len(items),
        "items": [
            {
                "key": item.key,
                "value": item.value,
                "type": item.value_type,
                "source": item.source,
                "created": item.created_at.isoformat(),
            }
            for item in items
        ],
    }


async def retrieve_memory_objects(ctx: ActionContext, args: Dict[str, Any]) -> Dict[str, Any]:
    object_type = args.get("type") or "*"
    name = args.get("name")
    objects = await ctx.store.get_memory_objects(ctx.conversation_id, object_type, name)
    return {
        "type": object_type,
        "name": name,
        "count": len(objects),
        "objects": [_object_payload(obj) for obj in objects],
    }


# ----------------------------------------------------------------------
# Memory items

async def remember_info(ctx: ActionContext, args: Dict[str, Any]) -> Dict[str, Any]:
    key = (args.get("key") or "").strip()
    value = args.get("value")
    if not key or value is None:
        raise ActionValidationError("Key and value are required for remember_info")

    try:
        confidence = float(args.get("confidence", 1.0))
    except (TypeError, ValueError):
        logger.warning(f"Invalid confidence '{args.get('confidence')}', defaulting to 1.0")
        confidence = 1.0

    item = await ctx.store.upsert_memory_item(
        ctx.conversation_id, key, value,
        source=args.get("source") or "llm",
        confidence=confidence
    )
    return {"stored": True, "key": item.key, "value": item.value, "type": item.value_type}


def _profile_handler(key: str, field: str, choices=None, transform=None):
    """Build a handler that stores one argument under a fixed memory key as user-stated."""

    async def handler(ctx: ActionContext, args: Dict[str, Any]) -> Dict[str, Any]:
        value = args.get(field)
        if choices:
            value = _require_choice(value, choices, field)
        if transform:
            value = transform(value)
        return await remember_info(ctx, {"key": key, "value": value, "source": "user"})

    handler.__name__ = f"store_{key}"
    return handler


def _notification_preferences(value: Any) -> Dict[str, Any]:
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except json.JSONDecodeError:
            raise ActionValidationError("preferences must be a JSON object")
    if not isinstance(value, dict):
        raise ActionValidationError("preferences must be an object")
    return value


# ----------------------------------------------------------------------
# Memory objects

async def upsert_trading_strategy(ctx: ActionContext, args: Dict[str, Any]) -> Dict[str, Any]:
    timeframe = str(args.get("timeframe") or "").strip().lower()
    if timeframe not in STRATEGY_TIMEFRAMES:
        logger.info(f"Strategy timeframe '{timeframe}' not recognised, using medium-term")
        timeframe = "medium-term"

    risk_level = str(args.get("riskLevel") or "medium").strip().lower()
    if risk_level not in RISK_LEVELS:
        risk_level = "medium"

    data = {
        "description": args["description"],
        "tokens": parse_token_list(args.get("tokens")),
        "timeframe": timeframe,
        "riskLevel": risk_level,
    }
    if args.get("rules"):
        data["rules"] = args["rules"]

    obj = await ctx.store.upsert_memory_object(ctx.conversation_id, "strategy", args["name"].strip(), data)
    return {"stored": True, "object": _object_payload(obj)}


async def upsert_token_watchlist(ctx: ActionContext, args: Dict[str, Any]) -> Dict[str, Any]:
    tokens = parse_token_list(args.get("tokens"))
    if not tokens:
        raise ActionValidationError("A watchlist needs at least one token")
    data = {"tokens": tokens}
    if args.get("description"):
        data["description"] = args["description"]
    obj = await ctx.store.upsert_memory_object(ctx.conversation_id, "watchlist", args["name"].strip(), data)
    return {"stored": True, "object": _object_payload(obj)}


async def upsert_portfolio_plan(ctx: ActionContext, args: Dict[str, Any]) -> Dict[str, Any]:
    allocations = args.get("allocations")
    if isinstance(allocations, str):
        try:
            allocations = json.loads(allocations)
        except json.JSONDecodeError:
            raise ActionValidationError("allocations must be a JSON array")
    if not isinstance(allocations, list) or not allocations:
        raise ActionValidationError("allocations must be a non-empty list")

    try:
        total = sum(float(a["percentage"]) for a in allocations)
    except (KeyError, TypeError, ValueError):
        raise ActionValidationError("each allocation needs a token and a numeric percentage")
    if abs(total - 100) > 1:
        raise ActionValidationError(f"allocations must sum to 100%, got {total:g}%")

    data = {"allocations": allocations}
    if args.get("description"):
        data["description"] = args["description"]
    obj = await ctx.store.upsert_memory_object(ctx.conversation_id, "portfolio", args["name"].strip(), data)
    return {"stored": True, "object": _object_payload(obj)}


async def upsert_trade_setup(ctx: ActionContext, args: Dict[str, Any]) -> Dict[str, Any]:
    direction = _require_choice(args.get("direction"), ("long", "short"), "direction")
    try:
        entry_price = float(args.get("entryPrice"))
    except (TypeError, ValueError):
        raise ActionValidationError("entryPrice must be a number")
    if entry_price <= 0:
        raise ActionValidationError("entryPrice must be positive")

    data = {"token": args["token"], "direction": direction, "entryPrice": entry_price}
    for optional in ("stopLoss", "takeProfit", "notes"):
        if args.get(optional) is not None:
            data[optional] = args[optional]

    obj = await ctx.store.upsert_memory_object(ctx.conversation_id, "trade-setup", args["name"].strip(), data)
    return {"stored": True, "object": _object_payload(obj)}


async def upsert_market_analysis(ctx: ActionContext, args: Dict[str, Any]) -> Dict[str, Any]:
    data = {"content": args["content"], "tokens": parse_token_list(args.get("tokens"))}
    obj = await ctx.store.upsert_memory_object(
        ctx.conversation_id, "market-analysis", args["title"].strip(), data
    )
    return {"stored": True, "object": _object_payload(obj)}


_STRING = {"type": "string"}

TOOLS = [
    ToolDefinition(
        name="retrieve_memory_items",
        description=(
            "Retrieve stored facts and preferences about the user (name, risk tolerance, "
            "favorite tokens, ...). Use \"*\" as query to list everything."
        ),
        parameters={
            "type": "object",
            "properties": {
                "query": {"type": "string", "description": "Memory key to look up, or \"*\" for all", "default": "*"},
                "exact_match": {"type": "boolean", "description": "Match the key exactly (default: false)", "default": False},
            },
            "required": ["query"],
        },
        handler=retrieve_memory_items,
        category="memory",
    ),
    ToolDefinition(
        name="retrieve_memory_objects",
        description="Retrieve the user's saved strategies, watchlists, portfolio plans, trade setups or analyses.",
        parameters={
            "type": "object",
            "properties": {
                "type": {
                    "type": "string",
                    "description": "Object type, or \"*\" for all",
                    "enum": ["*", "strategy", "watchlist", "portfolio", "trade-setup", "market-analysis"],
                    "default": "*",
                },
                "name": {"type": "string", "description": "Optional partial name filter"},
            },
        },
        handler=retrieve_memory_objects,
        category="memory",
    ),
    ToolDefinition(
        name="remember_info",
        description="Store an important fact or preference the user shared, under a short key.",
        parameters={
            "type": "object",
            "properties": {
                "key": {"type": "string", "description": "Short snake_case key"},
                "value": {"type": "string", "description": "Value to remember"},
                "confidence": {"type": "number", "description": "Confidence 0-1 (default 1.0)", "default": 1.0},
                "source": {"type": "string", "enum": ["user", "llm"], "default": "llm"},
            },
            "required": ["key", "value"],
        },
        handler=remember_info,
        category="memory",
    ),
    ToolDefinition(
        name="store_user_name",
        description="Remember the user's name.",
        parameters={"type": "object", "properties": {"name": _STRING}, "required": ["name"]},
        handler=_profile_handler("user_name", "name"),
        category="profile",
    ),
    ToolDefinition(
        name="store_risk_tolerance",
        description="Remember the user's risk tolerance.",
        parameters={
            "type": "object",
            "properties": {"risk_level": {"type": "string", "enum": list(RISK_LEVELS)}},
            "required": ["risk_level"],
        },
        handler=_profile_handler("risk_tolerance", "risk_level", choices=RISK_LEVELS),
        category="profile",
    ),
    ToolDefinition(
        name="store_investment_timeframe",
        description="Remember the user's investment timeframe.",
        parameters={
            "type": "object",
            "properties": {"timeframe": {"type": "string", "enum": ["short", "medium", "long"]}},
            "required": ["timeframe"],
        },
        handler=_profile_handler("investment_timeframe", "timeframe", choices=("short", "medium", "long")),
        category="profile",
    ),
    ToolDefinition(
        name="store_favorite_tokens",
        description="Remember the user's favorite tokens (comma-separated symbols).",
        parameters={"type": "object", "properties": {"tokens": _STRING}, "required": ["tokens"]},
        handler=_profile_handler("favorite_tokens", "tokens", transform=parse_token_list),
        category="profile",
    ),
    ToolDefinition(
        name="store_investment_goals",
        description="Remember the user's investment goals.",
        parameters={"type": "object", "properties": {"goals": _STRING}, "required": ["goals"]},
        handler=_profile_handler("investment_goals", "goals"),
        category="profile",
    ),
    ToolDefinition(
        name="store_trading_experience",
        description="Remember the user's trading experience level.",
        parameters={
            "type": "object",
            "properties": {"level": {"type": "string", "enum": ["beginner", "intermediate", "advanced"]}},
            "required": ["level"],
        },
        handler=_profile_handler(
            "trading_experience", "level", choices=("beginner", "intermediate", "advanced")
        ),
        category="profile",
    ),
    ToolDefinition(
        name="store_notification_preferences",
        description="Remember how and when the user wants to be notified.",
        parameters={
            "type": "object",
            "properties": {"preferences": {"type": "object", "description": "Preference flags and values"}},
            "required": ["preferences"],
        },
        handler=_profile_handler("notification_preferences", "preferences", transform=_notification_preferences),
        category="profile",
    ),
    ToolDefinition(
        name="upsert_trading_strategy",
        description="Create or update a named trading strategy for the user.",
        parameters={
            "type": "object",
            "properties": {
                "name": _STRING,
                "description": _STRING,
                "tokens": {"type": "string", "description": "Comma-separated symbols or JSON array"},
                "timeframe": {"type": "string", "enum": list(STRATEGY_TIMEFRAMES)},
                "riskLevel": {"type": "string", "enum": list(RISK_LEVELS), "default": "medium"},
                "rules": {"type": "string", "description": "Optional entry/exit rules"},
            },
            "required": ["name", "description", "tokens", "timeframe"],
        },
        handler=upsert_trading_strategy,
        category="objects",
    ),
    ToolDefinition(
        name="upsert_token_watchlist",
        description="Create or update a named token watchlist.",
        parameters={
            "type": "object",
            "properties": {
                "name": _STRING,
                "tokens": {"type": "string", "description": "Comma-separated symbols or JSON array"},
                "description": _STRING,
            },
            "required": ["name", "tokens"],
        },
        handler=upsert_token_watchlist,
        category="objects",
    ),
    ToolDefinition(
        name="upsert_portfolio_plan",
        description="Create or update a portfolio allocation plan; percentages must sum to 100.",
        parameters={
            "type": "object",
            "properties": {
                "name": _STRING,
                "allocations": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "properties": {"token": _STRING, "percentage": {"type": "number"}},
                        "required": ["token", "percentage"],
                    },
                },
                "description": _STRING,
            },
            "required": ["name", "allocations"],
        },
        handler=upsert_portfolio_plan,
        category="objects",
    ),
    ToolDefinition(
        name="upsert_trade_setup",
        description="Create or update a trade setup (entry, direction, optional stop loss and take profit).",
        parameters={
            "type": "object",
            "properties": {
                "name": _STRING,
                "token": _STRING,
                "direction": {"type": "string", "enum": ["long", "short"]},
                "entryPrice": {"type": "number"},
                "stopLoss": {"type": "number"},
                "takeProfit": {"type": "number"},
                "notes": _STRING,
            },
            "required": ["name", "token", "direction", "entryPrice"],
        },
        handler=upsert_trade_setup,
        category="objects",
    ),
    ToolDefinition(
        name="upsert_market_analysis",
        description="Save a market analysis note under a title.",
        parameters={
            "type": "object",
            "properties": {"title": _STRING, "content": _STRING, "tokens": _STRING},
            "required": ["title", "content"],
        },
        handler=upsert_market_analysis,
        category="objects",
    ),
]
