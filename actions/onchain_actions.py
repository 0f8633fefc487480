"""Program and account lookups backed by the domain data API."""

import logging
from typing import Any, Dict

from utils.errors import ActionValidationError
from .context import ActionContext
from .market_actions import _client, _series
from .registry import ToolDefinition

logger = logging.getLogger(__name__)

TVL_RESOLUTIONS = ["1h", "1d", "1w", "1m", "1y"]


async def fetch_program_details(ctx: ActionContext, args: Dict[str, Any]) -> Dict[str, Any]:
    program_id = args["program_id"]
    details = await _client(ctx).fetch_by_identifier("program", program_id)
    return {"programId": program_id, "details": details}


async def fetch_program_active_users(ctx: ActionContext, args: Dict[str, Any]) -> Dict[str, Any]:
    program_id = args["program_id"]
    days = int(args.get("days") or 7)
    limit = int(args.get("limit") or 20)
    payload = await _client(ctx).fetch_by_identifier(
        "program_active_users", program_id, {"days": days, "limit": limit}
    )
    return {"programId": program_id, "days": days, "limit": limit, "activeUsers": _series(payload)}


async def fetch_program_tvl(ctx: ActionContext, args: Dict[str, Any]) -> Dict[str, Any]:
    program_id = args["program_id"]
    resolution = args.get("resolution") or "1d"
    if resolution not in TVL_RESOLUTIONS:
        raise ActionValidationError(f"resolution must be one of {', '.join(TVL_RESOLUTIONS)}")
    payload = await _client(ctx).fetch_by_identifier("program_tvl", program_id, {"resolution": resolution})
    return {"programId": program_id, "resolution": resolution, "tvl": _series(payload)}


async def fetch_program_ranking(ctx: ActionContext, args: Dict[str, Any]) -> Dict[str, Any]:
    limit = int(args.get("limit") or 20)
    page = int(args.get("page") or 0)
    payload = await _client(ctx).fetch_by_identifier("program_ranking", None, {"limit": limit, "page": page})
    return {"page": page, "limit": limit, "ranking": _series(payload)}


async def get_known_accounts(ctx: ActionContext, args: Dict[str, Any]) -> Dict[str, Any]:
    """Labeled accounts (exchanges, protocols, notable wallets), optionally filtered."""
    limit = int(args.get("limit") or 10)
    page = int(args.get("page") or 0)
    payload = await _client(ctx).fetch_by_identifier("known_accounts", None, {
        "ownerAddress": args.get("owner_address"),
        "labels": args.get("labels"),
        "entityName": args.get("entity_name"),
        "limit": limit,
        "page": page,
    })
    accounts = payload.get("accounts") if isinstance(payload, dict) and "accounts" in payload else _series(payload)
    return {
        "ownerAddress": args.get("owner_address") or "all",
        "labels": args.get("labels") or "all",
        "entityName": args.get("entity_name") or "all",
        "page": page,
        "limit": limit,
        "accounts": accounts,
    }


async def get_wallet_tokens_time_series(ctx: ActionContext, args: Dict[str, Any]) -> Dict[str, Any]:
    wallet = args["wallet_address"]
    days = int(args.get("days") or 30)
    payload = await _client(ctx).fetch_by_identifier("wallet_tokens_history", wallet, {"days": days})
    return {"wallet": wallet, "days": days, "timeSeries": _series(payload)}


_PROGRAM = {"type": "string", "description": "Program (smart contract) address"}

TOOLS = [
    ToolDefinition(
        name="fetch_program_details",
        description="Get details and basic metrics of a Solana program by its program id.",
        parameters={"type": "object", "properties": {"program_id": _PROGRAM}, "required": ["program_id"]},
        handler=fetch_program_details,
        category="onchain",
    ),
    ToolDefinition(
        name="fetch_program_active_users",
        description="List the most active wallets interacting with a program over recent days.",
        parameters={
            "type": "object",
            "properties": {
                "program_id": _PROGRAM,
                "days": {"type": "integer", "default": 7},
                "limit": {"type": "integer", "default": 20},
            },
            "required": ["program_id"],
        },
        handler=fetch_program_active_users,
        category="onchain",
    ),
    ToolDefinition(
        name="fetch_program_tvl",
        description="Get the total value locked time series of a DeFi program.",
        parameters={
            "type": "object",
            "properties": {
                "program_id": _PROGRAM,
                "resolution": {"type": "string", "enum": TVL_RESOLUTIONS, "default": "1d"},
            },
            "required": ["program_id"],
        },
        handler=fetch_program_tvl,
        category="onchain",
    ),
    ToolDefinition(
        name="fetch_program_ranking",
        description="Ranked list of Solana programs by activity.",
        parameters={
            "type": "object",
            "properties": {
                "limit": {"type": "integer", "default": 20},
                "page": {"type": "integer", "default": 0},
            },
        },
        handler=fetch_program_ranking,
        category="onchain",
    ),
    ToolDefinition(
        name="get_known_accounts",
        description="List labeled Solana accounts such as exchanges, protocols or notable wallets.",
        parameters={
            "type": "object",
            "properties": {
                "owner_address": {"type": "string"},
                "labels": {"type": "string", "description": "Comma-separated labels, e.g. CEX,DEFI"},
                "entity_name": {"type": "string", "description": "e.g. Coinbase, Raydium"},
                "limit": {"type": "integer", "default": 10},
                "page": {"type": "integer", "default": 0},
            },
        },
        handler=get_known_accounts,
        category="onchain",
    ),
    ToolDefinition(
        name="get_wallet_tokens_time_series",
        description="Daily token balances of a wallet over the past days.",
        parameters={
            "type": "object",
            "properties": {
                "wallet_address": {"type": "string", "description": "Wallet address"},
                "days": {"type": "integer", "default": 30},
            },
            "required": ["wallet_address"],
        },
        handler=get_wallet_tokens_time_series,
        category="onchain",
    ),
]
