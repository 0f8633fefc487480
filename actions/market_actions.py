"""Market data actions backed by the domain data API."""

import asyncio
import logging
import time
from typing import Any, Dict, List, Optional

import numpy as np
import pandas as pd

from utils.errors import ActionValidationError, ExternalServiceError
from .context import ActionContext
from .registry import ToolDefinition

logger = logging.getLogger(__name__)

PRICE_RESOLUTIONS = ["1m", "5m", "15m", "1h", "4h", "1d", "1w"]
TREND_TIMEFRAMES = {"day": (1, "1h"), "week": (7, "1d"), "month": (30, "1d")}
COMPARE_TIMEFRAMES = {"24h": (2, "1h"), "7d": (10, "1d"), "30d": (45, "1d")}
COMPARE_METRICS = ("price", "volume", "holders", "volatility")

RECOMMENDATION_POOL = 50
RECOMMENDATION_SORT_FIELDS = ("marketCap", "currentSupply", "name", "price", "price1d", "price7d", "symbol")
RECOMMENDATION_CRITERIA = ["marketCap", "volume", "trending", "growth", "price", "price1d", "price7d"]

# timeframe -> (days of daily history, days projected)
PREDICTION_TIMEFRAMES = {"24h": (7, 1), "7d": (30, 7), "30d": (90, 30)}
# confidence level -> band width in standard deviations
PREDICTION_SPREAD = {"low": 2.0, "medium": 1.5, "high": 1.0}
PREDICTION_DISCLAIMER = (
    "This prediction is based on historical data and simple trend analysis. Cryptocurrency markets "
    "are highly volatile and unpredictable. This should not be considered financial advice."
)

TRANSFER_WINDOWS = {"24h": 1, "7d": 7, "30d": 30}
TRANSFER_ANALYSES = ("volume", "frequency", "whales")
TRANSFER_SAMPLE = 200
WEEKDAYS = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"]


def _client(ctx: ActionContext):
    if ctx.market_data is None:
        raise ExternalServiceError("market_data", "no market data client configured")
    return ctx.market_data


def _series(payload: Any) -> List[Dict[str, Any]]:
    if isinstance(payload, dict):
        return payload.get("data") or []
    return payload if isinstance(payload, list) else []


def _first(record: Optional[Dict[str, Any]], *keys, default=None):
    for key in keys:
        if record and record.get(key) is not None:
            return record[key]
    return default


def _split(value: Any) -> List[str]:
    if isinstance(value, list):
        return [str(v).strip() for v in value if str(v).strip()]
    return [v.strip() for v in str(value or "").split(",") if v.strip()]


def _change(start: float, end: float, up: str, down: str) -> Dict[str, Any]:
    change = end - start
    percent = (change / start) * 100 if start else 0.0
    return {
        "start": start,
        "end": end,
        "change": change,
        "changePercent": percent,
        "trend": up if percent > 0 else (down if percent < 0 else "stable"),
    }


async def fetch_token_data(ctx: ActionContext, args: Dict[str, Any]) -> Dict[str, Any]:
    client = _client(ctx)
    address = args["token_address"]
    token = await client.fetch_by_identifier("token", address)
    holders = None
    if args.get("include_holders", True):
        try:
            holders = await client.fetch_by_identifier("token_holders", address, {"limit": 10})
        except ExternalServiceError as e:
            logger.warning(f"Holder data unavailable for {address}: {e}")
    return {"token": token, "holders": holders}


async def fetch_token_price_history(ctx: ActionContext, args: Dict[str, Any]) -> Dict[str, Any]:
    resolution = args.get("resolution") or "1d"
    if resolution not in PRICE_RESOLUTIONS:
        raise ActionValidationError(f"resolution must be one of {', '.join(PRICE_RESOLUTIONS)}")
    payload = await _client(ctx).fetch_by_identifier(
        "token_price_history", args["token_address"],
        {"resolution": resolution, "timeStart": args.get("time_start"), "timeEnd": args.get("time_end")}
    )
    return {"token_address": args["token_address"], "resolution": resolution, "data": _series(payload)}


async def fetch_token_holders_data(ctx: ActionContext, args: Dict[str, Any]) -> Any:
    return await _client(ctx).fetch_by_identifier(
        "token_holders", args["token_address"], {"limit": args.get("limit", 10)}
    )


async def fetch_wallet_data(ctx: ActionContext, args: Dict[str, Any]) -> Any:
    return await _client(ctx).fetch_by_identifier("wallet_tokens", args["wallet_address"])


async def fetch_wallet_pnl(ctx: ActionContext, args: Dict[str, Any]) -> Any:
    return await _client(ctx).fetch_by_identifier(
        "wallet_pnl", args["wallet_address"], {"days": args.get("days")}
    )


async def fetch_top_tokens(ctx: ActionContext, args: Dict[str, Any]) -> Any:
    sort_by = args.get("sort_by") or "marketCap"
    order = (args.get("order") or "desc").lower()
    sort_param = "sortByAsc" if order == "asc" else "sortByDesc"
    return await _client(ctx).fetch_by_identifier(
        "top_tokens", None,
        {sort_param: sort_by, "limit": args.get("limit", 10), "page": args.get("page", 0)}
    )


async def analyze_token_trend(ctx: ActionContext, args: Dict[str, Any]) -> Dict[str, Any]:
    client = _client(ctx)
    address = args["token_address"]
    timeframe = (args.get("timeframe") or "week").lower()
    days, resolution = TREND_TIMEFRAMES.get(timeframe, TREND_TIMEFRAMES["week"])
    metrics = _split(args.get("metrics") or "price,volume,holders")
    start_time = int(time.time()) - days * 24 * 60 * 60

    requests_by_key = {"details": client.fetch_by_identifier("token", address)}
    if "price" in metrics:
        requests_by_key["price"] = client.fetch_by_identifier(
            "token_price_history", address, {"resolution": resolution, "timeStart": start_time, "limit": 50}
        )
    if "volume" in metrics:
        requests_by_key["volume"] = client.fetch_by_identifier(
            "token_volume_history", address, {"startTime": start_time, "interval": resolution, "limit": 50}
        )
    if "holders" in metrics:
        requests_by_key["holders"] = client.fetch_by_identifier(
            "token_holders_history", address, {"startTime": start_time, "interval": resolution, "limit": 50}
        )
    payloads = dict(zip(requests_by_key, await asyncio.gather(*requests_by_key.values())))

    details = payloads["details"] if isinstance(payloads["details"], dict) else {}
    analysis = {
        "token": address,
        "tokenName": details.get("name") or "Unknown",
        "tokenSymbol": details.get("symbol") or "Unknown",
        "timeframe": timeframe,
        "metrics": metrics,
        "summary": {},
        "trends": {},
    }

    prices = _series(payloads.get("price"))
    if len(prices) >= 2:
        analysis["summary"]["price"] = _change(float(prices[0]["close"]), float(prices[-1]["close"]), "up", "down")
        analysis["trends"]["price"] = [
            {k: p.get(k) for k in ("time", "open", "high", "low", "close")} for p in prices
        ]

    volumes = _series(payloads.get("volume"))
    if len(volumes) >= 2:
        total = sum(float(v.get("volume") or 0) for v in volumes)
        analysis["summary"]["volume"] = {"total": total, "average": total / len(volumes)}
        analysis["trends"]["volume"] = [{"time": v.get("time"), "volume": v.get("volume")} for v in volumes]

    holders = _series(payloads.get("holders"))
    if len(holders) >= 2:
        analysis["summary"]["holders"] = _change(
            float(holders[0]["holders"]), float(holders[-1]["holders"]), "growing", "shrinking"
        )
        analysis["trends"]["holders"] = [{"time": h.get("time"), "holders": h.get("holders")} for h in holders]

    return analysis


def _volatility(closes: List[float]) -> float:
    """Population standard deviation of period returns."""
    closes_arr = np.asarray(closes, dtype=float)
    if closes_arr.size < 2:
        return 0.0
    previous = closes_arr[:-1]
    mask = previous > 0
    if not mask.any():
        return 0.0
    returns = (closes_arr[1:][mask] - previous[mask]) / previous[mask]
    return float(np.std(returns))


async def _compare_one(ctx: ActionContext, address: str, metrics: List[str], resolution: str, start_time: int):
    client = _client(ctx)
    details = await client.fetch_by_identifier("token", address)
    details = details if isinstance(details, dict) else {}
    entry = {
        "address": address,
        "name": details.get("name") or "Unknown",
        "symbol": details.get("symbol") or "Unknown",
        "currentPrice": _first(details, "price", "price_usd", default=0),
        "volume24h": _first(details, "usdValueVolume24h", "volume_24h", default=0),
        "priceChange24h": _first(details, "price_change_24h", "priceChange24h", default=0),
    }

    if "holders" in metrics:
        try:
            holders = await client.fetch_by_identifier("token_holders", address, {"limit": 1})
            entry["totalHolders"] = _first(holders if isinstance(holders, dict) else None, "total", default=0)
        except ExternalServiceError:
            entry["totalHolders"] = 0

    if "price" in metrics or "volatility" in metrics:
        try:
            history = await client.fetch_by_identifier(
                "token_price_history", address, {"resolution": resolution, "timeStart": start_time, "limit": 100}
            )
            prices = _series(history)
        except ExternalServiceError:
            prices = []
        entry["priceHistory"] = [{"time": p.get("time"), "price": p.get("close")} for p in prices]
        entry["volatility"] = _volatility([float(p["close"]) for p in prices if p.get("close") is not None])

    return entry


async def compare_tokens(ctx: ActionContext, args: Dict[str, Any]) -> Dict[str, Any]:
    addresses = _split(args["token_addresses"])
    if len(addresses) < 2:
        raise ActionValidationError("At least two token addresses are required for comparison")

    metrics = [m.lower() for m in _split(args.get("metrics") or ",".join(COMPARE_METRICS)) if m.lower() in COMPARE_METRICS]
    timeframe = (args.get("timeframe") or "7d").lower()
    days, resolution = COMPARE_TIMEFRAMES.get(timeframe, COMPARE_TIMEFRAMES["7d"])
    start_time = int(time.time()) - days * 24 * 60 * 60

    tokens = [await _compare_one(ctx, address, metrics, resolution, start_time) for address in addresses]

    comparison = {
        "tokens": [{k: t[k] for k in ("address", "name", "symbol")} for t in tokens],
        "timeframe": timeframe,
        "metrics": {},
        "rankings": {},
    }

    def rank(field: str, ascending: bool = False):
        ordered = sorted(tokens, key=lambda t: t.get(field) or 0, reverse=not ascending)
        return [{"token": t["symbol"], "value": t.get(field) or 0} for t in ordered]

    if "price" in metrics:
        comparison["metrics"]["price"] = [
            {
                "token": t["symbol"],
                "currentPrice": t["currentPrice"],
                "priceChange24h": t["priceChange24h"],
                "priceHistory": t.get("priceHistory", []),
            }
            for t in tokens
        ]
        comparison["rankings"]["price"] = rank("priceChange24h")
    if "volume" in metrics:
        comparison["metrics"]["volume"] = [{"token": t["symbol"], "volume24h": t["volume24h"]} for t in tokens]
        comparison["rankings"]["volume"] = rank("volume24h")
    if "holders" in metrics:
        comparison["metrics"]["holders"] = [{"token": t["symbol"], "totalHolders": t.get("totalHolders", 0)} for t in tokens]
        comparison["rankings"]["holders"] = rank("totalHolders")
    if "volatility" in metrics:
        comparison["metrics"]["volatility"] = [
            {"token": t["symbol"], "volatility": t.get("volatility", 0), "volatilityPercent": t.get("volatility", 0) * 100}
            for t in tokens
        ]
        # lower volatility ranks first
        comparison["rankings"]["volatility"] = rank("volatility", ascending=True)

    return comparison


async def fetch_token_transfers(ctx: ActionContext, args: Dict[str, Any]) -> Dict[str, Any]:
    address = args["token_address"]
    limit = int(args.get("limit") or 20)
    page = int(args.get("page") or 0)
    payload = await _client(ctx).fetch_by_identifier("token_transfers", None, {
        "mintAddress": address,
        "walletAddress": args.get("wallet_address"),
        "minUsdAmount": args.get("min_usd_amount"),
        "maxUsdAmount": args.get("max_usd_amount"),
        "timeStart": args.get("time_start"),
        "timeEnd": args.get("time_end"),
        "limit": limit,
        "page": page,
    })
    return {
        "token": address,
        "wallet": args.get("wallet_address") or "all wallets",
        "page": page,
        "limit": limit,
        "transfers": _transfers(payload),
    }


async def fetch_market_info(ctx: ActionContext, args: Dict[str, Any]) -> Dict[str, Any]:
    """The markets endpoint has no single-market lookup, so the listing is filtered by id."""
    market_id = args["market_id"]
    payload = await _client(ctx).fetch_by_identifier("markets", None, {"programId": args.get("program_id")})
    markets = _series(payload)
    market = next((m for m in markets if _first(m, "marketId", "id") == market_id), None)
    return {"marketId": market_id, "programId": args.get("program_id"), "marketInfo": market}


async def fetch_pair_ohlcv(ctx: ActionContext, args: Dict[str, Any]) -> Dict[str, Any]:
    resolution = args.get("resolution") or "1d"
    if resolution not in PRICE_RESOLUTIONS:
        raise ActionValidationError(f"resolution must be one of {', '.join(PRICE_RESOLUTIONS)}")
    base, quote = args["base_mint_address"], args["quote_mint_address"]
    payload = await _client(ctx).fetch_by_identifier("pair_ohlcv", f"{base}+{quote}", {
        "programId": args.get("program_id"),
        "resolution": resolution,
        "timeStart": args.get("time_start"),
        "timeEnd": args.get("time_end"),
        "limit": args.get("limit", 100),
    })
    return {"baseMint": base, "quoteMint": quote, "resolution": resolution, "data": _series(payload)}


def _recommendation_sort_field(criteria: str, timeframe: str) -> str:
    if criteria == "growth":
        return "price1d" if timeframe == "short" else "price7d"
    if criteria in RECOMMENDATION_SORT_FIELDS:
        return criteria
    # volume and trending have no sort field of their own
    return "marketCap"


def _passes_risk(token: Dict[str, Any], risk_level: str) -> bool:
    market_cap = float(_first(token, "marketCap", "market_cap", default=0))
    if risk_level == "low":
        return market_cap > 100_000 or float(_first(token, "holders", default=0)) > 100
    if risk_level == "medium":
        return market_cap > 10_000 or float(_first(token, "volume_24h", "usdValueVolume24h", default=0)) > 1_000
    return True


def _recommendation(token: Dict[str, Any], criteria: str, timeframe: str) -> Dict[str, Any]:
    market_cap = float(_first(token, "marketCap", "market_cap", default=0))
    volume = float(_first(token, "volume_24h", "usdValueVolume24h", default=0))
    change_1d = float(_first(token, "price_change_1d", "price_change_24h", default=0))
    change_7d = float(_first(token, "price_change_7d", default=0))

    if criteria in ("volume", "trending"):
        reason = f"Market Cap: ${market_cap:,.0f}, 24h Vol: ${volume:,.0f}, 1d Change: {change_1d:.2f}%"
    elif criteria == "growth":
        window, change = ("1d", change_1d) if timeframe == "short" else ("7d", change_7d)
        reason = f"Price Change ({window}): {change:.2f}%, Market Cap: ${market_cap:,.0f}"
    else:
        reason = f"Market Cap: ${market_cap:,.0f}, 1d Change: {change_1d:.2f}%"

    return {
        "name": token.get("name") or "Unknown",
        "symbol": token.get("symbol") or "Unknown",
        "address": _first(token, "mintAddress", "address"),
        "price_usd": _first(token, "price", "price_usd", default=0),
        "volume_24h": volume,
        "price_change_1d": change_1d,
        "price_change_7d": change_7d,
        "holders": _first(token, "holders", default=0),
        "marketCap": market_cap,
        "reason": reason,
    }


async def recommend_tokens(ctx: ActionContext, args: Dict[str, Any]) -> Dict[str, Any]:
    """
    Rank top tokens for a risk profile and investment timeframe.

    Tokens are listed by the field the criteria maps to, filtered by risk
    level (falling back to the unfiltered list when nothing passes), then
    re-sorted: short timeframes by absolute 24h move, long ones by market
    cap and holders.
    """
    criteria = args.get("criteria") or "marketCap"
    risk_level = (args.get("risk_level") or "medium").lower()
    timeframe = (args.get("timeframe") or "medium").lower()
    limit = int(args.get("limit") or 5)
    sort_field = _recommendation_sort_field(criteria, timeframe)

    payload = await _client(ctx).fetch_by_identifier(
        "top_tokens", None, {"sortByDesc": sort_field, "limit": RECOMMENDATION_POOL}
    )
    tokens = _series(payload)
    candidates = [t for t in tokens if _passes_risk(t, risk_level)]
    if not candidates:
        if tokens:
            logger.warning(f"No tokens passed the {risk_level} risk filter; using the unfiltered list")
        candidates = tokens

    if timeframe == "short":
        candidates = sorted(candidates, key=lambda t: abs(float(_first(t, "price_change_24h", default=0))), reverse=True)
    elif timeframe == "long":
        candidates = sorted(
            candidates,
            key=lambda t: (float(_first(t, "marketCap", "market_cap", default=0)), float(_first(t, "holders", default=0))),
            reverse=True,
        )

    recommendations = [_recommendation(t, criteria, timeframe) for t in candidates[:limit]]
    return {
        "criteria": criteria,
        "risk_level": risk_level,
        "timeframe": timeframe,
        "count": len(recommendations),
        "recommendations": recommendations,
        "filtersApplied": {"sortBy": sort_field, "risk_level": risk_level, "timeframe": timeframe},
    }


async def get_price_prediction(ctx: ActionContext, args: Dict[str, Any]) -> Dict[str, Any]:
    """Project the price forward from a recency-weighted daily trend, with a band of standard deviations."""
    client = _client(ctx)
    address = args["token_address"]
    timeframe = (args.get("timeframe") or "24h").lower()
    history_days, horizon_days = PREDICTION_TIMEFRAMES.get(timeframe, PREDICTION_TIMEFRAMES["24h"])
    spread = PREDICTION_SPREAD.get((args.get("confidence_level") or "medium").lower(), PREDICTION_SPREAD["medium"])
    start_time = int(time.time()) - history_days * 24 * 60 * 60

    details, history = await asyncio.gather(
        client.fetch_by_identifier("token", address),
        client.fetch_by_identifier(
            "token_price_history", address, {"resolution": "1d", "timeStart": start_time, "limit": history_days + 10}
        ),
    )
    details = details if isinstance(details, dict) else {}
    closes = np.asarray([float(p["close"]) for p in _series(history) if p.get("close") is not None], dtype=float)

    current = _first(details, "price", "price_usd")
    if current is None:
        current = float(closes[-1]) if closes.size else 0.0
    current = float(current)

    mean = float(closes.mean()) if closes.size else 0.0
    std = float(closes.std()) if closes.size else 0.0
    # later days weigh more: change i gets weight i
    diffs = np.diff(closes)
    daily_trend = float(np.average(diffs, weights=np.arange(1, closes.size))) if diffs.size else 0.0

    predicted = current + daily_trend * horizon_days
    if closes.size < 5:
        confidence = "very low"
    else:
        relative = std / mean if mean else float("inf")
        confidence = "low" if relative > 0.15 else ("medium" if relative > 0.07 else "high")

    return {
        "token": address,
        "tokenName": details.get("name") or "Unknown",
        "tokenSymbol": details.get("symbol") or "Unknown",
        "currentPrice": current,
        "timeframe": timeframe,
        "prediction": {
            "predictedPrice": max(predicted, 0.0),
            "rangeLow": max(predicted - std * spread, 0.0),
            "rangeHigh": max(predicted + std * spread, 0.0),
            "percentChange": (predicted - current) / current * 100 if current > 0 else 0.0,
            "confidence": confidence,
            "trend": "upward" if daily_trend > 0 else ("downward" if daily_trend < 0 else "stable"),
        },
        "disclaimer": PREDICTION_DISCLAIMER,
    }


def _transfers(payload: Any) -> List[Dict[str, Any]]:
    if isinstance(payload, dict) and isinstance(payload.get("transfers"), list):
        return payload["transfers"]
    return _series(payload)


def _transfer_frame(transfers: List[Dict[str, Any]]) -> pd.DataFrame:
    frame = pd.DataFrame({
        "time": [float(_first(t, "blockTime", "block_time", default=0)) for t in transfers],
        "usd": [float(_first(t, "valueUsd", "amount_usd", default=0)) for t in transfers],
        "sender": [_first(t, "senderAddress", "sender_address", default="unknown") for t in transfers],
        "receiver": [_first(t, "receiverAddress", "receiver_address", default="unknown") for t in transfers],
    }).astype({"time": float, "usd": float})
    frame["when"] = pd.to_datetime(frame["time"], unit="s", utc=True)
    return frame


def _volume_analysis(frame: pd.DataFrame, window: str) -> Dict[str, Any]:
    period_format = "%Y-%m-%d %H:00" if window == "24h" else "%Y-%m-%d"
    grouped = frame.groupby(frame["when"].dt.strftime(period_format))["usd"].agg(["count", "sum"])
    total = float(frame["usd"].sum())
    return {
        "type": "volume",
        "totalVolume": total,
        "transactionCount": len(frame),
        "avgTransactionSize": total / len(frame) if len(frame) else 0.0,
        "volumeByPeriod": [
            {"period": period, "count": int(row["count"]), "volume": float(row["sum"])}
            for period, row in grouped.iterrows()
        ],
    }


def _frequency_analysis(frame: pd.DataFrame, window: str) -> Dict[str, Any]:
    hourly = frame["when"].dt.hour.value_counts().reindex(range(24), fill_value=0)
    daily = frame["when"].dt.dayofweek.value_counts().reindex(range(7), fill_value=0)
    peak = None
    if len(frame):
        peak_hour = int(hourly.idxmax())
        peak = {"hour": f"{peak_hour}:00 - {peak_hour}:59", "day": WEEKDAYS[int(daily.idxmax())]}
    return {
        "type": "frequency",
        "transactionCount": len(frame),
        "averagePerDay": len(frame) / TRANSFER_WINDOWS[window],
        "hourlyDistribution": [int(v) for v in hourly],
        "dailyDistribution": [int(v) for v in daily],
        "peakActivity": peak,
    }


def _whale_analysis(frame: pd.DataFrame) -> Dict[str, Any]:
    wallets: Dict[str, Dict[str, Any]] = {}

    def wallet(address: str) -> Dict[str, Any]:
        if address not in wallets:
            wallets[address] = {
                "address": address, "sentCount": 0, "sentVolume": 0.0, "receivedCount": 0, "receivedVolume": 0.0,
            }
        return wallets[address]

    for row in frame.itertuples(index=False):
        sender = wallet(row.sender)
        sender["sentCount"] += 1
        sender["sentVolume"] += row.usd
        receiver = wallet(row.receiver)
        receiver["receivedCount"] += 1
        receiver["receivedVolume"] += row.usd

    for entry in wallets.values():
        entry["netFlow"] = entry["receivedVolume"] - entry["sentVolume"]
        entry["totalVolume"] = entry["receivedVolume"] + entry["sentVolume"]

    entries = list(wallets.values())
    return {
        "type": "whales",
        "transactionCount": len(frame),
        "uniqueWallets": len(entries),
        "topByVolume": sorted(entries, key=lambda e: e["totalVolume"], reverse=True)[:10],
        "topNetBuyers": sorted(entries, key=lambda e: e["netFlow"], reverse=True)[:5],
        "topNetSellers": sorted(entries, key=lambda e: e["netFlow"])[:5],
    }


async def get_token_transfers_analysis(ctx: ActionContext, args: Dict[str, Any]) -> Dict[str, Any]:
    address = args["token_address"]
    window = (args.get("time_window") or "24h").lower()
    if window not in TRANSFER_WINDOWS:
        window = "24h"
    analysis_type = (args.get("analysis_type") or "volume").lower()
    if analysis_type not in TRANSFER_ANALYSES:
        raise ActionValidationError(f"analysis_type must be one of {', '.join(TRANSFER_ANALYSES)}")
    min_amount = args.get("min_amount") or 0

    payload = await _client(ctx).fetch_by_identifier("token_transfers", None, {
        "mintAddress": address,
        "minUsdAmount": min_amount,
        "timeStart": int(time.time()) - TRANSFER_WINDOWS[window] * 24 * 60 * 60,
        "limit": TRANSFER_SAMPLE,
    })
    frame = _transfer_frame(_transfers(payload))

    if analysis_type == "volume":
        analysis = _volume_analysis(frame, window)
    elif analysis_type == "frequency":
        analysis = _frequency_analysis(frame, window)
    else:
        analysis = _whale_analysis(frame)

    return {
        "token": address,
        "timeWindow": window,
        "minAmount": min_amount,
        "analysisType": analysis_type,
        "transactionsAnalyzed": len(frame),
        "analysis": analysis,
    }


_ADDRESS = {"type": "string", "description": "Token mint address"}
_WALLET = {"type": "string", "description": "Wallet address"}

TOOLS = [
    ToolDefinition(
        name="fetch_token_data",
        description="Get current details for a token (price, market cap, supply) and optionally its top holders.",
        parameters={
            "type": "object",
            "properties": {
                "token_address": _ADDRESS,
                "include_holders": {"type": "boolean", "default": True},
            },
            "required": ["token_address"],
        },
        handler=fetch_token_data,
        category="market",
    ),
    ToolDefinition(
        name="fetch_token_price_history",
        description="Get OHLC price history for a token.",
        parameters={
            "type": "object",
            "properties": {
                "token_address": _ADDRESS,
                "resolution": {"type": "string", "enum": PRICE_RESOLUTIONS, "default": "1d"},
                "time_start": {"type": "integer", "description": "Unix seconds"},
                "time_end": {"type": "integer", "description": "Unix seconds"},
            },
            "required": ["token_address"],
        },
        handler=fetch_token_price_history,
        category="market",
    ),
    ToolDefinition(
        name="fetch_token_holders_data",
        description="Get the top holders of a token.",
        parameters={
            "type": "object",
            "properties": {"token_address": _ADDRESS, "limit": {"type": "integer", "default": 10}},
            "required": ["token_address"],
        },
        handler=fetch_token_holders_data,
        category="market",
    ),
    ToolDefinition(
        name="fetch_wallet_data",
        description="Get the token balances held by a wallet.",
        parameters={"type": "object", "properties": {"wallet_address": _WALLET}, "required": ["wallet_address"]},
        handler=fetch_wallet_data,
        category="market",
    ),
    ToolDefinition(
        name="fetch_wallet_pnl",
        description="Get realized and unrealized profit and loss for a wallet.",
        parameters={
            "type": "object",
            "properties": {"wallet_address": _WALLET, "days": {"type": "integer"}},
            "required": ["wallet_address"],
        },
        handler=fetch_wallet_pnl,
        category="market",
    ),
    ToolDefinition(
        name="fetch_top_tokens",
        description="List top Solana tokens sorted by a market field.",
        parameters={
            "type": "object",
            "properties": {
                "sort_by": {"type": "string", "default": "marketCap"},
                "order": {"type": "string", "enum": ["asc", "desc"], "default": "desc"},
                "limit": {"type": "integer", "default": 10},
                "page": {"type": "integer", "default": 0},
            },
        },
        handler=fetch_top_tokens,
        category="market",
    ),
    ToolDefinition(
        name="analyze_token_trend",
        description="Summarize a token's price, volume and holder trends over a day, week or month.",
        parameters={
            "type": "object",
            "properties": {
                "token_address": _ADDRESS,
                "timeframe": {"type": "string", "enum": list(TREND_TIMEFRAMES), "default": "week"},
                "metrics": {"type": "string", "description": "Comma-separated: price,volume,holders"},
            },
            "required": ["token_address"],
        },
        handler=analyze_token_trend,
        category="market",
    ),
    ToolDefinition(
        name="compare_tokens",
        description="Compare two or more tokens on price, volume, holders and volatility.",
        parameters={
            "type": "object",
            "properties": {
                "token_addresses": {"type": "string", "description": "Comma-separated mint addresses (at least two)"},
                "metrics": {"type": "string", "description": "Comma-separated: price,volume,holders,volatility"},
                "timeframe": {"type": "string", "enum": list(COMPARE_TIMEFRAMES), "default": "7d"},
            },
            "required": ["token_addresses"],
        },
        handler=compare_tokens,
        category="market",
    ),
    ToolDefinition(
        name="fetch_token_transfers",
        description="List transfers of a token, optionally filtered by wallet, USD amount and time range.",
        parameters={
            "type": "object",
            "properties": {
                "token_address": _ADDRESS,
                "wallet_address": _WALLET,
                "min_usd_amount": {"type": "number"},
                "max_usd_amount": {"type": "number"},
                "time_start": {"type": "integer", "description": "Unix seconds"},
                "time_end": {"type": "integer", "description": "Unix seconds"},
                "limit": {"type": "integer", "default": 20},
                "page": {"type": "integer", "default": 0},
            },
            "required": ["token_address"],
        },
        handler=fetch_token_transfers,
        category="market",
    ),
    ToolDefinition(
        name="fetch_market_info",
        description="Get details of a DEX market or liquidity pool by its market id.",
        parameters={
            "type": "object",
            "properties": {
                "market_id": {"type": "string", "description": "Market or pool address"},
                "program_id": {"type": "string", "description": "DEX program hosting the market"},
            },
            "required": ["market_id"],
        },
        handler=fetch_market_info,
        category="market",
    ),
    ToolDefinition(
        name="fetch_pair_ohlcv",
        description="Get OHLCV candles for a trading pair given its base and quote mint addresses.",
        parameters={
            "type": "object",
            "properties": {
                "base_mint_address": _ADDRESS,
                "quote_mint_address": _ADDRESS,
                "program_id": {"type": "string", "description": "Restrict to one DEX program"},
                "resolution": {"type": "string", "enum": PRICE_RESOLUTIONS, "default": "1d"},
                "time_start": {"type": "integer", "description": "Unix seconds"},
                "time_end": {"type": "integer", "description": "Unix seconds"},
                "limit": {"type": "integer", "default": 100},
            },
            "required": ["base_mint_address", "quote_mint_address"],
        },
        handler=fetch_pair_ohlcv,
        category="market",
    ),
    ToolDefinition(
        name="recommend_tokens",
        description=(
            "Recommend Solana tokens for a risk level and investment timeframe. "
            "Use this when the user asks for investment ideas or what to buy."
        ),
        parameters={
            "type": "object",
            "properties": {
                "criteria": {"type": "string", "enum": RECOMMENDATION_CRITERIA, "default": "marketCap"},
                "risk_level": {"type": "string", "enum": ["low", "medium", "high"], "default": "medium"},
                "timeframe": {"type": "string", "enum": ["short", "medium", "long"], "default": "medium"},
                "limit": {"type": "integer", "default": 5},
            },
        },
        handler=recommend_tokens,
        category="market",
    ),
    ToolDefinition(
        name="get_price_prediction",
        description="Statistical price projection for a token from its recent trend and volatility. Not financial advice.",
        parameters={
            "type": "object",
            "properties": {
                "token_address": _ADDRESS,
                "timeframe": {"type": "string", "enum": list(PREDICTION_TIMEFRAMES), "default": "24h"},
                "confidence_level": {"type": "string", "enum": list(PREDICTION_SPREAD), "default": "medium"},
            },
            "required": ["token_address"],
        },
        handler=get_price_prediction,
        category="market",
    ),
    ToolDefinition(
        name="get_token_transfers_analysis",
        description="Analyze a token's recent transfers by volume, frequency or whale activity.",
        parameters={
            "type": "object",
            "properties": {
                "token_address": _ADDRESS,
                "time_window": {"type": "string", "enum": list(TRANSFER_WINDOWS), "default": "24h"},
                "min_amount": {"type": "number", "default": 0},
                "analysis_type": {"type": "string", "enum": list(TRANSFER_ANALYSES), "default": "volume"},
            },
            "required": ["token_address"],
        },
        handler=get_token_transfers_analysis,
        category="market",
    ),
]
