"""Solana market data provider over the Vybe Network REST API."""

import asyncio
import logging
from typing import Any, Dict, Optional

import requests

from utils.errors import ExternalServiceError
from utils.retry import RetryPolicy

logger = logging.getLogger(__name__)

# kind -> path template; "{id}" is a token mint, wallet, program address or "base+quote" pair
ENDPOINTS: Dict[str, str] = {
    "token": "/token/{id}",
    "token_holders": "/token/{id}/top-holders",
    "token_price_history": "/price/{id}/token-ohlcv",
    "token_volume_history": "/token/{id}/transfer-volume",
    "token_holders_history": "/token/{id}/holders-ts",
    "wallet_tokens": "/account/token-balance/{id}",
    "wallet_pnl": "/account/pnl/{id}",
    "top_tokens": "/tokens",
    "token_transfers": "/token/transfers",
    "wallet_tokens_history": "/account/token-balance-ts/{id}",
    "known_accounts": "/account/known-accounts",
    "program": "/program/{id}",
    "program_active_users": "/program/{id}/active-users",
    "program_tvl": "/program/{id}/tvl",
    "program_ranking": "/program/ranking",
    "markets": "/price/markets",
    "pair_ohlcv": "/price/{id}/pair-ohlcv",
}


class MarketDataClient:
    """
    Domain data API client.

    Only action handlers call this; it exposes a single generic
    `fetch_by_identifier` entry point keyed by data kind.
    """

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        timeout: int = 10,
        retry_policy: Optional[RetryPolicy] = None
    ):
        """
        Initialize market data client.

        Args:
            base_url: API base URL (e.g., https://api.vybenetwork.xyz)
            api_key: Optional API key sent as X-API-KEY
            timeout: Request timeout in seconds (default: 10)
            retry_policy: Retry policy for transient failures
        """
        self.base_url = base_url.rstrip('/')
        self.api_key = api_key
        self.timeout = timeout
        self.retry_policy = retry_policy or RetryPolicy()
        self._last_error: Optional[str] = None

    def _get_headers(self) -> dict:
        """Build request headers."""
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["X-API-KEY"] = self.api_key
        return headers

    def _handle_error(self, error: ExternalServiceError, context: str) -> ExternalServiceError:
        """Record and log an API error, returning it for raising."""
        self._last_error = str(error)
        logger.warning(f"Market data API error during {context}: {error}")
        return error

    def _get(self, kind: str, identifier: Optional[str], params: Dict[str, Any]) -> Any:
        if kind not in ENDPOINTS:
            raise ValueError(f"Unknown market data kind: {kind}")
        path = ENDPOINTS[kind].format(id=identifier or "")
        url = f"{self.base_url}{path}"
        context = f"{kind} {identifier or ''}".strip()

        try:
            response = requests.get(
                url,
                params={k: v for k, v in params.items() if v is not None},
                headers=self._get_headers(),
                timeout=self.timeout
            )
        except requests.exceptions.Timeout as e:
            raise self._handle_error(ExternalServiceError("market_data", f"timeout: {e}", retryable=True), context)
        except requests.exceptions.RequestException as e:
            raise self._handle_error(ExternalServiceError("market_data", str(e), retryable=True), context)

        if response.status_code == 429 or response.status_code >= 500:
            raise self._handle_error(ExternalServiceError(
                "market_data", f"API returned status {response.status_code}",
                retryable=True, status_code=response.status_code
            ), context)

        if response.status_code != 200:
            raise self._handle_error(ExternalServiceError(
                "market_data", f"API returned status {response.status_code}: {response.text[:200]}",
                retryable=False, status_code=response.status_code
            ), context)

        try:
            return response.json()
        except ValueError as e:
            raise self._handle_error(ExternalServiceError("market_data", f"invalid JSON: {e}"), context)

    async def _fetch(self, kind: str, identifier: Optional[str], params: Dict[str, Any]) -> Any:
        return await asyncio.to_thread(self._get, kind, identifier, params)

    async def fetch_by_identifier(
        self,
        kind: str,
        identifier: Optional[str] = None,
        options: Optional[Dict[str, Any]] = None
    ) -> Any:
        """
        Fetch a domain object.

        Args:
            kind: One of ENDPOINTS (token, token_holders, wallet_pnl, ...)
            identifier: Address for the kind's path (unused for list kinds such as top_tokens)
            options: Query parameters forwarded to the API

        Returns:
            Decoded JSON payload

        Raises:
            ExternalServiceError: On transport errors or non-200 responses
        """
        result = await self.retry_policy.run(self._fetch, kind, identifier, options or {})
        self._last_error = None
        return result

    def last_error(self) -> Optional[str]:
        return self._last_error
