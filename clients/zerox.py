"""
0x Swap API quote client (allowance-holder flow, API v2).
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Dict, Optional

import httpx

from helpers.unified_logger import get_client_logger

from .base import BaseQuoteClient
from .base_models import ETH_ADDRESS, SwapQuote, query_retry


ZEROX_API_BASE = "https://api.0x.org"
QUOTE_PATH = "/swap/allowance-holder/quote"
DEFAULT_SLIPPAGE_BPS = 100
PRICE_PROBE_WEI = 10**15  # 0.001 ETH

CHAIN_IDS: Dict[str, int] = {
    "ethereum": 1,
    "base": 8453,
    "arbitrum": 42161,
    "optimism": 10,
}


class RetryableQuoteError(Exception):
    """Rate limit or server-side failure worth retrying."""


class ZeroXQuoteClient(BaseQuoteClient):
    """
    Quote client for the 0x Swap API.

    Transport errors, 429 and 5xx responses are retried with exponential
    backoff; anything else (and exhausted retries) yields ``None``.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        *,
        chain: str = "base",
        base_url: str = ZEROX_API_BASE,
        slippage_bps: int = DEFAULT_SLIPPAGE_BPS,
        timeout: float = 30.0,
        max_attempts: int = 3,
        min_wait: float = 0.5,
        max_wait: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        if chain not in CHAIN_IDS:
            raise ValueError(f"Unsupported chain '{chain}'. Supported: {', '.join(sorted(CHAIN_IDS))}")
        self.chain = chain
        self.slippage_bps = slippage_bps
        self.logger = get_client_logger("zerox", chain=chain)
        self._token_decimals: Dict[str, int] = {}

        headers = {"Accept": "application/json", "0x-version": "v2"}
        if api_key:
            headers["0x-api-key"] = api_key

        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers=headers,
            timeout=httpx.Timeout(timeout),
            transport=transport,
        )
        self._fetch_quote = query_retry(
            default_return=None,
            exception_type=(httpx.TransportError, RetryableQuoteError),
            max_attempts=max_attempts,
            min_wait=min_wait,
            max_wait=max_wait,
        )(self._request_quote)

    def set_chain(self, chain: str) -> None:
        if chain not in CHAIN_IDS:
            raise ValueError(f"Unsupported chain '{chain}'")
        self.chain = chain
        self.logger = self.logger.with_context(chain=chain)

    def register_token(self, token: str, decimals: int) -> None:
        """Record token decimals used for price derivation (default 18)."""
        self._token_decimals[token.lower()] = decimals

    # ------------------------------------------------------------------ #
    # Quotes
    # ------------------------------------------------------------------ #
    async def get_buy_quote(self, token: str, eth_amount: int, taker: str) -> Optional[SwapQuote]:
        return await self._quote(ETH_ADDRESS, token, eth_amount, taker)

    async def get_sell_quote(self, token: str, token_amount: int, taker: str) -> Optional[SwapQuote]:
        return await self._quote(token, ETH_ADDRESS, token_amount, taker)

    async def get_token_price(self, token: str, taker: str) -> Optional[Decimal]:
        """Price per whole token implied by a small buy quote."""
        quote = await self.get_buy_quote(token, PRICE_PROBE_WEI, taker)
        if quote is None or quote.buy_amount <= 0:
            return None
        decimals = self._token_decimals.get(token.lower(), 18)
        eth_spent = Decimal(PRICE_PROBE_WEI) / Decimal(10**18)
        tokens = Decimal(quote.buy_amount) / Decimal(10**decimals)
        return eth_spent / tokens

    async def _quote(self, sell_token: str, buy_token: str, sell_amount: int, taker: str) -> Optional[SwapQuote]:
        params = {
            "chainId": CHAIN_IDS[self.chain],
            "sellToken": sell_token,
            "buyToken": buy_token,
            "sellAmount": str(sell_amount),
            "slippageBps": str(self.slippage_bps),
            "taker": taker,
        }
        try:
            payload = await self._fetch_quote(params)
        except httpx.HTTPError as exc:
            self.logger.log(f"0x quote request failed: {exc}", "WARNING")
            return None
        if payload is None:
            return None

        try:
            return self._parse_quote(payload)
        except (KeyError, TypeError, ValueError) as exc:
            self.logger.log(f"Malformed 0x quote response: {exc}", "WARNING")
            return None

    async def _request_quote(self, params: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        response = await self._client.get(QUOTE_PATH, params=params)
        if response.status_code == 429 or response.status_code >= 500:
            raise RetryableQuoteError(f"HTTP {response.status_code}: {response.text[:200]}")
        if response.status_code >= 400:
            self.logger.log(
                f"0x quote rejected (HTTP {response.status_code}): {response.text[:200]}",
                "WARNING",
            )
            return None

        payload = response.json()
        if payload.get("liquidityAvailable") is False:
            self.logger.log(f"No liquidity for {params['sellToken']} -> {params['buyToken']}", "WARNING")
            return None
        return payload

    @staticmethod
    def _parse_quote(payload: Dict[str, Any]) -> SwapQuote:
        tx = payload.get("transaction") or {}
        allowance_issue = (payload.get("issues") or {}).get("allowance") or {}
        spender = allowance_issue.get("spender") or payload.get("allowanceTarget") or tx.get("to")
        return SwapQuote(
            buy_amount=int(payload["buyAmount"]),
            sell_amount=int(payload["sellAmount"]),
            gas=int(tx.get("gas") or payload.get("gas") or 0),
            gas_price=int(tx.get("gasPrice") or payload.get("gasPrice") or 0),
            to=tx.get("to"),
            data=tx.get("data"),
            value=int(tx.get("value") or 0),
            allowance_target=spender,
        )

    async def close(self) -> None:
        await self._client.aclose()
