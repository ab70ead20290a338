"""
Price Feed - Token USD price (DexScreener, Jupiter fallback) and SOL/USD (CoinGecko).

Failures return 0.0 for the token price; the caller skips any batch without
a positive price. SOL price keeps its last known value on failure.

Usage:
    feed = PriceFeed(settings)
    price = await feed.token_price(mint)
    sol = await feed.sol_price()
"""
import asyncio
import logging
import time
from typing import Any, Dict

import aiohttp

from .config import ENDPOINTS
from .sources.dexscreener import fetch_pair

logger = logging.getLogger(__name__)

SOL_PRICE_TTL = 60.0


class PriceFeed:

    def __init__(
        self,
        dexscreener_url: str = ENDPOINTS['DEXSCREENER_TOKENS'],
        jupiter_price_url: str = ENDPOINTS['JUPITER_PRICE'],
        coingecko_url: str = ENDPOINTS['COINGECKO_SIMPLE_PRICE'],
        timeout: float = 10.0,
    ):
        self.dexscreener_url = dexscreener_url
        self.jupiter_price_url = jupiter_price_url
        self.coingecko_url = coingecko_url
        self.timeout = timeout

        self.last_sol_price = 0.0
        self._sol_price_at = 0.0

    async def _get_json(self, url: str, params: Dict[str, str]) -> Any:
        timeout = aiohttp.ClientTimeout(total=self.timeout)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.get(url, params=params) as resp:
                if resp.status != 200:
                    raise aiohttp.ClientResponseError(
                        resp.request_info, resp.history, status=resp.status
                    )
                return await resp.json(content_type=None)

    async def token_price(self, mint: str) -> float:
        """USD price of `mint`, or 0.0 if no provider answered."""
        try:
            pair = await asyncio.wait_for(fetch_pair(mint, self.dexscreener_url), self.timeout)
            price = float(pair.get("priceUsd") or 0)
            if price > 0:
                return price
        except Exception as e:
            logger.warning(f"[prices] DexScreener price failed: {e}")

        try:
            data = await self._get_json(self.jupiter_price_url, {"ids": mint})
            price = float(((data or {}).get("data") or {}).get(mint, {}).get("price") or 0)
            if price > 0:
                return price
        except Exception as e:
            logger.warning(f"[prices] Jupiter price failed: {e}")

        return 0.0

    async def sol_price(self) -> float:
        """SOL/USD, cached for a minute."""
        if self.last_sol_price > 0 and time.time() - self._sol_price_at < SOL_PRICE_TTL:
            return self.last_sol_price

        try:
            data = await self._get_json(self.coingecko_url, {"ids": "solana", "vs_currencies": "usd"})
            price = float(((data or {}).get("solana") or {}).get("usd") or 0)
            if price > 0:
                self.last_sol_price = price
                self._sol_price_at = time.time()
        except Exception as e:
            logger.warning(f"[prices] CoinGecko SOL price failed: {e}, keeping ${self.last_sol_price:.2f}")

        return self.last_sol_price
