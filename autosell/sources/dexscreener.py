"""
DexScreener Source - Last-resort volume estimate from pair statistics.

DexScreener only exposes bucketed pair stats, so buy/sell volume for the
window is an estimate:
- m5 bucket present: volume.m5 split by the m5 buy/sell transaction ratio,
  scaled to the window length
- otherwise: h24 volume scaled to the window, split by the h24 price change
  (buy share = min(0.7, 0.5 + change%/100), mirrored for negative change)

Usage:
    from autosell.sources import DexScreenerSource

    source = DexScreenerSource()
    sample = await source.fetch(mint, window_seconds=30)
    print(sample.price_usd)
"""
import logging
from typing import Any, Dict, Optional, Tuple

import aiohttp

from ..config import ENDPOINTS
from ..errors import SourceError
from .base import MarketDataSource, VolumeSample

logger = logging.getLogger(__name__)

M5_SECONDS = 5 * 60
H24_SECONDS = 24 * 60 * 60
MAX_SIDE_SHARE = 0.7


def _num(value: Any) -> float:
    try:
        return float(value or 0)
    except (TypeError, ValueError):
        return 0.0


def best_pair(data: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """Most liquid pair in a /tokens response."""
    pairs = data.get("pairs") or []
    if not pairs:
        return None
    return max(pairs, key=lambda p: _num((p.get("liquidity") or {}).get("usd")))


def estimate_flow(pair: Dict[str, Any], window_seconds: float) -> Tuple[float, float]:
    """Estimated (buy_usd, sell_usd) for the window from one pair's stats."""
    volume = pair.get("volume") or {}
    txns_m5 = (pair.get("txns") or {}).get("m5") or {}
    buys = _num(txns_m5.get("buys"))
    sells = _num(txns_m5.get("sells"))
    volume_m5 = _num(volume.get("m5"))

    if volume_m5 > 0 and buys + sells > 0:
        estimated = volume_m5 * min(1.0, window_seconds / M5_SECONDS)
        buy_share = buys / (buys + sells)
        return estimated * buy_share, estimated * (1 - buy_share)

    estimated = _num(volume.get("h24")) * (window_seconds / H24_SECONDS)
    change = _num((pair.get("priceChange") or {}).get("h24"))
    if change > 0:
        buy_share = min(MAX_SIDE_SHARE, 0.5 + change / 100)
    else:
        buy_share = 1 - min(MAX_SIDE_SHARE, 0.5 + abs(change) / 100)
    return estimated * buy_share, estimated * (1 - buy_share)


async def fetch_pair(mint: str, url: str = ENDPOINTS['DEXSCREENER_TOKENS']) -> Dict[str, Any]:
    """Fetch the most liquid pair for `mint`. Raises SourceError if none."""
    async with aiohttp.ClientSession() as session:
        async with session.get(f"{url}/{mint}") as resp:
            if resp.status != 200:
                raise SourceError(f"DexScreener HTTP {resp.status}")
            data = await resp.json(content_type=None)

    pair = best_pair(data or {})
    if pair is None:
        raise SourceError("No trading pairs found")
    return pair


class DexScreenerSource(MarketDataSource):
    """Pair-stat estimate; also reports the pair's USD price."""

    def __init__(self, url: str = ENDPOINTS['DEXSCREENER_TOKENS']):
        super().__init__()
        self.url = url

    @property
    def name(self) -> str:
        return "dexscreener"

    async def fetch(self, mint: str, window_seconds: float) -> VolumeSample:
        pair = await fetch_pair(mint, self.url)
        buy, sell = estimate_flow(pair, window_seconds)
        price = _num(pair.get("priceUsd")) or None
        logger.debug(f"[dexscreener] estimate: buy ${buy:.2f} sell ${sell:.2f} price {price}")
        return self.sample(buy, sell, price_usd=price)
