"""
Bitquery Source - DEX trade volume from the Bitquery streaming (EAP) GraphQL API.

Highest-fidelity source: every DEX trade of the asset in the window, with
a provider-computed USD amount and side label.

Usage:
    from autosell.sources import BitquerySource

    source = BitquerySource(token="ory_at_...")
    sample = await source.fetch(mint, window_seconds=30)
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional, Tuple

import aiohttp

from ..config import ENDPOINTS
from ..errors import SourceError
from .base import MarketDataSource, Polarity, VolumeSample

logger = logging.getLogger(__name__)


TRADES_QUERY = """
query ($mint: String!, $since: DateTime!, $till: DateTime!) {
  Solana(dataset: realtime) {
    DEXTradeByTokens(
      where: {
        Trade: { Currency: { MintAddress: { is: $mint } } }
        Block: { Time: { since: $since, till: $till } }
      }
    ) {
      Trade {
        Side {
          Type
          AmountInUSD
          Amount
        }
      }
      Block {
        Time
      }
    }
  }
}
"""


def _iso(ts: datetime) -> str:
    return ts.strftime("%Y-%m-%dT%H:%M:%SZ")


def parse_trades(data: Dict[str, Any]) -> Tuple[float, float, int]:
    """
    Sum raw (provider-labelled) buy and sell USD from a GraphQL response.

    Returns:
        (raw_buy_usd, raw_sell_usd, trade_count)
    """
    if data.get("errors"):
        raise SourceError(f"Bitquery GraphQL errors: {data['errors']}")

    trades = ((data.get("data") or {}).get("Solana") or {}).get("DEXTradeByTokens") or []

    raw_buy = 0.0
    raw_sell = 0.0
    for trade in trades:
        side = (trade.get("Trade") or {}).get("Side") or {}
        try:
            amount = float(side.get("AmountInUSD") or 0)
        except (TypeError, ValueError):
            continue
        kind = str(side.get("Type", "")).lower()
        if kind == "buy":
            raw_buy += amount
        elif kind == "sell":
            raw_sell += amount

    return raw_buy, raw_sell, len(trades)


class BitquerySource(MarketDataSource):
    """Bitquery DEXTradeByTokens over the analysis window."""

    def __init__(
        self,
        token: Optional[str],
        url: str = ENDPOINTS['BITQUERY_EAP'],
        polarity: Polarity = Polarity.DIRECT,
    ):
        super().__init__()
        self.token = token
        self.url = url
        self.polarity = polarity

    @property
    def name(self) -> str:
        return "bitquery"

    @property
    def enabled(self) -> bool:
        return bool(self.token)

    async def fetch(self, mint: str, window_seconds: float) -> VolumeSample:
        till = datetime.now(timezone.utc)
        since = till - timedelta(seconds=window_seconds)

        payload = {
            "query": TRADES_QUERY,
            "variables": {"mint": mint, "since": _iso(since), "till": _iso(till)},
        }
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.token}",
        }

        async with aiohttp.ClientSession() as session:
            async with session.post(self.url, json=payload, headers=headers) as resp:
                if resp.status != 200:
                    raise SourceError(f"Bitquery HTTP {resp.status}")
                data = await resp.json(content_type=None)

        raw_buy, raw_sell, count = parse_trades(data)
        logger.debug(f"[bitquery] {count} trades: buy ${raw_buy:.2f} sell ${raw_sell:.2f} (raw labels)")
        return self.sample(raw_buy, raw_sell, trade_count=count)
