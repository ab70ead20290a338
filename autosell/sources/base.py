"""
Base Source - Abstract interface for market-data sources.

Usage:
    from autosell.sources import MarketDataSource, VolumeSample

    class MySource(MarketDataSource):
        name = "mine"

        async def fetch(self, mint: str, window_seconds: float) -> VolumeSample:
            buy, sell = await self._query(mint)
            return self.sample(buy, sell)
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple
import time


class Polarity(Enum):
    """How a provider's raw buy/sell labels map onto the asset's buy/sell."""
    DIRECT = "direct"
    INVERTED = "inverted"


def normalize_sides(raw_buy: float, raw_sell: float, polarity: Polarity) -> Tuple[float, float]:
    """Map provider-labelled volumes to canonical (buy, sell)."""
    if polarity is Polarity.INVERTED:
        return raw_sell, raw_buy
    return raw_buy, raw_sell


@dataclass
class VolumeSample:
    """Canonical buy/sell volume for one window, from one source."""

    buy_usd: float = 0.0
    sell_usd: float = 0.0
    source: str = ""
    trade_count: int = 0
    price_usd: Optional[float] = None   # Some sources report price alongside volume
    fetch_time: float = 0.0

    @property
    def net_usd(self) -> float:
        return self.buy_usd - self.sell_usd

    @property
    def has_signal(self) -> bool:
        return self.buy_usd > 0 or self.sell_usd > 0


class MarketDataSource(ABC):
    """
    Abstract base class for market-data sources.

    A source fetches buy/sell volume for one asset over a time window and
    normalizes its own label convention before returning. Failures raise
    SourceError (or any exception); the waterfall moves on either way.
    """

    polarity: Polarity = Polarity.DIRECT

    def __init__(self):
        self.total_fetches = 0
        self.total_failures = 0
        self.last_fetch_time = 0.0

    @property
    @abstractmethod
    def name(self) -> str:
        """Source name for logging."""
        pass

    @property
    def enabled(self) -> bool:
        """Sources missing credentials report False and are skipped."""
        return True

    @abstractmethod
    async def fetch(self, mint: str, window_seconds: float) -> VolumeSample:
        """
        Fetch buy/sell volume for `mint` over the last `window_seconds`.

        Returns:
            VolumeSample in canonical buy/sell orientation
        """
        pass

    async def fetch_with_stats(self, mint: str, window_seconds: float) -> VolumeSample:
        start = time.time()
        self.total_fetches += 1
        try:
            sample = await self.fetch(mint, window_seconds)
        except BaseException:
            self.total_failures += 1
            raise
        finally:
            self.last_fetch_time = time.time() - start
        sample.fetch_time = self.last_fetch_time
        return sample

    def sample(self, raw_buy: float, raw_sell: float, trade_count: int = 0,
               price_usd: Optional[float] = None) -> VolumeSample:
        """Build a VolumeSample, applying this source's polarity."""
        buy, sell = normalize_sides(raw_buy, raw_sell, self.polarity)
        return VolumeSample(
            buy_usd=buy,
            sell_usd=sell,
            source=self.name,
            trade_count=trade_count,
            price_usd=price_usd,
        )

    def get_stats(self) -> dict:
        return {
            'name': self.name,
            'polarity': self.polarity.value,
            'enabled': self.enabled,
            'total_fetches': self.total_fetches,
            'total_failures': self.total_failures,
            'last_fetch_time': self.last_fetch_time,
        }
