"""
Data Waterfall - Ordered fallback across market-data sources.

Sources are tried in priority order, each under its own timeout. The first
one that returns non-zero buy or sell volume wins and later sources are
never called. Timeouts, errors and all-zero results all fall through to
the next source.

Usage:
    from autosell.sources import DataWaterfall

    waterfall = DataWaterfall([bitquery, rpc_scan, dexscreener], timeout=15.0)
    sample = await waterfall.collect(mint, window_seconds=30)
    if sample is None:
        ...  # no signal this cycle
"""
import asyncio
import logging
from typing import Dict, List, Optional

from .base import MarketDataSource, VolumeSample

logger = logging.getLogger(__name__)


class DataWaterfall:
    """First-signal-wins iteration over MarketDataSource objects."""

    def __init__(self, sources: List[MarketDataSource], timeout: float = 15.0):
        self.sources = list(sources)
        self.timeout = timeout
        self.last_errors: Dict[str, str] = {}
        self.last_source: Optional[str] = None

    @property
    def active_sources(self) -> List[MarketDataSource]:
        return [s for s in self.sources if s.enabled]

    async def collect(self, mint: str, window_seconds: float) -> Optional[VolumeSample]:
        """
        Returns:
            VolumeSample from the first source with signal, or None if every
            source failed, timed out or reported zero volume
        """
        self.last_errors = {}
        self.last_source = None

        for source in self.active_sources:
            try:
                sample = await asyncio.wait_for(
                    source.fetch_with_stats(mint, window_seconds),
                    timeout=self.timeout,
                )
            except asyncio.TimeoutError:
                self.last_errors[source.name] = f"timeout after {self.timeout}s"
                logger.warning(f"[waterfall] {source.name} timed out, trying next source")
                continue
            except Exception as e:
                self.last_errors[source.name] = str(e) or type(e).__name__
                logger.warning(f"[waterfall] {source.name} failed: {e}, trying next source")
                continue

            if not sample.has_signal:
                self.last_errors[source.name] = "no volume"
                logger.debug(f"[waterfall] {source.name} returned zero volume")
                continue

            self.last_source = source.name
            logger.info(
                f"[waterfall] {source.name}: buy ${sample.buy_usd:.2f} "
                f"sell ${sample.sell_usd:.2f} net ${sample.net_usd:.2f}"
            )
            return sample

        logger.warning(f"[waterfall] all sources failed: {self.last_errors}")
        return None

    def get_stats(self) -> dict:
        return {
            'timeout': self.timeout,
            'last_source': self.last_source,
            'last_errors': dict(self.last_errors),
            'sources': [s.get_stats() for s in self.sources],
        }
