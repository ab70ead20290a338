"""
Market-data sources - Buy/sell volume for one asset, with ordered fallback.
"""
from .base import MarketDataSource, VolumeSample, Polarity, normalize_sides
from .bitquery import BitquerySource
from .rpc_scan import RpcScanSource
from .dexscreener import DexScreenerSource
from .waterfall import DataWaterfall

__all__ = [
    'MarketDataSource', 'VolumeSample', 'Polarity', 'normalize_sides',
    'BitquerySource', 'RpcScanSource', 'DexScreenerSource',
    'DataWaterfall',
]
