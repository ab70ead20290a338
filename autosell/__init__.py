"""
Auto-Sell - Multi-Wallet Net-Flow Liquidation Engine
====================================================

Watches buy/sell pressure on one Solana token and, when net inflow over
the window is positive, sells a fraction of it across a pool of wallets
in proportion to their holdings.

Usage:
    from autosell import AutoSellEngine, Settings, create_app

    engine = AutoSellEngine.from_settings(Settings.from_env())
    app = create_app(engine)           # serve with uvicorn

Pipeline per cycle:
1. Source waterfall (Bitquery -> RPC scan -> DexScreener)
2. Net flow over the window vs. threshold and cooldown
3. Proportional sell: Jupiter quote/build, local signing
4. Broadcast race (bloXroute vs. direct RPC), first signature wins
"""

# Configuration
from .config import EngineConfig, Settings, DEFAULT_CONFIG, ENDPOINTS

# Errors
from .errors import (
    AutoSellError,
    ConfigError,
    EngineStateError,
    SourceError,
    SwapError,
    BroadcastError,
    WebhookAuthError,
)

# Data models
from .models import (
    Account,
    AccountResult,
    BatchResult,
    Confirmation,
    LifecycleState,
    Metrics,
    Quote,
    SellRecord,
    TradeObservation,
    TradeSide,
    TriggerDecision,
)

# Engine
from .engine import AutoSellEngine
from .flow import TradeWindow, FlowAnalyzer, CooldownGovernor

# API
from .api import create_app


__all__ = [
    # Config
    'EngineConfig',
    'Settings',
    'DEFAULT_CONFIG',
    'ENDPOINTS',

    # Errors
    'AutoSellError',
    'ConfigError',
    'EngineStateError',
    'SourceError',
    'SwapError',
    'BroadcastError',
    'WebhookAuthError',

    # Models
    'Account',
    'AccountResult',
    'BatchResult',
    'Confirmation',
    'LifecycleState',
    'Metrics',
    'Quote',
    'SellRecord',
    'TradeObservation',
    'TradeSide',
    'TriggerDecision',

    # Engine
    'AutoSellEngine',
    'TradeWindow',
    'FlowAnalyzer',
    'CooldownGovernor',

    # API
    'create_app',
]
