"""
Configuration - All auto-sell parameters in one place.

Usage:
    from autosell.config import EngineConfig, Settings

    # Per-run config from a /start body (camelCase accepted)
    config = EngineConfig.from_dict({"mint": "...", "timeWindowSeconds": 30})
    config.validate()

    # Process-wide settings from the environment (.env supported)
    settings = Settings.from_env()
"""
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv

from .errors import ConfigError


# API Endpoints
ENDPOINTS = {
    # Market data
    'BITQUERY_EAP': 'https://streaming.bitquery.io/eap',
    'DEXSCREENER_TOKENS': 'https://api.dexscreener.com/latest/dex/tokens',
    'COINGECKO_SIMPLE_PRICE': 'https://api.coingecko.com/api/v3/simple/price',

    # Jupiter
    'JUPITER_BASE': 'https://quote-api.jup.ag',
    'JUPITER_PRICE': 'https://price.jup.ag/v6/price',

    # bloXroute priority relay
    'BLOXROUTE_SUBMIT': 'https://global.solana.dex.blxrbdn.com',

    # Solana RPC
    'SOLANA_MAINNET': 'https://api.mainnet-beta.solana.com',
}

# Mints
WSOL_MINT = "So11111111111111111111111111111111111111112"

# Policy names
COOLDOWN_GLOBAL = "global"
COOLDOWN_PER_ACCOUNT = "per_account"
FLOW_SOURCE_POLL = "poll"
FLOW_SOURCE_WEBHOOK = "webhook"

# Slippage bounds (bps)
MIN_SLIPPAGE_BPS = 1
MAX_SLIPPAGE_BPS = 5000

# Wire name -> field name for /start bodies from the dashboard
_WIRE_NAMES = {
    'asset': 'mint',
    'timeWindowSeconds': 'window_seconds',
    'minNetFlowUsd': 'min_net_flow_usd',
    'cooldownSeconds': 'cooldown_seconds',
    'slippageBps': 'slippage_bps',
    'maxSellFraction': 'max_sell_fraction',
    'minSellFraction': 'min_sell_fraction',
    'dustTokens': 'dust_tokens',
    'maxSellUsd': 'max_sell_usd',
    'balanceRefreshSeconds': 'balance_refresh_seconds',
    'cooldownScope': 'cooldown_scope',
    'accumulateVolumes': 'accumulate_volumes',
    'flowSource': 'flow_source',
}


@dataclass(frozen=True)
class EngineConfig:
    """
    Per-run engine configuration. Immutable for the duration of a run.

    sell_fraction is a plain fraction (0.25 = 25% of net flow); the
    dashboard's sellPercentageOfNetFlow is a percentage and is converted
    in from_dict.
    """

    # === Asset ===
    mint: str = ""

    # === Trigger policy ===
    window_seconds: float = 30.0            # Sliding window = analysis period
    sell_fraction: float = 0.25             # 25% of net flow
    min_net_flow_usd: float = 0.0           # 0 = any positive flow
    cooldown_seconds: float = 15.0
    cooldown_scope: str = COOLDOWN_GLOBAL
    accumulate_volumes: bool = False        # Cumulative variant, off by default
    flow_source: str = FLOW_SOURCE_POLL

    # === Sizing ===
    max_sell_fraction: float = 0.25         # Never sell more than 25% of held per batch
    min_sell_fraction: float = 0.001        # Never less than 0.1% of held
    dust_tokens: float = 0.0001             # Eligibility floor per account
    max_sell_usd: float = 0.0               # 0 = no USD cap

    # === Execution ===
    slippage_bps: int = 300                 # 3%

    # === Timers ===
    balance_refresh_seconds: float = 30.0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'EngineConfig':
        """Build from a request body, accepting wire (camelCase) names."""
        values: Dict[str, Any] = {}
        known = set(cls.__dataclass_fields__)

        for key, value in (data or {}).items():
            if value is None:
                continue
            name = _WIRE_NAMES.get(key, key)
            if name in known or key == 'sellPercentageOfNetFlow':
                values[name] = value

        try:
            if 'sellPercentageOfNetFlow' in values:
                values['sell_fraction'] = float(values.pop('sellPercentageOfNetFlow')) / 100.0
            for name in ('window_seconds', 'sell_fraction', 'min_net_flow_usd',
                         'cooldown_seconds', 'max_sell_fraction', 'min_sell_fraction',
                         'dust_tokens', 'max_sell_usd', 'balance_refresh_seconds'):
                if name in values:
                    values[name] = float(values[name])
            if 'slippage_bps' in values:
                values['slippage_bps'] = int(values['slippage_bps'])
            if 'accumulate_volumes' in values:
                values['accumulate_volumes'] = _parse_flag(values['accumulate_volumes'])
            if 'mint' in values:
                values['mint'] = str(values['mint']).strip()
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid configuration value: {e}")

        return cls(**values)

    def validate(self) -> None:
        """Raise ConfigError if any invariant is violated."""
        if not self.mint:
            raise ConfigError("Missing asset (mint)")
        for name in ('window_seconds', 'cooldown_seconds', 'balance_refresh_seconds'):
            if getattr(self, name) <= 0:
                raise ConfigError(f"{name} must be > 0")
        if not 0 < self.sell_fraction <= 1:
            raise ConfigError("sell_fraction must be in (0, 1]")
        if not 0 < self.min_sell_fraction <= self.max_sell_fraction <= 1:
            raise ConfigError("Need 0 < min_sell_fraction <= max_sell_fraction <= 1")
        if self.min_net_flow_usd < 0 or self.dust_tokens < 0 or self.max_sell_usd < 0:
            raise ConfigError("Thresholds must be >= 0")
        if not MIN_SLIPPAGE_BPS <= self.slippage_bps <= MAX_SLIPPAGE_BPS:
            raise ConfigError(f"slippage_bps must be in [{MIN_SLIPPAGE_BPS}, {MAX_SLIPPAGE_BPS}]")
        if self.cooldown_scope not in (COOLDOWN_GLOBAL, COOLDOWN_PER_ACCOUNT):
            raise ConfigError(f"Unknown cooldown_scope: {self.cooldown_scope}")
        if self.flow_source not in (FLOW_SOURCE_POLL, FLOW_SOURCE_WEBHOOK):
            raise ConfigError(f"Unknown flow_source: {self.flow_source}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            'mint': self.mint,
            'window_seconds': self.window_seconds,
            'sell_fraction': self.sell_fraction,
            'min_net_flow_usd': self.min_net_flow_usd,
            'cooldown_seconds': self.cooldown_seconds,
            'cooldown_scope': self.cooldown_scope,
            'accumulate_volumes': self.accumulate_volumes,
            'flow_source': self.flow_source,
            'max_sell_fraction': self.max_sell_fraction,
            'min_sell_fraction': self.min_sell_fraction,
            'dust_tokens': self.dust_tokens,
            'max_sell_usd': self.max_sell_usd,
            'slippage_bps': self.slippage_bps,
            'balance_refresh_seconds': self.balance_refresh_seconds,
        }


_TRUE_WORDS = ("1", "true", "yes", "on")
_FALSE_WORDS = ("0", "false", "no", "off", "")


def _parse_flag(value: Any) -> bool:
    """Real bools, 0/1, or the same words the environment flags accept."""
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        text = value.strip().lower()
        if text in _TRUE_WORDS:
            return True
        if text in _FALSE_WORDS:
            return False
    raise ValueError(f"expected a boolean, got {value!r}")


def _env_flag(name: str) -> bool:
    return os.getenv(name, "").strip().lower() in _TRUE_WORDS


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {raw!r}")


@dataclass
class Settings:
    """Process-wide settings: endpoints, credentials and timeouts."""

    # Solana RPC (first entry is used for submission and balances)
    rpc_urls: List[str] = field(default_factory=lambda: [ENDPOINTS['SOLANA_MAINNET']])

    # Market data
    bitquery_url: str = ENDPOINTS['BITQUERY_EAP']
    bitquery_token: Optional[str] = None
    bitquery_inverted: bool = False
    dexscreener_url: str = ENDPOINTS['DEXSCREENER_TOKENS']
    coingecko_url: str = ENDPOINTS['COINGECKO_SIMPLE_PRICE']
    jupiter_price_url: str = ENDPOINTS['JUPITER_PRICE']

    # Swap routing
    jupiter_base_url: str = ENDPOINTS['JUPITER_BASE']
    jupiter_api_key: Optional[str] = None

    # Priority relay
    bloxroute_submit_url: str = ENDPOINTS['BLOXROUTE_SUBMIT']
    bloxroute_auth: Optional[str] = None

    # Inbound feed / observability
    webhook_secret: Optional[str] = None
    pool_addresses: List[str] = field(default_factory=list)   # Known AMM pool owners for webhook direction
    redis_url: Optional[str] = None

    # Timeouts (seconds)
    source_timeout: float = 15.0
    swap_timeout: float = 10.0
    broadcast_timeout: float = 8.0
    relay_timeout: float = 8.0
    balance_timeout: float = 10.0

    @property
    def rpc_url(self) -> str:
        return self.rpc_urls[0]

    @classmethod
    def from_env(cls, dotenv: bool = True) -> 'Settings':
        """Read settings from the environment, loading .env first."""
        if dotenv:
            load_dotenv()

        rpc_urls = [
            url for url in (
                os.getenv("RPC_URL"),
                os.getenv("HELIUS_RPC_URL"),
                ENDPOINTS['SOLANA_MAINNET'],
            ) if url
        ]

        return cls(
            rpc_urls=rpc_urls,
            bitquery_url=os.getenv("BITQUERY_URL", ENDPOINTS['BITQUERY_EAP']),
            bitquery_token=os.getenv("BITQUERY_TOKEN") or None,
            bitquery_inverted=_env_flag("BITQUERY_INVERTED"),
            dexscreener_url=os.getenv("DEXSCREENER_URL", ENDPOINTS['DEXSCREENER_TOKENS']),
            coingecko_url=os.getenv("COINGECKO_URL", ENDPOINTS['COINGECKO_SIMPLE_PRICE']),
            jupiter_price_url=os.getenv("JUPITER_PRICE_URL", ENDPOINTS['JUPITER_PRICE']),
            jupiter_base_url=os.getenv("JUPITER_API_BASE", ENDPOINTS['JUPITER_BASE']),
            jupiter_api_key=os.getenv("JUPITER_API_KEY") or None,
            bloxroute_submit_url=os.getenv("BLOXROUTE_SUBMIT_URL", ENDPOINTS['BLOXROUTE_SUBMIT']),
            bloxroute_auth=os.getenv("BLOXROUTE_AUTH") or None,
            webhook_secret=os.getenv("HELIUS_WEBHOOK_SECRET") or None,
            pool_addresses=[p.strip() for p in os.getenv("POOL_ADDRESSES", "").split(",") if p.strip()],
            redis_url=os.getenv("REDIS_URL") or None,
            source_timeout=_env_float("SOURCE_TIMEOUT_SECONDS", 15.0),
            swap_timeout=_env_float("SWAP_TIMEOUT_SECONDS", 10.0),
            broadcast_timeout=_env_float("BROADCAST_TIMEOUT_SECONDS", 8.0),
            relay_timeout=_env_float("RELAY_TIMEOUT_SECONDS", 8.0),
            balance_timeout=_env_float("BALANCE_TIMEOUT_SECONDS", 10.0),
        )

    def to_dict(self) -> Dict[str, Any]:
        # Secrets are reported as presence flags only
        return {
            'rpc_url': self.rpc_url,
            'bitquery_enabled': bool(self.bitquery_token),
            'bitquery_inverted': self.bitquery_inverted,
            'relay_enabled': bool(self.bloxroute_auth),
            'webhook_enabled': bool(self.webhook_secret),
            'trade_log_enabled': bool(self.redis_url),
            'source_timeout': self.source_timeout,
            'swap_timeout': self.swap_timeout,
            'broadcast_timeout': self.broadcast_timeout,
            'relay_timeout': self.relay_timeout,
            'balance_timeout': self.balance_timeout,
        }


# Default configuration
DEFAULT_CONFIG = EngineConfig()
