"""
Auto-Sell Models - Shared Data Structures
=========================================

Everything the engine, the coordinator and the API pass around.
Signing keys live only on Account and never leave it through to_dict().
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional
import time

from solders.keypair import Keypair


class TradeSide(Enum):
    BUY = "buy"
    SELL = "sell"


class LifecycleState(Enum):
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"


def short_id(public_key: str) -> str:
    """Shortened public identifier for log lines"""
    if len(public_key) <= 12:
        return public_key
    return f"{public_key[:4]}...{public_key[-4:]}"


@dataclass
class TradeObservation:
    """One buy or sell seen on the market, valued in USD"""
    side: TradeSide
    usd_value: float
    timestamp: float = field(default_factory=time.time)
    token_amount: float = 0.0
    signature: str = ""
    source: str = ""

    def to_dict(self) -> dict:
        return {
            'side': self.side.value,
            'usd_value': self.usd_value,
            'timestamp': self.timestamp,
            'token_amount': self.token_amount,
            'signature': self.signature,
            'source': self.source,
        }


@dataclass
class Metrics:
    """
    Last-computed aggregate volumes plus bot-executed sell accounting.

    net_usd_flow is derived, never stored, so it cannot drift from
    buy_volume_usd - sell_volume_usd.
    """
    buy_volume_usd: float = 0.0
    sell_volume_usd: float = 0.0
    current_price_usd: float = 0.0
    sol_price_usd: float = 0.0
    source: str = ""
    last_sell_trigger_at: Optional[float] = None
    last_cycle_at: Optional[float] = None

    # Bot-executed sells
    total_sold_usd: float = 0.0
    total_sold_tokens: float = 0.0
    last_sell_at: Optional[float] = None
    batches: int = 0
    successful_sells: int = 0
    failed_sells: int = 0

    @property
    def net_usd_flow(self) -> float:
        return self.buy_volume_usd - self.sell_volume_usd

    def record(self, side: TradeSide, usd_value: float):
        if side is TradeSide.BUY:
            self.buy_volume_usd += usd_value
        else:
            self.sell_volume_usd += usd_value

    def set_volumes(self, buy_usd: float, sell_usd: float, source: str = ""):
        self.buy_volume_usd = buy_usd
        self.sell_volume_usd = sell_usd
        self.source = source

    def reset_volumes(self):
        self.set_volumes(0.0, 0.0, "")

    def to_dict(self) -> dict:
        return {
            'buy_volume_usd': self.buy_volume_usd,
            'sell_volume_usd': self.sell_volume_usd,
            'net_usd_flow': self.net_usd_flow,
            'current_price_usd': self.current_price_usd,
            'sol_price_usd': self.sol_price_usd,
            'source': self.source,
            'last_sell_trigger_at': self.last_sell_trigger_at,
            'last_cycle_at': self.last_cycle_at,
            'total_sold_usd': self.total_sold_usd,
            'total_sold_tokens': self.total_sold_tokens,
            'last_sell_at': self.last_sell_at,
            'batches': self.batches,
            'successful_sells': self.successful_sells,
            'failed_sells': self.failed_sells,
        }


@dataclass
class Account:
    """One managed wallet. The keypair is never logged or serialized."""
    name: str
    keypair: Keypair = field(repr=False)
    sol_balance: float = 0.0
    token_balance: float = 0.0
    balance_known: bool = False
    cooldown_until: Optional[float] = None
    last_signature: str = ""
    last_refresh_at: Optional[float] = None

    @property
    def public_key(self) -> str:
        return str(self.keypair.pubkey())

    @property
    def label(self) -> str:
        return f"{self.name} ({short_id(self.public_key)})"

    def in_cooldown(self, now: float) -> bool:
        return self.cooldown_until is not None and now < self.cooldown_until

    def to_dict(self) -> dict:
        return {
            'name': self.name,
            'public_key': self.public_key,
            'sol_balance': self.sol_balance,
            'token_balance': self.token_balance,
            'balance_known': self.balance_known,
            'cooldown_until': self.cooldown_until,
            'last_signature': self.last_signature,
            'last_refresh_at': self.last_refresh_at,
        }


@dataclass
class TriggerDecision:
    """Outcome of one flow evaluation"""
    fire: bool
    net_usd_flow: float = 0.0
    target_usd: float = 0.0
    reason: str = ""

    @classmethod
    def idle(cls, net_usd_flow: float, reason: str) -> 'TriggerDecision':
        return cls(fire=False, net_usd_flow=net_usd_flow, reason=reason)


@dataclass
class Quote:
    """Swap quote from the routing venue (atomic units)"""
    input_mint: str
    output_mint: str
    in_amount: int
    out_amount: int
    slippage_bps: int
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)


@dataclass
class Confirmation:
    """A broadcast channel accepted the transaction"""
    signature: str
    channel: str
    latency_ms: float = 0.0


@dataclass
class AccountResult:
    """Per-account outcome of one execution batch"""
    name: str
    public_key: str
    success: bool
    token_amount: float = 0.0
    usd_value: float = 0.0
    signature: str = ""
    channel: str = ""
    error: Optional[str] = None
    latency_ms: float = 0.0

    def to_dict(self) -> dict:
        return {
            'name': self.name,
            'public_key': self.public_key,
            'success': self.success,
            'token_amount': self.token_amount,
            'usd_value': self.usd_value,
            'signature': self.signature,
            'channel': self.channel,
            'error': self.error,
            'latency_ms': self.latency_ms,
        }


@dataclass
class BatchResult:
    """All per-account results of one coordinated sell"""
    target_usd: float
    price_usd: float
    tokens_to_sell: float = 0.0
    results: List[AccountResult] = field(default_factory=list)
    timestamp: float = field(default_factory=time.time)

    @property
    def dispatched(self) -> bool:
        return len(self.results) > 0

    @property
    def succeeded(self) -> List[AccountResult]:
        return [r for r in self.results if r.success]

    @property
    def failed(self) -> List[AccountResult]:
        return [r for r in self.results if not r.success]

    @property
    def tokens_sold(self) -> float:
        return sum(r.token_amount for r in self.succeeded)

    @property
    def usd_sold(self) -> float:
        return sum(r.usd_value for r in self.succeeded)

    def to_dict(self) -> dict:
        return {
            'target_usd': self.target_usd,
            'price_usd': self.price_usd,
            'tokens_to_sell': self.tokens_to_sell,
            'tokens_sold': self.tokens_sold,
            'usd_sold': self.usd_sold,
            'timestamp': self.timestamp,
            'results': [r.to_dict() for r in self.results],
        }


@dataclass
class SellRecord:
    """One entry in the bounded transaction history"""
    timestamp: float
    wallet: str
    token_amount: float
    usd_value: float
    price: float
    signature: str
    channel: str

    def to_dict(self) -> dict:
        return {
            'timestamp': self.timestamp,
            'wallet': self.wallet,
            'token_amount': self.token_amount,
            'usd_value': self.usd_value,
            'price': self.price,
            'signature': self.signature,
            'channel': self.channel,
        }
