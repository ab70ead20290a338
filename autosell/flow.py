"""
Flow Analysis - Sliding trade window, trigger predicate and cooldown gate.

Usage:
    from autosell.flow import TradeWindow, FlowAnalyzer, CooldownGovernor

    window = TradeWindow(window_seconds=30)
    window.append(TradeObservation(TradeSide.BUY, 120.0))

    decision = FlowAnalyzer.evaluate(metrics, config, governor.last_trigger_at, now)
    if decision.fire:
        ...

Trigger rule:
    net = buy - sell
    fire when net > min_net_flow_usd and now - last_trigger >= cooldown
    target_usd = net * sell_fraction (capped by max_sell_usd when set)
"""
import logging
from collections import deque
from dataclasses import replace
from typing import Deque, Iterable, List, Optional, Tuple
import time

from .config import COOLDOWN_GLOBAL, EngineConfig
from .models import Account, Metrics, TradeObservation, TradeSide, TriggerDecision

logger = logging.getLogger(__name__)


class TradeWindow:
    """
    Chronological, time-pruned buffer of trade observations.

    Insertion order is chronological, so pruning only ever pops from the
    front. Observations stamped earlier than the newest element are clamped
    forward to keep that order.
    """

    def __init__(self, window_seconds: float, max_items: int = 10_000):
        self.window_seconds = window_seconds
        self._items: Deque[TradeObservation] = deque(maxlen=max_items)

    def __len__(self) -> int:
        return len(self._items)

    def append(self, obs: TradeObservation):
        if self._items and obs.timestamp < self._items[-1].timestamp:
            obs = replace(obs, timestamp=self._items[-1].timestamp)
        self._items.append(obs)

    def prune(self, now: Optional[float] = None) -> int:
        """Drop observations older than the window. Returns count removed."""
        now = time.time() if now is None else now
        cutoff = now - self.window_seconds
        removed = 0
        while self._items and self._items[0].timestamp < cutoff:
            self._items.popleft()
            removed += 1
        return removed

    def totals(self, now: Optional[float] = None) -> Tuple[float, float]:
        """(buy_usd, sell_usd) over the window, pruning first."""
        self.prune(now)
        buy = sum(o.usd_value for o in self._items if o.side is TradeSide.BUY)
        sell = sum(o.usd_value for o in self._items if o.side is TradeSide.SELL)
        return buy, sell

    def items(self) -> List[TradeObservation]:
        return list(self._items)

    def recent(self, limit: int = 50, now: Optional[float] = None) -> List[TradeObservation]:
        """Most recent first, pruning first."""
        self.prune(now)
        return list(reversed(self._items))[:limit]

    def clear(self):
        self._items.clear()


class FlowAnalyzer:
    """Pure trigger predicate over Metrics."""

    @staticmethod
    def evaluate(
        metrics: Metrics,
        config: EngineConfig,
        last_trigger_at: Optional[float],
        now: float,
    ) -> TriggerDecision:
        net = metrics.net_usd_flow

        if net <= config.min_net_flow_usd:
            return TriggerDecision.idle(net, f"net flow ${net:.2f} <= ${config.min_net_flow_usd:.2f}")

        if config.cooldown_scope == COOLDOWN_GLOBAL and last_trigger_at is not None:
            elapsed = now - last_trigger_at
            if elapsed < config.cooldown_seconds:
                return TriggerDecision.idle(
                    net, f"cooldown ({config.cooldown_seconds - elapsed:.1f}s left)"
                )

        target = net * config.sell_fraction
        if config.max_sell_usd > 0:
            target = min(target, config.max_sell_usd)

        return TriggerDecision(
            fire=True,
            net_usd_flow=net,
            target_usd=target,
            reason=f"net flow ${net:.2f} > ${config.min_net_flow_usd:.2f}",
        )


class CooldownGovernor:
    """
    Timestamp gate between triggers.

    Global scope gates the whole trigger. Per-account scope never gates the
    trigger; instead each account that sold is benched until its own
    cooldown_until.
    """

    def __init__(self, cooldown_seconds: float, scope: str = COOLDOWN_GLOBAL):
        self.cooldown_seconds = cooldown_seconds
        self.scope = scope
        self.last_trigger_at: Optional[float] = None

    def ready(self, now: float) -> bool:
        if self.scope != COOLDOWN_GLOBAL or self.last_trigger_at is None:
            return True
        return now - self.last_trigger_at >= self.cooldown_seconds

    def account_ready(self, account: Account, now: float) -> bool:
        if self.scope == COOLDOWN_GLOBAL:
            return True
        return not account.in_cooldown(now)

    def consume(self, now: float, accounts: Iterable[Account] = ()):
        """Start the cooldown. Called only once a batch actually dispatched."""
        self.last_trigger_at = now
        if self.scope != COOLDOWN_GLOBAL:
            for account in accounts:
                account.cooldown_until = now + self.cooldown_seconds
