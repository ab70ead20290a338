"""
Auto-Sell Engine - Lifecycle controller and analysis loop
=========================================================

One engine object per process. It owns the run configuration, the account
roster, the trade window, metrics and the timers of the current run.

Lifecycle:
    STOPPED -> STARTING -> RUNNING -> STOPPING -> STOPPED

Each start bumps a run generation. Every await in the loop is followed by
a generation check, so results from a stopped run never touch the state of
a newer one. All state mutations happen in synchronous methods, between
awaits, which makes the event loop the single writer.

Cycle (every window_seconds, first one immediately):
    collect (waterfall or webhook window) -> evaluate trigger
        -> price -> coordinated sell -> apply results -> refresh balances

Usage:
    engine = AutoSellEngine.from_settings(Settings.from_env())
    await engine.start({"mint": "...", "timeWindowSeconds": 30}, ["<base58 secret>"])
    print(engine.status())
    await engine.stop()
"""

import logging
import time
from collections import deque
from typing import Any, Callable, Deque, Dict, List, Optional, Sequence, Union

from .config import FLOW_SOURCE_WEBHOOK, EngineConfig, Settings
from .credentials import load_accounts
from .errors import ConfigError, EngineStateError
from .execution import (
    BalanceRefresher,
    BloxrouteChannel,
    BroadcastRacer,
    ExecutionCoordinator,
    JupiterSwapClient,
    RpcChannel,
    SolanaBalanceReader,
)
from .flow import CooldownGovernor, FlowAnalyzer, TradeWindow
from .models import (
    Account,
    BatchResult,
    LifecycleState,
    Metrics,
    SellRecord,
    TradeObservation,
    TriggerDecision,
)
from .prices import PriceFeed
from .scheduler import Scheduler
from .sources import BitquerySource, DataWaterfall, DexScreenerSource, Polarity, RpcScanSource
from .sources.base import VolumeSample
from .trade_log import TradeLog
from .webhook import classify_transactions, extract_transactions

logger = logging.getLogger(__name__)

HISTORY_LIMIT = 50
STATUS_WINDOW_LIMIT = 50


class AutoSellEngine:
    """
    Process-wide auto-sell controller.

    Collaborators are injected so tests can swap any of them for fakes;
    from_settings() wires the real ones.
    """

    def __init__(
        self,
        waterfall: DataWaterfall,
        price_feed: PriceFeed,
        coordinator: ExecutionCoordinator,
        refresher: BalanceRefresher,
        trade_log: Optional[TradeLog] = None,
        settings: Optional[Settings] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.waterfall = waterfall
        self.price_feed = price_feed
        self.coordinator = coordinator
        self.refresher = refresher
        self.trade_log = trade_log or TradeLog()
        self.settings = settings or Settings()
        self.clock = clock

        self.state = LifecycleState.STOPPED
        self.generation = 0
        self._reset()

    @classmethod
    def from_settings(cls, settings: Settings) -> 'AutoSellEngine':
        price_feed = PriceFeed(
            dexscreener_url=settings.dexscreener_url,
            jupiter_price_url=settings.jupiter_price_url,
            coingecko_url=settings.coingecko_url,
            timeout=settings.source_timeout,
        )

        polarity = Polarity.INVERTED if settings.bitquery_inverted else Polarity.DIRECT
        waterfall = DataWaterfall(
            [
                BitquerySource(settings.bitquery_token, settings.bitquery_url, polarity),
                RpcScanSource(settings.rpc_url, sol_price=price_feed.sol_price),
                DexScreenerSource(settings.dexscreener_url),
            ],
            timeout=settings.source_timeout,
        )

        channels = []
        if settings.bloxroute_auth:
            channels.append(BloxrouteChannel(
                settings.bloxroute_auth, settings.bloxroute_submit_url, settings.relay_timeout
            ))
        channels.append(RpcChannel(settings.rpc_url, settings.broadcast_timeout))

        reader = SolanaBalanceReader(settings.rpc_url)
        coordinator = ExecutionCoordinator(
            JupiterSwapClient(settings.jupiter_base_url, settings.jupiter_api_key, settings.swap_timeout),
            BroadcastRacer(channels),
            reader.get_decimals,
        )

        return cls(
            waterfall=waterfall,
            price_feed=price_feed,
            coordinator=coordinator,
            refresher=BalanceRefresher(reader, settings.balance_timeout),
            trade_log=TradeLog(settings.redis_url),
            settings=settings,
        )

    def _reset(self):
        """Discard all per-run state."""
        self.config: Optional[EngineConfig] = None
        self.accounts: List[Account] = []
        self.window: Optional[TradeWindow] = None
        self.metrics = Metrics()
        self.governor: Optional[CooldownGovernor] = None
        self.history: Deque[SellRecord] = deque(maxlen=HISTORY_LIMIT)
        self.scheduler: Optional[Scheduler] = None
        self.started_at: Optional[float] = None
        self.quiet_until: Optional[float] = None
        self.last_batch: Optional[BatchResult] = None
        self.last_decision: Optional[TriggerDecision] = None
        self._cycle_in_progress = False

    @property
    def running(self) -> bool:
        return self.state is LifecycleState.RUNNING

    def is_current(self, generation: int) -> bool:
        return generation == self.generation and self.state in (
            LifecycleState.STARTING, LifecycleState.RUNNING
        )

    # ============================================================
    # LIFECYCLE
    # ============================================================

    async def start(
        self,
        config: Union[EngineConfig, Dict[str, Any]],
        credentials: Sequence[Any],
    ) -> Dict[str, Any]:
        """
        Validate, load accounts, read initial balances and schedule timers.

        Raises:
            EngineStateError: engine is not stopped
            ConfigError: bad config or no usable credentials
        """
        if self.state is not LifecycleState.STOPPED:
            raise EngineStateError(f"Auto-sell is already {self.state.value}")

        self.state = LifecycleState.STARTING
        self.generation += 1
        generation = self.generation

        try:
            if not isinstance(config, EngineConfig):
                config = EngineConfig.from_dict(config)
            config.validate()
            if not credentials:
                raise ConfigError("Missing account credentials")
            accounts = load_accounts(credentials)

            self._reset()
            self.config = config
            self.accounts = accounts
            self.window = TradeWindow(config.window_seconds)
            self.governor = CooldownGovernor(config.cooldown_seconds, config.cooldown_scope)

            await self.refresher.refresh(accounts, config.mint,
                                         is_current=lambda: self.is_current(generation))
            if not self.is_current(generation):
                raise EngineStateError("Start was superseded")

            now = self.clock()
            self.started_at = now
            self.quiet_until = now + config.window_seconds

            self.scheduler = Scheduler(generation)
            self.scheduler.every("analysis", config.window_seconds,
                                 lambda: self.run_cycle(generation), immediate=True)
            self.scheduler.every("balances", config.balance_refresh_seconds,
                                 lambda: self.refresh_balances(generation))
            self.state = LifecycleState.RUNNING
        except Exception:
            if self.scheduler is not None:
                self.scheduler.cancel_all()
            self._reset()
            self.state = LifecycleState.STOPPED
            raise

        logger.info(
            f"Auto-sell started (run {generation}): {config.mint} with {len(self.accounts)} accounts, "
            f"window {config.window_seconds:.0f}s, sell {config.sell_fraction:.0%} of net flow"
        )
        return {
            'success': True,
            'config': config.to_dict(),
            'accounts': [a.to_dict() for a in self.accounts],
        }

    async def stop(self) -> Dict[str, Any]:
        """Cancel timers and discard run state. In-flight work is abandoned."""
        if self.state is not LifecycleState.RUNNING:
            raise EngineStateError("Auto-sell is not running")

        self.state = LifecycleState.STOPPING
        stopped_generation = self.generation
        if self.scheduler is not None:
            self.scheduler.cancel_all()

        summary = {
            'success': True,
            'batches': self.metrics.batches,
            'total_sold_usd': self.metrics.total_sold_usd,
            'total_sold_tokens': self.metrics.total_sold_tokens,
        }

        self.generation += 1
        self._reset()
        self.state = LifecycleState.STOPPED
        logger.info(f"Auto-sell stopped (run {stopped_generation})")
        return summary

    async def close(self):
        """Release network clients. Call once at process shutdown."""
        if self.running:
            await self.stop()
        racer = getattr(self.coordinator, "racer", None)
        if racer is not None:
            await racer.close()
        reader = getattr(self.refresher, "reader", None)
        if reader is not None and hasattr(reader, "close"):
            await reader.close()
        await self.trade_log.close()

    # ============================================================
    # ANALYSIS CYCLE
    # ============================================================

    async def run_cycle(self, generation: int) -> Optional[TriggerDecision]:
        """
        One collect -> analyze -> execute pass. Refuses to overlap a cycle
        already in progress. Unexpected errors are logged and swallowed so
        the timer keeps firing.
        """
        if not self.is_current(generation):
            return None
        if self._cycle_in_progress:
            logger.warning("Previous analysis cycle still running, skipping this tick")
            return None

        self._cycle_in_progress = True
        try:
            return await self._cycle(generation)
        except Exception:
            logger.exception("Analysis cycle failed")
            return None
        finally:
            if generation == self.generation:
                self._cycle_in_progress = False

    async def _cycle(self, generation: int) -> Optional[TriggerDecision]:
        config = self.config
        now = self.clock()

        if config.flow_source == FLOW_SOURCE_WEBHOOK:
            buy, sell = self.window.totals(now)
            self.metrics.set_volumes(buy, sell, "webhook")
        else:
            sample = await self.waterfall.collect(config.mint, config.window_seconds)
            if not self.is_current(generation):
                return None
            self._apply_sample(sample)

        sol_price = await self.price_feed.sol_price()
        if not self.is_current(generation):
            return None

        self.metrics.last_cycle_at = now
        self.metrics.sol_price_usd = sol_price
        decision = FlowAnalyzer.evaluate(self.metrics, config, self.governor.last_trigger_at, now)
        self.last_decision = decision

        if not decision.fire:
            logger.info(f"No sell trigger: {decision.reason}")
            return decision

        logger.info(f"SELL TRIGGER: {decision.reason}, target ${decision.target_usd:.2f}")

        price = await self.price_feed.token_price(config.mint)
        if not self.is_current(generation):
            return None
        if price <= 0:
            price = self.metrics.current_price_usd
        if price <= 0:
            logger.warning("No token price available, skipping sell batch")
            return decision
        self.metrics.current_price_usd = price

        batch = await self.coordinator.execute(
            decision.target_usd, self.accounts, price, config,
            ready=lambda a: self.governor.account_ready(a, now),
        )
        if not self.is_current(generation):
            logger.warning(f"Discarding results of run {generation}: engine was stopped")
            return None
        self._apply_batch(batch, now)

        if batch.succeeded:
            await self.refresh_balances(generation)
        return decision

    def _apply_sample(self, sample: Optional[VolumeSample]):
        if sample is None:
            self.metrics.reset_volumes()
            return
        if self.config.accumulate_volumes:
            self.metrics.set_volumes(
                self.metrics.buy_volume_usd + sample.buy_usd,
                self.metrics.sell_volume_usd + sample.sell_usd,
                sample.source,
            )
        else:
            self.metrics.set_volumes(sample.buy_usd, sample.sell_usd, sample.source)
        if sample.price_usd:
            self.metrics.current_price_usd = sample.price_usd

    def _apply_batch(self, batch: BatchResult, now: float):
        """Fold one batch into accounts, metrics and history."""
        self.last_batch = batch
        if not batch.dispatched:
            return

        succeeded = {r.public_key for r in batch.succeeded}
        self.governor.consume(now, [a for a in self.accounts if a.public_key in succeeded])
        self.metrics.last_sell_trigger_at = now
        self.metrics.batches += 1

        by_key = {a.public_key: a for a in self.accounts}
        for result in batch.results:
            if not result.success:
                self.metrics.failed_sells += 1
                continue
            account = by_key.get(result.public_key)
            if account is not None:
                account.token_balance = max(0.0, account.token_balance - result.token_amount)
                account.last_signature = result.signature
            self.metrics.successful_sells += 1
            self.metrics.total_sold_tokens += result.token_amount
            self.metrics.total_sold_usd += result.usd_value
            self.history.appendleft(SellRecord(
                timestamp=batch.timestamp,
                wallet=result.name,
                token_amount=result.token_amount,
                usd_value=result.usd_value,
                price=batch.price_usd,
                signature=result.signature,
                channel=result.channel,
            ))

        if succeeded:
            self.metrics.last_sell_at = now
            if self.config.accumulate_volumes:
                self.metrics.reset_volumes()

    async def refresh_balances(self, generation: int) -> int:
        if not self.is_current(generation):
            return 0
        try:
            return await self.refresher.refresh(
                self.accounts, self.config.mint,
                is_current=lambda: self.is_current(generation),
            )
        except Exception:
            logger.exception("Balance refresh failed")
            return 0

    # ============================================================
    # WEBHOOK FEED
    # ============================================================

    def ingest(self, trades: List[TradeObservation]) -> int:
        """
        Append webhook trades to the window. Ignored when stopped or still
        inside the initial quiet period. Never triggers a sell by itself.
        """
        if not self.running:
            return 0
        now = self.clock()
        if self.quiet_until is not None and now < self.quiet_until:
            logger.debug(f"Ignoring {len(trades)} webhook trades during quiet period")
            return 0

        for obs in trades:
            self.window.append(obs)
            if self.config.flow_source == FLOW_SOURCE_WEBHOOK:
                self.metrics.record(obs.side, obs.usd_value)
        self.window.prune(now)
        return len(trades)

    async def handle_webhook(self, body: Any) -> Dict[str, Any]:
        rows = extract_transactions(body)
        if not self.running or not rows:
            return {'ok': True, 'received': len(rows), 'accepted': 0}

        generation = self.generation
        mint = self.config.mint
        price = self.metrics.current_price_usd
        if price <= 0:
            price = await self.price_feed.token_price(mint)
            if not self.is_current(generation):
                return {'ok': True, 'received': len(rows), 'accepted': 0}

        trades = classify_transactions(rows, mint, price, self.settings.pool_addresses)
        accepted = self.ingest(trades)

        for obs in trades[:accepted]:
            await self.trade_log.push(mint, obs)

        return {'ok': True, 'received': len(rows), 'accepted': accepted}

    # ============================================================
    # STATUS
    # ============================================================

    def status(self) -> Dict[str, Any]:
        now = self.clock()
        recent = self.window.recent(STATUS_WINDOW_LIMIT, now) if self.window is not None else []
        return {
            'running': self.running,
            'state': self.state.value,
            'generation': self.generation,
            'started_at': self.started_at,
            'quiet_until': self.quiet_until,
            'config': self.config.to_dict() if self.config else None,
            'metrics': self.metrics.to_dict(),
            'last_decision': (
                {'fire': self.last_decision.fire, 'reason': self.last_decision.reason,
                 'target_usd': self.last_decision.target_usd}
                if self.last_decision else None
            ),
            'recent_trade_window': [o.to_dict() for o in recent],
            'accounts': [a.to_dict() for a in self.accounts],
            'transaction_history': [r.to_dict() for r in self.history],
            'last_batch': self.last_batch.to_dict() if self.last_batch else None,
            'sources': self.waterfall.get_stats(),
        }
