import asyncio
import unittest

from solders.keypair import Keypair

from autosell.config import Settings
from autosell.engine import AutoSellEngine
from autosell.errors import ConfigError, EngineStateError
from autosell.execution import BalanceRefresher, ExecutionCoordinator
from autosell.models import LifecycleState, TradeObservation, TradeSide
from autosell.sources import VolumeSample

from fakes import (
    MINT,
    FakeBalanceReader,
    FakePriceFeed,
    FakeRacer,
    FakeSwapClient,
    FakeWaterfall,
    secret_b58,
)

# Long timers so only the immediate first cycle runs during a test
CONFIG = {
    "mint": MINT,
    "timeWindowSeconds": 3600,
    "sellPercentageOfNetFlow": 25,
    "cooldownSeconds": 15,
    "balanceRefreshSeconds": 3600,
}

POSITIVE = VolumeSample(buy_usd=120.0, sell_usd=20.0, source="bitquery")


async def settle(engine: AutoSellEngine):
    """Let the scheduler spawn its immediate jobs, then wait for them."""
    for _ in range(5):
        await asyncio.sleep(0)
    if engine.scheduler is not None:
        await asyncio.gather(*engine.scheduler.inflight)


class EngineTestCase(unittest.IsolatedAsyncioTestCase):

    def setUp(self) -> None:
        self.now = 1000.0
        self.keypairs = [Keypair(), Keypair()]
        self.credentials = [secret_b58(k) for k in self.keypairs]
        self.reader = FakeBalanceReader({
            str(self.keypairs[0].pubkey()): (1.0, 600.0),
            str(self.keypairs[1].pubkey()): (1.0, 400.0),
        })
        self.waterfall = FakeWaterfall()
        self.prices = FakePriceFeed(price=0.25)
        self.swap = FakeSwapClient()
        self.racer = FakeRacer()

        async def decimals(mint):
            return 6

        self.engine = AutoSellEngine(
            waterfall=self.waterfall,
            price_feed=self.prices,
            coordinator=ExecutionCoordinator(self.swap, self.racer, decimals),
            refresher=BalanceRefresher(self.reader, timeout=1.0),
            settings=Settings(webhook_secret="s3cret"),
            clock=lambda: self.now,
        )

    async def asyncTearDown(self) -> None:
        if self.engine.running:
            await self.engine.stop()

    def break_balance_reads(self):
        self.reader.balances = {
            str(k.pubkey()): ConnectionError("rpc down") for k in self.keypairs
        }


class LifecycleTests(EngineTestCase):

    async def test_start_loads_accounts_and_balances(self) -> None:
        result = await self.engine.start(CONFIG, self.credentials)
        await settle(self.engine)

        self.assertTrue(result["success"])
        self.assertEqual([a["name"] for a in result["accounts"]], ["Wallet 1", "Wallet 2"])
        self.assertIs(self.engine.state, LifecycleState.RUNNING)
        self.assertEqual(self.engine.quiet_until, 1000.0 + 3600)
        self.assertEqual(self.engine.scheduler.timer_names, ["analysis", "balances"])
        self.assertEqual([a.token_balance for a in self.engine.accounts], [600.0, 400.0])

    async def test_second_start_is_rejected_and_state_unchanged(self) -> None:
        await self.engine.start(CONFIG, self.credentials)
        await settle(self.engine)
        generation = self.engine.generation

        with self.assertRaises(EngineStateError):
            await self.engine.start(CONFIG, self.credentials)

        self.assertTrue(self.engine.running)
        self.assertEqual(self.engine.generation, generation)
        self.assertEqual(len(self.engine.accounts), 2)

    async def test_failed_start_returns_to_stopped(self) -> None:
        cases = [
            ({"timeWindowSeconds": 30}, self.credentials),
            (CONFIG, []),
            (CONFIG, ["not-a-key"]),
            ({**CONFIG, "sellPercentageOfNetFlow": "lots"}, self.credentials),
        ]
        for config, credentials in cases:
            with self.subTest(config=config, credentials=credentials):
                with self.assertRaises(ConfigError):
                    await self.engine.start(config, credentials)
                self.assertIs(self.engine.state, LifecycleState.STOPPED)
                self.assertIsNone(self.engine.scheduler)
                self.assertEqual(self.engine.accounts, [])

        # Still startable afterwards
        await self.engine.start(CONFIG, self.credentials)
        self.assertTrue(self.engine.running)

    async def test_stop_discards_run_state(self) -> None:
        await self.engine.start(CONFIG, self.credentials)
        await settle(self.engine)

        summary = await self.engine.stop()

        self.assertTrue(summary["success"])
        status = self.engine.status()
        self.assertFalse(status["running"])
        self.assertEqual(status["accounts"], [])
        self.assertIsNone(status["config"])

    async def test_stop_when_stopped_is_rejected(self) -> None:
        with self.assertRaises(EngineStateError):
            await self.engine.stop()


class CycleTests(EngineTestCase):

    async def test_positive_flow_sells_across_accounts(self) -> None:
        self.waterfall.samples = [POSITIVE]
        await self.engine.start(CONFIG, self.credentials)
        self.break_balance_reads()
        await settle(self.engine)

        decision = self.engine.last_decision
        self.assertTrue(decision.fire)
        self.assertAlmostEqual(decision.target_usd, 25.0)

        batch = self.engine.last_batch
        self.assertAlmostEqual(batch.tokens_to_sell, 100.0)
        amounts = sorted(r.token_amount for r in batch.results)
        self.assertAlmostEqual(amounts[0], 40.0)
        self.assertAlmostEqual(amounts[1], 60.0)
        self.assertEqual(len(self.racer.broadcasts), 2)

        # Failed post-sell refresh keeps the locally reduced balances
        self.assertEqual([a.token_balance for a in self.engine.accounts], [540.0, 360.0])
        self.assertTrue(all(a.last_signature for a in self.engine.accounts))

        metrics = self.engine.metrics
        self.assertEqual(metrics.batches, 1)
        self.assertEqual(metrics.successful_sells, 2)
        self.assertAlmostEqual(metrics.total_sold_tokens, 100.0)
        self.assertAlmostEqual(metrics.total_sold_usd, 25.0)
        self.assertEqual(metrics.last_sell_trigger_at, 1000.0)
        self.assertEqual(len(self.engine.history), 2)

    async def test_all_sources_failing_means_no_trigger(self) -> None:
        self.waterfall.samples = [None]
        await self.engine.start(CONFIG, self.credentials)
        await settle(self.engine)

        metrics = self.engine.metrics
        self.assertEqual((metrics.buy_volume_usd, metrics.sell_volume_usd, metrics.net_usd_flow), (0, 0, 0))
        self.assertFalse(self.engine.last_decision.fire)
        self.assertIsNone(self.engine.last_batch)
        self.assertEqual(self.racer.broadcasts, [])

    async def test_cooldown_blocks_the_next_cycle(self) -> None:
        self.waterfall.samples = [POSITIVE, POSITIVE, POSITIVE]
        await self.engine.start(CONFIG, self.credentials)
        await settle(self.engine)
        self.assertEqual(len(self.racer.broadcasts), 2)

        self.now += 5
        decision = await self.engine.run_cycle(self.engine.generation)
        self.assertFalse(decision.fire)
        self.assertIn("cooldown", decision.reason.lower())
        self.assertEqual(len(self.racer.broadcasts), 2)

        self.now += 15
        decision = await self.engine.run_cycle(self.engine.generation)
        self.assertTrue(decision.fire)
        self.assertEqual(len(self.racer.broadcasts), 4)

    async def test_no_eligible_accounts_keeps_cooldown_open(self) -> None:
        self.reader.balances = {str(k.pubkey()): (1.0, 0.0) for k in self.keypairs}
        self.waterfall.samples = [POSITIVE]
        await self.engine.start(CONFIG, self.credentials)
        await settle(self.engine)

        self.assertTrue(self.engine.last_decision.fire)
        self.assertFalse(self.engine.last_batch.dispatched)
        self.assertIsNone(self.engine.governor.last_trigger_at)
        self.assertEqual(self.engine.metrics.batches, 0)
        self.assertEqual(self.racer.broadcasts, [])

    async def test_missing_price_skips_batch(self) -> None:
        self.prices.price = 0.0
        self.waterfall.samples = [POSITIVE]
        await self.engine.start(CONFIG, self.credentials)
        await settle(self.engine)

        self.assertTrue(self.engine.last_decision.fire)
        self.assertIsNone(self.engine.last_batch)
        self.assertEqual(self.swap.quotes, [])

    async def test_sample_price_is_used_when_feed_has_none(self) -> None:
        self.prices.price = 0.0
        self.waterfall.samples = [VolumeSample(buy_usd=120.0, sell_usd=20.0, source="dexscreener",
                                               price_usd=0.25)]
        await self.engine.start(CONFIG, self.credentials)
        await settle(self.engine)

        self.assertEqual(self.engine.last_batch.price_usd, 0.25)
        self.assertEqual(len(self.racer.broadcasts), 2)

    async def test_overlapping_cycle_is_refused(self) -> None:
        self.waterfall.gate = asyncio.Event()
        self.waterfall.samples = [POSITIVE]
        await self.engine.start(CONFIG, self.credentials)
        for _ in range(5):
            await asyncio.sleep(0)

        self.assertIsNone(await self.engine.run_cycle(self.engine.generation))
        self.assertEqual(self.waterfall.calls, 1)

        self.waterfall.gate.set()
        await settle(self.engine)
        self.assertEqual(len(self.racer.broadcasts), 2)

    async def test_results_of_a_stopped_run_are_discarded(self) -> None:
        self.waterfall.gate = asyncio.Event()
        self.waterfall.samples = [POSITIVE, POSITIVE]
        await self.engine.start(CONFIG, self.credentials)
        for _ in range(5):
            await asyncio.sleep(0)
        stale = self.engine.scheduler.inflight

        await self.engine.stop()
        await self.engine.start(CONFIG, self.credentials)
        for _ in range(5):
            await asyncio.sleep(0)
        fresh = self.engine.scheduler.inflight

        self.waterfall.gate.set()
        stale_results = await asyncio.gather(*stale)
        await asyncio.gather(*fresh)

        self.assertEqual(stale_results, [None])
        self.assertEqual(self.engine.metrics.batches, 1)
        self.assertEqual(len(self.racer.broadcasts), 2)

    async def test_accumulated_volumes_add_up_and_reset_after_sale(self) -> None:
        config = {**CONFIG, "accumulateVolumes": True, "minNetFlowUsd": 150}
        self.waterfall.samples = [
            VolumeSample(buy_usd=100.0, source="bitquery"),
            VolumeSample(buy_usd=100.0, source="bitquery"),
        ]
        await self.engine.start(config, self.credentials)
        await settle(self.engine)

        self.assertFalse(self.engine.last_decision.fire)
        self.assertEqual(self.engine.metrics.buy_volume_usd, 100.0)

        self.now += 20
        decision = await self.engine.run_cycle(self.engine.generation)

        self.assertTrue(decision.fire)
        self.assertEqual(decision.net_usd_flow, 200.0)
        self.assertAlmostEqual(decision.target_usd, 50.0)
        self.assertEqual(len(self.racer.broadcasts), 2)
        self.assertEqual(self.engine.metrics.buy_volume_usd, 0.0)
        self.assertEqual(self.engine.metrics.net_usd_flow, 0.0)

    async def test_per_account_cooldown_benches_only_sellers(self) -> None:
        config = {**CONFIG, "cooldownScope": "per_account"}
        self.waterfall.samples = [POSITIVE, POSITIVE]
        second = str(self.keypairs[1].pubkey())
        self.swap.fail_for = {second}
        await self.engine.start(config, self.credentials)
        await settle(self.engine)

        first_batch = self.engine.last_batch
        self.assertEqual([r.name for r in first_batch.succeeded], ["Wallet 1"])

        # Inside the cooldown: the trigger still fires, Wallet 1 sits out
        self.swap.fail_for = set()
        self.now += 5
        decision = await self.engine.run_cycle(self.engine.generation)

        self.assertTrue(decision.fire)
        batch = self.engine.last_batch
        self.assertEqual([r.name for r in batch.results], ["Wallet 2"])
        self.assertTrue(batch.results[0].success)
        self.assertEqual(self.engine.metrics.batches, 2)

    async def test_history_is_bounded(self) -> None:
        self.waterfall.samples = [POSITIVE] * 40
        await self.engine.start({**CONFIG, "cooldownSeconds": 1}, self.credentials)
        await settle(self.engine)
        for _ in range(39):
            self.now += 2
            await self.engine.run_cycle(self.engine.generation)

        self.assertEqual(self.engine.metrics.successful_sells, 80)
        self.assertEqual(len(self.engine.history), 50)
        self.assertEqual(len(self.engine.status()["transaction_history"]), 50)


class WebhookIngestTests(EngineTestCase):

    def _trade(self, side, usd, ts):
        return TradeObservation(side, usd, timestamp=ts, source="webhook")

    async def test_quiet_period_ignores_trades(self) -> None:
        await self.engine.start(CONFIG, self.credentials)
        await settle(self.engine)

        self.assertEqual(self.engine.ingest([self._trade(TradeSide.BUY, 10.0, 1001.0)]), 0)
        self.now = self.engine.quiet_until + 1
        self.assertEqual(self.engine.ingest([self._trade(TradeSide.BUY, 10.0, self.now)]), 1)
        self.assertEqual(len(self.engine.window.items()), 1)

    async def test_status_drops_trades_older_than_window(self) -> None:
        await self.engine.start({**CONFIG, "timeWindowSeconds": 30}, self.credentials)
        self.engine.scheduler.cancel_all()
        await settle(self.engine)

        self.now = self.engine.quiet_until + 1
        self.engine.ingest([self._trade(TradeSide.BUY, 10.0, self.now)])
        self.assertEqual(len(self.engine.status()["recent_trade_window"]), 1)

        self.now += 100
        self.assertEqual(self.engine.status()["recent_trade_window"], [])
        self.assertEqual(len(self.engine.window), 0)

    async def test_poll_mode_window_stays_bounded(self) -> None:
        await self.engine.start({**CONFIG, "timeWindowSeconds": 30}, self.credentials)
        self.engine.scheduler.cancel_all()
        await settle(self.engine)

        self.now = self.engine.quiet_until + 1
        for _ in range(20):
            self.engine.ingest([self._trade(TradeSide.SELL, 1.0, self.now)])
            self.now += 10
        # Only trades from the last 30s survive ingest-time pruning
        self.assertLessEqual(len(self.engine.window), 4)

    async def test_stopped_engine_ignores_trades(self) -> None:
        self.assertEqual(self.engine.ingest([self._trade(TradeSide.BUY, 10.0, 1.0)]), 0)
        result = await self.engine.handle_webhook([{"tokenTransfers": []}])
        self.assertEqual(result, {"ok": True, "received": 1, "accepted": 0})

    async def test_webhook_flow_source_drives_the_cycle(self) -> None:
        config = {**CONFIG, "timeWindowSeconds": 60, "flowSource": "webhook",
                  "balanceRefreshSeconds": 3600}
        await self.engine.start(config, self.credentials)
        # Cancel the timers so the cycle is driven by hand
        self.engine.scheduler.cancel_all()
        await settle(self.engine)

        self.now = self.engine.quiet_until + 1
        self.engine.ingest([
            self._trade(TradeSide.BUY, 120.0, self.now),
            self._trade(TradeSide.SELL, 20.0, self.now),
        ])
        decision = await self.engine.run_cycle(self.engine.generation)

        self.assertEqual(self.waterfall.calls, 0)
        self.assertEqual(self.engine.metrics.source, "webhook")
        self.assertTrue(decision.fire)
        self.assertAlmostEqual(decision.target_usd, 25.0)

    async def test_handle_webhook_classifies_and_ingests(self) -> None:
        await self.engine.start(CONFIG, self.credentials)
        await settle(self.engine)
        self.now = self.engine.quiet_until + 1

        body = {"events": [{
            "signature": "abc",
            "timestamp": self.now,
            "tokenTransfers": [{
                "mint": MINT,
                "fromUserAccount": "Pool",
                "toUserAccount": "9xQeWvG816bUx9EPjHmaT23yvVM2ZWbrrpZb9PusVFin",
                "tokenAmount": 400,
            }],
        }]}
        result = await self.engine.handle_webhook(body)

        self.assertEqual(result, {"ok": True, "received": 1, "accepted": 1})
        (obs,) = self.engine.window.items()
        self.assertIs(obs.side, TradeSide.BUY)
        self.assertAlmostEqual(obs.usd_value, 100.0)


if __name__ == "__main__":
    unittest.main()
