import asyncio
import unittest
from types import SimpleNamespace

from solana.rpc.types import TokenAccountOpts
from solders.keypair import Keypair

from autosell.execution import BalanceRefresher, SolanaBalanceReader
from autosell.models import Account
from autosell.scheduler import Scheduler

from fakes import MINT, FakeBalanceReader


class BalanceRefresherTests(unittest.IsolatedAsyncioTestCase):

    def setUp(self) -> None:
        self.a = Account(name="Wallet 1", keypair=Keypair(), token_balance=50.0)
        self.b = Account(name="Wallet 2", keypair=Keypair(), token_balance=70.0)

    async def test_updates_all_accounts(self) -> None:
        reader = FakeBalanceReader({self.a.public_key: (2.0, 500.0), self.b.public_key: (0.5, 10.0)})
        updated = await BalanceRefresher(reader).refresh([self.a, self.b], MINT)

        self.assertEqual(updated, 2)
        self.assertEqual((self.a.sol_balance, self.a.token_balance), (2.0, 500.0))
        self.assertEqual((self.b.sol_balance, self.b.token_balance), (0.5, 10.0))
        self.assertTrue(self.a.balance_known)

    async def test_failed_read_keeps_last_value(self) -> None:
        reader = FakeBalanceReader({self.a.public_key: ConnectionError("rpc"), self.b.public_key: (1.0, 9.0)})
        refresher = BalanceRefresher(reader)
        updated = await refresher.refresh([self.a, self.b], MINT)

        self.assertEqual(updated, 1)
        self.assertEqual(self.a.token_balance, 50.0)
        self.assertFalse(self.a.balance_known)
        self.assertEqual(self.b.token_balance, 9.0)
        self.assertEqual(refresher.total_read_failures, 1)

    async def test_stale_readings_are_discarded(self) -> None:
        reader = FakeBalanceReader({self.a.public_key: (1.0, 1.0)})
        updated = await BalanceRefresher(reader).refresh([self.a], MINT, is_current=lambda: False)
        self.assertEqual(updated, 0)
        self.assertEqual(self.a.token_balance, 50.0)


class SchedulerTests(unittest.IsolatedAsyncioTestCase):

    async def test_immediate_then_periodic(self) -> None:
        runs = []

        async def job():
            runs.append(1)

        scheduler = Scheduler(generation=1)
        scheduler.every("tick", 0.05, job, immediate=True)
        await asyncio.sleep(0.13)
        scheduler.cancel_all()

        self.assertGreaterEqual(len(runs), 3)
        self.assertEqual(scheduler.timer_names, [])

    async def test_cancel_leaves_inflight_jobs_running(self) -> None:
        done = asyncio.Event()

        async def slow_job():
            await asyncio.sleep(0.05)
            done.set()

        scheduler = Scheduler(generation=1)
        scheduler.every("slow", 10.0, slow_job, immediate=True)
        await asyncio.sleep(0.01)
        inflight = scheduler.inflight
        scheduler.cancel_all()

        self.assertEqual(len(inflight), 1)
        await asyncio.gather(*inflight)
        self.assertTrue(done.is_set())

    async def test_failing_job_does_not_stop_timer(self) -> None:
        calls = []

        async def flaky():
            calls.append(1)
            raise RuntimeError("boom")

        scheduler = Scheduler(generation=2)
        scheduler.every("flaky", 0.03, flaky, immediate=True)
        await asyncio.sleep(0.1)
        scheduler.cancel_all()
        self.assertGreaterEqual(len(calls), 2)

    async def test_cancelled_scheduler_refuses_new_timers(self) -> None:
        scheduler = Scheduler(generation=1)
        scheduler.cancel_all()

        async def job():
            pass

        with self.assertRaises(RuntimeError):
            scheduler.every("late", 1.0, job)


class FakeRpcClient:
    def __init__(self):
        self.token_opts = None
        self.supply_calls = 0

    async def get_balance(self, owner):
        return SimpleNamespace(value=2_500_000_000)

    async def get_token_accounts_by_owner_json_parsed(self, owner, opts):
        self.token_opts = opts
        parsed = [{"info": {"tokenAmount": {"uiAmount": amount}}} for amount in (150.5, None, 49.5)]
        return SimpleNamespace(value=[
            SimpleNamespace(account=SimpleNamespace(data=SimpleNamespace(parsed=p))) for p in parsed
        ])

    async def get_token_supply(self, mint):
        self.supply_calls += 1
        return SimpleNamespace(value=SimpleNamespace(decimals=9))


class SolanaBalanceReaderTests(unittest.IsolatedAsyncioTestCase):

    def setUp(self) -> None:
        self.rpc = FakeRpcClient()
        self.reader = SolanaBalanceReader("http://localhost:8899")
        self.reader._client = self.rpc
        self.owner = str(Keypair().pubkey())

    async def test_sol_balance_in_sol(self) -> None:
        self.assertEqual(await self.reader.get_sol_balance(self.owner), 2.5)

    async def test_token_balance_sums_accounts_for_mint(self) -> None:
        self.assertEqual(await self.reader.get_token_balance(self.owner, MINT), 200.0)
        self.assertIsInstance(self.rpc.token_opts, TokenAccountOpts)
        self.assertEqual(str(self.rpc.token_opts.mint), MINT)

    async def test_decimals_are_cached(self) -> None:
        self.assertEqual(await self.reader.get_decimals(MINT), 9)
        self.assertEqual(await self.reader.get_decimals(MINT), 9)
        self.assertEqual(self.rpc.supply_calls, 1)


if __name__ == "__main__":
    unittest.main()
